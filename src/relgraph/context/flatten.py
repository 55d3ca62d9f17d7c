from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Mapping

from ..models import EntityGraphNode, Value, format_timestamp

PREVIEW_ITEMS = 3


def flatten_graph(root: EntityGraphNode, flatten_depth_cutoff: int) -> str:
    """Render a graph depth-first, pre-order, into one text buffer.

    Children of a node at render level L are written out in full while
    L < flatten_depth_cutoff; past that they collapse to one reference line.
    """
    out: list[str] = []
    _render_node(root, 0, int(flatten_depth_cutoff), out)
    return "".join(out)


def reference_stub(node: EntityGraphNode) -> str:
    return f"{node.entity} (ID: {node.uid}) - [Reference Only]"


def _render_node(node: EntityGraphNode, level: int, cutoff: int, out: list[str]) -> None:
    indent = "  " * (2 * level)
    md = node.metadata

    out.append(f"{indent}Entity: {node.entity} (ID: {node.uid})\n")
    if md.timestamp is not None:
        out.append(f"{indent}Timestamp: {format_timestamp(md.timestamp)}\n")
    out.append(f"{indent}Source: {md.source}\n")
    out.append(f"{indent}Depth: {md.depth}\n\n")

    if node.data:
        out.append(f"{indent}Data:\n")
        format_data(node.data, 2 * level + 1, out)
        out.append("\n")

    if node.children:
        out.append(f"{indent}Relationships:\n")
        for name, kids in node.children.items():
            out.append(f"{indent}  {name}:\n")
            for child in kids:
                stub_only = child.reference_only and not child.data
                if level < cutoff and not stub_only:
                    _render_node(child, level + 1, cutoff, out)
                else:
                    out.append(f"{indent}    {reference_stub(child)}\n")
            out.append("\n")


def format_data(data: Mapping[str, Value], depth: int, out: list[str]) -> None:
    indent = "  " * depth
    for key, value in data.items():
        if value is None:
            out.append(f"{indent}{key}: null\n")
        elif isinstance(value, Mapping):
            out.append(f"{indent}{key}:\n")
            format_data(value, depth + 1, out)
        elif isinstance(value, list):
            out.append(f"{indent}{key}: [{len(value)} items]\n")
            if value:
                preview = ", ".join(_preview_item(v) for v in value[:PREVIEW_ITEMS])
                more = "..." if len(value) > PREVIEW_ITEMS else ""
                out.append(f"{indent}  Preview: {preview}{more}\n")
        else:
            out.append(f"{indent}{key}: {format_scalar(value)}\n")


def format_scalar(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return format_timestamp(value)
    return str(value)


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


def _preview_item(value: Any) -> str:
    if isinstance(value, (Mapping, list)):
        return json.dumps(_jsonable(value), ensure_ascii=False, separators=(",", ":"), default=str)
    return format_scalar(value)
