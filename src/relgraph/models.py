from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Literal, Mapping, Union

RelationKind = Literal["one-to-many", "many-to-one", "one-to-one"]
DetectionMethod = Literal["declared", "statistical", "value-shape", "name-pattern"]
SourceTag = str  # "relational", "document", "timeseries", ...

# Higher wins when confidences tie.
METHOD_PRIORITY: dict[str, int] = {
    "declared": 3,
    "statistical": 2,
    "value-shape": 1,
    "name-pattern": 0,
}

Value = Union[None, bool, int, float, str, datetime, list["Value"], dict[str, "Value"]]

TIMESTAMP_FIELDS = (
    "created_at",
    "createdAt",
    "updated_at",
    "updatedAt",
    "timestamp",
    "date_created",
    "date_modified",
)


@dataclass(frozen=True)
class Field:
    name: str
    type: str = ""
    nullable: bool = True
    is_primary_key: bool = False
    is_foreign_key: bool = False
    # Only set when the source declares the constraint.
    referenced_entity: str | None = None
    referenced_key: str | None = None


@dataclass(frozen=True)
class RelationshipCandidate:
    source_entity: str
    local_key: str
    target_entity: str
    target_key: str
    kind: RelationKind
    confidence: float
    method: DetectionMethod
    rank: int = 0
    evidence: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        c = float(self.confidence)
        object.__setattr__(self, "confidence", min(1.0, max(0.0, c)))

    @property
    def pair(self) -> tuple[str, str]:
        return (self.local_key, self.target_entity)

    def reversed(self) -> RelationshipCandidate:
        """The one-to-many view: from the referenced record back to its referrers."""
        kind: RelationKind = {"one-to-one": "one-to-one", "one-to-many": "many-to-one"}.get(self.kind, "one-to-many")
        return replace(
            self,
            source_entity=self.target_entity,
            local_key=self.target_key,
            target_entity=self.source_entity,
            target_key=self.local_key,
            kind=kind,
        )


@dataclass
class NodeMetadata:
    depth: int
    source: SourceTag
    timestamp: datetime | None = None


@dataclass
class EntityGraphNode:
    entity: str
    uid: str
    data: dict[str, Value]
    metadata: NodeMetadata
    children: dict[str, list[EntityGraphNode]] = field(default_factory=dict)
    reference_only: bool = False

    @property
    def depth(self) -> int:
        return self.metadata.depth


@dataclass
class EntityGraph:
    root: EntityGraphNode
    namespace: str
    # Flat arena in creation order; children hold references into it.
    nodes: list[EntityGraphNode] = field(default_factory=list)
    warnings: list[Any] = field(default_factory=list)  # PartialFetchFailure
    cancelled: bool = False

    def relation_names(self) -> list[str]:
        return relation_names(self.root)


@dataclass(frozen=True)
class ChunkMetadata:
    entity: str
    uid: str
    relations: tuple[str, ...]
    chunk_index: int
    total_chunks: int
    timestamp: datetime | None = None
    start: int = 0
    end: int = 0


@dataclass(frozen=True)
class ContextChunk:
    id: str
    namespace: str
    content: str
    metadata: ChunkMetadata

    def to_dict(self) -> dict[str, Any]:
        md = self.metadata
        return {
            "id": self.id,
            "namespace": self.namespace,
            "content": self.content,
            "metadata": {
                "entity": md.entity,
                "uid": md.uid,
                "relations": list(md.relations),
                "timestamp": format_timestamp(md.timestamp) if md.timestamp else None,
                "chunkIndex": md.chunk_index,
                "totalChunks": md.total_chunks,
                "start": md.start,
                "end": md.end,
            },
        }


def relation_names(root: EntityGraphNode) -> list[str]:
    """Union of relation names anywhere under `root`, in pre-order discovery order."""
    seen: set[str] = set()
    out: list[str] = []
    stack = [root]
    visited: set[int] = set()
    while stack:
        node = stack.pop()
        if id(node) in visited:
            continue
        visited.add(id(node))
        for name in node.children:
            if name not in seen:
                seen.add(name)
                out.append(name)
        # Reverse so the leftmost child is processed first.
        for kids in reversed(list(node.children.values())):
            stack.extend(reversed(kids))
    return out


def to_value(obj: Any) -> Value:
    """Normalize a source row value into the closed `Value` union."""
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj
    if isinstance(obj, datetime):
        return obj
    if isinstance(obj, date):
        return datetime(obj.year, obj.month, obj.day)
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return bytes(obj).hex()
    if isinstance(obj, uuid.UUID):
        return str(obj)
    if isinstance(obj, Mapping):
        return {str(k): to_value(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        items = sorted(obj, key=str) if isinstance(obj, (set, frozenset)) else obj
        return [to_value(v) for v in items]
    return str(obj)


def to_record(row: Mapping[str, Any]) -> dict[str, Value]:
    return {str(k): to_value(row[k]) for k in row.keys()}


def parse_timestamp(value: Value) -> datetime | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        # Epoch seconds; milliseconds when clearly too large for seconds.
        secs = float(value) / 1000.0 if abs(value) > 1e11 else float(value)
        try:
            return datetime.fromtimestamp(secs, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(s)
        except ValueError:
            return None
    return None


def record_timestamp(data: Mapping[str, Value]) -> datetime | None:
    for name in TIMESTAMP_FIELDS:
        if name in data:
            ts = parse_timestamp(data[name])
            if ts is not None:
                return ts
    return None


def format_timestamp(ts: datetime) -> str:
    """Canonical UTC form with millisecond precision, e.g. 2024-01-02T03:04:05.000Z."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    ts = ts.astimezone(timezone.utc)
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"
