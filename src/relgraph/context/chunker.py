from __future__ import annotations

from typing import Union

from ..config import validate_chunk_params
from ..models import ChunkMetadata, ContextChunk, EntityGraph, EntityGraphNode, relation_names
from ..namespace import chunk_id, namespace
from .flatten import flatten_graph

# Natural break points, best first.
BREAKS = ("\n\n", "\n", ". ", " ")

# A break is only taken this far into the window; otherwise cut hard.
MIN_BREAK_FRACTION = 0.7


def split_spans(text: str, chunk_size: int, overlap: int) -> list[tuple[int, int]]:
    """Return [(start, end)] windows over `text`.

    Every window is at most `chunk_size` long. Consecutive windows overlap by
    `overlap` characters unless that would stall, in which case the next
    window starts one character after the previous one.
    """
    validate_chunk_params(chunk_size, overlap)
    n = len(text)
    if n <= chunk_size:
        return [(0, n)]

    spans: list[tuple[int, int]] = []
    start = 0
    while start < n:
        end = start + chunk_size
        if end < n:
            end = _break_point(text, start, end, chunk_size)
        else:
            end = n
        spans.append((start, end))
        if end >= n:
            break
        nxt = end - overlap
        start = nxt if nxt > start else start + 1
    return spans


def _break_point(text: str, start: int, end: int, chunk_size: int) -> int:
    floor = start + chunk_size * MIN_BREAK_FRACTION
    for sep in BREAKS:
        bp = text.rfind(sep, start, end)
        if bp != -1 and bp >= floor:
            # Cut just after the first character of the separator.
            return bp + 1
    return end


def split_text(text: str, chunk_size: int, overlap: int) -> list[str]:
    return [text[s:e] for s, e in split_spans(text, chunk_size, overlap)]


class ContextChunker:
    """Flattens an entity graph and packages it as addressable chunks.

    Every chunk carries the union of relation names found anywhere in the
    graph, not only those whose text falls inside the chunk.
    """

    def chunk(
        self,
        graph: Union[EntityGraph, EntityGraphNode],
        chunk_size: int,
        overlap: int,
        flatten_depth_cutoff: int,
    ) -> list[ContextChunk]:
        validate_chunk_params(chunk_size, overlap, flatten_depth_cutoff)

        if isinstance(graph, EntityGraph):
            root, ns = graph.root, graph.namespace
        else:
            root, ns = graph, namespace(graph.entity, graph.uid)

        text = flatten_graph(root, flatten_depth_cutoff)
        spans = split_spans(text, chunk_size, overlap)
        relations = tuple(relation_names(root))

        return [
            ContextChunk(
                id=chunk_id(ns, i),
                namespace=ns,
                content=text[start:end],
                metadata=ChunkMetadata(
                    entity=root.entity,
                    uid=root.uid,
                    relations=relations,
                    chunk_index=i,
                    total_chunks=len(spans),
                    timestamp=root.metadata.timestamp,
                    start=start,
                    end=end,
                ),
            )
            for i, (start, end) in enumerate(spans)
        ]
