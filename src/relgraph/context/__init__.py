"""Graph-to-text context: flattening and size-bounded chunking."""

from .chunker import ContextChunker, split_spans, split_text
from .flatten import flatten_graph

__all__ = ["ContextChunker", "flatten_graph", "split_spans", "split_text"]
