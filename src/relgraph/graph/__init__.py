"""Entity graph expansion.

Walks detected relationships breadth-first from one root record, bounded by
depth and a per-relation fan-out cap. Records are expanded at most once per
graph; repeated references become reference-only leaves.
"""

from .builder import EntityGraphBuilder

__all__ = ["EntityGraphBuilder"]
