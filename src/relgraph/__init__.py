"""relgraph: relationship-aware context building for retrieval indexing.

Detects relationships between entities of a data source, expands one record
into a bounded entity graph, and flattens that graph into overlapping,
addressable text chunks.
"""

from .context import ContextChunker
from .detect import RelationshipCache, RelationshipDetector, detect_schema
from .graph import EntityGraphBuilder
from .namespace import namespace
from .pipeline import BuildResult, build_context

__version__ = "0.1.0"

__all__ = [
    "BuildResult",
    "ContextChunker",
    "EntityGraphBuilder",
    "RelationshipCache",
    "RelationshipDetector",
    "build_context",
    "detect_schema",
    "namespace",
]
