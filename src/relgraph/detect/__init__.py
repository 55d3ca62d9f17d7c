"""Relationship detection.

Infers foreign-key-like links between entities from field names, sampled value
shapes and value-overlap statistics, then merges and ranks the evidence.
"""

from .cache import RelationshipCache
from .configured import ConfiguredRelation, EntityConfig, load_relationships, parse_relationships
from .detector import (
    DetectorConfig,
    Relation,
    RelationshipDetector,
    RelationshipIndex,
    detect_schema,
    merge_candidates,
)

__all__ = [
    "ConfiguredRelation",
    "DetectorConfig",
    "EntityConfig",
    "Relation",
    "RelationshipCache",
    "RelationshipDetector",
    "RelationshipIndex",
    "detect_schema",
    "load_relationships",
    "merge_candidates",
    "parse_relationships",
]
