from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .errors import ConfigInvalid


load_dotenv()


@dataclass(frozen=True)
class Settings:
    # Default SQLite source used by the CLI.
    db_path: str = os.getenv("RELGRAPH_DB_PATH", "./data/source.db")

    # Graph expansion
    max_depth: int = int(os.getenv("RELGRAPH_MAX_DEPTH", "3"))
    per_relation_limit: int = int(os.getenv("RELGRAPH_PER_RELATION_LIMIT", "10"))
    fetch_workers: int = int(os.getenv("RELGRAPH_FETCH_WORKERS", "1"))

    # Chunking
    chunk_size: int = int(os.getenv("RELGRAPH_CHUNK_SIZE", "1000"))
    overlap: int = int(os.getenv("RELGRAPH_OVERLAP", "200"))
    flatten_depth_cutoff: int = int(os.getenv("RELGRAPH_FLATTEN_DEPTH", "2"))

    # Relationship detection
    confidence_threshold: float = float(os.getenv("RELGRAPH_CONFIDENCE_THRESHOLD", "0.5"))
    sample_size: int = int(os.getenv("RELGRAPH_SAMPLE_SIZE", "50"))
    # JSON file of user-declared relationships (masterEntities format); empty means none.
    relationships_path: str = os.getenv("RELGRAPH_RELATIONSHIPS", "")

    def validate(self) -> Settings:
        validate_graph_params(self.max_depth, self.per_relation_limit)
        validate_chunk_params(self.chunk_size, self.overlap, self.flatten_depth_cutoff)
        validate_threshold(self.confidence_threshold)
        if self.sample_size <= 0:
            raise ConfigInvalid(f"sample_size must be > 0 (got {self.sample_size})")
        if self.fetch_workers <= 0:
            raise ConfigInvalid(f"fetch_workers must be > 0 (got {self.fetch_workers})")
        return self


def validate_graph_params(max_depth: int, per_relation_limit: int) -> None:
    if int(max_depth) < 0:
        raise ConfigInvalid(f"max_depth must be >= 0 (got {max_depth})")
    if int(per_relation_limit) <= 0:
        raise ConfigInvalid(f"per_relation_limit must be > 0 (got {per_relation_limit})")


def validate_chunk_params(chunk_size: int, overlap: int, flatten_depth_cutoff: int = 0) -> None:
    if int(chunk_size) <= 0:
        raise ConfigInvalid(f"chunk_size must be > 0 (got {chunk_size})")
    if int(overlap) < 0:
        raise ConfigInvalid(f"overlap must be >= 0 (got {overlap})")
    if int(overlap) >= int(chunk_size):
        raise ConfigInvalid(f"overlap ({overlap}) must be smaller than chunk_size ({chunk_size})")
    if int(flatten_depth_cutoff) < 0:
        raise ConfigInvalid(f"flatten_depth_cutoff must be >= 0 (got {flatten_depth_cutoff})")


def validate_threshold(threshold: float) -> None:
    t = float(threshold)
    if not 0.0 <= t <= 1.0:
        raise ConfigInvalid(f"confidence threshold must be within [0, 1] (got {threshold})")
