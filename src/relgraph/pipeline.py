from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Protocol

from .config import Settings
from .context.chunker import ContextChunker
from .detect.cache import RelationshipCache
from .detect.configured import EntityConfig, load_relationships
from .detect.detector import DetectorConfig, RelationshipDetector
from .errors import PartialFetchFailure
from .graph.builder import EntityGraphBuilder
from .models import ContextChunk, EntityGraph
from .source.base import DataSource


logger = logging.getLogger(__name__)


class ChunkSink(Protocol):
    """Downstream embedding/storage collaborator."""

    def store(self, namespace: str, chunks: list[ContextChunk]) -> None: ...


@dataclass
class JsonlChunkSink:
    path: Path

    def store(self, namespace: str, chunks: list[ContextChunk]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            for c in chunks:
                f.write(json.dumps(c.to_dict(), ensure_ascii=False) + "\n")


@dataclass(frozen=True)
class BuildResult:
    entity: str
    uid: str
    namespace: str
    graph: EntityGraph
    chunks: list[ContextChunk]
    warnings: list[PartialFetchFailure] = field(default_factory=list)
    cancelled: bool = False

    @property
    def chunks_created(self) -> int:
        return len(self.chunks)


def make_cache(source: DataSource, settings: Settings) -> RelationshipCache:
    detector = RelationshipDetector(DetectorConfig(sample_size=settings.sample_size))
    return RelationshipCache(source, detector, threshold=settings.confidence_threshold)


def build_context(
    *,
    source: DataSource,
    entity: str,
    uid: str,
    settings: Settings | None = None,
    cache: RelationshipCache | None = None,
    sink: ChunkSink | None = None,
    cancel: threading.Event | None = None,
    relationships: Iterable[EntityConfig] | None = None,
) -> BuildResult:
    """Detect (cached) -> build -> chunk -> hand off, for one root record.

    Invalid settings and a missing root raise; relation fetch failures are
    returned as warnings. A cancelled build returns whatever was built.
    `relationships` (or the file named by `settings.relationships_path`)
    declares relations that take precedence over detected ones.
    """
    settings = (settings or Settings()).validate()
    cache = cache or make_cache(source, settings)

    index = cache.get(cancel=cancel)
    if relationships is None and settings.relationships_path:
        relationships = load_relationships(settings.relationships_path)
    if relationships is not None:
        index = index.with_relationships(relationships)
    graph = EntityGraphBuilder(source, index).build(
        entity,
        uid,
        settings.max_depth,
        settings.per_relation_limit,
        cancel=cancel,
        max_workers=settings.fetch_workers,
    )
    chunks = ContextChunker().chunk(graph, settings.chunk_size, settings.overlap, settings.flatten_depth_cutoff)

    if sink is not None:
        sink.store(graph.namespace, chunks)

    logger.info(
        "Built %s: %d node(s), %d chunk(s), %d warning(s)%s",
        graph.namespace,
        len(graph.nodes),
        len(chunks),
        len(graph.warnings),
        " (cancelled)" if graph.cancelled else "",
    )
    return BuildResult(
        entity=entity,
        uid=graph.root.uid,
        namespace=graph.namespace,
        graph=graph,
        chunks=chunks,
        warnings=list(graph.warnings),
        cancelled=graph.cancelled or (cancel is not None and cancel.is_set()),
    )
