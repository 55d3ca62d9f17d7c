from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Union

from ..config import validate_graph_params
from ..detect.detector import Relation, RelationshipIndex
from ..errors import ConfigInvalid, NotFoundError, PartialFetchFailure, SourceError
from ..models import EntityGraph, EntityGraphNode, NodeMetadata, Value, record_timestamp
from ..namespace import namespace
from ..source.base import DataSource


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _WorkItem:
    entity: str
    uid: str
    depth: int
    index: int  # position in the graph's node arena


class _Cancelled:
    pass


_CANCELLED = _Cancelled()

_FetchResult = Union[list, PartialFetchFailure, _Cancelled, None]


class EntityGraphBuilder:
    """Expands one record into a bounded, cycle-safe relationship graph.

    The builder keeps no per-build state: the source and the relationship
    index are read-only collaborators, everything else is passed to `build`.
    Independent builds may therefore share one builder across threads.
    """

    def __init__(self, source: DataSource, index: RelationshipIndex):
        self.source = source
        self.index = index

    def build(
        self,
        root_entity: str,
        root_uid: str,
        max_depth: int,
        per_relation_limit: int,
        *,
        cancel: threading.Event | None = None,
        max_workers: int = 1,
    ) -> EntityGraph:
        validate_graph_params(max_depth, per_relation_limit)
        if int(max_workers) <= 0:
            raise ConfigInvalid(f"max_workers must be > 0 (got {max_workers})")
        max_depth = int(max_depth)
        limit = int(per_relation_limit)
        root_uid = str(root_uid)

        data = self.source.fetch_by_key(root_entity, root_uid)
        if data is None:
            raise NotFoundError(root_entity, root_uid)
        # Sources may coerce the lookup ("1.0" finds id 1); key the root by the stored value.
        pk = self.index.primary_key(root_entity)
        if data.get(pk) is not None:
            root_uid = str(data[pk])

        tag = str(getattr(self.source, "source_tag", "relational"))
        root = EntityGraphNode(
            entity=root_entity,
            uid=root_uid,
            data=dict(data),
            metadata=NodeMetadata(depth=0, source=tag, timestamp=record_timestamp(data)),
        )
        graph = EntityGraph(root=root, namespace=namespace(root_entity, root_uid), nodes=[root])
        visited: dict[str, int] = {graph.namespace: 0}

        queue: deque[_WorkItem] = deque()
        if max_depth > 0:
            queue.append(_WorkItem(root_entity, root_uid, 0, 0))

        pool = ThreadPoolExecutor(max_workers=int(max_workers)) if int(max_workers) > 1 else None
        try:
            while queue:
                # Drain one BFS level so its sibling fetches can fan out together.
                depth = queue[0].depth
                level: list[_WorkItem] = []
                while queue and queue[0].depth == depth:
                    if cancel is not None and cancel.is_set():
                        graph.cancelled = True
                        break
                    level.append(queue.popleft())

                tasks = [(item, rel) for item in level for rel in self.index.relations_for(item.entity)]

                def run(task: tuple[_WorkItem, Relation]) -> _FetchResult:
                    item, rel = task
                    return self._fetch(graph.nodes[item.index], rel, limit, cancel)

                results = list(pool.map(run, tasks)) if pool is not None else [run(t) for t in tasks]

                for (item, rel), result in zip(tasks, results):
                    node = graph.nodes[item.index]
                    if result is None:
                        continue
                    if isinstance(result, _Cancelled):
                        graph.cancelled = True
                        continue
                    if isinstance(result, PartialFetchFailure):
                        logger.warning("%s", result)
                        graph.warnings.append(result)
                        node.children[rel.name] = []
                        continue
                    if not result:
                        continue
                    node.children[rel.name] = self._attach(
                        graph, visited, queue, item, rel, result, max_depth=max_depth, tag=tag
                    )

                if graph.cancelled:
                    logger.info("Build of %s cancelled; returning partial graph", graph.namespace)
                    break
        finally:
            if pool is not None:
                pool.shutdown(wait=True)

        return graph

    def _fetch(
        self,
        node: EntityGraphNode,
        rel: Relation,
        limit: int,
        cancel: threading.Event | None,
    ) -> _FetchResult:
        if cancel is not None and cancel.is_set():
            return _CANCELLED
        c = rel.candidate
        value = node.data.get(c.local_key)
        if value is None:
            return None

        # Document stores may hold an array of references in one field.
        values: list[Any] = list(value) if isinstance(value, list) else [value]
        rows: list[dict[str, Value]] = []
        try:
            for v in values:
                if v is None:
                    continue
                if cancel is not None and cancel.is_set():
                    return _CANCELLED
                rows.extend(self.source.fetch_related(c.target_entity, c.target_key, v, limit - len(rows)))
                if len(rows) >= limit:
                    break
        except SourceError as e:
            return PartialFetchFailure(entity=node.entity, uid=node.uid, relation=rel.name, cause=e)
        return rows[:limit]

    def _attach(
        self,
        graph: EntityGraph,
        visited: dict[str, int],
        queue: deque[_WorkItem],
        item: _WorkItem,
        rel: Relation,
        rows: list[dict[str, Value]],
        *,
        max_depth: int,
        tag: str,
    ) -> list[EntityGraphNode]:
        target = rel.candidate.target_entity
        pk = self.index.primary_keys.get(target) or (rel.candidate.target_key if not rel.reverse else "id")
        child_depth = item.depth + 1

        children: list[EntityGraphNode] = []
        for row in rows:
            raw_uid = row.get(pk)
            if raw_uid is None:
                logger.debug("Skipping %s row without %s", target, pk)
                continue
            uid = str(raw_uid)
            key = namespace(target, uid)

            if key in visited:
                # Already expanded (or queued) elsewhere in this graph: record the edge only.
                child = EntityGraphNode(
                    entity=target,
                    uid=uid,
                    data={},
                    metadata=NodeMetadata(depth=child_depth, source=tag),
                    reference_only=True,
                )
                graph.nodes.append(child)
            else:
                child = EntityGraphNode(
                    entity=target,
                    uid=uid,
                    data=dict(row),
                    metadata=NodeMetadata(depth=child_depth, source=tag, timestamp=record_timestamp(row)),
                )
                visited[key] = len(graph.nodes)
                graph.nodes.append(child)
                if child_depth < max_depth:
                    queue.append(_WorkItem(target, uid, child_depth, visited[key]))
                else:
                    child.reference_only = True
            children.append(child)
        return children
