from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Any, Iterable

from ..errors import SourceError
from ..models import METHOD_PRIORITY, Field, RelationKind, RelationshipCandidate
from ..source.base import Sampler, primary_key_of
from .configured import EntityConfig
from .naming import reference_prefix, resolve_entity
from .shapes import dominant_shape
from .stats import best_overlap, distinct_ratio


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectorConfig:
    sample_size: int = 50
    # Target keys are sampled wider so overlap is not underestimated on big tables.
    key_sample_size: int = 1000
    name_pattern_confidence: float = 0.6
    declared_confidence: float = 1.0
    shape_min_fraction: float = 0.8
    min_distinct_ratio: float = 0.2
    min_overlap: float = 0.5
    one_to_one_min_samples: int = 20


class _Probe:
    """Memoizes sampler calls for one detection run.

    Every sampler call checks the cancel event first; failures are logged and
    turned into "no data" so a pass simply contributes nothing.
    """

    def __init__(self, sampler: Sampler, cfg: DetectorConfig, cancel: threading.Event | None):
        self.sampler = sampler
        self.cfg = cfg
        self.cancel = cancel
        self._entities: list[str] | None = None
        self._fields: dict[str, list[Field]] = {}
        self._keys: dict[str, list[Any]] = {}

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    def entities(self) -> list[str]:
        if self._entities is None:
            if self.cancelled:
                return []
            try:
                self._entities = list(self.sampler.list_entities())
            except SourceError as e:
                logger.warning("Cannot list entities: %s", e)
                self._entities = []
        return self._entities

    def fields(self, entity: str) -> list[Field]:
        if entity not in self._fields:
            if self.cancelled:
                return []
            try:
                self._fields[entity] = list(self.sampler.list_fields(entity))
            except SourceError as e:
                logger.warning("Cannot list fields of %s: %s", entity, e)
                self._fields[entity] = []
        return self._fields[entity]

    def primary_key(self, entity: str) -> str:
        return primary_key_of(self.fields(entity)) or "id"

    def keys(self, entity: str) -> list[Any]:
        if entity not in self._keys:
            if self.cancelled:
                return []
            try:
                self._keys[entity] = list(self.sampler.sample_primary_keys(entity, self.cfg.key_sample_size))
            except SourceError as e:
                logger.warning("Cannot sample keys of %s: %s", entity, e)
                self._keys[entity] = []
        return self._keys[entity]

    def values(self, entity: str, field_name: str) -> list[Any] | None:
        if self.cancelled:
            return None
        try:
            vals = self.sampler.sample_values(entity, field_name, self.cfg.sample_size)
        except SourceError as e:
            logger.warning("Cannot sample %s.%s: %s", entity, field_name, e)
            return None
        return [v for v in vals if v is not None]


class RelationshipDetector:
    """Infers foreign-key-like relationships from names, value shapes and overlap statistics."""

    def __init__(self, config: DetectorConfig | None = None):
        self.config = config or DetectorConfig()

    def detect(
        self,
        entity: str,
        fields: Iterable[Field],
        sampler: Sampler,
        *,
        cancel: threading.Event | None = None,
    ) -> list[RelationshipCandidate]:
        return self._detect(entity, list(fields), _Probe(sampler, self.config, cancel))

    def _detect(self, entity: str, fields: list[Field], probe: _Probe) -> list[RelationshipCandidate]:
        cfg = self.config
        entities = probe.entities()
        if not entities or not fields:
            return []
        if not probe.keys(entity):
            logger.debug("No sampleable records in %s; skipping detection", entity)
            return []

        pk_name = primary_key_of(fields)
        raw: list[RelationshipCandidate] = []

        for f in fields:
            if probe.cancelled:
                break
            if f.is_primary_key or f.name == pk_name:
                continue

            prefix = reference_prefix(f.name)
            hint = resolve_entity(prefix, entities) if prefix else None
            reference_like = prefix is not None or f.is_foreign_key

            values = probe.values(entity, f.name)
            kind = self._kind(values)

            def add(target: str, confidence: float, method: str, target_key: str | None = None) -> None:
                raw.append(
                    RelationshipCandidate(
                        source_entity=entity,
                        local_key=f.name,
                        target_entity=target,
                        target_key=target_key or probe.primary_key(target),
                        kind=kind,
                        confidence=confidence,
                        method=method,  # type: ignore[arg-type]
                    )
                )

            if f.is_foreign_key and f.referenced_entity in entities:
                add(f.referenced_entity, cfg.declared_confidence, "declared", f.referenced_key)

            if hint is not None:
                add(hint, cfg.name_pattern_confidence, "name-pattern")

            if not values:
                continue

            shape, frac = dominant_shape(values)
            if shape is not None and frac >= cfg.shape_min_fraction and (shape != "numeric" or reference_like):
                pool = [hint] if hint is not None else entities
                for target in pool:
                    if dominant_shape(probe.keys(target))[0] == shape:
                        add(target, frac, "value-shape")

            if distinct_ratio(values) > cfg.min_distinct_ratio:
                # Self-references only count when the name points back here or nowhere.
                self_ok = hint == entity or (reference_like and hint is None)
                keys_by_entity = {e: probe.keys(e) for e in entities if e != entity or self_ok}
                target, overlap = best_overlap(values, keys_by_entity, prefer=hint)
                if target is not None and overlap >= cfg.min_overlap:
                    add(target, overlap, "statistical")

        merged = merge_candidates(raw)
        logger.debug("Detected %d relationship candidate(s) for %s", len(merged), entity)
        return merged

    def _kind(self, values: list[Any] | None) -> RelationKind:
        if values and len(values) >= self.config.one_to_one_min_samples and distinct_ratio(values) == 1.0:
            return "one-to-one"
        return "many-to-one"


def _order_key(c: RelationshipCandidate) -> tuple:
    return (-c.confidence, -METHOD_PRIORITY[c.method], -len(c.evidence), c.local_key, c.target_entity)


def merge_candidates(raw: Iterable[RelationshipCandidate]) -> list[RelationshipCandidate]:
    """Collapse per-pass candidates and rank targets per local key.

    Candidates agreeing on (local_key, target_entity) keep the maximum
    confidence; the reported method is the one that produced it, higher
    priority passes winning ties.
    """
    groups: dict[tuple[str, str], list[RelationshipCandidate]] = defaultdict(list)
    for c in raw:
        groups[c.pair].append(c)

    merged: list[RelationshipCandidate] = []
    for cands in groups.values():
        best = max(cands, key=lambda c: (c.confidence, METHOD_PRIORITY[c.method]))
        methods = sorted({c.method for c in cands}, key=lambda m: -METHOD_PRIORITY[m])
        merged.append(replace(best, evidence=tuple(methods)))

    by_local: dict[str, list[RelationshipCandidate]] = defaultdict(list)
    for c in merged:
        by_local[c.local_key].append(c)

    ranked: list[RelationshipCandidate] = []
    for cands in by_local.values():
        for i, c in enumerate(sorted(cands, key=_order_key)):
            ranked.append(replace(c, rank=i))

    return sorted(ranked, key=_order_key)


@dataclass(frozen=True)
class Relation:
    """A traversable relation, oriented from the record being expanded.

    `candidate.local_key` is read from the expanded record; children are
    fetched from `candidate.target_entity` where `candidate.target_key`
    equals that value.
    """

    name: str
    candidate: RelationshipCandidate
    reverse: bool = False


@dataclass(frozen=True)
class RelationshipIndex:
    candidates: tuple[RelationshipCandidate, ...] = ()
    primary_keys: dict[str, str] = field(default_factory=dict)
    # User-declared relations per entity; they shadow detected ones on the same key.
    configured: dict[str, tuple[Relation, ...]] = field(default_factory=dict)

    def primary_key(self, entity: str) -> str:
        return self.primary_keys.get(entity, "id")

    def with_relationships(self, entities: Iterable[EntityConfig]) -> RelationshipIndex:
        configured = dict(self.configured)
        primary_keys = dict(self.primary_keys)
        for e in entities:
            if e.primary_key:
                primary_keys[e.name] = e.primary_key
            configured[e.name] = tuple(
                Relation(name=r.name, candidate=r.candidate(e.name), reverse=r.kind == "one-to-many")
                for r in e.relationships
            )
        logger.info("Using configured relations for %d entit(ies)", len(configured))
        return replace(self, primary_keys=primary_keys, configured=configured)

    def relations_for(self, entity: str) -> list[Relation]:
        configured = self.configured.get(entity, ())
        out: list[Relation] = list(configured)
        used: set[str] = {r.name for r in configured}
        claimed_keys = {r.candidate.local_key for r in configured if not r.reverse}
        claimed = {(r.candidate.local_key, r.candidate.target_entity, r.candidate.target_key) for r in configured}

        def name_for(base: str, key: str) -> str:
            name = base
            if name in used:
                name = f"{base}_by_{key}"
            n = 2
            while name in used:
                name = f"{base}_by_{key}_{n}"
                n += 1
            used.add(name)
            return name

        for c in self.candidates:
            if c.source_entity == entity:
                if c.local_key in claimed_keys or (c.local_key, c.target_entity, c.target_key) in claimed:
                    continue
                out.append(Relation(name=name_for(c.target_entity, c.local_key), candidate=c))
        for c in self.candidates:
            if c.target_entity == entity:
                rc = c.reversed()
                if (rc.local_key, rc.target_entity, rc.target_key) in claimed:
                    continue
                out.append(Relation(name=name_for(rc.target_entity, rc.target_key), candidate=rc, reverse=True))
        return out


def detect_schema(
    sampler: Sampler,
    detector: RelationshipDetector | None = None,
    *,
    threshold: float = 0.5,
    cancel: threading.Event | None = None,
) -> RelationshipIndex:
    """Run detection over every entity and keep the top-ranked candidates above `threshold`."""
    detector = detector or RelationshipDetector()
    probe = _Probe(sampler, detector.config, cancel)

    accepted: list[RelationshipCandidate] = []
    primary_keys: dict[str, str] = {}
    for entity in probe.entities():
        if probe.cancelled:
            break
        fields = probe.fields(entity)
        pk = primary_key_of(fields)
        if pk is not None:
            primary_keys[entity] = pk
        for c in detector._detect(entity, fields, probe):
            if c.rank == 0 and c.confidence >= threshold:
                accepted.append(c)

    accepted.sort(key=lambda c: (c.source_entity, _order_key(c)))
    logger.info("Relationship index: %d relation(s) over %d entities", len(accepted), len(primary_keys))
    return RelationshipIndex(candidates=tuple(accepted), primary_keys=primary_keys)
