from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from ..errors import ConfigInvalid
from ..models import RelationKind, RelationshipCandidate


RELATION_TYPES = ("one-to-one", "one-to-many", "many-to-one", "many-to-many")


@dataclass(frozen=True)
class ConfiguredRelation:
    """A relation declared by the user for one entity.

    Children are the `entity` records whose `foreign_key` equals the
    expanded record's `local_key`, whatever the type.
    """

    name: str
    entity: str
    local_key: str
    foreign_key: str
    type: str = "many-to-one"

    @property
    def kind(self) -> RelationKind:
        if self.type in ("one-to-many", "many-to-many"):
            return "one-to-many"
        return "one-to-one" if self.type == "one-to-one" else "many-to-one"

    def candidate(self, source_entity: str) -> RelationshipCandidate:
        return RelationshipCandidate(
            source_entity=source_entity,
            local_key=self.local_key,
            target_entity=self.entity,
            target_key=self.foreign_key,
            kind=self.kind,
            confidence=1.0,
            method="declared",
            evidence=("declared",),
        )


@dataclass(frozen=True)
class EntityConfig:
    name: str
    primary_key: str | None = None
    relationships: tuple[ConfiguredRelation, ...] = ()


def _text(raw: Mapping[str, Any], *keys: str, where: str) -> str:
    for k in keys:
        v = raw.get(k)
        if isinstance(v, str) and v:
            return v
    raise ConfigInvalid(f"{where}: missing {keys[0]!r}")


def _relation(name: str, raw: Any, where: str) -> ConfiguredRelation:
    if not isinstance(raw, Mapping):
        raise ConfigInvalid(f"{where}: relationship {name!r} must be an object")
    kind = raw.get("type", "many-to-one")
    if kind not in RELATION_TYPES:
        raise ConfigInvalid(f"{where}: relationship {name!r} has unknown type {kind!r}")
    return ConfiguredRelation(
        name=name,
        entity=_text(raw, "entity", "targetEntity", where=f"{where}.{name}"),
        local_key=_text(raw, "localKey", "local_key", where=f"{where}.{name}"),
        foreign_key=_text(raw, "foreignKey", "foreign_key", where=f"{where}.{name}"),
        type=kind,
    )


def _entity(raw: Any) -> EntityConfig:
    if not isinstance(raw, Mapping):
        raise ConfigInvalid("masterEntities entries must be objects")
    name = _text(raw, "name", where="masterEntities")
    rels = raw.get("relationships") or {}
    if not isinstance(rels, Mapping):
        raise ConfigInvalid(f"{name}: relationships must be an object")
    pk = raw.get("primaryKey", raw.get("primary_key"))
    return EntityConfig(
        name=name,
        primary_key=str(pk) if pk else None,
        relationships=tuple(_relation(str(k), v, name) for k, v in rels.items()),
    )


def parse_relationships(raw: Any) -> tuple[EntityConfig, ...]:
    """Read `{"masterEntities": [...]}`, a bare list of entities, or `{entity: {relation: {...}}}`."""
    if isinstance(raw, Mapping) and "masterEntities" in raw:
        raw = raw["masterEntities"]
    if isinstance(raw, list):
        return tuple(_entity(e) for e in raw)
    if isinstance(raw, Mapping):
        return tuple(_entity({"name": k, "relationships": v}) for k, v in raw.items())
    raise ConfigInvalid("relationship config must be an object or a list")


def load_relationships(path: str | os.PathLike[str]) -> tuple[EntityConfig, ...]:
    p = Path(path)
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigInvalid(f"Cannot read relationship config {p}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigInvalid(f"Invalid JSON in {p}: {e}") from e
    return parse_relationships(raw)
