from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from ..models import Field, Value


@runtime_checkable
class Sampler(Protocol):
    """What relationship detection needs from a data source."""

    def list_entities(self) -> list[str]: ...

    def list_fields(self, entity: str) -> list[Field]: ...

    def sample_values(self, entity: str, field: str, n: int) -> list[Any]: ...

    def sample_primary_keys(self, entity: str, n: int) -> list[Any]: ...


@runtime_checkable
class DataSource(Sampler, Protocol):
    """A sampler that can also fetch records for graph expansion.

    Every method may raise `SourceError` on transport failure.
    """

    source_tag: str

    def fetch_related(self, entity: str, key: str, value: Any, limit: int) -> list[dict[str, Value]]: ...

    def fetch_by_key(self, entity: str, uid: str) -> dict[str, Value] | None: ...


def primary_key_of(fields: list[Field]) -> str | None:
    for f in fields:
        if f.is_primary_key:
            return f.name
    names = {f.name for f in fields}
    for guess in ("id", "_id", "uuid"):
        if guess in names:
            return guess
    return None
