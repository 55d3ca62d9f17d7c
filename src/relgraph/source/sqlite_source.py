from __future__ import annotations

import os
import sqlite3
import threading
from pathlib import Path
from typing import Any

from ..errors import SamplingUnavailable, SourceError
from ..models import Field, Value, to_record
from .base import primary_key_of


def connect(db_path: str | os.PathLike[str]) -> sqlite3.Connection:
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    # Sibling fetches may run on worker threads; access is serialized below.
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


def _quote(ident: str) -> str:
    return '"' + ident.replace('"', '""') + '"'


def _column(name: str) -> str:
    return "rowid" if name == "rowid" else _quote(name)


class SqliteSource:
    """Relational data source over a SQLite connection.

    Tables are entities, columns are fields. Identifiers are checked against
    the live schema before they are interpolated into SQL.
    """

    source_tag = "relational"

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._lock = threading.Lock()

    def _query(self, sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        with self._lock:
            cur = self.conn.execute(sql, params)
            cols = [d[0] for d in cur.description or ()]
            return [dict(zip(cols, tuple(r))) for r in cur.fetchall()]

    def list_entities(self) -> list[str]:
        try:
            rows = self._query(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
            )
        except sqlite3.Error as e:
            raise SourceError(f"Failed to list tables: {e}") from e
        return [str(r["name"]) for r in rows]

    def _require_entity(self, entity: str) -> None:
        if entity not in self.list_entities():
            raise SamplingUnavailable(f"Unknown entity: {entity}")

    def list_fields(self, entity: str) -> list[Field]:
        self._require_entity(entity)
        try:
            cols = self._query(f"PRAGMA table_info({_quote(entity)})")
            fks = self._query(f"PRAGMA foreign_key_list({_quote(entity)})")
        except sqlite3.Error as e:
            raise SourceError(f"Failed to introspect {entity}: {e}") from e

        # PRAGMA foreign_key_list leaves "to" NULL when the parent's PK is implied.
        fk_by_col: dict[str, tuple[str, str | None]] = {}
        for fk in fks:
            fk_by_col[str(fk["from"])] = (str(fk["table"]), fk["to"])

        out: list[Field] = []
        for c in cols:
            name = str(c["name"])
            ref = fk_by_col.get(name)
            out.append(
                Field(
                    name=name,
                    type=str(c["type"] or ""),
                    nullable=not bool(c["notnull"]) and not bool(c["pk"]),
                    is_primary_key=bool(c["pk"]),
                    is_foreign_key=ref is not None,
                    referenced_entity=ref[0] if ref else None,
                    referenced_key=(str(ref[1]) if ref and ref[1] is not None else None),
                )
            )
        # Keyless tables are addressed by rowid, so it is listed as their key.
        if primary_key_of(out) is None and "rowid" not in {f.name for f in out}:
            out.insert(0, Field(name="rowid", type="INTEGER", nullable=False, is_primary_key=True))
        return out

    def primary_key(self, entity: str) -> str:
        pk = primary_key_of(self.list_fields(entity))
        return pk or "rowid"

    def _select(self, entity: str) -> str:
        if self.primary_key(entity) == "rowid":
            return f"SELECT rowid AS rowid, * FROM {_quote(entity)}"
        return f"SELECT * FROM {_quote(entity)}"

    def sample_values(self, entity: str, field: str, n: int) -> list[Any]:
        names = {f.name for f in self.list_fields(entity)}
        if field not in names:
            raise SamplingUnavailable(f"Unknown field: {entity}.{field}")
        try:
            rows = self._query(
                f"SELECT {_column(field)} AS v FROM {_quote(entity)} WHERE {_column(field)} IS NOT NULL ORDER BY rowid LIMIT ?",
                (int(n),),
            )
        except sqlite3.Error as e:
            raise SamplingUnavailable(f"Cannot sample {entity}.{field}: {e}") from e
        return [r["v"] for r in rows]

    def sample_primary_keys(self, entity: str, n: int) -> list[Any]:
        pk = self.primary_key(entity)
        try:
            rows = self._query(
                f"SELECT {_column(pk)} AS v FROM {_quote(entity)} ORDER BY rowid LIMIT ?",
                (int(n),),
            )
        except sqlite3.Error as e:
            raise SamplingUnavailable(f"Cannot sample keys of {entity}: {e}") from e
        return [r["v"] for r in rows if r["v"] is not None]

    def fetch_related(self, entity: str, key: str, value: Any, limit: int) -> list[dict[str, Value]]:
        try:
            names = {f.name for f in self.list_fields(entity)}
        except SamplingUnavailable as e:
            raise SourceError(str(e)) from e
        if key not in names:
            raise SourceError(f"Unknown field: {entity}.{key}")
        try:
            rows = self._query(
                f"{self._select(entity)} WHERE {_column(key)} = ? ORDER BY rowid LIMIT ?",
                (value, int(limit)),
            )
        except sqlite3.Error as e:
            raise SourceError(f"Failed to fetch {entity} by {key}: {e}") from e
        return [to_record(r) for r in rows]

    def fetch_by_key(self, entity: str, uid: str) -> dict[str, Value] | None:
        if entity not in self.list_entities():
            return None
        pk = self.primary_key(entity)
        try:
            rows = self._query(f"{self._select(entity)} WHERE {_column(pk)} = ? LIMIT 1", (uid,))
        except sqlite3.Error as e:
            raise SourceError(f"Failed to fetch {entity}:{uid}: {e}") from e
        if not rows:
            return None
        return to_record(rows[0])
