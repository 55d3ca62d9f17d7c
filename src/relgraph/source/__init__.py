"""Data-source collaborators.

The core only talks to the `Sampler` / `DataSource` protocols; `SqliteSource`
is the bundled reference adapter.
"""

from .base import DataSource, Sampler, primary_key_of
from .sqlite_source import SqliteSource, connect

__all__ = ["DataSource", "Sampler", "SqliteSource", "connect", "primary_key_of"]
