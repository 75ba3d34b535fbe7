"""Persistence of per-target OAuth and browser-extraction records.

The engine never talks to a database directly: every component that reads
or writes a :class:`~credgate.models.ServerRecord` receives a
:class:`ServerStore` through its constructor.

Two implementations ship with credgate:

* :class:`JsonServerStore` -- one atomic ``0o600`` JSON file per target
  under the XDG data directory; used by the CLI.
* :class:`MemoryServerStore` -- a dict-backed store for tests and embedding.
"""

from credgate.store.base import RECORD_FIELDS, ServerStore
from credgate.store.json_store import JsonServerStore
from credgate.store.memory import MemoryServerStore

__all__ = ["RECORD_FIELDS", "JsonServerStore", "MemoryServerStore", "ServerStore"]
