"""In-memory :class:`~credgate.store.base.ServerStore` implementation."""

from __future__ import annotations

from typing import Any, Optional

from credgate.models import ServerRecord
from credgate.store.base import apply_fields


class MemoryServerStore:
    """Dict-backed store, mainly for tests and for embedding the engine.

    Records are copied on the way in and out so that callers cannot mutate
    stored state behind the store's back.

    Example::

        store = MemoryServerStore()
        store.update("linear", {"env": {"LINEAR_TOKEN": "tok"}})
        assert store.get_by_id("linear").env == {"LINEAR_TOKEN": "tok"}
    """

    def __init__(self, records: Optional[dict[str, ServerRecord]] = None) -> None:
        self._records: dict[str, ServerRecord] = {}
        for server_id, record in (records or {}).items():
            self._records[server_id] = record.model_copy(deep=True)

    def get_by_id(self, server_id: str) -> Optional[ServerRecord]:
        record = self._records.get(server_id)
        return record.model_copy(deep=True) if record is not None else None

    def update(self, server_id: str, fields: dict[str, Any]) -> int:
        self._records[server_id] = apply_fields(
            self._records.get(server_id), server_id, fields
        )
        return 1

    def __len__(self) -> int:
        return len(self._records)
