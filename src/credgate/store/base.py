"""The persistence contract used by the auth and browser components.

A store exposes exactly two operations:

- ``get_by_id(server_id)`` returns the :class:`~credgate.models.ServerRecord`
  for a target identity, or ``None`` when nothing is stored.
- ``update(server_id, fields)`` writes a subset of record fields and returns
  the number of affected records.

Values in *fields* may be Pydantic models, plain dicts or ``None`` (which
clears the field). Implementations must not swallow write failures: the
caller decides whether a failed write is fatal.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from credgate.models import ServerRecord

RECORD_FIELDS = frozenset(
    {
        "oauth_tokens",
        "oauth_client_info",
        "oauth_server_metadata",
        "oauth_resource_metadata",
        "env",
    }
)
"""Field names accepted by :meth:`ServerStore.update`."""


@runtime_checkable
class ServerStore(Protocol):
    """Read/update access to per-target records."""

    def get_by_id(self, server_id: str) -> Optional[ServerRecord]: ...

    def update(self, server_id: str, fields: dict[str, Any]) -> int: ...


def apply_fields(
    record: Optional[ServerRecord], server_id: str, fields: dict[str, Any]
) -> ServerRecord:
    """Return a new record with *fields* applied on top of *record*.

    Raises:
        ValueError: If *fields* names something that is not a record field.
    """
    unknown = set(fields) - RECORD_FIELDS
    if unknown:
        raise ValueError(f"Unknown record field(s): {', '.join(sorted(unknown))}")

    data = record.model_dump(mode="json") if record is not None else {"id": server_id}
    for key, value in fields.items():
        if hasattr(value, "model_dump"):
            value = value.model_dump(mode="json", exclude_none=True)
        if key == "env" and value is None:
            value = {}
        data[key] = value
    return ServerRecord.model_validate(data)
