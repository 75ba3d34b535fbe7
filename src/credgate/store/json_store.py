"""File-backed server store.

Stores one record per target in ``~/.local/share/credgate/servers/<id>.json``
(XDG) or the platform-equivalent directory. Files are written atomically
through :func:`~credgate.config.atomic_write` with ``0o600`` permissions so
that tokens and client secrets are never world-readable, even momentarily.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Optional

from credgate.config import atomic_write, get_data_dir
from credgate.exceptions import ConfigError
from credgate.models import ServerRecord
from credgate.store.base import apply_fields

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class JsonServerStore:
    """Read/write server records as JSON files.

    Args:
        directory: Where record files live. Defaults to
            ``get_data_dir() / "servers"``.

    Example::

        store = JsonServerStore()
        store.update("linear", {"oauth_tokens": tokens})
        record = store.get_by_id("linear")
    """

    def __init__(self, directory: Optional[Path] = None) -> None:
        self._directory = directory if directory is not None else get_data_dir() / "servers"

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, server_id: str) -> Path:
        """Return the record file path for *server_id*.

        Raises:
            ConfigError: If the id cannot be used as a file name.
        """
        if not _SAFE_ID.match(server_id):
            raise ConfigError(f"Invalid server id for file storage: {server_id!r}")
        return self._directory / f"{server_id}.json"

    def get_by_id(self, server_id: str) -> Optional[ServerRecord]:
        """Load the record for *server_id*.

        Returns:
            The stored record, or ``None`` if no file exists.

        Raises:
            ConfigError: If the file exists but is corrupt.
        """
        path = self.path_for(server_id)
        if not path.is_file():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return ServerRecord.model_validate(data)
        except (json.JSONDecodeError, ValueError, OSError) as exc:
            raise ConfigError(f"Corrupt server record at {path}: {exc}") from exc

    def update(self, server_id: str, fields: dict[str, Any]) -> int:
        """Upsert *fields* into the record for *server_id*.

        Returns:
            Always ``1``: a missing record is created.

        Raises:
            OSError: If the file cannot be written.
        """
        record = apply_fields(self.get_by_id(server_id), server_id, fields)
        text = json.dumps(record.model_dump(mode="json"), indent=2) + "\n"
        atomic_write(self.path_for(server_id), text, mode=0o600)
        logger.debug("Updated %s for server %s", ", ".join(sorted(fields)), server_id)
        return 1

    def delete(self, server_id: str) -> bool:
        """Remove the record file. Returns ``True`` if one existed."""
        path = self.path_for(server_id)
        if not path.is_file():
            return False
        path.unlink()
        return True
