"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for credgate:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.credgate/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_data_dir`, :func:`get_targets_dir`.
* **Global settings** -- A single :class:`~credgate.models.EngineSettings`
  JSON file holding listener, discovery and polling tunables.
* **Targets** -- One JSON file per OAuth-protected service, each
  deserialised into a :class:`~credgate.models.OAuthServerConfig`. Managed
  via :func:`load_target`, :func:`save_target`, :func:`delete_target`.
* **Precedence resolution** -- :func:`resolve_settings` layers
  ``CREDGATE_*`` environment variables over the global file over defaults.
* **Credential resolution** -- :func:`resolve_credential` reads secrets
  from env vars or files.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) so that a crash never leaves a half-written file.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Callable, Optional

from credgate.exceptions import ConfigError
from credgate.models import EngineSettings, OAuthServerConfig

_APP_NAME = "credgate"
_CONFIG_FILENAME = "config.json"

# Environment variable -> (EngineSettings field, converter)
_ENV_OVERRIDES: dict[str, tuple[str, Callable[[str], Any]]] = {
    "CREDGATE_CALLBACK_HOST": ("callback_host", str),
    "CREDGATE_CALLBACK_PORT": ("callback_port", int),
    "CREDGATE_LISTENER_TIMEOUT": ("listener_timeout", float),
    "CREDGATE_DISCOVERY_TIMEOUT": ("discovery_timeout", float),
    "CREDGATE_POLL_TIMEOUT": ("poll_timeout", float),
}


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/credgate/`` (default ``~/.config/credgate/``).
    On macOS/Windows: ``~/.credgate/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (server records, crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/credgate/`` (default ``~/.local/share/credgate/``).
    On macOS/Windows: ``~/.credgate/data/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_targets_dir() -> Path:
    """Return ``<config_dir>/targets/``, creating it if necessary."""
    path = get_config_dir() / "targets"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write *data* to *path* atomically using a temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. On any failure the
    temp file is removed and the original exception re-raised.

    Args:
        path: Destination file.
        data: Text content to write.
        mode: Optional permission bits applied to the temp file before the
            rename (e.g. ``0o600`` for files holding secrets).
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


def _read_json(path: Path, what: str) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        raise ConfigError(f"Invalid {what} at {path}: {exc}") from exc


# --- Global settings ---


def _global_config_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def load_settings() -> EngineSettings:
    """Load engine settings from the global config file.

    Returns:
        The deserialised :class:`~credgate.models.EngineSettings`, or a
        default instance when the file does not exist.

    Raises:
        ConfigError: If the file exists but is not valid JSON or fails
            validation.
    """
    path = _global_config_path()
    if not path.is_file():
        return EngineSettings()
    data = _read_json(path, "global config")
    try:
        return EngineSettings.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_settings(settings: EngineSettings) -> None:
    """Persist engine settings atomically to the global config file."""
    data = settings.model_dump(mode="json")
    atomic_write(_global_config_path(), json.dumps(data, indent=2) + "\n")


def resolve_settings(**overrides: Any) -> EngineSettings:
    """Resolve the effective engine settings.

    Precedence (high to low):
        1. Keyword overrides (CLI flags); ``None`` values are ignored
        2. ``CREDGATE_*`` environment variables
        3. Global config file
        4. Defaults

    Raises:
        ConfigError: If an environment override cannot be converted or the
            global config is invalid.
    """
    data = load_settings().model_dump()

    for env_var, (field, convert) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_var)
        if not raw:
            continue
        try:
            data[field] = convert(raw)
        except ValueError as exc:
            raise ConfigError(f"Invalid value for {env_var}: {raw!r}") from exc

    for key, value in overrides.items():
        if value is not None:
            data[key] = value

    try:
        return EngineSettings.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid engine settings: {exc}") from exc


# --- Targets ---


def _target_path(name: str) -> Path:
    return get_targets_dir() / f"{name}.json"


def list_targets() -> list[str]:
    """Return all configured target names, sorted alphabetically."""
    return sorted(p.stem for p in get_targets_dir().glob("*.json") if p.is_file())


def target_exists(name: str) -> bool:
    return _target_path(name).is_file()


def load_target(name: str) -> OAuthServerConfig:
    """Load and validate a target configuration from disk.

    Args:
        name: Target name (corresponds to ``<name>.json`` in the targets
            directory).

    Raises:
        ConfigError: If the file does not exist, contains invalid JSON, or
            fails validation.
    """
    path = _target_path(name)
    if not path.is_file():
        raise ConfigError(f"Target '{name}' not found at {path}")
    data = _read_json(path, f"target '{name}'")
    try:
        return OAuthServerConfig.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid target '{name}' at {path}: {exc}") from exc


def save_target(target: OAuthServerConfig) -> None:
    """Persist a target atomically; the file name comes from ``target.name``.

    Target files may carry a client secret, so they are written ``0o600``.
    """
    data = target.model_dump(mode="json")
    atomic_write(_target_path(target.name), json.dumps(data, indent=2) + "\n", mode=0o600)


def delete_target(name: str) -> None:
    """Delete a target's JSON file.

    Raises:
        ConfigError: If the target does not exist.
    """
    path = _target_path(name)
    if not path.is_file():
        raise ConfigError(f"Target '{name}' not found at {path}")
    path.unlink()


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace

    Args:
        source: The source descriptor string.

    Returns:
        The resolved credential string.

    Raises:
        ConfigError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read credential file {path}: {exc}") from exc

    raise ConfigError(f"Unknown credential source format: {source}")
