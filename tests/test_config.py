"""Tests for credgate.config -- XDG paths, atomic writes, targets, precedence."""

from __future__ import annotations

import json
import stat
import sys
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from credgate.config import (
    atomic_write,
    delete_target,
    get_config_dir,
    get_data_dir,
    get_targets_dir,
    list_targets,
    load_settings,
    load_target,
    resolve_credential,
    resolve_settings,
    save_settings,
    save_target,
    target_exists,
)
from credgate.exceptions import ConfigError
from credgate.models import EngineSettings, OAuthServerConfig


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_json(path: Path, data: Any) -> None:
    """Write a dict as JSON to *path*, creating parent dirs."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def _make_target(name: str = "linear", server_url: str = "https://mcp.linear.app") -> OAuthServerConfig:
    return OAuthServerConfig(name=name, server_url=server_url, default_scopes=["read"])


# ---------------------------------------------------------------------------
# XDG path resolution
# ---------------------------------------------------------------------------


class TestXDGPathsLinux:
    """XDG paths on Linux (the default XDG platform)."""

    def test_config_dir_xdg_default(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("credgate.config._is_xdg_platform", lambda: True)
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))

        result = get_config_dir()
        assert result == tmp_path / ".config" / "credgate"
        assert result.is_dir()

    def test_config_dir_xdg_custom(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        custom = tmp_path / "custom_config"
        monkeypatch.setattr("credgate.config._is_xdg_platform", lambda: True)
        monkeypatch.setenv("XDG_CONFIG_HOME", str(custom))

        assert get_config_dir() == custom / "credgate"

    def test_data_dir_xdg_default(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("credgate.config._is_xdg_platform", lambda: True)
        monkeypatch.delenv("XDG_DATA_HOME", raising=False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))

        result = get_data_dir()
        assert result == tmp_path / ".local" / "share" / "credgate"
        assert result.is_dir()


class TestXDGPathsFallback:
    """Fallback paths on non-XDG platforms (macOS, Windows)."""

    def test_config_dir_fallback(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("credgate.config._is_xdg_platform", lambda: False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))

        assert get_config_dir() == tmp_path / ".credgate"

    def test_data_dir_fallback(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("credgate.config._is_xdg_platform", lambda: False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))

        result = get_data_dir()
        assert result == tmp_path / ".credgate" / "data"
        assert result.is_dir()


class TestTargetsDir:
    def test_targets_dir_is_inside_config_dir(self, isolated_config: Path) -> None:
        result = get_targets_dir()
        assert result == isolated_config / "config" / "credgate" / "targets"
        assert result.is_dir()


# ---------------------------------------------------------------------------
# Atomic writes
# ---------------------------------------------------------------------------


class TestAtomicWrite:
    def test_creates_file_with_content(self, tmp_path: Path) -> None:
        target = tmp_path / "test.txt"
        atomic_write(target, "hello world")
        assert target.read_text(encoding="utf-8") == "hello world"

    def test_overwrites_existing_file(self, tmp_path: Path) -> None:
        target = tmp_path / "test.txt"
        target.write_text("old content", encoding="utf-8")
        atomic_write(target, "new content")
        assert target.read_text(encoding="utf-8") == "new content"

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b" / "test.txt"
        atomic_write(target, "deep write")
        assert target.read_text(encoding="utf-8") == "deep write"

    def test_no_temp_files_left_on_error(self, tmp_path: Path) -> None:
        target = tmp_path / "test.txt"
        with patch("credgate.config.os.fsync", side_effect=OSError("disk error")):
            with pytest.raises(OSError, match="disk error"):
                atomic_write(target, "will fail")
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_mode_applied(self, tmp_path: Path) -> None:
        target = tmp_path / "secret.json"
        atomic_write(target, "{}", mode=0o600)
        assert stat.S_IMODE(target.stat().st_mode) == 0o600


# ---------------------------------------------------------------------------
# Engine settings
# ---------------------------------------------------------------------------


class TestSettings:
    def test_defaults_when_missing(self, isolated_config: Path) -> None:
        assert load_settings() == EngineSettings()

    def test_save_and_load_roundtrip(self, isolated_config: Path) -> None:
        save_settings(EngineSettings(callback_port=9090, poll_timeout=60))
        loaded = load_settings()
        assert loaded.callback_port == 9090
        assert loaded.poll_timeout == 60

    def test_invalid_json_raises(self, isolated_config: Path) -> None:
        (get_config_dir() / "config.json").write_text("{broken", encoding="utf-8")
        with pytest.raises(ConfigError, match="Invalid global config"):
            load_settings()

    def test_invalid_schema_raises(self, isolated_config: Path) -> None:
        _write_json(get_config_dir() / "config.json", {"callback_port": "not-a-port"})
        with pytest.raises(ConfigError):
            load_settings()


class TestResolveSettings:
    def test_file_over_defaults(self, isolated_config: Path) -> None:
        save_settings(EngineSettings(listener_timeout=42))
        assert resolve_settings().listener_timeout == 42

    def test_env_over_file(self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        save_settings(EngineSettings(callback_port=9090))
        monkeypatch.setenv("CREDGATE_CALLBACK_PORT", "9191")
        monkeypatch.setenv("CREDGATE_POLL_TIMEOUT", "12.5")
        settings = resolve_settings()
        assert settings.callback_port == 9191
        assert settings.poll_timeout == 12.5

    def test_overrides_over_env(self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CREDGATE_CALLBACK_PORT", "9191")
        assert resolve_settings(callback_port=0).callback_port == 0

    def test_none_override_ignored(self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CREDGATE_LISTENER_TIMEOUT", "30")
        assert resolve_settings(listener_timeout=None).listener_timeout == 30

    def test_bad_env_value_raises(self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CREDGATE_CALLBACK_PORT", "eighty")
        with pytest.raises(ConfigError, match="CREDGATE_CALLBACK_PORT"):
            resolve_settings()


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------


class TestTargets:
    def test_list_empty(self, isolated_config: Path) -> None:
        assert list_targets() == []

    def test_save_list_load(self, isolated_config: Path) -> None:
        save_target(_make_target("linear"))
        save_target(_make_target("asana", "https://mcp.asana.com"))
        assert list_targets() == ["asana", "linear"]
        assert target_exists("linear")
        loaded = load_target("linear")
        assert loaded.server_url == "https://mcp.linear.app"
        assert loaded.default_scopes == ["read"]

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_target_file_is_owner_only(self, isolated_config: Path) -> None:
        save_target(_make_target())
        mode = stat.S_IMODE((get_targets_dir() / "linear.json").stat().st_mode)
        assert mode == 0o600

    def test_load_nonexistent_raises(self, isolated_config: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_target("ghost")

    def test_load_invalid_json_raises(self, isolated_config: Path) -> None:
        (get_targets_dir() / "bad.json").write_text("{nope", encoding="utf-8")
        with pytest.raises(ConfigError, match="Invalid target"):
            load_target("bad")

    def test_load_invalid_schema_raises(self, isolated_config: Path) -> None:
        _write_json(get_targets_dir() / "bad.json", {"name": "bad"})
        with pytest.raises(ConfigError, match="Invalid target 'bad'"):
            load_target("bad")

    def test_delete(self, isolated_config: Path) -> None:
        save_target(_make_target())
        delete_target("linear")
        assert not target_exists("linear")
        with pytest.raises(ConfigError):
            delete_target("linear")

    def test_list_ignores_non_json(self, isolated_config: Path) -> None:
        save_target(_make_target())
        (get_targets_dir() / "notes.txt").write_text("hi", encoding="utf-8")
        assert list_targets() == ["linear"]


# ---------------------------------------------------------------------------
# Credential resolution
# ---------------------------------------------------------------------------


class TestResolveCredential:
    def test_env_source(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MY_TOKEN", "secret123")
        assert resolve_credential("env:MY_TOKEN") == "secret123"

    def test_env_source_missing_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NONEXISTENT_VAR", raising=False)
        with pytest.raises(ConfigError, match="not set"):
            resolve_credential("env:NONEXISTENT_VAR")

    def test_file_source(self, tmp_path: Path) -> None:
        cred_file = tmp_path / "token.txt"
        cred_file.write_text("  my-secret-token  \n", encoding="utf-8")
        assert resolve_credential(f"file:{cred_file}") == "my-secret-token"

    def test_file_source_missing_raises(self) -> None:
        with pytest.raises(ConfigError, match="not found"):
            resolve_credential("file:/nonexistent/path/token.txt")

    def test_file_source_home_expansion(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HOME", str(tmp_path))
        (tmp_path / ".secret").write_text("expanded-secret", encoding="utf-8")
        assert resolve_credential("file:~/.secret") == "expanded-secret"

    @pytest.mark.parametrize("source", ["magic:wand", "prompt", "keyring:svc:acct"])
    def test_unknown_source_raises(self, source: str) -> None:
        with pytest.raises(ConfigError, match="Unknown credential source"):
            resolve_credential(source)
