"""Shared test fixtures for credgate.

Provides isolated config directories, output state management, sample
target configurations, an in-memory store and a CLI runner. These
fixtures are discovered by pytest and available to all test modules
without explicit imports.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from credgate.models import EngineSettings, OAuthServerConfig
from credgate.output import OutputFormat, OutputManager, reset_output, set_output
from credgate.store import MemoryServerStore


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams the cached
    references go stale, so a fresh manager is created on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG_CONFIG_HOME and XDG_DATA_HOME at tmp_path and clear CREDGATE_* vars.

    Returns:
        The tmp_path root directory.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("credgate.config._is_xdg_platform", lambda: True)

    for var in [
        "CREDGATE_CALLBACK_HOST",
        "CREDGATE_CALLBACK_PORT",
        "CREDGATE_LISTENER_TIMEOUT",
        "CREDGATE_DISCOVERY_TIMEOUT",
        "CREDGATE_POLL_TIMEOUT",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_config() -> OAuthServerConfig:
    """A target with default scopes and no static client."""
    return OAuthServerConfig(
        name="example",
        server_url="https://mcp.example.com",
        default_scopes=["read", "write"],
        scopes=["read", "write"],
    )


@pytest.fixture
def memory_store() -> MemoryServerStore:
    return MemoryServerStore()


@pytest.fixture
def fast_settings() -> EngineSettings:
    """Settings with an OS-assigned port and short timeouts."""
    return EngineSettings(
        callback_port=0,
        listener_timeout=5.0,
        discovery_timeout=1.0,
        poll_interval=0.01,
        poll_backoff=2.0,
        poll_max_interval=0.05,
        poll_timeout=1.0,
    )


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def json_output() -> OutputManager:
    output = OutputManager(format=OutputFormat.JSON)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner capturing stdout/stderr."""
    from typer.testing import CliRunner

    return CliRunner()
