"""CLI tests for the ``target`` and ``auth`` command groups.

Commands run through the real Typer app with config and data directories
redirected into ``tmp_path``. Network and browser work is replaced at the
engine seams (``AuthorizationFlow.run`` and ``PlaywrightContext``).
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from credgate import __version__
from credgate.app import app, register_commands
from credgate.exceptions import AuthorizationFlowError, FlowFailure
from credgate.models import ClientInformation, OAuthTokens
from credgate.store import JsonServerStore

register_commands()

PROJECT_URL = "https://supabase.com/dashboard/project/abcdefghij"


def _add_linear(runner: CliRunner, *extra: str) -> Any:
    return runner.invoke(
        app,
        [
            "target",
            "add",
            "linear",
            "--server-url",
            "https://mcp.linear.app",
            "--default-scope",
            "read",
            "--default-scope",
            "write",
            *extra,
        ],
    )


class TestRoot:
    def test_version(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_commands_registered_once(self) -> None:
        register_commands()
        names = [group.name for group in app.registered_groups]
        assert names.count("target") == 1
        assert names.count("auth") == 1


class TestTargetCommands:
    def test_add_list_show_remove(self, cli_runner: CliRunner, isolated_config: Path) -> None:
        result = _add_linear(cli_runner)
        assert result.exit_code == 0, result.output
        assert "saved" in result.output

        result = cli_runner.invoke(app, ["--json", "target", "list"])
        assert result.exit_code == 0
        rows = json.loads(result.stdout)
        assert rows == [
            {
                "Name": "linear",
                "Server": "https://mcp.linear.app",
                "Client": "dynamic",
                "Scopes": "read write",
            }
        ]

        result = cli_runner.invoke(app, ["--json", "target", "show", "linear"])
        assert result.exit_code == 0
        shown = json.loads(result.stdout)
        assert shown["server_url"] == "https://mcp.linear.app"
        assert shown["default_scopes"] == "read write"

        result = cli_runner.invoke(app, ["target", "remove", "linear"])
        assert result.exit_code == 0
        result = cli_runner.invoke(app, ["target", "show", "linear"])
        assert result.exit_code == 1

    def test_add_existing_requires_force(self, cli_runner: CliRunner, isolated_config: Path) -> None:
        assert _add_linear(cli_runner).exit_code == 0
        result = _add_linear(cli_runner)
        assert result.exit_code == 2
        assert "--force" in result.output
        assert _add_linear(cli_runner, "--force").exit_code == 0

    def test_show_never_prints_secret(self, cli_runner: CliRunner, isolated_config: Path) -> None:
        from credgate.config import save_target
        from credgate.models import OAuthServerConfig

        save_target(
            OAuthServerConfig(
                name="gh",
                server_url="https://api.example.com",
                client_id="Iv1.abc",
                client_secret="super-secret-value",
            )
        )
        result = cli_runner.invoke(app, ["--json", "target", "show", "gh"])
        assert result.exit_code == 0
        assert "super-secret-value" not in result.output
        assert "client_secret\"" not in result.stdout

    def test_list_empty(self, cli_runner: CliRunner, isolated_config: Path) -> None:
        result = cli_runner.invoke(app, ["target", "list"])
        assert result.exit_code == 0
        assert "No targets configured" in result.output

    def test_remove_deletes_stored_credentials(
        self, cli_runner: CliRunner, isolated_config: Path
    ) -> None:
        _add_linear(cli_runner)
        JsonServerStore().update("linear", {"oauth_tokens": OAuthTokens(access_token="at")})

        result = cli_runner.invoke(app, ["target", "remove", "linear"])
        assert result.exit_code == 0
        assert JsonServerStore().get_by_id("linear") is None

    def test_remove_can_keep_credentials(self, cli_runner: CliRunner, isolated_config: Path) -> None:
        _add_linear(cli_runner)
        JsonServerStore().update("linear", {"oauth_tokens": OAuthTokens(access_token="at")})

        result = cli_runner.invoke(app, ["target", "remove", "linear", "--keep-credentials"])
        assert result.exit_code == 0
        assert JsonServerStore().get_by_id("linear") is not None


class TestAuthLogin:
    def test_success(
        self, cli_runner: CliRunner, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        calls: list[Any] = []

        async def fake_run(self: Any) -> OAuthTokens:
            calls.append(self)
            return OAuthTokens(access_token="at-123", scope="read write")

        monkeypatch.setattr("credgate.auth.flow.AuthorizationFlow.run", fake_run)
        _add_linear(cli_runner)

        result = cli_runner.invoke(app, ["auth", "login", "linear", "--port", "0", "--force"])

        assert result.exit_code == 0, result.output
        assert 'Authorized "linear"' in result.output
        [flow] = calls
        assert flow.force is True
        assert flow.coordinator.settings.callback_port == 0
        assert flow.coordinator.server_id == "linear"

    def test_flow_failure_exit_code(
        self, cli_runner: CliRunner, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def fake_run(self: Any) -> OAuthTokens:
            raise AuthorizationFlowError(
                "Authorization failed: access_denied", FlowFailure.AUTHORIZATION_DENIED
            )

        monkeypatch.setattr("credgate.auth.flow.AuthorizationFlow.run", fake_run)
        _add_linear(cli_runner)

        result = cli_runner.invoke(app, ["auth", "login", "linear"])
        assert result.exit_code == 3
        assert "access_denied" in result.output

    def test_unknown_target(self, cli_runner: CliRunner, isolated_config: Path) -> None:
        result = cli_runner.invoke(app, ["auth", "login", "ghost"])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestAuthStatusAndClear:
    def test_status_nothing_stored(self, cli_runner: CliRunner, isolated_config: Path) -> None:
        result = cli_runner.invoke(app, ["auth", "status", "linear"])
        assert result.exit_code == 0
        assert "Nothing stored" in result.output

    def test_status_masks_secrets(self, cli_runner: CliRunner, isolated_config: Path) -> None:
        JsonServerStore().update(
            "linear",
            {
                "oauth_tokens": OAuthTokens(access_token="at-0123456789", refresh_token="rt-secret"),
                "oauth_client_info": ClientInformation(client_id="dyn-1"),
                "env": {"LINEAR_TOKEN": "lin_0123456789"},
            },
        )
        result = cli_runner.invoke(app, ["--json", "auth", "status", "linear"])
        assert result.exit_code == 0
        status = json.loads(result.stdout)
        assert status["access_token"] == "at-0********"
        assert status["refresh_token"] == "stored"
        assert status["client_id"] == "dyn-1"
        assert status["env.LINEAR_TOKEN"] == "lin_********"
        assert "at-0123456789" not in result.output
        assert "rt-secret" not in result.output

    def test_clear(self, cli_runner: CliRunner, isolated_config: Path) -> None:
        _add_linear(cli_runner)
        JsonServerStore().update(
            "linear",
            {
                "oauth_tokens": OAuthTokens(access_token="at"),
                "oauth_client_info": ClientInformation(client_id="dyn-1"),
            },
        )
        result = cli_runner.invoke(app, ["auth", "clear", "linear", "--yes"])
        assert result.exit_code == 0
        record = JsonServerStore().get_by_id("linear")
        assert record is not None
        assert record.oauth_tokens is None
        assert record.oauth_client_info is None

    def test_clear_declined(self, cli_runner: CliRunner, isolated_config: Path) -> None:
        _add_linear(cli_runner)
        JsonServerStore().update("linear", {"oauth_tokens": OAuthTokens(access_token="at")})
        result = cli_runner.invoke(app, ["auth", "clear", "linear"], input="n\n")
        assert result.exit_code == 1
        assert JsonServerStore().get_by_id("linear").oauth_tokens is not None


class _SignedInBrowser:
    """Stands in for PlaywrightContext: the user is already signed in."""

    def __init__(self, guard: Any, headless: bool = False) -> None:
        self.guard = guard
        self.url = ""

    async def __aenter__(self) -> "_SignedInBrowser":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        return None

    @property
    def current_url(self) -> str:
        return self.url

    def is_closed(self) -> bool:
        return False

    async def navigate(self, url: str) -> None:
        # The dashboard redirects a signed-in user straight to a project.
        self.url = PROJECT_URL

    async def evaluate_script(self, script: str) -> Any:
        return {"success": True, "token": "sbp_0123456789abcdef"}


class TestAuthBrowserLogin:
    def test_unknown_provider(self, cli_runner: CliRunner, isolated_config: Path) -> None:
        result = cli_runner.invoke(app, ["auth", "browser-login", "myspace"])
        assert result.exit_code == 2
        assert "supabase" in result.output

    def test_stores_extracted_credential(
        self, cli_runner: CliRunner, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr("credgate.browser.PlaywrightContext", _SignedInBrowser)

        result = cli_runner.invoke(
            app,
            ["--json", "--quiet", "auth", "browser-login", "supabase", "--target", "my-supabase"],
        )

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == {"SUPABASE_ACCESS_TOKEN": "sbp_********"}
        record = JsonServerStore().get_by_id("my-supabase")
        assert record is not None
        assert record.env == {"SUPABASE_ACCESS_TOKEN": "sbp_0123456789abcdef"}

    def test_no_credential_is_auth_failure(
        self, cli_runner: CliRunner, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        class _NoTokenBrowser(_SignedInBrowser):
            async def evaluate_script(self, script: str) -> Any:
                return {"success": False, "error": "not signed in"}

        monkeypatch.setattr("credgate.browser.PlaywrightContext", _NoTokenBrowser)

        result = cli_runner.invoke(
            app, ["auth", "browser-login", "supabase", "--timeout", "0.05"]
        )

        assert result.exit_code == 3
        assert "No credential" in result.output
        assert JsonServerStore().get_by_id("supabase") is None
