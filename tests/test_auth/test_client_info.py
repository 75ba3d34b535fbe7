"""Tests for the client identity strategy chain."""

from __future__ import annotations

from typing import Any

import pytest

from credgate.auth.client_info import (
    DEFAULT_STRATEGIES,
    CachedRegistrationStrategy,
    StaticClientStrategy,
    resolve_client_information,
    save_client_information,
)
from credgate.models import ClientInformation, OAuthServerConfig, ServerRecord
from credgate.store import MemoryServerStore


def _make_config(**kwargs: Any) -> OAuthServerConfig:
    defaults: dict[str, Any] = {"name": "example", "server_url": "https://mcp.example.com"}
    defaults.update(kwargs)
    return OAuthServerConfig(**defaults)


def _store_with_cached(client_id: str = "dyn-123", secret: str | None = None) -> MemoryServerStore:
    return MemoryServerStore(
        {
            "example": ServerRecord(
                id="example",
                oauth_client_info=ClientInformation(client_id=client_id, client_secret=secret),
            )
        }
    )


class _FailingStore:
    def get_by_id(self, server_id: str) -> None:
        raise RuntimeError("database unavailable")

    def update(self, server_id: str, fields: dict[str, Any]) -> int:
        raise RuntimeError("database unavailable")


class TestDefaultStrategies:
    def test_order_is_static_then_cached(self) -> None:
        assert [type(s) for s in DEFAULT_STRATEGIES] == [
            StaticClientStrategy,
            CachedRegistrationStrategy,
        ]
        assert [s.name for s in DEFAULT_STRATEGIES] == ["static", "cached_registration"]


class TestResolveClientInformation:
    def test_static_client_wins_over_cached_registration(self) -> None:
        config = _make_config(client_id="static-id", client_secret="shh")
        info = resolve_client_information(config, "example", _store_with_cached())
        assert info is not None
        assert info.client_id == "static-id"
        assert info.client_secret == "shh"

    @pytest.mark.parametrize("static_id", ["a", "static-id", "Iv1.0123456789abcdef"])
    def test_any_non_empty_static_id_shadows_cache(self, static_id: str) -> None:
        info = resolve_client_information(
            _make_config(client_id=static_id), "example", _store_with_cached("cached")
        )
        assert info is not None and info.client_id == static_id

    def test_static_secret_from_source(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("EXAMPLE_SECRET", "from-env")
        config = _make_config(client_id="static-id", client_secret_source="env:EXAMPLE_SECRET")
        info = resolve_client_information(config, "example", MemoryServerStore())
        assert info is not None and info.client_secret == "from-env"

    def test_cached_registration_used_without_static_id(self) -> None:
        info = resolve_client_information(
            _make_config(), "example", _store_with_cached("dyn-123", "dyn-secret")
        )
        assert info == ClientInformation(client_id="dyn-123", client_secret="dyn-secret")

    def test_nothing_configured_or_cached_returns_none(self) -> None:
        assert resolve_client_information(_make_config(), "example", MemoryServerStore()) is None

    def test_store_read_failure_degrades_to_none(self) -> None:
        assert resolve_client_information(_make_config(), "example", _FailingStore()) is None

    def test_custom_strategy_list(self) -> None:
        """Only the strategies given are consulted."""
        info = resolve_client_information(
            _make_config(client_id="static-id"),
            "example",
            _store_with_cached("cached"),
            strategies=[CachedRegistrationStrategy()],
        )
        assert info is not None and info.client_id == "cached"


class TestSaveClientInformation:
    def test_persists_through_store(self) -> None:
        store = MemoryServerStore()
        save_client_information("example", ClientInformation(client_id="new"), store)
        record = store.get_by_id("example")
        assert record is not None
        assert record.oauth_client_info is not None
        assert record.oauth_client_info.client_id == "new"

    def test_write_failure_propagates(self) -> None:
        with pytest.raises(RuntimeError, match="database unavailable"):
            save_client_information("example", ClientInformation(client_id="new"), _FailingStore())
