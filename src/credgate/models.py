"""Canonical Pydantic models shared across all credgate modules.

This is the single source of truth for data shapes in the project. Every other
module imports from here rather than defining its own models. The models fall
into three groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`OAuthServerConfig` and :class:`EngineSettings`.

**OAuth records** -- exchanged with authorization servers and persisted by the
store: :class:`ClientInformation`, :class:`OAuthTokens`,
:class:`AuthorizationServerMetadata`, :class:`ProtectedResourceMetadata` and
the per-target :class:`ServerRecord`.

**Browser extraction models** -- :class:`ExtractionScriptResult` (what the
injected script reports) and :class:`BrowserCredential` (what the engine
hands back).

Records that come from remote servers use ``extra="allow"`` so that fields the
engine does not interpret survive a save/load cycle.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_CALLBACK_PORT = 8080
DEFAULT_CALLBACK_PATH = "/oauth/callback"
DEFAULT_REDIRECT_URI = f"http://localhost:{DEFAULT_CALLBACK_PORT}{DEFAULT_CALLBACK_PATH}"


# --- Configuration ---


class OAuthServerConfig(BaseModel):
    """Configuration of one OAuth-protected target service.

    Endpoints left unset are discovered at runtime from the authorization
    server metadata, or derived from ``server_url`` as a last resort.

    Example::

        OAuthServerConfig(
            name="linear",
            server_url="https://mcp.linear.app",
            default_scopes=["read", "write"],
            scopes=["read", "write"],
        )
    """

    name: str
    server_url: str = Field(description="Base URL of the protected resource")
    well_known_url: Optional[str] = Field(
        default=None,
        description="Authorization server metadata URL (overrides the derived one)",
    )
    authorization_endpoint: Optional[str] = None
    token_endpoint: Optional[str] = None
    registration_endpoint: Optional[str] = None
    client_id: str = Field(
        default="", description="Static client id; empty means dynamic registration"
    )
    client_secret: Optional[str] = None
    client_secret_source: Optional[str] = Field(
        default=None, description="Credential source for the secret: env:VAR or file:/path"
    )
    redirect_uris: list[str] = Field(default_factory=lambda: [DEFAULT_REDIRECT_URI])
    scopes: list[str] = Field(default_factory=list)
    default_scopes: list[str] = Field(default_factory=list)
    supports_resource_metadata: bool = Field(
        default=False,
        description="Whether the target publishes RFC 9728 protected resource metadata",
    )


class EngineSettings(BaseModel):
    """Tunables for the listener, discovery and extraction poll loop.

    Persisted in the global ``config.json`` and overridable through
    ``CREDGATE_*`` environment variables, see
    :func:`~credgate.config.resolve_settings`.
    """

    callback_host: str = Field(default="127.0.0.1", description="Listener bind address")
    callback_port: int = Field(
        default=DEFAULT_CALLBACK_PORT, description="Listener port; 0 lets the OS choose"
    )
    callback_path: str = DEFAULT_CALLBACK_PATH
    listener_timeout: float = Field(
        default=300.0, description="Seconds to wait for the authorization callback"
    )
    discovery_timeout: float = Field(
        default=10.0, description="Per-request timeout for metadata discovery"
    )
    poll_interval: float = Field(
        default=2.0, description="Initial delay between extraction polls"
    )
    poll_backoff: float = Field(default=1.5, description="Poll delay growth factor")
    poll_max_interval: float = Field(default=10.0, description="Poll delay ceiling")
    poll_timeout: float = Field(
        default=300.0, description="Overall extraction deadline in seconds"
    )


# --- OAuth records ---


class ClientInformation(BaseModel):
    """A client identity presented to the authorization server.

    Either statically configured or obtained through RFC 7591 dynamic
    registration (in which case the registration response's extra fields
    are preserved).
    """

    model_config = ConfigDict(extra="allow")

    client_id: str
    client_secret: Optional[str] = None
    client_id_issued_at: Optional[int] = None
    client_secret_expires_at: Optional[int] = None


class OAuthTokens(BaseModel):
    """Token endpoint response as stored for a target.

    The engine treats this as an opaque record: it never refreshes or
    validates expiry itself.
    """

    model_config = ConfigDict(extra="allow")

    access_token: str
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None


class AuthorizationServerMetadata(BaseModel):
    """Subset of RFC 8414 authorization server metadata used by the engine."""

    model_config = ConfigDict(extra="allow")

    issuer: Optional[str] = None
    authorization_endpoint: Optional[str] = None
    token_endpoint: Optional[str] = None
    registration_endpoint: Optional[str] = None
    scopes_supported: list[str] = Field(default_factory=list)
    code_challenge_methods_supported: list[str] = Field(default_factory=list)


class ProtectedResourceMetadata(BaseModel):
    """Subset of RFC 9728 protected resource metadata used by the engine."""

    model_config = ConfigDict(extra="allow")

    resource: Optional[str] = None
    authorization_servers: list[str] = Field(default_factory=list)
    scopes_supported: list[str] = Field(default_factory=list)


class ServerRecord(BaseModel):
    """Everything the store keeps for one target identity.

    ``None`` fields mean "nothing stored". ``env`` holds environment
    variables produced by browser extraction, keyed by variable name.
    """

    model_config = ConfigDict(extra="allow")

    id: str
    oauth_tokens: Optional[OAuthTokens] = None
    oauth_client_info: Optional[ClientInformation] = None
    oauth_server_metadata: Optional[dict[str, Any]] = None
    oauth_resource_metadata: Optional[dict[str, Any]] = None
    env: dict[str, str] = Field(default_factory=dict)


# --- Browser extraction ---


class ExtractionScriptResult(BaseModel):
    """Structured value returned by an injected extraction script.

    ``success=False`` or a missing ``token`` means "not available yet"; the
    engine keeps polling in that case.
    """

    model_config = ConfigDict(extra="ignore")

    success: bool = False
    token: Optional[str] = None
    context: Optional[str] = None
    error: Optional[str] = None


class BrowserCredential(BaseModel):
    """A credential read from an authenticated page of an embedded browser."""

    primary_token: str
    context: Optional[str] = Field(
        default=None, description="Provider-specific context id, e.g. a project ref"
    )
    extracted_from: str = Field(description="URL of the page the token was read on")
