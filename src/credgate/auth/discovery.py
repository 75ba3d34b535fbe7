"""Scope discovery from protected-resource and authorization-server metadata.

The scopes requested for a target come from the first source in an ordered
list that yields a non-empty set:

1. :class:`ResourceMetadataSource` -- :rfc:`9728` protected resource
   metadata, only for targets that declare support for it.
2. :class:`AuthorizationServerMetadataSource` -- :rfc:`8414` authorization
   server metadata.
3. :class:`DefaultScopesSource` -- the target's configured defaults.

Discovery is best effort. Network errors, non-2xx responses and malformed
documents are logged and treated as "no result"; nothing here raises.
Metadata documents fetched along the way are kept on the
:class:`DiscoveryResult` so that the flow can reuse their endpoints.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence, TypeVar
from urllib.parse import urlsplit

import httpx
from pydantic import BaseModel, ValidationError

from credgate.models import (
    AuthorizationServerMetadata,
    OAuthServerConfig,
    ProtectedResourceMetadata,
)

logger = logging.getLogger(__name__)

_ModelT = TypeVar("_ModelT", bound=BaseModel)

RESOURCE_METADATA_PATH = "/.well-known/oauth-protected-resource"
SERVER_METADATA_PATH = "/.well-known/oauth-authorization-server"


@dataclass
class DiscoveryResult:
    """Outcome of a discovery pass.

    Attributes:
        scopes: The winning scope list (may be empty when no source,
            including the configured defaults, produced any).
        source: Name of the source that produced *scopes*, or ``None``.
        resource_metadata: Protected resource metadata, if fetched.
        server_metadata: Authorization server metadata, if fetched.
    """

    scopes: list[str] = field(default_factory=list)
    source: Optional[str] = None
    resource_metadata: Optional[ProtectedResourceMetadata] = None
    server_metadata: Optional[AuthorizationServerMetadata] = None


def scopes_equal(a: Sequence[str], b: Sequence[str]) -> bool:
    """Order-insensitive scope comparison on sorted copies."""
    return sorted(a) == sorted(b)


def resource_metadata_urls(server_url: str) -> list[str]:
    """Candidate protected resource metadata URLs for *server_url*.

    The path-aware form (``/.well-known/oauth-protected-resource/<path>``)
    comes first, the root form second.
    """
    parts = urlsplit(server_url)
    origin = f"{parts.scheme}://{parts.netloc}"
    path = parts.path.rstrip("/")
    urls = []
    if path:
        urls.append(f"{origin}{RESOURCE_METADATA_PATH}{path}")
    urls.append(f"{origin}{RESOURCE_METADATA_PATH}")
    return urls


def server_metadata_url(config: OAuthServerConfig, issuer: Optional[str] = None) -> str:
    """Authorization server metadata URL: explicit override, then *issuer*, then the server."""
    if config.well_known_url:
        return config.well_known_url
    base = issuer if issuer else config.server_url
    return f"{base.rstrip('/')}{SERVER_METADATA_PATH}"


async def fetch_document(
    http: httpx.AsyncClient, url: str, model: type[_ModelT], timeout: float
) -> Optional[_ModelT]:
    """GET *url* and validate the JSON body as *model*.

    Returns:
        The validated document, or ``None`` on any failure.
    """
    try:
        response = await http.get(
            url, headers={"Accept": "application/json"}, timeout=timeout
        )
        response.raise_for_status()
        return model.model_validate(response.json())
    except httpx.HTTPStatusError as exc:
        logger.info("Metadata discovery at %s returned %s", url, exc.response.status_code)
    except httpx.HTTPError as exc:
        logger.info("Metadata discovery at %s failed: %s", url, exc)
    except (ValueError, ValidationError) as exc:
        logger.info("Metadata document at %s is malformed: %s", url, exc)
    return None


class ScopeSource(Protocol):
    name: str

    async def discover(
        self,
        config: OAuthServerConfig,
        http: httpx.AsyncClient,
        result: DiscoveryResult,
        timeout: float,
    ) -> list[str]: ...


class ResourceMetadataSource:
    """Scopes advertised in the target's protected resource metadata."""

    name = "resource_metadata"

    async def discover(
        self,
        config: OAuthServerConfig,
        http: httpx.AsyncClient,
        result: DiscoveryResult,
        timeout: float,
    ) -> list[str]:
        if not config.supports_resource_metadata:
            return []
        for url in resource_metadata_urls(config.server_url):
            document = await fetch_document(http, url, ProtectedResourceMetadata, timeout)
            if document is not None:
                result.resource_metadata = document
                return list(document.scopes_supported)
        return []


class AuthorizationServerMetadataSource:
    """Scopes advertised in the authorization server metadata.

    When protected resource metadata named an authorization server, that
    issuer's metadata is consulted instead of the resource server's.
    """

    name = "authorization_server_metadata"

    async def discover(
        self,
        config: OAuthServerConfig,
        http: httpx.AsyncClient,
        result: DiscoveryResult,
        timeout: float,
    ) -> list[str]:
        issuer = None
        if result.resource_metadata and result.resource_metadata.authorization_servers:
            issuer = result.resource_metadata.authorization_servers[0]
        url = server_metadata_url(config, issuer)
        document = await fetch_document(http, url, AuthorizationServerMetadata, timeout)
        if document is None:
            return []
        result.server_metadata = document
        return list(document.scopes_supported)


class DefaultScopesSource:
    name = "default_scopes"

    async def discover(
        self,
        config: OAuthServerConfig,
        http: httpx.AsyncClient,
        result: DiscoveryResult,
        timeout: float,
    ) -> list[str]:
        return list(config.default_scopes)


DEFAULT_SOURCES: tuple[ScopeSource, ...] = (
    ResourceMetadataSource(),
    AuthorizationServerMetadataSource(),
    DefaultScopesSource(),
)


class ScopeDiscoveryResolver:
    """Evaluate scope sources in order; the first non-empty list wins.

    Args:
        sources: Ordered scope sources. Defaults to :data:`DEFAULT_SOURCES`.
        timeout: Per-request timeout in seconds.

    Example::

        async with httpx.AsyncClient() as http:
            result = await ScopeDiscoveryResolver().resolve(config, http)
        print(result.source, result.scopes)
    """

    def __init__(
        self, sources: Sequence[ScopeSource] = DEFAULT_SOURCES, timeout: float = 10.0
    ) -> None:
        self.sources = tuple(sources)
        self.timeout = timeout

    async def resolve(
        self, config: OAuthServerConfig, http: httpx.AsyncClient
    ) -> DiscoveryResult:
        logger.info("Discovering OAuth scopes for %s", config.server_url)
        result = DiscoveryResult()
        for source in self.sources:
            try:
                scopes = await source.discover(config, http, result, self.timeout)
            except Exception as exc:
                logger.info("Scope source %s failed: %s", source.name, exc)
                continue
            if scopes:
                result.scopes = scopes
                result.source = source.name
                logger.info("Using scopes from %s: %s", source.name, " ".join(scopes))
                return result
        logger.info("No scopes discovered for %s", config.server_url)
        return result
