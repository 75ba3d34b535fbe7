"""Per-target authorization session: the surface an OAuth client drives.

:class:`OAuthSessionCoordinator` owns everything volatile about one
authorization attempt for one target identity -- the PKCE verifier, the
outstanding authorization code and the callback listener -- and delegates
everything durable to an injected :class:`~credgate.store.base.ServerStore`.

The method set mirrors what an OAuth client library expects from a
"client provider": redirect URL, client metadata, client information,
tokens, code verifier and a hook that sends the user to the authorization
URL. :class:`~credgate.auth.flow.AuthorizationFlow` is the in-tree driver.

Secrets never outlive the attempt: the code and verifier are discarded on
success (by the driver), on every failure inside
:meth:`~OAuthSessionCoordinator.begin_authorization`, and on
:meth:`~OAuthSessionCoordinator.clear`.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Optional, Sequence

import httpx

from credgate.auth.client_info import (
    DEFAULT_STRATEGIES,
    ClientInfoStrategy,
    resolve_client_information,
    save_client_information,
)
from credgate.auth.discovery import ScopeDiscoveryResolver, scopes_equal
from credgate.auth.launcher import Launcher, open_browser
from credgate.auth.listener import CallbackListener
from credgate.auth.pkce import VerifierStore, generate_state
from credgate.exceptions import AuthorizationFlowError, FlowFailure
from credgate.models import (
    AuthorizationServerMetadata,
    ClientInformation,
    EngineSettings,
    OAuthServerConfig,
    OAuthTokens,
    ProtectedResourceMetadata,
)
from credgate.store.base import ServerStore

logger = logging.getLogger(__name__)


def server_storage_key(server_url: str) -> str:
    """Stable short key for a server URL: first 16 hex chars of its SHA-256."""
    return hashlib.sha256(server_url.encode("utf-8")).hexdigest()[:16]


class OAuthSessionCoordinator:
    """Coordinate one target's OAuth authorization session.

    Args:
        config: Target configuration. The coordinator works on a copy, so
            scope updates from discovery never leak into the caller's object.
        server_id: Target identity; keys both the store record and the
            verifier.
        store: Persistence for tokens, client registrations and metadata.
        settings: Listener and discovery tunables.
        verifier_store: Where PKCE verifiers live. A private store is
            created when omitted.
        launcher: Async callable opening the authorization URL.
        http_client: Client used for discovery. A short-lived client is
            created per call when omitted.
        discovery: Scope resolver; defaults to the standard source order.
        client_strategies: Client identity chain.
    """

    def __init__(
        self,
        config: OAuthServerConfig,
        server_id: str,
        store: ServerStore,
        *,
        settings: Optional[EngineSettings] = None,
        verifier_store: Optional[VerifierStore] = None,
        launcher: Launcher = open_browser,
        http_client: Optional[httpx.AsyncClient] = None,
        discovery: Optional[ScopeDiscoveryResolver] = None,
        client_strategies: Sequence[ClientInfoStrategy] = DEFAULT_STRATEGIES,
    ) -> None:
        self.config = config.model_copy(deep=True)
        self.server_id = server_id
        self.store = store
        self.settings = settings or EngineSettings()
        self.verifiers = verifier_store if verifier_store is not None else VerifierStore()
        self.http_client = http_client
        self._launcher = launcher
        self._discovery = discovery or ScopeDiscoveryResolver(
            timeout=self.settings.discovery_timeout
        )
        self._client_strategies = tuple(client_strategies)
        self._server_key = server_storage_key(config.server_url)
        self._listener: Optional[CallbackListener] = None
        self._authorization_code: Optional[str] = None
        self._issued_state: Optional[str] = None
        self.server_metadata: Optional[AuthorizationServerMetadata] = None
        self.resource_metadata: Optional[ProtectedResourceMetadata] = None

    # --- discovery ---

    async def initialize(self) -> None:
        """Discover scopes and metadata. Never raises.

        The configured scopes are replaced when discovery yields a set that
        differs from them (order-insensitive). Metadata documents are kept
        in memory for the flow driver.
        """
        logger.info("Server: %s", self.config.server_url)
        logger.info("Server key: %s", self._server_key)
        logger.info("Configured scopes: %s", " ".join(self.config.scopes) or "(none)")
        try:
            if self.http_client is not None:
                result = await self._discovery.resolve(self.config, self.http_client)
            else:
                async with httpx.AsyncClient(follow_redirects=True) as http:
                    result = await self._discovery.resolve(self.config, http)
        except Exception as exc:
            logger.info("Scope discovery failed, keeping configured scopes: %s", exc)
            return

        self.server_metadata = result.server_metadata
        self.resource_metadata = result.resource_metadata
        if result.scopes and not scopes_equal(result.scopes, self.config.scopes):
            self.config.scopes = list(result.scopes)
            logger.info("Updated scopes from %s: %s", result.source, " ".join(result.scopes))

    # --- client provider surface ---

    @property
    def server_key(self) -> str:
        return self._server_key

    @property
    def redirect_url(self) -> str:
        """The callback URL; reflects the bound port once the listener is bound."""
        if self._listener is not None:
            return self._listener.redirect_uri
        host = self.settings.callback_host
        if host in ("127.0.0.1", "localhost"):
            host = "localhost"
        return f"http://{host}:{self.settings.callback_port}{self.settings.callback_path}"

    @property
    def scopes(self) -> list[str]:
        return list(self.config.scopes)

    @property
    def client_metadata(self) -> dict[str, Any]:
        """Dynamic client registration metadata (:rfc:`7591`)."""
        redirect_uris = list(self.config.redirect_uris)
        if self.redirect_url not in redirect_uris:
            redirect_uris.insert(0, self.redirect_url)
        has_secret = bool(self.config.client_secret or self.config.client_secret_source)
        return {
            "client_name": self.config.name,
            "redirect_uris": redirect_uris,
            "grant_types": ["authorization_code", "refresh_token"],
            "response_types": ["code"],
            "token_endpoint_auth_method": "client_secret_post" if has_secret else "none",
            "scope": " ".join(self.config.scopes),
        }

    def state(self) -> str:
        """Issue a fresh ``state`` value; the callback must echo the latest one."""
        self._issued_state = generate_state()
        return self._issued_state

    def client_information(self) -> Optional[ClientInformation]:
        return resolve_client_information(
            self.config, self.server_id, self.store, self._client_strategies
        )

    def save_client_information(self, info: ClientInformation) -> None:
        save_client_information(self.server_id, info, self.store)

    def tokens(self) -> Optional[OAuthTokens]:
        """Stored tokens, or ``None``. A failing store read counts as "no tokens"."""
        try:
            record = self.store.get_by_id(self.server_id)
        except Exception as exc:
            logger.warning("Could not read tokens for %s: %s", self.server_id, exc)
            return None
        if record is None or record.oauth_tokens is None:
            return None
        logger.info("Using cached tokens for %s", self.server_id)
        return record.oauth_tokens

    def save_tokens(self, tokens: OAuthTokens) -> None:
        self.store.update(self.server_id, {"oauth_tokens": tokens})
        logger.info("Tokens saved for %s", self.server_id)

    def save_metadata(self) -> None:
        """Persist the metadata documents found by :meth:`initialize`, if any."""
        fields: dict[str, Any] = {}
        if self.server_metadata is not None:
            fields["oauth_server_metadata"] = self.server_metadata.model_dump(
                mode="json", exclude_none=True
            )
        if self.resource_metadata is not None:
            fields["oauth_resource_metadata"] = self.resource_metadata.model_dump(
                mode="json", exclude_none=True
            )
        if fields:
            self.store.update(self.server_id, fields)

    # --- PKCE ---

    def save_code_verifier(self, verifier: str) -> None:
        self.verifiers.save(self.server_id, verifier)

    def code_verifier(self) -> str:
        """Raises :class:`~credgate.exceptions.MissingVerifierError` if none was saved."""
        return self.verifiers.read(self.server_id)

    # --- authorization ---

    @property
    def listener(self) -> Optional[CallbackListener]:
        return self._listener

    def bind_listener(self) -> CallbackListener:
        """Bind the callback listener, if not already bound, and return it.

        Call this from a coroutine before building the authorization URL when
        the configured port is ``0`` so that :attr:`redirect_url` carries the
        port the OS picked.

        Raises:
            AuthorizationFlowError: ``port_in_use`` or ``listener_error``.
        """
        if self._listener is None:
            listener = CallbackListener(
                host=self.settings.callback_host,
                port=self.settings.callback_port,
                path=self.settings.callback_path,
                timeout=self.settings.listener_timeout,
            )
            listener.start()
            self._listener = listener
        return self._listener

    def close_listener(self) -> None:
        if self._listener is not None:
            self._listener.close()
            self._listener = None

    async def begin_authorization(self, authorization_url: str) -> None:
        """Send the user to *authorization_url* and wait for the callback.

        The listener is bound strictly before the browser is launched. On
        success the code is stored for :meth:`take_authorization_code`.

        Raises:
            AuthorizationFlowError: If a code is still outstanding, the
                listener cannot bind, the browser cannot be launched, or the
                callback reports a failure or never arrives. The verifier is
                discarded and the listener closed in every such case, and
                also when the waiting task is cancelled.
        """
        if self._authorization_code is not None:
            raise AuthorizationFlowError(
                f"An authorization code for {self.server_id} has not been consumed yet",
                FlowFailure.CODE_OUTSTANDING,
            )
        try:
            listener = self.bind_listener()
            if self._issued_state is not None:
                listener.expected_state = self._issued_state
            logger.info("Opening browser for authorization")
            logger.debug("Authorization URL: %s", authorization_url)
            await self._launcher(authorization_url)
            logger.info("Waiting for authorization callback on %s", listener.redirect_uri)
            code = await listener.wait()
        except BaseException as exc:
            # Cancellation must release the port and the verifier as well.
            if isinstance(exc, AuthorizationFlowError):
                logger.info("Authorization for %s failed: %s", self.server_id, exc.reason.value)
            else:
                logger.info("Authorization for %s interrupted: %r", self.server_id, exc)
            self.verifiers.discard(self.server_id)
            self.close_listener()
            raise
        finally:
            self._issued_state = None

        self.close_listener()
        self._authorization_code = code
        logger.info("Authorization code captured for %s", self.server_id)

    @property
    def authorization_code(self) -> Optional[str]:
        return self._authorization_code

    def take_authorization_code(self) -> Optional[str]:
        """Return the stored authorization code and forget it."""
        code, self._authorization_code = self._authorization_code, None
        return code

    def discard_secrets(self) -> None:
        """Forget the authorization code and the PKCE verifier."""
        self._authorization_code = None
        self._issued_state = None
        self.verifiers.discard(self.server_id)

    def clear(self) -> None:
        """Discard volatile secrets, then null all stored OAuth data.

        Store failures are logged, not raised: the volatile secrets are gone
        whatever the store does.
        """
        self.discard_secrets()
        self.close_listener()
        try:
            self.store.update(
                self.server_id,
                {
                    "oauth_tokens": None,
                    "oauth_client_info": None,
                    "oauth_server_metadata": None,
                    "oauth_resource_metadata": None,
                },
            )
        except Exception as exc:
            logger.error("Failed to clear stored OAuth data for %s: %s", self.server_id, exc)
            return
        logger.info("Cleared OAuth data for %s", self.server_id)
