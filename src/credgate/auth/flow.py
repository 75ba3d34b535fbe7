"""End-to-end OAuth 2.0 authorization code flow with PKCE.

:class:`AuthorizationFlow` plays the client-library role against an
:class:`~credgate.auth.coordinator.OAuthSessionCoordinator`:

1. Discover scopes and metadata (:meth:`~OAuthSessionCoordinator.initialize`).
2. Return stored tokens if there are any.
3. Resolve a client identity, registering one dynamically (:rfc:`7591`)
   when none is configured or cached.
4. Generate a PKCE pair (:rfc:`7636`), bind the listener, build the
   authorization URL and wait for the callback.
5. Exchange the code for tokens and persist them.

Secrets are discarded when :meth:`AuthorizationFlow.run` returns or raises.
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import urlencode, urlsplit

import httpx
from pydantic import ValidationError

from credgate.auth.coordinator import OAuthSessionCoordinator
from credgate.auth.discovery import fetch_document, server_metadata_url
from credgate.auth.pkce import generate_pkce_pair
from credgate.exceptions import ConnectionError_, RegistrationError, TokenExchangeError
from credgate.models import AuthorizationServerMetadata, ClientInformation, OAuthTokens

logger = logging.getLogger(__name__)


def _origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


class AuthorizationFlow:
    """Drive a coordinator from discovery to stored tokens.

    Args:
        coordinator: The session for the target being authorized.
        http_client: Client for registration, metadata and token requests.
            Falls back to the coordinator's client, then to a client created
            for the duration of :meth:`run`.
        force: Run the interactive flow even when tokens are stored.

    Example::

        coordinator = OAuthSessionCoordinator(config, "linear", JsonServerStore())
        tokens = await AuthorizationFlow(coordinator).run()
    """

    def __init__(
        self,
        coordinator: OAuthSessionCoordinator,
        http_client: Optional[httpx.AsyncClient] = None,
        force: bool = False,
    ) -> None:
        self.coordinator = coordinator
        self.http_client = http_client or coordinator.http_client
        self.force = force

    async def run(self) -> OAuthTokens:
        """Run the flow and return the resulting (or cached) tokens.

        Raises:
            AuthorizationFlowError: The interactive step failed.
            RegistrationError: Dynamic client registration failed.
            TokenExchangeError: The token endpoint rejected the code.
            ConnectionError_: An endpoint could not be reached.
        """
        if self.http_client is not None:
            return await self._run(self.http_client)
        async with httpx.AsyncClient(follow_redirects=True) as http:
            return await self._run(http)

    async def _run(self, http: httpx.AsyncClient) -> OAuthTokens:
        coordinator = self.coordinator
        await coordinator.initialize()

        if not self.force:
            cached = coordinator.tokens()
            if cached is not None:
                return cached

        try:
            await self._ensure_server_metadata(http)

            # Bound first so that the registered redirect URI carries the real port.
            coordinator.bind_listener()
            redirect_uri = coordinator.redirect_url

            info = coordinator.client_information()
            if info is None:
                info = await self.register_client(http)
                coordinator.save_client_information(info)

            verifier, challenge = generate_pkce_pair()
            coordinator.save_code_verifier(verifier)

            url = self.build_authorization_url(info, challenge, coordinator.state())
            await coordinator.begin_authorization(url)

            code = coordinator.take_authorization_code()
            tokens = await self.exchange_code(
                http, info, code or "", coordinator.code_verifier(), redirect_uri
            )
            coordinator.save_tokens(tokens)
            coordinator.save_metadata()
            return tokens
        finally:
            coordinator.discard_secrets()
            coordinator.close_listener()

    # --- endpoints ---

    async def _ensure_server_metadata(self, http: httpx.AsyncClient) -> None:
        coordinator = self.coordinator
        if coordinator.server_metadata is not None:
            return
        issuer = None
        resource = coordinator.resource_metadata
        if resource is not None and resource.authorization_servers:
            issuer = resource.authorization_servers[0]
        url = server_metadata_url(coordinator.config, issuer)
        coordinator.server_metadata = await fetch_document(
            http, url, AuthorizationServerMetadata, coordinator.settings.discovery_timeout
        )

    def _endpoint(self, name: str, default_path: str) -> str:
        metadata = self.coordinator.server_metadata
        value = getattr(metadata, name, None) if metadata is not None else None
        if not value:
            value = getattr(self.coordinator.config, name)
        if not value:
            value = _origin(self.coordinator.config.server_url) + default_path
        return value

    @property
    def authorization_endpoint(self) -> str:
        return self._endpoint("authorization_endpoint", "/authorize")

    @property
    def token_endpoint(self) -> str:
        return self._endpoint("token_endpoint", "/token")

    @property
    def registration_endpoint(self) -> str:
        return self._endpoint("registration_endpoint", "/register")

    @property
    def resource(self) -> Optional[str]:
        """Resource indicator (:rfc:`8707`), sent when the target publishes resource metadata."""
        metadata = self.coordinator.resource_metadata
        if metadata is None:
            return None
        return metadata.resource or self.coordinator.config.server_url

    # --- steps ---

    def build_authorization_url(
        self, info: ClientInformation, code_challenge: str, state: str
    ) -> str:
        coordinator = self.coordinator
        params: dict[str, str] = {
            "response_type": "code",
            "client_id": info.client_id,
            "redirect_uri": coordinator.redirect_url,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        if coordinator.scopes:
            params["scope"] = " ".join(coordinator.scopes)
        if self.resource:
            params["resource"] = self.resource
        endpoint = self.authorization_endpoint
        separator = "&" if urlsplit(endpoint).query else "?"
        return f"{endpoint}{separator}{urlencode(params)}"

    async def register_client(self, http: httpx.AsyncClient) -> ClientInformation:
        """Register a new client with the authorization server.

        Raises:
            RegistrationError: On HTTP errors or a response without
                ``client_id``.
            ConnectionError_: If the endpoint cannot be reached.
        """
        endpoint = self.registration_endpoint
        logger.info("Registering OAuth client at %s", endpoint)
        try:
            response = await http.post(
                endpoint,
                json=self.coordinator.client_metadata,
                headers={"Accept": "application/json"},
                timeout=30.0,
            )
            response.raise_for_status()
            data: dict[str, Any] = response.json()
        except httpx.HTTPStatusError as exc:
            raise RegistrationError(
                f"Client registration failed with status {exc.response.status_code}: "
                f"{exc.response.text}"
            ) from exc
        except httpx.TransportError as exc:
            raise ConnectionError_(
                f"Could not reach registration endpoint {endpoint}: {exc}"
            ) from exc
        except httpx.HTTPError as exc:
            raise RegistrationError(f"Client registration failed: {exc}") from exc
        except ValueError as exc:
            raise RegistrationError(f"Client registration returned invalid JSON: {exc}") from exc

        try:
            return ClientInformation.model_validate(data)
        except ValidationError as exc:
            raise RegistrationError("Registration response missing 'client_id' field") from exc

    async def exchange_code(
        self,
        http: httpx.AsyncClient,
        info: ClientInformation,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> OAuthTokens:
        """Exchange the authorization code for tokens.

        Raises:
            TokenExchangeError: On HTTP errors, or a response that lacks
                ``access_token`` or does not validate.
            ConnectionError_: If the endpoint cannot be reached.
        """
        data: dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": info.client_id,
            "code_verifier": code_verifier,
        }
        if info.client_secret:
            data["client_secret"] = info.client_secret
        if self.resource:
            data["resource"] = self.resource

        try:
            response = await http.post(
                self.token_endpoint,
                data=data,
                headers={"Accept": "application/json"},
                timeout=30.0,
            )
            response.raise_for_status()
            token_data: Any = response.json()
        except httpx.HTTPStatusError as exc:
            raise TokenExchangeError(
                f"Token exchange failed with status {exc.response.status_code}: "
                f"{exc.response.text}"
            ) from exc
        except httpx.TransportError as exc:
            raise ConnectionError_(
                f"Could not reach token endpoint {self.token_endpoint}: {exc}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TokenExchangeError(f"Token exchange failed: {exc}") from exc
        except ValueError as exc:
            raise TokenExchangeError(f"Token response is not valid JSON: {exc}") from exc

        if not isinstance(token_data, dict):
            raise TokenExchangeError("Token response is not a JSON object")
        if "access_token" not in token_data:
            raise TokenExchangeError("Token response missing 'access_token' field")
        if not token_data.get("token_type"):
            token_data["token_type"] = "Bearer"
        try:
            tokens = OAuthTokens.model_validate(token_data)
        except ValidationError as exc:
            raise TokenExchangeError(f"Token response is malformed: {exc}") from exc
        logger.info("Access token obtained: %s...", tokens.access_token[:8])
        return tokens
