"""Client identity resolution as an ordered list of strategies.

Which ``client_id`` the engine presents is decided by walking
:data:`DEFAULT_STRATEGIES` in order. Each strategy returns a
:class:`~credgate.models.ClientInformation` ("found") or ``None``
("continue"); the first hit wins. When every strategy passes, the caller
must register a new client dynamically and hand the result to
:func:`save_client_information`.

The order is static configuration first, then a cached dynamic
registration. A configured client id therefore always shadows a cached
registration for the same target.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Sequence

from credgate.config import resolve_credential
from credgate.models import ClientInformation, OAuthServerConfig
from credgate.store.base import ServerStore

logger = logging.getLogger(__name__)


class ClientInfoStrategy(Protocol):
    """One link of the client identity chain."""

    name: str

    def resolve(
        self, config: OAuthServerConfig, server_id: str, store: ServerStore
    ) -> Optional[ClientInformation]: ...


class StaticClientStrategy:
    """Use the client id (and secret) configured for the target."""

    name = "static"

    def resolve(
        self, config: OAuthServerConfig, server_id: str, store: ServerStore
    ) -> Optional[ClientInformation]:
        if not config.client_id:
            return None
        secret = config.client_secret
        if secret is None and config.client_secret_source:
            secret = resolve_credential(config.client_secret_source)
        return ClientInformation(client_id=config.client_id, client_secret=secret)


class CachedRegistrationStrategy:
    """Reuse a client identity obtained by an earlier dynamic registration.

    A failing store read is logged and treated as "nothing cached", so a
    broken store degrades into a fresh registration instead of an error.
    """

    name = "cached_registration"

    def resolve(
        self, config: OAuthServerConfig, server_id: str, store: ServerStore
    ) -> Optional[ClientInformation]:
        try:
            record = store.get_by_id(server_id)
        except Exception as exc:
            logger.warning("Could not read cached client info for %s: %s", server_id, exc)
            return None
        if record is None or record.oauth_client_info is None:
            return None
        return record.oauth_client_info


DEFAULT_STRATEGIES: tuple[ClientInfoStrategy, ...] = (
    StaticClientStrategy(),
    CachedRegistrationStrategy(),
)
"""Resolution order used by :func:`resolve_client_information`."""


def resolve_client_information(
    config: OAuthServerConfig,
    server_id: str,
    store: ServerStore,
    strategies: Sequence[ClientInfoStrategy] = DEFAULT_STRATEGIES,
) -> Optional[ClientInformation]:
    """Walk *strategies* in order and return the first client identity found.

    Returns:
        The resolved identity, or ``None`` meaning "register dynamically".
    """
    for strategy in strategies:
        info = strategy.resolve(config, server_id, store)
        if info is not None:
            logger.debug("Client identity for %s from %s strategy", server_id, strategy.name)
            return info
    logger.debug("No client identity for %s; dynamic registration required", server_id)
    return None


def save_client_information(
    server_id: str, info: ClientInformation, store: ServerStore
) -> None:
    """Persist a dynamically registered client identity.

    Write failures propagate unchanged.
    """
    store.update(server_id, {"oauth_client_info": info})
    logger.info("Saved client registration %s for %s", info.client_id, server_id)
