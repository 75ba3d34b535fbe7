"""Polling credential extraction over an embedded browser.

For services without a usable OAuth surface, the user signs in inside an
embedded browser while :class:`BrowserExtractionEngine` repeatedly checks
whether the current page is an authenticated page and, if so, evaluates the
provider's extraction script there.

Non-results are never errors: a login page, a closed window, a script that
throws or reports ``success: false`` all yield ``None``, and :meth:`poll`
simply tries again later. Polling is bounded by exponential backoff with a
ceiling and an overall deadline taken from
:class:`~credgate.models.EngineSettings`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from pydantic import ValidationError

from credgate.browser.context import BrowsingContext
from credgate.browser.providers import BrowserAuthProvider, PageState
from credgate.exceptions import NavigationDeniedError
from credgate.models import BrowserCredential, EngineSettings, ExtractionScriptResult
from credgate.store.base import ServerStore

logger = logging.getLogger(__name__)


class BrowserExtractionEngine:
    """Extract a credential from an authenticated page of *context*.

    Args:
        provider: Which service, hosts and pages to expect.
        context: The embedded browsing context.
        settings: Poll interval, backoff factor, ceiling and deadline.
    """

    def __init__(
        self,
        provider: BrowserAuthProvider,
        context: BrowsingContext,
        *,
        settings: Optional[EngineSettings] = None,
    ) -> None:
        self.provider = provider
        self.context = context
        self.settings = settings or EngineSettings()
        self._cancelled = asyncio.Event()
        self.attempts = 0

    async def navigate(self, url: str) -> None:
        """Load *url* in the context after checking the navigation guard.

        Raises:
            NavigationDeniedError: If *url* is not on an allowed host.
        """
        if not self.provider.navigation_allowed(url):
            raise NavigationDeniedError(
                f"Navigation to {url} is not allowed for {self.provider.name}"
            )
        await self.context.navigate(url)

    async def extract_once(self) -> Optional[BrowserCredential]:
        """Try a single extraction on the current page.

        The script is evaluated only on pages classified as authenticated.
        """
        if self.context.is_closed():
            return None
        url = self.context.current_url
        state = self.provider.classify(url)
        if state is not PageState.AUTHENTICATED:
            logger.debug("Skipping extraction on %s page %s", state.value, url)
            return None

        self.attempts += 1
        try:
            raw = await self.context.evaluate_script(self.provider.extraction_script)
        except Exception as exc:
            logger.info("Extraction script failed on %s: %s", url, exc)
            return None

        try:
            result = ExtractionScriptResult.model_validate(raw if raw is not None else {})
        except ValidationError as exc:
            logger.info("Extraction script returned an unexpected value: %s", exc)
            return None
        if not result.success or not result.token:
            logger.debug("No token yet on %s: %s", url, result.error or "not available")
            return None

        credential = BrowserCredential(
            primary_token=result.token,
            context=result.context or self.provider.extract_context(url),
            extracted_from=url,
        )
        logger.info(
            "Extracted %s token %s... from %s",
            self.provider.name,
            credential.primary_token[:8],
            url,
        )
        return credential

    async def poll(self) -> Optional[BrowserCredential]:
        """Call :meth:`extract_once` until a credential appears.

        A :meth:`cancel` issued before polling starts is honoured; the
        request is reset once this call returns.

        Returns:
            The first credential, or ``None`` when the deadline passes, the
            window is closed or :meth:`cancel` is called.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.poll_timeout
        interval = self.settings.poll_interval

        try:
            while True:
                if self._cancelled.is_set():
                    logger.info("Extraction cancelled")
                    return None
                if self.context.is_closed():
                    logger.info("Browser window closed before a credential was found")
                    return None

                credential = await self.extract_once()
                if credential is not None:
                    return credential

                remaining = deadline - loop.time()
                if remaining <= 0:
                    logger.info(
                        "No credential within %g seconds", self.settings.poll_timeout
                    )
                    return None
                try:
                    await asyncio.wait_for(self._cancelled.wait(), min(interval, remaining))
                except asyncio.TimeoutError:
                    pass
                interval = min(
                    interval * self.settings.poll_backoff, self.settings.poll_max_interval
                )
        finally:
            self._cancelled.clear()

    def cancel(self) -> None:
        """Stop :meth:`poll` at its next wake-up, or before its first attempt."""
        self._cancelled.set()

    def map_tokens(self, credential: BrowserCredential) -> dict[str, str]:
        """Map a credential onto the provider's environment variable names.

        Roles: ``primary`` is the token itself, ``context`` the context id.
        """
        values = {"primary": credential.primary_token, "context": credential.context}
        return {
            env_var: values[role]
            for role, env_var in self.provider.token_mapping.items()
            if values.get(role)
        }

    def persist(
        self, server_id: str, credential: BrowserCredential, store: ServerStore
    ) -> dict[str, str]:
        """Merge the mapped variables into the target's stored ``env``.

        Write failures propagate unchanged.

        Returns:
            The full environment now stored for *server_id*.
        """
        record = store.get_by_id(server_id)
        env = dict(record.env) if record is not None else {}
        env.update(self.map_tokens(credential))
        store.update(server_id, {"env": env})
        logger.info("Saved %s for %s", ", ".join(sorted(self.map_tokens(credential))), server_id)
        return env
