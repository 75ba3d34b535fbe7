"""Embedded browsing contexts used by the extraction engine.

:class:`BrowsingContext` is the small surface the engine needs.
:class:`PlaywrightContext` implements it over a Playwright ``Page`` and
installs the provider's navigation guard as a route handler, so that
disallowed main-frame navigations are aborted by the browser itself and
not only by :meth:`~credgate.browser.extractor.BrowserExtractionEngine.navigate`.

Playwright is an optional dependency (``pip install credgate[browser]``);
it is imported lazily by :meth:`PlaywrightContext.launch`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol, runtime_checkable

from credgate.exceptions import ConfigError

if TYPE_CHECKING:
    from playwright.async_api import Browser, Page, Playwright, Route

logger = logging.getLogger(__name__)


@runtime_checkable
class BrowsingContext(Protocol):
    @property
    def current_url(self) -> str: ...

    def is_closed(self) -> bool: ...

    async def navigate(self, url: str) -> None: ...

    async def evaluate_script(self, script: str) -> Any: ...


class PlaywrightContext:
    """A headed Chromium window driven through Playwright.

    Args:
        guard: Predicate deciding whether a URL may be loaded as a document.
        headless: Run without a visible window (only useful in tests).

    Usage::

        async with PlaywrightContext(provider.navigation_allowed) as context:
            engine = BrowserExtractionEngine(provider, context)
            await engine.navigate(provider.login_url)
            credential = await engine.poll()
    """

    DEFAULT_VIEWPORT = {"width": 1280, "height": 800}

    def __init__(self, guard: Callable[[str], bool], headless: bool = False) -> None:
        self.guard = guard
        self.headless = headless
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._page: Page | None = None

    @classmethod
    def from_page(cls, page: Page, guard: Callable[[str], bool]) -> PlaywrightContext:
        """Wrap an existing page; the caller owns the browser's lifetime."""
        context = cls(guard)
        context._page = page
        return context

    async def __aenter__(self) -> PlaywrightContext:
        await self.launch()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def launch(self) -> None:
        """Start Playwright, open a window and install the navigation guard.

        Raises:
            ConfigError: If the ``browser`` extra is not installed.
        """
        try:
            from playwright.async_api import async_playwright
        except ImportError as exc:
            raise ConfigError(
                "Browser extraction requires Playwright: pip install 'credgate[browser]' "
                "and run 'playwright install chromium'"
            ) from exc

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.headless)
        browser_context = await self._browser.new_context(viewport=self.DEFAULT_VIEWPORT)
        self._page = await browser_context.new_page()
        await self.install_guard()
        logger.info("Embedded browser launched")

    async def install_guard(self) -> None:
        await self._require_page().route("**/*", self._route)

    async def _route(self, route: Route) -> None:
        request = route.request
        if request.is_navigation_request() and request.frame == request.frame.page.main_frame:
            if not self.guard(request.url):
                logger.warning("Blocked navigation to %s", request.url)
                await route.abort("blockedbyclient")
                return
        await route.continue_()

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        self._page = None

    def _require_page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser not launched. Call launch() first.")
        return self._page

    @property
    def current_url(self) -> str:
        return self._page.url if self._page is not None else ""

    def is_closed(self) -> bool:
        return self._page is None or self._page.is_closed()

    async def navigate(self, url: str) -> None:
        await self._require_page().goto(url, wait_until="domcontentloaded")

    async def evaluate_script(self, script: str) -> Optional[Any]:
        return await self._require_page().evaluate(script)
