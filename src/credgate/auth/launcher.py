"""Open URLs in the user's browser without blocking the event loop."""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from typing import Awaitable, Callable

from credgate.exceptions import AuthorizationFlowError, FlowFailure

logger = logging.getLogger(__name__)

Launcher = Callable[[str], Awaitable[None]]
"""Async callable that opens a URL or raises :class:`AuthorizationFlowError`."""


async def open_browser(url: str) -> None:
    """Open *url* with :mod:`webbrowser` in a worker thread.

    Raises:
        AuthorizationFlowError: ``browser_launch_failed`` when no browser
            could be started.
    """
    logger.debug("Opening browser at %s", url)
    try:
        opened = await asyncio.to_thread(webbrowser.open, url)
    except (OSError, webbrowser.Error) as exc:
        raise AuthorizationFlowError(
            f"Could not open a browser: {exc}", FlowFailure.BROWSER_LAUNCH_FAILED
        ) from exc
    if not opened:
        raise AuthorizationFlowError(
            "No browser available to open the authorization URL",
            FlowFailure.BROWSER_LAUNCH_FAILED,
        )
