"""Credential extraction from an embedded browser.

* :mod:`~credgate.browser.providers` -- provider definitions, navigation
  guard and page classification.
* :mod:`~credgate.browser.scripts` -- read-only extraction scripts.
* :mod:`~credgate.browser.context` -- browsing context protocol and the
  Playwright adapter.
* :mod:`~credgate.browser.extractor` -- the polling extraction engine.
"""

from credgate.browser.context import BrowsingContext, PlaywrightContext
from credgate.browser.extractor import BrowserExtractionEngine
from credgate.browser.providers import SUPABASE, BrowserAuthProvider, PageState, get_provider

__all__ = [
    "SUPABASE",
    "BrowserAuthProvider",
    "BrowserExtractionEngine",
    "BrowsingContext",
    "PageState",
    "PlaywrightContext",
    "get_provider",
]
