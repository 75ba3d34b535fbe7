"""Browser-extraction provider definitions.

A :class:`BrowserAuthProvider` describes one service whose credential is
read from an authenticated page instead of obtained through OAuth: which
hosts the embedded browser may visit, which URLs are login or
authenticated pages, how to find the context id (e.g. a project ref) in a
URL, and which environment variables the extracted token maps to.

Both :meth:`~BrowserAuthProvider.navigation_allowed` and
:meth:`~BrowserAuthProvider.classify` are pure functions of the URL and
fail closed: anything that does not parse is disallowed and unclassified.
"""

from __future__ import annotations

import enum
import re
from typing import Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, Field

from credgate.browser.scripts import SUPABASE_EXTRACTION_SCRIPT


class PageState(str, enum.Enum):
    LOGIN = "login"
    AUTHENTICATED = "authenticated"
    UNCLASSIFIED = "unclassified"


def _hostname(url: str) -> Optional[str]:
    try:
        parts = urlsplit(url)
        host = parts.hostname
        # Accessing .port validates the authority section.
        parts.port
    except ValueError:
        return None
    if parts.scheme != "https" or not host:
        return None
    return host


def _login_path_matches(path: str, fragment: str) -> bool:
    if fragment == "/":
        return path == "/"
    return fragment.rstrip("/") in path


class BrowserAuthProvider(BaseModel):
    """Declarative description of a browser-extraction target.

    Attributes:
        name: Provider identifier, e.g. ``"supabase"``.
        display_name: Human-readable name for CLI output.
        login_url: Where the embedded browser starts.
        allowed_hosts: Hosts the browser may visit (exact match).
        allowed_suffixes: Domain suffixes whose proper subdomains are
            allowed, e.g. ``".supabase.com"`` admits ``api.supabase.com``
            but not ``supabase.com`` itself or ``evilsupabase.com``.
        login_paths: Paths identifying login pages. ``"/"`` matches only the
            root; other entries match anywhere in the path, so
            ``"/sign-in"`` covers ``/dashboard/sign-in``.
        authenticated_paths: Path prefixes identifying authenticated pages.
        context_pattern: Regex whose first group captures the context id
            from a URL.
        token_mapping: Logical token role -> environment variable name.
        extraction_script: JavaScript evaluated on authenticated pages. It
            must return ``{success, token?, context?, error?}``.
    """

    name: str
    display_name: str = ""
    login_url: str
    allowed_hosts: list[str] = Field(default_factory=list)
    allowed_suffixes: list[str] = Field(default_factory=list)
    login_paths: list[str] = Field(default_factory=list)
    authenticated_paths: list[str] = Field(default_factory=list)
    context_pattern: Optional[str] = None
    token_mapping: dict[str, str] = Field(default_factory=dict)
    extraction_script: str

    def navigation_allowed(self, url: str) -> bool:
        """Return ``True`` only for https URLs on an allowed host."""
        host = _hostname(url)
        if host is None:
            return False
        if host in self.allowed_hosts:
            return True
        for suffix in self.allowed_suffixes:
            dotted = suffix if suffix.startswith(".") else f".{suffix}"
            if host.endswith(dotted) and len(host) > len(dotted):
                return True
        return False

    def classify(self, url: str) -> PageState:
        """Classify *url* as a login, authenticated or unclassified page.

        Authenticated prefixes are checked first so that a dashboard page
        whose path happens to contain a login segment still counts as
        authenticated.
        """
        if not self.navigation_allowed(url):
            return PageState.UNCLASSIFIED
        path = urlsplit(url).path or "/"
        if any(path.startswith(prefix) for prefix in self.authenticated_paths):
            return PageState.AUTHENTICATED
        if any(_login_path_matches(path, login) for login in self.login_paths):
            return PageState.LOGIN
        return PageState.UNCLASSIFIED

    def extract_context(self, url: str) -> Optional[str]:
        if not self.context_pattern:
            return None
        match = re.search(self.context_pattern, url)
        return match.group(1) if match else None


SUPABASE = BrowserAuthProvider(
    name="supabase",
    display_name="Supabase",
    login_url="https://supabase.com/dashboard/sign-in",
    allowed_hosts=["supabase.com", "app.supabase.com", "supabase.io"],
    allowed_suffixes=[".supabase.com", ".supabase.io"],
    login_paths=["/sign-in", "/signin", "/login", "/auth", "/"],
    authenticated_paths=[
        "/dashboard/project/",
        "/dashboard/projects",
        "/dashboard/account",
        "/dashboard/settings",
    ],
    context_pattern=r"supabase\.com/dashboard/project/([a-zA-Z0-9_-]+)",
    token_mapping={"primary": "SUPABASE_ACCESS_TOKEN"},
    extraction_script=SUPABASE_EXTRACTION_SCRIPT,
)

PROVIDERS: dict[str, BrowserAuthProvider] = {SUPABASE.name: SUPABASE}


def get_provider(name: str) -> Optional[BrowserAuthProvider]:
    return PROVIDERS.get(name)
