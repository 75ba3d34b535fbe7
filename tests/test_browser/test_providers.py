"""Tests for provider navigation guards and page classification."""

from __future__ import annotations

import pytest

from credgate.browser.providers import SUPABASE, PageState, get_provider


class TestNavigationAllowed:
    @pytest.mark.parametrize(
        "url",
        [
            "https://supabase.com/dashboard/sign-in",
            "https://app.supabase.com/",
            "https://supabase.io/docs",
            "https://api.supabase.com/v1/projects",
            "https://abc.supabase.io/rest/v1",
            "https://supabase.com:443/dashboard",
        ],
    )
    def test_allowed(self, url: str) -> None:
        assert SUPABASE.navigation_allowed(url)

    @pytest.mark.parametrize(
        "url",
        [
            "http://supabase.com/dashboard",
            "https://evilsupabase.com/dashboard",
            "https://supabase.com.evil.example/dashboard",
            "https://evil.example/?next=https://supabase.com",
            "https://supabase.com@evil.example/",
            "https://.supabase.com/",
            "javascript:alert(1)",
            "not a url",
            "",
            "https://[::1/",
            "https://supabase.com:notaport/",
        ],
    )
    def test_denied(self, url: str) -> None:
        assert not SUPABASE.navigation_allowed(url)

    def test_userinfo_resolves_to_real_host(self) -> None:
        assert SUPABASE.navigation_allowed("https://user@supabase.com/dashboard")


class TestClassify:
    @pytest.mark.parametrize(
        "url",
        [
            "https://supabase.com/dashboard/project/abcdefghij",
            "https://supabase.com/dashboard/project/abcdefghij/settings/api",
            "https://supabase.com/dashboard/projects",
            "https://supabase.com/dashboard/account/tokens",
        ],
    )
    def test_authenticated(self, url: str) -> None:
        assert SUPABASE.classify(url) is PageState.AUTHENTICATED

    @pytest.mark.parametrize(
        "url",
        [
            "https://supabase.com/dashboard/sign-in",
            "https://supabase.com/dashboard/sign-in?returnTo=%2Fdashboard",
            "https://supabase.com/login",
            "https://supabase.com/",
            "https://app.supabase.com/auth/callback",
        ],
    )
    def test_login(self, url: str) -> None:
        assert SUPABASE.classify(url) is PageState.LOGIN

    @pytest.mark.parametrize(
        "url",
        [
            "https://supabase.com/docs/guides",
            "https://supabase.com/pricing",
            "https://evil.example/dashboard/project/abc",
            "not a url",
        ],
    )
    def test_unclassified(self, url: str) -> None:
        assert SUPABASE.classify(url) is PageState.UNCLASSIFIED

    def test_query_and_fragment_do_not_affect_classification(self) -> None:
        url = "https://supabase.com/pricing?next=/dashboard/project/abc#/dashboard/projects"
        assert SUPABASE.classify(url) is PageState.UNCLASSIFIED


class TestContext:
    def test_extract_project_ref(self) -> None:
        url = "https://supabase.com/dashboard/project/abc_DEF-123/settings"
        assert SUPABASE.extract_context(url) == "abc_DEF-123"

    def test_no_context_on_other_pages(self) -> None:
        assert SUPABASE.extract_context("https://supabase.com/dashboard/projects") is None


class TestRegistry:
    def test_lookup(self) -> None:
        assert get_provider("supabase") is SUPABASE
        assert get_provider("unknown") is None

    def test_supabase_token_mapping(self) -> None:
        assert SUPABASE.token_mapping == {"primary": "SUPABASE_ACCESS_TOKEN"}
        assert SUPABASE.navigation_allowed(SUPABASE.login_url)
