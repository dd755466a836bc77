"""
Unit tests for IssuerManager.
"""

import contextvars
from datetime import timedelta

import pytest

from shared.errors import ConfigurationError, NoIssuerConfigured
from service_auth.app.issuers.context import clear_issuer_domain, set_issuer_domain
from service_auth.app.issuers.manager import IssuerManager
from service_auth.app.jwks.cache import CacheState
from .conftest import ISSUER_A, ISSUER_B, ISSUER_C, make_config


@pytest.fixture(autouse=True)
def reset_issuer_domain():
    clear_issuer_domain()
    yield
    clear_issuer_domain()


@pytest.fixture
def manager(fetchers):
    """Manager with three issuers."""
    config = make_config(f"{ISSUER_A} {ISSUER_B} {ISSUER_C}")
    return IssuerManager.from_config(config, fetcher_factory=fetchers)


class TestIssuerManagerBuild:
    """Construction from configuration."""

    def test_registers_one_cache_per_domain(self, manager):
        assert set(manager.issuers) == {
            "https://idp-a.example.com",
            "https://idp-b.example.com",
            "http://idp-c.example.com:8080",
        }
        assert manager.issuers["https://idp-b.example.com"].issuer_url == ISSUER_B

    def test_first_issuer_is_default(self, manager):
        """The first parsed URL becomes the default, exactly once."""
        assert manager.default_issuer is not None
        assert manager.default_issuer is manager.issuers["https://idp-a.example.com"]
        assert manager.default_issuer.issuer_url == ISSUER_A

    def test_default_follows_configuration_order(self, fetchers):
        config = make_config(f"{ISSUER_C} {ISSUER_A}")
        manager = IssuerManager.from_config(config, fetcher_factory=fetchers)
        assert manager.default_issuer.issuer_url == ISSUER_C

    def test_extra_whitespace_is_ignored(self, fetchers):
        config = make_config(f"  {ISSUER_A}\t\n  {ISSUER_B}  ")
        manager = IssuerManager.from_config(config, fetcher_factory=fetchers)
        assert len(manager.issuers) == 2
        assert set(fetchers.created) == {ISSUER_A, ISSUER_B}

    def test_zero_durations_use_defaults(self, fetchers):
        config = make_config(ISSUER_A, cache_ttl=timedelta(0), error_tolerance=timedelta(0))
        manager = IssuerManager.from_config(config, fetcher_factory=fetchers)
        cache = manager.default_issuer
        assert cache.cache_ttl == 15 * 60
        assert cache.error_tolerance == 60

    def test_configured_durations_are_applied(self, fetchers):
        config = make_config(
            ISSUER_A,
            cache_ttl=timedelta(minutes=5),
            error_tolerance=timedelta(seconds=30),
            jwks_fetch_timeout=2.5,
            jwks_retry_interval=1.0,
        )
        cache = IssuerManager.from_config(config, fetcher_factory=fetchers).default_issuer
        assert cache.cache_ttl == 300
        assert cache.error_tolerance == 30
        assert cache.fetch_timeout == 2.5
        assert cache.retry_interval == 1.0

    def test_invalid_url_aborts_construction(self, fetchers):
        config = make_config(f"{ISSUER_A} http://[::1 {ISSUER_B}")
        with pytest.raises(ConfigurationError) as exc_info:
            IssuerManager.from_config(config, fetcher_factory=fetchers)
        assert exc_info.value.details["url"] == "http://[::1"
        # Nothing was built for the URLs before the bad one
        assert fetchers.created == {}

    def test_invalid_port_aborts_construction(self, fetchers):
        config = make_config("https://idp.example.com:notaport/auth")
        with pytest.raises(ConfigurationError):
            IssuerManager.from_config(config, fetcher_factory=fetchers)

    def test_colliding_domains_last_write_wins(self, fetchers):
        config = make_config("https://idp.example.com/realms/a https://idp.example.com/realms/b")
        manager = IssuerManager.from_config(config, fetcher_factory=fetchers)
        assert list(manager.issuers) == ["https://idp.example.com"]
        assert manager.issuers["https://idp.example.com"].issuer_url == "https://idp.example.com/realms/b"
        # The default is still the first cache constructed
        assert manager.default_issuer.issuer_url == "https://idp.example.com/realms/a"

    def test_url_without_scheme_is_registered_raw(self, fetchers):
        manager = IssuerManager.from_config(make_config("idp.example.com"), fetcher_factory=fetchers)
        assert "idp.example.com" in manager.issuers

    def test_empty_configuration_has_no_default(self, fetchers):
        manager = IssuerManager.from_config(make_config(""), fetcher_factory=fetchers)
        assert len(manager.issuers) == 0
        assert manager.default_issuer is None

    def test_registry_is_read_only(self, manager):
        with pytest.raises(TypeError):
            manager.issuers["https://evil.example.com"] = manager.default_issuer


class TestIssuerManagerResolve:
    """Request-time resolution."""

    def test_no_hint_returns_default(self, manager):
        assert manager.resolve() is manager.default_issuer

    def test_matching_hint_returns_its_cache(self, manager):
        set_issuer_domain("https://idp-b.example.com/auth/realms/corp")
        assert manager.resolve().issuer_url == ISSUER_B

    def test_hint_is_normalised(self, manager):
        set_issuer_domain("HTTP://IDP-C.example.com:8080/anything")
        assert manager.resolve().issuer_url == ISSUER_C

    def test_unknown_hint_returns_default(self, manager):
        set_issuer_domain("https://unknown.example.com/realms/x")
        assert manager.resolve() is manager.default_issuer

    def test_explicit_context_is_read(self, manager):
        def attach():
            set_issuer_domain(ISSUER_B)
            return contextvars.copy_context()

        request_context = contextvars.Context().run(attach)
        # The current context carries no hint
        assert manager.resolve() is manager.default_issuer
        assert manager.resolve(request_context).issuer_url == ISSUER_B

    def test_no_issuers_raises(self, fetchers):
        manager = IssuerManager.from_config(make_config(""), fetcher_factory=fetchers)
        set_issuer_domain(ISSUER_A)
        with pytest.raises(NoIssuerConfigured):
            manager.resolve()

    def test_managers_are_independent(self, fetchers):
        first = IssuerManager.from_config(make_config(ISSUER_A), fetcher_factory=fetchers)
        second = IssuerManager.from_config(make_config(ISSUER_B), fetcher_factory=fetchers)
        assert first.resolve().issuer_url == ISSUER_A
        assert second.resolve().issuer_url == ISSUER_B


class TestIssuerManagerLifecycle:
    """Warmup, health and shutdown."""

    @pytest.mark.asyncio
    async def test_warmup_loads_every_issuer(self, manager, fetchers):
        await manager.warmup()
        assert all(fetcher.calls == 1 for fetcher in fetchers.created.values())
        assert all(cache.state is CacheState.FRESH for cache in manager.issuers.values())

    @pytest.mark.asyncio
    async def test_warmup_tolerates_failing_issuer(self, manager, fetchers):
        fetchers.created[ISSUER_B].error = RuntimeError("connection refused")
        await manager.warmup()
        health = manager.health()
        assert health["https://idp-b.example.com"]["state"] == "failed"
        assert health["https://idp-a.example.com"]["state"] == "fresh"

    @pytest.mark.asyncio
    async def test_aclose_closes_fetchers(self, manager, fetchers):
        await manager.aclose()
        assert all(fetcher.closed for fetcher in fetchers.created.values())

    @pytest.mark.asyncio
    async def test_aclose_closes_fetchers_of_replaced_caches(self, fetchers):
        urls = ["https://idp.example.com/a", "https://idp.example.com/b", "https://idp.example.com/c"]
        manager = IssuerManager.from_config(make_config(" ".join(urls)), fetcher_factory=fetchers)

        await manager.aclose()

        assert {url: fetchers.created[url].closed for url in urls} == {url: True for url in urls}
