"""
Unit tests for WebFinger issuer discovery.
"""

import asyncio

import pytest
import httpx
import respx
from fastapi import Request
from unittest.mock import AsyncMock, MagicMock

from shared.circuit_breaker import CircuitBreaker
from shared.errors import MalformedResponseError, PolicyViolationError, TransportError
from shared.metrics import MetricsCollector
from shared.test_helpers import TestDataFactory
from service_oidc.app.discovery import (
    ISSUER_REL,
    WebfingerIssuerFetcher,
    WebfingerIssuerService,
    normalize_resource,
)

WEBFINGER_URL = "https://example.com/.well-known/webfinger"
ISSUER = "https://issuer.example.com"


@pytest.fixture
def fetcher():
    return WebfingerIssuerFetcher(
        circuit_breaker=CircuitBreaker(
            "webfinger",
            failure_threshold=3,
            recovery_timeout=60.0,
            counted_exceptions=(httpx.HTTPError,)
        ),
    )


@pytest.fixture
def metrics():
    return MetricsCollector("test")


@pytest.fixture
def issuer_service(fetcher, clock, metrics):
    return WebfingerIssuerService(fetcher, login_page_url="/login", clock=clock, metrics=metrics)


def _fake_fetcher(*results):
    fetcher = MagicMock()
    fetcher.load = AsyncMock(side_effect=list(results))
    return fetcher


def _login_request(query: str = "") -> Request:
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/openid_connect_login",
        "query_string": query.encode(),
        "headers": [],
    })


class TestWebfingerIssuerFetcher:
    """Test cases for the WebFinger request itself."""

    @pytest.mark.parametrize("identifier, expected", [
        ("joe@example.com", "https://example.com/.well-known/webfinger"),
        ("example.com:8443/tenant", "https://example.com:8443/tenant/.well-known/webfinger"),
        ("https://example.com/a?x=y", "https://example.com/a/.well-known/webfinger?x=y"),
        ("mailto:joe@example.com", "https://example.com/.well-known/webfinger"),
        ("http://localhost:8080", "http://localhost:8080/.well-known/webfinger"),
    ])
    def test_build_url(self, fetcher, identifier, expected):
        """Test endpoint construction for each identifier shape."""
        assert fetcher.build_url(normalize_resource(identifier)) == expected

    @pytest.mark.asyncio
    @respx.mock
    async def test_request_parameters(self, fetcher):
        """Test that resource and rel are sent as query parameters."""
        route = respx.get(WEBFINGER_URL).mock(
            return_value=httpx.Response(200, json=TestDataFactory.create_webfinger_response(ISSUER))
        )

        issuer = await fetcher.load(normalize_resource("joe@example.com"))

        assert issuer == ISSUER
        params = route.calls.last.request.url.params
        assert params["resource"] == "acct:joe@example.com"
        assert params["rel"] == ISSUER_REL

    @pytest.mark.asyncio
    @respx.mock
    async def test_no_issuer_link_for_https_falls_back_to_input(self, fetcher):
        """Test that an http(s) identifier is its own issuer when no link is found."""
        respx.get("https://example.com/tenant/.well-known/webfinger").mock(
            return_value=httpx.Response(200, json=TestDataFactory.create_webfinger_response(None))
        )

        issuer = await fetcher.load(normalize_resource("example.com/tenant"))

        assert issuer == "https://example.com/tenant"

    @pytest.mark.asyncio
    @respx.mock
    async def test_no_issuer_link_for_acct(self, fetcher):
        """Test that an acct identifier without an issuer link has no issuer."""
        respx.get(WEBFINGER_URL).mock(
            return_value=httpx.Response(200, json=TestDataFactory.create_webfinger_response(None))
        )

        assert await fetcher.load(normalize_resource("joe@example.com")) is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_missing_links(self, fetcher):
        """Test that a body without a usable links array counts as no match."""
        respx.get(WEBFINGER_URL).mock(
            side_effect=[
                httpx.Response(200, json={"subject": "acct:joe@example.com"}),
                httpx.Response(200, json={"links": "nope"}),
                httpx.Response(200, json={"links": [{"rel": ISSUER_REL}]}),
            ]
        )

        for _ in range(3):
            assert await fetcher.load(normalize_resource("joe@example.com")) is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_failures_raise(self, fetcher):
        """Test that transport and parse failures are raised to the caller."""
        respx.get(WEBFINGER_URL).mock(
            side_effect=[
                httpx.Response(404),
                httpx.ConnectError("refused"),
                httpx.Response(200, text="<html>"),
            ]
        )
        key = normalize_resource("joe@example.com")

        with pytest.raises(TransportError):
            await fetcher.load(key)
        with pytest.raises(TransportError):
            await fetcher.load(key)
        with pytest.raises(MalformedResponseError):
            await fetcher.load(key)


class TestWebfingerIssuerService:
    """Test cases for cached, policy-checked issuer resolution."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_resolve(self, issuer_service, metrics):
        route = respx.get(WEBFINGER_URL).mock(
            return_value=httpx.Response(200, json=TestDataFactory.create_webfinger_response(ISSUER))
        )

        assert await issuer_service.resolve("joe@example.com") == ISSUER
        assert await issuer_service.resolve("acct:joe@example.com") == ISSUER

        # Both inputs normalize to the same cached key
        assert route.call_count == 1
        assert metrics.sample("issuer_resolutions_total", outcome="resolved") == 2.0

    @pytest.mark.asyncio
    async def test_empty_and_unparseable_input(self, clock):
        fetcher = _fake_fetcher()
        service = WebfingerIssuerService(fetcher, clock=clock)

        assert await service.resolve("") is None
        assert await service.resolve(None) is None
        assert await service.resolve("joe@") is None
        fetcher.load.assert_not_awaited()

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_failure_is_not_cached(self, issuer_service):
        """Test that a failed discovery returns None and is retried next time."""
        route = respx.get(WEBFINGER_URL).mock(
            side_effect=[
                httpx.ConnectError("refused"),
                httpx.Response(200, json=TestDataFactory.create_webfinger_response(ISSUER)),
            ]
        )

        assert await issuer_service.resolve("joe@example.com") is None
        assert await issuer_service.resolve("joe@example.com") == ISSUER
        assert route.call_count == 2

    @pytest.mark.asyncio
    async def test_no_issuer_is_not_cached(self, clock):
        fetcher = _fake_fetcher(None, ISSUER)
        service = WebfingerIssuerService(fetcher, clock=clock)

        assert await service.resolve("joe@example.com") is None
        assert await service.resolve("joe@example.com") == ISSUER
        assert fetcher.load.await_count == 2

    @pytest.mark.asyncio
    async def test_whitelist(self, clock):
        """Test that a non-empty whitelist rejects other issuers whatever the blacklist holds."""
        service = WebfingerIssuerService(
            _fake_fetcher(ISSUER, ISSUER),
            whitelist={"https://other.example.com"},
            blacklist={"https://unrelated.example.com"},
            clock=clock,
        )

        with pytest.raises(PolicyViolationError) as exc_info:
            await service.resolve("joe@example.com")

        assert exc_info.value.details["issuer"] == ISSUER

        service.whitelist.add(ISSUER)
        # The resolved issuer stays cached; only the policy decision changed
        assert await service.resolve("joe@example.com") == ISSUER

    @pytest.mark.asyncio
    async def test_blacklist(self, clock):
        service = WebfingerIssuerService(
            _fake_fetcher(ISSUER),
            whitelist={ISSUER},
            blacklist={ISSUER},
            clock=clock,
        )

        with pytest.raises(PolicyViolationError):
            await service.resolve("joe@example.com")

    @pytest.mark.asyncio
    async def test_concurrent_lookups_share_one_fetch(self, clock):
        """Test that simultaneous misses on one identifier issue a single fetch."""
        release = asyncio.Event()

        async def _load(key):
            await release.wait()
            return ISSUER

        fetcher = MagicMock()
        fetcher.load = AsyncMock(side_effect=_load)
        service = WebfingerIssuerService(fetcher, clock=clock)

        tasks = [
            asyncio.create_task(service.resolve(identifier))
            for identifier in ["joe@example.com", "acct:joe@example.com", "joe@example.com#x"] * 3
        ]
        await asyncio.sleep(0)
        assert service.issuers.in_flight == 1

        release.set()
        results = await asyncio.gather(*tasks)

        assert results == [ISSUER] * 9
        assert fetcher.load.await_count == 1
        assert service.issuers.in_flight == 0

    @pytest.mark.asyncio
    async def test_concurrent_failure_reaches_every_waiter(self, clock):
        release = asyncio.Event()

        async def _load(key):
            await release.wait()
            raise TransportError("webfinger", "refused")

        fetcher = MagicMock()
        fetcher.load = AsyncMock(side_effect=_load)
        service = WebfingerIssuerService(fetcher, clock=clock)

        tasks = [asyncio.create_task(service.resolve("joe@example.com")) for _ in range(4)]
        await asyncio.sleep(0)
        release.set()

        assert await asyncio.gather(*tasks) == [None] * 4
        assert fetcher.load.await_count == 1
        assert len(service.issuers) == 0

    @pytest.mark.asyncio
    async def test_cache_ttl(self, clock):
        """Test that a configured TTL forces rediscovery."""
        fetcher = _fake_fetcher(ISSUER, "https://moved.example.com")
        service = WebfingerIssuerService(fetcher, cache_ttl_seconds=60, clock=clock)

        assert await service.resolve("joe@example.com") == ISSUER
        clock.advance(30)
        assert await service.resolve("joe@example.com") == ISSUER

        clock.advance(30)
        assert await service.resolve("joe@example.com") == "https://moved.example.com"
        assert fetcher.load.await_count == 2


class TestGetIssuer:
    """Test cases for issuer selection from a login request."""

    @pytest.mark.asyncio
    async def test_missing_identifier_redirects_to_login(self, issuer_service):
        response = await issuer_service.get_issuer(_login_request())

        assert response.should_redirect
        assert response.redirect_url == "/login"
        assert response.issuer is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_identifier_resolves(self, issuer_service):
        respx.get(WEBFINGER_URL).mock(
            return_value=httpx.Response(200, json=TestDataFactory.create_webfinger_response(ISSUER))
        )

        response = await issuer_service.get_issuer(_login_request("identifier=joe%40example.com"))

        assert response.issuer == ISSUER
        assert not response.should_redirect

    @pytest.mark.asyncio
    async def test_unresolvable_identifier(self, clock):
        service = WebfingerIssuerService(_fake_fetcher(None), parameter_name="login_hint", clock=clock)

        assert await service.get_issuer(_login_request("login_hint=joe%40example.com")) is None
