"""
Unit tests for JWKSFetcher.
"""

import httpx
import pytest

from shared.errors import FetchError
from service_auth.app.jwks.client import JWKSFetcher

ISSUER = "https://idp.example.com/auth/realms/master"
DISCOVERY_URL = ISSUER + "/.well-known/openid-configuration"
JWKS_URL = ISSUER + "/protocol/openid-connect/certs"


class KeyEndpoint:
    """Mock transport handler for discovery and JWKS requests."""

    def __init__(self, jwks=None, discovery=None):
        self.jwks = jwks if jwks is not None else {"keys": [{"kid": "key-1", "kty": "RSA", "n": "abc", "e": "AQAB"}]}
        self.discovery = discovery if discovery is not None else {"issuer": ISSUER, "jwks_uri": JWKS_URL}
        self.requests = []
        self.jwks_status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(str(request.url))
        if str(request.url) == DISCOVERY_URL:
            return httpx.Response(200, json=self.discovery)
        if str(request.url) == JWKS_URL:
            if isinstance(self.jwks, bytes):
                return httpx.Response(self.jwks_status, content=self.jwks)
            return httpx.Response(self.jwks_status, json=self.jwks)
        return httpx.Response(404)


def make_fetcher(endpoint, issuer=ISSUER):
    client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
    return JWKSFetcher(issuer, client=client), client


class TestJWKSFetcher:
    """Test cases for JWKSFetcher."""

    @pytest.mark.asyncio
    async def test_fetch_keys_via_discovery(self):
        endpoint = KeyEndpoint()
        fetcher, client = make_fetcher(endpoint)

        keys = await fetcher()

        assert keys == endpoint.jwks["keys"]
        assert endpoint.requests == [DISCOVERY_URL, JWKS_URL]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_jwks_uri_is_discovered_once(self):
        endpoint = KeyEndpoint()
        fetcher, client = make_fetcher(endpoint)

        await fetcher.fetch_keys()
        await fetcher.fetch_keys()

        assert endpoint.requests == [DISCOVERY_URL, JWKS_URL, JWKS_URL]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_trailing_slash_in_issuer(self):
        endpoint = KeyEndpoint()
        fetcher, client = make_fetcher(endpoint, issuer=ISSUER + "/")

        await fetcher.fetch_keys()

        assert endpoint.requests[0] == DISCOVERY_URL
        await client.aclose()

    @pytest.mark.asyncio
    async def test_http_error_status_raises_fetch_error(self):
        endpoint = KeyEndpoint()
        endpoint.jwks_status = 503
        fetcher, client = make_fetcher(endpoint)

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch_keys()

        assert exc_info.value.details["status_code"] == 503
        assert exc_info.value.issuer == ISSUER
        assert exc_info.value.code == "FETCH_ERROR"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_transport_error_raises_fetch_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        fetcher, client = make_fetcher(refuse)

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch_keys()

        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_missing_jwks_uri_raises_fetch_error(self):
        endpoint = KeyEndpoint(discovery={"issuer": ISSUER})
        fetcher, client = make_fetcher(endpoint)

        with pytest.raises(FetchError, match="jwks_uri"):
            await fetcher.fetch_keys()
        await client.aclose()

    @pytest.mark.asyncio
    async def test_missing_keys_array_raises_fetch_error(self):
        endpoint = KeyEndpoint(jwks={"not_keys": []})
        fetcher, client = make_fetcher(endpoint)

        with pytest.raises(FetchError, match="keys"):
            await fetcher.fetch_keys()
        await client.aclose()

    @pytest.mark.asyncio
    async def test_invalid_json_raises_fetch_error(self):
        endpoint = KeyEndpoint(jwks=b"<html>maintenance</html>")
        fetcher, client = make_fetcher(endpoint)

        with pytest.raises(FetchError, match="not valid JSON"):
            await fetcher.fetch_keys()
        await client.aclose()

    @pytest.mark.asyncio
    async def test_malformed_entries_are_dropped(self):
        endpoint = KeyEndpoint(jwks={"keys": [{"kid": "key-1"}, "garbage", 42]})
        fetcher, client = make_fetcher(endpoint)

        keys = await fetcher.fetch_keys()

        assert keys == [{"kid": "key-1"}]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self):
        fetcher, client = make_fetcher(KeyEndpoint())

        await fetcher.aclose()

        assert not client.is_closed
        await client.aclose()

    @pytest.mark.asyncio
    async def test_aclose_closes_owned_client(self):
        fetcher = JWKSFetcher(ISSUER, timeout=1.0)

        await fetcher.aclose()

        assert fetcher._client.is_closed
