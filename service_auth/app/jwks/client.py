"""
JWKS client for fetching an issuer's published signing keys.
"""

from typing import Any, Dict, List, Optional

import httpx

from shared.errors import FetchError
from shared.logging import get_logger

DISCOVERY_PATH = "/.well-known/openid-configuration"


class JWKSFetcher:
    """Fetch the JWKS of one issuer through OpenID Connect discovery."""

    def __init__(
        self,
        issuer_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self.issuer_url = issuer_url.rstrip("/")
        self.logger = get_logger("auth.jwks.client")
        self._jwks_uri: Optional[str] = None
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def discovery_url(self) -> str:
        return self.issuer_url + DISCOVERY_PATH

    async def __call__(self) -> List[Dict[str, Any]]:
        return await self.fetch_keys()

    async def fetch_keys(self) -> List[Dict[str, Any]]:
        """Return the issuer's current key list."""
        jwks_uri = self._jwks_uri or await self._discover_jwks_uri()
        payload = await self._get_json(jwks_uri)

        keys = payload.get("keys")
        if not isinstance(keys, list):
            raise FetchError(self.issuer_url, "JWKS response missing 'keys' array", {"url": jwks_uri})

        valid_keys = [key for key in keys if isinstance(key, dict)]
        if len(valid_keys) != len(keys):
            self.logger.warning(
                "Ignoring malformed JWKS entries",
                issuer=self.issuer_url,
                dropped=len(keys) - len(valid_keys)
            )
        return valid_keys

    async def _discover_jwks_uri(self) -> str:
        payload = await self._get_json(self.discovery_url)
        jwks_uri = payload.get("jwks_uri")
        if not isinstance(jwks_uri, str) or not jwks_uri:
            raise FetchError(
                self.issuer_url,
                "Discovery document missing 'jwks_uri'",
                {"url": self.discovery_url}
            )

        self._jwks_uri = jwks_uri
        self.logger.debug("Discovered JWKS endpoint", issuer=self.issuer_url, jwks_uri=jwks_uri)
        return jwks_uri

    async def _get_json(self, url: str) -> Dict[str, Any]:
        try:
            response = await self._client.get(url, headers={"Accept": "application/json"})
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise FetchError(
                self.issuer_url,
                f"HTTP {exc.response.status_code} from key endpoint",
                {"url": url, "status_code": exc.response.status_code}
            ) from exc
        except httpx.HTTPError as exc:
            raise FetchError(self.issuer_url, f"Request failed: {exc}", {"url": url}) from exc
        except ValueError as exc:
            raise FetchError(self.issuer_url, "Response is not valid JSON", {"url": url}) from exc

        if not isinstance(payload, dict):
            raise FetchError(self.issuer_url, "Response is not a JSON object", {"url": url})
        return payload

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this fetcher created it."""
        if self._owns_client:
            await self._client.aclose()
