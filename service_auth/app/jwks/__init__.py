"""
JWKS package.

Fetching and caching of each issuer's JSON Web Key Set (JWKS):

- client: OpenID Connect discovery plus JWKS download over httpx.
- cache: per-issuer verification cache with TTL refresh, single-flight
  fetching and an error-tolerance window before the issuer is declared
  unusable.
"""

from .cache import CacheState, KeySet, VerificationCache
from .client import JWKSFetcher

__all__ = ["CacheState", "JWKSFetcher", "KeySet", "VerificationCache"]
