"""
Issuer manager: routes a request to the verification cache of its issuer.
"""

from contextvars import Context
from datetime import timedelta
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Union
from urllib.parse import urlsplit

from shared.config import BaseConfig
from shared.errors import ConfigurationError, NoIssuerConfigured, VerificationUnavailable
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..jwks.cache import KeyFetcher, VerificationCache
from ..jwks.client import JWKSFetcher
from .context import get_issuer_domain
from .domain import extract_domain_key

DEFAULT_CACHE_TTL = timedelta(minutes=15)
DEFAULT_ERROR_TOLERANCE = timedelta(minutes=1)

FetcherFactory = Callable[[str], KeyFetcher]


def _seconds(value: Union[timedelta, float, int, None], default: timedelta) -> float:
    """Convert a configured duration to seconds, substituting the default for zero."""
    if isinstance(value, timedelta):
        seconds = value.total_seconds()
    else:
        seconds = float(value or 0)
    if seconds <= 0:
        return default.total_seconds()
    return seconds


class IssuerManager:
    """Immutable mapping from issuer domain key to verification cache.

    Built once at startup and shared by every request; lookups never mutate
    it, so resolution needs no locking.
    """

    def __init__(
        self,
        domain_to_issuer: Mapping[str, VerificationCache],
        default_issuer: Optional[VerificationCache],
        caches: Optional[List[VerificationCache]] = None,
    ) -> None:
        self._domain_to_issuer = MappingProxyType(dict(domain_to_issuer))
        self._default_issuer = default_issuer
        # Every cache built, including ones shadowed by a colliding domain
        self._caches = list(caches) if caches is not None else list(self._domain_to_issuer.values())
        if default_issuer is not None and default_issuer not in self._caches:
            self._caches.append(default_issuer)
        self.logger = get_logger("auth.issuers")

    @classmethod
    def from_config(
        cls,
        config: BaseConfig,
        *,
        fetcher_factory: Optional[FetcherFactory] = None,
        clock: Optional[Callable[[], float]] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> "IssuerManager":
        """Build one verification cache per configured issuer URL.

        The first cache built is the default issuer. Colliding domain keys
        keep the last URL.

        Raises:
            ConfigurationError: an issuer URL cannot be parsed. No partial
                manager is produced.
        """
        logger = get_logger("auth.issuers")
        cache_ttl = _seconds(config.cache_ttl, DEFAULT_CACHE_TTL)
        error_tolerance = _seconds(config.error_tolerance, DEFAULT_ERROR_TOLERANCE)
        fetch_timeout = float(getattr(config, "jwks_fetch_timeout", 10.0))
        retry_interval = float(getattr(config, "jwks_retry_interval", 5.0))

        if fetcher_factory is None:
            def fetcher_factory(issuer_url: str) -> KeyFetcher:
                return JWKSFetcher(issuer_url, timeout=fetch_timeout)

        # All URLs are validated before any fetcher is built
        raw_urls = (config.addr_token_provider or "").split()
        for raw_url in raw_urls:
            try:
                urlsplit(raw_url).port
            except ValueError as exc:
                raise ConfigurationError(
                    f"Invalid token provider URL: {raw_url}",
                    details={"url": raw_url, "error": str(exc)}
                ) from exc

        domain_to_issuer: Dict[str, VerificationCache] = {}
        caches: List[VerificationCache] = []
        domain_to_url: Dict[str, str] = {}
        default_issuer: Optional[VerificationCache] = None
        has_default = False

        for raw_url in raw_urls:
            parsed = urlsplit(raw_url)
            if not parsed.scheme or not parsed.netloc:
                logger.warning("Token provider URL has no scheme or host", url=raw_url)

            domain_key = extract_domain_key(raw_url)
            if domain_key in domain_to_issuer:
                logger.warning(
                    "Token provider domain configured twice, keeping the last one",
                    domain=domain_key,
                    replaced=domain_to_url[domain_key],
                    url=raw_url
                )

            issuer = VerificationCache(
                raw_url,
                fetcher_factory(raw_url),
                cache_ttl,
                error_tolerance,
                fetch_timeout=fetch_timeout,
                retry_interval=retry_interval,
                clock=clock,
                metrics=metrics,
            )
            caches.append(issuer)
            domain_to_issuer[domain_key] = issuer
            domain_to_url[domain_key] = raw_url
            if not has_default:
                default_issuer = issuer
                has_default = True

        logger.info(
            "Issuer manager built",
            issuers=sorted(domain_to_issuer),
            default=default_issuer.issuer_url if default_issuer is not None else None,
            cache_ttl_seconds=cache_ttl,
            error_tolerance_seconds=error_tolerance
        )
        return cls(domain_to_issuer, default_issuer, caches)

    @property
    def issuers(self) -> Mapping[str, VerificationCache]:
        return self._domain_to_issuer

    @property
    def default_issuer(self) -> Optional[VerificationCache]:
        return self._default_issuer

    def resolve(self, ctx: Optional[Context] = None) -> VerificationCache:
        """Return the cache for the request's issuer domain, else the default.

        Raises:
            NoIssuerConfigured: no cache matches and there is no default.
        """
        issuer_domain = get_issuer_domain(ctx)
        if issuer_domain is not None:
            issuer = self._domain_to_issuer.get(extract_domain_key(issuer_domain))
            if issuer is not None:
                return issuer

        if self._default_issuer is None:
            raise NoIssuerConfigured(details={"issuer_domain": issuer_domain})
        return self._default_issuer

    async def warmup(self) -> None:
        """Load every issuer's key set so first requests skip the fetch."""
        for domain, issuer in self._domain_to_issuer.items():
            try:
                await issuer.get_verification_capability()
            except VerificationUnavailable as exc:
                self.logger.warning("JWKS warmup failed", domain=domain, error=str(exc))

    def health(self) -> Dict[str, Dict[str, Any]]:
        return {domain: issuer.snapshot() for domain, issuer in self._domain_to_issuer.items()}

    async def aclose(self) -> None:
        for issuer in self._caches:
            await issuer.aclose()
