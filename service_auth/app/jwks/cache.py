"""
Per-issuer verification key cache.

Holds the last key set fetched from one issuer and serves it under
concurrent load. Staleness is driven by ``cache_ttl``; after a failed refresh
the old key set keeps being served for ``error_tolerance`` beyond the TTL
before the issuer is declared unusable.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Tuple

from shared.errors import FetchError, VerificationUnavailable
from shared.logging import get_logger
from shared.metrics import MetricsCollector

KeyFetcher = Callable[[], Awaitable[Iterable[Mapping[str, Any]]]]


class CacheState(Enum):
    """Verification cache states."""
    UNINITIALIZED = "uninitialized"  # No successful fetch yet
    FRESH = "fresh"                  # Younger than the TTL
    STALE = "stale"                  # Past the TTL, refresh not yet failed
    DEGRADED = "degraded"            # Refresh failed, still within tolerance
    FAILED = "failed"                # Refresh failed, tolerance exhausted


_STATE_GAUGE = {
    CacheState.UNINITIALIZED: 0,
    CacheState.FRESH: 1,
    CacheState.STALE: 2,
    CacheState.DEGRADED: 3,
    CacheState.FAILED: 4,
}


@dataclass(frozen=True)
class KeySet:
    """Immutable snapshot of an issuer's published keys."""

    keys: Tuple[Mapping[str, Any], ...]
    fetched_at: float

    @classmethod
    def from_keys(cls, keys: Iterable[Mapping[str, Any]], fetched_at: float) -> "KeySet":
        return cls(
            keys=tuple(MappingProxyType(dict(key)) for key in keys),
            fetched_at=fetched_at,
        )

    @property
    def kids(self) -> Tuple[str, ...]:
        return tuple(key["kid"] for key in self.keys if isinstance(key.get("kid"), str))

    def find(self, kid: str) -> Optional[Mapping[str, Any]]:
        """Return the key with the given key id, if published."""
        for key in self.keys:
            if key.get("kid") == kid:
                return key
        return None

    def __len__(self) -> int:
        return len(self.keys)


class VerificationCache:
    """TTL cache of one issuer's key set with single-flight refresh."""

    def __init__(
        self,
        issuer_url: str,
        fetcher: KeyFetcher,
        cache_ttl: float = 900.0,
        error_tolerance: float = 60.0,
        *,
        fetch_timeout: float = 10.0,
        retry_interval: float = 5.0,
        clock: Optional[Callable[[], float]] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.issuer_url = issuer_url
        self.cache_ttl = cache_ttl
        self.error_tolerance = error_tolerance
        self.fetch_timeout = fetch_timeout
        self.retry_interval = retry_interval
        self.logger = get_logger("auth.jwks.cache")

        self._fetcher = fetcher
        self._clock = clock or time.monotonic
        self._metrics = metrics

        self._current_keys: Optional[KeySet] = None
        self._last_success_at: Optional[float] = None
        self._last_attempt_at: Optional[float] = None
        self._last_error: Optional[FetchError] = None

        # Guards the in-flight slot only, never the fetch itself
        self._lock = asyncio.Lock()
        self._inflight: Optional["asyncio.Task[Optional[KeySet]]"] = None
        self._reported_state = CacheState.UNINITIALIZED

    @property
    def current_keys(self) -> Optional[KeySet]:
        return self._current_keys

    @property
    def last_success_at(self) -> Optional[float]:
        return self._last_success_at

    @property
    def last_attempt_at(self) -> Optional[float]:
        return self._last_attempt_at

    @property
    def last_error(self) -> Optional[FetchError]:
        return self._last_error

    @property
    def refreshing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    @property
    def state(self) -> CacheState:
        return self._evaluate(self._clock())

    def _evaluate(self, now: float) -> CacheState:
        """Derive the cache state from the fetch timestamps."""
        if self._last_success_at is None:
            if self._last_error is not None:
                return CacheState.FAILED
            return CacheState.UNINITIALIZED

        age = now - self._last_success_at
        if age < self.cache_ttl:
            return CacheState.FRESH
        if self._last_error is None:
            return CacheState.STALE
        if age < self.cache_ttl + self.error_tolerance:
            return CacheState.DEGRADED
        return CacheState.FAILED

    def _within_tolerance(self, now: float) -> bool:
        return (
            self._last_success_at is not None
            and now - self._last_success_at < self.cache_ttl + self.error_tolerance
        )

    def _retry_due(self, now: float) -> bool:
        return self._last_attempt_at is None or now - self._last_attempt_at >= self.retry_interval

    async def get_verification_capability(self) -> KeySet:
        """Return the key set to verify tokens of this issuer.

        Raises:
            VerificationUnavailable: the issuer is in the failed state.
        """
        now = self._clock()
        state = self._evaluate(now)
        self._report(state)

        if state is CacheState.FRESH:
            return self._current_keys
        if state is CacheState.STALE:
            if self._within_tolerance(now):
                await self._start_refresh()
                return self._current_keys
            # Idle for the whole tolerance window; too old to serve unchecked
            await self._await_refresh()
        elif state is CacheState.DEGRADED:
            if self._retry_due(now):
                await self._start_refresh()
            return self._current_keys
        elif state is CacheState.UNINITIALIZED:
            await self._await_refresh()
        elif self.refreshing or self._retry_due(now):
            await self._await_refresh()

        return self._keys_or_raise()

    async def force_refresh(self) -> KeySet:
        """Refresh now, e.g. when a token names an unknown key id.

        Attempts are spaced by ``retry_interval`` whatever their outcome.
        """
        if self.refreshing or self._retry_due(self._clock()):
            await self._await_refresh()
        return self._keys_or_raise()

    async def join_refresh(self) -> None:
        """Wait for the in-flight refresh, if any, to finish."""
        task = self._inflight
        if task is not None:
            await asyncio.shield(task)

    def _keys_or_raise(self) -> KeySet:
        state = self._evaluate(self._clock())
        self._report(state)
        if state is CacheState.FAILED or self._current_keys is None:
            raise VerificationUnavailable(self.issuer_url, self._last_error) from self._last_error
        return self._current_keys

    async def _start_refresh(self) -> "asyncio.Task[Optional[KeySet]]":
        """Start a refresh unless one is already in flight, and return it."""
        async with self._lock:
            if self._inflight is None or self._inflight.done():
                task = asyncio.create_task(self._refresh())
                task.add_done_callback(self._clear_inflight)
                self._inflight = task
            return self._inflight

    async def _await_refresh(self) -> Optional[KeySet]:
        task = await self._start_refresh()
        # A cancelled caller must not cancel the refresh other callers share
        return await asyncio.shield(task)

    def _clear_inflight(self, task: "asyncio.Task[Optional[KeySet]]") -> None:
        if self._inflight is task:
            self._inflight = None

    async def _refresh(self) -> Optional[KeySet]:
        """Fetch once and record the outcome; never raises a fetch failure."""
        started = time.time()
        try:
            raw_keys = await asyncio.wait_for(self._fetcher(), timeout=self.fetch_timeout)
            snapshot = KeySet.from_keys(raw_keys, fetched_at=self._clock())
        except asyncio.TimeoutError:
            self._record_failure(FetchError(
                self.issuer_url,
                f"Key set fetch timed out after {self.fetch_timeout}s"
            ))
            return None
        except FetchError as exc:
            self._record_failure(exc)
            return None
        except Exception as exc:
            error = FetchError(self.issuer_url, f"Key set fetch failed: {exc}")
            error.__cause__ = exc
            self._record_failure(error)
            return None
        finally:
            if self._metrics is not None:
                self._metrics.observe_histogram(
                    "jwks_refresh_duration_seconds", time.time() - started, issuer=self.issuer_url
                )

        # Single mutation point: readers see the old or the new snapshot
        self._current_keys = snapshot
        self._last_success_at = snapshot.fetched_at
        self._last_attempt_at = snapshot.fetched_at
        self._last_error = None

        if self._metrics is not None:
            self._metrics.increment_counter("jwks_refresh_total", issuer=self.issuer_url, status="success")
        self.logger.info(
            "JWKS refreshed successfully",
            issuer=self.issuer_url,
            keys_count=len(snapshot),
            kids=list(snapshot.kids)
        )
        if not snapshot.keys:
            self.logger.warning("Issuer published an empty key set", issuer=self.issuer_url)
        self._report(CacheState.FRESH)
        return snapshot

    def _record_failure(self, error: FetchError) -> None:
        now = self._clock()
        self._last_attempt_at = now
        self._last_error = error

        if self._metrics is not None:
            self._metrics.increment_counter("jwks_refresh_total", issuer=self.issuer_url, status="error")
        state = self._evaluate(now)
        self.logger.warning(
            "Failed to refresh JWKS",
            issuer=self.issuer_url,
            error=str(error),
            state=state.value,
            serving_stale=state is CacheState.DEGRADED
        )
        self._report(state)

    def _report(self, state: CacheState) -> None:
        if state is self._reported_state:
            return
        previous, self._reported_state = self._reported_state, state
        if self._metrics is not None:
            self._metrics.set_gauge("jwks_cache_state", _STATE_GAUGE[state], issuer=self.issuer_url)

        log = self.logger.error if state is CacheState.FAILED else self.logger.info
        log(
            "Verification cache state changed",
            issuer=self.issuer_url,
            previous=previous.value,
            state=state.value
        )

    def snapshot(self) -> Dict[str, Any]:
        """Describe the cache for health and status endpoints."""
        now = self._clock()
        keys = self._current_keys
        return {
            "issuer": self.issuer_url,
            "state": self._evaluate(now).value,
            "keys_count": len(keys) if keys is not None else 0,
            "kids": list(keys.kids) if keys is not None else [],
            "age_seconds": round(now - self._last_success_at, 3) if self._last_success_at is not None else None,
            "refreshing": self.refreshing,
            "last_error": str(self._last_error) if self._last_error is not None else None,
        }

    async def aclose(self) -> None:
        """Cancel any in-flight refresh and release the fetcher."""
        task = self._inflight
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        closer = getattr(self._fetcher, "aclose", None)
        if closer is not None:
            await closer()
