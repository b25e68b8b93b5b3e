"""TTL-based price cache with request coalescing and stale fallback."""

import logging
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Protocol

from multichain_portfolio.core.exceptions import PortfolioError, TransientFetchError
from multichain_portfolio.core.models import PriceMap, PriceQuote

logger = logging.getLogger(__name__)

CacheKey = tuple[str, ...]
PriceListener = Callable[[CacheKey, PriceMap], None]


class PriceClient(Protocol):
    """Upstream price source."""

    def fetch_quotes(self, price_identifiers: Iterable[str]) -> dict[str, PriceQuote]: ...


class CacheEntry:
    """
    Cached price map for one identifier set.

    Parameters
    ----------
    value : PriceMap
        Quotes keyed by price identifier
    fetched_at : float
        Timestamp at which the upstream request was issued

    """

    def __init__(self, value: PriceMap, fetched_at: float) -> None:
        self.value = value
        self.fetched_at = fetched_at

    def is_expired(self, ttl: float, now: float) -> bool:
        """
        Check if cache entry is older than ``ttl``.

        Parameters
        ----------
        ttl : float
            Freshness window in seconds
        now : float
            Current timestamp

        Returns
        -------
        bool
            True if expired, False otherwise

        """
        return (now - self.fetched_at) >= ttl


class PriceCache:
    """
    In-memory price cache with stale-while-revalidate semantics.

    Entries are keyed by the sorted, de-duplicated identifier set, so the
    same identifiers requested in any order share one entry. Fresh entries
    are served without an upstream call. Expired entries are still served
    while a background refresh runs. Concurrent requests for the same key
    share a single upstream call.

    When a fetch fails, any cached value is returned instead of the error.
    Without a cached entry for the key, quotes known from other entries are
    served; the error is raised only when none of the requested identifiers
    has ever been priced.

    After a failed background refresh an expired entry keeps being served
    without a new upstream call until ``failure_backoff`` seconds have passed.

    Parameters
    ----------
    client : PriceClient
        Upstream price client
    ttl : float
        Freshness window in seconds
    timeout : float
        Upper bound in seconds a caller waits on a cold fetch
    failure_backoff : float
        Seconds to wait after a failed refresh before refetching an expired entry
    max_workers : int
        Thread pool size for upstream fetches
    clock : Callable[[], float]
        Timestamp source, replaceable in tests

    """

    def __init__(
        self,
        client: PriceClient,
        ttl: float = 60.0,
        timeout: float = 30.0,
        failure_backoff: float = 10.0,
        max_workers: int = 4,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.ttl = ttl
        self.timeout = timeout
        self.failure_backoff = failure_backoff
        self.clock = clock
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="price")
        self._lock = threading.RLock()
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._quotes: dict[str, PriceQuote] = {}
        self._in_flight: dict[CacheKey, Future] = {}
        self._failed_at: dict[CacheKey, float] = {}
        self._listeners: list[PriceListener] = []

    @staticmethod
    def make_key(price_identifiers: Iterable[str]) -> CacheKey:
        """Build the order-independent cache key for an identifier set."""
        return tuple(sorted(set(price_identifiers)))

    @property
    def is_refreshing(self) -> bool:
        """True while any upstream fetch is in flight."""
        with self._lock:
            return any(not future.done() for future in self._in_flight.values())

    def get_prices(self, price_identifiers: Iterable[str]) -> PriceMap:
        """
        Get quotes for a set of price identifiers.

        Parameters
        ----------
        price_identifiers : Iterable[str]
            CoinGecko ids, in any order, duplicates allowed

        Returns
        -------
        PriceMap
            Quotes keyed by identifier; identifiers without a price are absent

        Raises
        ------
        TransientFetchError
            Cold fetch failed or timed out and no requested identifier has a known quote
        UpstreamRejection
            Cold fetch was rejected and no requested identifier has a known quote

        """
        key = self.make_key(price_identifiers)
        if not key:
            return {}

        with self._lock:
            now = self.clock()
            entry = self._entries.get(key)
            if entry is not None and not entry.is_expired(self.ttl, now):
                return dict(entry.value)

            failed_at = self._failed_at.get(key)
            if entry is not None and failed_at is not None and now - failed_at < self.failure_backoff:
                logger.debug("Serving stale prices for %s; last refresh failed", ",".join(key))
                return dict(entry.value)

            future = self._ensure_refresh(key)

            if entry is not None:
                logger.debug("Serving stale prices for %s while refreshing", ",".join(key))
                return dict(entry.value)

        try:
            return dict(future.result(timeout=self.timeout))
        except FuturesTimeoutError:
            error: PortfolioError = TransientFetchError(f"Price fetch timed out after {self.timeout:.1f}s")
        except PortfolioError as e:
            error = e

        return self._fallback(key, error)

    def peek(self, price_identifiers: Iterable[str]) -> PriceMap:
        """Return whatever is cached for the identifier set, without fetching."""
        key = self.make_key(price_identifiers)
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                return dict(entry.value)
            return {i: self._quotes[i] for i in key if i in self._quotes}

    def pending_refresh(self, price_identifiers: Iterable[str]) -> Future | None:
        """Return the in-flight fetch for the identifier set, if any."""
        key = self.make_key(price_identifiers)
        with self._lock:
            return self._in_flight.get(key)

    def add_listener(self, listener: PriceListener) -> None:
        """Register a callback invoked after every successful cache write."""
        with self._lock:
            self._listeners.append(listener)

    def clear(self) -> None:
        """Clear all cached entries."""
        with self._lock:
            self._entries.clear()
            self._quotes.clear()
            self._failed_at.clear()

    def close(self) -> None:
        """Shut down the fetch pool without waiting for in-flight requests."""
        self._executor.shutdown(wait=False)

    def _ensure_refresh(self, key: CacheKey) -> Future:
        # Caller holds self._lock
        future = self._in_flight.get(key)
        if future is None:
            future = self._executor.submit(self._refresh, key)
            self._in_flight[key] = future
            future.add_done_callback(lambda f: self._on_refresh_done(key, f))
        return future

    def _refresh(self, key: CacheKey) -> PriceMap:
        requested_at = self.clock()
        logger.debug("Fetching prices for %s", ",".join(key))
        quotes = self.client.fetch_quotes(key)
        return self._store(key, quotes, requested_at)

    def _store(self, key: CacheKey, quotes: PriceMap, requested_at: float) -> PriceMap:
        with self._lock:
            current = self._entries.get(key)
            if current is not None and current.fetched_at > requested_at:
                logger.debug("Discarding superseded prices for %s", ",".join(key))
                return current.value

            self._entries[key] = CacheEntry(quotes, requested_at)
            for price_id, quote in quotes.items():
                known = self._quotes.get(price_id)
                if known is None or known.fetched_at <= quote.fetched_at:
                    self._quotes[price_id] = quote
            listeners = list(self._listeners)

        for listener in listeners:
            listener(key, dict(quotes))
        return quotes

    def _on_refresh_done(self, key: CacheKey, future: Future) -> None:
        error = future.exception()
        with self._lock:
            if self._in_flight.get(key) is future:
                del self._in_flight[key]
            if error is None:
                self._failed_at.pop(key, None)
            else:
                self._failed_at[key] = self.clock()

        if error is not None:
            logger.warning("Price refresh for %s failed: %s", ",".join(key), error)

    def _fallback(self, key: CacheKey, error: PortfolioError) -> PriceMap:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                return dict(entry.value)
            known = {i: self._quotes[i] for i in key if i in self._quotes}

        if known:
            logger.warning("Price fetch failed (%s); serving %d known quotes", error, len(known))
            return known
        raise error

    def __enter__(self) -> "PriceCache":
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        self.close()
