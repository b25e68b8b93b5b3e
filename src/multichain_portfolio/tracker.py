"""Portfolio tracker publishing versioned snapshots, and the polling task that drives it."""

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor

from multichain_portfolio.config import TrackerSettings
from multichain_portfolio.core.aggregator import BalanceAggregator
from multichain_portfolio.core.exceptions import PortfolioError
from multichain_portfolio.core.merge import is_critical_failure, merge
from multichain_portfolio.core.models import AssetDescriptor, PortfolioSnapshot, PriceMap, RawBalance
from multichain_portfolio.core.sources import BalanceProvider, build_sources
from multichain_portfolio.data import get_all_assets
from multichain_portfolio.pricing.cache import CacheKey, PriceCache
from multichain_portfolio.pricing.coingecko import CoinGeckoClient
from multichain_portfolio.rpc.retry import RetryConfig

logger = logging.getLogger(__name__)


class PortfolioTracker:
    """
    Joins balance and price data into immutable, versioned snapshots.

    Balances and prices are fetched concurrently and merged once both are
    available. A snapshot is also republished whenever the price cache
    finishes a background refresh, so stale prices are replaced as soon as
    fresh ones land.

    Parameters
    ----------
    aggregator : BalanceAggregator
        Balance aggregator owning the balance sources
    price_cache : PriceCache
        Price cache instance (owned by this tracker)
    price_identifiers : Iterable[str] | None
        Identifiers to price. Defaults to those of the aggregator's assets.
    clock : Callable[[], float]
        Timestamp source for ``published_at``

    """

    def __init__(
        self,
        aggregator: BalanceAggregator,
        price_cache: PriceCache,
        price_identifiers: Iterable[str] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.aggregator = aggregator
        self.price_cache = price_cache
        if price_identifiers is None:
            price_identifiers = (source.asset.price_identifier for source in aggregator.sources)
        self.price_identifiers = list(dict.fromkeys(price_identifiers))
        self.clock = clock

        self._lock = threading.Lock()
        self._version = 0
        self._snapshot = PortfolioSnapshot(version=0, owner=None)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tracker")

        price_cache.add_listener(self._on_prices_updated)

    def snapshot(self) -> PortfolioSnapshot:
        """Return the latest published snapshot without blocking."""
        with self._lock:
            return self._snapshot

    def refresh(self, owner: str) -> PortfolioSnapshot:
        """
        Run one refresh cycle for ``owner`` and publish the result.

        Parameters
        ----------
        owner : str
            Wallet address

        Returns
        -------
        PortfolioSnapshot
            Newly published snapshot

        """
        price_future = self._executor.submit(self._fetch_prices)
        balances = self.aggregator.refresh(owner)
        prices = price_future.result()
        return self._publish(owner, balances, prices)

    def invalidate_prices(self) -> None:
        """Drop all cached prices; the next refresh fetches from upstream."""
        self.price_cache.clear()

    def close(self) -> None:
        """Release the worker pools of the tracker and its collaborators."""
        self._executor.shutdown(wait=False)
        self.aggregator.close()
        self.price_cache.close()

    def _fetch_prices(self) -> PriceMap:
        try:
            return self.price_cache.get_prices(self.price_identifiers)
        except PortfolioError as e:
            logger.warning("Prices unavailable: %s", e)
            return {}

    def _publish(self, owner: str, balances: Sequence[RawBalance], prices: PriceMap) -> PortfolioSnapshot:
        with self._lock:
            entries, summary = merge(balances, prices)
            self._version += 1
            snapshot = PortfolioSnapshot(
                version=self._version,
                owner=owner,
                entries=tuple(entries),
                summary=summary,
                loading=self.aggregator.is_loading or self.price_cache.is_refreshing,
                error=is_critical_failure(balances, prices),
                published_at=self.clock(),
            )
            self._snapshot = snapshot

        logger.info(
            "Published snapshot v%d for %s: %d assets, $%s total%s",
            snapshot.version,
            owner,
            summary.total_asset_count,
            f"{summary.total_usd_value:,.2f}",
            " (unavailable)" if snapshot.error else "",
        )
        return snapshot

    def _on_prices_updated(self, key: CacheKey, quotes: PriceMap) -> None:
        owner = self.aggregator.owner
        if owner is None:
            return
        balances = self.aggregator.snapshot()
        self._publish(owner, balances, self.price_cache.peek(self.price_identifiers))


class Poller:
    """
    Background task re-running ``tracker.refresh`` on a fixed interval.

    Parameters
    ----------
    tracker : PortfolioTracker
        Tracker to refresh
    owner : str
        Wallet address
    interval : float
        Seconds between the end of one cycle and the start of the next
    on_snapshot : Callable[[PortfolioSnapshot], None] | None
        Called with every snapshot produced by a cycle

    """

    def __init__(
        self,
        tracker: PortfolioTracker,
        owner: str,
        interval: float = 60.0,
        on_snapshot: Callable[[PortfolioSnapshot], None] | None = None,
    ) -> None:
        self.tracker = tracker
        self.owner = owner
        self.interval = interval
        self.on_snapshot = on_snapshot
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start polling on a daemon thread; the first cycle runs immediately."""
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="portfolio-poller", daemon=True)
        self._thread.start()
        logger.info("Polling %s every %.0fs", self.owner, self.interval)

    def stop(self, timeout: float | None = None) -> None:
        """Stop polling and wait for the current cycle to finish."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_once(self) -> PortfolioSnapshot:
        """Run a single refresh cycle on the calling thread."""
        snapshot = self.tracker.refresh(self.owner)
        if self.on_snapshot is not None:
            self.on_snapshot(snapshot)
        return snapshot

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                # Keep polling; the next cycle may succeed
                logger.exception("Refresh cycle for %s failed", self.owner)
            self._stop.wait(self.interval)

    def __enter__(self) -> "Poller":
        self.start()
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        self.stop()


def build_tracker(
    settings: TrackerSettings,
    providers: Mapping[str, BalanceProvider],
    assets: Iterable[AssetDescriptor] | None = None,
) -> PortfolioTracker:
    """
    Wire up a tracker from settings and per-network providers.

    Parameters
    ----------
    settings : TrackerSettings
        Runtime settings
    providers : Mapping[str, BalanceProvider]
        Provider per network id
    assets : Iterable[AssetDescriptor] | None
        Assets to track. Defaults to every catalog asset on the provided networks.

    Returns
    -------
    PortfolioTracker
        Ready-to-refresh tracker

    """
    if assets is None:
        assets = [asset for asset in get_all_assets() if asset.network_id in providers]

    retry_config = RetryConfig(max_retries=settings.max_retries, base_delay=settings.retry_base_delay)
    client = CoinGeckoClient(
        base_url=settings.price_api_url,
        api_key=settings.price_api_key,
        timeout=settings.request_timeout,
        retry_config=retry_config,
    )
    price_cache = PriceCache(
        client,
        ttl=settings.price_ttl,
        timeout=settings.price_timeout,
        failure_backoff=settings.price_failure_backoff,
    )
    aggregator = BalanceAggregator(
        build_sources(assets, providers),
        timeout=settings.balance_timeout,
        max_workers=settings.max_workers,
    )
    return PortfolioTracker(aggregator, price_cache)
