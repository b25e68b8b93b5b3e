"""Balance aggregator fanning out per-asset balance queries."""

import logging
import threading
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from functools import partial

from multichain_portfolio.core.exceptions import UpstreamRejection
from multichain_portfolio.core.models import ErrorKind, Failed, RawBalance, Ready
from multichain_portfolio.core.sources import BalanceSource
from multichain_portfolio.utils.formatters import format_units

logger = logging.getLogger(__name__)


class BalanceAggregator:
    """
    Queries every configured balance source for one owner address.

    Each source is queried independently on a thread pool. The aggregator
    always exposes one record per source: zero-quantity ``Pending``
    placeholders until a result arrives, then ``Ready`` or ``Failed``
    records. Every change publishes a new immutable tuple, so readers never
    observe a half-updated collection.

    Parameters
    ----------
    sources : Iterable[BalanceSource]
        One source per catalog asset
    timeout : float
        Upper bound in seconds for each balance query
    max_workers : int | None
        Thread pool size. Defaults to one worker per source.

    """

    def __init__(
        self,
        sources: Iterable[BalanceSource],
        timeout: float = 15.0,
        max_workers: int | None = None,
    ) -> None:
        self.sources = list(sources)
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or max(len(self.sources), 1),
            thread_name_prefix="balance",
        )
        self._lock = threading.Lock()
        self._owner: str | None = None
        self._generation = 0
        self._outstanding: set[Future] = set()
        self._records: tuple[RawBalance, ...] = self._placeholders()

    @property
    def owner(self) -> str | None:
        return self._owner

    @property
    def is_loading(self) -> bool:
        """True while any balance query of the current owner is outstanding."""
        with self._lock:
            return bool(self._outstanding)

    def snapshot(self) -> tuple[RawBalance, ...]:
        """
        Return the last published collection without blocking.

        Returns
        -------
        tuple[RawBalance, ...]
            One record per source, in source order

        """
        with self._lock:
            return self._records

    def get_balances(self, owner: str) -> list[RawBalance]:
        """
        Query all sources for ``owner`` and return the resulting records.

        Parameters
        ----------
        owner : str
            Wallet address

        Returns
        -------
        list[RawBalance]
            One record per source; failed sources are reported on their own
            record and never raise

        """
        return list(self.refresh(owner))

    def refresh(self, owner: str) -> tuple[RawBalance, ...]:
        """
        Issue one query per source and wait for all of them (bounded by timeout).

        Calling this while a previous refresh is still running does not cancel
        the earlier calls; whichever results belong to the newest generation
        win.

        Parameters
        ----------
        owner : str
            Wallet address

        Returns
        -------
        tuple[RawBalance, ...]
            Snapshot published after this refresh completed

        """
        with self._lock:
            if owner != self._owner:
                self._owner = owner
                self._outstanding = set()
                self._records = self._placeholders()
            self._generation += 1
            generation = self._generation

            future_to_index: dict[Future, int] = {}
            for index, source in enumerate(self.sources):
                future = self._executor.submit(source.fetch, owner)
                self._outstanding.add(future)
                future_to_index[future] = index

        logger.debug("Refreshing %d balances for %s (generation %d)", len(future_to_index), owner, generation)

        done, not_done = wait(future_to_index, timeout=self.timeout)

        for future in done:
            self._on_done(future_to_index[future], generation, owner, future)

        for future in not_done:
            index = future_to_index[future]
            logger.warning("Balance query %r timed out after %.1fs", self.sources[index], self.timeout)
            status = Failed(error=f"timed out after {self.timeout:.1f}s", error_kind=ErrorKind.TRANSIENT)
            # The call is not cancelled and stays outstanding; a late result still replaces the timeout marker
            self._publish(index, generation, owner, future, status, settled=False)
            future.add_done_callback(partial(self._on_done, index, generation, owner))

        return self.snapshot()

    def close(self) -> None:
        """Shut down the worker pool without waiting for in-flight queries."""
        self._executor.shutdown(wait=False)

    def _on_done(self, index: int, generation: int, owner: str, future: Future) -> None:
        source = self.sources[index]
        try:
            record = self._ready_record(index, future.result(), generation)
        except UpstreamRejection as e:
            logger.warning("Balance query %r rejected: %s", source, e)
            self._publish(index, generation, owner, future, Failed(error=str(e), error_kind=ErrorKind.REJECTED))
        except Exception as e:
            # One broken source must not affect the others, including one returning a malformed quantity
            logger.warning("Balance query %r failed: %s", source, e)
            self._publish(index, generation, owner, future, Failed(error=str(e), error_kind=ErrorKind.TRANSIENT))
        else:
            self._publish(index, generation, owner, future, record)

    def _ready_record(self, index: int, quantity: int, generation: int) -> RawBalance:
        """
        Build the ready record for a query result.

        Raises
        ------
        pydantic.ValidationError
            If ``quantity`` is not a non-negative integer

        """
        asset = self.sources[index].asset
        record = RawBalance(asset=asset, quantity_minor_units=quantity, status=Ready(), generation=generation)
        formatted = format_units(record.quantity_minor_units, asset.decimal_places)
        return record.model_copy(update={"formatted_quantity": formatted})

    def _publish(
        self,
        index: int,
        generation: int,
        owner: str,
        future: Future,
        update: RawBalance | Failed,
        settled: bool = True,
    ) -> None:
        """
        Swap in a new record for ``index`` unless it has been superseded.

        ``update`` is either the complete ready record or the ``Failed``
        status to apply to the current record, which keeps its last known
        quantity. ``settled=False`` leaves ``future`` outstanding.

        """
        with self._lock:
            if settled:
                self._outstanding.discard(future)
            if owner != self._owner:
                return

            current = self._records[index]
            if current.generation > generation:
                logger.debug("Discarding superseded result for %r", self.sources[index])
                return

            if isinstance(update, Failed):
                record = current.model_copy(update={"status": update, "generation": generation})
            else:
                record = update

            records = list(self._records)
            records[index] = record
            self._records = tuple(records)

    def _placeholders(self) -> tuple[RawBalance, ...]:
        return tuple(RawBalance(asset=source.asset) for source in self.sources)

    def __enter__(self) -> "BalanceAggregator":
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        self.close()
