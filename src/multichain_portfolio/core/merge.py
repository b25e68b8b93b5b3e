"""Portfolio merge engine joining balances with price quotes."""

from collections.abc import Iterable, Mapping, Sequence
from decimal import Decimal

from multichain_portfolio.core.models import (
    AssetKind,
    FetchState,
    PortfolioEntry,
    PortfolioSummary,
    PriceQuote,
    RawBalance,
)

ZERO = Decimal("0")


def build_entry(balance: RawBalance, prices: Mapping[str, PriceQuote]) -> PortfolioEntry:
    """
    Join one balance record with its price quote.

    A missing quote means an unknown price: price, change and value are 0.
    A zero quantity is always worth 0 regardless of the price.

    Parameters
    ----------
    balance : RawBalance
        Balance record from the aggregator
    prices : Mapping[str, PriceQuote]
        Price map keyed by price identifier

    Returns
    -------
    PortfolioEntry
        New entry carrying the balance's fetch status

    """
    quote = prices.get(balance.asset.price_identifier)
    usd_price = quote.usd_price if quote else ZERO
    usd_change_24h = quote.usd_change_24h if quote else ZERO

    quantity = Decimal(balance.formatted_quantity)
    usd_value = quantity * usd_price if quantity > 0 else ZERO

    return PortfolioEntry(
        asset=balance.asset,
        formatted_quantity=balance.formatted_quantity,
        usd_price=usd_price,
        usd_change_24h=usd_change_24h,
        usd_value=usd_value,
        status=balance.status,
    )


def sort_entries(entries: Iterable[PortfolioEntry]) -> list[PortfolioEntry]:
    """Sort by USD value descending, then symbol and network ascending."""
    return sorted(entries, key=lambda e: (-e.usd_value, e.asset.symbol, e.asset.network_id))


def summarize(entries: Sequence[PortfolioEntry]) -> PortfolioSummary:
    """
    Compute portfolio level statistics.

    Parameters
    ----------
    entries : Sequence[PortfolioEntry]
        Merged entries

    Returns
    -------
    PortfolioSummary
        Totals, counts and the value weighted 24h change

    """
    total_usd = sum((e.usd_value for e in entries), ZERO)

    valued = [e for e in entries if e.usd_value > 0]
    valued_total = sum((e.usd_value for e in valued), ZERO)
    weighted_change = (
        sum((e.usd_change_24h * e.usd_value for e in valued), ZERO) / valued_total if valued_total > 0 else ZERO
    )

    active = [e for e in entries if e.is_active]

    by_network: dict[str, Decimal] = {}
    for entry in entries:
        by_network[entry.network_id] = by_network.get(entry.network_id, ZERO) + entry.usd_value

    return PortfolioSummary(
        total_usd_value=total_usd,
        weighted_change_24h=weighted_change,
        total_asset_count=len(entries),
        active_asset_count=len(active),
        native_asset_count=sum(1 for e in entries if e.asset.kind == AssetKind.NATIVE),
        token_asset_count=sum(1 for e in entries if e.asset.kind == AssetKind.TOKEN),
        distinct_network_count=len({e.network_id for e in active}),
        by_network=by_network,
    )


def merge(
    balances: Iterable[RawBalance],
    prices: Mapping[str, PriceQuote],
) -> tuple[list[PortfolioEntry], PortfolioSummary]:
    """
    Merge balances with prices into sorted entries and a summary.

    Pure function: the same inputs always produce equal outputs, and
    per-asset failures stay on their entry instead of raising.

    Parameters
    ----------
    balances : Iterable[RawBalance]
        Aggregator snapshot
    prices : Mapping[str, PriceQuote]
        Price map (missing identifiers are unknown prices)

    Returns
    -------
    tuple[list[PortfolioEntry], PortfolioSummary]
        Sorted entries and their summary

    """
    entries = sort_entries(build_entry(balance, prices) for balance in balances)
    return entries, summarize(entries)


def is_critical_failure(balances: Sequence[RawBalance], prices: Mapping[str, PriceQuote]) -> bool:
    """
    Whether nothing at all is available to show.

    True only when every balance query has failed without ever producing a
    quantity and no price data exists. Pending queries mean the view is still
    loading, not failed.

    """
    if prices:
        return False
    if any(b.fetch_state == FetchState.PENDING for b in balances):
        return False
    return not any(b.fetch_state == FetchState.READY or b.quantity_minor_units > 0 for b in balances)


def filter_by_network(entries: Iterable[PortfolioEntry], network_id: str) -> list[PortfolioEntry]:
    return [e for e in entries if e.network_id == network_id]


def filter_by_kind(entries: Iterable[PortfolioEntry], kind: AssetKind) -> list[PortfolioEntry]:
    return [e for e in entries if e.asset.kind == kind]


def active_entries(entries: Iterable[PortfolioEntry]) -> list[PortfolioEntry]:
    """Entries with a non-zero balance."""
    return [e for e in entries if e.is_active]
