"""Tests for the portfolio merge engine."""

from decimal import Decimal

from conftest import make_asset

from multichain_portfolio.core.merge import (
    active_entries,
    build_entry,
    filter_by_kind,
    filter_by_network,
    is_critical_failure,
    merge,
    sort_entries,
    summarize,
)
from multichain_portfolio.core.models import (
    AssetKind,
    Failed,
    FetchState,
    PortfolioEntry,
    PriceQuote,
    RawBalance,
    Ready,
)
from multichain_portfolio.utils.formatters import format_units


def quote(price_id: str, price: str, change: str = "0") -> PriceQuote:
    return PriceQuote(
        price_identifier=price_id,
        usd_price=Decimal(price),
        usd_change_24h=Decimal(change),
        fetched_at=0.0,
    )


def balance(asset, quantity: int = 0, status=None) -> RawBalance:
    return RawBalance(
        asset=asset,
        quantity_minor_units=quantity,
        formatted_quantity=format_units(quantity, asset.decimal_places),
        status=status or Ready(),
    )


def entry(symbol: str, value: str, change: str = "0", network_id: str = "ethereum") -> PortfolioEntry:
    return PortfolioEntry(
        asset=make_asset(symbol, network_id=network_id),
        formatted_quantity="1",
        usd_price=Decimal(value),
        usd_change_24h=Decimal(change),
        usd_value=Decimal(value),
    )


ETH = make_asset("ETH", price_identifier="ethereum")
USDT = make_asset("USDT", decimals=6, price_identifier="tether", contract_address="0xusdt")
MATIC = make_asset("MATIC", network_id="polygon", price_identifier="matic-network")
PRICES = {
    "ethereum": quote("ethereum", "2000", "2.5"),
    "tether": quote("tether", "1", "0.01"),
    "matic-network": quote("matic-network", "0.5", "-1"),
}


def test_build_entry_values():
    result = build_entry(balance(ETH, 2 * 10**18), PRICES)

    assert result.formatted_quantity == "2"
    assert result.usd_price == Decimal("2000")
    assert result.usd_value == Decimal("4000")
    assert result.usd_change_24h == Decimal("2.5")
    assert result.fetch_state == FetchState.READY


def test_zero_balance_is_worth_nothing():
    result = build_entry(balance(ETH, 0), PRICES)

    assert result.usd_value == 0
    assert result.usd_price == Decimal("2000")
    assert not result.is_active


def test_missing_price_is_unknown_not_error():
    result = build_entry(balance(USDT, 1_000_000), {})

    assert result.usd_price == 0
    assert result.usd_value == 0
    assert result.usd_change_24h == 0
    assert result.fetch_state == FetchState.READY
    assert result.is_active


def test_failed_balance_keeps_status_and_value():
    failed = RawBalance(
        asset=ETH,
        quantity_minor_units=10**18,
        formatted_quantity="1",
        status=Failed(error="503 Service Unavailable"),
    )

    result = build_entry(failed, PRICES)

    assert result.fetch_state == FetchState.FAILED
    assert result.error == "503 Service Unavailable"
    assert result.usd_value == Decimal("2000")


def test_total_is_sum_of_values():
    entries, summary = merge([balance(ETH, 10**18), balance(USDT, 2_500_000), balance(MATIC, 4 * 10**18)], PRICES)

    assert summary.total_usd_value == sum(e.usd_value for e in entries)
    assert summary.total_usd_value == Decimal("2004.5")


def test_empty_portfolio_summary():
    entries, summary = merge([], {})

    assert entries == []
    assert summary.total_usd_value == 0
    assert summary.weighted_change_24h == 0
    assert summary.total_asset_count == 0


def test_weighted_change():
    summary = summarize([entry("AAA", "100", "2"), entry("BBB", "300", "-6")])

    assert summary.weighted_change_24h == Decimal("-4")


def test_weighted_change_ignores_zero_value_entries():
    summary = summarize([entry("AAA", "100", "2"), entry("ZZZ", "0", "50")])

    assert summary.weighted_change_24h == Decimal("2")


def test_weighted_change_zero_without_value():
    summary = summarize([entry("AAA", "0", "10")])

    assert summary.weighted_change_24h == 0


def test_sort_ties_broken_by_symbol():
    ordered = sort_entries([entry("ZED", "50"), entry("AAA", "5"), entry("BOB", "50")])

    assert [e.symbol for e in ordered] == ["BOB", "ZED", "AAA"]


def test_sort_ties_on_symbol_broken_by_network():
    ordered = sort_entries([entry("USDT", "1", network_id="polygon"), entry("USDT", "1", network_id="ethereum")])

    assert [e.network_id for e in ordered] == ["ethereum", "polygon"]


def test_summary_counts():
    entries, summary = merge(
        [balance(ETH, 10**18), balance(USDT, 0), balance(MATIC, 0)],
        PRICES,
    )

    assert summary.total_asset_count == 3
    assert summary.active_asset_count == 1
    assert summary.native_asset_count == 2
    assert summary.token_asset_count == 1
    assert summary.distinct_network_count == 1
    assert summary.by_network == {"ethereum": Decimal("2000"), "polygon": Decimal("0")}


def test_merge_is_deterministic():
    balances = [balance(MATIC, 10**18), balance(ETH, 10**17), balance(USDT, 3_000_000)]

    first = merge(balances, PRICES)
    second = merge(list(reversed(balances)), PRICES)

    assert first == second


def test_filters():
    entries, _ = merge([balance(ETH, 10**18), balance(USDT, 0), balance(MATIC, 10**18)], PRICES)

    assert [e.symbol for e in filter_by_network(entries, "polygon")] == ["MATIC"]
    assert [e.symbol for e in filter_by_kind(entries, AssetKind.TOKEN)] == ["USDT"]
    assert {e.symbol for e in active_entries(entries)} == {"ETH", "MATIC"}


def test_one_failed_token_is_not_critical():
    tokens = [make_asset(f"T{i}", contract_address=f"0x{i}") for i in range(5)]
    balances = [balance(a, 10**18) for a in tokens[:4]]
    balances.append(RawBalance(asset=tokens[4], status=Failed(error="execution reverted")))

    assert not is_critical_failure(balances, {})


def test_critical_only_without_any_data():
    all_failed = [
        RawBalance(asset=ETH, status=Failed(error="timeout")),
        RawBalance(asset=USDT, status=Failed(error="execution reverted")),
    ]

    assert is_critical_failure(all_failed, {})
    assert not is_critical_failure(all_failed, PRICES)


def test_pending_is_not_critical():
    assert not is_critical_failure([RawBalance(asset=ETH)], {})


def test_failed_with_last_known_quantity_is_not_critical():
    stale = RawBalance(asset=ETH, quantity_minor_units=10**18, formatted_quantity="1", status=Failed(error="timeout"))

    assert not is_critical_failure([stale], {})
