"""Tests for the balance aggregator."""

import threading
import time

import pytest
from conftest import OWNER, FakeProvider, make_asset

from multichain_portfolio.core import build_sources
from multichain_portfolio.core.aggregator import BalanceAggregator
from multichain_portfolio.core.exceptions import TransientFetchError, UpstreamRejection
from multichain_portfolio.core.models import ErrorKind, FetchState
from multichain_portfolio.core.sources import NativeBalanceSource, TokenBalanceSource


def wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider(
        native=2 * 10**18,
        tokens={
            "0xusdt": 1_500_000,
            "0xusdc": 0,
            "0xdai": 10**18,
            "0xweth": 5 * 10**17,
            "0xwbtc": 10**8,
        },
    )


@pytest.fixture
def aggregator(eth_assets, provider):
    aggregator = BalanceAggregator(build_sources(eth_assets, {"ethereum": provider}), timeout=2.0)
    yield aggregator
    aggregator.close()


def test_build_sources_picks_source_type(eth_assets, provider):
    sources = build_sources(eth_assets, {"ethereum": provider})

    assert isinstance(sources[0], NativeBalanceSource)
    assert all(isinstance(s, TokenBalanceSource) for s in sources[1:])
    assert [s.asset for s in sources] == eth_assets


def test_build_sources_requires_provider(eth_assets):
    with pytest.raises(KeyError):
        build_sources(eth_assets, {"polygon": FakeProvider()})


def test_source_kind_validation(provider):
    with pytest.raises(ValueError):
        NativeBalanceSource(make_asset("USDT", contract_address="0xusdt"), provider)
    with pytest.raises(ValueError):
        TokenBalanceSource(make_asset("ETH"), provider)


def test_initial_snapshot_is_pending_placeholders(aggregator, eth_assets):
    records = aggregator.snapshot()

    assert len(records) == len(eth_assets)
    assert all(r.fetch_state == FetchState.PENDING for r in records)
    assert all(r.quantity_minor_units == 0 and r.formatted_quantity == "0" for r in records)
    assert aggregator.owner is None


def test_all_sources_ready(aggregator, eth_assets):
    records = aggregator.get_balances(OWNER)

    assert [r.asset for r in records] == eth_assets
    assert all(r.fetch_state == FetchState.READY for r in records)
    by_symbol = {r.asset.symbol: r for r in records}
    assert by_symbol["ETH"].formatted_quantity == "2"
    assert by_symbol["USDT"].formatted_quantity == "1.5"
    assert by_symbol["USDC"].formatted_quantity == "0"
    assert by_symbol["WETH"].formatted_quantity == "0.5"
    assert by_symbol["WBTC"].quantity_minor_units == 10**8
    assert not aggregator.is_loading


def test_single_failure_is_isolated(aggregator, provider):
    provider.errors["0xdai"] = TransientFetchError("connection reset")

    records = aggregator.get_balances(OWNER)

    failed = [r for r in records if r.fetch_state == FetchState.FAILED]
    assert [r.asset.symbol for r in failed] == ["DAI"]
    assert failed[0].error == "connection reset"
    assert failed[0].status.error_kind == ErrorKind.TRANSIENT
    assert sum(r.fetch_state == FetchState.READY for r in records) == 5


def test_rejection_is_classified(aggregator, provider):
    provider.errors["0xwbtc"] = UpstreamRejection("execution reverted")

    records = aggregator.get_balances(OWNER)

    wbtc = records[-1]
    assert wbtc.fetch_state == FetchState.FAILED
    assert wbtc.status.error_kind == ErrorKind.REJECTED


def test_unexpected_exception_becomes_failed_record(aggregator, provider):
    provider.errors["native"] = RuntimeError("boom")

    records = aggregator.get_balances(OWNER)

    assert records[0].fetch_state == FetchState.FAILED
    assert records[0].error == "boom"


def test_timeout_marks_failed_and_late_result_lands(eth_assets, provider):
    gate = threading.Event()
    provider.delays["0xweth"] = gate

    with BalanceAggregator(build_sources(eth_assets, {"ethereum": provider}), timeout=0.2) as aggregator:
        records = aggregator.refresh(OWNER)

        weth = records[4]
        assert weth.fetch_state == FetchState.FAILED
        assert "timed out" in weth.error
        assert records[0].fetch_state == FetchState.READY

        # The timed-out call is still running
        assert aggregator.is_loading

        gate.set()
        assert wait_for(lambda: aggregator.snapshot()[4].fetch_state == FetchState.READY)
        assert aggregator.snapshot()[4].formatted_quantity == "0.5"
        assert wait_for(lambda: not aggregator.is_loading)


def test_requery_is_idempotent(aggregator):
    first = aggregator.get_balances(OWNER)
    second = aggregator.get_balances(OWNER)

    assert len(first) == len(second)
    assert [r.quantity_minor_units for r in first] == [r.quantity_minor_units for r in second]
    assert [r.generation for r in second] == [2] * len(second)


def test_failure_keeps_last_known_quantity(aggregator, provider):
    aggregator.get_balances(OWNER)
    provider.errors["native"] = TransientFetchError("503")

    eth = aggregator.get_balances(OWNER)[0]

    assert eth.fetch_state == FetchState.FAILED
    assert eth.quantity_minor_units == 2 * 10**18
    assert eth.formatted_quantity == "2"


def test_owner_change_resets_records(aggregator, provider):
    aggregator.get_balances(OWNER)
    provider.errors["native"] = TransientFetchError("503")

    records = aggregator.get_balances("0x0000000000000000000000000000000000000001")

    # Failure for a new owner must not show the previous owner's balance
    assert records[0].quantity_minor_units == 0
    assert aggregator.owner == "0x0000000000000000000000000000000000000001"


def test_snapshots_are_immutable_tuples(aggregator):
    before = aggregator.snapshot()
    aggregator.refresh(OWNER)
    after = aggregator.snapshot()

    assert isinstance(after, tuple)
    assert before is not after
    assert all(r.fetch_state == FetchState.PENDING for r in before)


def test_older_generation_result_is_discarded(eth_assets, provider):
    gate = threading.Event()
    provider.delays["native"] = gate

    sources = build_sources(eth_assets[:1], {"ethereum": provider})
    with BalanceAggregator(sources, timeout=0.1, max_workers=2) as aggregator:
        aggregator.refresh(OWNER)  # generation 1, native call stuck
        provider.native = 7 * 10**18
        del provider.delays["native"]
        records = aggregator.refresh(OWNER)  # generation 2 completes immediately

        assert records[0].formatted_quantity == "7"
        assert records[0].generation == 2

        provider.native = 0
        gate.set()
        time.sleep(0.2)
        # The stuck generation 1 call finished late and must not overwrite generation 2
        assert aggregator.snapshot()[0].formatted_quantity == "7"


@pytest.mark.parametrize("bad_quantity", [-1, "abc", 1.5, None])
def test_malformed_quantity_fails_only_that_record(aggregator, provider, bad_quantity):
    provider.tokens["0xdai"] = bad_quantity

    records = aggregator.refresh(OWNER)

    dai = records[3]
    assert dai.asset.symbol == "DAI"
    assert dai.fetch_state == FetchState.FAILED
    assert dai.status.error_kind == ErrorKind.TRANSIENT
    assert dai.quantity_minor_units == 0
    others = [r for r in records if r.asset.symbol != "DAI"]
    assert all(r.fetch_state == FetchState.READY for r in others)
    assert not aggregator.is_loading


def test_malformed_quantity_keeps_last_known_value(aggregator, provider):
    aggregator.refresh(OWNER)
    provider.tokens["0xdai"] = -1

    dai = aggregator.refresh(OWNER)[3]

    assert dai.fetch_state == FetchState.FAILED
    assert dai.formatted_quantity == "1"
