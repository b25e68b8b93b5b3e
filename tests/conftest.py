"""Pytest configuration and shared fixtures for multichain-portfolio tests."""

import threading
from decimal import Decimal

import pytest

from multichain_portfolio.core.models import AssetDescriptor, PriceQuote


def pytest_configure(config):
    """Disable ape plugin during tests."""
    # Unregister ape pytest plugin to avoid network connection issues
    config.pluginmanager.set_blocked("ape_test")


OWNER = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"  # vitalik.eth


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePriceClient:
    """Price client returning canned quotes and counting upstream calls."""

    def __init__(self, prices: dict[str, tuple[str, str]], clock: FakeClock) -> None:
        self.prices = prices
        self.clock = clock
        self.calls: list[tuple[str, ...]] = []
        self.error: Exception | None = None
        self.gate: threading.Event | None = None

    def fetch_quotes(self, price_identifiers):
        ids = tuple(price_identifiers)
        self.calls.append(ids)
        if self.gate is not None:
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        return {
            price_id: PriceQuote(
                price_identifier=price_id,
                usd_price=Decimal(self.prices[price_id][0]),
                usd_change_24h=Decimal(self.prices[price_id][1]),
                fetched_at=self.clock(),
            )
            for price_id in ids
            if price_id in self.prices
        }


class FakeProvider:
    """Balance provider backed by dictionaries; raises configured errors."""

    def __init__(self, native: int = 0, tokens: dict[str, int] | None = None) -> None:
        self.native = native
        self.tokens = tokens or {}
        self.errors: dict[str, Exception] = {}
        self.delays: dict[str, threading.Event] = {}
        self.calls: list[str] = []

    def get_balance(self, owner: str) -> int:
        return self._answer("native", self.native)

    def call_balance_of(self, contract_address: str, owner: str) -> int:
        return self._answer(contract_address, self.tokens.get(contract_address, 0))

    def _answer(self, key: str, value: int) -> int:
        self.calls.append(key)
        if key in self.delays:
            self.delays[key].wait(5)
        if key in self.errors:
            raise self.errors[key]
        return value


def make_asset(
    symbol: str,
    network_id: str = "ethereum",
    decimals: int = 18,
    price_identifier: str | None = None,
    contract_address: str | None = None,
) -> AssetDescriptor:
    return AssetDescriptor(
        network_id=network_id,
        symbol=symbol,
        display_name=symbol,
        decimal_places=decimals,
        price_identifier=price_identifier or symbol.lower(),
        contract_address=contract_address,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def price_client(clock) -> FakePriceClient:
    return FakePriceClient(
        {
            "ethereum": ("2000", "2.5"),
            "matic-network": ("0.5", "-1.0"),
            "tether": ("1", "0.01"),
            "usd-coin": ("1", "0"),
            "dai": ("1", "-0.02"),
            "weth": ("2000", "2.4"),
            "wrapped-bitcoin": ("40000", "1.5"),
        },
        clock,
    )


@pytest.fixture
def eth_assets() -> list[AssetDescriptor]:
    """Native ETH plus five tokens."""
    return [
        make_asset("ETH", price_identifier="ethereum"),
        make_asset("USDT", decimals=6, price_identifier="tether", contract_address="0xusdt"),
        make_asset("USDC", decimals=6, price_identifier="usd-coin", contract_address="0xusdc"),
        make_asset("DAI", price_identifier="dai", contract_address="0xdai"),
        make_asset("WETH", price_identifier="weth", contract_address="0xweth"),
        make_asset("WBTC", decimals=8, price_identifier="wrapped-bitcoin", contract_address="0xwbtc"),
    ]
