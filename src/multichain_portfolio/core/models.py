"""Data models for assets, balances, price quotes and portfolio snapshots."""

from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from multichain_portfolio.core.exceptions import CriticalUnavailable


class AssetKind(StrEnum):
    """Kind of asset held on a network."""

    NATIVE = "native"
    TOKEN = "token"


class FetchState(StrEnum):
    """Lifecycle state of a single balance query."""

    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class ErrorKind(StrEnum):
    """Classification of a failed query."""

    TRANSIENT = "transient"
    REJECTED = "rejected"


class AssetDescriptor(BaseModel):
    """
    Catalog entry for one asset on one network.

    Attributes
    ----------
    network_id : str
        Network name (e.g., 'ethereum', 'polygon')
    symbol : str
        Asset symbol (e.g., 'ETH', 'USDC')
    display_name : str
        Human readable name
    decimal_places : int
        Number of decimal places of the minor unit
    price_identifier : str
        Key used to look up the market price (CoinGecko id)
    contract_address : str | None
        Token contract address, None for the network's native coin

    """

    model_config = ConfigDict(frozen=True)

    network_id: str
    symbol: str
    display_name: str
    decimal_places: int = Field(ge=0)
    price_identifier: str
    contract_address: str | None = None

    @property
    def kind(self) -> AssetKind:
        return AssetKind.NATIVE if self.contract_address is None else AssetKind.TOKEN

    @property
    def is_native(self) -> bool:
        return self.contract_address is None


class Pending(BaseModel):
    """Query issued, no result yet."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    state: Literal["pending"] = "pending"


class Ready(BaseModel):
    """Query completed successfully."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    state: Literal["ready"] = "ready"


class Failed(BaseModel):
    """Query failed; always carries the error that caused it."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    state: Literal["failed"] = "failed"
    error: str
    error_kind: ErrorKind = ErrorKind.TRANSIENT


FetchStatus = Annotated[Pending | Ready | Failed, Field(discriminator="state")]


class RawBalance(BaseModel):
    """
    Result of one balance query, as published by the aggregator.

    Attributes
    ----------
    asset : AssetDescriptor
        Asset the balance belongs to
    quantity_minor_units : int
        Quantity in minor units (arbitrary precision)
    formatted_quantity : str
        Decimal string derived from ``quantity_minor_units``
    status : FetchStatus
        Pending, Ready or Failed
    generation : int
        Refresh generation that produced this record

    """

    model_config = ConfigDict(frozen=True)

    asset: AssetDescriptor
    quantity_minor_units: int = Field(default=0, ge=0)
    formatted_quantity: str = "0"
    status: FetchStatus = Field(default_factory=Pending)
    generation: int = 0

    @property
    def network_id(self) -> str:
        return self.asset.network_id

    @property
    def fetch_state(self) -> FetchState:
        return FetchState(self.status.state)

    @property
    def error(self) -> str | None:
        return self.status.error if isinstance(self.status, Failed) else None


class PriceQuote(BaseModel):
    """
    Market price for one price identifier.

    Attributes
    ----------
    price_identifier : str
        CoinGecko id
    usd_price : Decimal
        Price in USD
    usd_change_24h : Decimal
        24h percent change (0 when the upstream omits it)
    fetched_at : float
        Unix timestamp of the upstream response

    """

    model_config = ConfigDict(frozen=True)

    price_identifier: str
    usd_price: Decimal
    usd_change_24h: Decimal = Decimal("0")
    fetched_at: float


PriceMap = dict[str, PriceQuote]


class PortfolioEntry(BaseModel):
    """Merged balance + price for one asset."""

    model_config = ConfigDict(frozen=True)

    asset: AssetDescriptor
    formatted_quantity: str
    usd_price: Decimal = Decimal("0")
    usd_change_24h: Decimal = Decimal("0")
    usd_value: Decimal = Decimal("0")
    status: FetchStatus = Field(default_factory=Ready)

    @property
    def network_id(self) -> str:
        return self.asset.network_id

    @property
    def symbol(self) -> str:
        return self.asset.symbol

    @property
    def fetch_state(self) -> FetchState:
        return FetchState(self.status.state)

    @property
    def error(self) -> str | None:
        return self.status.error if isinstance(self.status, Failed) else None

    @property
    def is_active(self) -> bool:
        return Decimal(self.formatted_quantity) > 0


class PortfolioSummary(BaseModel):
    """
    Portfolio level statistics derived from the current entries.

    Attributes
    ----------
    total_usd_value : Decimal
        Sum of all entry values
    weighted_change_24h : Decimal
        Value weighted 24h change over entries with a positive value
    total_asset_count : int
        Number of entries
    active_asset_count : int
        Entries with a non-zero balance
    native_asset_count : int
        Native coin entries
    token_asset_count : int
        Token contract entries
    distinct_network_count : int
        Networks holding at least one non-zero balance
    by_network : dict[str, Decimal]
        USD value breakdown by network

    """

    model_config = ConfigDict(frozen=True)

    total_usd_value: Decimal = Decimal("0")
    weighted_change_24h: Decimal = Decimal("0")
    total_asset_count: int = 0
    active_asset_count: int = 0
    native_asset_count: int = 0
    token_asset_count: int = 0
    distinct_network_count: int = 0
    by_network: dict[str, Decimal] = Field(default_factory=dict)


class PortfolioSnapshot(BaseModel):
    """
    Versioned view published after each refresh cycle.

    ``error`` is True only when nothing at all could be fetched; per-asset
    failures are reported on the individual entries.

    """

    model_config = ConfigDict(frozen=True)

    version: int
    owner: str | None
    entries: tuple[PortfolioEntry, ...] = ()
    summary: PortfolioSummary = Field(default_factory=PortfolioSummary)
    loading: bool = False
    error: bool = False
    published_at: float = 0.0

    def raise_for_error(self) -> None:
        """Raise CriticalUnavailable if this snapshot is a total failure."""
        if self.error:
            msg = f"No balance or price data available for {self.owner}"
            raise CriticalUnavailable(msg)
