"""Core functionality including models, balance sources, aggregator and merge engine."""

from multichain_portfolio.core.aggregator import BalanceAggregator
from multichain_portfolio.core.exceptions import (
    CriticalUnavailable,
    PortfolioError,
    TransientFetchError,
    UpstreamRejection,
)
from multichain_portfolio.core.merge import is_critical_failure, merge, summarize
from multichain_portfolio.core.models import (
    AssetDescriptor,
    AssetKind,
    ErrorKind,
    Failed,
    FetchState,
    Pending,
    PortfolioEntry,
    PortfolioSnapshot,
    PortfolioSummary,
    PriceMap,
    PriceQuote,
    RawBalance,
    Ready,
)
from multichain_portfolio.core.sources import (
    BalanceProvider,
    BalanceSource,
    NativeBalanceSource,
    TokenBalanceSource,
    build_sources,
)

__all__ = [
    "AssetDescriptor",
    "AssetKind",
    "BalanceAggregator",
    "BalanceProvider",
    "BalanceSource",
    "CriticalUnavailable",
    "ErrorKind",
    "Failed",
    "FetchState",
    "NativeBalanceSource",
    "Pending",
    "PortfolioEntry",
    "PortfolioError",
    "PortfolioSnapshot",
    "PortfolioSummary",
    "PriceMap",
    "PriceQuote",
    "RawBalance",
    "Ready",
    "TokenBalanceSource",
    "TransientFetchError",
    "UpstreamRejection",
    "build_sources",
    "is_critical_failure",
    "merge",
    "summarize",
]
