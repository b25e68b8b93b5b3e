"""Pricing services for USD value enrichment."""

from multichain_portfolio.pricing.cache import CacheEntry, PriceCache, PriceClient
from multichain_portfolio.pricing.coingecko import CoinGeckoClient

__all__ = [
    "CacheEntry",
    "CoinGeckoClient",
    "PriceCache",
    "PriceClient",
]
