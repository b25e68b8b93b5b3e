"""Asset catalog loading."""

from multichain_portfolio.data.loader import (
    get_all_assets,
    get_all_price_identifiers,
    get_all_supported_networks,
    get_asset,
    get_assets_for_network,
    get_chain_id,
    get_native_asset,
    get_network_config,
    load_catalog,
)

__all__ = [
    "get_all_assets",
    "get_all_price_identifiers",
    "get_all_supported_networks",
    "get_asset",
    "get_assets_for_network",
    "get_chain_id",
    "get_native_asset",
    "get_network_config",
    "load_catalog",
]
