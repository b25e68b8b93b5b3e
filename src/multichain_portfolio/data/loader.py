"""Asset catalog loader."""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from multichain_portfolio.core.models import AssetDescriptor

CATALOG_PATH = Path(__file__).parent / "catalog.yaml"


@lru_cache(maxsize=1)
def load_catalog() -> dict[str, Any]:
    """
    Load the static asset catalog from catalog.yaml.

    The file is read once per process; callers must not mutate the result.

    Returns
    -------
    dict[str, Any]
        Catalog configuration keyed by ``networks``

    """
    with open(CATALOG_PATH, encoding="utf-8") as f:
        return yaml.safe_load(f)


def get_all_supported_networks() -> list[str]:
    """
    Get list of all supported network names.

    Returns
    -------
    list[str]
        Network names in catalog order

    """
    return list(load_catalog()["networks"].keys())


def get_network_config(network: str) -> dict[str, Any]:
    """
    Get configuration for a specific network.

    Parameters
    ----------
    network : str
        Network name (e.g., 'ethereum', 'polygon')

    Returns
    -------
    dict[str, Any]
        Network configuration including native coin and tokens

    Raises
    ------
    KeyError
        If network is not found in the catalog

    """
    return load_catalog()["networks"][network]


def get_chain_id(network: str) -> int:
    """Get numeric chain ID."""
    return get_network_config(network)["chain_id"]


def get_native_asset(network: str) -> AssetDescriptor:
    """
    Get the native coin descriptor for a network.

    Parameters
    ----------
    network : str
        Network name

    Returns
    -------
    AssetDescriptor
        Native asset (``contract_address`` is None)

    """
    native = get_network_config(network)["native"]
    return AssetDescriptor(network_id=network, **native)


def get_assets_for_network(network: str) -> list[AssetDescriptor]:
    """
    Get all assets tracked on a network, native coin first.

    Parameters
    ----------
    network : str
        Network name

    Returns
    -------
    list[AssetDescriptor]
        Native asset followed by configured tokens

    """
    config = get_network_config(network)
    tokens = [AssetDescriptor(network_id=network, **token) for token in config.get("tokens", [])]
    return [get_native_asset(network), *tokens]


def get_all_assets() -> list[AssetDescriptor]:
    """Get every catalog asset across all supported networks."""
    assets: list[AssetDescriptor] = []
    for network in get_all_supported_networks():
        assets.extend(get_assets_for_network(network))
    return assets


def get_asset(network: str, symbol: str) -> AssetDescriptor | None:
    """
    Look up an asset by network and symbol.

    Parameters
    ----------
    network : str
        Network name
    symbol : str
        Asset symbol (case-insensitive)

    Returns
    -------
    AssetDescriptor | None
        Matching asset, or None if the network or symbol is unknown

    """
    try:
        assets = get_assets_for_network(network)
    except KeyError:
        return None
    return next((a for a in assets if a.symbol.upper() == symbol.upper()), None)


def get_all_price_identifiers() -> list[str]:
    """
    Get the unique price identifiers of all catalog assets.

    Returns
    -------
    list[str]
        Price identifiers in first-seen order

    """
    return list(dict.fromkeys(asset.price_identifier for asset in get_all_assets()))
