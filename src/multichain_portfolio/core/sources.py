"""Per-asset balance sources backed by a network provider."""

from collections.abc import Iterable, Mapping
from typing import Protocol

from multichain_portfolio.core.models import AssetDescriptor


class BalanceProvider(Protocol):
    """
    Network connector used by balance sources.

    Methods
    -------
    get_balance(owner)
        Native coin balance in minor units
    call_balance_of(contract_address, owner)
        ``balanceOf(owner)`` result of a token contract

    """

    def get_balance(self, owner: str) -> int: ...

    def call_balance_of(self, contract_address: str, owner: str) -> int: ...


class BalanceSource(Protocol):
    """
    Interface that every balance source implements.

    Attributes
    ----------
    asset : AssetDescriptor
        Asset this source queries

    """

    asset: AssetDescriptor

    def fetch(self, owner: str) -> int:
        """
        Fetch the balance of ``owner`` in minor units.

        Parameters
        ----------
        owner : str
            Wallet address

        Returns
        -------
        int
            Quantity in minor units

        """
        ...


class NativeBalanceSource:
    """Native coin balance for one network."""

    def __init__(self, asset: AssetDescriptor, provider: BalanceProvider) -> None:
        if not asset.is_native:
            msg = f"{asset.symbol} on {asset.network_id} is not a native asset"
            raise ValueError(msg)
        self.asset = asset
        self.provider = provider

    def fetch(self, owner: str) -> int:
        return self.provider.get_balance(owner)

    def __repr__(self) -> str:
        return f"NativeBalanceSource({self.asset.network_id}:{self.asset.symbol})"


class TokenBalanceSource:
    """ERC20 ``balanceOf`` for one configured token."""

    def __init__(self, asset: AssetDescriptor, provider: BalanceProvider) -> None:
        if asset.contract_address is None:
            msg = f"{asset.symbol} on {asset.network_id} has no contract address"
            raise ValueError(msg)
        self.asset = asset
        self.provider = provider

    def fetch(self, owner: str) -> int:
        return self.provider.call_balance_of(self.asset.contract_address, owner)

    def __repr__(self) -> str:
        return f"TokenBalanceSource({self.asset.network_id}:{self.asset.symbol})"


def build_sources(
    assets: Iterable[AssetDescriptor],
    providers: Mapping[str, BalanceProvider],
) -> list[BalanceSource]:
    """
    Build one balance source per asset.

    Parameters
    ----------
    assets : Iterable[AssetDescriptor]
        Catalog assets
    providers : Mapping[str, BalanceProvider]
        Provider per network id

    Returns
    -------
    list[BalanceSource]
        Sources in catalog order

    Raises
    ------
    KeyError
        If an asset's network has no provider

    """
    sources: list[BalanceSource] = []
    for asset in assets:
        provider = providers[asset.network_id]
        if asset.is_native:
            sources.append(NativeBalanceSource(asset, provider))
        else:
            sources.append(TokenBalanceSource(asset, provider))
    return sources
