"""RPC provider wrapper using Ape's network management."""

import logging
from typing import Any

from ape import networks
from ape.exceptions import ContractLogicError

from multichain_portfolio.core.exceptions import TransientFetchError, UpstreamRejection
from multichain_portfolio.rpc.retry import RetryConfig, call_with_retry

logger = logging.getLogger(__name__)

# balanceOf(address) -> uint256
BALANCE_OF_SELECTOR = "0x70a08231"


def pad_address(address: str) -> str:
    """Left-pad a 20-byte address to a 32-byte ABI word (no 0x prefix)."""
    return address.lower().removeprefix("0x").rjust(64, "0")


def decode_uint256(result: Any) -> int:
    """
    Decode an ``eth_call`` return value as a single uint256.

    Raises
    ------
    UpstreamRejection
        If the call returned no data (e.g. address is not a contract)

    """
    if isinstance(result, bytes | bytearray):
        if not result:
            raise UpstreamRejection("eth_call returned no data")
        return int.from_bytes(result, "big")

    hex_str = str(result).removeprefix("0x")
    if not hex_str:
        raise UpstreamRejection("eth_call returned no data")
    return int(hex_str, 16)


class ApeRPCProvider:
    """
    Balance provider for one network using Ape's network management system.

    Ape picks up RPC credentials from its own configuration, e.g. the
    ``WEB3_INFURA_PROJECT_ID`` environment variable.

    Parameters
    ----------
    network_choice : str
        Ape network choice (e.g., 'ethereum:mainnet', 'polygon:mainnet')
    retry_config : RetryConfig | None
        Retry configuration for RPC requests

    """

    def __init__(
        self,
        network_choice: str,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self.network_choice = network_choice
        self._network_context = None
        self._provider = None
        self.retry_config = retry_config or RetryConfig()

    @property
    def is_connected(self) -> bool:
        return self._provider is not None

    def connect(self) -> None:
        """Connect to the network using Ape's network management."""
        try:
            self._network_context = networks.parse_network_choice(self.network_choice)
            self._network_context.__enter__()
            self._provider = networks.provider
        except Exception as e:
            error_msg = f"Failed to connect to {self.network_choice}: {e}"
            raise RuntimeError(error_msg) from e

        logger.info("Connected to %s", self.network_choice)

    def disconnect(self) -> None:
        """Disconnect from the network."""
        if self._network_context:
            try:
                self._network_context.__exit__(None, None, None)
            except Exception as e:
                logger.debug("Error during network context cleanup: %s", e)
            self._network_context = None
        self._provider = None

    def make_request(self, method: str, params: list[Any]) -> Any:
        """
        Make an RPC request with retry logic and exponential backoff.

        Parameters
        ----------
        method : str
            RPC method name (e.g., 'eth_call', 'eth_getBalance')
        params : list[Any]
            Method parameters

        Returns
        -------
        Any
            RPC response

        Raises
        ------
        RuntimeError
            If provider is not connected
        UpstreamRejection
            If the node rejects the call (e.g. the contract reverts)
        TransientFetchError
            If all retry attempts fail

        """
        provider = self._require_provider()

        def _request() -> Any:
            try:
                return provider.make_request(method, params)
            except ContractLogicError as e:
                raise UpstreamRejection(f"{method} reverted: {e}") from e
            except Exception as e:
                raise TransientFetchError(f"{method} on {self.network_choice} failed: {e}") from e

        return call_with_retry(_request, config=self.retry_config)

    def get_balance(self, owner: str) -> int:
        """
        Get the native coin balance of ``owner`` in minor units.

        Parameters
        ----------
        owner : str
            Wallet address

        Returns
        -------
        int
            Balance in wei (or the network's equivalent)

        """
        provider = self._require_provider()

        def _balance() -> int:
            try:
                return int(provider.get_balance(owner))
            except Exception as e:
                raise TransientFetchError(f"get_balance on {self.network_choice} failed: {e}") from e

        return call_with_retry(_balance, config=self.retry_config)

    def call_balance_of(self, contract_address: str, owner: str) -> int:
        """
        Call ``balanceOf(owner)`` on an ERC20 contract.

        Parameters
        ----------
        contract_address : str
            Token contract address
        owner : str
            Wallet address

        Returns
        -------
        int
            Token balance in minor units

        """
        call = {"to": contract_address, "data": BALANCE_OF_SELECTOR + pad_address(owner)}
        result = self.make_request("eth_call", [call, "latest"])
        return decode_uint256(result)

    def _require_provider(self) -> Any:
        if not self._provider:
            error_msg = "Provider not connected. Call connect() first."
            raise RuntimeError(error_msg)
        return self._provider

    def __enter__(self) -> "ApeRPCProvider":
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Context manager exit."""
        self.disconnect()
