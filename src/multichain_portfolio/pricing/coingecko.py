"""CoinGecko pricing client for USD prices and 24h changes."""

import logging
import time
from collections.abc import Callable, Iterable
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from multichain_portfolio.core.exceptions import TransientFetchError, UpstreamRejection
from multichain_portfolio.core.models import PriceQuote
from multichain_portfolio.rpc.retry import RetryConfig, call_with_retry

logger = logging.getLogger(__name__)


class CoinGeckoClient:
    """
    Fetches token prices from the CoinGecko simple price API.

    Parameters
    ----------
    base_url : str
        CoinGecko API base URL
    api_key : str | None
        Optional demo API key, sent as ``x-cg-demo-api-key``
    timeout : float
        Request timeout in seconds
    retry_config : RetryConfig | None
        Retry configuration for transient failures
    client : httpx.Client | None
        Pre-built HTTP client (used by tests to inject a mock transport)
    clock : Callable[[], float]
        Timestamp source for ``PriceQuote.fetched_at``

    """

    BASE_URL = "https://api.coingecko.com/api/v3"

    HEADERS = {
        "Accept": "application/json",
        "User-Agent": "multichain-portfolio-tracker/0.1",
    }

    def __init__(
        self,
        base_url: str = BASE_URL,
        api_key: str | None = None,
        timeout: float = 10.0,
        retry_config: RetryConfig | None = None,
        client: httpx.Client | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.retry_config = retry_config or RetryConfig()
        self.clock = clock

        headers = dict(self.HEADERS)
        if api_key:
            headers["x-cg-demo-api-key"] = api_key
        self.client = client or httpx.Client(timeout=timeout, headers=headers)

    def fetch_quotes(self, price_identifiers: Iterable[str]) -> dict[str, PriceQuote]:
        """
        Fetch quotes for a batch of price identifiers in one request.

        Transient failures are retried; 4xx responses are not.

        Parameters
        ----------
        price_identifiers : Iterable[str]
            CoinGecko coin ids

        Returns
        -------
        dict[str, PriceQuote]
            Quotes for the identifiers the API knows; unknown ids are absent

        Raises
        ------
        TransientFetchError
            Network error, timeout, 5xx or 429 after all retries
        UpstreamRejection
            Any other 4xx response

        """
        ids = list(dict.fromkeys(price_identifiers))
        if not ids:
            return {}

        data = call_with_retry(self._request, ids, config=self.retry_config)
        fetched_at = self.clock()
        return self._parse(data, ids, fetched_at)

    def get_quote(self, price_identifier: str) -> PriceQuote | None:
        """
        Fetch the quote for a single identifier.

        Returns
        -------
        PriceQuote | None
            Quote, or None if the API has no price for it

        """
        return self.fetch_quotes([price_identifier]).get(price_identifier)

    def _request(self, ids: list[str]) -> dict[str, Any]:
        params = {
            "ids": ",".join(ids),
            "vs_currencies": "usd",
            "include_24hr_change": "true",
        }
        url = f"{self.base_url}/simple/price"

        try:
            response = self.client.get(url, params=params)
            response.raise_for_status()
            data = response.json()

        except httpx.TimeoutException as e:
            msg = f"Request timeout: {e}"
            raise TransientFetchError(msg) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            msg = f"HTTP error {status}: {e}"
            if status >= 500 or status == 429:
                raise TransientFetchError(msg) from e
            raise UpstreamRejection(msg, status_code=status) from e
        except httpx.HTTPError as e:
            msg = f"HTTP request failed: {e}"
            raise TransientFetchError(msg) from e
        except ValueError as e:
            msg = f"Invalid JSON from price API: {e}"
            raise TransientFetchError(msg) from e

        if not isinstance(data, dict):
            msg = f"Invalid payload from price API: expected an object, got {type(data).__name__}"
            raise TransientFetchError(msg)
        return data

    def _parse(self, data: dict[str, Any], ids: list[str], fetched_at: float) -> dict[str, PriceQuote]:
        quotes = {}
        for price_id in ids:
            entry = data.get(price_id)
            if not isinstance(entry, dict) or entry.get("usd") is None:
                logger.debug("No price returned for %s", price_id)
                continue

            change = entry.get("usd_24h_change")
            try:
                quotes[price_id] = PriceQuote(
                    price_identifier=price_id,
                    usd_price=Decimal(str(entry["usd"])),
                    usd_change_24h=Decimal(str(change)) if change is not None else Decimal("0"),
                    fetched_at=fetched_at,
                )
            except (InvalidOperation, ValueError) as e:
                logger.warning("Skipping malformed price for %s: %s", price_id, e)
        return quotes

    def close(self) -> None:
        """Close HTTP client."""
        self.client.close()

    def __enter__(self) -> "CoinGeckoClient":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Context manager exit."""
        self.close()
