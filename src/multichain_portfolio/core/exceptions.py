"""Exception hierarchy for balance and price fetching."""


class PortfolioError(Exception):
    """Base exception for portfolio tracking errors."""


class TransientFetchError(PortfolioError):
    """
    Network, timeout or upstream server error.

    Safe to retry; once retries are exhausted the caller degrades to stale
    data or a failed entry.

    """


class UpstreamRejection(PortfolioError):
    """
    Upstream rejected the request (4xx-class response).

    Never retried.

    Parameters
    ----------
    message : str
        Error description
    status_code : int | None
        HTTP status code returned by the upstream service

    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CriticalUnavailable(PortfolioError):
    """No balance data and no price data exist at all."""
