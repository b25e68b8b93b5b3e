"""RPC layer with retry logic; the Ape-backed provider lives in ``rpc.provider``."""

from multichain_portfolio.rpc.retry import RetryConfig, call_with_retry, with_retry

__all__ = [
    "RetryConfig",
    "call_with_retry",
    "with_retry",
]
