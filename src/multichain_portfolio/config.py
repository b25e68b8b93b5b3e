"""Runtime settings loaded from an optional YAML file and environment variables."""

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

ENV_PREFIX = "PORTFOLIO_"


class TrackerSettings(BaseModel):
    """
    Tunables for price caching, polling and upstream calls.

    Attributes
    ----------
    price_ttl : float
        Seconds a cached price set is served without refetching
    poll_interval : float
        Seconds between background refresh cycles
    request_timeout : float
        HTTP timeout for the price API
    balance_timeout : float
        Upper bound for each balance query
    price_timeout : float
        Upper bound a caller waits on a cold price fetch
    price_failure_backoff : float
        Seconds an expired price set is served as-is after a failed refresh
    max_retries : int
        Retries for transient upstream failures
    retry_base_delay : float
        First backoff delay in seconds
    price_api_url : str
        CoinGecko API base URL
    price_api_key : str | None
        Optional CoinGecko demo API key
    max_workers : int | None
        Balance query pool size (default: one worker per asset)

    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    price_ttl: float = Field(default=60.0, gt=0)
    poll_interval: float = Field(default=60.0, gt=0)
    request_timeout: float = Field(default=10.0, gt=0)
    balance_timeout: float = Field(default=15.0, gt=0)
    price_timeout: float = Field(default=30.0, gt=0)
    price_failure_backoff: float = Field(default=10.0, ge=0)
    max_retries: int = Field(default=2, ge=0)
    retry_base_delay: float = Field(default=0.5, ge=0)
    price_api_url: str = "https://api.coingecko.com/api/v3"
    price_api_key: str | None = None
    max_workers: int | None = Field(default=None, gt=0)


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    """Collect ``PORTFOLIO_<FIELD>`` environment variables."""
    overrides = {}
    for name in TrackerSettings.model_fields:
        value = env.get(f"{ENV_PREFIX}{name.upper()}")
        if value is not None and value != "":
            overrides[name] = value
    return overrides


def load_settings(path: str | Path | None = None, env: Mapping[str, str] | None = None) -> TrackerSettings:
    """
    Load settings from a YAML file, overlaid with environment variables.

    Parameters
    ----------
    path : str | Path | None
        Optional YAML file with top-level setting keys
    env : Mapping[str, str] | None
        Environment to read overrides from (default: ``os.environ``)

    Returns
    -------
    TrackerSettings
        Validated settings

    Raises
    ------
    FileNotFoundError
        If ``path`` is given but does not exist
    pydantic.ValidationError
        If a value is invalid or a key is unknown

    """
    data: dict[str, Any] = {}
    if path is not None:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        logger.debug("Loaded settings from %s", path)

    data.update(_env_overrides(os.environ if env is None else env))
    return TrackerSettings(**data)
