"""Formatting helpers."""

from multichain_portfolio.utils.formatters import format_price_change, format_units, format_usd_value

__all__ = [
    "format_price_change",
    "format_units",
    "format_usd_value",
]
