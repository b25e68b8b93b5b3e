"""Formatting helpers for quantities, USD values and price changes."""

from decimal import Decimal


def format_units(quantity: int, decimals: int) -> str:
    """
    Format a minor-unit quantity as a decimal string.

    Integer arithmetic only, so no precision is lost for large on-chain
    amounts. Trailing fractional zeros are trimmed.

    Parameters
    ----------
    quantity : int
        Quantity in minor units
    decimals : int
        Number of decimal places

    Returns
    -------
    str
        Decimal string (e.g., '1.5', '0.000001', '0')

    Examples
    --------
    >>> format_units(1_500_000, 6)
    '1.5'
    >>> format_units(0, 18)
    '0'

    """
    if quantity < 0:
        msg = f"quantity must be non-negative, got {quantity}"
        raise ValueError(msg)
    if quantity == 0:
        return "0"
    if decimals == 0:
        return str(quantity)

    quotient, remainder = divmod(quantity, 10**decimals)
    if remainder == 0:
        return str(quotient)

    fraction = str(remainder).rjust(decimals, "0").rstrip("0")
    return f"{quotient}.{fraction}"


def format_usd_value(value: Decimal) -> str:
    """Format a USD value for display, e.g. '$1,234.56' or '<$0.01'."""
    if 0 < value < Decimal("0.01"):
        return "<$0.01"
    return f"${value:,.2f}"


def format_price_change(change: Decimal) -> str:
    """Format a percent change with an explicit sign, e.g. '+1.23%'."""
    sign = "+" if change >= 0 else ""
    return f"{sign}{change:.2f}%"
