"""Downsell pricing — all amounts are integer cents."""

from cancel_flow.config import DOWNSELL_DISCOUNT_AMOUNT


def calculate_downsell_price(base_price: int, variant: str) -> int:
    """Price offered on the retention screen.

    Variant A sees no discount; variant B gets a fixed discount floored at zero.
    """
    if variant == "A":
        return base_price
    return calculate_discounted_price(base_price, DOWNSELL_DISCOUNT_AMOUNT)


def calculate_discounted_price(original_price: int, discount_amount: int) -> int:
    return max(original_price - discount_amount, 0)


def discount_percentage(original_price: int, offer_price: int) -> int:
    """Whole-number percentage saved by the offer."""
    if original_price <= 0:
        return 0
    return round((original_price - offer_price) / original_price * 100)


def format_price(cents: int) -> str:
    """Format cents as dollars, e.g. 2500 -> "$25.00"."""
    return f"${cents / 100:.2f}"
