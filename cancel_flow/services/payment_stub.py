"""Payment stub for downsell acceptance. No real processor is called."""

import asyncio
import logging
import random
import string
import time

from cancel_flow.config import PAYMENT_STUB_DELAY_SECONDS, PAYMENT_STUB_SUCCESS_RATE
from cancel_flow.services.pricing import format_price

logger = logging.getLogger(__name__)


def _transaction_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"txn_{int(time.time() * 1000)}_{suffix}"


async def process_downsell_payment(
    user_id: str,
    original_price: int,
    downsell_price: int,
    delay: float | None = None,
    success_rate: float | None = None,
) -> dict:
    """Simulate charging the discounted price.

    Returns {"success": bool, "transaction_id": str | None, "error": str | None}.
    """
    delay = PAYMENT_STUB_DELAY_SECONDS if delay is None else delay
    success_rate = PAYMENT_STUB_SUCCESS_RATE if success_rate is None else success_rate

    await asyncio.sleep(delay)
    transaction_id = _transaction_id()

    logger.info(
        "STUB: payment processed user=%s original=%s downsell=%s discount=%s txn=%s",
        user_id,
        format_price(original_price),
        format_price(downsell_price),
        format_price(original_price - downsell_price),
        transaction_id,
    )

    if random.random() < success_rate:
        return {"success": True, "transaction_id": transaction_id, "error": None}
    return {
        "success": False,
        "transaction_id": None,
        "error": "Payment processing failed (stub simulation)",
    }


def update_subscription_price(user_id: str, new_price: int) -> bool:
    """Notify the (absent) payment processor of a new recurring price."""
    logger.info("STUB: subscription price updated user=%s new_price=%s",
                user_id, format_price(new_price))
    return True
