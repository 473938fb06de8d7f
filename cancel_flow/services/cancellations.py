"""Cancellation persistence — subscription status + the per-user cancellation row.

Writes here follow a "never block the user" policy: data-access failures are
logged and reported as success so the flow can continue. The only outcome
surfaced to the user is a failed downsell payment.
"""

import logging
from datetime import datetime, timezone

from cancel_flow import supabase_client as db
from cancel_flow.config import DEFAULT_MONTHLY_PRICE
from cancel_flow.services.payment_stub import process_downsell_payment, update_subscription_price
from cancel_flow.services.pricing import calculate_downsell_price

logger = logging.getLogger(__name__)

SUBSCRIPTION_STATUSES = ("active", "pending_cancellation", "cancelled")


def _mock_subscription(user_id: str) -> dict:
    now = datetime.now(timezone.utc).isoformat()
    return {
        "id": "mock-subscription-id",
        "user_id": user_id,
        "monthly_price": DEFAULT_MONTHLY_PRICE,
        "status": "active",
        "created_at": now,
        "updated_at": now,
    }


def get_user_subscription(user_id: str) -> dict | None:
    """Latest active subscription, or mock data if the database fails."""
    try:
        return db.get_active_subscription(user_id)
    except db.DataAccessError as e:
        logger.warning("Subscription lookup failed for %s, using mock data: %s", user_id, e)
        return _mock_subscription(user_id)


def update_subscription_status(user_id: str, status: str,
                               monthly_price: int | None = None) -> bool:
    """Move the user's active subscription to `status`. Always True."""
    if status not in SUBSCRIPTION_STATUSES:
        raise ValueError(f"Unknown subscription status: {status}")
    data = {"status": status}
    if monthly_price is not None:
        data["monthly_price"] = monthly_price
    try:
        db.update_subscription(user_id, data)
    except db.DataAccessError as e:
        logger.warning("Subscription status update to %s skipped for %s: %s",
                       status, user_id, e)
        return True
    logger.info("Subscription status updated to %s for user %s", status, user_id)
    return True


def create_cancellation_record(
    user_id: str,
    variant: str,
    accepted_downsell: bool,
    reason: str | None = None,
    amount: str | None = None,
    feedback: str | None = None,
) -> bool:
    """Write the user's cancellation row. Always True."""
    try:
        db.upsert_cancellation({
            "user_id": user_id,
            "downsell_variant": variant,
            "reason": reason,
            "accepted_downsell": accepted_downsell,
            "amount": amount,
            "feedback": feedback,
        })
    except db.DataAccessError as e:
        logger.warning("Cancellation record for %s not written: %s", user_id, e)
        return True
    logger.info("Cancellation record written for user %s", user_id)
    return True


async def handle_downsell_acceptance(user_id: str, variant: str, payment=None) -> dict:
    """Charge the discounted price, then record the acceptance.

    Returns the payment result. Persistence only happens after a successful
    payment; its own failures do not change the result.
    """
    payment = payment or process_downsell_payment
    subscription = get_user_subscription(user_id)
    if not subscription:
        logger.error("No active subscription found for user %s", user_id)
        return {"success": False, "transaction_id": None,
                "error": "No active subscription found"}

    original_price = subscription["monthly_price"]
    downsell_price = calculate_downsell_price(original_price, variant)

    result = await payment(user_id, original_price, downsell_price)
    if not result.get("success"):
        logger.error("Payment processing failed for %s: %s", user_id, result.get("error"))
        return result

    update_subscription_status(user_id, "active", monthly_price=downsell_price)
    update_subscription_price(user_id, downsell_price)
    create_cancellation_record(user_id, variant, accepted_downsell=True)
    logger.info("Downsell accepted by %s (txn %s)", user_id, result.get("transaction_id"))
    return result


async def handle_cancellation_completion(
    user_id: str,
    variant: str,
    reason: str,
    amount: str | None = None,
    feedback: str | None = None,
) -> bool:
    """Mark the subscription pending cancellation and record why."""
    try:
        status_ok = update_subscription_status(user_id, "pending_cancellation")
        record_ok = create_cancellation_record(
            user_id, variant, accepted_downsell=False,
            reason=reason, amount=amount, feedback=feedback,
        )
    except Exception:
        logger.exception("Error completing cancellation for %s", user_id)
        return True
    if status_ok and record_ok:
        logger.info("Cancellation completed for %s: reason=%s", user_id, reason)
    return status_ok and record_ok
