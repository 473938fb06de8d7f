"""A/B variant assignment — sticky per user, persisted on the cancellation row."""

import logging
import random
import secrets

from cancel_flow import supabase_client as db
from cancel_flow.config import AB_TEST_SPLIT, ENABLE_AB_TESTING
from cancel_flow.services.cancellations import get_user_subscription
from cancel_flow.services.pricing import calculate_downsell_price

logger = logging.getLogger(__name__)

VARIANTS = ("A", "B")
FALLBACK_VARIANT = "A"


def get_or_assign_variant(user_id: str) -> dict:
    """Return the user's variant, assigning and persisting one on first visit.

    Result: {"variant": "A" | "B", "is_new_assignment": bool}. Never raises:
    an unreachable database yields an unpersisted fresh draw, any other
    failure yields variant A with is_new_assignment=False.
    """
    if not ENABLE_AB_TESTING:
        return {"variant": FALLBACK_VARIANT, "is_new_assignment": False}

    try:
        try:
            existing = db.get_latest_cancellation(user_id, columns="downsell_variant")
        except db.DatabaseUnavailable as e:
            logger.warning("Variant lookup failed for %s, using unpersisted assignment: %s",
                           user_id, e)
            return {"variant": generate_secure_variant(), "is_new_assignment": True}

        if existing and existing.get("downsell_variant") in VARIANTS:
            return {"variant": existing["downsell_variant"], "is_new_assignment": False}

        variant = generate_secure_variant()
        try:
            created = db.insert_cancellation_if_absent(user_id, variant)
        except db.DatabaseUnavailable as e:
            logger.warning("Variant for %s not persisted: %s", user_id, e)
            return {"variant": variant, "is_new_assignment": True}

        if not created:
            # A concurrent request persisted first; its variant is the sticky one
            winner = db.get_latest_cancellation(user_id, columns="downsell_variant")
            if winner and winner.get("downsell_variant") in VARIANTS:
                return {"variant": winner["downsell_variant"], "is_new_assignment": False}

        logger.info("Assigned variant %s to user %s", variant, user_id)
        return {"variant": variant, "is_new_assignment": True}

    except Exception:
        logger.exception("A/B assignment failed for %s, falling back to variant A", user_id)
        return {"variant": FALLBACK_VARIANT, "is_new_assignment": False}


def generate_secure_variant() -> str:
    """50/50 draw from one secure random byte (split set by AB_TEST_SPLIT)."""
    threshold = int(256 * AB_TEST_SPLIT)
    try:
        value = secrets.token_bytes(1)[0]
    except NotImplementedError:
        # No OS entropy source
        return "A" if random.random() < AB_TEST_SPLIT else "B"
    return "A" if value < threshold else "B"


def initialize_ab_test(user_id: str) -> dict:
    """Resolve everything the flow needs before the first screen renders.

    Returns variant, subscription, downsell_price and an error string (None
    on success). On failure the variant falls back to A.
    """
    if not user_id:
        return {"variant": None, "subscription": None, "downsell_price": None,
                "is_new_assignment": False, "error": "No user ID provided"}
    try:
        assignment = get_or_assign_variant(user_id)
        subscription = get_user_subscription(user_id)
        downsell_price = (
            calculate_downsell_price(subscription["monthly_price"], assignment["variant"])
            if subscription else None
        )
        logger.info("A/B test initialized for %s: variant=%s new=%s downsell=%s",
                    user_id, assignment["variant"], assignment["is_new_assignment"],
                    downsell_price)
        return {
            "variant": assignment["variant"],
            "is_new_assignment": assignment["is_new_assignment"],
            "subscription": subscription,
            "downsell_price": downsell_price,
            "error": None,
        }
    except Exception as e:
        logger.exception("Error initializing A/B test for %s", user_id)
        return {"variant": FALLBACK_VARIANT, "is_new_assignment": False,
                "subscription": None, "downsell_price": None, "error": str(e)}
