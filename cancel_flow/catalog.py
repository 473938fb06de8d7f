"""Catalog — cancellation reasons, retention offers and flow questionnaires."""

from cancel_flow.config import MIN_FEEDBACK_LENGTH

REASONS: list[dict] = [
    {
        "id": "too-expensive",
        "label": "Too expensive",
        "requires_feedback": False,
        "requires_amount": True,
        "amount_placeholder": "0.00",
        "prompt": "What would be the maximum you would be willing to pay?",
    },
    {
        "id": "platform-not-helpful",
        "label": "Platform not helpful",
        "requires_feedback": True,
        "requires_amount": False,
        "prompt": "What can we change to make the platform more helpful?",
        "min_feedback_length": MIN_FEEDBACK_LENGTH,
    },
    {
        "id": "not-enough-jobs",
        "label": "Not enough relevant jobs",
        "requires_feedback": True,
        "requires_amount": False,
        "prompt": "In which way can we make the jobs more relevant?",
        "min_feedback_length": MIN_FEEDBACK_LENGTH,
    },
    {
        "id": "decided-not-to-move",
        "label": "Decided not to move",
        "requires_feedback": True,
        "requires_amount": False,
        "prompt": "What changed for you to decide to not move?",
        "min_feedback_length": MIN_FEEDBACK_LENGTH,
    },
    {
        "id": "other",
        "label": "Other",
        "requires_feedback": True,
        "requires_amount": False,
        "prompt": "What would have helped you the most?",
        "min_feedback_length": MIN_FEEDBACK_LENGTH,
    },
]

OFFERS: list[dict] = [
    {
        "id": "50-percent-off",
        "label": "Get 50% off",
        "discount_percentage": 50,
        "discount_amount": 1250,
        "description": "Limited time offer - 50% off your subscription",
        "active": True,
        "variant": "both",
    },
    {
        "id": "10-dollar-off",
        "label": "Get $10 off",
        "discount_percentage": 40,
        "discount_amount": 1000,
        "description": "Special discount for you",
        "active": True,
        "variant": "B",
    },
]

_COUNT_OPTIONS = ["0", "1-5", "6-20", "20+"]
_INTERVIEW_OPTIONS = ["0", "1-2", "3-5", "5+"]

# Screen 2 of the "found a job" branch
JOB_FOUND_QUESTIONS: dict[str, dict] = {
    "found_with_product": {
        "text": "Did you find this job with MigrateMate?",
        "options": ["yes", "no"],
    },
    "roles_applied": {
        "text": "How many roles did you apply for through Migrate Mate?",
        "options": _COUNT_OPTIONS,
    },
    "companies_emailed": {
        "text": "How many companies did you email directly?",
        "options": _COUNT_OPTIONS,
    },
    "companies_interviewed": {
        "text": "How many different companies did you interview with?",
        "options": _INTERVIEW_OPTIONS,
    },
}

# Asked after the user declines the downsell
OFFER_FEEDBACK_QUESTIONS: dict[str, dict] = {
    key: JOB_FOUND_QUESTIONS[key]
    for key in ("roles_applied", "companies_emailed", "companies_interviewed")
}

REASON_IDS = tuple(r["id"] for r in REASONS)


def get_cancellation_reason(reason_id: str) -> dict | None:
    """Get a cancellation reason definition by ID."""
    for reason in REASONS:
        if reason["id"] == reason_id:
            return reason
    return None


def get_active_offers(variant: str | None = None) -> list[dict]:
    """Active offers shown to the given variant."""
    return [
        o for o in OFFERS
        if o["active"] and (o["variant"] == "both" or o["variant"] == variant)
    ]


def get_primary_offer(variant: str | None = None) -> dict | None:
    """First active offer for the variant."""
    offers = get_active_offers(variant)
    return offers[0] if offers else None


def get_downsell_offer(variant: str | None) -> dict | None:
    """Offer specific to the variant (shown on the offer screen), if any."""
    for offer in get_active_offers(variant):
        if offer["variant"] == variant:
            return offer
    return None
