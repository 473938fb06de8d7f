"""Form validation rules for the cancellation screens."""

import re

from cancel_flow.config import MIN_FEEDBACK_LENGTH

# Empty, whole number, or number with a single decimal part (ASCII digits only)
_AMOUNT_RE = re.compile(r"(?:[0-9]+(?:\.[0-9]+)?)?")

AMOUNT_ERROR = "Invalid format - only numbers and decimal numbers accepted"
FEEDBACK_ERROR = (
    f"Please enter at least {MIN_FEEDBACK_LENGTH} characters "
    "so we can understand your feedback*"
)
REASON_WARNING = "To help us understand your experience, please select a reason for cancelling*"
ANSWERS_WARNING = "Please answer every question to continue*"


def is_valid_amount(value: str) -> bool:
    return bool(_AMOUNT_RE.fullmatch(value))


def amount_error(value: str) -> str | None:
    """Field-level error for the maximum-price input, or None."""
    return None if is_valid_amount(value) else AMOUNT_ERROR


def is_feedback_complete(text: str, min_length: int = MIN_FEEDBACK_LENGTH) -> bool:
    return len(text) >= min_length


def feedback_error(text: str, min_length: int = MIN_FEEDBACK_LENGTH) -> str | None:
    """Error shown once the user has typed something too short."""
    if 0 < len(text) < min_length:
        return FEEDBACK_ERROR
    return None


def all_answered(answers: dict, questions) -> bool:
    """True when every question key has a non-empty answer."""
    return all(answers.get(key) for key in questions)


def is_reason_complete(reason: str | None, amount: str, feedback: str) -> bool:
    """Whether the reasons screen may submit.

    "too-expensive" needs a non-empty, well-formed amount; every other reason
    needs feedback of the minimum length.
    """
    if not reason:
        return False
    if reason == "too-expensive":
        return bool(amount) and is_valid_amount(amount)
    return is_feedback_complete(feedback)
