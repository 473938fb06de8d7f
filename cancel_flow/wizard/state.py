"""Wizard state and the pure reducer that moves it between screens."""

import copy
from dataclasses import asdict, dataclass, field

from cancel_flow.catalog import JOB_FOUND_QUESTIONS, OFFER_FEEDBACK_QUESTIONS, REASON_IDS
from cancel_flow.config import MAX_FEEDBACK_LENGTH
from cancel_flow.wizard import screens as s
from cancel_flow.wizard.validation import (
    ANSWERS_WARNING,
    FEEDBACK_ERROR,
    REASON_WARNING,
    all_answered,
    amount_error,
    feedback_error,
    is_feedback_complete,
    is_reason_complete,
)

VISA_WARNING = "Please tell us which visa you need*"


class InvalidTransition(ValueError):
    """Raised when an action is not accepted on the current screen."""


@dataclass
class WizardState:
    screen: str = s.MAIN_ENTRY
    history: list = field(default_factory=list)
    job_answers: dict = field(default_factory=dict)
    found_feedback: str = ""
    has_lawyer: str | None = None
    visa_type: str = ""
    offer_answers: dict = field(default_factory=dict)
    reason: str | None = None
    amount: str = ""
    amount_error: str | None = None
    feedback: str = ""
    feedback_error: str | None = None
    warning: str | None = None
    error: str | None = None
    processing: bool = False
    cancellation: dict | None = None
    closed: bool = False

    @property
    def found_with_product(self) -> str | None:
        return self.job_answers.get("found_with_product")

    def to_dict(self) -> dict:
        return asdict(self)


# Inputs owned by each screen, cleared when the user navigates back out of it
_SCREEN_FIELDS = {
    s.JOB_FOUND_FORM: ("job_answers",),
    s.FEEDBACK_FORM: ("found_feedback",),
    s.YES_WITH_MM: ("has_lawyer",),
    s.NO_WITHOUT_MM: ("has_lawyer",),
    s.YES_WITH_MM_VISA: ("visa_type",),
    s.NO_WITHOUT_MM_VISA: ("visa_type",),
    s.OFFER: ("error", "processing"),
    s.OFFER_FEEDBACK: ("offer_answers",),
    s.CANCELLATION_REASONS: ("reason", "amount", "amount_error", "feedback", "feedback_error"),
}

_DEFAULTS = WizardState()


def can_continue(state: WizardState) -> bool:
    """Whether the forward action of the current screen is enabled."""
    screen = state.screen
    if screen == s.JOB_FOUND_FORM:
        return all_answered(state.job_answers, JOB_FOUND_QUESTIONS)
    if screen == s.FEEDBACK_FORM:
        return is_feedback_complete(state.found_feedback)
    if screen in (s.YES_WITH_MM, s.NO_WITHOUT_MM):
        return state.has_lawyer is not None
    if screen in (s.YES_WITH_MM_VISA, s.NO_WITHOUT_MM_VISA):
        return bool(state.visa_type.strip())
    if screen == s.OFFER_FEEDBACK:
        return all_answered(state.offer_answers, OFFER_FEEDBACK_QUESTIONS)
    if screen == s.CANCELLATION_REASONS:
        return is_reason_complete(state.reason, state.amount, state.feedback)
    return screen in (s.MAIN_ENTRY, s.OFFER)


def _guard_warning(state: WizardState, action: str) -> str | None:
    """Warning to show when a guarded forward action is not yet allowed."""
    screen = state.screen
    if screen == s.CANCELLATION_REASONS:
        if not state.reason:
            return REASON_WARNING
        if action == s.GET_50_OFF:
            return None
        if can_continue(state):
            return None
        return state.amount_error or state.feedback_error or (
            FEEDBACK_ERROR if state.reason != "too-expensive" else "Please enter an amount*"
        )
    if action != s.CONTINUE or can_continue(state):
        return None
    if screen == s.FEEDBACK_FORM:
        return FEEDBACK_ERROR
    if screen in (s.YES_WITH_MM_VISA, s.NO_WITHOUT_MM_VISA):
        return VISA_WARNING
    return ANSWERS_WARNING


def _answer(answers: dict, questions: dict, payload: dict, toggle: bool) -> None:
    question = payload.get("question")
    value = payload.get("value")
    if not isinstance(question, str) or question not in questions:
        raise InvalidTransition(f"Unknown question: {question}")
    if value not in questions[question]["options"]:
        raise InvalidTransition(f"Invalid answer for {question}: {value}")
    if toggle and answers.get(question) == value:
        answers[question] = ""
    else:
        answers[question] = value


def _text(payload: dict, key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise InvalidTransition(f"{key} must be a string")
    return value


def _apply_field(state: WizardState, action: str, payload: dict) -> WizardState:
    screen = state.screen
    if action == s.ANSWER:
        if screen == s.JOB_FOUND_FORM:
            # Clicking the selected option again clears it
            _answer(state.job_answers, JOB_FOUND_QUESTIONS, payload, toggle=True)
        else:
            _answer(state.offer_answers, OFFER_FEEDBACK_QUESTIONS, payload, toggle=False)
            state.warning = None
    elif action == s.SET_FEEDBACK:
        text = _text(payload, "text")[:MAX_FEEDBACK_LENGTH]
        if screen == s.FEEDBACK_FORM:
            state.found_feedback = text
        else:
            if not state.reason or state.reason == "too-expensive":
                raise InvalidTransition("Select a reason that asks for feedback first")
            state.feedback = text
            state.feedback_error = feedback_error(text)
    elif action == s.SELECT_REASON:
        reason = payload.get("reason")
        if reason not in REASON_IDS:
            raise InvalidTransition(f"Unknown cancellation reason: {reason}")
        for name in _SCREEN_FIELDS[s.CANCELLATION_REASONS]:
            setattr(state, name, getattr(_DEFAULTS, name))
        state.reason = reason
        state.warning = None
    elif action == s.SET_AMOUNT:
        if state.reason != "too-expensive":
            raise InvalidTransition("Amount is only asked for the too-expensive reason")
        value = _text(payload, "value")
        state.amount = value
        state.amount_error = amount_error(value)
    elif action == s.SELECT_LAWYER:
        value = payload.get("value")
        if value not in ("yes", "no"):
            raise InvalidTransition(f"Invalid lawyer answer: {value}")
        state.has_lawyer = value
    elif action == s.SET_VISA_TYPE:
        state.visa_type = _text(payload, "value")
    elif action == s.PAYMENT_STARTED:
        state.processing = True
        state.error = None
    elif action == s.PAYMENT_FAILED:
        state.processing = False
        state.error = payload.get("error") or "Payment processing failed."
    return state


def reduce(state: WizardState, action: str, **payload) -> WizardState:
    """Return the state after `action`. The input state is never mutated.

    Raises InvalidTransition when the action does not exist on the current
    screen. A forward action whose inputs are incomplete leaves the screen
    unchanged and sets `warning`.
    """
    if action == s.CLOSE:
        return WizardState(closed=True)

    if state.closed:
        raise InvalidTransition("The flow is closed")

    new = copy.deepcopy(state)

    if action == s.BACK:
        if not new.history or new.screen in s.TERMINAL_SCREENS:
            raise InvalidTransition(f"Cannot go back from {new.screen}")
        for name in _SCREEN_FIELDS.get(new.screen, ()):
            setattr(new, name, copy.deepcopy(getattr(_DEFAULTS, name)))
        new.screen = new.history.pop()
        new.warning = None
        return new

    if action in s.FIELD_ACTIONS.get(new.screen, ()):
        return _apply_field(new, action, payload)

    target = s.TRANSITIONS.get((new.screen, action))
    if target is None:
        raise InvalidTransition(f"Action {action} is not available on {new.screen}")

    warning = _guard_warning(new, action)
    if warning:
        new.warning = warning
        return new

    if callable(target):
        target = target(new)

    if target == s.CLOSED:
        return WizardState(closed=True)

    if target == s.CANCELLED:
        is_amount = new.reason == "too-expensive"
        new.cancellation = {
            "reason": new.reason,
            "amount": new.amount if is_amount else None,
            "feedback": None if is_amount else new.feedback,
        }

    new.history.append(new.screen)
    new.screen = target
    new.warning = None
    new.error = None
    return new
