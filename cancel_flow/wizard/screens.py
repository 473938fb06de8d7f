"""Screen and action identifiers plus the navigation table of the wizard."""

# Screens
MAIN_ENTRY = "main_entry"
JOB_FOUND_FORM = "job_found_form"
FEEDBACK_FORM = "feedback_form"
YES_WITH_MM = "yes_with_mm"
YES_WITH_MM_VISA = "yes_with_mm_visa"
YES_WITH_MM_SUCCESS = "yes_with_mm_success"
NO_WITHOUT_MM = "no_without_mm"
NO_WITHOUT_MM_VISA = "no_without_mm_visa"
NO_WITHOUT_MM_SUCCESS = "no_without_mm_success"
OFFER = "offer"
OFFER_FEEDBACK = "offer_feedback"
SUBSCRIPTION_POPUP = "subscription_popup"
CANCELLATION_REASONS = "cancellation_reasons"
CANCELLED = "cancelled"
CLOSED = "closed"

SCREENS = (
    MAIN_ENTRY, JOB_FOUND_FORM, FEEDBACK_FORM,
    YES_WITH_MM, YES_WITH_MM_VISA, YES_WITH_MM_SUCCESS,
    NO_WITHOUT_MM, NO_WITHOUT_MM_VISA, NO_WITHOUT_MM_SUCCESS,
    OFFER, OFFER_FEEDBACK, SUBSCRIPTION_POPUP, CANCELLATION_REASONS, CANCELLED,
)

TERMINAL_SCREENS = {YES_WITH_MM_SUCCESS, NO_WITHOUT_MM_SUCCESS, CANCELLED}

# Navigation actions
FOUND_JOB = "found_job"
STILL_LOOKING = "still_looking"
CONTINUE = "continue"
DECLINE_OFFER = "decline_offer"
ACCEPT_DOWNSELL = "accept_downsell"
DOWNSELL_ACCEPTED = "downsell_accepted"
GET_50_OFF = "get_50_off"
COMPLETE_CANCELLATION = "complete_cancellation"
BACK = "back"
CLOSE = "close"

# Field actions (stay on the current screen)
ANSWER = "answer"
SET_FEEDBACK = "set_feedback"
SELECT_REASON = "select_reason"
SET_AMOUNT = "set_amount"
SELECT_LAWYER = "select_lawyer"
SET_VISA_TYPE = "set_visa_type"
PAYMENT_STARTED = "payment_started"
PAYMENT_FAILED = "payment_failed"

# Dispatched by the controller around the payment call, never by clients
INTERNAL_ACTIONS = {DOWNSELL_ACCEPTED, PAYMENT_STARTED, PAYMENT_FAILED}


def _final_step(state) -> str:
    return YES_WITH_MM if state.found_with_product == "yes" else NO_WITHOUT_MM


# (screen, action) -> next screen, or a callable resolving it from state
TRANSITIONS = {
    (MAIN_ENTRY, FOUND_JOB): JOB_FOUND_FORM,
    (MAIN_ENTRY, STILL_LOOKING): OFFER,
    (JOB_FOUND_FORM, CONTINUE): FEEDBACK_FORM,
    (FEEDBACK_FORM, CONTINUE): _final_step,
    (YES_WITH_MM, CONTINUE): YES_WITH_MM_VISA,
    (YES_WITH_MM_VISA, CONTINUE): YES_WITH_MM_SUCCESS,
    (NO_WITHOUT_MM, CONTINUE): NO_WITHOUT_MM_VISA,
    (NO_WITHOUT_MM_VISA, CONTINUE): NO_WITHOUT_MM_SUCCESS,
    (OFFER, DECLINE_OFFER): OFFER_FEEDBACK,
    (OFFER, DOWNSELL_ACCEPTED): CLOSED,
    (OFFER_FEEDBACK, CONTINUE): CANCELLATION_REASONS,
    (OFFER_FEEDBACK, GET_50_OFF): SUBSCRIPTION_POPUP,
    (CANCELLATION_REASONS, COMPLETE_CANCELLATION): CANCELLED,
    (CANCELLATION_REASONS, GET_50_OFF): SUBSCRIPTION_POPUP,
}

FIELD_ACTIONS = {
    JOB_FOUND_FORM: {ANSWER},
    FEEDBACK_FORM: {SET_FEEDBACK},
    YES_WITH_MM: {SELECT_LAWYER},
    NO_WITHOUT_MM: {SELECT_LAWYER},
    YES_WITH_MM_VISA: {SET_VISA_TYPE},
    NO_WITHOUT_MM_VISA: {SET_VISA_TYPE},
    OFFER: {PAYMENT_STARTED, PAYMENT_FAILED},
    OFFER_FEEDBACK: {ANSWER},
    CANCELLATION_REASONS: {SELECT_REASON, SET_AMOUNT, SET_FEEDBACK},
}


def available_actions(screen: str) -> list[str]:
    """Actions accepted on a screen, for clients deciding what to render."""
    actions = [a for (s, a) in TRANSITIONS if s == screen and a not in INTERNAL_ACTIONS]
    if screen == OFFER:
        actions.append(ACCEPT_DOWNSELL)
    actions.extend(sorted(FIELD_ACTIONS.get(screen, set()) - INTERNAL_ACTIONS))
    if screen != MAIN_ENTRY and screen not in TERMINAL_SCREENS:
        actions.append(BACK)
    actions.append(CLOSE)
    return actions
