"""Cancellation modal controller.

One controller per open modal. It feeds user actions through the reducer and
runs the side effects attached to two transitions:

- accepting the downsell charges the payment stub and closes the modal only
  when the charge succeeds; a failure leaves the offer screen up with an
  inline error so the user can retry.
- completing the cancellation writes the pending status and the reason, then
  shows the Cancelled screen whether or not the writes went through.
"""

import logging
import time

from cancel_flow.catalog import (
    JOB_FOUND_QUESTIONS,
    OFFER_FEEDBACK_QUESTIONS,
    REASONS,
    get_downsell_offer,
    get_primary_offer,
)
from cancel_flow.config import DEFAULT_MONTHLY_PRICE
from cancel_flow.services import cancellations
from cancel_flow.services.analytics import new_session_id
from cancel_flow.services.pricing import calculate_downsell_price, format_price
from cancel_flow.wizard import screens as s
from cancel_flow.wizard.state import InvalidTransition, WizardState, can_continue, reduce

logger = logging.getLogger(__name__)

CONFIG_ERROR = "Configuration error. Please try again."
PAYMENT_ERROR = "Payment processing failed. Please try again or contact support."

_SCREEN_QUESTIONS = {
    s.JOB_FOUND_FORM: JOB_FOUND_QUESTIONS,
    s.OFFER_FEEDBACK: OFFER_FEEDBACK_QUESTIONS,
}


class CancelFlowController:
    def __init__(self, user_id: str, variant: str,
                 monthly_price: int = DEFAULT_MONTHLY_PRICE,
                 analytics=None, payment=None, session_id: str | None = None):
        self.user_id = user_id
        self.variant = variant
        self.monthly_price = monthly_price
        self.payment = payment
        self.session_id = session_id or new_session_id()
        self.last_seen = time.monotonic()
        self.state = WizardState()
        self.tracker = (
            analytics.session(user_id, variant, session_id=self.session_id)
            if analytics else None
        )

    @property
    def downsell_price(self) -> int:
        return calculate_downsell_price(self.monthly_price, self.variant)

    @property
    def flow_path(self) -> str:
        return "->".join(self.state.history + [self.state.screen])

    def _track(self, method: str, *args, **kwargs):
        if self.tracker is None:
            return None
        return getattr(self.tracker, method)(*args, **kwargs)

    def _apply(self, action: str, **payload) -> WizardState:
        before = self.state
        self.state = reduce(before, action, **payload)
        if len(self.state.history) > len(before.history):
            self._track("track_journey_step", before.screen, len(self.state.history),
                        payload or None)
        return self.state

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> dict:
        """Start a fresh run of the modal."""
        self.state = WizardState()
        self._track("popup_opened")
        self._track("identify", self.user_id, {"monthlyPrice": self.monthly_price})
        self._track("set_variant", self.variant)
        return self.view()

    def on_close(self) -> dict:
        """Close from any screen. Unfinished runs are recorded as abandoned."""
        if not self.state.closed and self.state.history and \
                self.state.screen not in s.TERMINAL_SCREENS:
            self._track("complete_journey", "abandoned", self.flow_path,
                        abandonment_step=self.state.screen)
        self.state = reduce(self.state, s.CLOSE)
        return self.view()

    def on_back(self) -> dict:
        self._apply(s.BACK)
        return self.view()

    def on_continue(self) -> dict:
        self._apply(s.CONTINUE)
        if self.state.screen in (s.YES_WITH_MM_SUCCESS, s.NO_WITHOUT_MM_SUCCESS):
            self._track("complete_journey", "completed", self.flow_path)
        return self.view()

    # ------------------------------------------------------------------
    # Main entry and offer
    # ------------------------------------------------------------------

    def found_job(self) -> dict:
        self._apply(s.FOUND_JOB)
        self._track("track_cancellation_flow", "found_job")
        return self.view()

    def still_looking(self) -> dict:
        self._apply(s.STILL_LOOKING)
        self._track("track_cancellation_attempt", None, variant=self.variant)
        offer = get_downsell_offer(self.variant)
        self._track("track_downsell_offer", offer["id"] if offer else "no-discount",
                    self.downsell_price, self.monthly_price)
        return self.view()

    def decline_offer(self) -> dict:
        self._apply(s.DECLINE_OFFER)
        self._track("track_downsell_response", False, self.downsell_price)
        return self.view()

    async def accept_downsell(self) -> dict:
        """Charge the downsell price; close on success, show an error otherwise."""
        if self.state.screen != s.OFFER:
            raise InvalidTransition(f"Action {s.ACCEPT_DOWNSELL} is not available on {self.state.screen}")

        # A charge is already in flight for this modal
        if self.state.processing:
            logger.info("Duplicate downsell acceptance ignored for %s", self.user_id)
            return self.view()

        if not self.user_id or not self.variant:
            logger.error("Downsell accepted without user_id/variant")
            self.state = reduce(self.state, s.PAYMENT_FAILED, error=CONFIG_ERROR)
            return self.view()

        self.state = reduce(self.state, s.PAYMENT_STARTED)
        try:
            result = await cancellations.handle_downsell_acceptance(
                self.user_id, self.variant, payment=self.payment)
        except Exception:
            logger.exception("Downsell acceptance failed for %s", self.user_id)
            result = {"success": False}

        if not result.get("success"):
            self.state = reduce(self.state, s.PAYMENT_FAILED, error=PAYMENT_ERROR)
            return self.view()

        self._track("track_downsell_response", True, self.downsell_price)
        self._track("complete_journey", "downsell_accepted", self.flow_path)
        self.state = reduce(self.state, s.DOWNSELL_ACCEPTED)
        return self.view()

    def on_get_50_off(self) -> dict:
        self._apply(s.GET_50_OFF)
        if self.state.screen == s.SUBSCRIPTION_POPUP:
            self._track("track_cancellation_flow", "get_50_off",
                        {"offerId": get_primary_offer(self.variant)["id"], "from": self.state.history[-1]})
        return self.view()

    # ------------------------------------------------------------------
    # Reasons
    # ------------------------------------------------------------------

    async def on_complete_cancellation(self, reason: str | None = None,
                                       amount: str | None = None,
                                       feedback: str | None = None) -> dict:
        """Submit the reasons screen.

        Arguments, when given, are applied to the form first. Persistence
        results do not change the outcome: a valid submission always ends on
        the Cancelled screen.
        """
        if reason is not None and reason != self.state.reason:
            self._apply(s.SELECT_REASON, reason=reason)
        if amount is not None:
            self._apply(s.SET_AMOUNT, value=amount)
        if feedback is not None:
            self._apply(s.SET_FEEDBACK, text=feedback)

        pending = reduce(self.state, s.COMPLETE_CANCELLATION)
        if pending.screen != s.CANCELLED:
            self.state = pending
            return self.view()

        data = pending.cancellation
        ok = await cancellations.handle_cancellation_completion(
            self.user_id, self.variant, data["reason"],
            amount=data["amount"], feedback=data["feedback"],
        )
        if not ok:
            logger.warning("Cancellation for %s may not have been persisted", self.user_id)

        self._track("track_journey_step", self.state.screen, len(pending.history), data)
        self.state = pending
        self._track("track_cancellation_reason", data["reason"],
                    hasFeedback=bool(data["feedback"]), amount=data["amount"])
        self._track("track_revenue_loss", self.monthly_price, self.monthly_price * 12)
        self._track("complete_journey", "completed", self.flow_path)
        return self.view()

    # ------------------------------------------------------------------
    # Generic entry point
    # ------------------------------------------------------------------

    async def dispatch(self, action: str, **payload) -> dict:
        """Apply a client action by name and return the new view."""
        if action in s.INTERNAL_ACTIONS:
            raise InvalidTransition(f"Action {action} cannot be sent by clients")
        if action == s.CLOSE:
            return self.on_close()
        if action == s.ACCEPT_DOWNSELL:
            return await self.accept_downsell()
        if action == s.COMPLETE_CANCELLATION:
            return await self.on_complete_cancellation(**payload)

        handlers = {
            s.BACK: self.on_back,
            s.CONTINUE: self.on_continue,
            s.FOUND_JOB: self.found_job,
            s.STILL_LOOKING: self.still_looking,
            s.DECLINE_OFFER: self.decline_offer,
            s.GET_50_OFF: self.on_get_50_off,
        }
        if action in handlers:
            return handlers[action]()

        self._apply(action, **payload)
        if action == s.SELECT_REASON:
            self._track("track_cancellation_flow", "reason_selected", {"reason": self.state.reason})
        return self.view()

    def view(self) -> dict:
        """JSON-friendly snapshot for rendering the current screen."""
        state = self.state
        view = {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "variant": self.variant,
            "screen": s.CLOSED if state.closed else state.screen,
            "closed": state.closed,
            "actions": [] if state.closed else s.available_actions(state.screen),
            "can_continue": can_continue(state),
            "monthly_price": self.monthly_price,
            "downsell_price": self.downsell_price,
            "formatted": {
                "monthly_price": format_price(self.monthly_price),
                "downsell_price": format_price(self.downsell_price),
            },
            "offer": get_downsell_offer(self.variant),
            "mid_flow_offer": get_primary_offer(self.variant),
            "state": state.to_dict(),
        }
        if state.screen in _SCREEN_QUESTIONS:
            view["questions"] = _SCREEN_QUESTIONS[state.screen]
        if state.screen == s.CANCELLATION_REASONS:
            view["reasons"] = REASONS
        return view
