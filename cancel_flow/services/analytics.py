"""Analytics event tracking for the cancellation flow.

An AnalyticsClient is created by whoever owns the process (the app factory
stores one on app.state) and keeps the last `buffer_size` events in memory.
Each open modal gets its own AnalyticsSession, which carries the session id,
user, variant and the journey steps recorded so far.

Events are written to the analytics_events table, journeys to user_journeys.
Writes are best-effort: a data-access failure is logged and the event stays
in the buffer.
"""

import json
import logging
import random
import string
import time
from collections import deque
from datetime import datetime, timezone

from cancel_flow import supabase_client as db
from cancel_flow.config import APP_ENV, ENABLE_ANALYTICS
from cancel_flow.services.pricing import discount_percentage

logger = logging.getLogger(__name__)

JOURNEY_OUTCOMES = ("completed", "abandoned", "downsell_accepted")
DEFAULT_TEST_NAME = "downsell_ab_test"


def new_session_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AnalyticsClient:
    def __init__(self, enabled: bool = ENABLE_ANALYTICS, buffer_size: int = 100,
                 environment: str = APP_ENV, persist: bool = True):
        self.enabled = enabled
        self.environment = environment
        self.persist = persist
        self._events: deque = deque(maxlen=buffer_size)

    def session(self, user_id: str | None = None, variant: str | None = None,
                session_id: str | None = None) -> "AnalyticsSession":
        return AnalyticsSession(self, user_id=user_id, variant=variant,
                                session_id=session_id)

    def track(self, event_name: str, category: str, session_id: str,
              properties: dict | None = None, user_id: str | None = None,
              variant: str | None = None, test_name: str | None = None,
              user_properties: dict | None = None) -> dict | None:
        """Buffer an event and write it to analytics_events.

        Returns the event row, or None when analytics is disabled.
        """
        if not self.enabled:
            return None

        event = {
            "event_name": event_name,
            "event_category": category,
            "session_id": session_id,
            "user_id": user_id,
            "variant": variant,
            "test_name": test_name,
            "event_properties": {**(properties or {}), "environment": self.environment},
            "user_properties": user_properties,
            "created_at": _iso_now(),
        }
        self._events.append(event)

        if self.environment == "development":
            logger.debug("Analytics event: %s %s", event_name, event["event_properties"])

        if self.persist:
            try:
                db.record_event(event)
            except db.DataAccessError as e:
                logger.warning("Failed to store analytics event %s: %s", event_name, e)
        return event

    def record_journey(self, journey: dict) -> None:
        if not (self.enabled and self.persist):
            return
        try:
            db.record_journey(journey)
        except db.DataAccessError as e:
            logger.warning("Journey tracking failed for %s: %s", journey.get("session_id"), e)

    def events(self) -> list[dict]:
        """Copy of the buffered events, oldest first."""
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()

    def export_json(self) -> str:
        return json.dumps(list(self._events), indent=2, default=str)


class AnalyticsSession:
    """Tracking context for one open cancellation modal."""

    def __init__(self, client: AnalyticsClient, user_id: str | None = None,
                 variant: str | None = None, session_id: str | None = None):
        self.client = client
        self.session_id = session_id or new_session_id()
        self.user_id = user_id
        self.variant = variant
        self.steps: list[dict] = []
        self._started = time.monotonic()
        self._last_step = self._started

    def track(self, event_name: str, category: str, properties: dict | None = None,
              **extra) -> dict | None:
        extra.setdefault("user_id", self.user_id)
        extra.setdefault("variant", self.variant)
        return self.client.track(event_name, category, self.session_id,
                                 properties=properties, **extra)

    def identify(self, user_id: str, user_properties: dict | None = None) -> None:
        self.user_id = user_id
        self.track("user_identified", "user", user_properties=user_properties)

    def set_variant(self, variant: str, test_name: str = DEFAULT_TEST_NAME) -> None:
        self.variant = variant
        self.track("ab_test_assigned", "ab_testing",
                   {"assignedAt": _iso_now()}, test_name=test_name)

    def popup_opened(self) -> None:
        self.track("cancel_popup_opened", "engagement")

    def track_cancellation_flow(self, step: str, data: dict | None = None) -> None:
        self.track("cancellation_flow_step", "cancellation_flow", {"step": step, **(data or {})})

    def track_journey_step(self, step_name: str, step_number: int,
                           user_input: dict | None = None,
                           errors: list[str] | None = None) -> dict:
        now = time.monotonic()
        step = {
            "stepName": step_name,
            "stepNumber": step_number,
            "timestamp": _iso_now(),
            "timeSpent": int((now - self._last_step) * 1000),
            "userInput": user_input,
            "errors": errors,
        }
        self._last_step = now
        self.steps.append(step)
        self.track("journey_step_completed", "user_journey", {
            "stepName": step_name,
            "stepNumber": step_number,
            "timeSpent": step["timeSpent"],
            "hasErrors": bool(errors),
            "userInput": user_input,
        })
        return step

    def complete_journey(self, outcome: str, flow_path: str,
                         abandonment_step: str | None = None,
                         total_steps: int | None = None) -> dict:
        """Write the journey row, emit journey_completed, then start a new journey."""
        if outcome not in JOURNEY_OUTCOMES:
            raise ValueError(f"Unknown journey outcome: {outcome}")

        completed = len(self.steps)
        total = max(total_steps or completed, completed)
        journey = {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "variant": self.variant or "A",
            "flow_path": flow_path,
            "total_steps": total,
            "completed_steps": completed,
            "completion_rate": round(completed / total * 100, 1) if total else 0,
            "time_to_complete": round(time.monotonic() - self._started),
            "journey_outcome": outcome,
            "abandonment_step": abandonment_step,
            "steps_data": self.steps,
            "metadata": {"completedAt": _iso_now()},
        }
        self.client.record_journey(journey)
        self.track("journey_completed", "user_journey", {
            "outcome": outcome,
            "flowPath": flow_path,
            "timeToComplete": journey["time_to_complete"],
            "totalSteps": total,
            "completionRate": journey["completion_rate"],
        })

        self.steps = []
        self._started = self._last_step = time.monotonic()
        return journey

    # Marketing events

    def track_cancellation_attempt(self, reason: str | None = None, **data) -> None:
        self.track("cancellation_attempt_started", "conversion", {"reason": reason, **data})

    def track_downsell_offer(self, offer_type: str, offer_value: int, original_price: int) -> None:
        self.track("downsell_offer_presented", "conversion", {
            "offerType": offer_type,
            "offerValue": offer_value,
            "originalPrice": original_price,
            "discountPercentage": discount_percentage(original_price, offer_value),
        })

    def track_downsell_response(self, accepted: bool, offer_value: int | None = None,
                                reason: str | None = None) -> None:
        name = "downsell_offer_accepted" if accepted else "downsell_offer_declined"
        self.track(name, "conversion", {
            "offerValue": offer_value,
            "reason": reason,
            "responseTime": int((time.monotonic() - self._started) * 1000),
        })

    def track_cancellation_reason(self, reason: str, **details) -> None:
        self.track("cancellation_reason_selected", "feedback", {"reason": reason, **details})

    def track_revenue_loss(self, monthly_value: int, estimated_lifetime_value: int) -> None:
        self.track("revenue_at_risk", "business_metrics", {
            "monthlyValue": monthly_value,
            "estimatedLifetimeValue": estimated_lifetime_value,
            "riskDate": _iso_now(),
        })
