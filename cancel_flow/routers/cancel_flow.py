"""Cancel flow router — one wizard session per open cancellation modal."""

import logging
import time

from fastapi import APIRouter, HTTPException, Request

from cancel_flow.config import DEFAULT_MONTHLY_PRICE, MAX_SESSIONS, SESSION_TTL_SECONDS
from cancel_flow.services.ab_testing import initialize_ab_test
from cancel_flow.wizard.controller import CancelFlowController
from cancel_flow.wizard.screens import TERMINAL_SCREENS
from cancel_flow.wizard.state import InvalidTransition

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cancel-flow", tags=["Cancel flow"])

_MAX_USER_ID_LEN = 100


def _evict(sessions: dict, session_id: str) -> None:
    """Drop a session, recording an abandoned journey if it was mid-flow."""
    controller = sessions.pop(session_id, None)
    if controller is not None:
        controller.on_close()


def _cleanup_sessions(sessions: dict) -> None:
    """Expire idle sessions, then trim the oldest down to MAX_SESSIONS - 1."""
    now = time.monotonic()
    expired = [k for k, c in sessions.items() if now - c.last_seen > SESSION_TTL_SECONDS]
    for k in expired:
        _evict(sessions, k)
    if len(sessions) >= MAX_SESSIONS:
        oldest = sorted(sessions, key=lambda k: sessions[k].last_seen)
        for k in oldest[:len(sessions) - MAX_SESSIONS + 1]:
            _evict(sessions, k)
    if expired:
        logger.info("Expired %d idle cancel flow sessions", len(expired))


def _get_session(request: Request, session_id: str) -> CancelFlowController:
    sessions = request.app.state.sessions
    controller = sessions.get(session_id)
    if controller is not None and time.monotonic() - controller.last_seen > SESSION_TTL_SECONDS:
        _evict(sessions, session_id)
        controller = None
    if controller is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    controller.last_seen = time.monotonic()
    return controller


@router.post("/sessions")
async def open_session(request: Request):
    """Open the modal for a user: resolve variant and price, show the main entry.

    Payload: { user_id }
    """
    body = await request.json()
    user_id = str(body.get("user_id") or "").strip()
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id required")
    if len(user_id) > _MAX_USER_ID_LEN:
        raise HTTPException(status_code=400, detail="user_id too long")

    setup = initialize_ab_test(user_id)
    subscription = setup["subscription"] or {}
    controller = CancelFlowController(
        user_id,
        setup["variant"],
        monthly_price=subscription.get("monthly_price", DEFAULT_MONTHLY_PRICE),
        analytics=request.app.state.analytics,
    )
    sessions = request.app.state.sessions
    _cleanup_sessions(sessions)
    sessions[controller.session_id] = controller
    logger.info("Cancel flow opened for %s (variant %s, session %s)",
                user_id, controller.variant, controller.session_id)

    view = controller.open()
    view["is_new_assignment"] = setup["is_new_assignment"]
    return view


@router.get("/sessions/{session_id}")
async def get_session(request: Request, session_id: str):
    return _get_session(request, session_id).view()


@router.post("/sessions/{session_id}/actions")
async def session_action(request: Request, session_id: str):
    """Apply one wizard action.

    Payload: { action, ...fields }, e.g. {"action": "select_reason",
    "reason": "too-expensive"}. Closing, or reaching a final screen, ends the
    session.
    """
    controller = _get_session(request, session_id)
    body = await request.json()
    action = body.pop("action", None)
    if not action:
        raise HTTPException(status_code=400, detail="action required")

    try:
        view = await controller.dispatch(action, **body)
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except TypeError:
        raise HTTPException(status_code=400, detail=f"Invalid fields for {action}")

    if view["closed"] or view["screen"] in TERMINAL_SCREENS:
        request.app.state.sessions.pop(session_id, None)
    return view


@router.delete("/sessions/{session_id}")
async def close_session(request: Request, session_id: str):
    """Close the modal (overlay click / Escape)."""
    controller = _get_session(request, session_id)
    view = controller.on_close()
    request.app.state.sessions.pop(session_id, None)
    return view
