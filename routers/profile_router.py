"""
Profile routes: account details and live subscription status
"""

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from app_context import AppContext, get_app_context
from utils.responses import success_response, error_response, gate_error_response
from models.subscription import SubscriptionStatusView
from services.errors import LookupFailed

logger = logging.getLogger(__name__)

profile_router = APIRouter(prefix="/api/profile", tags=["profile"])
profile_ws_router = APIRouter(prefix="/ws/profile", tags=["profile_ws"])


def status_payload(view: SubscriptionStatusView) -> dict:
    subscription = view.subscription
    return {
        "subscription_type": subscription.subscription_type if subscription else None,
        "subscription_status": subscription.subscription_status.value if subscription else None,
        "start_date": subscription.start_date.isoformat() if subscription else None,
        "end_date": subscription.end_date.isoformat() if subscription else None,
        "days_remaining": view.days_remaining,
        "hours_remaining": view.hours_remaining,
        "expired": view.expired,
        "expiring_soon": view.expiring_soon,
        "display": view.display,
        "computed_at": view.computed_at.isoformat(),
    }


@profile_router.get("")
async def get_profile(context: AppContext = Depends(get_app_context)):
    session = context.store.get_current_session()
    if session is None:
        return error_response("not_authenticated", status=401, message="Not authenticated")

    try:
        view = await context.projector.snapshot(session.user.id)
    except LookupFailed as e:
        return gate_error_response(e)

    return success_response({
        "id": session.user.id,
        "email": session.user.email,
        "display_name": session.user.display_name,
        "subscription": status_payload(view),
    })


@profile_ws_router.websocket("/subscription")
async def subscription_status_ws(websocket: WebSocket):
    """Streams the remaining-time view until the client disconnects"""
    await websocket.accept()
    context: AppContext = websocket.app.state.context
    session = context.store.get_current_session()

    if session is None:
        await websocket.send_json({"error": "Not authenticated"})
        await websocket.close()
        return

    stream = context.projector.watch(session.user.id)
    try:
        async for view in stream:
            await websocket.send_json(status_payload(view))
    except WebSocketDisconnect:
        pass
    except LookupFailed as e:
        await websocket.send_json({"error": e.message})
        await websocket.close()
    finally:
        await stream.aclose()
