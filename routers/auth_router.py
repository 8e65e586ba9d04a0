"""
Authentication routes: login, signup, logout and session status
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app_context import AppContext, get_app_context, get_subscription_repository
from models.identity import AuthSession, Identity
from services.errors import AuthGateError, ProvisioningFailed
from utils.responses import success_response, error_response, gate_error_response

logger = logging.getLogger(__name__)

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


# Request models
class LoginRequest(BaseModel):
    email: str
    password: str


class SignupRequest(BaseModel):
    email: str
    password: str
    confirm_password: str
    display_name: str


def user_payload(user: Optional[Identity]) -> Optional[dict]:
    if user is None:
        return None
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
    }


def session_payload(session: AuthSession) -> dict:
    return {
        "user": user_payload(session.user),
        "expires_at": session.expires_at.isoformat() if session.expires_at else None,
    }


@auth_router.post("/login")
async def login(
    request: LoginRequest,
    context: AppContext = Depends(get_app_context),
    subscriptions=Depends(get_subscription_repository),
):
    """Sign in, provisioning a trial or rejecting an expired subscription"""
    gate = context.gate(subscriptions)
    try:
        session = await gate.authenticate(request.email, request.password)
    except AuthGateError as e:
        return gate_error_response(e, prefix="Login failed: ")

    return success_response(session_payload(session), message="Login successful")


@auth_router.post("/signup")
async def signup(
    request: SignupRequest,
    context: AppContext = Depends(get_app_context),
    subscriptions=Depends(get_subscription_repository),
):
    """Create an account with a trial subscription. Does not sign the user in."""
    if request.password != request.confirm_password:
        return error_response("password_mismatch", status=400, message="Passwords do not match")

    gate = context.gate(subscriptions)
    try:
        identity = await gate.register_and_provision(request.email, request.password, request.display_name)
    except ProvisioningFailed as e:
        return gate_error_response(e, message="Failed to create subscription. Please try again.")
    except AuthGateError as e:
        return gate_error_response(e, prefix="Signup failed: ")

    return success_response(
        {"user": user_payload(identity)},
        message="Account created successfully with trial subscription",
    )


@auth_router.post("/logout")
async def logout(context: AppContext = Depends(get_app_context)):
    await context.store.sign_out()
    return success_response(message="Signed out")


@auth_router.get("/session")
async def get_session(context: AppContext = Depends(get_app_context)):
    store = context.store
    session = store.get_current_session()
    return success_response({
        "authenticated": store.is_authenticated,
        "is_loading": store.is_loading,
        "state": store.state.value,
        "user": user_payload(session.user) if session else None,
    })
