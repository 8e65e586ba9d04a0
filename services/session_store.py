"""
Session Store - single source of truth for "is a user currently authenticated".

Owned by the application context: started on startup (first session check and
provider subscription), closed on shutdown. Dependents read the session or
subscribe to changes; they never hold their own copy.
"""

import logging
from enum import Enum
from typing import Any, Callable, Optional

from models.identity import AuthSession
from services.errors import AuthGateError
from services.events import ListenerHandle, ListenerRegistry
from services.identity_provider import AuthEvent, IdentityProvider

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


SessionChangeHandler = Callable[[AuthEvent, Optional[AuthSession]], Any]


class SessionStore:
    def __init__(self, provider: IdentityProvider):
        self.provider = provider
        self._session: Optional[AuthSession] = None
        self._state = SessionState.UNAUTHENTICATED
        self._loading = True
        self._listeners = ListenerRegistry(name="session changes")
        self._provider_handle: Optional[ListenerHandle] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_loading(self) -> bool:
        """True until the first asynchronous session check resolves"""
        return self._loading

    @property
    def is_authenticated(self) -> bool:
        return self._state == SessionState.AUTHENTICATED

    def get_current_session(self) -> Optional[AuthSession]:
        return self._session

    def on_session_change(self, handler: SessionChangeHandler) -> ListenerHandle:
        return self._listeners.subscribe(handler)

    async def start(self) -> None:
        session = await self.provider.get_session()
        self._apply(AuthEvent.INITIAL_SESSION, session, force=True)
        self._loading = False
        if self._provider_handle is None:
            self._provider_handle = self.provider.on_auth_state_change(self._on_provider_event)

    async def close(self) -> None:
        if self._provider_handle is not None:
            self._provider_handle.unsubscribe()
            self._provider_handle = None
        self._listeners.clear()

    async def sign_in(self, email: str, password: str) -> AuthSession:
        """
        Unauthenticated -> Authenticating -> Authenticated.
        When the provider rejects, the previous session (if any) is kept, as the
        provider keeps it too, and the error is re-raised.
        """
        self._state = SessionState.AUTHENTICATING
        try:
            session = await self.provider.sign_in(email, password)
        except Exception:
            self._state = SessionState.AUTHENTICATED if self._session else SessionState.UNAUTHENTICATED
            raise
        self._apply(AuthEvent.SIGNED_IN, session)
        logger.info(f"User {session.user.id} signed in")
        return session

    async def sign_out(self) -> None:
        """Terminate the session unconditionally. Idempotent."""
        user_id = self._session.user.id if self._session else None
        try:
            await self.provider.sign_out()
        except AuthGateError as e:
            logger.warning(f"Provider sign-out failed, clearing local session anyway: {e.message}")
        finally:
            self._apply(AuthEvent.SIGNED_OUT, None)
        if user_id:
            logger.info(f"User {user_id} signed out")

    def _on_provider_event(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        self._apply(event, session)

    def _apply(self, event: AuthEvent, session: Optional[AuthSession], force: bool = False) -> None:
        new_state = SessionState.AUTHENTICATED if session else SessionState.UNAUTHENTICATED
        old_token = self._session.access_token if self._session else None
        new_token = session.access_token if session else None
        changed = new_state != self._state or old_token != new_token

        self._session = session
        self._state = new_state
        if changed or force:
            self._listeners.publish(event, session)
