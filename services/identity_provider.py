"""
Identity provider contract and the local database-backed provider.

A provider owns the client-side copy of the current session (the way a hosted
auth SDK keeps it) and announces every change through on_auth_state_change.
"""

import logging
from enum import Enum
from typing import Any, Callable, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from auth_utils import hash_password, verify_password, create_jwt, decode_jwt
from crud.user import UserRepository
from models.identity import AuthSession, Identity
from services.errors import InvalidCredentials, SignupRejected
from services.events import ListenerHandle, ListenerRegistry
from utils.security_utils import normalize_email, validate_email, validate_password_strength

logger = logging.getLogger(__name__)


class AuthEvent(str, Enum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


AuthStateHandler = Callable[[AuthEvent, Optional[AuthSession]], Any]


class IdentityProvider:
    """
    Base class for identity providers.

    Subclasses implement _sign_in, _sign_up, _revoke and _refresh; the base
    class keeps the current session and emits auth-state events.
    """

    def __init__(self):
        self._session: Optional[AuthSession] = None
        self._listeners = ListenerRegistry(name="auth state")

    def on_auth_state_change(self, handler: AuthStateHandler) -> ListenerHandle:
        return self._listeners.subscribe(handler)

    def _emit(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        self._listeners.publish(event, session)

    async def get_session(self) -> Optional[AuthSession]:
        return self._session

    async def sign_in(self, email: str, password: str) -> AuthSession:
        """
        Raises:
            InvalidCredentials: When the provider rejects the credentials
        """
        session = await self._sign_in(normalize_email(email), password)
        self._session = session
        self._emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str, metadata: Optional[dict] = None) -> Identity:
        """
        Create an identity. Never establishes a session.

        Raises:
            SignupRejected: Duplicate email, weak password, invalid email, etc.
        """
        identity, _ = await self.create_account(email, password, metadata)
        return identity

    async def create_account(
        self,
        email: str,
        password: str,
        metadata: Optional[dict] = None,
    ) -> Tuple[Identity, Optional[AuthSession]]:
        """
        Create an identity and return it with the sign-up session, if the
        provider issued one. The sign-up session is never made current.

        Raises:
            SignupRejected: Duplicate email, weak password, invalid email, etc.
        """
        return await self._sign_up(normalize_email(email), password, metadata or {})

    async def revoke(self, session: AuthSession) -> None:
        """Revoke a session that is not the current one; the current session is untouched."""
        await self._revoke(session)

    async def sign_out(self) -> None:
        """Drop the current session; a revocation error propagates after the local session is cleared."""
        session, self._session = self._session, None
        if session is None:
            return
        try:
            await self._revoke(session)
        finally:
            self._emit(AuthEvent.SIGNED_OUT, None)

    async def refresh_session(self) -> Optional[AuthSession]:
        if self._session is None:
            return None
        session = await self._refresh(self._session)
        self._session = session
        self._emit(AuthEvent.TOKEN_REFRESHED, session)
        return session

    async def close(self) -> None:
        self._listeners.clear()

    async def _sign_in(self, email: str, password: str) -> AuthSession:
        raise NotImplementedError

    async def _sign_up(self, email: str, password: str, metadata: dict) -> Tuple[Identity, Optional[AuthSession]]:
        raise NotImplementedError

    async def _revoke(self, session: AuthSession) -> None:
        raise NotImplementedError

    async def _refresh(self, session: AuthSession) -> AuthSession:
        raise NotImplementedError


def _to_identity(user) -> Identity:
    return Identity(id=user.id, email=user.email, user_metadata=dict(user.user_metadata or {}))


class LocalIdentityProvider(IdentityProvider):
    """
    Database-backed provider for development and tests.
    Passwords are argon2 hashes; access tokens are short-lived HS256 JWTs.
    """

    def __init__(self, session_factory: async_sessionmaker, jwt_ttl_minutes: Optional[int] = None):
        super().__init__()
        self.session_factory = session_factory
        self.jwt_ttl_minutes = jwt_ttl_minutes

    def _issue(self, identity: Identity) -> AuthSession:
        token, expires_at = create_jwt(identity.id, self.jwt_ttl_minutes)
        return AuthSession(user=identity, access_token=token, expires_at=expires_at)

    async def get_session(self) -> Optional[AuthSession]:
        session = self._session
        if session is not None and decode_jwt(session.access_token) is None:
            logger.info(f"Access token for user {session.user.id} expired; dropping session")
            self._session = None
            self._emit(AuthEvent.SIGNED_OUT, None)
            return None
        return session

    async def _sign_in(self, email: str, password: str) -> AuthSession:
        async with self.session_factory() as db:
            user_repo = UserRepository(db)
            user = await user_repo.get_user_by_email(email)
            if not user or not verify_password(password, user.hashed_password):
                raise InvalidCredentials("Invalid login credentials")
            await user_repo.record_sign_in(user)
            await db.commit()
            identity = _to_identity(user)
        return self._issue(identity)

    async def _sign_up(self, email: str, password: str, metadata: dict) -> Tuple[Identity, Optional[AuthSession]]:
        if not validate_email(email):
            raise SignupRejected("Invalid email format")
        try:
            validate_password_strength(password)
        except ValueError as e:
            raise SignupRejected(str(e))

        async with self.session_factory() as db:
            user_repo = UserRepository(db)
            if await user_repo.get_user_by_email(email):
                raise SignupRejected("User already registered")
            try:
                user = await user_repo.create_user({
                    "email": email,
                    "hashed_password": hash_password(password),
                    "user_metadata": metadata,
                })
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise SignupRejected("User already registered")
            identity = _to_identity(user)
        logger.info(f"Registered user {identity.id}")
        return identity, None

    async def _revoke(self, session: AuthSession) -> None:
        # Stateless tokens; nothing to revoke server-side
        return None

    async def _refresh(self, session: AuthSession) -> AuthSession:
        return self._issue(session.user)
