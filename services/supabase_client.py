"""
Supabase adapters over httpx.

SupabaseIdentityProvider talks to GoTrue (/auth/v1) and
SupabaseSubscriptionRepository talks to PostgREST (/rest/v1). Both accept an
injected httpx.AsyncClient so tests can plug in a MockTransport.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Tuple

import httpx

from config.settings import TRIAL_SUBSCRIPTION_TYPE
from models.identity import AuthSession, Identity
from models.subscription import SubscriptionSnapshot, SubscriptionStatus
from services.errors import (
    AuthGateError,
    InvalidCredentials,
    LookupFailed,
    ProvisioningFailed,
    SignupRejected,
)
from services.events import SubscriptionChangeFeed
from services.identity_provider import IdentityProvider

logger = logging.getLogger(__name__)

# PostgREST code for "JSON object requested, multiple (or no) rows returned"
PGRST_NOT_FOUND = "PGRST116"
SINGLE_OBJECT = "application/vnd.pgrst.object+json"


def _error_message(response: httpx.Response) -> str:
    """Pull the human-readable message out of a GoTrue/PostgREST error body"""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("msg", "error_description", "message", "error"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {response.status_code}"


def _identity_from_payload(user: dict) -> Identity:
    return Identity(
        id=str(user["id"]),
        email=user.get("email") or "",
        user_metadata=user.get("user_metadata") or {},
    )


def _session_from_payload(payload: dict) -> AuthSession:
    expires_at = None
    if payload.get("expires_at"):
        expires_at = datetime.fromtimestamp(int(payload["expires_at"]), tz=timezone.utc)
    elif payload.get("expires_in"):
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(payload["expires_in"]))
    return AuthSession(
        user=_identity_from_payload(payload["user"]),
        access_token=payload["access_token"],
        refresh_token=payload.get("refresh_token"),
        expires_at=expires_at,
    )


class _SupabaseHTTP:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        if not base_url or not api_key:
            raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY must be set for the supabase backend.")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self, bearer: Optional[str] = None, **extra: str) -> dict:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {bearer or self.api_key}",
        }
        headers.update(extra)
        return headers

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


class SupabaseIdentityProvider(IdentityProvider):
    """GoTrue email/password provider"""

    def __init__(self, base_url: str, anon_key: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        super().__init__()
        self.http = _SupabaseHTTP(base_url, anon_key, client=client, timeout=timeout)

    def _url(self, path: str) -> str:
        return f"{self.http.base_url}/auth/v1{path}"

    async def _post(self, path: str, *, params=None, json=None, bearer=None) -> httpx.Response:
        try:
            return await self.http.client.post(
                self._url(path),
                params=params,
                json=json,
                headers=self.http._headers(bearer),
            )
        except httpx.HTTPError as e:
            logger.error(f"GoTrue request {path} failed: {e}")
            raise AuthGateError("Authentication service unavailable") from e

    async def _sign_in(self, email: str, password: str) -> AuthSession:
        response = await self._post(
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if response.status_code >= 400:
            raise InvalidCredentials(_error_message(response))
        return _session_from_payload(response.json())

    async def _sign_up(self, email: str, password: str, metadata: dict) -> Tuple[Identity, Optional[AuthSession]]:
        response = await self._post(
            "/signup",
            json={"email": email, "password": password, "data": metadata},
        )
        if response.status_code >= 400:
            raise SignupRejected(_error_message(response))

        payload = response.json()
        # Auto-confirm projects answer with a session wrapping the user
        if "access_token" in payload:
            user = payload.get("user")
            if not user or not user.get("id"):
                raise SignupRejected("Signup did not return a user")
            session = _session_from_payload(payload)
            return session.user, session

        if not payload.get("id"):
            raise SignupRejected("Signup did not return a user")
        return _identity_from_payload(payload), None

    async def _revoke(self, session: AuthSession) -> None:
        response = await self._post("/logout", bearer=session.access_token)
        if response.status_code >= 400:
            raise AuthGateError(_error_message(response))

    async def _refresh(self, session: AuthSession) -> AuthSession:
        if not session.refresh_token:
            raise AuthGateError("Session has no refresh token")
        response = await self._post(
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": session.refresh_token},
        )
        if response.status_code >= 400:
            raise AuthGateError(_error_message(response))
        return _session_from_payload(response.json())

    async def close(self) -> None:
        await super().close()
        await self.http.aclose()


class SupabaseSubscriptionRepository:
    """
    PostgREST-backed subscriptions table.

    Requests are authorized with the service key when configured, otherwise
    with the signed-in user's access token (row level security), otherwise
    with the anon key. In the user-scoped case an explicit access_token
    argument overrides the current session's token.
    """

    table = "subscriptions"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        client: Optional[httpx.AsyncClient] = None,
        token_getter: Optional[Callable[[], Optional[str]]] = None,
        changes: Optional[SubscriptionChangeFeed] = None,
        timeout: float = 10.0,
    ):
        self.http = _SupabaseHTTP(base_url, api_key, client=client, timeout=timeout)
        self.token_getter = token_getter
        self.changes = changes

    @property
    def _url(self) -> str:
        return f"{self.http.base_url}/rest/v1/{self.table}"

    def _headers(self, access_token: Optional[str] = None, **extra: str) -> dict:
        bearer = None
        if self.token_getter is not None:
            # User-scoped: an explicit token wins over the current session's
            bearer = access_token or self.token_getter()
        return self.http._headers(bearer, **extra)

    async def find_by_user_id(self, user_id: str, access_token: Optional[str] = None) -> Optional[SubscriptionSnapshot]:
        try:
            response = await self.http.client.get(
                self._url,
                params={"user_id": f"eq.{user_id}", "select": "*"},
                headers=self._headers(access_token, Accept=SINGLE_OBJECT),
            )
        except httpx.HTTPError as e:
            logger.error(f"Subscription lookup failed for user {user_id}: {e}")
            raise LookupFailed() from e

        if response.status_code == 406 and self._is_not_found(response):
            return None
        if response.status_code >= 400:
            logger.error(f"Subscription lookup failed for user {user_id}: {_error_message(response)}")
            raise LookupFailed()
        return SubscriptionSnapshot.model_validate(response.json())

    @staticmethod
    def _is_not_found(response: httpx.Response) -> bool:
        try:
            body: Any = response.json()
        except ValueError:
            return False
        return isinstance(body, dict) and body.get("code") == PGRST_NOT_FOUND

    async def create_trial(
        self,
        user_id: str,
        email: str,
        display_name: str,
        start_date: datetime,
        end_date: datetime,
        access_token: Optional[str] = None,
    ) -> SubscriptionSnapshot:
        """
        Create-if-absent insert. access_token authorizes the write as a user
        that is not (yet) the current session, e.g. right after sign-up.
        """
        row = {
            "user_id": user_id,
            "email": email or "",
            "display_name": display_name,
            "subscription_type": TRIAL_SUBSCRIPTION_TYPE,
            "subscription_status": SubscriptionStatus.ACTIVE.value,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
        }
        try:
            response = await self.http.client.post(
                self._url,
                params={"on_conflict": "user_id"},
                json=row,
                headers=self._headers(access_token, Prefer="resolution=ignore-duplicates,return=representation"),
            )
        except httpx.HTTPError as e:
            logger.error(f"Trial provisioning failed for user {user_id}: {e}")
            raise ProvisioningFailed() from e

        if response.status_code >= 400:
            logger.error(f"Trial provisioning failed for user {user_id}: {_error_message(response)}")
            raise ProvisioningFailed()

        created = response.json()
        if isinstance(created, dict):
            created = [created]
        if not created:
            # Duplicate ignored by on_conflict; hand back the existing row
            logger.info(f"Subscription already exists for user {user_id}; keeping existing row")
            try:
                existing = await self.find_by_user_id(user_id, access_token)
            except LookupFailed as e:
                raise ProvisioningFailed() from e
            if existing is None:
                raise ProvisioningFailed()
            return existing

        snapshot = SubscriptionSnapshot.model_validate(created[0])
        logger.info(f"Trial subscription created for user {user_id} (ends {snapshot.end_date.isoformat()})")
        if self.changes is not None:
            self.changes.notify(user_id)
        return snapshot

    async def aclose(self) -> None:
        await self.http.aclose()
