"""
Subscription Gate - only users with a non-expired subscription keep a session.

Handles login-time expiry checks and trial provisioning for new users.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from config.settings import settings
from models.identity import AuthSession, Identity
from models.subscription import SubscriptionSnapshot
from services.errors import AuthGateError, ExpiredSubscription, LookupFailed, ProvisioningFailed
from services.session_store import SessionStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionGate:
    """
    Service for the authenticate / register flows.

    The subscription repository is anything exposing find_by_user_id and
    create_trial (SQLAlchemy or PostgREST backed).
    """

    def __init__(
        self,
        store: SessionStore,
        subscriptions,
        trial_days: Optional[int] = None,
        fail_open: Optional[bool] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            store: Session store owning the current session
            subscriptions: Subscription repository
            trial_days: Trial length; defaults to TRIAL_DAYS
            fail_open: Keep the session when subscription lookup/provisioning
                fails during login; defaults to SUBSCRIPTION_FAIL_OPEN
            clock: Source of the current time (UTC-aware)
        """
        self.store = store
        self.subscriptions = subscriptions
        self.trial_days = trial_days if trial_days is not None else settings.trial_days
        self.fail_open = settings.subscription_fail_open if fail_open is None else fail_open
        self.clock = clock

    @property
    def trial_duration(self) -> timedelta:
        return timedelta(days=self.trial_days)

    async def provision_trial(
        self,
        identity: Identity,
        display_name: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> SubscriptionSnapshot:
        """
        Create the trial subscription for an identity (create-if-absent).

        Args:
            access_token: Token to write as the identity when it is not the
                current session (sign-up)

        Raises:
            ProvisioningFailed: When the repository cannot create the row
        """
        start = self.clock()
        return await self.subscriptions.create_trial(
            user_id=identity.id,
            email=identity.email,
            display_name=display_name or identity.display_name,
            start_date=start,
            end_date=start + self.trial_duration,
            access_token=access_token,
        )

    async def authenticate(self, email: str, password: str) -> AuthSession:
        """
        Sign in and enforce the subscription rules.

        Raises:
            InvalidCredentials: Provider rejected the credentials (no subscription logic runs)
            ExpiredSubscription: Subscription ended; the new session has been terminated
            LookupFailed / ProvisioningFailed: Only when fail-open is disabled
        """
        session = await self.store.sign_in(email, password)
        user = session.user

        try:
            subscription = await self.subscriptions.find_by_user_id(user.id)
            if subscription is None:
                logger.info(f"No subscription for user {user.id}; provisioning trial")
                await self.provision_trial(user)
                return session
        except (LookupFailed, ProvisioningFailed) as e:
            if self.fail_open:
                logger.error(f"Subscription check failed for user {user.id}, keeping session: {e.message}")
                return session
            logger.error(f"Subscription check failed for user {user.id}, signing out: {e.message}")
            await self.store.sign_out()
            raise

        if subscription.is_expired(self.clock()):
            logger.info(f"Subscription for user {user.id} expired at {subscription.end_date.isoformat()}; signing out")
            await self.store.sign_out()
            raise ExpiredSubscription()

        return session

    async def register_and_provision(self, email: str, password: str, display_name: str) -> Identity:
        """
        Create an identity and its trial subscription.

        Returns the identity without an active session; callers log in
        explicitly afterwards.

        Raises:
            SignupRejected: Provider rejected the sign-up
            ProvisioningFailed: Trial could not be created (compensating sign-out done)
        """
        provider = self.store.provider
        identity, signup_session = await provider.create_account(email, password, {"display_name": display_name})
        access_token = signup_session.access_token if signup_session else None

        try:
            await self.provision_trial(identity, display_name, access_token=access_token)
        except ProvisioningFailed:
            logger.error(f"Trial provisioning failed for new user {identity.id}; signing out")
            await self._sign_out_new_identity(identity, signup_session)
            raise

        return identity

    async def _sign_out_new_identity(self, identity: Identity, signup_session: Optional[AuthSession]) -> None:
        """Sign out only the identity just created; other users' sessions stay."""
        if signup_session is not None:
            try:
                await self.store.provider.revoke(signup_session)
            except AuthGateError as e:
                logger.warning(f"Revoking sign-up session for user {identity.id} failed: {e.message}")

        current = self.store.get_current_session()
        if current is not None and current.user.id == identity.id:
            await self.store.sign_out()
