"""
Tests for login-time subscription gating and trial provisioning
"""
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from crud.subscription import SubscriptionRepository
from database_models import Subscription
from models.identity import AuthSession, Identity
from models.subscription import SubscriptionStatus
from services.errors import (
    ExpiredSubscription,
    InvalidCredentials,
    LookupFailed,
    ProvisioningFailed,
    SignupRejected,
)
from services.subscription_gate import SubscriptionGate
from tests.conftest import STRONG_PASSWORD


async def count_subscriptions(session_factory, user_id=None) -> int:
    async with session_factory() as db:
        query = select(func.count()).select_from(Subscription)
        if user_id is not None:
            query = query.where(Subscription.user_id == user_id)
        return (await db.execute(query)).scalar_one()


@pytest.fixture
async def repo(session_factory):
    async with session_factory() as db:
        yield SubscriptionRepository(db)


@pytest.fixture
def gate(store, repo, clock):
    return SubscriptionGate(store, repo, trial_days=7, fail_open=True, clock=clock)


@pytest.mark.asyncio
async def test_signup_creates_trial_without_session(gate, store, repo, clock, session_factory):
    """Ann signs up: one Active trial ending in 7 days, no active session."""
    identity = await gate.register_and_provision("a@x.com", STRONG_PASSWORD, "Ann")

    assert store.get_current_session() is None
    subscription = await repo.find_by_user_id(identity.id)
    assert subscription.subscription_type == "trial"
    assert subscription.subscription_status == SubscriptionStatus.ACTIVE
    assert subscription.display_name == "Ann"
    assert subscription.email == "a@x.com"
    assert subscription.start_date == clock.now
    assert subscription.end_date == clock.now + timedelta(days=7)
    assert await count_subscriptions(session_factory) == 1


@pytest.mark.asyncio
async def test_login_after_signup_does_not_duplicate(gate, store, session_factory):
    """Ann logs in after signing up: session established, still one row."""
    identity = await gate.register_and_provision("a@x.com", STRONG_PASSWORD, "Ann")

    session = await gate.authenticate("a@x.com", STRONG_PASSWORD)

    assert session.user.id == identity.id
    assert store.get_current_session() == session
    assert await count_subscriptions(session_factory, identity.id) == 1


@pytest.mark.asyncio
async def test_first_login_without_subscription_provisions_trial(gate, provider, repo, clock, session_factory):
    identity = await provider.sign_up("legacy@x.com", STRONG_PASSWORD)

    session = await gate.authenticate("legacy@x.com", STRONG_PASSWORD)

    assert session.user.id == identity.id
    subscription = await repo.find_by_user_id(identity.id)
    # No display_name in metadata falls back to "User"
    assert subscription.display_name == "User"
    assert subscription.end_date - subscription.start_date == timedelta(days=7)
    assert await count_subscriptions(session_factory) == 1


@pytest.mark.asyncio
async def test_expired_subscription_terminates_session(gate, store, provider, repo, clock):
    """User whose subscription ended yesterday cannot log in."""
    identity = await provider.sign_up("old@x.com", STRONG_PASSWORD)
    yesterday = clock.now - timedelta(days=1)
    await repo.create_trial(identity.id, identity.email, "Old", yesterday - timedelta(days=7), yesterday)

    with pytest.raises(ExpiredSubscription, match="subscription has expired, renewal required"):
        await gate.authenticate("old@x.com", STRONG_PASSWORD)

    # Checking again stays empty
    assert store.get_current_session() is None
    assert await provider.get_session() is None
    assert store.is_authenticated is False


@pytest.mark.asyncio
async def test_subscription_ending_exactly_now_is_not_expired(gate, provider, repo, clock, session_factory):
    identity = await provider.sign_up("edge@x.com", STRONG_PASSWORD)
    await repo.create_trial(identity.id, identity.email, "Edge", clock.now - timedelta(days=7), clock.now)

    session = await gate.authenticate("edge@x.com", STRONG_PASSWORD)

    assert session.user.id == identity.id
    assert await count_subscriptions(session_factory) == 1


@pytest.mark.asyncio
async def test_invalid_credentials_skip_subscription_logic(store, clock):
    subscriptions = AsyncMock()
    gate = SubscriptionGate(store, subscriptions, clock=clock)

    with pytest.raises(InvalidCredentials):
        await gate.authenticate("ghost@x.com", STRONG_PASSWORD)

    subscriptions.find_by_user_id.assert_not_called()
    subscriptions.create_trial.assert_not_called()


@pytest.mark.asyncio
async def test_signup_rejection_propagates(gate):
    await gate.register_and_provision("a@x.com", STRONG_PASSWORD, "Ann")

    with pytest.raises(SignupRejected, match="already registered"):
        await gate.register_and_provision("a@x.com", STRONG_PASSWORD, "Ann again")


@pytest.mark.asyncio
async def test_signup_provisioning_failure_raises_without_session(store, clock):
    subscriptions = AsyncMock()
    subscriptions.create_trial.side_effect = ProvisioningFailed()
    gate = SubscriptionGate(store, subscriptions, clock=clock)

    with pytest.raises(ProvisioningFailed):
        await gate.register_and_provision("a@x.com", STRONG_PASSWORD, "Ann")

    assert store.get_current_session() is None


@pytest.mark.asyncio
async def test_failed_signup_keeps_other_users_session(store, provider, clock):
    """Bob's sign-up fails to provision while Ann is signed in: Ann stays signed in."""
    await provider.sign_up("ann@x.com", STRONG_PASSWORD, {"display_name": "Ann"})
    ann = await store.sign_in("ann@x.com", STRONG_PASSWORD)
    subscriptions = AsyncMock()
    subscriptions.create_trial.side_effect = ProvisioningFailed()
    store.sign_out = AsyncMock(wraps=store.sign_out)
    gate = SubscriptionGate(store, subscriptions, clock=clock)

    with pytest.raises(ProvisioningFailed):
        await gate.register_and_provision("bob@x.com", STRONG_PASSWORD, "Bob")

    store.sign_out.assert_not_awaited()
    assert store.get_current_session() == ann
    assert await provider.get_session() == ann


@pytest.mark.asyncio
async def test_failed_signup_revokes_signup_session_only(store, clock):
    """A provider that issues a sign-up session gets exactly that session revoked."""
    bob = Identity(id="bob-id", email="bob@x.com", user_metadata={"display_name": "Bob"})
    signup_session = AuthSession(user=bob, access_token="bob-signup-token")
    store.provider.create_account = AsyncMock(return_value=(bob, signup_session))
    store.provider.revoke = AsyncMock()
    subscriptions = AsyncMock()
    subscriptions.create_trial.side_effect = ProvisioningFailed()
    gate = SubscriptionGate(store, subscriptions, clock=clock)

    with pytest.raises(ProvisioningFailed):
        await gate.register_and_provision("bob@x.com", STRONG_PASSWORD, "Bob")

    store.provider.revoke.assert_awaited_once_with(signup_session)
    assert subscriptions.create_trial.await_args.kwargs["access_token"] == "bob-signup-token"


@pytest.mark.asyncio
async def test_login_provisioning_failure_is_fail_open_by_default(store, provider, clock):
    await provider.sign_up("a@x.com", STRONG_PASSWORD)
    subscriptions = AsyncMock()
    subscriptions.find_by_user_id.return_value = None
    subscriptions.create_trial.side_effect = ProvisioningFailed()
    gate = SubscriptionGate(store, subscriptions, fail_open=True, clock=clock)

    session = await gate.authenticate("a@x.com", STRONG_PASSWORD)

    assert store.get_current_session() == session


@pytest.mark.asyncio
async def test_login_lookup_failure_fail_closed(store, provider, clock):
    await provider.sign_up("a@x.com", STRONG_PASSWORD)
    subscriptions = AsyncMock()
    subscriptions.find_by_user_id.side_effect = LookupFailed()
    gate = SubscriptionGate(store, subscriptions, fail_open=False, clock=clock)

    with pytest.raises(LookupFailed):
        await gate.authenticate("a@x.com", STRONG_PASSWORD)

    assert store.get_current_session() is None
    subscriptions.create_trial.assert_not_called()
