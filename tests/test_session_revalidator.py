"""
Tests for mid-session subscription expiry checks
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta

import pytest

from crud.subscription import SubscriptionRepository
from services.errors import LookupFailed
from services.session_revalidator import SessionRevalidator
from services.subscription_gate import SubscriptionGate
from tests.conftest import STRONG_PASSWORD


def sql_factory(session_factory):
    @asynccontextmanager
    async def factory():
        async with session_factory() as db:
            yield SubscriptionRepository(db)
    return factory


async def signed_in_user(store, session_factory, clock):
    async with session_factory() as db:
        gate = SubscriptionGate(store, SubscriptionRepository(db), trial_days=7, clock=clock)
        await gate.register_and_provision("a@x.com", STRONG_PASSWORD, "Ann")
        return await gate.authenticate("a@x.com", STRONG_PASSWORD)


@pytest.mark.asyncio
async def test_check_once_keeps_active_session(store, session_factory, clock):
    session = await signed_in_user(store, session_factory, clock)
    revalidator = SessionRevalidator(store, sql_factory(session_factory), interval=0, clock=clock)

    assert await revalidator.check_once() is False
    assert store.get_current_session() == session


@pytest.mark.asyncio
async def test_check_once_signs_out_after_expiry(store, session_factory, clock):
    await signed_in_user(store, session_factory, clock)
    clock.now = clock.now + timedelta(days=7, seconds=1)
    revalidator = SessionRevalidator(store, sql_factory(session_factory), interval=0, clock=clock)

    assert await revalidator.check_once() is True
    assert store.get_current_session() is None


@pytest.mark.asyncio
async def test_check_once_without_session(store, session_factory, clock):
    revalidator = SessionRevalidator(store, sql_factory(session_factory), interval=0, clock=clock)
    assert await revalidator.check_once() is False


@pytest.mark.asyncio
async def test_lookup_failure_does_not_terminate(store, session_factory, clock):
    await signed_in_user(store, session_factory, clock)

    class BrokenRepository:
        async def find_by_user_id(self, user_id):
            raise LookupFailed()

    @asynccontextmanager
    async def broken_factory():
        yield BrokenRepository()

    revalidator = SessionRevalidator(store, broken_factory, interval=0, clock=clock)
    assert await revalidator.check_once() is False
    assert store.get_current_session() is not None


@pytest.mark.asyncio
async def test_background_task_runs_and_stops(store, session_factory, clock):
    await signed_in_user(store, session_factory, clock)
    clock.now = clock.now + timedelta(days=8)
    revalidator = SessionRevalidator(store, sql_factory(session_factory), interval=0.01, clock=clock)

    revalidator.start()
    assert revalidator.running
    for _ in range(100):
        if store.get_current_session() is None:
            break
        await asyncio.sleep(0.01)
    await revalidator.stop()

    assert store.get_current_session() is None
    assert revalidator.running is False


@pytest.mark.asyncio
async def test_zero_interval_disables_background_task(store, session_factory):
    revalidator = SessionRevalidator(store, sql_factory(session_factory), interval=0)
    revalidator.start()
    assert revalidator.running is False
