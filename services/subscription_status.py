"""
Subscription Status Projector - live remaining-time view for the profile page
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Optional, Tuple

from config.settings import settings, EXPIRING_SOON_DAYS
from models.subscription import SubscriptionSnapshot, SubscriptionStatusView
from services.events import SubscriptionChangeFeed

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)
ONE_HOUR = timedelta(hours=1)


def compute_remaining(end_date: datetime, now: datetime) -> Tuple[int, int]:
    """
    Whole days and leftover whole hours between now and end_date.
    Clamped to (0, 0) once the end date has passed.
    """
    remaining = end_date - now
    if remaining <= timedelta(0):
        return 0, 0
    days = remaining // ONE_DAY
    hours = (remaining % ONE_DAY) // ONE_HOUR
    return days, hours


class SubscriptionStatusProjector:
    def __init__(
        self,
        repository_factory,
        changes: Optional[SubscriptionChangeFeed] = None,
        refresh_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Args:
            repository_factory: Callable returning an async context manager
                that yields a subscription repository
            changes: Feed that wakes watchers when a subscription is written
            refresh_seconds: Recompute interval; defaults to STATUS_REFRESH_SECONDS
        """
        self.repository_factory = repository_factory
        self.changes = changes
        self.refresh_seconds = refresh_seconds if refresh_seconds is not None else settings.status_refresh_seconds
        self.clock = clock

    def project(self, subscription: Optional[SubscriptionSnapshot], now: datetime) -> SubscriptionStatusView:
        if subscription is None:
            return SubscriptionStatusView(computed_at=now)

        days, hours = compute_remaining(subscription.end_date, now)
        expired = subscription.is_expired(now)
        return SubscriptionStatusView(
            subscription=subscription,
            days_remaining=days,
            hours_remaining=hours,
            expired=expired,
            # Under a whole day left is not flagged; neither is an expired one
            expiring_soon=not expired and 0 < days <= EXPIRING_SOON_DAYS,
            computed_at=now,
        )

    async def snapshot(self, user_id: str) -> SubscriptionStatusView:
        async with self.repository_factory() as repo:
            subscription = await repo.find_by_user_id(user_id)
        return self.project(subscription, self.clock())

    async def watch(self, user_id: str, interval: Optional[float] = None) -> AsyncIterator[SubscriptionStatusView]:
        """
        Yield a fresh view now, then on every refresh interval and whenever
        the user's subscription changes. Runs until the consumer stops.
        """
        interval = interval if interval is not None else self.refresh_seconds
        changed = asyncio.Event()

        def _on_change(changed_user_id: str) -> None:
            if changed_user_id == user_id:
                changed.set()

        handle = self.changes.subscribe(_on_change) if self.changes is not None else None
        try:
            while True:
                yield await self.snapshot(user_id)
                try:
                    await asyncio.wait_for(changed.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass
                changed.clear()
        finally:
            if handle is not None:
                handle.unsubscribe()
