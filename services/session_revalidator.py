"""
Session Revalidator - terminates sessions whose subscription expires mid-session.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from config.settings import settings
from services.errors import LookupFailed
from services.session_store import SessionStore

logger = logging.getLogger(__name__)


class SessionRevalidator:
    def __init__(
        self,
        store: SessionStore,
        repository_factory,
        interval: Optional[float] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.repository_factory = repository_factory
        self.interval = interval if interval is not None else settings.session_revalidate_seconds
        self.clock = clock
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_once(self) -> bool:
        """Returns True when the current session was terminated."""
        session = self.store.get_current_session()
        if session is None:
            return False

        try:
            async with self.repository_factory() as repo:
                subscription = await repo.find_by_user_id(session.user.id)
        except LookupFailed as e:
            logger.warning(f"Revalidation lookup failed for user {session.user.id}: {e.message}")
            return False

        if subscription is None or not subscription.is_expired(self.clock()):
            return False

        # The session may have changed while the lookup was in flight
        if self.store.get_current_session() is not session:
            return False

        logger.info(f"Subscription for user {session.user.id} expired mid-session; signing out")
        await self.store.sign_out()
        return True

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.check_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Session revalidation pass failed")

    def start(self) -> None:
        if self.interval <= 0:
            logger.info("Session revalidation disabled")
            return
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
