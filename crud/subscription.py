"""
SubscriptionRepository for database operations on Subscription model
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import TRIAL_SUBSCRIPTION_TYPE
from database_models import Subscription
from models.subscription import SubscriptionSnapshot, SubscriptionStatus
from services.errors import LookupFailed, ProvisioningFailed
from services.events import SubscriptionChangeFeed

logger = logging.getLogger(__name__)


class SubscriptionRepository:
    """
    Repository class for Subscription database operations.

    Reads return SubscriptionSnapshot models, never ORM rows. Database
    errors are logged and converted to LookupFailed / ProvisioningFailed.
    """

    def __init__(self, db: AsyncSession, changes: Optional[SubscriptionChangeFeed] = None):
        """
        Args:
            db: AsyncSession instance for database operations
            changes: Optional feed notified after a subscription row is written
        """
        self.db = db
        self.changes = changes

    async def _get_row(self, user_id: str) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def find_by_user_id(self, user_id: str) -> Optional[SubscriptionSnapshot]:
        """
        Look up the subscription for a user.

        Returns:
            SubscriptionSnapshot if found, None when the user has no row

        Raises:
            LookupFailed: On database errors (distinct from not-found)
        """
        try:
            row = await self._get_row(user_id)
        except SQLAlchemyError as e:
            logger.error(f"Subscription lookup failed for user {user_id}: {e}")
            raise LookupFailed() from e
        return SubscriptionSnapshot.model_validate(row) if row else None

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
        Create a trial subscription unless the user already has one.
        access_token is accepted for interface parity with the PostgREST
        repository; database access is not user-scoped.

        A concurrent insert for the same user hits the unique constraint; the
        existing row is returned instead of a duplicate.

        Raises:
            ProvisioningFailed: On any other database error
        """
        row = Subscription(
            user_id=user_id,
            email=email or "",
            display_name=display_name,
            subscription_type=TRIAL_SUBSCRIPTION_TYPE,
            subscription_status=SubscriptionStatus.ACTIVE.value,
            start_date=start_date,
            end_date=end_date,
        )
        try:
            self.db.add(row)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(f"Subscription already exists for user {user_id}; keeping existing row")
            try:
                existing = await self._get_row(user_id)
            except SQLAlchemyError as e:
                logger.error(f"Re-reading subscription for user {user_id} failed: {e}")
                raise ProvisioningFailed() from e
            if existing is None:
                raise ProvisioningFailed()
            return SubscriptionSnapshot.model_validate(existing)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Trial provisioning failed for user {user_id}: {e}")
            raise ProvisioningFailed() from e

        snapshot = SubscriptionSnapshot.model_validate(row)
        logger.info(f"Trial subscription created for user {user_id} (ends {snapshot.end_date.isoformat()})")
        if self.changes is not None:
            self.changes.notify(user_id)
        return snapshot
