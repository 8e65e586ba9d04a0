from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator


def to_utc_aware(value: Any) -> Optional[datetime]:
    """
    Normalize a datetime (or ISO string) to timezone-aware UTC.
    Naive values are assumed to already be UTC.
    """
    if value is None:
        return None

    if isinstance(value, str):
        # PostgREST may return a trailing Z
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))

    if not isinstance(value, datetime):
        raise TypeError(f"Expected datetime, got {type(value).__name__}")

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SubscriptionStatus(str, Enum):
    """Subscription status states"""
    ACTIVE = "Active"
    SUSPENDED = "Suspended"
    CANCELLED = "Cancelled"


class SubscriptionSnapshot(BaseModel):
    """Read-only view of a subscriptions row"""
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    email: str = ""
    display_name: str = ""
    subscription_type: str
    subscription_status: SubscriptionStatus
    start_date: datetime
    end_date: datetime

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _normalize_dates(cls, value):
        return to_utc_aware(value)

    def is_expired(self, now: datetime) -> bool:
        """Expired means the end date is strictly in the past."""
        return now > self.end_date


class SubscriptionStatusView(BaseModel):
    """Remaining-time projection shown on the profile page"""
    subscription: Optional[SubscriptionSnapshot] = None
    days_remaining: Optional[int] = None
    hours_remaining: Optional[int] = None
    expired: bool = False
    expiring_soon: bool = False
    computed_at: datetime

    @property
    def display(self) -> str:
        if self.days_remaining is None or self.hours_remaining is None:
            return "Loading..."
        return f"{self.days_remaining} days and {self.hours_remaining} hours remaining"
