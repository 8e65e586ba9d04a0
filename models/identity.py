from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from config.settings import DEFAULT_DISPLAY_NAME


class Identity(BaseModel):
    id: str
    email: str = ""
    user_metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return (self.user_metadata or {}).get("display_name") or DEFAULT_DISPLAY_NAME


class AuthSession(BaseModel):
    """An identity paired with its token validity window"""
    user: Identity
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
