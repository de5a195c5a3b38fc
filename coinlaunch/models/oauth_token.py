"""
OAuth2 credential for the bot's own posting account
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional


@dataclass
class OAuthToken:
    """Access/refresh token pair shared by every process instance"""
    access_token: str
    refresh_token: str
    created_at: datetime
    updated_at: datetime
    service: str = "twitter"
    token_type: str = "Bearer"
    expires_in: Optional[int] = None  # Seconds, counted from created_at
    scope: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if not self.expires_in:
            return False
        now = now or datetime.now()
        return now > self.created_at + timedelta(seconds=self.expires_in)

    def __repr__(self) -> str:
        return f"OAuthToken(service={self.service!r}, scope={self.scope!r}, expires_in={self.expires_in!r})"
