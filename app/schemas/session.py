from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from app.models import DeviceType


class SessionRead(BaseModel):
    session_id: str
    device_type: DeviceType
    user_agent: Optional[str]
    ip_address: Optional[str]
    created_at: datetime
    last_used_at: Optional[datetime]
    expires_at: datetime
    expires_in: int
    current: bool = False


class SessionLimitRead(BaseModel):
    has_reached_limit: bool
    active_count: int
    max_sessions: int


class SessionStatsRead(BaseModel):
    total_sessions: int
    active_sessions: int
    expired_sessions: int
    device_types: dict[str, int]
