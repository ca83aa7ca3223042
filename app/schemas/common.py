from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class HealthRead(BaseModel):
    status: str
    database: str
    redis: str
    checked_at: datetime
    detail: Optional[str] = None
