"""Usage metering domain models."""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel


class UsageRecord(BaseModel):
    """Per-user, per-day usage counters."""

    user_id: UUID
    window_date: date
    query_count: int = 0
    tokens_used: int = 0
    cost_usd: float = 0.0


class UsageStatus(BaseModel):
    """Allowance check result returned to clients."""

    allowed: bool
    query_count: int
    daily_limit: int
    tokens_used: int = 0
    cost_usd: float = 0.0
    total_cost_usd: float = 0.0
    reset_time: datetime
