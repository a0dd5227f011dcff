"""Daily usage metering: query allowance, token and cost accounting."""

import logging
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from backend.app.db.repositories import UsageRepository
from backend.app.models.usage import UsageStatus

logger = logging.getLogger(__name__)


def usage_timezone(offset_hours: float) -> timezone:
    """Fixed-offset zone the daily window is aligned to."""
    return timezone(timedelta(hours=offset_hours))


def window_date(now: datetime, offset_hours: float = 8) -> date:
    """Calendar date of ``now`` in the usage timezone."""
    return now.astimezone(usage_timezone(offset_hours)).date()


def reset_time(now: datetime, offset_hours: float = 8) -> datetime:
    """Next midnight of the usage timezone, expressed in UTC."""
    tz = usage_timezone(offset_hours)
    next_day = window_date(now, offset_hours) + timedelta(days=1)
    return datetime.combine(next_day, time.min, tzinfo=tz).astimezone(timezone.utc)


def compute_cost(
    input_tokens: int,
    output_tokens: int,
    *,
    input_cost_per_million: float = 0.15,
    output_cost_per_million: float = 0.60,
) -> float:
    """USD cost of one generation call."""
    return (
        input_tokens * input_cost_per_million + output_tokens * output_cost_per_million
    ) / 1_000_000


class UsageMeter:
    """Per-user daily query allowance with a global daily cost ceiling.

    The check and the increment are separate calls, so concurrent requests
    from one user can overshoot the limit by the number of in-flight chat
    turns. Only the increment itself is atomic.
    """

    def __init__(
        self,
        usage: UsageRepository,
        *,
        daily_query_limit: int = 50,
        daily_cost_limit: float | None = 5.0,
        input_cost_per_million: float = 0.15,
        output_cost_per_million: float = 0.60,
        tz_offset_hours: float = 8,
    ) -> None:
        self._usage = usage
        self._daily_query_limit = daily_query_limit
        self._daily_cost_limit = daily_cost_limit
        self._input_cost = input_cost_per_million
        self._output_cost = output_cost_per_million
        self._tz_offset = tz_offset_hours

    def _now(self, now: datetime | None) -> datetime:
        return now or datetime.now(timezone.utc)

    async def check_allowed(self, user_id: UUID, now: datetime | None = None) -> UsageStatus:
        """Report whether the user may run another query in the current window."""
        current = self._now(now)
        day = window_date(current, self._tz_offset)

        record = await self._usage.get_usage(user_id, day)
        query_count = record.query_count if record else 0
        total_cost = await self._usage.total_cost(day)

        allowed = query_count < self._daily_query_limit
        if self._daily_cost_limit is not None and total_cost >= self._daily_cost_limit:
            logger.warning(
                f"Global daily cost limit reached: ${total_cost:.4f} >= ${self._daily_cost_limit:.2f}"
            )
            allowed = False

        return UsageStatus(
            allowed=allowed,
            query_count=query_count,
            daily_limit=self._daily_query_limit,
            tokens_used=record.tokens_used if record else 0,
            cost_usd=record.cost_usd if record else 0.0,
            total_cost_usd=total_cost,
            reset_time=reset_time(current, self._tz_offset),
        )

    async def record_usage(
        self,
        user_id: UUID,
        input_tokens: int,
        output_tokens: int,
        now: datetime | None = None,
    ) -> UsageStatus:
        """Add one query and its token cost to the user's current window."""
        current = self._now(now)
        day = window_date(current, self._tz_offset)
        cost = compute_cost(
            input_tokens,
            output_tokens,
            input_cost_per_million=self._input_cost,
            output_cost_per_million=self._output_cost,
        )

        record = await self._usage.increment_usage(
            user_id, day, tokens=input_tokens + output_tokens, cost=cost
        )
        total_cost = await self._usage.total_cost(day)

        allowed = record.query_count < self._daily_query_limit and (
            self._daily_cost_limit is None or total_cost < self._daily_cost_limit
        )
        return UsageStatus(
            allowed=allowed,
            query_count=record.query_count,
            daily_limit=self._daily_query_limit,
            tokens_used=record.tokens_used,
            cost_usd=record.cost_usd,
            total_cost_usd=total_cost,
            reset_time=reset_time(current, self._tz_offset),
        )
