"""
Generation Rate Limiter

Limits how often a learner can generate adaptive quizzes: a daily cap counted
per UTC day and an optional cooldown after the latest generation. Counts come
from the session store, so the limit survives restarts.
"""

import asyncio
import contextlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import AsyncIterator, Dict, List, Optional

from studyiq.common.clock import Clock, SystemClock, start_of_utc_day
from studyiq.common.config import AdaptiveQuizConfig
from studyiq.common.error_handling import ErrorCode, RateLimitError
from studyiq.common.logger import app_logger
from studyiq.domain.repository import Store

logger = app_logger.getChild("adaptive.rate_limiter")

# Remaining generations at or below which a warning is logged
LOW_REMAINING_THRESHOLD = 2


@dataclass
class RateLimitDecision:
    """
    Outcome of a rate limit check.

    Attributes:
        allowed: Whether a generation may proceed now
        reason: Code of the limit that blocked the generation
        retry_after_seconds: Seconds until the blocking limit lifts
        sessions_today: Sessions generated since the start of the UTC day
        daily_limit: Daily cap in force (0 means unlimited)
        next_available_at: When the blocking limit lifts
        warnings: Messages about limits that are close to being reached
    """
    allowed: bool
    sessions_today: int
    daily_limit: int
    reason: Optional[ErrorCode] = None
    retry_after_seconds: Optional[float] = None
    next_available_at: Optional[datetime] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def remaining_today(self) -> Optional[int]:
        if not self.daily_limit:
            return None
        return max(0, self.daily_limit - self.sessions_today)


class GenerationRateLimiter:
    """
    Daily cap and cooldown on adaptive quiz generation.

    ``lease`` serializes the check-then-create sequence per user inside one
    process. Separate processes sharing a store can still overrun the cap.
    """

    def __init__(
        self,
        store: Store,
        config: Optional[AdaptiveQuizConfig] = None,
        clock: Optional[Clock] = None
    ):
        self._store = store
        self._config = config or AdaptiveQuizConfig()
        self._clock = clock or SystemClock()
        self._locks: Dict[str, asyncio.Lock] = {}
        # callers holding or waiting for each lock; the lock is dropped at zero
        self._lease_counts: Dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def lease(self, user_id: str) -> AsyncIterator[None]:
        """Hold the per-user generation lock for the duration of the block."""
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._lease_counts[user_id] = self._lease_counts.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lease_counts[user_id] -= 1
            if not self._lease_counts[user_id]:
                del self._lease_counts[user_id]
                del self._locks[user_id]

    async def check(self, user_id: str) -> RateLimitDecision:
        """
        Evaluate the daily cap and the cooldown for a user.

        Args:
            user_id: The learner

        Returns:
            RateLimitDecision describing whether a generation may start
        """
        now = self._clock.now()
        daily_limit = self._config.daily_limit
        sessions_today = await self._store.sessions.count_created_since(user_id, start_of_utc_day(now))

        if daily_limit and sessions_today >= daily_limit:
            next_available = start_of_utc_day(now) + timedelta(days=1)
            return RateLimitDecision(
                allowed=False,
                sessions_today=sessions_today,
                daily_limit=daily_limit,
                reason=ErrorCode.DAILY_LIMIT_EXCEEDED,
                retry_after_seconds=(next_available - now).total_seconds(),
                next_available_at=next_available,
            )

        if self._config.cooldown_minutes:
            latest = await self._store.sessions.list_for_user(user_id, limit=1)
            if latest:
                cooldown_ends = latest[0].created_at + timedelta(minutes=self._config.cooldown_minutes)
                if now < cooldown_ends:
                    return RateLimitDecision(
                        allowed=False,
                        sessions_today=sessions_today,
                        daily_limit=daily_limit,
                        reason=ErrorCode.COOLDOWN_ACTIVE,
                        retry_after_seconds=(cooldown_ends - now).total_seconds(),
                        next_available_at=cooldown_ends,
                    )

        decision = RateLimitDecision(allowed=True, sessions_today=sessions_today, daily_limit=daily_limit)
        remaining = decision.remaining_today
        if remaining is not None and remaining <= LOW_REMAINING_THRESHOLD:
            decision.warnings.append(f"{remaining} adaptive quiz generations left today")
        return decision

    async def enforce(self, user_id: str) -> RateLimitDecision:
        """
        Like ``check`` but raise when the generation is blocked.

        Raises:
            RateLimitError: If the daily cap or the cooldown blocks the user
        """
        decision = await self.check(user_id)
        if not decision.allowed:
            if decision.reason is ErrorCode.COOLDOWN_ACTIVE:
                message = f"Please wait {self._config.cooldown_minutes} minutes between adaptive quizzes"
            else:
                message = f"Daily limit of {decision.daily_limit} adaptive quizzes reached"
            raise RateLimitError(
                message,
                retry_after=decision.retry_after_seconds,
                code=decision.reason,
                details={"sessions_today": decision.sessions_today, "daily_limit": decision.daily_limit},
                context={"user_id": user_id}
            )

        for warning in decision.warnings:
            logger.warning(f"User {user_id}: {warning}")
        return decision
