"""
Spaced Repetition Scheduler

Creates SM-2 review schedules for decks of questions, updates them after review
sessions, assembles due cards into review sessions and reports progress.
"""

from typing import Iterable, List, Optional

from studyiq.common.clock import Clock, SystemClock, consecutive_active_days
from studyiq.common.config import SpacedRepetitionConfig
from studyiq.common.error_handling import NotFoundError, ValidationError, log_error
from studyiq.common.logger import app_logger, log_execution_time
from studyiq.domain.model import (
    Difficulty,
    ProgressStats,
    ReviewResult,
    ReviewSession,
    ReviewTask,
    SpacedRepetitionSchedule,
    make_prefixed_id,
)
from studyiq.domain.repository import Store

from . import sm2

logger = app_logger.getChild("scheduling.scheduler")

MIXED_SCHEDULE_ID = "mixed"


class SpacedRepetitionScheduler:
    """
    SM-2 scheduler over the schedule store.

    Card state only changes through ``update_after_review``; every other
    operation reads.
    """

    def __init__(
        self,
        store: Store,
        config: Optional[SpacedRepetitionConfig] = None,
        clock: Optional[Clock] = None
    ):
        self._store = store
        self._config = config or SpacedRepetitionConfig()
        self._clock = clock or SystemClock()

    async def create_schedule(
        self,
        user_id: str,
        deck_name: str,
        question_ids: Iterable[str],
        difficulty_hint: Optional[Difficulty] = None
    ) -> SpacedRepetitionSchedule:
        """
        Create a schedule with one fresh card per question.

        Args:
            user_id: Owner of the schedule
            deck_name: Display name of the deck
            question_ids: Questions to schedule; duplicates are collapsed
            difficulty_hint: Sets the initial ease and interval of every card

        Returns:
            The persisted schedule

        Raises:
            ValidationError: If the deck name or the question list is empty
        """
        if not deck_name or not deck_name.strip():
            raise ValidationError("Deck name must not be empty", details={"field": "deck_name"})
        unique_ids = list(dict.fromkeys(question_ids))
        if not unique_ids:
            raise ValidationError("A schedule needs at least one question", details={"field": "question_ids"})

        now = self._clock.now()
        schedule_id = make_prefixed_id("srs", now)
        cards = [sm2.new_card(schedule_id, question_id, now, difficulty_hint) for question_id in unique_ids]
        aggregates = sm2.aggregate_cards(cards, now, self._config.active_window_days)

        schedule = SpacedRepetitionSchedule(
            schedule_id=schedule_id,
            user_id=user_id,
            deck_name=deck_name,
            cards=cards,
            total_cards=aggregates.total_cards,
            active_cards=aggregates.active_cards,
            completed_cards=aggregates.completed_cards,
            average_ease_factor=aggregates.average_ease_factor,
            created_at=now,
            updated_at=now,
        )
        await self._store.schedules.create(schedule)

        initial_cards = cards[:self._config.initial_task_cards]
        try:
            await self._store.schedules.create_review_task(ReviewTask(
                task_id=make_prefixed_id("task", now),
                user_id=user_id,
                schedule_id=schedule_id,
                question_ids=[card.question_id for card in initial_cards],
                due_date=min(card.next_review_date for card in initial_cards),
                created_at=now,
            ))
        except Exception as e:
            log_error(e, context={"schedule_id": schedule_id, "operation": "create_review_task"}, log=logger)

        logger.info(f"Created schedule {schedule_id} '{deck_name}' with {len(cards)} cards for user {user_id}")
        return schedule

    @log_execution_time(logger)
    async def update_after_review(
        self,
        schedule_id: str,
        results: List[ReviewResult]
    ) -> SpacedRepetitionSchedule:
        """
        Apply a batch of review grades to a schedule.

        Every grade is validated before any card changes. Unknown question
        ids are skipped.

        Args:
            schedule_id: Schedule that was reviewed
            results: One grade per reviewed question

        Returns:
            The updated schedule

        Raises:
            NotFoundError: If the schedule does not exist
            ValidationError: If any quality is not an integer from 0 to 5
        """
        schedule = await self._store.schedules.get(schedule_id)
        if schedule is None:
            raise NotFoundError("SpacedRepetitionSchedule", schedule_id)

        invalid = [result.question_id for result in results if not sm2.is_valid_quality(result.quality)]
        if invalid:
            raise ValidationError(
                "Review quality must be an integer between 0 and 5",
                details={"question_ids": invalid}
            )

        now = self._clock.now()
        changed = {}
        for result in results:
            card = schedule.card(result.question_id)
            if card is None:
                logger.warning(f"Question {result.question_id} is not part of schedule {schedule_id}; skipped")
                continue
            sm2.apply_review(card, result.quality, now)
            changed[card.question_id] = card

        aggregates = sm2.aggregate_cards(schedule.cards, now, self._config.active_window_days)
        schedule.total_cards = aggregates.total_cards
        schedule.active_cards = aggregates.active_cards
        schedule.completed_cards = aggregates.completed_cards
        schedule.average_ease_factor = aggregates.average_ease_factor
        schedule.updated_at = now

        await self._store.schedules.update(schedule, list(changed.values()))
        logger.info(f"Applied {len(changed)} reviews to schedule {schedule_id}")
        return schedule

    async def generate_review_session(
        self,
        user_id: str,
        max_cards: Optional[int] = None,
        duration_minutes: Optional[int] = None
    ) -> Optional[ReviewSession]:
        """
        Collect the user's due cards into a review session.

        Cards are ordered most overdue first, then by lowest ease factor.

        Args:
            user_id: The learner
            max_cards: Maximum number of cards (defaults to config)
            duration_minutes: Upper bound of the estimated duration (defaults to config)

        Returns:
            The review session, or None when nothing is due

        Raises:
            ValidationError: If max_cards or duration_minutes is not positive
        """
        max_cards = self._config.default_max_cards if max_cards is None else max_cards
        duration_minutes = self._config.default_duration_minutes if duration_minutes is None else duration_minutes
        if max_cards <= 0 or duration_minutes <= 0:
            raise ValidationError(
                "max_cards and duration_minutes must be positive",
                details={"max_cards": max_cards, "duration_minutes": duration_minutes}
            )

        now = self._clock.now()
        due = await self._store.schedules.list_due_cards(user_id, now)
        if not due:
            return None

        due.sort(key=lambda card: (card.next_review_date, card.ease_factor))
        cards = due[:max_cards]
        schedule_ids = {card.schedule_id for card in cards}

        return ReviewSession(
            session_id=make_prefixed_id("review", now),
            user_id=user_id,
            schedule_id=schedule_ids.pop() if len(schedule_ids) == 1 else MIXED_SCHEDULE_ID,
            cards=cards,
            estimated_duration_minutes=min(duration_minutes, len(cards) * self._config.minutes_per_card),
            created_at=now,
        )

    async def get_user_progress_stats(self, user_id: str) -> ProgressStats:
        """
        Summarize every card of every schedule of a user.

        Returns:
            ProgressStats; the average ease is 2.5 for a user without cards
        """
        now = self._clock.now()
        schedules = await self._store.schedules.list_for_user(user_id)
        cards = [card for schedule in schedules for card in schedule.cards]

        aggregates = sm2.aggregate_cards(
            cards, now, self._config.stats_active_window_days, empty_ease=sm2.COMPLETED_EASE_FACTOR
        )
        upcoming = [card.next_review_date for card in cards if card.next_review_date > now]

        return ProgressStats(
            total_cards=aggregates.total_cards,
            active_cards=aggregates.active_cards,
            completed_cards=aggregates.completed_cards,
            average_ease_factor=aggregates.average_ease_factor,
            next_review_date=min(upcoming) if upcoming else None,
            streak_days=consecutive_active_days(
                (card.last_review_date for card in cards if card.last_review_date is not None), now
            ),
        )
