"""
Tests for SM-2 scheduling.
"""

import unittest
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from studyiq.common.error_handling import NotFoundError, ValidationError
from studyiq.domain.model import Difficulty, ReviewResult
from studyiq.scheduling import MIXED_SCHEDULE_ID, SpacedRepetitionScheduler, apply_review, new_card
from studyiq.scheduling.sm2 import aggregate_cards, is_completed, is_valid_quality, updated_ease_factor
from studyiq.tests.factories import NOW, USER_ID


class TestSM2(unittest.TestCase):

    def test_initial_states(self):
        self.assertEqual((new_card("s", "q", NOW).ease_factor, new_card("s", "q", NOW).interval), (2.5, 1))
        easy = new_card("s", "q", NOW, Difficulty.EASY)
        self.assertEqual((easy.ease_factor, easy.interval), (2.8, 2))
        self.assertEqual(easy.next_review_date, NOW + timedelta(days=2))
        hard = new_card("s", "q", NOW, Difficulty.HARD)
        self.assertEqual((hard.ease_factor, hard.interval, hard.repetitions), (2.2, 1, 0))

    def test_review_sequence(self):
        card = new_card("s", "q", NOW)

        apply_review(card, 5, NOW)
        self.assertEqual((card.repetitions, card.interval), (1, 1))
        self.assertAlmostEqual(card.ease_factor, 2.6)
        self.assertEqual(card.next_review_date, NOW + timedelta(days=1))
        self.assertEqual(card.last_review_date, NOW)
        self.assertEqual(card.quality, 5)

        apply_review(card, 5, NOW)
        self.assertEqual((card.repetitions, card.interval), (2, 6))
        self.assertAlmostEqual(card.ease_factor, 2.7)

        apply_review(card, 5, NOW)
        self.assertEqual((card.repetitions, card.interval), (3, 16))

        apply_review(card, 1, NOW)
        self.assertEqual((card.repetitions, card.interval), (0, 1))
        self.assertAlmostEqual(card.ease_factor, 2.26)

    def test_ease_factor_floor(self):
        self.assertAlmostEqual(updated_ease_factor(2.5, 0), 1.7)
        self.assertEqual(updated_ease_factor(1.4, 0), 1.3)
        self.assertAlmostEqual(updated_ease_factor(2.5, 4), 2.5)

        card = new_card("s", "q", NOW, Difficulty.HARD)
        for _ in range(5):
            apply_review(card, 0, NOW)
        self.assertEqual(card.ease_factor, 1.3)

    def test_quality_validation(self):
        self.assertTrue(is_valid_quality(0))
        self.assertTrue(is_valid_quality(5))
        self.assertFalse(is_valid_quality(6))
        self.assertFalse(is_valid_quality(-1))
        self.assertFalse(is_valid_quality(3.0))
        self.assertFalse(is_valid_quality(True))

    def test_completion_and_aggregates(self):
        learned = new_card("s", "q1", NOW)
        learned.interval = 30
        learning = new_card("s", "q2", NOW)
        learning.ease_factor = 2.0
        learning.next_review_date = NOW + timedelta(days=45)

        self.assertTrue(is_completed(learned))
        self.assertFalse(is_completed(learning))

        aggregates = aggregate_cards([learned, learning], NOW, active_window_days=30)
        self.assertEqual(aggregates.total_cards, 2)
        self.assertEqual(aggregates.active_cards, 1)
        self.assertEqual(aggregates.completed_cards, 1)
        self.assertEqual(aggregates.average_ease_factor, 2.25)

        self.assertEqual(aggregate_cards([], NOW, 7, empty_ease=2.5).average_ease_factor, 2.5)


@pytest.fixture
def scheduler(store, clock):
    return SpacedRepetitionScheduler(store, clock=clock)


@pytest.mark.asyncio
async def test_create_schedule(scheduler, store):
    schedule = await scheduler.create_schedule(USER_ID, "Cardiology", ["q1", "q2", "q1", "q3"])

    assert schedule.schedule_id.startswith("srs_")
    assert [card.question_id for card in schedule.cards] == ["q1", "q2", "q3"]
    assert schedule.total_cards == 3
    assert schedule.active_cards == 3
    assert schedule.average_ease_factor == 2.5

    stored = await store.schedules.get(schedule.schedule_id)
    assert stored.deck_name == "Cardiology"

    tasks = store.schedules.get_tasks()
    assert len(tasks) == 1
    assert tasks[0].task_id.startswith("task_")
    assert tasks[0].question_ids == ["q1", "q2", "q3"]
    assert tasks[0].due_date == NOW + timedelta(days=1)


@pytest.mark.asyncio
async def test_initial_task_covers_first_cards(scheduler, store):
    await scheduler.create_schedule(USER_ID, "Big deck", [f"q{i}" for i in range(15)])
    assert len(store.schedules.get_tasks()[0].question_ids) == 10


@pytest.mark.asyncio
async def test_create_schedule_validation(scheduler):
    with pytest.raises(ValidationError):
        await scheduler.create_schedule(USER_ID, "  ", ["q1"])
    with pytest.raises(ValidationError):
        await scheduler.create_schedule(USER_ID, "Deck", [])


@pytest.mark.asyncio
async def test_review_task_failure_does_not_fail_creation(scheduler, store):
    store.schedules.create_review_task = AsyncMock(side_effect=RuntimeError("queue down"))

    schedule = await scheduler.create_schedule(USER_ID, "Deck", ["q1"])

    assert await store.schedules.get(schedule.schedule_id) is not None


@pytest.mark.asyncio
async def test_update_after_review(scheduler, store):
    schedule = await scheduler.create_schedule(USER_ID, "Deck", ["q1", "q2"])

    updated = await scheduler.update_after_review(schedule.schedule_id, [
        ReviewResult(question_id="q1", quality=5),
        ReviewResult(question_id="unknown", quality=4),
    ])

    assert updated.card("q1").repetitions == 1
    assert updated.card("q1").ease_factor == pytest.approx(2.6)
    assert updated.average_ease_factor == 2.55

    stored = await store.schedules.get(schedule.schedule_id)
    assert stored.card("q1").repetitions == 1
    assert stored.card("q1").last_review_date == NOW
    assert stored.card("q2").repetitions == 0
    assert stored.average_ease_factor == 2.55


@pytest.mark.asyncio
async def test_update_validates_before_applying(scheduler, store):
    schedule = await scheduler.create_schedule(USER_ID, "Deck", ["q1", "q2"])

    with pytest.raises(ValidationError) as exc_info:
        await scheduler.update_after_review(schedule.schedule_id, [
            ReviewResult(question_id="q1", quality=5),
            ReviewResult(question_id="q2", quality=7),
        ])

    assert exc_info.value.details["question_ids"] == ["q2"]
    stored = await store.schedules.get(schedule.schedule_id)
    assert stored.card("q1").repetitions == 0


@pytest.mark.asyncio
async def test_update_missing_schedule(scheduler):
    with pytest.raises(NotFoundError):
        await scheduler.update_after_review("srs_missing", [ReviewResult(question_id="q1", quality=3)])


@pytest.mark.asyncio
async def test_review_session_nothing_due(scheduler):
    await scheduler.create_schedule(USER_ID, "Deck", ["q1"])
    assert await scheduler.generate_review_session(USER_ID) is None


@pytest.mark.asyncio
async def test_review_session_ordering_and_mixed(scheduler, clock):
    medium = await scheduler.create_schedule(USER_ID, "Medium", ["m1", "m2"])
    hard = await scheduler.create_schedule(USER_ID, "Hard", ["h1"], difficulty_hint=Difficulty.HARD)
    clock.advance(days=1)

    session = await scheduler.generate_review_session(USER_ID)

    assert session.session_id.startswith("review_")
    assert session.schedule_id == MIXED_SCHEDULE_ID
    assert [card.question_id for card in session.cards][0] == "h1"
    assert {card.schedule_id for card in session.cards} == {medium.schedule_id, hard.schedule_id}
    assert session.estimated_duration_minutes == 6

    limited = await scheduler.generate_review_session(USER_ID, max_cards=1, duration_minutes=1)
    assert [card.question_id for card in limited.cards] == ["h1"]
    assert limited.schedule_id == hard.schedule_id
    assert limited.estimated_duration_minutes == 1


@pytest.mark.asyncio
async def test_review_session_most_overdue_before_lower_ease(scheduler, clock):
    # easy card: ease 2.8, due NOW + 2d; hard card: ease 2.2, due NOW + 2.5d
    await scheduler.create_schedule(USER_ID, "Easy", ["e1"], difficulty_hint=Difficulty.EASY)
    clock.advance(hours=36)
    await scheduler.create_schedule(USER_ID, "Hard", ["h1"], difficulty_hint=Difficulty.HARD)
    clock.set(NOW + timedelta(days=3))

    session = await scheduler.generate_review_session(USER_ID)

    assert [card.question_id for card in session.cards] == ["e1", "h1"]
    assert session.cards[0].ease_factor > session.cards[1].ease_factor


@pytest.mark.asyncio
async def test_review_session_validation(scheduler):
    with pytest.raises(ValidationError):
        await scheduler.generate_review_session(USER_ID, max_cards=0)
    with pytest.raises(ValidationError):
        await scheduler.generate_review_session(USER_ID, duration_minutes=-5)


@pytest.mark.asyncio
async def test_progress_stats(scheduler, clock):
    empty = await scheduler.get_user_progress_stats(USER_ID)
    assert (empty.total_cards, empty.average_ease_factor, empty.next_review_date) == (0, 2.5, None)

    schedule = await scheduler.create_schedule(USER_ID, "Deck", ["q1", "q2", "q3"])
    stats = await scheduler.get_user_progress_stats(USER_ID)
    assert stats.total_cards == 3
    assert stats.active_cards == 3
    assert stats.completed_cards == 0
    assert stats.average_ease_factor == 2.5
    assert stats.next_review_date == NOW + timedelta(days=1)
    assert stats.streak_days == 0

    await scheduler.update_after_review(schedule.schedule_id, [ReviewResult(question_id="q1", quality=4)])
    assert (await scheduler.get_user_progress_stats(USER_ID)).streak_days == 1

    clock.advance(days=1)
    await scheduler.update_after_review(schedule.schedule_id, [ReviewResult(question_id="q2", quality=4)])
    assert (await scheduler.get_user_progress_stats(USER_ID)).streak_days == 2

    clock.advance(days=2)
    assert (await scheduler.get_user_progress_stats(USER_ID)).streak_days == 0
