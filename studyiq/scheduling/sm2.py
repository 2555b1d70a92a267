"""
SM-2 Algorithm

Pure functions implementing the SuperMemo-2 review scheduling rules on
SpacedRepetitionCard state. The scheduler service owns persistence; nothing in
this module touches the store.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional

from studyiq.domain.model import Difficulty, SpacedRepetitionCard

MIN_EASE_FACTOR = 1.3
PASSING_QUALITY = 3
MAX_QUALITY = 5

# Ease factor and interval at which a card counts as learned
COMPLETED_EASE_FACTOR = 2.5
COMPLETED_INTERVAL_DAYS = 30


@dataclass(frozen=True)
class InitialCardState:
    ease_factor: float
    interval: int


INITIAL_STATES: Dict[Difficulty, InitialCardState] = {
    Difficulty.EASY: InitialCardState(ease_factor=2.8, interval=2),
    Difficulty.MEDIUM: InitialCardState(ease_factor=2.5, interval=1),
    Difficulty.HARD: InitialCardState(ease_factor=2.2, interval=1),
}


def new_card(schedule_id: str, question_id: str, now: datetime,
             difficulty_hint: Optional[Difficulty] = None) -> SpacedRepetitionCard:
    """
    Create a card in its initial state.

    Args:
        schedule_id: Owning schedule
        question_id: Question the card reviews
        now: Creation time
        difficulty_hint: Optional hint; medium when omitted

    Returns:
        A card with zero repetitions, due after its initial interval
    """
    state = INITIAL_STATES[difficulty_hint or Difficulty.MEDIUM]
    return SpacedRepetitionCard(
        schedule_id=schedule_id,
        question_id=question_id,
        ease_factor=state.ease_factor,
        interval=state.interval,
        repetitions=0,
        next_review_date=now + timedelta(days=state.interval),
    )


def updated_ease_factor(ease_factor: float, quality: int) -> float:
    """
    EF' = max(1.3, EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02)))

    There is no upper bound.
    """
    miss = MAX_QUALITY - quality
    return max(MIN_EASE_FACTOR, ease_factor + (0.1 - miss * (0.08 + miss * 0.02)))


def apply_review(card: SpacedRepetitionCard, quality: int, now: datetime) -> SpacedRepetitionCard:
    """
    Apply one graded review to ``card`` in place.

    A passing grade (3 or more) grows the interval: 1 day after the first
    success, 6 after the second, then the previous interval times the ease
    factor. A failing grade resets repetitions and the interval to 1 day.

    Args:
        card: Card to update
        quality: Grade between 0 and 5
        now: Review time

    Returns:
        The same card, updated
    """
    if quality >= PASSING_QUALITY:
        if card.repetitions == 0:
            card.interval = 1
        elif card.repetitions == 1:
            card.interval = 6
        else:
            card.interval = max(1, round(card.interval * card.ease_factor))
        card.repetitions += 1
    else:
        card.repetitions = 0
        card.interval = 1

    card.ease_factor = updated_ease_factor(card.ease_factor, quality)
    card.next_review_date = now + timedelta(days=card.interval)
    card.last_review_date = now
    card.quality = quality
    return card


def is_completed(card: SpacedRepetitionCard) -> bool:
    return card.ease_factor >= COMPLETED_EASE_FACTOR and card.interval >= COMPLETED_INTERVAL_DAYS


def is_valid_quality(quality) -> bool:
    return isinstance(quality, int) and not isinstance(quality, bool) and 0 <= quality <= MAX_QUALITY


@dataclass
class CardAggregates:
    total_cards: int
    active_cards: int
    completed_cards: int
    average_ease_factor: float


def aggregate_cards(cards: Iterable[SpacedRepetitionCard], now: datetime,
                    active_window_days: int, empty_ease: float = 0.0) -> CardAggregates:
    """
    Summarize a set of cards.

    Args:
        cards: Cards to summarize
        now: Reference time
        active_window_days: A card is active when due within this many days
        empty_ease: Average ease reported when there are no cards

    Returns:
        CardAggregates with the average ease rounded to 2 decimals
    """
    cards = list(cards)
    horizon = now + timedelta(days=active_window_days)
    if not cards:
        return CardAggregates(0, 0, 0, empty_ease)
    return CardAggregates(
        total_cards=len(cards),
        active_cards=sum(1 for card in cards if card.next_review_date <= horizon),
        completed_cards=sum(1 for card in cards if is_completed(card)),
        average_ease_factor=round(sum(card.ease_factor for card in cards) / len(cards), 2),
    )
