"""SM-2 style scheduling algorithm shared by flashcards and question reviews.

I/O を一切持たない純粋関数として実装し、Firestore トランザクション内でも
テストでも同じ計算結果になることを保証する。
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from .errors import InvalidQuality

INITIAL_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3
MIN_INTERVAL_DAYS = 1
MAX_INTERVAL_DAYS = 365
LEECH_THRESHOLD = 8
FIRST_PASS_INTERVAL_DAYS = 1
SECOND_PASS_INTERVAL_DAYS = 6
PASSING_QUALITY = 3
LEARNED_QUALITY = 4
MIN_QUALITY = 0
MAX_QUALITY = 5


@dataclass(frozen=True)
class SrsState:
    """Learning state of one (user, item) pair before a review."""

    ease_factor: float = INITIAL_EASE_FACTOR
    interval: int = 0
    repetitions: int = 0
    fail_streak: int = 0


@dataclass(frozen=True)
class ReviewOutcome:
    ease_factor: float
    interval: int
    repetitions: int
    fail_streak: int
    is_leech: bool
    is_learning: bool
    quality: int
    reviewed_at: datetime
    next_review_at: datetime

    @property
    def passed(self) -> bool:
        return self.quality >= PASSING_QUALITY

    def as_state(self) -> SrsState:
        return SrsState(
            ease_factor=self.ease_factor,
            interval=self.interval,
            repetitions=self.repetitions,
            fail_streak=self.fail_streak,
        )


def validate_quality(quality: object) -> int:
    """Return the quality as int or raise :class:`InvalidQuality`.

    bool は int のサブクラスだが評価値としては受け付けない。
    """

    if isinstance(quality, bool) or not isinstance(quality, int):
        raise InvalidQuality(quality)
    if quality < MIN_QUALITY or quality > MAX_QUALITY:
        raise InvalidQuality(quality)
    return quality


def round_half_up(value: float) -> int:
    """Round positive values half away from zero (2.5 -> 3, not banker's 2)."""

    return int(math.floor(value + 0.5))


def next_ease_factor(ease_factor: float, quality: int) -> float:
    penalty = MAX_QUALITY - quality
    updated = ease_factor + (0.1 - penalty * (0.08 + penalty * 0.02))
    return max(MIN_EASE_FACTOR, updated)


def clamp_interval(interval: int, max_interval_days: int = MAX_INTERVAL_DAYS) -> int:
    return max(MIN_INTERVAL_DAYS, min(int(interval), int(max_interval_days)))


def apply_review(
    state: SrsState,
    quality: int,
    *,
    now: datetime | None = None,
    max_interval_days: int = MAX_INTERVAL_DAYS,
    leech_threshold: int = LEECH_THRESHOLD,
) -> ReviewOutcome:
    """Advance ``state`` by one review of the given quality (0-5).

    - quality < 3: 失敗。repetitions/interval をリセットし failStreak を加算する。
    - quality >= 3: 成功。1 回目は 1 日、2 回目は 6 日、それ以降は
      直前の interval に現在の easeFactor を掛ける。easeFactor は成功時のみ更新。
    - interval は常に [1, max_interval_days] に収める。
    """

    quality = validate_quality(quality)
    reviewed_at = now or datetime.now(UTC)

    ease_factor = max(MIN_EASE_FACTOR, float(state.ease_factor or INITIAL_EASE_FACTOR))
    interval = int(state.interval or 0)
    repetitions = int(state.repetitions or 0)
    fail_streak = int(state.fail_streak or 0)

    if quality < PASSING_QUALITY:
        repetitions = 0
        interval = MIN_INTERVAL_DAYS
        fail_streak += 1
        is_leech = fail_streak >= leech_threshold
    else:
        repetitions += 1
        fail_streak = 0
        is_leech = False
        if repetitions == 1:
            interval = FIRST_PASS_INTERVAL_DAYS
        elif repetitions == 2:
            interval = SECOND_PASS_INTERVAL_DAYS
        else:
            interval = round_half_up(interval * ease_factor)
        ease_factor = next_ease_factor(ease_factor, quality)

    interval = clamp_interval(interval, max_interval_days)

    return ReviewOutcome(
        ease_factor=ease_factor,
        interval=interval,
        repetitions=repetitions,
        fail_streak=fail_streak,
        is_leech=is_leech,
        is_learning=quality < LEARNED_QUALITY,
        quality=quality,
        reviewed_at=reviewed_at,
        next_review_at=reviewed_at + timedelta(days=interval),
    )


__all__ = [
    "INITIAL_EASE_FACTOR",
    "MIN_EASE_FACTOR",
    "MAX_INTERVAL_DAYS",
    "LEECH_THRESHOLD",
    "SrsState",
    "ReviewOutcome",
    "apply_review",
    "validate_quality",
    "round_half_up",
    "next_ease_factor",
    "clamp_interval",
]
