"""Adaptive policy constants and curves for the study-progression engine.

Start level from a diagnostic score:

    score <  40  → "foundational"
    40 ≤ score < 75 → "standard"
    score >= 75 → "accelerated"

Plan depth scales inversely with the start level: foundational learners get
more, shorter days. Day test failures raise that day's pass requirement by a
fixed step (capped at the ceiling) and impose a cooldown that doubles with each
failed attempt, capped at cooldown_max_minutes.

WatchPolicy holds the watch-integrity thresholds, measured in seconds of
video position or credited watch time, never wall-clock time.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from app.config import settings

LEVEL_FOUNDATIONAL = "foundational"
LEVEL_STANDARD = "standard"
LEVEL_ACCELERATED = "accelerated"

START_LEVELS = (LEVEL_FOUNDATIONAL, LEVEL_STANDARD, LEVEL_ACCELERATED)

FOUNDATIONAL_BELOW = 40.0
ACCELERATED_FROM = 75.0

# Topics below this accuracy are reported as weak
WEAK_TOPIC_THRESHOLD = 70.0


@dataclass(frozen=True)
class PlanProfile:
    total_days: int
    minutes_per_day: int
    videos_per_day: int
    practice_per_day: int

    def to_dict(self) -> dict:
        return {
            "total_days": self.total_days,
            "minutes_per_day": self.minutes_per_day,
            "videos_per_day": self.videos_per_day,
            "practice_per_day": self.practice_per_day,
            "estimated_total_minutes": self.total_days * self.minutes_per_day,
        }


PLAN_PROFILES = {
    LEVEL_FOUNDATIONAL: PlanProfile(total_days=6, minutes_per_day=40, videos_per_day=1, practice_per_day=4),
    LEVEL_STANDARD: PlanProfile(total_days=4, minutes_per_day=50, videos_per_day=2, practice_per_day=5),
    LEVEL_ACCELERATED: PlanProfile(total_days=3, minutes_per_day=55, videos_per_day=3, practice_per_day=6),
}


def recommended_start_level(score_percent: float) -> str:
    if score_percent < FOUNDATIONAL_BELOW:
        return LEVEL_FOUNDATIONAL
    if score_percent < ACCELERATED_FROM:
        return LEVEL_STANDARD
    return LEVEL_ACCELERATED


def plan_profile(level: str) -> PlanProfile:
    try:
        return PLAN_PROFILES[level]
    except KeyError:
        raise ValueError(f"Unknown start level: {level}") from None


def next_pass_requirement(current: float) -> float:
    """Pass requirement for the next attempt after a failure. Never decreases."""
    raised = current + settings.pass_requirement_step
    return max(current, min(raised, settings.pass_requirement_ceiling))


def cooldown_minutes(attempt_number: int) -> int:
    """Cooldown after failing attempt N: base * 2^(N-1), capped."""
    exponent = max(attempt_number, 1) - 1
    # Cap the exponent before shifting so huge attempt counts stay cheap
    if exponent >= 32:
        return settings.cooldown_max_minutes
    return min(settings.cooldown_base_minutes * (1 << exponent), settings.cooldown_max_minutes)


def cooldown_ends_at(failed_at: datetime, attempt_number: int) -> datetime:
    return failed_at + timedelta(minutes=cooldown_minutes(attempt_number))


def remaining_seconds(until: Optional[datetime], now: datetime) -> int:
    """Whole seconds left until `until`, rounded up; 0 once it has passed."""
    if until is None:
        return 0
    delta = (until - now).total_seconds()
    if delta <= 0:
        return 0
    return math.ceil(delta)


@dataclass(frozen=True)
class WatchPolicy:
    """Watch-integrity thresholds, all measured in seconds of video time."""

    verification_interval: float = 300
    quiz_trigger: float = 1800
    quiz_question_count: int = 2
    max_progress_delta: float = 10
    completion_tolerance: float = 5

    def credited_seconds(self, position: float, last_position: float) -> float:
        """Watch time credited for one progress tick; seeks are never credited beyond the cap."""
        return max(0.0, min(position - last_position, self.max_progress_delta))

    def challenge_due(self, position: float, last_verification: float) -> bool:
        return position - last_verification >= self.verification_interval

    def quiz_due(self, watched_seconds: float) -> bool:
        return watched_seconds >= self.quiz_trigger

    def reached_end(self, position: float, duration: float) -> bool:
        return position >= duration - self.completion_tolerance


def watch_policy() -> WatchPolicy:
    return WatchPolicy(
        verification_interval=settings.verification_interval_seconds,
        quiz_trigger=settings.comprehension_trigger_seconds,
        quiz_question_count=settings.comprehension_question_count,
        max_progress_delta=settings.max_progress_delta_seconds,
        completion_tolerance=settings.completion_tolerance_seconds,
    )
