"""
Progression engine: turns daily completion toggles into XP, levels, streaks,
tiers and badges.

Everything here is pure. A ``HabitProgress`` goes in, a new one comes out;
loading and saving the habit row is the caller's job (see
``habits.services.gamification``).
"""
from dataclasses import asdict, dataclass, field, replace
from fractions import Fraction
from math import floor
from typing import Optional, Tuple

from habits.exceptions import StaleReversal, ValidationError
from habits.services import tiers
from habits.services.difficulty import (
    DEFAULT_DIFFICULTY,
    clamp_difficulty,
    experience_for_completion,
    experience_required_for_level,
)
from habits.services.timezones import (
    FALLBACK_TIME_ZONE,
    date_key as to_date_key,
    days_between,
    parse_date_key,
    previous_date_key,
)

# Fields owned by the engine; these are what a reversal restores.
PROGRESSION_FIELDS = (
    "level",
    "experience",
    "experience_to_next",
    "streak",
    "longest_streak",
    "completion_rate",
    "total_completions",
    "tier",
    "badges",
    "last_completed",
)


@dataclass(frozen=True)
class CompletionAward:
    """What a single completion changed, kept so the same day can be undone."""

    date: str
    xp: int
    before: dict

    def to_dict(self) -> dict:
        return {"date": self.date, "xp": self.xp, "before": dict(self.before)}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["CompletionAward"]:
        if not data:
            return None
        return cls(date=data["date"], xp=int(data["xp"]), before=dict(data["before"]))


@dataclass(frozen=True)
class HabitProgress:
    difficulty_rating: int = DEFAULT_DIFFICULTY
    started_on: Optional[str] = None
    level: int = 1
    experience: int = 0
    experience_to_next: int = field(default_factory=lambda: experience_required_for_level(1, DEFAULT_DIFFICULTY))
    streak: int = 0
    longest_streak: int = 0
    completion_rate: int = 0
    total_completions: int = 0
    tier: str = tiers.Tier.BRONZE.value
    badges: Tuple[str, ...] = ()
    last_completed: Optional[str] = None
    last_decay_at: Optional[str] = None
    last_award: Optional[CompletionAward] = None

    @classmethod
    def from_habit(cls, habit, time_zone: str = FALLBACK_TIME_ZONE) -> "HabitProgress":
        created = getattr(habit, "created_at", None)
        return cls(
            difficulty_rating=clamp_difficulty(habit.difficulty_rating),
            started_on=to_date_key(created, time_zone) if created else None,
            level=habit.level,
            experience=habit.experience,
            experience_to_next=habit.experience_to_next,
            streak=habit.streak,
            longest_streak=habit.longest_streak,
            completion_rate=habit.completion_rate,
            total_completions=habit.total_completions,
            tier=habit.tier,
            badges=tuple(habit.badges or ()),
            last_completed=habit.last_completed,
            last_decay_at=habit.last_decay_at,
            last_award=CompletionAward.from_dict(habit.last_award),
        )

    def apply_to(self, habit) -> list:
        """Copy progression onto a habit row; returns the changed field names."""
        values = {name: getattr(self, name) for name in PROGRESSION_FIELDS}
        values["badges"] = list(self.badges)
        values["difficulty_rating"] = self.difficulty_rating
        values["last_decay_at"] = self.last_decay_at
        values["last_award"] = self.last_award.to_dict() if self.last_award else None

        changed = []
        for name, value in values.items():
            if getattr(habit, name) != value:
                setattr(habit, name, value)
                changed.append(name)
        return changed

    def snapshot(self) -> dict:
        data = {name: getattr(self, name) for name in PROGRESSION_FIELDS}
        data["badges"] = list(self.badges)
        return data

    @property
    def consistency(self) -> float:
        return tiers.consistency_score(self.longest_streak, self.total_completions)

    def as_dict(self) -> dict:
        data = asdict(self)
        data["badges"] = list(self.badges)
        data["last_award"] = self.last_award.to_dict() if self.last_award else None
        return data


def completion_rate(total_completions: int, started_on: Optional[str], on: str) -> int:
    """Lifetime ratio of completions to days since the habit started, 0-100."""
    days = days_between(started_on, on) + 1 if started_on else 1
    days = max(1, days)
    rate = floor(Fraction(100 * total_completions, days) + Fraction(1, 2))
    return max(0, min(100, rate))


def _with_rewards(progress: HabitProgress, previous_badges) -> HabitProgress:
    progress = replace(progress, tier=tiers.evaluate(progress))
    return replace(progress, badges=tiers.earned_badges(progress, previous_badges))


def add_experience(level: int, experience: int, experience_to_next: int, difficulty_rating: int):
    """Carry XP over as many level thresholds as it crosses."""
    while experience >= experience_to_next:
        experience -= experience_to_next
        level += 1
        experience_to_next = experience_required_for_level(level, difficulty_rating)
    return level, experience, experience_to_next


def complete(progress: HabitProgress, date_key: str) -> HabitProgress:
    parse_date_key(date_key)

    # A day counts at most once.
    if progress.last_completed == date_key:
        return progress

    xp = experience_for_completion(progress.difficulty_rating)
    level, experience, experience_to_next = add_experience(
        progress.level,
        progress.experience + xp,
        progress.experience_to_next,
        progress.difficulty_rating,
    )

    if progress.last_completed is not None and progress.last_completed == previous_date_key(date_key):
        streak = progress.streak + 1
    else:
        streak = 1

    total = progress.total_completions + 1
    updated = replace(
        progress,
        level=level,
        experience=experience,
        experience_to_next=experience_to_next,
        streak=streak,
        longest_streak=max(progress.longest_streak, streak),
        total_completions=total,
        completion_rate=completion_rate(total, progress.started_on, date_key),
        last_completed=date_key,
        last_award=CompletionAward(date=date_key, xp=xp, before=progress.snapshot()),
    )
    return _with_rewards(updated, progress.badges)


def reverse(progress: HabitProgress, date_key: str) -> HabitProgress:
    parse_date_key(date_key)

    award = progress.last_award
    if progress.last_completed != date_key or award is None or award.date != date_key:
        raise StaleReversal(f"No reversible completion for {date_key}")

    restored = dict(award.before)
    restored["badges"] = tuple(restored.get("badges") or ())
    return replace(progress, last_award=None, **restored)


def apply_completion_change(progress: HabitProgress, completed: bool, date_key: str) -> HabitProgress:
    if completed:
        return complete(progress, date_key)
    return reverse(progress, date_key)


def level_up(progress: HabitProgress) -> HabitProgress:
    if progress.experience < progress.experience_to_next:
        raise ValidationError("Not enough experience to level up")

    level = progress.level + 1
    updated = replace(
        progress,
        level=level,
        experience=progress.experience - progress.experience_to_next,
        experience_to_next=experience_required_for_level(level, progress.difficulty_rating),
        last_award=None,
    )
    return _with_rewards(updated, progress.badges)


def rerate_difficulty(progress: HabitProgress, difficulty_rating: int) -> HabitProgress:
    """New difficulty; the current level's threshold follows, XP is untouched."""
    rating = clamp_difficulty(difficulty_rating)
    updated = replace(
        progress,
        difficulty_rating=rating,
        experience_to_next=experience_required_for_level(progress.level, rating),
        last_award=None,
    )
    return _with_rewards(updated, progress.badges)


def decay_inactive(progress: HabitProgress, today: str) -> HabitProgress:
    """Drop a lapsed streak to zero, at most once per day."""
    if progress.streak == 0 or progress.last_decay_at == today:
        return progress
    if progress.last_completed in (today, previous_date_key(today)):
        return progress
    # the completed day has closed, so it can no longer be undone
    return replace(progress, streak=0, last_decay_at=today, last_award=None)
