"""
Tier and badge rules for a single habit.

Both are pure functions of a habit's progression numbers so they can be
evaluated from the progression engine and from read paths alike.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Tuple

from habits.services.difficulty import clamp_difficulty


class Tier(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"
    DIAMOND = "diamond"


@dataclass(frozen=True)
class TierRequirement:
    tier: Tier
    level: int
    completion_rate: int
    consistency: int
    longest_streak: int
    difficulty: int
    description: str


# Ordered lowest to highest. Each row is the full minimum for that tier.
TIER_REQUIREMENTS: Tuple[TierRequirement, ...] = (
    TierRequirement(Tier.BRONZE, 1, 0, 0, 0, 1, "Starting your habit journey"),
    TierRequirement(Tier.SILVER, 3, 35, 20, 3, 1, "Building momentum"),
    TierRequirement(Tier.GOLD, 6, 50, 30, 7, 2, "Establishing consistency"),
    TierRequirement(Tier.PLATINUM, 10, 60, 40, 14, 3, "Strong habit mastery"),
    TierRequirement(Tier.DIAMOND, 15, 70, 50, 21, 4, "Elite consistency on a hard habit"),
)

TIER_ORDER = {req.tier.value: i for i, req in enumerate(TIER_REQUIREMENTS)}


def consistency_score(longest_streak: int, total_completions: int) -> float:
    return min(100.0, 100.0 * longest_streak / max(1, total_completions))


def meets(req: TierRequirement, *, level, completion_rate, consistency, longest_streak, difficulty) -> bool:
    return (
        level >= req.level
        and completion_rate >= req.completion_rate
        and consistency >= req.consistency
        and longest_streak >= req.longest_streak
        and difficulty >= req.difficulty
    )


def evaluate_tier(
        *,
        level: int,
        completion_rate: int,
        consistency: float,
        longest_streak: int,
        difficulty: int,
) -> str:
    best = Tier.BRONZE
    for req in TIER_REQUIREMENTS:
        if meets(
            req,
            level=level,
            completion_rate=completion_rate,
            consistency=consistency,
            longest_streak=longest_streak,
            difficulty=difficulty,
        ):
            best = req.tier
    return best.value


def evaluate(progress) -> str:
    """Tier for anything exposing the progression attributes of a habit."""
    return evaluate_tier(
        level=progress.level,
        completion_rate=progress.completion_rate,
        consistency=consistency_score(progress.longest_streak, progress.total_completions),
        longest_streak=progress.longest_streak,
        difficulty=clamp_difficulty(progress.difficulty_rating),
    )


def is_promotion(old_tier: str, new_tier: str) -> bool:
    return TIER_ORDER.get(new_tier, 0) > TIER_ORDER.get(old_tier, 0)


@dataclass(frozen=True)
class BadgeDefinition:
    id: str
    name: str
    description: str
    icon: str
    earned: Callable[[object], bool]


BADGES: Tuple[BadgeDefinition, ...] = (
    BadgeDefinition("first_completion", "First Completion", "Complete a habit for the first time", "🌱",
                    lambda p: p.total_completions >= 1),
    BadgeDefinition("streak_starter", "Streak Starter", "Reach a 5-day streak", "🔥",
                    lambda p: p.streak >= 5),
    BadgeDefinition("week_warrior", "Week Warrior", "Reach a 7-day streak", "⚡",
                    lambda p: p.streak >= 7),
    BadgeDefinition("month_master", "Month Master", "Reach a 30-day streak", "🏆",
                    lambda p: p.streak >= 30),
    BadgeDefinition("ten_completions", "Getting Into It", "Complete a habit 10 times", "🎯",
                    lambda p: p.total_completions >= 10),
    BadgeDefinition("half_century", "Half Century", "Complete a habit 50 times", "🏅",
                    lambda p: p.total_completions >= 50),
    BadgeDefinition("century_club", "Century Club", "Complete a habit 100 times", "💯",
                    lambda p: p.total_completions >= 100),
)

BADGES_BY_ID = {b.id: b for b in BADGES}


def earned_badges(progress, existing: Iterable[str] = ()) -> Tuple[str, ...]:
    """
    Existing badges plus any newly earned, in award order. Never removes.
    """
    result = list(existing)
    for badge in BADGES:
        if badge.id not in result and badge.earned(progress):
            result.append(badge.id)
    return tuple(result)
