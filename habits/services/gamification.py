import logging
from dataclasses import dataclass
from typing import Optional

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from habits.exceptions import EntryFinalized, NotFoundError
from habits.models import CompletionRecord, DailyEntry, Habit, PlayerProfile
from habits.services import progression, tiers
from habits.services.progression import HabitProgress
from habits.services.timezones import FALLBACK_TIME_ZONE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rank:
    name: str
    min_level: int
    description: str


RANKS = (
    Rank("Novice", 1, "Getting initiated into the system and establishing a baseline routine."),
    Rank("Apprentice", 4, "Building consistency with the fundamentals and refining daily rhythm."),
    Rank("Adept", 8, "Habits feel natural, focus improves, and streaks start to stack."),
    Rank("Expert", 12, "Deliberate training across multiple attributes with reliable execution."),
    Rank("Master", 18, "Elite consistency with challenging habits and long streak protection."),
    Rank("Legend", 24, "Mythic discipline; leading by example and sustaining momentum."),
)


PROFILE_LEVEL_STEP = 100


def level_from_xp(total_xp: int) -> int:
    """
    Overall player level for the XP summed across all habits.

    Leaving level N costs 100 * N, so the profile reaches level 2 at 100 XP,
    level 3 at 300 and level 4 at 600. Per-habit levels use the difficulty
    curve in ``habits.services.difficulty`` instead.
    """
    level = 1
    remaining = max(0, total_xp)
    while remaining >= PROFILE_LEVEL_STEP * level:
        remaining -= PROFILE_LEVEL_STEP * level
        level += 1
    return level


def rank_for_level(level: int) -> Rank:
    current = RANKS[0]
    for rank in RANKS:
        if level >= rank.min_level:
            current = rank
        else:
            break
    return current


def next_rank(level: int) -> Optional[Rank]:
    return next((rank for rank in RANKS if rank.min_level > level), None)


def rank_info(level: int) -> dict:
    current = rank_for_level(level)
    upcoming = next_rank(level)
    if upcoming is None:
        progress_to_next = 1.0
    else:
        span = max(1, upcoming.min_level - current.min_level)
        progress_to_next = min(1.0, max(0.0, (level - current.min_level) / span))
    return {
        "level": level,
        "current_rank": current,
        "next_rank": upcoming,
        "progress_to_next": progress_to_next,
    }


@dataclass(frozen=True)
class ProgressUpdate:
    habit: Habit
    profile: PlayerProfile
    xp_delta: int
    changed: bool
    previous_level: int
    previous_tier: str

    @property
    def leveled_up(self) -> bool:
        return self.habit.level > self.previous_level

    @property
    def tier_promoted(self) -> bool:
        return tiers.is_promotion(self.previous_tier, self.habit.tier)


def _locked_habit(user, habit_id) -> Habit:
    try:
        return Habit.objects.select_for_update().get(pk=habit_id, owner=user)
    except (Habit.DoesNotExist, ValueError):
        raise NotFoundError(f"Habit with id {habit_id} not found")


def _adjust_profile(user, xp_delta: int) -> PlayerProfile:
    profile, _ = PlayerProfile.objects.select_for_update().get_or_create(user=user)
    if xp_delta:
        profile.total_xp = max(0, profile.total_xp + xp_delta)
        profile.level = level_from_xp(profile.total_xp)
        profile.save(update_fields=["total_xp", "level", "updated_at"])
    return profile


@transaction.atomic
def update_habit_progress(*, user, habit_id, completed: bool, date: str,
                          time_zone: str = FALLBACK_TIME_ZONE) -> ProgressUpdate:
    """
    Apply one completion toggle to a habit and persist the result.

    The daily entry for ``date`` is not touched here; the client saves it
    separately, so the two can briefly disagree.
    """
    habit = _locked_habit(user, habit_id)

    if DailyEntry.objects.filter(owner=user, date=date, is_completed=True).exists():
        logger.warning("Rejected progress update for finalized day %s (user=%s habit=%s)", date, user.pk, habit.pk)
        raise EntryFinalized(f"Daily entry for {date} is finalized")

    before = HabitProgress.from_habit(habit, time_zone)
    if completed and CompletionRecord.objects.filter(habit=habit, date=date).exists():
        # recorded earlier, before a backfill moved last_completed back
        after = before
    else:
        after = progression.apply_completion_change(before, completed, date)

    if after == before:
        profile, _ = PlayerProfile.objects.get_or_create(user=user)
        return ProgressUpdate(habit, profile, 0, False, habit.level, habit.tier)

    if completed:
        xp_delta = after.last_award.xp
        CompletionRecord.objects.create(habit=habit, date=date, xp_awarded=xp_delta)
    else:
        xp_delta = -before.last_award.xp
        CompletionRecord.objects.filter(habit=habit, date=date).delete()

    changed_fields = after.apply_to(habit)
    habit.save(update_fields=changed_fields)
    profile = _adjust_profile(user, xp_delta)

    result = ProgressUpdate(habit, profile, xp_delta, True, before.level, before.tier)
    if result.leveled_up:
        logger.info("Habit %s reached level %s", habit.pk, habit.level)
    if result.tier_promoted:
        logger.info("Habit %s promoted %s -> %s", habit.pk, before.tier, habit.tier)
    return result


@transaction.atomic
def level_up_habit(*, user, habit_id) -> Habit:
    habit = _locked_habit(user, habit_id)
    updated = progression.level_up(HabitProgress.from_habit(habit))
    habit.save(update_fields=updated.apply_to(habit))
    logger.info("Habit %s levelled up manually to %s", habit.pk, habit.level)
    return habit


@transaction.atomic
def rerate_habit(*, user, habit_id, difficulty_rating: int, analysis: str = "") -> Habit:
    habit = _locked_habit(user, habit_id)
    updated = progression.rerate_difficulty(HabitProgress.from_habit(habit), difficulty_rating)
    changed = updated.apply_to(habit)
    habit.ai_analysis = analysis
    habit.last_analyzed = timezone.now()
    habit.save(update_fields=changed + ["ai_analysis", "last_analyzed"])
    return habit


def decay_inactive_streaks(habits, today: str) -> list:
    """Reset lapsed streaks on read; returns the habits, saving only the changed ones."""
    result = []
    for habit in habits:
        before = HabitProgress.from_habit(habit)
        after = progression.decay_inactive(before, today)
        if after != before:
            habit.save(update_fields=after.apply_to(habit))
        result.append(habit)
    return result


@transaction.atomic
def reconcile_profile_from_history(*, user) -> PlayerProfile:
    """
    Rebuild total XP from the completion records (server source of truth).
    """
    profile, _ = PlayerProfile.objects.select_for_update().get_or_create(user=user)

    agg = CompletionRecord.objects.filter(habit__owner=user).aggregate(total=Sum("xp_awarded"))
    total_xp = int(agg["total"] or 0)
    level = level_from_xp(total_xp)

    if (total_xp, level) != (profile.total_xp, profile.level):
        profile.total_xp = total_xp
        profile.level = level
        profile.save(update_fields=["total_xp", "level", "updated_at"])

    return profile
