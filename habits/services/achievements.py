"""
User-level achievements: a fixed catalog seeded per user and unlocked when
the user's finalized days cross a requirement. Unlocks are never undone.
"""
import logging
from datetime import timedelta

from django.db import transaction
from django.utils import timezone

from habits.models import Achievement, DailyEntry, Habit, WeeklyReview
from habits.services.timezones import parse_date_key

logger = logging.getLogger(__name__)

# (key, type, name, description, badge, requirement)
CATALOG = (
    ("streak_1", "streak", "First Steps", "Complete your first day", "🌱", 1),
    ("streak_3", "streak", "Getting Started", "Maintain a 3-day streak", "🔥", 3),
    ("streak_7", "streak", "Week Warrior", "Maintain a 7-day streak", "⚡", 7),
    ("streak_14", "streak", "Momentum Master", "Maintain a 14-day streak", "🚀", 14),
    ("streak_30", "streak", "Habit Hero", "Maintain a 30-day streak", "🏆", 30),
    ("streak_60", "streak", "Unstoppable Force", "Maintain a 60-day streak", "💪", 60),
    ("streak_100", "streak", "Legend", "Maintain a 100-day streak", "🌟", 100),
    ("completion_100", "completion", "Perfect Day", "Complete all habits in a day", "⭐", 100),
    ("completion_90", "completion", "Near Perfect", "Complete 90% of habits in a day", "🎯", 90),
    ("completion_75", "completion", "Good Progress", "Complete 75% of habits in a day", "✅", 75),
    ("reviews_5", "consistency", "Reflection Master", "Complete 5 weekly reviews", "📝", 5),
    ("reviews_10", "consistency", "Self-Aware", "Complete 10 weekly reviews", "🔍", 10),
    ("reviews_25", "consistency", "Wisdom Keeper", "Complete 25 weekly reviews", "🧠", 25),
    ("days_10", "milestone", "Getting Into It", "Complete 10 total days", "🎪", 10),
    ("days_25", "milestone", "Dedicated", "Complete 25 total days", "💝", 25),
    ("days_50", "milestone", "Half Century", "Complete 50 total days", "🏅", 50),
    ("days_100", "milestone", "Century Club", "Complete 100 total days", "💯", 100),
    ("days_250", "milestone", "Habit Master", "Complete 250 total days", "🎖️", 250),
    ("days_365", "milestone", "Life Changer", "Complete 365 total days", "🌈", 365),
    ("early_bird", "special", "Early Bird", "Score 5/5 on punctuality", "🐦", 5),
    ("disciplined", "special", "Disciplined", "Score 5/5 on adherence", "⚖️", 5),
    ("perfectionist", "special", "Perfectionist", "Score 5/5 on both metrics same day", "💎", 1),
    ("note_taker", "special", "Note Taker", "Add notes for 7 consecutive days", "📓", 7),
    ("habit_creator", "special", "Habit Creator", "Create 5 custom habits", "🛠️", 5),
)


def initialize_achievements(user) -> None:
    existing = set(Achievement.objects.filter(owner=user).values_list("key", flat=True))
    missing = [
        Achievement(owner=user, key=key, type=type_, name=name, description=description,
                    badge=badge, requirement=requirement)
        for key, type_, name, description, badge, requirement in CATALOG
        if key not in existing
    ]
    if missing:
        Achievement.objects.bulk_create(missing)


def list_achievements(user) -> list:
    initialize_achievements(user)
    return list(Achievement.objects.filter(owner=user))


def unlock_achievement(achievement: Achievement) -> bool:
    """Returns True only when this call did the unlocking."""
    if achievement.is_unlocked:
        return False
    achievement.is_unlocked = True
    achievement.unlocked_at = timezone.now()
    achievement.save(update_fields=["is_unlocked", "unlocked_at"])
    return True


def completion_percentage(entry: DailyEntry, active_habit_ids) -> float:
    active = {str(pk) for pk in active_habit_ids}
    if not active:
        return 0.0
    done = sum(1 for key, value in (entry.habit_completions or {}).items() if value and key in active)
    return 100.0 * done / len(active)


def _consecutive_note_days(user, end: str) -> int:
    end_date = parse_date_key(end)
    start = (end_date - timedelta(days=6)).isoformat()
    noted = set(
        DailyEntry.objects.filter(owner=user, date__range=(start, end))
        .exclude(notes="")
        .values_list("date", flat=True)
    )
    days = 0
    day = end_date
    while day.isoformat() in noted:
        days += 1
        day -= timedelta(days=1)
    return days


@transaction.atomic
def check_achievements(*, user, entry: DailyEntry, current_streak: int) -> list:
    """Unlock whatever ``entry`` (a finalized day) newly qualifies for."""
    initialize_achievements(user)

    active_ids = list(Habit.objects.filter(owner=user, is_active=True).values_list("pk", flat=True))
    percentage = completion_percentage(entry, active_ids)
    finalized_days = DailyEntry.objects.filter(owner=user, is_completed=True).count()
    reviews = WeeklyReview.objects.filter(owner=user).count()

    special = {
        "early_bird": entry.punctuality_score >= 5,
        "disciplined": entry.adherence_score >= 5,
        "perfectionist": entry.punctuality_score >= 5 and entry.adherence_score >= 5,
        "habit_creator": Habit.objects.filter(owner=user, is_default=False).count() >= 5,
    }

    unlocked = []
    for achievement in Achievement.objects.select_for_update().filter(owner=user, is_unlocked=False):
        if achievement.type == "streak":
            qualifies = current_streak >= achievement.requirement
        elif achievement.type == "completion":
            qualifies = percentage >= achievement.requirement
        elif achievement.type == "consistency":
            qualifies = reviews >= achievement.requirement
        elif achievement.type == "milestone":
            qualifies = finalized_days >= achievement.requirement
        elif achievement.key == "note_taker":
            qualifies = _consecutive_note_days(user, entry.date) >= achievement.requirement
        else:
            qualifies = special.get(achievement.key, False)

        if qualifies and unlock_achievement(achievement):
            unlocked.append(achievement)

    if unlocked:
        logger.info("User %s unlocked %s", user.pk, ", ".join(a.key for a in unlocked))
    return unlocked
