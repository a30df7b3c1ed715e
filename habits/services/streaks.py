from django.db import transaction

from habits.models import Streak
from habits.services.timezones import previous_date_key


@transaction.atomic
def record_day_completed(*, user, date: str, streak_type: str = Streak.DAILY_COMPLETION) -> Streak:
    """Advance the user's streak for a finalized day. Same day twice is a no-op."""
    streak, _ = Streak.objects.select_for_update().get_or_create(owner=user, type=streak_type)

    if streak.last_active_date == date:
        return streak

    if streak.last_active_date is not None and streak.last_active_date == previous_date_key(date):
        streak.current_streak += 1
    else:
        streak.current_streak = 1

    streak.longest_streak = max(streak.longest_streak, streak.current_streak)
    streak.last_active_date = date
    streak.save(update_fields=["current_streak", "longest_streak", "last_active_date", "updated_at"])
    return streak


def refresh_streaks(*, user, today: str) -> list:
    """Zero any streak whose last active day is older than yesterday."""
    alive = {today, previous_date_key(today)}
    streaks = list(Streak.objects.filter(owner=user))
    for streak in streaks:
        if streak.current_streak and streak.last_active_date not in alive:
            streak.current_streak = 0
            streak.save(update_fields=["current_streak", "updated_at"])
    return streaks
