from dataclasses import dataclass
from datetime import timedelta

from habits.exceptions import ValidationError
from habits.models import HABIT_TAGS, CompletionRecord, Goal, Habit
from habits.services.timezones import parse_date_key

PERIOD_DAYS = {
    Goal.Period.DAILY: 1,
    Goal.Period.WEEKLY: 7,
    Goal.Period.MONTHLY: 30,
}


@dataclass(frozen=True)
class GoalProgress:
    goal: Goal
    start: str
    end: str
    count: int

    @property
    def achieved(self) -> bool:
        return self.count >= self.goal.target_count


def create_goal(user, data: dict) -> Goal:
    tag, period, target = data.get("tag"), data.get("period"), data.get("targetCount")
    if tag not in HABIT_TAGS:
        raise ValidationError(f"tag must be one of {', '.join(HABIT_TAGS)}")
    if period not in PERIOD_DAYS:
        raise ValidationError("period must be daily, weekly or monthly")
    if isinstance(target, bool) or not isinstance(target, int) or target < 1:
        raise ValidationError("targetCount must be a positive integer")
    return Goal.objects.create(owner=user, tag=tag, period=period, target_count=target)


def goal_progress(goal: Goal, today: str) -> GoalProgress:
    """Completions of habits carrying the goal's tag in the period ending today."""
    end = parse_date_key(today)
    start = end - timedelta(days=PERIOD_DAYS[goal.period] - 1)

    # JSON containment lookups are not portable, so tags are matched here.
    habit_ids = [
        pk for pk, tags in Habit.objects.filter(owner=goal.owner_id).values_list("pk", "tags")
        if goal.tag in (tags or [])
    ]
    count = CompletionRecord.objects.filter(
        habit_id__in=habit_ids, date__range=(start.isoformat(), end.isoformat())
    ).count()
    return GoalProgress(goal=goal, start=start.isoformat(), end=end.isoformat(), count=count)


def list_goal_progress(user, today: str) -> list:
    return [goal_progress(goal, today) for goal in Goal.objects.filter(owner=user)]
