from datetime import timedelta

from django.db.models import Count, Exists, OuterRef, Q

from habits.models import CompletionRecord, Habit
from habits.services.timezones import parse_date_key


def _week_window(today: str):
    end = parse_date_key(today)
    return (end - timedelta(days=6)).isoformat(), end.isoformat()


def with_habit_stats(qs, today: str):
    """
    Adds efficient annotations used by derived API fields.

    - total_completions_anno
    - last_7_days_count_anno
    - completed_today_anno
    """
    start, end = _week_window(today)

    today_completion_exists = CompletionRecord.objects.filter(habit_id=OuterRef("pk"), date=today)

    return qs.annotate(
        total_completions_anno=Count("completions", distinct=True),
        last_7_days_count_anno=Count(
            "completions",
            filter=Q(completions__date__range=(start, end)),
            distinct=True,
        ),
        completed_today_anno=Exists(today_completion_exists),
    )


def _prefetched_completion_dates_or_none(habit):
    """
    If `completions` were prefetched, Django stores them in _prefetched_objects_cache
    We can use that to avoid DB queries.
    """
    cache = getattr(habit, "_prefetched_objects_cache", None) or {}
    if "completions" not in cache:
        return None
    return {record.date for record in cache["completions"]}


def completion_count(habit: Habit) -> int:
    val = getattr(habit, "total_completions_anno", None)
    if val is not None:
        return int(val)
    return habit.completions.count()


def completed_today(habit: Habit, today: str) -> bool:
    val = getattr(habit, "completed_today_anno", None)
    if val is not None:
        return bool(val)
    return habit.completions.filter(date=today).exists()


def last_7_days_count(habit: Habit, today: str) -> int:
    val = getattr(habit, "last_7_days_count_anno", None)
    if val is not None:
        return int(val)
    start, end = _week_window(today)
    return habit.completions.filter(date__range=(start, end)).count()


def best_streak(habit: Habit) -> int:
    """
    Max consecutive-day run across all completion records.
    Uses prefetched completions if available; otherwise queries once.
    """
    prefetched = _prefetched_completion_dates_or_none(habit)
    if prefetched is not None:
        keys = sorted(prefetched)
    else:
        keys = list(
            habit.completions.values_list("date", flat=True)
            .distinct()
            .order_by("date")
        )
    if not keys:
        return 0

    dates = [parse_date_key(k) for k in keys]
    best = 1
    cur = 1
    for prev, nxt in zip(dates, dates[1:]):
        if nxt == prev + timedelta(days=1):
            cur += 1
            if cur > best:
                best = cur
        else:
            cur = 1
    return best
