import pytest
from django.db import connection
from django.test.utils import CaptureQueriesContext

from habits.models import CompletionRecord, Habit
from habits.services import habit_stats

pytestmark = pytest.mark.django_db

TODAY = "2024-05-20"


@pytest.fixture()
def user(django_user_model):
    return django_user_model.objects.create_user(
        username="u1",
        password="pass12345",
        email="u1@example.com",
    )


def _bulk_create_completions(habit: Habit, dates):
    CompletionRecord.objects.bulk_create([CompletionRecord(habit=habit, date=d, xp_awarded=24) for d in dates])


def test_with_habit_stats__annotates_totals_today_and_last_7_days(user):
    habit = Habit.objects.create(owner=user, name="Gym", emoji="💪")
    _bulk_create_completions(habit, [TODAY, "2024-05-19", "2024-05-10"])

    obj = habit_stats.with_habit_stats(Habit.objects.all(), TODAY).get(pk=habit.pk)
    assert obj.total_completions_anno == 3
    assert obj.completed_today_anno is True
    assert obj.last_7_days_count_anno == 2  # today + yesterday only


def test_with_habit_stats__window_is_seven_days_inclusive(user):
    habit = Habit.objects.create(owner=user, name="Journal", emoji="📓")
    _bulk_create_completions(habit, ["2024-05-14", "2024-05-13"])

    obj = habit_stats.with_habit_stats(Habit.objects.all(), TODAY).get(pk=habit.pk)
    assert obj.last_7_days_count_anno == 1
    assert obj.completed_today_anno is False


def test_completion_count__uses_annotation_when_present(user):
    habit = Habit.objects.create(owner=user, name="Read", emoji="📚")
    _bulk_create_completions(habit, [TODAY, "2024-05-18"])

    obj = habit_stats.with_habit_stats(Habit.objects.all(), TODAY).get(pk=habit.pk)
    with CaptureQueriesContext(connection) as ctx:
        assert habit_stats.completion_count(obj) == 2
    assert len(ctx) == 0


def test_completion_count__falls_back_to_db_when_annotation_missing(user):
    habit = Habit.objects.create(owner=user, name="Meditate", emoji="🧘")
    _bulk_create_completions(habit, [TODAY])

    obj = Habit.objects.get(pk=habit.pk)
    assert habit_stats.completion_count(obj) == 1


def test_completed_today__falls_back_to_db_when_annotation_missing(user):
    habit = Habit.objects.create(owner=user, name="Stretch", emoji="🤸")
    _bulk_create_completions(habit, [TODAY])

    obj = Habit.objects.get(pk=habit.pk)
    assert habit_stats.completed_today(obj, TODAY) is True
    assert habit_stats.completed_today(obj, "2024-05-21") is False


def test_last_7_days_count__falls_back_to_db_when_annotation_missing(user):
    habit = Habit.objects.create(owner=user, name="DrinkWater", emoji="💧")
    _bulk_create_completions(habit, [TODAY, "2024-05-14", "2024-05-13"])

    obj = Habit.objects.get(pk=habit.pk)
    assert habit_stats.last_7_days_count(obj, TODAY) == 2


def test_best_streak__prefetched__returns_max_run_and_hits_no_db(user):
    habit = Habit.objects.create(owner=user, name="BestStreak", emoji="🔥")

    # Runs: 05-18..05-20 => 3, and 05-10..05-14 => 5 (best)
    _bulk_create_completions(
        habit,
        ["2024-05-20", "2024-05-19", "2024-05-18",
         "2024-05-14", "2024-05-13", "2024-05-12", "2024-05-11", "2024-05-10"],
    )

    obj = Habit.objects.prefetch_related("completions").get(pk=habit.pk)

    with CaptureQueriesContext(connection) as ctx:
        best = habit_stats.best_streak(obj)

    assert best == 5
    assert len(ctx) == 0


def test_best_streak__non_prefetched__crosses_month_boundary(user):
    habit = Habit.objects.create(owner=user, name="BestStreakDB", emoji="🏃")
    _bulk_create_completions(habit, ["2024-02-28", "2024-02-29", "2024-03-01", "2024-03-02"])

    obj = Habit.objects.get(pk=habit.pk)
    assert habit_stats.best_streak(obj) == 4


def test_best_streak__no_completions(user):
    habit = Habit.objects.create(owner=user, name="Empty", emoji="🫙")
    assert habit_stats.best_streak(habit) == 0
