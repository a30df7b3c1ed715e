import pytest

from habits.exceptions import InvalidDateKey, NotFoundError, ValidationError
from habits.models import (
    Achievement,
    ChatMessage,
    CompletionRecord,
    DailyEntry,
    Habit,
    PlayerProfile,
    Subtask,
    UserSetting,
)
from habits.services import achievements, crud

pytestmark = pytest.mark.django_db


@pytest.fixture()
def user(django_user_model):
    return django_user_model.objects.create_user(username="u1", password="pass12345", email="u1@example.com")


@pytest.fixture()
def other_user(django_user_model):
    return django_user_model.objects.create_user(username="u2", password="pass12345", email="u2@example.com")


def test_sanitize_strips_angle_brackets():
    assert crud.sanitize("  <script>Run</script> ") == "scriptRun/script"


def test_seed_default_habits__only_first_time(user):
    crud.seed_default_habits(user)
    crud.seed_default_habits(user)

    names = list(Habit.objects.filter(owner=user).values_list("name", flat=True))
    assert names == [name for name, _ in crud.DEFAULT_HABITS]
    assert UserSetting.objects.filter(owner=user, key=crud.DEFAULTS_SEEDED_KEY).exists()


def test_seed_default_habits__skips_users_with_habits(user):
    Habit.objects.create(owner=user, name="Mine", emoji="⭐")
    crud.seed_default_habits(user)
    assert Habit.objects.filter(owner=user).count() == 1


def test_create_habit__appends_order_and_dedupes_tags(user):
    first = crud.create_habit(user, {"name": "One", "emoji": "1️⃣"})
    second = crud.create_habit(user, {"name": "Two", "emoji": "2️⃣", "tags": ["STR", "STR", "AGI"]})

    assert (first.order, second.order) == (1, 2)
    assert second.tags == ["STR", "AGI"]
    assert second.experience_to_next == 120


def test_get_habit__is_owner_scoped(user, other_user):
    habit = Habit.objects.create(owner=other_user, name="Theirs", emoji="🔒")
    with pytest.raises(NotFoundError):
        crud.get_habit(user, habit.pk)
    with pytest.raises(NotFoundError):
        crud.get_habit(user, "abc")


def test_delete_habit__cascades_to_subtasks_and_records(user):
    habit = Habit.objects.create(owner=user, name="Gym", emoji="💪")
    Subtask.objects.create(owner=user, habit=habit, title="Warm up")
    CompletionRecord.objects.create(habit=habit, date="2024-05-20")

    crud.delete_habit(user, habit.pk)

    assert not Subtask.objects.exists()
    assert not CompletionRecord.objects.exists()


def test_subtasks__validation_and_ownership(user, other_user):
    habit = Habit.objects.create(owner=user, name="Gym", emoji="💪")

    with pytest.raises(ValidationError):
        crud.create_subtask(user, habit.pk, {"title": ""})
    with pytest.raises(NotFoundError):
        crud.create_subtask(other_user, habit.pk, {"title": "Sneaky"})

    subtask = crud.create_subtask(user, habit.pk, {"title": "Warm up"})
    assert subtask.order == 1

    with pytest.raises(NotFoundError):
        crud.update_subtask(other_user, subtask.pk, {"title": "Mine now"})
    with pytest.raises(ValidationError):
        crud.update_subtask(user, subtask.pk, {"order": "first"})


def test_weekly_review__monday_only(user):
    with pytest.raises(ValidationError):
        crud.save_weekly_review(user, "2024-05-22", {"accomplishment": "x"})
    with pytest.raises(InvalidDateKey):
        crud.get_weekly_review(user, "last-week")

    review = crud.save_weekly_review(user, "2024-05-20", {"accomplishment": "Ran 3x"})
    review = crud.save_weekly_review(user, "2024-05-20", {"breakdown": "Skipped Friday"})

    assert (review.accomplishment, review.breakdown) == ("Ran 3x", "Skipped Friday")
    assert crud.get_weekly_review(user, "2024-05-27") is None


def test_settings__round_trip_and_validation(user):
    assert crud.get_setting(user, "theme") is None
    crud.set_setting(user, "theme", "dark")
    crud.set_setting(user, "theme", "light")
    assert crud.get_setting(user, "theme") == "light"

    with pytest.raises(ValidationError):
        crud.set_setting(user, "", "x")
    with pytest.raises(ValidationError):
        crud.set_setting(user, "theme", 3)


def test_reset_user_data__wipes_only_that_user(user, other_user):
    mine = Habit.objects.create(owner=user, name="Mine", emoji="⭐")
    theirs = Habit.objects.create(owner=other_user, name="Theirs", emoji="🌙")
    CompletionRecord.objects.create(habit=mine, date="2024-05-20", xp_awarded=24)
    DailyEntry.objects.create(owner=user, date="2024-05-20")
    ChatMessage.objects.create(owner=user, role=ChatMessage.Role.USER, content="hi")
    PlayerProfile.objects.create(user=user, total_xp=24)
    achievements.initialize_achievements(user)
    achievements.unlock_achievement(Achievement.objects.get(owner=user, key="streak_1"))

    crud.reset_user_data(user)

    assert not Habit.objects.filter(owner=user).exists()
    assert not CompletionRecord.objects.filter(habit__owner=user).exists()
    assert not DailyEntry.objects.filter(owner=user).exists()
    assert not ChatMessage.objects.filter(owner=user).exists()
    assert not PlayerProfile.objects.filter(user=user).exists()
    assert not Achievement.objects.filter(owner=user, is_unlocked=True).exists()
    assert Habit.objects.filter(pk=theirs.pk).exists()


@pytest.mark.parametrize("month", ["2024-5", "May 2024", "2024-13", None])
def test_clear_month__rejects_bad_month(user, month):
    with pytest.raises(ValidationError):
        crud.clear_month(user, month)


def test_clear_month__handles_leap_february(user):
    for day in ("2024-02-01", "2024-02-29", "2024-03-01"):
        DailyEntry.objects.create(owner=user, date=day)

    assert crud.clear_month(user, "2024-02") == 2
    assert list(DailyEntry.objects.filter(owner=user).values_list("date", flat=True)) == ["2024-03-01"]
