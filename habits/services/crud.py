import logging
from calendar import monthrange
from typing import Optional

from django.db import transaction

from habits.exceptions import NotFoundError, ValidationError
from habits.models import (
    HABIT_NAME_MAX_LENGTH,
    HABIT_TAGS,
    MAX_HABIT_TAGS,
    Achievement,
    ChatMessage,
    DailyEntry,
    Goal,
    Habit,
    PlayerProfile,
    Streak,
    Subtask,
    UserSetting,
    WeeklyReview,
)
from habits.services.difficulty import experience_required_for_level
from habits.services.timezones import parse_date_key

logger = logging.getLogger(__name__)

DEFAULT_HABITS = (
    ("Wake up on time", "⏰"),
    ("Focus Session #1", "🎯"),
    ("Workout/Exercise", "💪"),
    ("Focus Session #2", "🎯"),
    ("Review & wind-down", "🌙"),
)
DEFAULTS_SEEDED_KEY = "defaults_seeded"


def sanitize(value: str) -> str:
    return value.strip().replace("<", "").replace(">", "")


def _validate_habit_fields(data: dict, *, partial: bool) -> dict:
    cleaned = {}

    if "name" in data or not partial:
        name = data.get("name")
        if not isinstance(name, str) or not 1 <= len(sanitize(name)) <= HABIT_NAME_MAX_LENGTH:
            raise ValidationError(f"name must be 1-{HABIT_NAME_MAX_LENGTH} characters")
        cleaned["name"] = sanitize(name)

    if "emoji" in data or not partial:
        emoji = data.get("emoji")
        if not isinstance(emoji, str) or not emoji.strip():
            raise ValidationError("emoji is required")
        cleaned["emoji"] = emoji.strip()

    if "tags" in data:
        tags = data["tags"]
        if not isinstance(tags, list) or any(t not in HABIT_TAGS for t in tags):
            raise ValidationError(f"tags must be a list drawn from {', '.join(HABIT_TAGS)}")
        if len(set(tags)) > MAX_HABIT_TAGS:
            raise ValidationError(f"at most {MAX_HABIT_TAGS} tags")
        cleaned["tags"] = list(dict.fromkeys(tags))

    if "order" in data:
        if isinstance(data["order"], bool) or not isinstance(data["order"], int):
            raise ValidationError("order must be an integer")
        cleaned["order"] = data["order"]

    if "isActive" in data:
        if not isinstance(data["isActive"], bool):
            raise ValidationError("isActive must be a boolean")
        cleaned["is_active"] = data["isActive"]

    return cleaned


def get_habit(user, habit_id) -> Habit:
    try:
        return Habit.objects.get(pk=habit_id, owner=user)
    except (Habit.DoesNotExist, ValueError):
        raise NotFoundError(f"Habit with id {habit_id} not found")


@transaction.atomic
def seed_default_habits(user) -> None:
    _, created = UserSetting.objects.get_or_create(owner=user, key=DEFAULTS_SEEDED_KEY, defaults={"value": "1"})
    if not created or Habit.objects.filter(owner=user).exists():
        return
    Habit.objects.bulk_create(
        [
            Habit(owner=user, name=name, emoji=emoji, order=i, is_default=True)
            for i, (name, emoji) in enumerate(DEFAULT_HABITS, start=1)
        ]
    )


def create_habit(user, data: dict) -> Habit:
    cleaned = _validate_habit_fields(data, partial=False)
    if "difficultyRating" in data:
        rating = data["difficultyRating"]
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("difficultyRating must be an integer between 1 and 5")
        cleaned["difficulty_rating"] = rating
    if "order" not in cleaned:
        cleaned["order"] = Habit.objects.filter(owner=user).count() + 1
    habit = Habit(owner=user, **cleaned)
    if habit.difficulty_rating != 3:
        habit.experience_to_next = experience_required_for_level(1, habit.difficulty_rating)
    habit.save()
    return habit


def update_habit(user, habit_id, data: dict) -> Habit:
    forbidden = {"level", "experience", "experienceToNext", "streak", "longestStreak", "completionRate",
                 "totalCompletions", "tier", "badges", "lastCompleted"} & set(data)
    if forbidden:
        raise ValidationError(f"Progression fields are read-only: {', '.join(sorted(forbidden))}")
    cleaned = _validate_habit_fields(data, partial=True)
    habit = get_habit(user, habit_id)
    for name, value in cleaned.items():
        setattr(habit, name, value)
    if cleaned:
        habit.save(update_fields=list(cleaned))
    return habit


def delete_habit(user, habit_id) -> None:
    # Subtasks and completion records cascade; daily entries keep the key
    # and drop it on read.
    get_habit(user, habit_id).delete()


def list_subtasks(user, habit_id):
    habit = get_habit(user, habit_id)
    return list(Subtask.objects.filter(owner=user, habit=habit))


def create_subtask(user, habit_id, data: dict) -> Subtask:
    habit = get_habit(user, habit_id)
    title = data.get("title")
    if not isinstance(title, str) or not 1 <= len(sanitize(title)) <= 120:
        raise ValidationError("title must be 1-120 characters")
    order = data.get("order", Subtask.objects.filter(habit=habit).count() + 1)
    if isinstance(order, bool) or not isinstance(order, int):
        raise ValidationError("order must be an integer")
    return Subtask.objects.create(owner=user, habit=habit, title=sanitize(title), order=order)


def get_subtask(user, subtask_id) -> Subtask:
    try:
        return Subtask.objects.get(pk=subtask_id, owner=user)
    except (Subtask.DoesNotExist, ValueError):
        raise NotFoundError(f"Subtask with id {subtask_id} not found")


def update_subtask(user, subtask_id, data: dict) -> Subtask:
    subtask = get_subtask(user, subtask_id)
    fields = []
    if "title" in data:
        title = data["title"]
        if not isinstance(title, str) or not 1 <= len(sanitize(title)) <= 120:
            raise ValidationError("title must be 1-120 characters")
        subtask.title = sanitize(title)
        fields.append("title")
    if "order" in data:
        if isinstance(data["order"], bool) or not isinstance(data["order"], int):
            raise ValidationError("order must be an integer")
        subtask.order = data["order"]
        fields.append("order")
    if "isActive" in data:
        if not isinstance(data["isActive"], bool):
            raise ValidationError("isActive must be a boolean")
        subtask.is_active = data["isActive"]
        fields.append("is_active")
    if fields:
        subtask.save(update_fields=fields)
    return subtask


def delete_subtask(user, subtask_id) -> None:
    get_subtask(user, subtask_id).delete()


def get_weekly_review(user, week_start_date: str) -> Optional[WeeklyReview]:
    parse_date_key(week_start_date)
    return WeeklyReview.objects.filter(owner=user, week_start_date=week_start_date).first()


def save_weekly_review(user, week_start_date: str, data: dict) -> WeeklyReview:
    if parse_date_key(week_start_date).weekday() != 0:
        raise ValidationError("week start date must be a Monday")
    fields = {}
    for key in ("accomplishment", "breakdown", "adjustment"):
        if key in data:
            if not isinstance(data[key], str):
                raise ValidationError(f"{key} must be a string")
            fields[key] = data[key]
    review, _ = WeeklyReview.objects.get_or_create(owner=user, week_start_date=week_start_date)
    for key, value in fields.items():
        setattr(review, key, value)
    review.save()
    return review


def get_setting(user, key: str) -> Optional[str]:
    setting = UserSetting.objects.filter(owner=user, key=key).first()
    return setting.value if setting else None


def set_setting(user, key, value) -> UserSetting:
    if not isinstance(key, str) or not 1 <= len(key) <= 64:
        raise ValidationError("key must be 1-64 characters")
    if not isinstance(value, str):
        raise ValidationError("value must be a string")
    setting, _ = UserSetting.objects.update_or_create(owner=user, key=key, defaults={"value": value})
    return setting


@transaction.atomic
def reset_user_data(user) -> None:
    """Permanently delete everything the user owns."""
    for model in (Subtask, DailyEntry, WeeklyReview, Streak, Goal, ChatMessage, Habit, UserSetting):
        model.objects.filter(owner=user).delete()
    Achievement.objects.filter(owner=user).update(is_unlocked=False, unlocked_at=None)
    PlayerProfile.objects.filter(user=user).delete()
    logger.warning("All data for user %s has been permanently deleted", user.pk)


def clear_month(user, month: str) -> int:
    """Delete the daily entries of one ``YYYY-MM`` month; returns how many."""
    if not isinstance(month, str) or len(month) != 7:
        raise ValidationError("month must be in YYYY-MM format")
    start = parse_date_key(f"{month}-01")
    end = start.replace(day=monthrange(start.year, start.month)[1])
    deleted, _ = DailyEntry.objects.filter(
        owner=user, date__range=(start.isoformat(), end.isoformat())
    ).delete()
    logger.warning("Cleared %s daily entries of %s for user %s", deleted, month, user.pk)
    return deleted
