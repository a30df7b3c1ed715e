from __future__ import annotations
from typing import TYPE_CHECKING

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

HABIT_TAGS = ("STR", "AGI", "INT", "VIT", "PER")
MAX_HABIT_TAGS = 3
HABIT_NAME_MAX_LENGTH = 50


class Habit(models.Model):
    class Tier(models.TextChoices):
        BRONZE = "bronze"
        SILVER = "silver"
        GOLD = "gold"
        PLATINUM = "platinum"
        DIAMOND = "diamond"

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='habits',
    )
    name = models.CharField(max_length=HABIT_NAME_MAX_LENGTH)
    emoji = models.CharField(max_length=16)
    tags = models.JSONField(default=list, blank=True)
    order = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)
    # seeded for a new user rather than created by them
    is_default = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    difficulty_rating = models.PositiveSmallIntegerField(
        default=3, validators=[MinValueValidator(1), MaxValueValidator(5)]
    )
    ai_analysis = models.TextField(blank=True)
    last_analyzed = models.DateTimeField(null=True, blank=True)

    # Progression: written only through habits.services.progression
    level = models.PositiveIntegerField(default=1)
    experience = models.PositiveIntegerField(default=0)
    experience_to_next = models.PositiveIntegerField(default=120)
    streak = models.PositiveIntegerField(default=0)
    longest_streak = models.PositiveIntegerField(default=0)
    completion_rate = models.PositiveSmallIntegerField(default=0)
    total_completions = models.PositiveIntegerField(default=0)
    tier = models.CharField(max_length=16, choices=Tier.choices, default=Tier.BRONZE)
    badges = models.JSONField(default=list, blank=True)
    last_completed = models.CharField(max_length=10, null=True, blank=True)
    last_decay_at = models.CharField(max_length=10, null=True, blank=True)
    last_award = models.JSONField(null=True, blank=True)

    class Meta:
        ordering = ["order", "id"]

    if TYPE_CHECKING:
        # Django dynamically injects these via related_name
        completions = None
        subtasks = None

    def __str__(self) -> str:
        return f"{self.emoji} {self.name}".strip()


class CompletionRecord(models.Model):
    """One applied completion of a habit for a date key."""

    habit = models.ForeignKey(Habit, on_delete=models.CASCADE,
                              related_name="completions")
    date = models.CharField(max_length=10)
    xp_awarded = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["habit", "date"], name="unique_completion_per_habit_per_day")
        ]
        ordering = ["-date", "-created_at"]

    def __str__(self) -> str:
        return f"{self.habit.name} @ {self.date}"


class Subtask(models.Model):
    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="subtasks")
    habit = models.ForeignKey(Habit, on_delete=models.CASCADE, related_name="subtasks")
    title = models.CharField(max_length=120)
    order = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["order", "id"]

    def __str__(self) -> str:
        return self.title


class DailyEntry(models.Model):
    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="daily_entries")
    date = models.CharField(max_length=10)
    habit_completions = models.JSONField(default=dict, blank=True)
    subtask_completions = models.JSONField(default=dict, blank=True)
    punctuality_score = models.PositiveSmallIntegerField(
        default=3, validators=[MinValueValidator(1), MaxValueValidator(5)]
    )
    adherence_score = models.PositiveSmallIntegerField(
        default=3, validators=[MinValueValidator(1), MaxValueValidator(5)]
    )
    notes = models.TextField(blank=True, default="")
    is_completed = models.BooleanField(default=False)
    completed_at = models.DateTimeField(null=True, blank=True)
    auto_finalized = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["owner", "date"], name="unique_daily_entry_per_user_per_day")
        ]
        ordering = ["date"]

    def __str__(self) -> str:
        return f"{self.owner_id} @ {self.date}"


class Streak(models.Model):
    DAILY_COMPLETION = "daily_completion"

    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="streaks")
    type = models.CharField(max_length=32)
    current_streak = models.PositiveIntegerField(default=0)
    longest_streak = models.PositiveIntegerField(default=0)
    last_active_date = models.CharField(max_length=10, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["owner", "type"], name="unique_streak_type_per_user")
        ]
        ordering = ["type"]


class Achievement(models.Model):
    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="achievements")
    key = models.CharField(max_length=48)
    type = models.CharField(max_length=16)
    name = models.CharField(max_length=64)
    description = models.CharField(max_length=200)
    badge = models.CharField(max_length=16)
    requirement = models.PositiveIntegerField()
    is_unlocked = models.BooleanField(default=False)
    unlocked_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["owner", "key"], name="unique_achievement_per_user")
        ]
        ordering = ["id"]

    def __str__(self) -> str:
        return self.name


class Goal(models.Model):
    class Period(models.TextChoices):
        DAILY = "daily"
        WEEKLY = "weekly"
        MONTHLY = "monthly"

    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="goals")
    tag = models.CharField(max_length=3)
    period = models.CharField(max_length=8, choices=Period.choices)
    target_count = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]


class ChatMessage(models.Model):
    class Role(models.TextChoices):
        USER = "user"
        ASSISTANT = "assistant"

    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="chat_messages")
    role = models.CharField(max_length=10, choices=Role.choices)
    content = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]


class WeeklyReview(models.Model):
    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="weekly_reviews")
    week_start_date = models.CharField(max_length=10)
    accomplishment = models.TextField(blank=True, default="")
    breakdown = models.TextField(blank=True, default="")
    adjustment = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["owner", "week_start_date"], name="unique_weekly_review_per_user")
        ]
        ordering = ["-week_start_date"]


class UserSetting(models.Model):
    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="app_settings")
    key = models.CharField(max_length=64)
    value = models.TextField()
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["owner", "key"], name="unique_setting_per_user")
        ]


class PlayerProfile(models.Model):
    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="player_profile")
    total_xp = models.PositiveIntegerField(default=0)
    level = models.PositiveIntegerField(default=1)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.user_id} L{self.level}"
