from functools import wraps

import graphene
from graphene.types.generic import GenericScalar
from graphene_django import DjangoObjectType
from graphql import GraphQLError

from .exceptions import PushForwardError, ValidationError
from .models import Achievement, DailyEntry, Habit, PlayerProfile, Streak
from habits.services import achievements, crud, daily_entries, gamification, habit_stats, streaks, tiers
from habits.services.timezones import FALLBACK_TIME_ZONE, today_key


def _today(info) -> str:
    return today_key(getattr(info.context, "time_zone", FALLBACK_TIME_ZONE))


def _require_user(info):
    user = info.context.user
    if user.is_anonymous:
        raise GraphQLError("Authentication required", extensions={"code": "UNAUTHENTICATED"})
    return user


def service_errors(fn):
    """Surface service failures as GraphQL errors carrying their code."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except PushForwardError as e:
            raise GraphQLError(e.message, extensions={"code": e.code}) from e
    return wrapper


class HabitType(DjangoObjectType):
    tags = graphene.List(graphene.String)
    badges = graphene.List(graphene.String)
    consistency = graphene.Float()
    completed_today = graphene.Boolean()
    last_7_days_count = graphene.Int()
    best_streak = graphene.Int()

    class Meta:
        model = Habit
        convert_choices_to_enum = False
        fields = (
            "id", "name", "emoji", "order", "is_active", "created_at", "difficulty_rating", "ai_analysis",
            "last_analyzed", "level", "experience", "experience_to_next", "streak", "longest_streak",
            "completion_rate", "total_completions", "tier", "last_completed",
        )

    def resolve_tags(self, info):
        return list(self.tags or [])

    def resolve_badges(self, info):
        return list(self.badges or [])

    def resolve_consistency(self, info):
        return tiers.consistency_score(self.longest_streak, self.total_completions)

    def resolve_completed_today(self, info):
        return habit_stats.completed_today(self, _today(info))

    def resolve_last_7_days_count(self, info):
        return habit_stats.last_7_days_count(self, _today(info))

    def resolve_best_streak(self, info):
        return habit_stats.best_streak(self)


class PlayerProfileType(DjangoObjectType):
    rank = graphene.String()
    next_rank = graphene.String()
    progress_to_next = graphene.Float()

    class Meta:
        model = PlayerProfile
        fields = ("total_xp", "level")

    def resolve_rank(self, info):
        return gamification.rank_for_level(self.level).name

    def resolve_next_rank(self, info):
        upcoming = gamification.next_rank(self.level)
        return upcoming.name if upcoming else None

    def resolve_progress_to_next(self, info):
        return gamification.rank_info(self.level)["progress_to_next"]


class AchievementType(DjangoObjectType):
    class Meta:
        model = Achievement
        fields = ("id", "key", "type", "name", "description", "badge", "requirement", "is_unlocked", "unlocked_at")


class StreakType(DjangoObjectType):
    class Meta:
        model = Streak
        fields = ("type", "current_streak", "longest_streak", "last_active_date")


class DailyEntryType(DjangoObjectType):
    habit_completions = GenericScalar()
    subtask_completions = GenericScalar()

    class Meta:
        model = DailyEntry
        fields = (
            "id", "date", "punctuality_score", "adherence_score", "notes",
            "is_completed", "completed_at", "auto_finalized",
        )


class Query(graphene.ObjectType):
    habits = graphene.List(HabitType, active_only=graphene.Boolean(required=False))
    habit = graphene.Field(HabitType, id=graphene.ID(required=True))
    profile = graphene.Field(PlayerProfileType)
    achievements = graphene.List(AchievementType)
    streaks = graphene.List(StreakType)
    daily_entries = graphene.List(
        DailyEntryType, start_date=graphene.String(required=False), end_date=graphene.String(required=False)
    )
    daily_entry = graphene.Field(DailyEntryType, date=graphene.String(required=True))

    def resolve_habits(self, info, active_only=None):
        user = info.context.user
        if user.is_anonymous:
            return Habit.objects.none()

        today = _today(info)
        qs = Habit.objects.filter(owner=user)
        if active_only is True:
            qs = qs.filter(is_active=True)

        qs = habit_stats.with_habit_stats(qs, today).prefetch_related("completions")
        return gamification.decay_inactive_streaks(qs, today)

    @service_errors
    def resolve_habit(self, info, id):
        user = _require_user(info)
        habit = crud.get_habit(user, id)
        return gamification.decay_inactive_streaks([habit], _today(info))[0]

    def resolve_profile(self, info):
        user = info.context.user
        if user.is_anonymous:
            return None
        return gamification.reconcile_profile_from_history(user=user)

    def resolve_achievements(self, info):
        return achievements.list_achievements(_require_user(info))

    def resolve_streaks(self, info):
        return streaks.refresh_streaks(user=_require_user(info), today=_today(info))

    @service_errors
    def resolve_daily_entries(self, info, start_date=None, end_date=None):
        return daily_entries.list_entries(_require_user(info), start_date, end_date)

    @service_errors
    def resolve_daily_entry(self, info, date):
        return daily_entries.get_entry(_require_user(info), date)


class CreateHabit(graphene.Mutation):
    class Arguments:
        name = graphene.String(required=True)
        emoji = graphene.String(required=True)
        tags = graphene.List(graphene.String, required=False)
        difficulty_rating = graphene.Int(required=False)

    habit = graphene.Field(HabitType)

    @service_errors
    def mutate(self, info, name, emoji, tags=None, difficulty_rating=None):
        user = _require_user(info)
        data = {"name": name, "emoji": emoji}
        if tags is not None:
            data["tags"] = tags
        if difficulty_rating is not None:
            data["difficultyRating"] = difficulty_rating
        return CreateHabit(habit=crud.create_habit(user, data))


class ToggleHabitActive(graphene.Mutation):
    class Arguments:
        id = graphene.ID(required=True)
        is_active = graphene.Boolean(required=True)

    habit = graphene.Field(HabitType)

    @service_errors
    def mutate(self, info, id, is_active):
        habit = crud.update_habit(_require_user(info), id, {"isActive": is_active})
        return ToggleHabitActive(habit=habit)


class DeleteHabit(graphene.Mutation):
    class Arguments:
        id = graphene.ID(required=True)
        confirm = graphene.Boolean(required=True)

    ok = graphene.Boolean(required=True)
    deleted_id = graphene.ID(required=True)

    @service_errors
    def mutate(self, info, id, confirm):
        if not confirm:
            raise ValidationError("Deleting a habit is irreversible; pass confirm: true")
        crud.delete_habit(_require_user(info), id)
        return DeleteHabit(ok=True, deleted_id=id)


class UpdateProgress(graphene.Mutation):
    class Arguments:
        habit_id = graphene.ID(required=True)
        completed = graphene.Boolean(required=True)
        date = graphene.String(required=False)

    habit = graphene.Field(HabitType)
    profile = graphene.Field(PlayerProfileType)
    changed = graphene.Boolean(required=True)
    xp_delta = graphene.Int(required=True)
    leveled_up = graphene.Boolean(required=True)
    tier_promoted = graphene.Boolean(required=True)
    previous_tier = graphene.String()

    @classmethod
    @service_errors
    def mutate(cls, root, info, habit_id, completed, date=None):
        user = _require_user(info)
        result = gamification.update_habit_progress(
            user=user, habit_id=habit_id, completed=completed, date=date or _today(info),
            time_zone=getattr(info.context, "time_zone", FALLBACK_TIME_ZONE),
        )
        return cls(
            habit=result.habit,
            profile=result.profile,
            changed=result.changed,
            xp_delta=result.xp_delta,
            leveled_up=result.leveled_up,
            tier_promoted=result.tier_promoted,
            previous_tier=result.previous_tier,
        )


class LevelUp(graphene.Mutation):
    class Arguments:
        habit_id = graphene.ID(required=True)

    habit = graphene.Field(HabitType)

    @service_errors
    def mutate(self, info, habit_id):
        return LevelUp(habit=gamification.level_up_habit(user=_require_user(info), habit_id=habit_id))


class SaveEntry(graphene.Mutation):
    class Arguments:
        date = graphene.String(required=True)
        habit_completions = GenericScalar(required=False)
        subtask_completions = GenericScalar(required=False)
        punctuality_score = graphene.Int(required=False)
        adherence_score = graphene.Int(required=False)
        notes = graphene.String(required=False)
        is_completed = graphene.Boolean(required=False)

    entry = graphene.Field(DailyEntryType)
    created = graphene.Boolean(required=True)

    FIELD_NAMES = {
        "habit_completions": "habitCompletions",
        "subtask_completions": "subtaskCompletions",
        "punctuality_score": "punctualityScore",
        "adherence_score": "adherenceScore",
        "notes": "notes",
        "is_completed": "isCompleted",
    }

    @classmethod
    @service_errors
    def mutate(cls, root, info, date, **fields):
        user = _require_user(info)
        data = {cls.FIELD_NAMES[k]: v for k, v in fields.items() if v is not None}
        entry, created = daily_entries.save_entry(user=user, date=date, data=data)
        return cls(entry=entry, created=created)


class FinalizeEntry(graphene.Mutation):
    class Arguments:
        date = graphene.String(required=True)

    entry = graphene.Field(DailyEntryType)

    @service_errors
    def mutate(self, info, date):
        return FinalizeEntry(entry=daily_entries.finalize_entry(user=_require_user(info), date=date))


class Mutation(graphene.ObjectType):
    create_habit = CreateHabit.Field()
    toggle_habit_active = ToggleHabitActive.Field()
    delete_habit = DeleteHabit.Field()
    update_progress = UpdateProgress.Field()
    level_up = LevelUp.Field()
    save_entry = SaveEntry.Field()
    finalize_entry = FinalizeEntry.Field()
