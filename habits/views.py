import json
import logging
from functools import wraps

from django.db import DatabaseError
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from habits import serializers
from habits.exceptions import PushForwardError, ValidationError
from habits.models import ChatMessage, Habit
from habits.services import (
    achievements,
    ai,
    crud,
    daily_entries,
    gamification,
    goals,
    habit_stats,
    streaks,
)
from habits.services.timezones import parse_date_key, today_key

logger = logging.getLogger(__name__)

GEMINI_MODEL_SETTING = "gemini_model"
CHAT_HISTORY_LIMIT = 20


def api_view(*methods):
    """JSON endpoint: login required, typed errors mapped to status codes."""
    def decorator(view):
        @wraps(view)
        def wrapper(request, *args, **kwargs):
            if not request.user.is_authenticated:
                return JsonResponse({"error": "Authentication required", "code": "UNAUTHENTICATED"}, status=401)
            try:
                return view(request, *args, **kwargs)
            except PushForwardError as e:
                return JsonResponse({"error": e.message, "code": e.code}, status=e.status_code)
            except DatabaseError:
                logger.exception("Storage failure in %s", view.__name__)
                return JsonResponse(
                    {"error": "Storage unavailable, please retry", "code": "UPSTREAM_UNAVAILABLE"}, status=503
                )
        return csrf_exempt(require_http_methods(list(methods))(wrapper))
    return decorator


def _body(request) -> dict:
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _today(request) -> str:
    return today_key(request.time_zone)


def _preferred_model(user):
    return crud.get_setting(user, GEMINI_MODEL_SETTING)


def _require_confirmation(data: dict) -> None:
    if data.get("confirm") is not True:
        raise ValidationError("This action is irreversible; send {\"confirm\": true} to proceed")


# Habits

@api_view("GET", "POST")
def habits_collection(request):
    user = request.user
    if request.method == "POST":
        habit = crud.create_habit(user, _body(request))
        return JsonResponse(serializers.habit_to_dict(habit), status=201)

    crud.seed_default_habits(user)
    today = _today(request)
    qs = habit_stats.with_habit_stats(Habit.objects.filter(owner=user), today)
    habits = gamification.decay_inactive_streaks(qs, today)
    return JsonResponse([serializers.habit_to_dict(h, today) for h in habits], safe=False)


@api_view("PUT", "DELETE")
def habit_detail(request, habit_id):
    if request.method == "DELETE":
        if request.GET.get("confirm") != "true":
            raise ValidationError("Deleting a habit is irreversible; pass ?confirm=true to proceed")
        crud.delete_habit(request.user, habit_id)
        return JsonResponse({"message": "Habit deleted successfully"})
    habit = crud.update_habit(request.user, habit_id, _body(request))
    return JsonResponse(serializers.habit_to_dict(habit))


@api_view("POST")
def habit_progress(request, habit_id):
    data = _body(request)
    completed = data.get("completed")
    if not isinstance(completed, bool):
        raise ValidationError("completed must be a boolean")
    date = data.get("date") or _today(request)
    parse_date_key(date)

    result = gamification.update_habit_progress(
        user=request.user, habit_id=habit_id, completed=completed, date=date,
        time_zone=request.time_zone,
    )
    return JsonResponse({
        "habit": serializers.habit_to_dict(result.habit),
        "userProgress": serializers.profile_to_dict(result.profile),
        "xpDelta": result.xp_delta,
        "changed": result.changed,
        "leveledUp": result.leveled_up,
        "tierPromoted": result.tier_promoted,
        "previousTier": result.previous_tier,
    })


@api_view("POST")
def habit_level_up(request, habit_id):
    habit = gamification.level_up_habit(user=request.user, habit_id=habit_id)
    return JsonResponse(serializers.habit_to_dict(habit))


@api_view("POST")
def habit_analyze(request, habit_id):
    habit = crud.get_habit(request.user, habit_id)
    rating, analysis = ai.analyze_difficulty(
        habit.name, list(habit.tags or []), preferred_model=_preferred_model(request.user)
    )
    habit = gamification.rerate_habit(
        user=request.user, habit_id=habit.pk, difficulty_rating=rating, analysis=analysis
    )
    return JsonResponse(serializers.habit_to_dict(habit))


# Subtasks

@api_view("GET", "POST")
def habit_subtasks(request, habit_id):
    if request.method == "POST":
        subtask = crud.create_subtask(request.user, habit_id, _body(request))
        return JsonResponse(serializers.subtask_to_dict(subtask), status=201)
    subtasks = crud.list_subtasks(request.user, habit_id)
    return JsonResponse([serializers.subtask_to_dict(s) for s in subtasks], safe=False)


@api_view("PUT", "DELETE")
def subtask_detail(request, subtask_id):
    if request.method == "DELETE":
        crud.delete_subtask(request.user, subtask_id)
        return JsonResponse({"message": "Subtask deleted successfully"})
    subtask = crud.update_subtask(request.user, subtask_id, _body(request))
    return JsonResponse(serializers.subtask_to_dict(subtask))


# Daily entries

@api_view("GET")
def daily_entries_collection(request):
    entries = daily_entries.list_entries(
        request.user, request.GET.get("start_date"), request.GET.get("end_date")
    )
    return JsonResponse([serializers.entry_to_dict(e) for e in entries], safe=False)


@api_view("GET", "POST", "PUT")
def daily_entry(request, date):
    parse_date_key(date)
    if request.method == "GET":
        entry = daily_entries.get_entry(request.user, date)
        if entry is None:
            return JsonResponse({"error": "Daily entry not found", "code": "NOT_FOUND"}, status=404)
        return JsonResponse(serializers.entry_to_dict(entry))

    entry, created = daily_entries.save_entry(user=request.user, date=date, data=_body(request))
    return JsonResponse(serializers.entry_to_dict(entry), status=201 if created else 200)


@api_view("POST")
def daily_entry_finalize(request, date):
    entry = daily_entries.finalize_entry(user=request.user, date=date)
    return JsonResponse(serializers.entry_to_dict(entry))


@api_view("POST")
def daily_entries_auto_finalize(request):
    entry = daily_entries.auto_finalize_previous(user=request.user, today=_today(request))
    return JsonResponse({"finalized": serializers.entry_to_dict(entry) if entry else None})


# Streaks, achievements, goals, profile

@api_view("GET")
def streaks_collection(request):
    items = streaks.refresh_streaks(user=request.user, today=_today(request))
    return JsonResponse([serializers.streak_to_dict(s) for s in items], safe=False)


@api_view("GET")
def achievements_collection(request):
    items = achievements.list_achievements(request.user)
    return JsonResponse([serializers.achievement_to_dict(a) for a in items], safe=False)


@api_view("GET", "POST")
def goals_collection(request):
    today = _today(request)
    if request.method == "POST":
        goal = goals.create_goal(request.user, _body(request))
        return JsonResponse(serializers.goal_progress_to_dict(goals.goal_progress(goal, today)), status=201)
    items = goals.list_goal_progress(request.user, today)
    return JsonResponse([serializers.goal_progress_to_dict(p) for p in items], safe=False)


@api_view("GET")
def profile(request):
    player = gamification.reconcile_profile_from_history(user=request.user)
    return JsonResponse(serializers.profile_to_dict(player))


# Weekly reviews and settings

@api_view("GET", "PUT")
def weekly_review(request, week_start_date):
    if request.method == "PUT":
        review = crud.save_weekly_review(request.user, week_start_date, _body(request))
        return JsonResponse(serializers.review_to_dict(review))
    review = crud.get_weekly_review(request.user, week_start_date)
    if review is None:
        return JsonResponse({"error": "Weekly review not found", "code": "NOT_FOUND"}, status=404)
    return JsonResponse(serializers.review_to_dict(review))


@api_view("GET", "POST")
def settings_collection(request):
    if request.method == "POST":
        data = _body(request)
        if data.get("key") == GEMINI_MODEL_SETTING and not ai.is_gemini_model(data.get("value")):
            raise ValidationError(f"Unknown model: {data.get('value')}")
        setting = crud.set_setting(request.user, data.get("key"), data.get("value"))
        return JsonResponse({"key": setting.key, "value": setting.value})
    values = {s.key: s.value for s in request.user.app_settings.all()}
    return JsonResponse(values)


# AI

@api_view("GET")
def ai_habit_suggestions(request):
    names = list(Habit.objects.filter(owner=request.user).values_list("name", flat=True))
    return JsonResponse(
        ai.suggest_habits(names, preferred_model=_preferred_model(request.user)), safe=False
    )


@api_view("POST")
def ai_weekly_insights(request):
    data = _body(request)
    entries = daily_entries.list_entries(request.user, data.get("startDate"), data.get("endDate"))
    habits = Habit.objects.filter(owner=request.user, is_active=True)
    insights = ai.weekly_insights(entries, habits, preferred_model=_preferred_model(request.user))
    return JsonResponse(insights)


@api_view("POST")
def ai_motivation(request):
    data = _body(request)
    rate, streak = data.get("completionRate"), data.get("currentStreak")
    if isinstance(rate, bool) or isinstance(streak, bool) \
            or not isinstance(rate, (int, float)) or not isinstance(streak, int):
        raise ValidationError("Invalid completion rate or streak")
    message = ai.motivational_message(rate, streak, preferred_model=_preferred_model(request.user))
    return JsonResponse({"message": message})


@api_view("GET", "POST")
def ai_chat(request):
    user = request.user
    if request.method == "GET":
        history = ChatMessage.objects.filter(owner=user)
        return JsonResponse([serializers.chat_to_dict(m) for m in history], safe=False)

    message = _body(request).get("message")
    if not isinstance(message, str) or not message.strip():
        raise ValidationError("message is required")

    recent = list(ChatMessage.objects.filter(owner=user).order_by("-created_at", "-id")[:CHAT_HISTORY_LIMIT])
    history = [{"role": m.role, "content": m.content} for m in reversed(recent)]
    reply = ai.chat_reply(message.strip(), history, preferred_model=_preferred_model(user))

    ChatMessage.objects.create(owner=user, role=ChatMessage.Role.USER, content=message.strip())
    answer = ChatMessage.objects.create(owner=user, role=ChatMessage.Role.ASSISTANT, content=reply)
    return JsonResponse(serializers.chat_to_dict(answer), status=201)


# Destructive

@api_view("POST")
def reset_data(request):
    _require_confirmation(_body(request))
    crud.reset_user_data(request.user)
    return JsonResponse({"message": "All data has been permanently deleted"})


@api_view("POST")
def clear_month_data(request):
    data = _body(request)
    _require_confirmation(data)
    deleted = crud.clear_month(request.user, data.get("month"))
    return JsonResponse({"deleted": deleted})
