import json

import pytest
from django.core.cache import cache
from django.db import DatabaseError
from django.test import Client
from freezegun import freeze_time

from habits.models import Achievement, ChatMessage, CompletionRecord, DailyEntry, Habit, UserSetting
from habits.services import ai, crud

pytestmark = pytest.mark.django_db

DAY = "2024-05-20"


@pytest.fixture()
def user(django_user_model):
    return django_user_model.objects.create_user(username="u1", password="pass12345", email="u1@example.com")


@pytest.fixture()
def api(client, user):
    client.force_login(user)
    return client


@pytest.fixture()
def habit(user):
    return Habit.objects.create(owner=user, name="Gym", emoji="💪")


@pytest.fixture(autouse=True)
def no_llm(settings, monkeypatch):
    settings.GEMINI_API_KEY = ""
    monkeypatch.setattr(ai, "_default_generator", None)
    cache.clear()


def _json(response):
    return json.loads(response.content)


def _post(client, url, data=None, **extra):
    return client.post(url, data=json.dumps(data or {}), content_type="application/json", **extra)


def _put(client, url, data=None, **extra):
    return client.put(url, data=json.dumps(data or {}), content_type="application/json", **extra)


def test_anonymous_requests_are_rejected():
    response = Client().get("/api/habits")
    assert response.status_code == 401
    assert _json(response)["code"] == "UNAUTHENTICATED"


def test_unsupported_method_is_405(api):
    assert api.delete("/api/habits").status_code == 405


def test_invalid_json_body_is_400(api):
    response = api.post("/api/habits", data="{not json", content_type="application/json")
    assert response.status_code == 400
    assert _json(response)["code"] == "VALIDATION"


# Habits

def test_list_habits__seeds_defaults_once(api, user):
    first = _json(api.get("/api/habits"))
    assert [h["name"] for h in first] == [name for name, _ in crud.DEFAULT_HABITS]

    Habit.objects.filter(owner=user).delete()
    assert _json(api.get("/api/habits")) == []


def test_list_habits__includes_daily_stats(api, user, habit):
    UserSetting.objects.create(owner=user, key=crud.DEFAULTS_SEEDED_KEY, value="1")
    CompletionRecord.objects.create(habit=habit, date=DAY, xp_awarded=24)

    with freeze_time("2024-05-20T12:00:00Z"):
        [item] = _json(api.get("/api/habits"))

    assert item["completedToday"] is True
    assert item["last7DaysCount"] == 1
    assert item["tier"] == "bronze"


def test_create_habit(api):
    response = _post(api, "/api/habits", {"name": "  Read <b>", "emoji": "📚", "tags": ["INT"], "difficultyRating": 5})

    assert response.status_code == 201
    body = _json(response)
    assert body["name"] == "Read b"
    assert body["tags"] == ["INT"]
    assert body["difficultyRating"] == 5
    assert body["experienceToNext"] == 160


@pytest.mark.parametrize(
    "payload",
    [
        {"emoji": "📚"},
        {"name": "x" * 51, "emoji": "📚"},
        {"name": "Read", "emoji": "📚", "tags": ["INT", "STR", "AGI", "VIT"]},
        {"name": "Read", "emoji": "📚", "tags": ["LUCK"]},
        {"name": "Read", "emoji": "📚", "difficultyRating": 6},
    ],
)
def test_create_habit__validation(api, payload):
    response = _post(api, "/api/habits", payload)
    assert response.status_code == 400
    assert "error" in _json(response)


def test_update_habit__progression_fields_are_read_only(api, habit):
    response = _put(api, f"/api/habits/{habit.pk}", {"level": 99})
    assert response.status_code == 400

    response = _put(api, f"/api/habits/{habit.pk}", {"name": "Gym day", "isActive": False})
    assert response.status_code == 200
    habit.refresh_from_db()
    assert (habit.name, habit.is_active, habit.level) == ("Gym day", False, 1)


def test_delete_habit__other_users_habit_is_404(api, django_user_model):
    stranger = django_user_model.objects.create_user(username="u2", password="pass12345")
    foreign = Habit.objects.create(owner=stranger, name="Secret", emoji="🔒")

    assert api.delete(f"/api/habits/{foreign.pk}?confirm=true").status_code == 404
    assert Habit.objects.filter(pk=foreign.pk).exists()


def test_delete_habit__requires_confirmation(api, user):
    habit = Habit.objects.create(owner=user, name="Gym", emoji="💪")

    assert api.delete(f"/api/habits/{habit.pk}").status_code == 400
    assert Habit.objects.filter(pk=habit.pk).exists()
    assert api.delete(f"/api/habits/{habit.pk}?confirm=true").status_code == 200
    assert not Habit.objects.filter(pk=habit.pk).exists()


# Progress

def test_progress__completion_awards_xp(api, habit):
    response = _post(api, f"/api/habits/{habit.pk}/progress", {"completed": True, "date": DAY})

    assert response.status_code == 200
    body = _json(response)
    assert body["xpDelta"] == 24
    assert body["changed"] is True
    assert body["habit"]["totalCompletions"] == 1
    assert body["habit"]["lastCompleted"] == DAY
    assert body["userProgress"]["totalXp"] == 24
    assert body["userProgress"]["rank"] == "Novice"


def test_progress__repeat_is_idempotent(api, habit):
    _post(api, f"/api/habits/{habit.pk}/progress", {"completed": True, "date": DAY})
    body = _json(_post(api, f"/api/habits/{habit.pk}/progress", {"completed": True, "date": DAY}))

    assert body["changed"] is False
    assert body["habit"]["experience"] == 24
    assert body["userProgress"]["totalXp"] == 24


def test_progress__undo_same_day(api, habit):
    _post(api, f"/api/habits/{habit.pk}/progress", {"completed": True, "date": DAY})
    body = _json(_post(api, f"/api/habits/{habit.pk}/progress", {"completed": False, "date": DAY}))

    assert body["xpDelta"] == -24
    assert body["habit"]["totalCompletions"] == 0
    assert body["habit"]["badges"] == []
    assert body["userProgress"]["totalXp"] == 0


def test_progress__stale_undo_is_409(api, habit):
    _post(api, f"/api/habits/{habit.pk}/progress", {"completed": True, "date": "2024-05-19"})
    response = _post(api, f"/api/habits/{habit.pk}/progress", {"completed": False, "date": DAY})

    assert response.status_code == 409
    assert _json(response)["code"] == "STALE_REVERSAL"


def test_progress__finalized_day_is_409(api, user, habit):
    DailyEntry.objects.create(owner=user, date=DAY, is_completed=True)
    response = _post(api, f"/api/habits/{habit.pk}/progress", {"completed": True, "date": DAY})

    assert response.status_code == 409
    assert _json(response)["code"] == "ENTRY_FINALIZED"


@pytest.mark.parametrize(
    "payload",
    [{}, {"completed": "yes"}, {"completed": True, "date": "20-05-2024"}, {"completed": True, "date": "2024-02-30"}],
)
def test_progress__bad_input_is_400(api, habit, payload):
    assert _post(api, f"/api/habits/{habit.pk}/progress", payload).status_code == 400


def test_progress__defaults_to_today_in_client_time_zone(api, habit):
    with freeze_time("2024-01-15T03:00:00Z"):
        body = _json(_post(
            api, f"/api/habits/{habit.pk}/progress", {"completed": True}, HTTP_X_TIMEZONE="America/Los_Angeles",
        ))
    assert body["habit"]["lastCompleted"] == "2024-01-14"


def test_progress__unknown_time_zone_header_falls_back_to_utc(api, habit):
    with freeze_time("2024-01-15T03:00:00Z"):
        body = _json(_post(api, f"/api/habits/{habit.pk}/progress", {"completed": True}, HTTP_X_TIMEZONE="Mars/Base"))
    assert body["habit"]["lastCompleted"] == "2024-01-15"


def test_entry_save_and_progress_are_independent_writes(api, habit):
    # The daily entry and the habit's progression are written by separate
    # calls; saving one never updates the other.
    _put(api, f"/api/daily-entries/{DAY}", {"habitCompletions": {str(habit.pk): True}})

    habit.refresh_from_db()
    assert habit.total_completions == 0

    _post(api, f"/api/habits/{habit.pk}/progress", {"completed": True, "date": DAY})
    _post(api, f"/api/habits/{habit.pk}/progress", {"completed": False, "date": DAY})

    entry = _json(api.get(f"/api/daily-entries/{DAY}"))
    assert entry["habitCompletions"] == {str(habit.pk): True}


def test_level_up_endpoint(api, habit):
    assert _post(api, f"/api/habits/{habit.pk}/level-up").status_code == 400

    Habit.objects.filter(pk=habit.pk).update(experience=125)
    body = _json(_post(api, f"/api/habits/{habit.pk}/level-up"))
    assert (body["level"], body["experience"]) == (2, 5)


def test_analyze_endpoint_uses_heuristic_without_llm(api, habit):
    body = _json(_post(api, f"/api/habits/{habit.pk}/analyze"))

    assert body["difficultyRating"] == 4
    assert body["experienceToNext"] == 140
    assert body["aiAnalysis"]
    assert body["lastAnalyzed"]


# Subtasks

def test_subtask_crud(api, habit):
    created = _post(api, f"/api/habits/{habit.pk}/subtasks", {"title": "Warm up"})
    assert created.status_code == 201
    subtask_id = _json(created)["id"]

    updated = _json(_put(api, f"/api/subtasks/{subtask_id}", {"title": "Warm up well", "isActive": False}))
    assert (updated["title"], updated["isActive"]) == ("Warm up well", False)

    assert [s["id"] for s in _json(api.get(f"/api/habits/{habit.pk}/subtasks"))] == [subtask_id]
    assert api.delete(f"/api/subtasks/{subtask_id}").status_code == 200
    assert api.delete(f"/api/subtasks/{subtask_id}").status_code == 404


# Daily entries

def test_daily_entry__missing_is_404(api):
    response = api.get(f"/api/daily-entries/{DAY}")
    assert response.status_code == 404


def test_daily_entry__invalid_date_is_400(api):
    assert api.get("/api/daily-entries/2024-13-40").status_code == 400


def test_daily_entry__create_update_finalize(api, habit):
    created = _post(api, f"/api/daily-entries/{DAY}", {"notes": "ok", "habitCompletions": {str(habit.pk): True}})
    assert created.status_code == 201
    assert _json(created)["punctualityScore"] == 5

    updated = _put(api, f"/api/daily-entries/{DAY}", {"notes": "better"})
    assert updated.status_code == 200

    finalized = _json(_post(api, f"/api/daily-entries/{DAY}/finalize"))
    assert finalized["isCompleted"] is True

    locked = _put(api, f"/api/daily-entries/{DAY}", {"notes": "too late"})
    assert locked.status_code == 409
    assert _json(locked)["code"] == "ENTRY_FINALIZED"


def test_daily_entries__range_listing(api, user):
    for day in ("2024-05-01", "2024-05-10", "2024-05-31"):
        DailyEntry.objects.create(owner=user, date=day)

    body = _json(api.get("/api/daily-entries", {"start_date": "2024-05-05", "end_date": "2024-05-31"}))
    assert [e["date"] for e in body] == ["2024-05-10", "2024-05-31"]


def test_auto_finalize_endpoint(api, user):
    DailyEntry.objects.create(owner=user, date="2024-05-19", notes="did great")

    with freeze_time("2024-05-20T09:00:00Z"):
        first = _json(_post(api, "/api/daily-entries/auto-finalize"))
        second = _json(_post(api, "/api/daily-entries/auto-finalize"))

    assert first["finalized"]["date"] == "2024-05-19"
    assert first["finalized"]["autoFinalized"] is True
    assert second["finalized"] is None


# Streaks, achievements, goals, profile

def test_streaks_and_achievements(api, habit):
    with freeze_time("2024-05-20T12:00:00Z"):
        _post(api, f"/api/daily-entries/{DAY}", {"habitCompletions": {str(habit.pk): True}, "isCompleted": True})
        [streak] = _json(api.get("/api/streaks"))

    assert streak["currentStreak"] == 1
    achievements = {a["key"]: a for a in _json(api.get("/api/achievements"))}
    assert len(achievements) == len(Achievement.objects.filter(owner=habit.owner))
    assert achievements["streak_1"]["isUnlocked"] is True
    assert achievements["streak_3"]["isUnlocked"] is False


def test_streaks__lapsed_streak_reads_as_zero(api, habit):
    with freeze_time("2024-05-20T12:00:00Z"):
        _post(api, f"/api/daily-entries/{DAY}", {"habitCompletions": {str(habit.pk): True}, "isCompleted": True})
    with freeze_time("2024-05-23T12:00:00Z"):
        [streak] = _json(api.get("/api/streaks"))
    assert (streak["currentStreak"], streak["longestStreak"]) == (0, 1)


def test_goals(api, user):
    tagged = Habit.objects.create(owner=user, name="Lift", emoji="🏋️", tags=["STR"])
    CompletionRecord.objects.create(habit=tagged, date="2024-05-19", xp_awarded=24)
    CompletionRecord.objects.create(habit=tagged, date="2024-05-01", xp_awarded=24)

    with freeze_time("2024-05-20T12:00:00Z"):
        created = _post(api, "/api/goals", {"tag": "STR", "period": "weekly", "targetCount": 1})
        listed = _json(api.get("/api/goals"))

    assert created.status_code == 201
    assert listed[0]["count"] == 1
    assert listed[0]["achieved"] is True
    assert listed[0]["start"] == "2024-05-14"
    assert _post(api, "/api/goals", {"tag": "STR", "period": "yearly", "targetCount": 1}).status_code == 400


def test_profile(api, habit):
    CompletionRecord.objects.create(habit=habit, date=DAY, xp_awarded=150)
    body = _json(api.get("/api/profile"))
    assert (body["totalXp"], body["level"], body["rank"], body["nextRank"]) == (150, 2, "Novice", "Apprentice")


# Weekly reviews and settings

def test_weekly_review(api):
    assert api.get("/api/weekly-reviews/2024-05-20").status_code == 404
    assert _put(api, "/api/weekly-reviews/2024-05-21", {"accomplishment": "x"}).status_code == 400

    saved = _json(_put(api, "/api/weekly-reviews/2024-05-20", {"accomplishment": "Shipped", "adjustment": "Sleep"}))
    assert saved["accomplishment"] == "Shipped"
    assert _json(api.get("/api/weekly-reviews/2024-05-20"))["adjustment"] == "Sleep"


def test_settings(api):
    assert _post(api, "/api/settings", {"key": "gemini_model", "value": "gpt-4"}).status_code == 400
    assert _post(api, "/api/settings", {"key": "gemini_model", "value": "gemini-2.5-flash"}).status_code == 200
    assert _json(api.get("/api/settings"))["gemini_model"] == "gemini-2.5-flash"


# AI endpoints without a configured model

def test_ai_endpoints_fall_back(api, user, habit):
    suggestions = _json(api.get("/api/ai/habit-suggestions"))
    assert 3 <= len(suggestions) <= 5

    insights = _json(_post(api, "/api/ai/weekly-insights", {"startDate": "2024-05-13", "endDate": "2024-05-19"}))
    assert set(insights) == set(ai.INSIGHT_KEYS)

    motivation = _json(_post(api, "/api/ai/motivation", {"completionRate": 80, "currentStreak": 2}))
    assert motivation["message"] == ai.template_motivation(80, 2)
    assert _post(api, "/api/ai/motivation", {"completionRate": "lots"}).status_code == 400


def test_ai_chat_stores_history(api, user):
    response = _post(api, "/api/ai/chat", {"message": "  Help me focus  "})

    assert response.status_code == 201
    assert _json(response)["content"] == ai.CHAT_FALLBACK
    history = _json(api.get("/api/ai/chat"))
    assert [(m["role"], m["content"]) for m in history] == [("user", "Help me focus"), ("assistant", ai.CHAT_FALLBACK)]
    assert _post(api, "/api/ai/chat", {"message": "  "}).status_code == 400


# Destructive operations

def test_reset_requires_confirmation(api, user, habit):
    assert _post(api, "/api/reset").status_code == 400
    assert Habit.objects.filter(owner=user).exists()

    assert _post(api, "/api/reset", {"confirm": True}).status_code == 200
    assert not Habit.objects.filter(owner=user).exists()
    assert not ChatMessage.objects.filter(owner=user).exists()


def test_clear_month(api, user):
    for day in ("2024-04-30", "2024-05-01", "2024-05-31", "2024-06-01"):
        DailyEntry.objects.create(owner=user, date=day)

    assert _post(api, "/api/clear-month", {"month": "2024-05"}).status_code == 400
    body = _json(_post(api, "/api/clear-month", {"month": "2024-05", "confirm": True}))

    assert body["deleted"] == 2
    assert list(DailyEntry.objects.filter(owner=user).values_list("date", flat=True)) == ["2024-04-30", "2024-06-01"]


def test_storage_failure_is_503(api, monkeypatch):
    def broken(user, data):
        raise DatabaseError("disk I/O error")

    monkeypatch.setattr(crud, "create_habit", broken)
    response = _post(api, "/api/habits", {"name": "Read", "emoji": "📚"})

    assert response.status_code == 503
    assert _json(response)["code"] == "UPSTREAM_UNAVAILABLE"
