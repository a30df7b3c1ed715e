"""
URL configuration for the PushForward backend.

REST endpoints live under ``api/``; the GraphQL schema is served at ``graphql/``.
"""
from django.contrib import admin
from django.urls import path
from django.views.decorators.csrf import csrf_exempt
from graphene_django.views import GraphQLView

from habits import views

api_urlpatterns = [
    path("api/habits", views.habits_collection, name="habits"),
    path("api/habits/<int:habit_id>", views.habit_detail, name="habit-detail"),
    path("api/habits/<int:habit_id>/progress", views.habit_progress, name="habit-progress"),
    path("api/habits/<int:habit_id>/level-up", views.habit_level_up, name="habit-level-up"),
    path("api/habits/<int:habit_id>/analyze", views.habit_analyze, name="habit-analyze"),
    path("api/habits/<int:habit_id>/subtasks", views.habit_subtasks, name="habit-subtasks"),
    path("api/subtasks/<int:subtask_id>", views.subtask_detail, name="subtask-detail"),
    path("api/daily-entries", views.daily_entries_collection, name="daily-entries"),
    path("api/daily-entries/auto-finalize", views.daily_entries_auto_finalize, name="daily-entries-auto-finalize"),
    path("api/daily-entries/<str:date>", views.daily_entry, name="daily-entry"),
    path("api/daily-entries/<str:date>/finalize", views.daily_entry_finalize, name="daily-entry-finalize"),
    path("api/streaks", views.streaks_collection, name="streaks"),
    path("api/achievements", views.achievements_collection, name="achievements"),
    path("api/goals", views.goals_collection, name="goals"),
    path("api/profile", views.profile, name="profile"),
    path("api/weekly-reviews/<str:week_start_date>", views.weekly_review, name="weekly-review"),
    path("api/settings", views.settings_collection, name="settings"),
    path("api/ai/habit-suggestions", views.ai_habit_suggestions, name="ai-habit-suggestions"),
    path("api/ai/weekly-insights", views.ai_weekly_insights, name="ai-weekly-insights"),
    path("api/ai/motivation", views.ai_motivation, name="ai-motivation"),
    path("api/ai/chat", views.ai_chat, name="ai-chat"),
    path("api/reset", views.reset_data, name="reset"),
    path("api/clear-month", views.clear_month_data, name="clear-month"),
]

urlpatterns = [
    path('admin/', admin.site.urls),
    path('graphql/', csrf_exempt(GraphQLView.as_view(graphiql=True))),
] + api_urlpatterns
