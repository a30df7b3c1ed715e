from typing import Optional

from habits.models import Achievement, ChatMessage, DailyEntry, Habit, PlayerProfile, Streak, Subtask, WeeklyReview
from habits.services import gamification, habit_stats, tiers
from habits.services.goals import GoalProgress


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def habit_to_dict(habit: Habit, today: Optional[str] = None) -> dict:
    data = {
        "id": habit.pk,
        "name": habit.name,
        "emoji": habit.emoji,
        "tags": list(habit.tags or []),
        "order": habit.order,
        "isActive": habit.is_active,
        "createdAt": _iso(habit.created_at),
        "difficultyRating": habit.difficulty_rating,
        "aiAnalysis": habit.ai_analysis,
        "lastAnalyzed": _iso(habit.last_analyzed),
        "level": habit.level,
        "experience": habit.experience,
        "experienceToNext": habit.experience_to_next,
        "streak": habit.streak,
        "longestStreak": habit.longest_streak,
        "completionRate": habit.completion_rate,
        "totalCompletions": habit.total_completions,
        "consistency": round(tiers.consistency_score(habit.longest_streak, habit.total_completions)),
        "tier": habit.tier,
        "badges": list(habit.badges or []),
        "lastCompleted": habit.last_completed,
        "lastDecayAt": habit.last_decay_at,
    }
    if today is not None:
        data["completedToday"] = habit_stats.completed_today(habit, today)
        data["last7DaysCount"] = habit_stats.last_7_days_count(habit, today)
    return data


def subtask_to_dict(subtask: Subtask) -> dict:
    return {
        "id": subtask.pk,
        "habitId": subtask.habit_id,
        "title": subtask.title,
        "order": subtask.order,
        "isActive": subtask.is_active,
    }


def entry_to_dict(entry: DailyEntry) -> dict:
    return {
        "id": entry.pk,
        "date": entry.date,
        "habitCompletions": dict(entry.habit_completions or {}),
        "subtaskCompletions": dict(entry.subtask_completions or {}),
        "punctualityScore": entry.punctuality_score,
        "adherenceScore": entry.adherence_score,
        "notes": entry.notes,
        "isCompleted": entry.is_completed,
        "completedAt": _iso(entry.completed_at),
        "autoFinalized": entry.auto_finalized,
    }


def streak_to_dict(streak: Streak) -> dict:
    return {
        "type": streak.type,
        "currentStreak": streak.current_streak,
        "longestStreak": streak.longest_streak,
        "lastActiveDate": streak.last_active_date,
    }


def achievement_to_dict(achievement: Achievement) -> dict:
    return {
        "id": achievement.pk,
        "key": achievement.key,
        "type": achievement.type,
        "name": achievement.name,
        "description": achievement.description,
        "badge": achievement.badge,
        "requirement": achievement.requirement,
        "isUnlocked": achievement.is_unlocked,
        "unlockedAt": _iso(achievement.unlocked_at),
    }


def goal_progress_to_dict(progress: GoalProgress) -> dict:
    goal = progress.goal
    return {
        "id": goal.pk,
        "tag": goal.tag,
        "period": goal.period,
        "targetCount": goal.target_count,
        "start": progress.start,
        "end": progress.end,
        "count": progress.count,
        "achieved": progress.achieved,
    }


def profile_to_dict(profile: PlayerProfile) -> dict:
    info = gamification.rank_info(profile.level)
    upcoming = info["next_rank"]
    return {
        "totalXp": profile.total_xp,
        "level": profile.level,
        "rank": info["current_rank"].name,
        "nextRank": upcoming.name if upcoming else None,
        "progressToNext": info["progress_to_next"],
    }


def review_to_dict(review: WeeklyReview) -> dict:
    return {
        "weekStartDate": review.week_start_date,
        "accomplishment": review.accomplishment,
        "breakdown": review.breakdown,
        "adjustment": review.adjustment,
    }


def chat_to_dict(message: ChatMessage) -> dict:
    return {"role": message.role, "content": message.content, "createdAt": _iso(message.created_at)}
