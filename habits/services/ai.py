"""
Text generation for the best-effort AI features.

Gemini is reached through its OpenAI-compatible endpoint. Each task kind has
an ordered model chain in settings; models are tried in turn and, if all of
them fail, every feature below falls back to a deterministic heuristic.
Answers are cached briefly by (task kind, prompt).
"""
import hashlib
import json
import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

from django.conf import settings
from django.core.cache import cache
from openai import OpenAI, OpenAIError

from habits.exceptions import UpstreamUnavailable
from habits.services.difficulty import clamp_difficulty

logger = logging.getLogger(__name__)

TASK_KINDS = ("chat", "simple", "difficulty", "analysis")

GEMINI_MODELS = {
    "gemini-3-flash-preview": "Gemini 3 Flash",
    "gemini-3-pro-preview": "Gemini 3 Pro",
    "gemini-2.5-flash": "Gemini 2.5 Flash",
    "gemini-2.5-flash-lite": "Gemini 2.5 Flash Lite",
}
DEFAULT_GEMINI_MODEL = "gemini-3-flash-preview"

MAX_TOKENS = {"chat": 400, "simple": 200, "difficulty": 200, "analysis": 500}


def is_gemini_model(value) -> bool:
    return isinstance(value, str) and value in GEMINI_MODELS


class TextGenerator:
    """
    generate(prompt, task_kind) -> text, with sequential model fallback.

    Usage:
        generator = TextGenerator()
        text = generator.generate("Say hi", "simple")
    """

    def __init__(self, client=None, model_chain: Optional[Dict[str, List[str]]] = None, cache_ttl: Optional[int] = None):
        self._client = client
        self.model_chain = model_chain or settings.AI_MODEL_CHAIN
        self.cache_ttl = settings.AI_CACHE_TTL_SECONDS if cache_ttl is None else cache_ttl

    @property
    def client(self):
        if self._client is None:
            if not settings.GEMINI_API_KEY:
                raise UpstreamUnavailable("GEMINI_API_KEY is not configured")
            self._client = OpenAI(
                base_url=settings.GEMINI_BASE_URL,
                api_key=settings.GEMINI_API_KEY,
                timeout=settings.AI_REQUEST_TIMEOUT_SECONDS,
                max_retries=0,
            )
        return self._client

    def models_for(self, task_kind: str, preferred: Optional[str] = None) -> List[str]:
        if task_kind not in TASK_KINDS:
            raise ValueError(f"Unknown task kind: {task_kind}")
        chain = list(self.model_chain.get(task_kind) or [DEFAULT_GEMINI_MODEL])
        if is_gemini_model(preferred):
            chain = [preferred] + [m for m in chain if m != preferred]
        return chain

    @staticmethod
    def cache_key(task_kind: str, messages: List[dict]) -> str:
        digest = hashlib.sha256(json.dumps([task_kind, messages], sort_keys=True).encode("utf-8")).hexdigest()
        return f"ai:{digest}"

    def generate(self, prompt: str, task_kind: str, *, preferred_model: Optional[str] = None,
                 history: Optional[List[dict]] = None) -> str:
        messages = list(history or []) + [{"role": "user", "content": prompt}]
        key = self.cache_key(task_kind, messages)
        cached = cache.get(key)
        if cached is not None:
            return cached

        for model in self.models_for(task_kind, preferred_model):
            try:
                response = self.client.chat.completions.create(
                    model=model,
                    messages=messages,
                    max_tokens=MAX_TOKENS[task_kind],
                    temperature=0.7,
                )
            except OpenAIError as e:
                logger.warning("Model %s failed for %s: %s", model, task_kind, e)
                continue

            content = (response.choices[0].message.content or "").strip() if response.choices else ""
            if content:
                cache.set(key, content, self.cache_ttl)
                return content
            logger.warning("Model %s returned an empty answer for %s", model, task_kind)

        raise UpstreamUnavailable(f"All models unavailable for {task_kind}")


_default_generator: Optional[TextGenerator] = None


def default_generator() -> TextGenerator:
    global _default_generator
    if _default_generator is None:
        _default_generator = TextGenerator()
    return _default_generator


def _extract_json(text: str, opener: str, closer: str):
    match = re.search(re.escape(opener) + r"[\s\S]*" + re.escape(closer), text)
    if not match:
        return None
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError:
        return None


# Habit suggestions

CURATED_SUGGESTIONS = (
    {"name": "Morning hydration", "emoji": "💧"},
    {"name": "5-minute meditation", "emoji": "🧘"},
    {"name": "Gratitude journaling", "emoji": "📝"},
    {"name": "Evening stretches", "emoji": "🤸"},
    {"name": "Read for 15 minutes", "emoji": "📚"},
    {"name": "Take nature walk", "emoji": "🚶"},
    {"name": "Deep breathing exercise", "emoji": "🫁"},
    {"name": "Listen to podcast", "emoji": "🎧"},
    {"name": "Digital sunset routine", "emoji": "📱"},
    {"name": "Plan tomorrow", "emoji": "📅"},
)


def default_suggestions(existing_names: Iterable[str]) -> List[dict]:
    existing = [name.lower() for name in existing_names]
    picks = [
        s for s in CURATED_SUGGESTIONS
        if not any(s["name"].lower().split(" ")[0] in name for name in existing)
    ]
    return [dict(s) for s in picks[:5]]


def suggest_habits(existing_names: List[str], generator: Optional[TextGenerator] = None,
                   preferred_model: Optional[str] = None) -> List[dict]:
    generator = generator or default_generator()
    prompt = (
        f"Given existing habits: {', '.join(existing_names)}\n\n"
        "Output ONLY a valid JSON array with 3-5 habit suggestions. No explanations, no markdown, just the JSON:\n\n"
        '[{"name": "habit name", "emoji": "emoji"}]'
    )
    try:
        text = generator.generate(prompt, "simple", preferred_model=preferred_model)
    except UpstreamUnavailable:
        logger.info("Using curated habit suggestions")
        return default_suggestions(existing_names)

    parsed = _extract_json(text, "[", "]")
    taken = {name.lower() for name in existing_names}
    suggestions = [
        {"name": str(item["name"])[:50], "emoji": str(item.get("emoji") or "✨")}
        for item in (parsed if isinstance(parsed, list) else [])
        if isinstance(item, dict) and item.get("name") and str(item["name"]).lower() not in taken
    ]
    if len(suggestions) < 3:
        return default_suggestions(existing_names)
    return suggestions[:5]


# Difficulty analysis

DIFFICULTY_KEYWORDS = (
    (5, ("marathon", "fast", "cold shower", "no sugar", "4am", "5am")),
    (4, ("workout", "exercise", "gym", "run", "study", "focus", "code", "practice")),
    (3, ("read", "meditat", "journal", "walk", "stretch", "cook", "plan")),
    (2, ("water", "hydrat", "vitamin", "bed", "floss", "gratitude")),
)


def heuristic_difficulty(name: str) -> Tuple[int, str]:
    lowered = name.lower()
    for rating, words in DIFFICULTY_KEYWORDS:
        if any(word in lowered for word in words):
            return rating, f"Estimated difficulty {rating}/5 from the habit's name."
    return 3, "Estimated difficulty 3/5 (default)."


def analyze_difficulty(name: str, tags: List[str], generator: Optional[TextGenerator] = None,
                       preferred_model: Optional[str] = None) -> Tuple[int, str]:
    generator = generator or default_generator()
    prompt = (
        f'Rate how hard the daily habit "{name}" (attributes: {", ".join(tags) or "none"}) is to sustain, '
        "on a 1-5 scale. Output ONLY JSON: "
        '{"difficulty": 1-5, "analysis": "one or two sentences"}'
    )
    try:
        text = generator.generate(prompt, "difficulty", preferred_model=preferred_model)
    except UpstreamUnavailable:
        logger.info("Using heuristic difficulty for %r", name)
        return heuristic_difficulty(name)

    parsed = _extract_json(text, "{", "}")
    if not isinstance(parsed, dict):
        return heuristic_difficulty(name)
    try:
        rating = clamp_difficulty(int(parsed.get("difficulty")))
    except (TypeError, ValueError):
        return heuristic_difficulty(name)
    return rating, str(parsed.get("analysis") or "").strip()


# Weekly insights

INSIGHT_KEYS = ("patterns", "strengths", "improvements", "motivation")


def weekly_completion_rate(entries, habit_count: int) -> float:
    if not entries or habit_count <= 0:
        return 0.0
    done = sum(sum(1 for v in (e.habit_completions or {}).values() if v) for e in entries)
    return 100.0 * done / (len(entries) * habit_count)


def heuristic_insights(rate: float) -> Dict[str, str]:
    return {
        "patterns": (
            "Strong consistency pattern observed in your habit tracking."
            if rate > 80 else "Room for improvement in maintaining daily consistency."
        ),
        "strengths": (
            "You're building positive momentum with regular habit completion."
            if rate > 60 else "You're taking important steps toward building better habits."
        ),
        "improvements": "Focus on completing your habits at the same time each day to build stronger routines.",
        "motivation": (
            "Your dedication is paying off - keep up the excellent work!"
            if rate > 70 else "Every day is a new opportunity to strengthen your habits."
        ),
    }


def weekly_insights(entries, habits, generator: Optional[TextGenerator] = None,
                    preferred_model: Optional[str] = None) -> Dict[str, str]:
    generator = generator or default_generator()
    habits = list(habits)
    rate = weekly_completion_rate(entries, len(habits))
    data = [
        {
            "date": e.date,
            "score": (e.punctuality_score + e.adherence_score) / 2,
            "completedHabits": sum(1 for v in (e.habit_completions or {}).values() if v),
            "totalHabits": len(habits),
            "notes": e.notes,
        }
        for e in entries
    ]
    prompt = (
        f"Analyze habit data: {json.dumps(data)}\n\n"
        "Output ONLY valid JSON with insights:\n\n"
        '{"patterns": "brief pattern observation", "strengths": "what went well", '
        '"improvements": "actionable suggestions", "motivation": "encouraging message"}'
    )
    try:
        text = generator.generate(prompt, "analysis", preferred_model=preferred_model)
    except UpstreamUnavailable:
        logger.info("Using heuristic weekly insights")
        return heuristic_insights(rate)

    parsed = _extract_json(text, "{", "}")
    fallback = heuristic_insights(rate)
    if not isinstance(parsed, dict):
        return fallback
    return {key: str(parsed.get(key) or fallback[key]) for key in INSIGHT_KEYS}


# Motivation

MOTIVATION_TEMPLATES = (
    (90, (
        "Outstanding {rate}% completion rate! Your {streak}-day streak shows incredible dedication.",
        "Exceptional consistency at {rate}%! You're building rock-solid habits with this {streak}-day streak.",
        "Amazing {rate}% performance! Your {streak} days of commitment are paying off beautifully.",
    )),
    (70, (
        "Strong {rate}% completion rate! Your {streak}-day streak proves you're on the right track.",
        "Great progress at {rate}%! Keep building on this {streak}-day momentum.",
        "Solid {rate}% consistency! Your {streak} days show real commitment to growth.",
    )),
    (50, (
        "Making progress at {rate}%! Every day in your {streak}-day streak counts toward building lasting habits.",
        "Building momentum with {rate}% completion! Your {streak} days of effort are valuable stepping stones.",
        "Growing stronger at {rate}%! These {streak} days are proof you can build positive routines.",
    )),
    (0, (
        "Every step counts! Your {streak} days show you're committed to positive change.",
        "Starting strong with {streak} days! Consistency is more important than perfection.",
        "Building new habits takes time. Your {streak}-day effort shows you're on the right path.",
    )),
)


def template_motivation(completion_rate: float, current_streak: int) -> str:
    rate = round(completion_rate)
    for floor_rate, templates in MOTIVATION_TEMPLATES:
        if completion_rate >= floor_rate:
            return templates[current_streak % len(templates)].format(rate=rate, streak=current_streak)
    return MOTIVATION_TEMPLATES[-1][1][0].format(rate=rate, streak=current_streak)


def motivational_message(completion_rate: float, current_streak: int, generator: Optional[TextGenerator] = None,
                         preferred_model: Optional[str] = None) -> str:
    generator = generator or default_generator()
    prompt = (
        f"Write one short, upbeat sentence for someone at {round(completion_rate)}% habit completion today "
        f"with a {current_streak}-day streak. No emojis, no quotes."
    )
    try:
        return generator.generate(prompt, "simple", preferred_model=preferred_model)
    except UpstreamUnavailable:
        return template_motivation(completion_rate, current_streak)


# Chat assistant

CHAT_FALLBACK = (
    "I can't reach the coaching model right now. Meanwhile: pick the one habit that matters most today "
    "and make it as small as possible to start."
)


def chat_reply(message: str, history: List[dict], generator: Optional[TextGenerator] = None,
               preferred_model: Optional[str] = None) -> str:
    generator = generator or default_generator()
    try:
        return generator.generate(message, "chat", preferred_model=preferred_model, history=history)
    except UpstreamUnavailable:
        logger.info("Chat assistant fell back to canned reply")
        return CHAT_FALLBACK
