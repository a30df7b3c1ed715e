"""
Daily entries: one journal row per user per date key.

An entry moves Draft -> Saved -> Finalized. Drafts are buffered on the client
(``PendingEdits``) and written with a debounce; a finalized entry is locked
and every write to it is rejected here, not only in the UI.
"""
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from habits.exceptions import EntryFinalized, UpstreamUnavailable, ValidationError
from habits.models import DailyEntry, Habit, Subtask
from habits.services import achievements, streaks
from habits.services.timezones import parse_date_key, previous_date_key

logger = logging.getLogger(__name__)

MIN_SCORE = 1
MAX_SCORE = 5

EDITABLE_FIELDS = {
    "habitCompletions": "habit_completions",
    "subtaskCompletions": "subtask_completions",
    "punctualityScore": "punctuality_score",
    "adherenceScore": "adherence_score",
    "notes": "notes",
}


class EntryState(str, Enum):
    DRAFT = "draft"
    SAVED = "saved"
    FINALIZED = "finalized"


def entry_state(entry: Optional[DailyEntry]) -> EntryState:
    if entry is None:
        return EntryState.DRAFT
    if entry.is_completed:
        return EntryState.FINALIZED
    return EntryState.SAVED


def completion_score(completed: int, total: int) -> int:
    """Completion percentage mapped onto the 1-5 score scale."""
    if total <= 0:
        return 3
    ratio = completed / total
    if ratio >= 1:
        return 5
    if ratio >= 0.8:
        return 4
    if ratio >= 0.6:
        return 3
    if ratio >= 0.4:
        return 2
    return 1


def without_orphans(completions: Optional[dict], valid_ids: Iterable) -> Dict[str, bool]:
    valid = {str(pk) for pk in valid_ids}
    return {str(k): bool(v) for k, v in (completions or {}).items() if str(k) in valid}


def derive_habit_completions(
        habit_completions: Dict[str, bool],
        subtask_completions: Dict[str, bool],
        subtasks: Iterable[Subtask],
) -> Dict[str, bool]:
    """A habit with active subtasks is complete iff all of them are."""
    by_habit: Dict[str, List[str]] = {}
    for subtask in subtasks:
        if subtask.is_active:
            by_habit.setdefault(str(subtask.habit_id), []).append(str(subtask.pk))

    result = dict(habit_completions)
    for habit_id, subtask_ids in by_habit.items():
        result[habit_id] = all(subtask_completions.get(sid, False) for sid in subtask_ids)
    return result


def has_activity(entry: DailyEntry, habit_ids: Iterable) -> bool:
    """Notes, or a true completion for a habit that still exists."""
    if (entry.notes or "").strip():
        return True
    return any(without_orphans(entry.habit_completions, habit_ids).values())


def _clean_entry(entry: DailyEntry, habit_ids, subtask_ids) -> DailyEntry:
    entry.habit_completions = without_orphans(entry.habit_completions, habit_ids)
    entry.subtask_completions = without_orphans(entry.subtask_completions, subtask_ids)
    return entry


def _owned_ids(user):
    habit_ids = list(Habit.objects.filter(owner=user).values_list("pk", flat=True))
    subtask_ids = list(Subtask.objects.filter(owner=user).values_list("pk", flat=True))
    return habit_ids, subtask_ids


def get_entry(user, date: str) -> Optional[DailyEntry]:
    parse_date_key(date)
    entry = DailyEntry.objects.filter(owner=user, date=date).first()
    if entry is None:
        return None
    return _clean_entry(entry, *_owned_ids(user))


def list_entries(user, start: Optional[str] = None, end: Optional[str] = None) -> List[DailyEntry]:
    qs = DailyEntry.objects.filter(owner=user)
    if start:
        parse_date_key(start)
        qs = qs.filter(date__gte=start)
    if end:
        parse_date_key(end)
        qs = qs.filter(date__lte=end)
    habit_ids, subtask_ids = _owned_ids(user)
    return [_clean_entry(entry, habit_ids, subtask_ids) for entry in qs]


def _validate_completions(name: str, value) -> Dict[str, bool]:
    if not isinstance(value, dict):
        raise ValidationError(f"{name} must be an object of id -> boolean")
    for key, flag in value.items():
        if not isinstance(flag, bool):
            raise ValidationError(f"{name}[{key}] must be a boolean")
    return {str(k): v for k, v in value.items()}


def _validate_score(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not MIN_SCORE <= value <= MAX_SCORE:
        raise ValidationError(f"{name} must be an integer between {MIN_SCORE} and {MAX_SCORE}")
    return value


def validate_payload(data: dict) -> dict:
    """camelCase request body -> model field values; rejects unknown or bad input."""
    if not isinstance(data, dict):
        raise ValidationError("Entry body must be an object")

    unknown = set(data) - set(EDITABLE_FIELDS) - {"date", "isCompleted"}
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

    cleaned = {}
    for key in ("habitCompletions", "subtaskCompletions"):
        if key in data:
            cleaned[EDITABLE_FIELDS[key]] = _validate_completions(key, data[key])
    for key in ("punctualityScore", "adherenceScore"):
        if key in data:
            cleaned[EDITABLE_FIELDS[key]] = _validate_score(key, data[key])
    if "notes" in data:
        if not isinstance(data["notes"], str):
            raise ValidationError("notes must be a string")
        cleaned["notes"] = data["notes"]
    if "isCompleted" in data and not isinstance(data["isCompleted"], bool):
        raise ValidationError("isCompleted must be a boolean")
    return cleaned


@transaction.atomic
def save_entry(*, user, date: str, data: dict):
    """
    Create the entry for ``date`` on first save, update it afterwards.

    Returns ``(entry, created)``. ``isCompleted: true`` in the body finalizes
    the entry after the other fields are written.
    """
    parse_date_key(date)
    cleaned = validate_payload(data)

    try:
        entry, created = DailyEntry.objects.select_for_update().get_or_create(owner=user, date=date)
    except DatabaseError as exc:
        raise UpstreamUnavailable(f"Could not load daily entry for {date}") from exc

    if entry.is_completed:
        logger.warning("Rejected write to finalized entry %s (user=%s)", date, user.pk)
        raise EntryFinalized(f"Daily entry for {date} is finalized")

    habit_ids, subtask_ids = _owned_ids(user)
    for name, value in cleaned.items():
        setattr(entry, name, value)
    _clean_entry(entry, habit_ids, subtask_ids)

    if "subtask_completions" in cleaned:
        subtasks = Subtask.objects.filter(owner=user, habit_id__in=habit_ids)
        entry.habit_completions = derive_habit_completions(
            entry.habit_completions, entry.subtask_completions, subtasks
        )

    if "habit_completions" in cleaned or "subtask_completions" in cleaned:
        active = {str(pk) for pk in Habit.objects.filter(owner=user, is_active=True).values_list("pk", flat=True)}
        done = sum(1 for k, v in entry.habit_completions.items() if v and k in active)
        score = completion_score(done, len(active))
        if "punctuality_score" not in cleaned:
            entry.punctuality_score = score
        if "adherence_score" not in cleaned:
            entry.adherence_score = score

    entry.save()

    if data.get("isCompleted") is True:
        entry = _finalize(user, entry, auto=False)
    return entry, created


def _finalize(user, entry: DailyEntry, *, auto: bool) -> DailyEntry:
    entry.is_completed = True
    entry.completed_at = timezone.now()
    entry.auto_finalized = auto
    entry.save(update_fields=["is_completed", "completed_at", "auto_finalized", "updated_at"])

    current = 0
    active = Habit.objects.filter(owner=user, is_active=True).values_list("pk", flat=True)
    if any(without_orphans(entry.habit_completions, active).values()):
        current = streaks.record_day_completed(user=user, date=entry.date).current_streak
    achievements.check_achievements(user=user, entry=entry, current_streak=current)
    return entry


@transaction.atomic
def finalize_entry(*, user, date: str) -> DailyEntry:
    """Lock the day. Finalizing an already-final entry returns it unchanged."""
    parse_date_key(date)
    entry, _ = DailyEntry.objects.select_for_update().get_or_create(owner=user, date=date)
    if entry.is_completed:
        return entry
    return _finalize(user, entry, auto=False)


def should_auto_finalize(entry: Optional[DailyEntry], today: str, habit_ids: Iterable = ()) -> bool:
    if entry is None or entry.is_completed or entry.auto_finalized:
        return False
    if entry.date >= today:
        return False
    return has_activity(entry, habit_ids)


@transaction.atomic
def auto_finalize_previous(*, user, today: str) -> Optional[DailyEntry]:
    """
    Lock yesterday's entry if it saw any activity but was never finalized.
    Runs at most once per date; returns the entry it finalized, if any.
    """
    yesterday = previous_date_key(today)
    entry = DailyEntry.objects.select_for_update().filter(owner=user, date=yesterday).first()
    habit_ids = Habit.objects.filter(owner=user).values_list("pk", flat=True)
    if not should_auto_finalize(entry, today, habit_ids):
        return None
    logger.info("Auto-finalizing daily entry %s for user %s", yesterday, user.pk)
    return _finalize(user, entry, auto=True)


class SaveStatus(str, Enum):
    DRAFT = "draft"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"
    FINALIZED = "finalized"


@dataclass
class Draft:
    date: str
    changes: dict = field(default_factory=dict)
    last_edit: float = 0.0
    version: int = 0
    status: SaveStatus = SaveStatus.DRAFT


def merge_changes(base: dict, changes: dict) -> dict:
    merged = dict(base)
    for key, value in changes.items():
        if key in ("habitCompletions", "subtaskCompletions") and isinstance(value, dict):
            merged[key] = {**(merged.get(key) or {}), **value}
        else:
            merged[key] = value
    return merged


class PendingEdits:
    """
    Local pending-edit store keyed by date.

    Every ``record`` re-arms the debounce timer for that date, so a burst of
    edits collapses into one write once the date has been quiet for
    ``debounce_seconds``. A failed write keeps the draft for the next flush.
    """

    def __init__(self, debounce_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        if debounce_seconds is None:
            debounce_seconds = settings.PUSHFORWARD_AUTOSAVE_DEBOUNCE_SECONDS
        self.debounce_seconds = debounce_seconds
        self._clock = clock
        self._drafts: Dict[str, Draft] = {}

    def _now(self, now):
        return self._clock() if now is None else now

    def status(self, date: str) -> Optional[SaveStatus]:
        draft = self._drafts.get(date)
        return draft.status if draft else None

    def pending(self, date: str) -> dict:
        draft = self._drafts.get(date)
        return dict(draft.changes) if draft else {}

    def record(self, date: str, changes: dict, now: Optional[float] = None) -> Draft:
        draft = self._drafts.setdefault(date, Draft(date=date))
        if draft.status == SaveStatus.FINALIZED:
            raise EntryFinalized(f"Daily entry for {date} is finalized")
        draft.changes = merge_changes(draft.changes, changes)
        draft.last_edit = self._now(now)
        draft.version += 1
        draft.status = SaveStatus.DRAFT
        return draft

    def due(self, now: Optional[float] = None) -> List[Draft]:
        now = self._now(now)
        ready = []
        for draft in self._drafts.values():
            if draft.status not in (SaveStatus.DRAFT, SaveStatus.ERROR) or not draft.changes:
                continue
            if now - draft.last_edit >= self.debounce_seconds:
                draft.status = SaveStatus.SAVING
                ready.append(Draft(draft.date, dict(draft.changes), draft.last_edit, draft.version, draft.status))
        return ready

    def mark_saved(self, date: str, version: int) -> None:
        draft = self._drafts.get(date)
        if draft is None:
            return
        if draft.version == version:
            draft.changes = {}
            draft.status = SaveStatus.SAVED
        else:
            # edited again while the write was in flight
            draft.status = SaveStatus.DRAFT

    def mark_failed(self, date: str, now: Optional[float] = None) -> None:
        draft = self._drafts.get(date)
        if draft is None:
            return
        draft.status = SaveStatus.ERROR
        draft.last_edit = self._now(now)

    def mark_finalized(self, date: str) -> None:
        draft = self._drafts.setdefault(date, Draft(date=date))
        draft.changes = {}
        draft.status = SaveStatus.FINALIZED

    def flush(self, save: Callable[[str, dict], object], now: Optional[float] = None) -> List[str]:
        """Write every due draft through ``save(date, changes)``; returns dates written."""
        written = []
        for draft in self.due(now):
            try:
                save(draft.date, draft.changes)
            except EntryFinalized:
                self.mark_finalized(draft.date)
            except (UpstreamUnavailable, DatabaseError):
                logger.warning("Autosave for %s failed; keeping draft for retry", draft.date)
                self.mark_failed(draft.date, now)
            else:
                self.mark_saved(draft.date, draft.version)
                written.append(draft.date)
        return written

    def reconcile(self, date: str, server_entry: Optional[dict]) -> dict:
        """
        Merge the authoritative server copy with local edits on load.
        A finalized server entry wins outright and discards the draft.
        """
        server_entry = server_entry or {}
        if server_entry.get("isCompleted"):
            self.mark_finalized(date)
            return dict(server_entry)
        draft = self._drafts.get(date)
        if draft is None or not draft.changes:
            return dict(server_entry)
        return merge_changes(server_entry, draft.changes)
