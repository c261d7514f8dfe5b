"""Reminder eligibility.

A todo with a due date and a reminder lead time becomes eligible for a
notification once `due - lead` has passed. After a notification fires the
caller stores the firing time as `last_notification_sent`; further
reminders are held back until the cooldown has elapsed. Reminders keep
firing past the due time (once per cooldown) for as long as the todo stays
incomplete.
"""
from datetime import datetime, timedelta

from . import config
from .utils import ensure_utc


def notification_time(due: datetime, reminder_minutes: int) -> datetime:
    """Moment the reminder becomes eligible (UTC)."""
    return ensure_utc(due) - timedelta(minutes=reminder_minutes)


def should_notify(
    due: datetime | None,
    reminder_minutes: int | None,
    last_notified: datetime | None,
    now: datetime,
    completed: bool = False,
    cooldown_minutes: int | None = None,
) -> bool:
    if due is None or reminder_minutes is None:
        return False
    if completed:
        return False
    now = ensure_utc(now)
    try:
        notify_at = notification_time(due, reminder_minutes)
    except OverflowError:
        # lead time reaches past datetime.min; the row is unusable as a reminder
        return False
    if now < notify_at:
        return False
    if last_notified is not None:
        if cooldown_minutes is None:
            cooldown_minutes = config.NOTIFICATION_COOLDOWN_MINUTES
        if now - ensure_utc(last_notified) < timedelta(minutes=cooldown_minutes):
            return False
    return True


def todo_needs_notification(todo, now: datetime) -> bool:
    """Apply should_notify to a Todo row."""
    return should_notify(
        todo.due_date,
        todo.reminder_minutes,
        todo.last_notification_sent,
        now,
        completed=todo.completed_at is not None,
    )
