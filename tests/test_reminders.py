from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from todo_app.reminders import should_notify, notification_time, todo_needs_notification

DUE = datetime(2025, 3, 10, 1, 0, tzinfo=timezone.utc)


def at(minutes_from_due: int) -> datetime:
    return DUE + timedelta(minutes=minutes_from_due)


def test_notification_time():
    assert notification_time(DUE, 30) == at(-30)


def test_reminder_timeline():
    # T-31: too early
    assert should_notify(DUE, 30, None, at(-31)) is False
    # T-29: eligible, nothing sent yet
    assert should_notify(DUE, 30, None, at(-29)) is True
    # sent at T-29; T-10 is inside the cooldown
    assert should_notify(DUE, 30, at(-29), at(-10)) is False
    # past the due time reminders keep firing once the hour has elapsed
    assert should_notify(DUE, 30, at(-29), at(31)) is True


def test_overdue_todo_notifies_after_cooldown():
    assert should_notify(DUE, 30, at(-45), at(20)) is True
    assert should_notify(DUE, 30, at(-29), at(20)) is False


def test_exactly_at_notification_time_is_eligible():
    assert should_notify(DUE, 15, None, at(-15)) is True


def test_cooldown_boundary():
    sent = at(0)
    assert should_notify(DUE, 30, sent, sent + timedelta(minutes=59, seconds=59)) is False
    assert should_notify(DUE, 30, sent, sent + timedelta(minutes=60)) is True


def test_custom_cooldown():
    assert should_notify(DUE, 30, at(-29), at(-10), cooldown_minutes=5) is True


def test_missing_due_or_reminder_never_notifies():
    assert should_notify(None, 30, None, at(0)) is False
    assert should_notify(DUE, None, None, at(0)) is False


def test_zero_minute_reminder_fires_at_due_time():
    assert should_notify(DUE, 0, None, at(-1)) is False
    assert should_notify(DUE, 0, None, at(0)) is True


def test_completed_never_notifies():
    assert should_notify(DUE, 30, None, at(0), completed=True) is False


def test_naive_values_are_treated_as_utc():
    naive_due = DUE.replace(tzinfo=None)
    assert should_notify(naive_due, 30, None, at(-29)) is True
    assert should_notify(naive_due, 30, at(-29).replace(tzinfo=None), at(-10)) is False


def test_todo_needs_notification_uses_row_fields():
    todo = SimpleNamespace(due_date=DUE, reminder_minutes=30, last_notification_sent=None, completed_at=None)
    assert todo_needs_notification(todo, at(-29)) is True
    todo.completed_at = at(-40)
    assert todo_needs_notification(todo, at(-29)) is False


def test_lead_time_past_datetime_min_is_not_eligible():
    early = datetime(1, 1, 2, tzinfo=timezone.utc)
    assert should_notify(early, 3_000_000_000, None, at(0)) is False
