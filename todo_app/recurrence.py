"""Due-date roll-forward for recurring todos.

A recurring todo that gets completed is replaced by a fresh todo whose due
date is the next occurrence. The arithmetic runs in the application
timezone so the wall-clock time of day survives the jump, and month/year
steps are calendar-aware: Jan 31 + 1 month lands on the last day of
February, Feb 29 + 1 year lands on Feb 28 when the target year is not a
leap year.
"""
from datetime import datetime, timezone

from dateutil.relativedelta import relativedelta

from .utils import localize

RECURRENCE_PATTERNS = ('daily', 'weekly', 'monthly', 'yearly')

_STEPS = {
    'daily': relativedelta(days=1),
    'weekly': relativedelta(weeks=1),
    'monthly': relativedelta(months=1),
    'yearly': relativedelta(years=1),
}


class RecurrenceError(ValueError):
    """Base class for caller errors in recurrence computation."""


class InvalidRecurrencePattern(RecurrenceError):
    def __init__(self, pattern):
        self.pattern = pattern
        super().__init__(f"invalid recurrence pattern: {pattern!r}")


class MissingDueDate(RecurrenceError):
    def __init__(self):
        super().__init__("due date required for recurring todos")


class RecurrenceOutOfRange(RecurrenceError):
    def __init__(self, due, pattern):
        self.due = due
        self.pattern = pattern
        super().__init__(f"next {pattern} occurrence after {due.isoformat()} is out of range")


def is_recurrence_pattern(value) -> bool:
    return isinstance(value, str) and value in _STEPS


def next_due_date(due: datetime | None, pattern: str, tz_name: str | None = None) -> datetime:
    """Return the next due date for `pattern`, in the application timezone.

    Raises MissingDueDate when `due` is None, InvalidRecurrencePattern
    for anything outside RECURRENCE_PATTERNS and RecurrenceOutOfRange when
    the next occurrence does not fit in a datetime.
    """
    if not is_recurrence_pattern(pattern):
        raise InvalidRecurrencePattern(pattern)
    if due is None:
        raise MissingDueDate()
    try:
        # relativedelta on an aware datetime keeps tzinfo and wall time;
        # normalize afterwards in case the zone has DST transitions.
        local_due = localize(due, tz_name)
        nxt = localize(local_due + _STEPS[pattern], tz_name)
        # stored as UTC
        nxt.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        raise RecurrenceOutOfRange(due, pattern)
    return nxt
