"""Server-side filtering for the todo list view.

Filters combine with AND; multi-valued filters (priorities, tags) match
when any of their values match. Due-date ranges use day, week (Monday
start) and month boundaries in the application timezone.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from .utils import ensure_utc, to_local
from .validation import PRIORITIES, ValidationError

STATUSES = ('all', 'incomplete', 'completed')
DUE_RANGES = ('all', 'overdue', 'today', 'this-week', 'this-month', 'no-due-date')


@dataclass
class TodoFilter:
    q: str = ''
    status: str = 'all'
    priorities: list[str] = field(default_factory=list)
    tag_ids: list[int] = field(default_factory=list)
    due: str = 'all'

    @property
    def active(self) -> bool:
        return bool(self.q or self.status != 'all' or self.priorities or self.tag_ids or self.due != 'all')


def parse_filter(q: str | None = None, status: str | None = None, priorities=None, tag_ids=None, due: str | None = None) -> TodoFilter:
    status = status or 'all'
    if status not in STATUSES:
        raise ValidationError("status must be one of: " + ", ".join(STATUSES))
    due = due or 'all'
    if due not in DUE_RANGES:
        raise ValidationError("due must be one of: " + ", ".join(DUE_RANGES))
    prios = list(priorities or [])
    for p in prios:
        if p not in PRIORITIES:
            raise ValidationError("priority must be one of: high, medium, low")
    return TodoFilter(q=(q or '').strip(), status=status, priorities=prios, tag_ids=list(tag_ids or []), due=due)


def day_bounds(now: datetime, tz_name: str | None = None) -> tuple[datetime, datetime]:
    start = to_local(now, tz_name).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def week_bounds(now: datetime, tz_name: str | None = None) -> tuple[datetime, datetime]:
    day_start, _ = day_bounds(now, tz_name)
    start = day_start - timedelta(days=day_start.weekday())
    return start, start + timedelta(days=7)


def month_bounds(now: datetime, tz_name: str | None = None) -> tuple[datetime, datetime]:
    day_start, _ = day_bounds(now, tz_name)
    start = day_start.replace(day=1)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def _due_matches(due_range: str, due: datetime | None, completed: bool, now: datetime) -> bool:
    if due_range == 'all':
        return True
    if due_range == 'no-due-date':
        return due is None
    if due is None:
        return False
    due = ensure_utc(due)
    if due_range == 'overdue':
        return not completed and due < ensure_utc(now)
    bounds = {'today': day_bounds, 'this-week': week_bounds, 'this-month': month_bounds}[due_range]
    start, end = bounds(now)
    return start <= due < end


def todo_matches(todo, tags: list, flt: TodoFilter, now: datetime) -> bool:
    """`tags` are the Tag rows linked to `todo`."""
    completed = todo.completed_at is not None
    if flt.status == 'completed' and not completed:
        return False
    if flt.status == 'incomplete' and completed:
        return False
    if flt.priorities and todo.priority not in flt.priorities:
        return False
    if flt.tag_ids and not any(t.id in flt.tag_ids for t in tags):
        return False
    if flt.q:
        needle = flt.q.casefold()
        if needle not in todo.title.casefold() and not any(needle in t.name.casefold() for t in tags):
            return False
    return _due_matches(flt.due, todo.due_date, completed, now)


def filter_todos(todos: list, tags_by_todo: dict, flt: TodoFilter, now: datetime) -> list:
    if not flt.active:
        return list(todos)
    return [t for t in todos if todo_matches(t, tags_by_todo.get(t.id, []), flt, now)]
