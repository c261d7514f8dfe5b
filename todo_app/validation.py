"""Payload validation and partial-update (patch) construction.

Handlers read request JSON into plain dicts. A patch is a dict holding only
the keys the client actually sent: a missing key means "leave the column
alone", while a key mapped to None means "clear the column". `field()`
returns the UNSET sentinel for missing keys so the two cases never
collapse into one.
"""
import json
import re
from datetime import datetime

from .recurrence import RECURRENCE_PATTERNS
from .utils import ensure_utc, now_utc, parse_datetime, to_local

PRIORITIES = ('high', 'medium', 'low')

TODO_TITLE_MAX = 500
SUBTASK_TITLE_MAX = 500
TEMPLATE_NAME_MAX = 200
TEMPLATE_CATEGORY_MAX = 50
TEMPLATE_SUBTASK_TITLE_MAX = 200
TEMPLATE_SUBTASKS_MAX = 50
TAG_NAME_MAX = 50
REMINDER_MINUTES_MAX = 525600  # one year
DUE_DATE_OFFSET_DAYS_MAX = 3650
DEFAULT_TAG_COLOR = '#3B82F6'

_COLOR_RE = re.compile(r'^#[0-9A-Fa-f]{6}$')


class ValidationError(ValueError):
    """Client input rejected before reaching the database (HTTP 400)."""


class _Unset:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return 'UNSET'


UNSET = _Unset()


def field(payload: dict, key: str):
    return payload.get(key, UNSET)


def require_object(payload) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object")
    return payload


# --- single-value validators ---

def validate_text(value, label: str, max_len: int) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{label} is required and must be a string")
    text = value.strip()
    if not text:
        raise ValidationError(f"{label} cannot be empty")
    if len(text) > max_len:
        raise ValidationError(f"{label} must be {max_len} characters or less")
    return text


def validate_optional_text(value, label: str, max_len: int | None = None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{label} must be a string or null")
    text = value.strip()
    if max_len is not None and len(text) > max_len:
        raise ValidationError(f"{label} must be {max_len} characters or less")
    return text or None


def validate_priority(value) -> str | None:
    if value is None:
        return None
    if value not in PRIORITIES:
        raise ValidationError("priority must be one of: high, medium, low")
    return value


def validate_recurrence(value) -> str | None:
    if value is None:
        return None
    if value not in RECURRENCE_PATTERNS:
        raise ValidationError("recurrence_pattern must be one of: " + ", ".join(RECURRENCE_PATTERNS))
    return value


def validate_non_negative_int(value, label: str, allow_null: bool = True, max_value: int | None = None) -> int | None:
    if value is None:
        if allow_null:
            return None
        raise ValidationError(f"{label} is required")
    # bool is an int subclass; true/false are not positions
    if isinstance(value, bool) or not isinstance(value, int):
        if not (isinstance(value, float) and value.is_integer()):
            raise ValidationError(f"{label} must be a non-negative integer")
        value = int(value)
    if value < 0:
        raise ValidationError(f"{label} must be a non-negative integer")
    if max_value is not None and value > max_value:
        raise ValidationError(f"{label} must be {max_value} or less")
    return value


def validate_bool(value, label: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{label} must be a boolean")
    return value


def validate_datetime(value, label: str) -> datetime | None:
    """Parse a client timestamp; returns aware UTC or None for null."""
    if value is None:
        return None
    try:
        parsed = ensure_utc(parse_datetime(value))
        # responses render in the canonical timezone, so that must fit too
        to_local(parsed)
        return parsed
    except (ValueError, OverflowError):
        raise ValidationError(f"invalid {label} format")


def validate_color(value) -> str:
    if not isinstance(value, str) or not _COLOR_RE.match(value):
        raise ValidationError("color must be a hex value like #3B82F6")
    return value.upper()


def validate_id_list(value, label: str = 'tag_ids') -> list[int]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{label} must be a list of integers")
    out = []
    for v in value:
        if isinstance(v, bool) or not isinstance(v, int):
            raise ValidationError(f"{label} must be a list of integers")
        if v not in out:
            out.append(v)
    return out


def validate_template_subtasks(value) -> list[dict]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("subtasks must be a list")
    if len(value) > TEMPLATE_SUBTASKS_MAX:
        raise ValidationError(f"Maximum {TEMPLATE_SUBTASKS_MAX} subtasks allowed")
    out = []
    for idx, item in enumerate(value):
        if not isinstance(item, dict) or not isinstance(item.get('title'), str) or not item['title'].strip():
            raise ValidationError("Each subtask must have a title")
        title = item['title'].strip()
        if len(title) > TEMPLATE_SUBTASK_TITLE_MAX:
            raise ValidationError(f"Subtask title must be {TEMPLATE_SUBTASK_TITLE_MAX} characters or less")
        position = validate_non_negative_int(item.get('position', idx), 'subtask position', allow_null=False)
        out.append({'title': title, 'position': position})
    return out


def encode_template_subtasks(items: list[dict]) -> str | None:
    return json.dumps(items) if items else None


def decode_template_subtasks(raw: str | None) -> list[dict]:
    if not raw:
        return []
    try:
        items = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return [i for i in items if isinstance(i, dict) and i.get('title')] if isinstance(items, list) else []


# --- todos ---

def _todo_values(payload: dict, partial: bool) -> dict:
    values = {}
    title = field(payload, 'title')
    if title is not UNSET or not partial:
        values['title'] = validate_text(None if title is UNSET else title, 'title', TODO_TITLE_MAX)
    checks = (
        ('priority', validate_priority),
        ('recurrence_pattern', validate_recurrence),
        ('reminder_minutes', lambda v: validate_non_negative_int(v, 'reminder_minutes', max_value=REMINDER_MINUTES_MAX)),
        ('due_date', lambda v: validate_datetime(v, 'due date')),
    )
    for key, check in checks:
        v = field(payload, key)
        if v is not UNSET:
            values[key] = check(v)
    completed = field(payload, 'completed')
    completed_at = field(payload, 'completed_at')
    if completed_at is not UNSET:
        values['completed_at'] = validate_datetime(completed_at, 'completed_at')
    elif completed is not UNSET:
        values['completed_at'] = now_utc() if validate_bool(completed, 'completed') else None
    return values


def todo_create_values(payload) -> dict:
    values = _todo_values(require_object(payload), partial=False)
    check_due_dependencies(values)
    return values


def todo_patch(payload) -> dict:
    return _todo_values(require_object(payload), partial=True)


def check_due_dependencies(state: dict) -> None:
    """Recurrence and reminders only make sense with a due date."""
    if state.get('due_date') is None:
        if state.get('recurrence_pattern') is not None:
            raise ValidationError("recurrence_pattern requires a due_date")
        if state.get('reminder_minutes') is not None:
            raise ValidationError("reminder_minutes requires a due_date")


# --- subtasks ---

def subtask_create_values(payload) -> dict:
    payload = require_object(payload)
    values = {'title': validate_text(payload.get('title'), 'title', SUBTASK_TITLE_MAX)}
    position = field(payload, 'position')
    if position is not UNSET and position is not None:
        values['position'] = validate_non_negative_int(position, 'position', allow_null=False)
    return values


def subtask_patch(payload) -> dict:
    payload = require_object(payload)
    values = {}
    if field(payload, 'title') is not UNSET:
        values['title'] = validate_text(payload['title'], 'title', SUBTASK_TITLE_MAX)
    if field(payload, 'completed') is not UNSET:
        values['completed'] = validate_bool(payload['completed'], 'completed')
    if field(payload, 'position') is not UNSET:
        values['position'] = validate_non_negative_int(payload['position'], 'position', allow_null=False)
    return values


# --- templates ---

def _template_values(payload: dict, partial: bool) -> dict:
    values = {}
    name = field(payload, 'name')
    if name is not UNSET or not partial:
        values['name'] = validate_text(None if name is UNSET else name, 'name', TEMPLATE_NAME_MAX)
    if field(payload, 'description') is not UNSET:
        values['description'] = validate_optional_text(payload['description'], 'description')
    if field(payload, 'category') is not UNSET:
        values['category'] = validate_optional_text(payload['category'], 'category', TEMPLATE_CATEGORY_MAX)
    if field(payload, 'priority') is not UNSET:
        values['priority'] = validate_priority(payload['priority'])
    elif not partial:
        values['priority'] = 'medium'
    if field(payload, 'recurrence_pattern') is not UNSET:
        values['recurrence_pattern'] = validate_recurrence(payload['recurrence_pattern'])
    if field(payload, 'reminder_minutes') is not UNSET:
        values['reminder_minutes'] = validate_non_negative_int(
            payload['reminder_minutes'], 'reminder_minutes', max_value=REMINDER_MINUTES_MAX)
    if field(payload, 'due_date_offset_days') is not UNSET:
        values['due_date_offset_days'] = validate_non_negative_int(
            payload['due_date_offset_days'], 'due_date_offset_days', max_value=DUE_DATE_OFFSET_DAYS_MAX)
    if field(payload, 'subtasks') is not UNSET:
        values['subtasks_json'] = encode_template_subtasks(validate_template_subtasks(payload['subtasks']))
    return values


def template_create_values(payload) -> dict:
    return _template_values(require_object(payload), partial=False)


def template_patch(payload) -> dict:
    return _template_values(require_object(payload), partial=True)


# --- tags ---

def tag_create_values(payload) -> dict:
    payload = require_object(payload)
    color = field(payload, 'color')
    return {
        'name': validate_text(payload.get('name'), 'name', TAG_NAME_MAX),
        'color': DEFAULT_TAG_COLOR if color is UNSET or color is None else validate_color(color),
    }


def tag_patch(payload) -> dict:
    payload = require_object(payload)
    values = {}
    if field(payload, 'name') is not UNSET:
        values['name'] = validate_text(payload['name'], 'name', TAG_NAME_MAX)
    if field(payload, 'color') is not UNSET:
        values['color'] = validate_color(payload['color'])
    return values


def apply_patch(row, patch: dict) -> bool:
    """Copy patch values onto row; return True when any column changed."""
    changed = False
    for key, value in patch.items():
        current = getattr(row, key)
        if isinstance(current, datetime) and isinstance(value, datetime):
            if ensure_utc(current) == ensure_utc(value):
                continue
        elif current == value:
            continue
        setattr(row, key, value)
        changed = True
    return changed
