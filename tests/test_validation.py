from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from todo_app.validation import (
    UNSET,
    ValidationError,
    apply_patch,
    decode_template_subtasks,
    field,
    subtask_create_values,
    subtask_patch,
    tag_create_values,
    tag_patch,
    template_create_values,
    template_patch,
    todo_create_values,
    todo_patch,
    validate_datetime,
    validate_non_negative_int,
    REMINDER_MINUTES_MAX,
    DUE_DATE_OFFSET_DAYS_MAX,
)


def test_unset_is_distinct_from_none():
    assert field({}, 'x') is UNSET
    assert field({'x': None}, 'x') is None
    assert not UNSET
    assert repr(UNSET) == 'UNSET'


def test_todo_create_trims_and_requires_title():
    values = todo_create_values({'title': '  Buy milk  '})
    assert values == {'title': 'Buy milk'}
    with pytest.raises(ValidationError):
        todo_create_values({'title': '   '})
    with pytest.raises(ValidationError):
        todo_create_values({})
    with pytest.raises(ValidationError):
        todo_create_values({'title': 'x' * 501})


def test_todo_create_full_payload():
    values = todo_create_values({
        'title': 'Pay rent',
        'priority': 'high',
        'due_date': '2025-03-10T09:00',
        'recurrence_pattern': 'monthly',
        'reminder_minutes': 60,
    })
    assert values['due_date'] == datetime(2025, 3, 10, 1, 0, tzinfo=timezone.utc)
    assert values['priority'] == 'high'
    assert values['reminder_minutes'] == 60


@pytest.mark.parametrize('payload', [
    {'title': 't', 'priority': 'urgent'},
    {'title': 't', 'recurrence_pattern': 'hourly', 'due_date': '2025-03-10T09:00'},
    {'title': 't', 'reminder_minutes': -5, 'due_date': '2025-03-10T09:00'},
    {'title': 't', 'due_date': 'banana'},
    {'title': 't', 'completed': 'yes'},
    {'title': 7},
])
def test_todo_create_rejects_bad_values(payload):
    with pytest.raises(ValidationError):
        todo_create_values(payload)


def test_recurrence_and_reminder_need_a_due_date():
    with pytest.raises(ValidationError, match='requires a due_date'):
        todo_create_values({'title': 't', 'recurrence_pattern': 'daily'})
    with pytest.raises(ValidationError, match='requires a due_date'):
        todo_create_values({'title': 't', 'reminder_minutes': 15})


def test_todo_patch_only_has_present_keys():
    assert todo_patch({}) == {}
    assert todo_patch({'priority': None}) == {'priority': None}
    assert todo_patch({'title': ' new '}) == {'title': 'new'}


def test_todo_patch_completed_maps_to_completed_at():
    assert isinstance(todo_patch({'completed': True})['completed_at'], datetime)
    assert todo_patch({'completed': False}) == {'completed_at': None}


def test_non_body_payload_rejected():
    with pytest.raises(ValidationError):
        todo_patch(['title'])


def test_non_negative_int():
    assert validate_non_negative_int(0, 'p') == 0
    assert validate_non_negative_int(3.0, 'p') == 3
    assert validate_non_negative_int(None, 'p') is None
    for bad in (True, -1, 1.5, '2'):
        with pytest.raises(ValidationError):
            validate_non_negative_int(bad, 'p')
    with pytest.raises(ValidationError):
        validate_non_negative_int(None, 'p', allow_null=False)


def test_subtask_values():
    assert subtask_create_values({'title': 'step'}) == {'title': 'step'}
    assert subtask_create_values({'title': 'step', 'position': 4}) == {'title': 'step', 'position': 4}
    assert subtask_patch({'completed': True}) == {'completed': True}
    with pytest.raises(ValidationError):
        subtask_patch({'position': None})


def test_template_create_defaults_priority_and_encodes_subtasks():
    values = template_create_values({'name': 'Weekly review', 'subtasks': [{'title': 'inbox'}, {'title': 'calendar'}]})
    assert values['priority'] == 'medium'
    assert decode_template_subtasks(values['subtasks_json']) == [
        {'title': 'inbox', 'position': 0},
        {'title': 'calendar', 'position': 1},
    ]


def test_template_limits():
    with pytest.raises(ValidationError):
        template_create_values({'name': 'x' * 201})
    with pytest.raises(ValidationError):
        template_create_values({'name': 'ok', 'category': 'c' * 51})
    with pytest.raises(ValidationError):
        template_create_values({'name': 'ok', 'subtasks': [{'title': 's'}] * 51})
    with pytest.raises(ValidationError):
        template_create_values({'name': 'ok', 'subtasks': [{'position': 1}]})


def test_template_patch_clears_subtasks():
    assert template_patch({'subtasks': []}) == {'subtasks_json': None}


def test_decode_template_subtasks_tolerates_bad_json():
    assert decode_template_subtasks(None) == []
    assert decode_template_subtasks('not json') == []
    assert decode_template_subtasks('{"title": "x"}') == []


def test_tag_values():
    assert tag_create_values({'name': 'work'}) == {'name': 'work', 'color': '#3B82F6'}
    assert tag_create_values({'name': 'home', 'color': '#10b981'})['color'] == '#10B981'
    with pytest.raises(ValidationError):
        tag_create_values({'name': 'home', 'color': 'green'})
    with pytest.raises(ValidationError):
        tag_patch({'name': 'n' * 51})


def test_apply_patch_reports_changes():
    row = SimpleNamespace(title='a', due_date=datetime(2025, 3, 10, 1, 0), priority=None)
    assert apply_patch(row, {}) is False
    assert apply_patch(row, {'title': 'a'}) is False
    # naive value from the database equals the aware UTC value
    assert apply_patch(row, {'due_date': datetime(2025, 3, 10, 1, 0, tzinfo=timezone.utc)}) is False
    assert apply_patch(row, {'priority': 'low'}) is True
    assert row.priority == 'low'
    assert apply_patch(row, {'priority': None}) is True
    assert row.priority is None


def test_non_negative_int_upper_bound():
    assert validate_non_negative_int(10, 'p', max_value=10) == 10
    with pytest.raises(ValidationError):
        validate_non_negative_int(11, 'p', max_value=10)
    with pytest.raises(ValidationError):
        validate_non_negative_int(11.0, 'p', max_value=10)


def test_reminder_and_offset_limits():
    due = '2025-03-10T09:00'
    assert todo_create_values({'title': 'x', 'due_date': due, 'reminder_minutes': REMINDER_MINUTES_MAX})['reminder_minutes'] == REMINDER_MINUTES_MAX
    with pytest.raises(ValidationError):
        todo_create_values({'title': 'x', 'due_date': due, 'reminder_minutes': 3_000_000_000})
    with pytest.raises(ValidationError):
        todo_patch({'reminder_minutes': REMINDER_MINUTES_MAX + 1})
    with pytest.raises(ValidationError):
        template_create_values({'name': 'ok', 'reminder_minutes': REMINDER_MINUTES_MAX + 1})
    with pytest.raises(ValidationError):
        template_create_values({'name': 'ok', 'due_date_offset_days': DUE_DATE_OFFSET_DAYS_MAX + 1})


@pytest.mark.parametrize('value', [
    '9999-12-31T23:00-12:00',
    '0001-01-01T05:00',
    '9999-12-31T23:00:00Z',
])
def test_datetime_outside_representable_range(value):
    with pytest.raises(ValidationError):
        validate_datetime(value, 'due date')
