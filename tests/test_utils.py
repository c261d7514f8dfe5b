from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from todo_app.utils import (
    ensure_utc,
    to_local,
    localize,
    isoformat_local,
    parse_datetime,
    now_local,
    app_timezone,
)

SG = ZoneInfo('Asia/Singapore')


def test_ensure_utc_treats_naive_as_utc():
    assert ensure_utc(datetime(2025, 3, 10, 1, 0)) == datetime(2025, 3, 10, 1, 0, tzinfo=timezone.utc)
    assert ensure_utc(None) is None


def test_ensure_utc_converts_aware():
    out = ensure_utc(datetime(2025, 3, 10, 9, 0, tzinfo=SG))
    assert out.tzinfo == timezone.utc
    assert out.hour == 1


def test_to_local_and_isoformat():
    dt = datetime(2025, 3, 10, 1, 0, tzinfo=timezone.utc)
    assert to_local(dt).hour == 9
    assert isoformat_local(dt) == '2025-03-10T09:00:00+08:00'
    assert isoformat_local(None) is None


def test_localize_naive_is_wall_time():
    assert localize(datetime(2025, 3, 10, 9, 0)) == datetime(2025, 3, 10, 9, 0, tzinfo=SG)


def test_now_local_uses_application_timezone():
    assert now_local().utcoffset().total_seconds() == 8 * 3600


def test_unknown_timezone_falls_back_to_utc():
    assert app_timezone('Nowhere/Nothing') == ZoneInfo('UTC')


def test_parse_iso_without_offset_is_local_wall_time():
    assert parse_datetime('2025-03-10T09:00') == datetime(2025, 3, 10, 9, 0, tzinfo=SG)


def test_parse_iso_with_z_suffix():
    assert ensure_utc(parse_datetime('2025-03-10T01:00:00Z')) == datetime(2025, 3, 10, 1, 0, tzinfo=timezone.utc)


def test_parse_iso_with_offset():
    out = parse_datetime('2025-03-10T09:00:00+08:00')
    assert ensure_utc(out) == datetime(2025, 3, 10, 1, 0, tzinfo=timezone.utc)


def test_parse_natural_language_is_future_and_aware():
    out = parse_datetime('tomorrow 9am')
    assert out.tzinfo is not None
    assert out > now_local()


@pytest.mark.parametrize('value', ['banana', '', '   ', None, 42])
def test_parse_rejects_garbage(value):
    with pytest.raises(ValueError):
        parse_datetime(value)
