import datetime

import pytest

from deferagent.utils.time_utils import (
    VERY_SOON,
    convert_seconds,
    format_timestamp,
    remaining_time_phrase,
    shift_out_of_workday,
)


def _local_epoch(*args) -> int:
    return int(datetime.datetime(*args).timestamp())


@pytest.mark.parametrize("remaining, expected", [
    (259200, "3 days"),
    (172801, "2 days"),
    (172800, "48 hours"),
    (7201, "2 hours"),
    (7200, "120 minutes"),
    (5000, "83 minutes"),
    (120, "2 minutes"),
    (61, "1 minute"),
    (60, VERY_SOON),
    (0, VERY_SOON),
    (-30, VERY_SOON),
])
def test_remaining_time_phrase(remaining, expected):
    assert remaining_time_phrase(remaining) == expected


def test_convert_seconds():
    assert convert_seconds(90061) == "01d:01h:01m:01s"
    assert convert_seconds(-5) == "00d:00h:00m:00s"


def test_format_timestamp_absent_value():
    assert format_timestamp(None) == "never"


def test_format_timestamp_uses_local_time():
    epoch = _local_epoch(2026, 3, 2, 14, 5, 0)
    assert format_timestamp(epoch) == "2026-03-02 14:05:00"


def test_deadline_inside_workday_moves_to_end_of_day():
    deadline = _local_epoch(2026, 6, 10, 10, 30, 15)
    assert shift_out_of_workday(deadline, 8, 17) == _local_epoch(2026, 6, 10, 17, 0, 0)


@pytest.mark.parametrize("hour", [7, 17, 23])
def test_deadline_outside_workday_is_unchanged(hour):
    deadline = _local_epoch(2026, 6, 10, hour, 45, 0)
    assert shift_out_of_workday(deadline, 8, 17) == deadline


def test_workday_start_hour_is_inclusive():
    deadline = _local_epoch(2026, 6, 10, 8, 0, 0)
    assert shift_out_of_workday(deadline, 8, 17) == _local_epoch(2026, 6, 10, 17, 0, 0)
