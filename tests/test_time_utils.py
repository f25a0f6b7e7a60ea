from datetime import date, time

import pytest

from gymbook.models import MembershipStatus, PlanType
from gymbook.time_utils import (
    calculate_end_date,
    canonical_ymd,
    classify_status,
    days_remaining,
    format_date,
    format_slot_time,
    next_dates,
    normalize_phone,
    parse_slot_time,
    plan_days,
)

TODAY = date(2024, 3, 10)


def test_next_dates_window():
    dates = next_dates(14, today=TODAY)
    assert len(dates) == 14
    assert dates[0].date == "2024-03-10"
    assert dates[0].is_today is True
    assert not any(d.is_today for d in dates[1:])
    assert dates[-1].date == "2024-03-23"
    assert dates[0].day_name == "Sun"
    assert dates[0].day_num == 10
    assert dates[0].month == "Mar"


def test_next_dates_crosses_month():
    dates = next_dates(3, today=date(2024, 1, 31))
    assert [d.date for d in dates] == ["2024-01-31", "2024-02-01", "2024-02-02"]
    assert dates[1].month == "Feb"


def test_next_dates_empty_window():
    assert next_dates(0, today=TODAY) == []


def test_days_remaining_is_date_only():
    assert days_remaining("2024-03-10", today=TODAY) == 0
    assert days_remaining("2024-03-17", today=TODAY) == 7
    assert days_remaining("2024-03-09", today=TODAY) == -1
    assert days_remaining(date(2024, 4, 9), today=TODAY) == 30


@pytest.mark.parametrize(
    "offset, expected",
    [
        (-1, MembershipStatus.expired),
        (0, MembershipStatus.expiring),
        (7, MembershipStatus.expiring),
        (8, MembershipStatus.active),
    ],
)
def test_classify_status_boundaries(offset, expected):
    end = date.fromordinal(TODAY.toordinal() + offset)
    assert classify_status(end, today=TODAY) == expected


def test_calculate_end_date():
    assert calculate_end_date("2024-01-01", "1_month") == "2024-01-31"
    assert calculate_end_date("2024-01-01", PlanType.one_year) == "2024-12-31"
    assert calculate_end_date("2024-01-01", "3_months") == "2024-03-31"


def test_calculate_end_date_rejects_unknown_plan():
    with pytest.raises(ValueError):
        calculate_end_date("2024-01-01", "7_weeks")


def test_plan_days_table():
    assert [plan_days(p) for p in PlanType] == [30, 60, 90, 120, 150, 180, 365]


def test_normalize_phone():
    assert normalize_phone("(555) 123-4567") == "5551234567"
    assert normalize_phone("+91 98765 43210") == "+919876543210"
    assert normalize_phone("") == ""


def test_slot_time_helpers():
    assert parse_slot_time("5:30 AM") == time(5, 30)
    assert parse_slot_time("7:00 pm") == time(19, 0)
    assert parse_slot_time("17:45") == time(17, 45)
    assert parse_slot_time("sunrise") is None
    assert format_slot_time("5:30 AM", "7:00 AM") == "5:30 AM - 7:00 AM"
    assert format_date("2024-01-01") == "Mon, Jan 1"


def test_canonical_ymd_pads_month_and_day():
    assert canonical_ymd("2030-1-7") == "2030-01-07"
    assert canonical_ymd(" 2030-01-07 ") == "2030-01-07"
    with pytest.raises(ValueError):
        canonical_ymd("2030-02-30")
    with pytest.raises(ValueError):
        canonical_ymd("07/01/2030")
