from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date as date_type
from datetime import datetime, time, timedelta
from typing import List, Optional, Union

from gymbook.models import PLAN_DAYS, MembershipStatus, PlanType

EXPIRING_THRESHOLD_DAYS = 7

_PHONE_NOISE = re.compile(r"[\s\-()]")


@dataclass(frozen=True)
class DateOption:
    date: str
    day_name: str
    day_num: int
    month: str
    is_today: bool


def parse_ymd(value: str) -> date_type:
    return datetime.strptime(value, "%Y-%m-%d").date()


def to_ymd(value: date_type) -> str:
    return value.strftime("%Y-%m-%d")


def canonical_ymd(value: str) -> str:
    """Zero-padded YYYY-MM-DD for any date strptime accepts ("2030-1-7" -> "2030-01-07").

    Dates are stored and compared as strings, so every date entering the
    store goes through here. Raises ValueError for anything unparseable.
    """
    return to_ymd(parse_ymd(value.strip()))


def _as_date(value: Union[str, date_type]) -> date_type:
    if isinstance(value, str):
        return parse_ymd(value)
    return value


def next_dates(window_days: int, today: Optional[date_type] = None) -> List[DateOption]:
    start = today or date_type.today()
    options: List[DateOption] = []
    for offset in range(max(window_days, 0)):
        day = start + timedelta(days=offset)
        options.append(
            DateOption(
                date=to_ymd(day),
                day_name=day.strftime("%a"),
                day_num=day.day,
                month=day.strftime("%b"),
                is_today=offset == 0,
            )
        )
    return options


def days_remaining(end_date: Union[str, date_type], today: Optional[date_type] = None) -> int:
    # Date-only arithmetic; time of day never shifts the count
    return (_as_date(end_date) - (today or date_type.today())).days


def classify_status(
    end_date: Union[str, date_type],
    today: Optional[date_type] = None,
    threshold: int = EXPIRING_THRESHOLD_DAYS,
) -> MembershipStatus:
    remaining = days_remaining(end_date, today=today)
    if remaining < 0:
        return MembershipStatus.expired
    if remaining <= threshold:
        return MembershipStatus.expiring
    return MembershipStatus.active


def plan_days(plan_type: Union[str, PlanType]) -> int:
    """Day count for a plan. Raises ValueError for an unknown plan."""
    return PLAN_DAYS[PlanType(plan_type)]


def calculate_end_date(start_date: Union[str, date_type], plan_type: Union[str, PlanType]) -> str:
    return to_ymd(_as_date(start_date) + timedelta(days=plan_days(plan_type)))


def normalize_phone(value: str) -> str:
    return _PHONE_NOISE.sub("", value or "")


def weekday_long_name(value: str) -> str:
    return parse_ymd(value).strftime("%A")


def format_date(value: str) -> str:
    day = parse_ymd(value)
    return f"{day.strftime('%a')}, {day.strftime('%b')} {day.day}"


def format_slot_time(time_start: str, time_end: str) -> str:
    return f"{time_start} - {time_end}"


def parse_slot_time(value: str) -> Optional[time]:
    """Parse "5:30 AM" or "17:00" style slot times; None if neither fits."""
    text = (value or "").strip().upper()
    for fmt in ("%I:%M %p", "%I:%M%p", "%H:%M"):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    return None
