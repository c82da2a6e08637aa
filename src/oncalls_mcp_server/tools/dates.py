from __future__ import annotations

import calendar
import math
from datetime import date, datetime
from typing import Optional


def format_date(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise ValueError(f"Invalid date: {value}") from None


def today() -> str:
    return format_date(date.today())


def start_of_month(value: Optional[date] = None) -> str:
    value = value or date.today()
    return format_date(value.replace(day=1))


def end_of_month(value: Optional[date] = None) -> str:
    value = value or date.today()
    last_day = calendar.monthrange(value.year, value.month)[1]
    return format_date(value.replace(day=last_day))


def weeks_between(start: str, end: str) -> int:
    days = abs((parse_date(end) - parse_date(start)).days)
    return max(1, math.ceil(days / 7))
