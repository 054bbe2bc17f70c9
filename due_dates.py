"""
Due-date classification for bills and subscriptions.

Every function takes the reference instant as an argument; nothing here
reads the clock.
"""

import enum
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Union

from errors import ValidationError

DateLike = Union[date, datetime, str]

DUE_SOON_DAYS = 3
THIS_WEEK_DAYS = 7


class Urgency(str, enum.Enum):
    OVERDUE = "overdue"
    DUE_TODAY = "due_today"
    DUE_SOON = "due_soon"
    UPCOMING = "upcoming"


def as_date(value: DateLike) -> date:
    """Coerce a date, datetime or ISO string to a calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        # a trailing time part ("T...") is dropped; nothing else may follow the date
        if len(value) > 10 and value[10] != "T":
            raise ValidationError(f"Invalid date: {value!r}")
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            raise ValidationError(f"Invalid date: {value!r}")
    raise ValidationError(f"Invalid date: {value!r}")


def days_until(target: DateLike, reference: DateLike) -> int:
    # calendar dates only; a reference datetime contributes its date
    return (as_date(target) - as_date(reference)).days


def classify_by_urgency(days: int) -> Urgency:
    if days < 0:
        return Urgency.OVERDUE
    if days == 0:
        return Urgency.DUE_TODAY
    if days <= DUE_SOON_DAYS:
        return Urgency.DUE_SOON
    return Urgency.UPCOMING


def is_this_week(days: int) -> bool:
    return 0 <= days <= THIS_WEEK_DAYS


def due_field(record: Dict[str, Any]) -> str:
    if "due_date" in record:
        return "due_date"
    if "next_payment" in record:
        return "next_payment"
    raise ValidationError("Record has neither due_date nor next_payment")


def record_days_until(record: Dict[str, Any], reference: DateLike) -> int:
    return days_until(record[due_field(record)], reference)


def sort_by_due(records: Iterable[Dict[str, Any]], reference: DateLike) -> List[Dict[str, Any]]:
    # sorted() is stable, so equal deltas keep the incoming (id) order
    return sorted(records, key=lambda r: record_days_until(r, reference))


def select_upcoming(
    records: Iterable[Dict[str, Any]], window_days: int, reference: DateLike
) -> List[Dict[str, Any]]:
    """Active records due within the next ``window_days`` days, soonest first."""
    selected = [
        r for r in records
        if r.get("is_active") and 0 <= record_days_until(r, reference) <= window_days
    ]
    return sort_by_due(selected, reference)


def select_overdue(records: Iterable[Dict[str, Any]], reference: DateLike) -> List[Dict[str, Any]]:
    """Active records past their date, most overdue first."""
    selected = [r for r in records if r.get("is_active") and record_days_until(r, reference) < 0]
    return sort_by_due(selected, reference)


def annotate(record: Dict[str, Any], reference: DateLike) -> Dict[str, Any]:
    days = record_days_until(record, reference)
    d = dict(record)
    d["days_until"] = days
    d["urgency"] = classify_by_urgency(days).value
    d["this_week"] = is_this_week(days)
    return d
