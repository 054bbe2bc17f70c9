"""
Expense and subscription aggregation.

Pure functions over lists of record dicts (as returned by the record store).
Amounts are summed as Decimal so totals such as 10 * 4.33 come out exact.
"""

import calendar
from dataclasses import dataclass
from datetime import MAXYEAR, MINYEAR, date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Tuple

from due_dates import DateLike, as_date
from errors import ComputationError, ValidationError

WEEKS_PER_MONTH = Decimal("4.33")
MONTHS_PER_YEAR = 12


@dataclass(frozen=True)
class CategoryShare:
    category: str
    amount: Decimal
    percentage: int


@dataclass(frozen=True)
class MonthTotal:
    year: int
    month: int
    label: str
    total: Decimal


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def month_range(year: int, month: int) -> Tuple[date, date]:
    """First and last day of the month, both inclusive."""
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid month: {month}")
    if not MINYEAR <= year <= MAXYEAR:
        raise ValidationError(f"Invalid year: {year}")
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def shift_month(year: int, month: int, offset: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def in_month(records: Iterable[Dict[str, Any]], year: int, month: int) -> List[Dict[str, Any]]:
    start, end = month_range(year, month)
    return [r for r in records if start <= as_date(r["date"]) <= end]


def total_amount(records: Iterable[Dict[str, Any]]) -> Decimal:
    return sum((to_decimal(r["amount"]) for r in records), Decimal("0"))


def monthly_total(records: Iterable[Dict[str, Any]], year: int, month: int) -> Decimal:
    return total_amount(in_month(records, year, month))


def category_breakdown(records: Iterable[Dict[str, Any]], year: int, month: int) -> List[CategoryShare]:
    """Per-category totals for the month with whole-number percentages.

    Categories appear in the order they are first seen in ``records``.
    """
    groups: Dict[str, Decimal] = {}
    for r in in_month(records, year, month):
        groups[r["category"]] = groups.get(r["category"], Decimal("0")) + to_decimal(r["amount"])

    total = sum(groups.values(), Decimal("0"))
    if total < 0:
        raise ComputationError(f"Negative expense total {total} for {year}-{month:02d}")

    shares = []
    for category, amount in groups.items():
        if total > 0:
            pct = int((100 * amount / total).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        else:
            pct = 0
        shares.append(CategoryShare(category, amount, pct))
    return shares


def monthly_equivalent(amount, cycle: str) -> Decimal:
    amount = to_decimal(amount)
    if cycle == "yearly":
        return amount / MONTHS_PER_YEAR
    if cycle == "weekly":
        return amount * WEEKS_PER_MONTH
    if cycle == "monthly":
        return amount
    raise ValidationError(f"Unknown billing cycle: {cycle!r}")


def portfolio_monthly_total(subscriptions: Iterable[Dict[str, Any]]) -> Decimal:
    return sum(
        (monthly_equivalent(s["amount"], s["billing_cycle"]) for s in subscriptions if s.get("is_active")),
        Decimal("0"),
    )


def portfolio_yearly_total(subscriptions: Iterable[Dict[str, Any]]) -> Decimal:
    return portfolio_monthly_total(subscriptions) * MONTHS_PER_YEAR


def bills_monthly_total(bills: Iterable[Dict[str, Any]]) -> Decimal:
    """Sum of active bills billed monthly."""
    return total_amount(b for b in bills if b.get("is_active") and b.get("frequency") == "monthly")


def monthly_history(records: Iterable[Dict[str, Any]], year: int, month: int, months: int = 6) -> List[MonthTotal]:
    """Totals for the ``months`` months ending at year/month, oldest first."""
    if months < 1:
        raise ValidationError("months must be at least 1")
    records = list(records)
    history = []
    for offset in range(months - 1, -1, -1):
        y, m = shift_month(year, month, -offset)
        history.append(MonthTotal(y, m, calendar.month_abbr[m], monthly_total(records, y, m)))
    return history


def daily_average(month_to_date_total, reference: DateLike) -> Decimal:
    return to_decimal(month_to_date_total) / as_date(reference).day


def budget_status(month_total, budget) -> Dict[str, Decimal]:
    month_total = to_decimal(month_total)
    budget = to_decimal(budget)
    if budget <= 0:
        raise ValidationError("budget must be positive")
    return {
        "budget": budget,
        "used_percentage": 100 * month_total / budget,
        "remaining": max(Decimal("0"), budget - month_total),
    }


def filter_expenses(
    records: Iterable[Dict[str, Any]],
    search: Optional[str] = None,
    category: Optional[str] = None,
) -> List[Dict[str, Any]]:
    needle = (search or "").lower()
    result = []
    for r in records:
        if category and r.get("category") != category:
            continue
        if needle:
            haystack = "\n".join(
                (r.get(field) or "").lower() for field in ("purpose", "category", "description")
            )
            if needle not in haystack:
                continue
        result.append(r)
    return result
