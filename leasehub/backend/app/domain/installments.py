# backend/app/domain/installments.py
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from typing import Any, Iterable, Optional

from .errors import ValidationError

ALLOWED_CHEQUE_COUNTS: tuple[int, ...] = (1, 2, 4, 6, 12)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class Installment:
    installment_number: int
    due_date: date
    amount: Decimal

    def as_dict(self) -> dict:
        return {
            "installment": self.installment_number,
            "due_date": self.due_date.isoformat(),
            "amount": str(self.amount),
        }


def as_date(v: Any) -> Optional[date]:
    """date | datetime | ISO string -> date. None for anything unparseable."""
    if v is None:
        return None
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    s = str(v).strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return None


def as_money(v: Any, *, field: str = "amount") -> Decimal:
    try:
        d = Decimal(str(v))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field} must be a number")
    if not d.is_finite():
        raise ValidationError(f"{field} must be a number")
    if d != d.quantize(CENT):
        raise ValidationError(f"{field} cannot have more than 2 decimal places")
    return d.quantize(CENT)


def add_months(d: date, months: int) -> date:
    """Calendar month arithmetic; the day is clamped to the target month's length."""
    idx = d.month - 1 + int(months)
    y = d.year + idx // 12
    m = idx % 12 + 1
    last_day = calendar.monthrange(y, m)[1]
    return date(y, m, min(d.day, last_day))


def interval_months(cheque_count: int) -> int:
    return 12 // int(cheque_count)


def split_amount(rent_amount: Decimal, cheque_count: int) -> list[Decimal]:
    """
    Base amount floored to cents for every installment but the last;
    the last one takes whatever is left so the sum is exact.
    """
    n = int(cheque_count)
    base = (rent_amount / n).quantize(CENT, rounding=ROUND_FLOOR)
    last = rent_amount - base * (n - 1)
    return [base] * (n - 1) + [last]


def _parse_cheque_count(v: Any, allowed: Iterable[int]) -> int:
    allowed_set = tuple(int(x) for x in allowed)
    n: Optional[int] = None
    if isinstance(v, int) and not isinstance(v, bool):
        n = v
    elif isinstance(v, str) and v.strip().isdigit():
        n = int(v.strip())
    if n is None or n not in allowed_set:
        raise ValidationError(
            "Cheque count must be one of " + ", ".join(str(x) for x in allowed_set)
        )
    return n


def build_schedule(
    *,
    rent_amount: Any,
    cheque_count: Any,
    start_date: Any,
    lease_end_date: Any = None,
    allowed_counts: Iterable[int] = ALLOWED_CHEQUE_COUNTS,
) -> list[Installment]:
    """
    Pure installment scheduler.

    - interval = 12 / cheque_count months
    - installment i (0-based) is due start_date + i * interval months,
      clamped to lease_end_date when it would fall after it
    - amounts always sum to rent_amount exactly
    """
    n = _parse_cheque_count(cheque_count, allowed_counts)

    rent = as_money(rent_amount, field="rent_amount")
    if rent <= 0:
        raise ValidationError("rent_amount must be greater than zero")

    start = as_date(start_date)
    if start is None:
        raise ValidationError("Invalid first due date")

    end = as_date(lease_end_date)
    if lease_end_date is not None and end is None:
        raise ValidationError("Invalid lease end date")

    step = interval_months(n)
    amounts = split_amount(rent, n)

    out: list[Installment] = []
    for i, amount in enumerate(amounts):
        due = add_months(start, i * step)
        if end is not None and due > end:
            due = end
        out.append(Installment(installment_number=i + 1, due_date=due, amount=amount))
    return out


def payment_plan_summary(schedule: list[Installment]) -> list[dict]:
    return [x.as_dict() for x in schedule]
