"""
Payment Plan Calculator
=======================

Splits a total price into 1-3 monthly installments and builds the
schedule shown in the checkout modal.

Rounding rule
-------------
Each installment is ``total // count``; the leftover cents
(``total % count``) are added to the first installment. The later
installments are therefore always identical, which is what a fixed-price
monthly subscription charges, and the installments always sum to the
total.

    >>> split_amount(39500, 3)
    [13168, 13166, 13166]
"""

import calendar as _calendar
from dataclasses import dataclass
from datetime import date
from typing import List, Tuple

MIN_INSTALLMENTS = 1
MAX_INSTALLMENTS = 3

_ORDINALS = {1: "First", 2: "Second", 3: "Third"}


def format_usd(cents: int) -> str:
    return f"${cents / 100:,.2f}"


def add_months(start: date, months: int) -> date:
    """Shift a date by whole calendar months, clamping to the end of short months."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    last_day = _calendar.monthrange(year, month)[1]
    return date(year, month, min(start.day, last_day))


def split_amount(total: int, count: int) -> List[int]:
    if not MIN_INSTALLMENTS <= count <= MAX_INSTALLMENTS:
        raise ValueError(
            f"Installment count must be between {MIN_INSTALLMENTS} and {MAX_INSTALLMENTS}."
        )
    if total <= 0:
        raise ValueError("Total must be a positive amount of cents.")
    if total < count:
        raise ValueError("Total must cover at least one cent per installment.")
    base, remainder = divmod(total, count)
    return [base + remainder] + [base] * (count - 1)


@dataclass(frozen=True)
class Installment:
    number: int
    amount: int
    due_date: date


@dataclass(frozen=True)
class PaymentPlan:
    total: int
    installments: Tuple[Installment, ...]

    @property
    def count(self) -> int:
        return len(self.installments)

    @property
    def is_split(self) -> bool:
        return self.count > 1

    @property
    def first_amount(self) -> int:
        return self.installments[0].amount

    @property
    def recurring_amount(self) -> int:
        """Amount of each installment after the first (0 for single payments)."""
        return self.installments[1].amount if self.is_split else 0

    @property
    def remaining_count(self) -> int:
        return self.count - 1

    @property
    def option_type(self) -> str:
        return "full" if not self.is_split else f"split-{self.count}"

    @property
    def payment_type(self) -> str:
        return "split_payment" if self.is_split else "full_payment"

    @property
    def label(self) -> str:
        if not self.is_split:
            return f"Pay in full: {format_usd(self.total)}"
        if self.first_amount == self.recurring_amount:
            return f"{self.count} payments × {format_usd(self.first_amount)}"
        return f"{self.count} payments starting at {format_usd(self.first_amount)}"

    def schedule_lines(self) -> List[str]:
        if not self.is_split:
            return [f"One-time payment: {format_usd(self.total)}"]
        lines = []
        for installment in self.installments:
            when = f"{installment.due_date:%b} {installment.due_date.day}, {installment.due_date.year}"
            if installment.number == 1:
                title = "First Payment Today"
            elif installment.number == self.count:
                title = "Final Payment"
            else:
                title = f"{_ORDINALS[installment.number]} Payment"
            lines.append(f"{title}: {format_usd(installment.amount)} ({when})")
        return lines

    def as_dict(self) -> dict:
        return {
            "type": self.option_type,
            "label": self.label,
            "total": self.total,
            "installments": self.count,
            "is_split": self.is_split,
            "first_amount": self.first_amount,
            "recurring_amount": self.recurring_amount,
            "schedule": [
                {
                    "number": i.number,
                    "amount": i.amount,
                    "due_date": i.due_date.isoformat(),
                }
                for i in self.installments
            ],
            "schedule_lines": self.schedule_lines(),
        }


def build_payment_plan(total: int, count: int, today: date) -> PaymentPlan:
    amounts = split_amount(total, count)
    installments = tuple(
        Installment(number=n + 1, amount=amount, due_date=add_months(today, n))
        for n, amount in enumerate(amounts)
    )
    return PaymentPlan(total=total, installments=installments)
