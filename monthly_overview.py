"""
Monthly overview of income, fixed charges and variable spending.

summarize_month gives the month's totals and what is left after active
obligations and one-off expenses. charge_calendar lays the active
obligations out on the days they are actually charged: an obligation set
for day 31 falls on the last day of shorter months.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, List

from distribution_analysis import monthly_income_for
from models import ZERO, ObligationStatus, RecurringObligation, Transaction
from utils import charge_day, in_month, parse_month

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonthSummary:
    """
    Totals for one "YYYY-MM" month.

    Attributes:
        month: Month summarised
        income: Base income plus the month's income records
        fixed_total: Sum of active recurring obligations
        variable_total: Sum of the month's one-off expenses
        remaining: income - fixed_total - variable_total (may be negative)
    """
    month: str
    income: Decimal
    fixed_total: Decimal
    variable_total: Decimal
    remaining: Decimal

    @property
    def total_spent(self) -> Decimal:
        return self.fixed_total + self.variable_total


@dataclass(frozen=True)
class ScheduledCharge:
    """An obligation charge placed on its calendar day."""
    date: date
    obligation_id: str
    name: str
    amount: Decimal
    category: str


def summarize_month(
    base_income: Any,
    obligations: Iterable[RecurringObligation],
    transactions: Iterable[Transaction],
    month: str
) -> MonthSummary:
    """
    Summarise a month.

    Paused and ended obligations are left out. Every active obligation
    counts in full whatever its charge day.

    Raises:
        InvalidInputError: If month is not "YYYY-MM"
        InvalidAmountError: If base_income is not numeric
    """
    parse_month(month)
    transactions = list(transactions)
    income = monthly_income_for(base_income, transactions, month)
    fixed = sum((o.amount for o in obligations if o.status is ObligationStatus.ACTIVE), ZERO)
    variable = sum((t.amount for t in transactions if t.is_expense and in_month(t.date, month)), ZERO)
    return MonthSummary(
        month=month,
        income=income,
        fixed_total=fixed,
        variable_total=variable,
        remaining=income - fixed - variable,
    )


def charge_calendar(obligations: Iterable[RecurringObligation], month: str, from_day: int = 1) -> List[ScheduledCharge]:
    """
    Active obligation charges of a month, in date order.

    Args:
        obligations: Recurring obligations
        month: Month as "YYYY-MM"
        from_day: Leave out charges falling before this day

    Returns:
        Charges sorted by date, then name
    """
    year, month_number = parse_month(month)
    charges = []
    for obligation in obligations:
        if obligation.status is not ObligationStatus.ACTIVE:
            continue
        day = charge_day(obligation.day_of_month, year, month_number)
        if day < from_day:
            continue
        charges.append(ScheduledCharge(
            date=date(year, month_number, day),
            obligation_id=obligation.id,
            name=obligation.name,
            amount=obligation.amount,
            category=obligation.category,
        ))
    charges.sort(key=lambda c: (c.date, c.name))
    logger.debug(f"{len(charges)} charges scheduled in {month} from day {from_day}")
    return charges
