"""
Debt payoff simulation module.

Orders debts by the snowball (smallest balance first) or avalanche (highest
interest first) strategy and projects a month-by-month payoff, optionally
injecting a recurring extra payment. The simulation is bounded by a month
cap; hitting it yields a SimulationDivergence with partial results instead
of an error.
"""

import enum
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd

from classification import Classifier
from exceptions import FinanceAppError, InvalidAmountError, InvalidInputError
from models import ZERO, ObligationKind, ObligationStatus, RecurringObligation
from results import OperationResult
from utils import quantize_cents, to_decimal

logger = logging.getLogger(__name__)

MONTHLY_RATE_DIVISOR = Decimal("1200")
DEFAULT_MAX_MONTHS = 360


class Strategy(enum.Enum):
    """Debt ordering strategy."""
    SNOWBALL = "snowball"
    AVALANCHE = "avalanche"


@dataclass(frozen=True)
class NoDebts:
    """Result returned when there is nothing to simulate."""
    message: str = "No active debts with installments remaining"


@dataclass(frozen=True)
class SimulationDivergence:
    """
    The simulation hit its month cap before every debt reached zero.

    Attributes:
        cap: Month cap that was reached
        unpaid: Remaining balance per debt name at the cap
    """
    cap: int
    unpaid: Dict[str, Decimal]


@dataclass(frozen=True)
class PayoffEntry:
    """One debt in payoff order."""
    position: int
    debt_id: str
    name: str
    monthly_amount: Decimal
    starting_balance: Decimal
    interest_rate_pct: Optional[Decimal]
    months_to_zero: Optional[int]


@dataclass(frozen=True)
class ScheduleRow:
    """Payments made to one debt in one simulated month."""
    month: int
    debt_id: str
    name: str
    installment: Decimal
    extra: Decimal
    remaining: Decimal


@dataclass(frozen=True)
class ExtraPaymentComparison:
    """
    Effect of an extra monthly payment against the zero-extra baseline.

    Attributes:
        extra_monthly_payment: Extra amount injected each month
        baseline_months: Months to debt freedom without the extra payment
        months_with_extra: Months to debt freedom with it
        months_saved: Difference between the two
        interest_saved: Estimated interest avoided by the extra payments
    """
    extra_monthly_payment: Decimal
    baseline_months: int
    months_with_extra: int
    months_saved: int
    interest_saved: Decimal


@dataclass(frozen=True)
class PayoffPlan:
    """
    Projected payoff of a set of debts.

    Attributes:
        strategy: Ordering strategy used
        entries: Debts in payoff order with months to zero
        total_months: Months simulated until every debt was paid (or the cap)
        release_calendar: month -> {debt name -> monthly amount freed}
        schedule: Per-month payment rows
        extra_monthly_payment: Extra amount injected each month
        comparison: Baseline comparison when an extra payment was given
        divergence: Set when the month cap was reached
        fell_back_to_snowball: True when avalanche had no rates to sort by
    """
    strategy: Strategy
    entries: Tuple[PayoffEntry, ...]
    total_months: int
    release_calendar: Dict[int, Dict[str, Decimal]]
    schedule: Tuple[ScheduleRow, ...] = ()
    extra_monthly_payment: Decimal = ZERO
    comparison: Optional[ExtraPaymentComparison] = None
    divergence: Optional[SimulationDivergence] = None
    fell_back_to_snowball: bool = False

    @property
    def converged(self) -> bool:
        return self.divergence is None

    @property
    def order(self) -> List[str]:
        return [entry.name for entry in self.entries]

    def schedule_frame(self) -> pd.DataFrame:
        """Return the payment schedule as a DataFrame."""
        columns = ['month', 'debt_id', 'name', 'installment', 'extra', 'remaining']
        if not self.schedule:
            return pd.DataFrame(columns=columns)
        return pd.DataFrame([
            {
                'month': row.month,
                'debt_id': row.debt_id,
                'name': row.name,
                'installment': float(row.installment),
                'extra': float(row.extra),
                'remaining': float(row.remaining),
            }
            for row in self.schedule
        ], columns=columns)


@dataclass
class _SimulationRun:
    months: int = 0
    months_to_zero: Dict[str, int] = field(default_factory=dict)
    schedule: List[ScheduleRow] = field(default_factory=list)
    interest_saved: Decimal = ZERO
    unpaid: Dict[str, Decimal] = field(default_factory=dict)


class DebtPayoffSimulator:
    """
    Projects debt payoff under snowball or avalanche ordering.

    Projections never mutate the obligations passed in.
    """

    def __init__(self, classifier: Optional[Classifier] = None, max_months: int = DEFAULT_MAX_MONTHS):
        """
        Initialize simulator.

        Args:
            classifier: Used to recognise debts by category keyword
            max_months: Safety cap on simulated months
        """
        self.classifier = classifier or Classifier()
        self.max_months = max_months

    def candidates(self, obligations: Iterable[RecurringObligation]) -> List[RecurringObligation]:
        """
        Select the obligations that are debts with installments left.

        A debt is an obligation of kind debt or whose category matches a
        debt keyword; ended obligations never qualify.
        """
        selected = []
        for obligation in obligations:
            if obligation.status is ObligationStatus.ENDED:
                continue
            if not (obligation.installments_remaining or 0) > 0 or obligation.amount <= ZERO:
                continue
            if obligation.kind is ObligationKind.DEBT or self.classifier.is_debt_label(obligation.category):
                selected.append(obligation)
        return selected

    @staticmethod
    def _snowball_key(debt: RecurringObligation) -> Tuple[Decimal, str]:
        return (debt.estimated_remaining_balance, debt.name)

    def order(self, debts: List[RecurringObligation], strategy: Strategy) -> Tuple[List[RecurringObligation], bool]:
        """
        Order debts for a strategy.

        Returns:
            Tuple of (ordered debts, whether avalanche fell back to snowball)
        """
        if strategy is Strategy.AVALANCHE and any(d.interest_rate_pct is not None for d in debts):
            # Debts without a rate go last
            return sorted(
                debts,
                key=lambda d: (
                    d.interest_rate_pct is None,
                    -(d.interest_rate_pct or ZERO),
                    self._snowball_key(d),
                ),
            ), False
        return sorted(debts, key=self._snowball_key), strategy is Strategy.AVALANCHE

    def _simulate(self, ordered: List[RecurringObligation], extra: Decimal) -> _SimulationRun:
        run = _SimulationRun()
        balances = {debt.id: debt.estimated_remaining_balance for debt in ordered}

        while any(balance > ZERO for balance in balances.values()) and run.months < self.max_months:
            run.months += 1
            month = run.months
            installments: Dict[str, Decimal] = {}
            extras: Dict[str, Decimal] = {}

            for debt in ordered:
                if balances[debt.id] > ZERO:
                    payment = min(debt.amount, balances[debt.id])
                    balances[debt.id] -= payment
                    installments[debt.id] = payment

            extra_left = extra
            for debt in ordered:
                if extra_left <= ZERO:
                    break
                if balances[debt.id] > ZERO:
                    applied = min(extra_left, balances[debt.id])
                    balances[debt.id] -= applied
                    extra_left -= applied
                    extras[debt.id] = applied
                    run.interest_saved += applied * (debt.interest_rate_pct or ZERO) / MONTHLY_RATE_DIVISOR

            for debt in ordered:
                if debt.id not in installments:
                    continue
                run.schedule.append(ScheduleRow(
                    month=month,
                    debt_id=debt.id,
                    name=debt.name,
                    installment=installments[debt.id],
                    extra=extras.get(debt.id, ZERO),
                    remaining=balances[debt.id],
                ))
                if balances[debt.id] <= ZERO and debt.id not in run.months_to_zero:
                    run.months_to_zero[debt.id] = month

        run.unpaid = {debt.name: balances[debt.id] for debt in ordered if balances[debt.id] > ZERO}
        return run

    def project(
        self,
        debts: Iterable[RecurringObligation],
        strategy: Union[Strategy, str] = Strategy.SNOWBALL,
        extra_monthly_payment: Any = 0
    ) -> OperationResult[Union[PayoffPlan, NoDebts]]:
        """
        Project the payoff of a set of debts.

        Args:
            debts: Recurring obligations; non-debts are filtered out
            strategy: 'snowball' or 'avalanche'
            extra_monthly_payment: Extra amount (>= 0) paid each month on the
                first debt in order that still has a balance

        Returns:
            OperationResult holding a PayoffPlan, or NoDebts when nothing
            qualifies; invalid arguments are failures
        """
        try:
            strategy = strategy if isinstance(strategy, Strategy) else Strategy(str(strategy).lower())
        except ValueError as e:
            error = InvalidInputError("Unknown payoff strategy", details={'strategy': strategy}, original_error=e)
            logger.warning(f"Rejected projection: {error}")
            return OperationResult.failure(error)

        try:
            extra = to_decimal(extra_monthly_payment, 'extra_monthly_payment')
        except FinanceAppError as e:
            logger.warning(f"Rejected projection: {e}")
            return OperationResult.failure(e)
        if extra < ZERO:
            error = InvalidAmountError("Extra payment cannot be negative", details={'extra_monthly_payment': extra_monthly_payment})
            logger.warning(f"Rejected projection: {error}")
            return OperationResult.failure(error)

        selected = self.candidates(debts)
        if not selected:
            logger.info("No debts to project")
            return OperationResult.success(NoDebts())

        ordered, fell_back = self.order(selected, strategy)
        run = self._simulate(ordered, extra)

        entries = tuple(
            PayoffEntry(
                position=position,
                debt_id=debt.id,
                name=debt.name,
                monthly_amount=debt.amount,
                starting_balance=debt.estimated_remaining_balance,
                interest_rate_pct=debt.interest_rate_pct,
                months_to_zero=run.months_to_zero.get(debt.id),
            )
            for position, debt in enumerate(ordered, start=1)
        )

        release_calendar: Dict[int, Dict[str, Decimal]] = {}
        for debt in ordered:
            month = run.months_to_zero.get(debt.id)
            if month is not None:
                release_calendar.setdefault(month, {})[debt.name] = debt.amount

        divergence = None
        warnings = []
        if run.unpaid:
            divergence = SimulationDivergence(cap=self.max_months, unpaid=run.unpaid)
            warnings.append(f"Simulation stopped at the {self.max_months}-month cap with unpaid debts")
            logger.warning(f"{warnings[-1]}: {sorted(run.unpaid)}")
        if fell_back:
            warnings.append("No interest rates recorded; avalanche ordered by balance")

        comparison = None
        if extra > ZERO:
            baseline = self._simulate(ordered, ZERO)
            comparison = ExtraPaymentComparison(
                extra_monthly_payment=extra,
                baseline_months=baseline.months,
                months_with_extra=run.months,
                months_saved=baseline.months - run.months,
                interest_saved=quantize_cents(run.interest_saved),
            )

        plan = PayoffPlan(
            strategy=strategy,
            entries=entries,
            total_months=run.months,
            release_calendar=release_calendar,
            schedule=tuple(run.schedule),
            extra_monthly_payment=extra,
            comparison=comparison,
            divergence=divergence,
            fell_back_to_snowball=fell_back,
        )
        logger.info(f"Projected {len(entries)} debts with {strategy.value}: debt-free in {run.months} months")
        return OperationResult.success(plan, warnings)

    def compare_strategies(
        self,
        debts: Iterable[RecurringObligation],
        extra_monthly_payment: Any = 0
    ) -> Dict[Strategy, OperationResult[Union[PayoffPlan, NoDebts]]]:
        """Project the same debts under both strategies."""
        debts = list(debts)
        return {strategy: self.project(debts, strategy, extra_monthly_payment) for strategy in Strategy}
