"""
Data model for the fund accounting and budget allocation engine.

All state objects are frozen dataclasses holding tuples. Operations never
mutate them in place; they build new snapshots with dataclasses.replace so
the caller always owns the canonical copy.
"""

import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Tuple

ZERO = Decimal("0")


class Classification(enum.Enum):
    """Budget bucket a spending category belongs to."""
    NEEDS = "needs"
    WANTS = "wants"
    DEBT = "debt"
    SAVINGS = "savings"
    UNCLASSIFIED = "unclassified"


class TransactionKind(enum.Enum):
    """Enumeration of one-off transaction kinds."""
    EXPENSE = "expense"
    INCOME = "income"


class ObligationKind(enum.Enum):
    """Enumeration of recurring obligation kinds."""
    SUBSCRIPTION = "subscription"
    SERVICE = "service"
    DEBT = "debt"
    OTHER = "other"


class ObligationStatus(enum.Enum):
    """Lifecycle status of a recurring obligation."""
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"


class EnvelopeKind(enum.Enum):
    """Enumeration of envelope kinds."""
    FIXED = "fixed"
    VARIABLE = "variable"
    SAVINGS = "savings"
    DEBT = "debt"


@dataclass(frozen=True)
class DepositRecord:
    """A single deposit into the fund (payroll or other income event)."""
    date: date
    amount: Decimal


@dataclass(frozen=True)
class AdjustmentRecord:
    """
    Audit entry for a manual balance correction.

    Attributes:
        timestamp: When the correction was made
        previous_balance: Balance before the correction
        new_balance: Balance after the correction
        reason: Free-text justification supplied by the user
    """
    timestamp: datetime
    previous_balance: Decimal
    new_balance: Decimal
    reason: str


@dataclass(frozen=True)
class FundState:
    """
    The single pool of money available to spend.

    Attributes:
        balance: Current available funds (may be negative)
        last_deposit_date: Date of the most recent deposit
        deposit_history: Ordered deposits
        adjustment_history: Ordered manual corrections, never pruned
    """
    balance: Decimal = ZERO
    last_deposit_date: Optional[date] = None
    deposit_history: Tuple[DepositRecord, ...] = ()
    adjustment_history: Tuple[AdjustmentRecord, ...] = ()


@dataclass(frozen=True)
class Transaction:
    """
    A variable expense or income record.

    Attributes:
        id: Unique transaction id
        date: Transaction date
        concept: Short description
        amount: Positive amount
        category: Free-text category label
        fund_linked: True once the amount has been taken from the fund
        kind: Expense or income
    """
    id: str
    date: date
    concept: str
    amount: Decimal
    category: str = ""
    fund_linked: bool = False
    kind: TransactionKind = TransactionKind.EXPENSE

    @property
    def is_expense(self) -> bool:
        return self.kind is TransactionKind.EXPENSE


@dataclass(frozen=True)
class RecurringObligation:
    """
    A fixed recurring expense, possibly a debt paid in installments.

    Attributes:
        id: Unique obligation id
        name: Display name (e.g. "Car loan")
        amount: Monthly amount
        day_of_month: Charge day (1-31, clamped to the month length when charged)
        kind: Subscription, service, debt or other
        status: Active, paused or ended
        installments_remaining: Installments still to pay, if finite
        installments_total: Total installments of the contract, if finite
        interest_rate_pct: Annual interest rate in percent, if known
        category: Free-text category label
    """
    id: str
    name: str
    amount: Decimal
    day_of_month: int = 1
    kind: ObligationKind = ObligationKind.OTHER
    status: ObligationStatus = ObligationStatus.ACTIVE
    installments_remaining: Optional[int] = None
    installments_total: Optional[int] = None
    interest_rate_pct: Optional[Decimal] = None
    category: str = ""

    @property
    def estimated_remaining_balance(self) -> Decimal:
        """Monthly amount times the installments still owed."""
        return self.amount * (self.installments_remaining or 0)

    def validate(self) -> List[str]:
        """
        Check the obligation's invariants.

        Returns:
            List of problems found (empty when valid)
        """
        problems = []
        if self.amount <= ZERO:
            problems.append("amount must be positive")
        if not 1 <= self.day_of_month <= 31:
            problems.append("day_of_month must be between 1 and 31")
        if self.installments_remaining is not None and self.installments_remaining < 0:
            problems.append("installments_remaining cannot be negative")
        if (
            self.installments_remaining is not None
            and self.installments_total is not None
            and self.installments_remaining > self.installments_total
        ):
            problems.append("installments_remaining exceeds installments_total")
        return problems


@dataclass(frozen=True)
class Envelope:
    """
    A named sub-allocation of the fund.

    Attributes:
        id: Envelope id (built-in ids or custom_<hex> for user envelopes)
        name: Display name
        color_tag: UI color hint
        kind: Fixed, variable, savings or debt
        assigned: Money assigned to the envelope
        spent: Money spent against the envelope
        is_default: True for the built-in envelope set
    """
    id: str
    name: str
    color_tag: str = "gray"
    kind: EnvelopeKind = EnvelopeKind.VARIABLE
    assigned: Decimal = ZERO
    spent: Decimal = ZERO
    is_default: bool = False

    @property
    def available(self) -> Decimal:
        return self.assigned - self.spent

    @property
    def is_exceeded(self) -> bool:
        return self.available < ZERO


@dataclass(frozen=True)
class AllocatorState:
    """
    Envelopes plus the unassigned pool for a given fund balance.

    Attributes:
        envelopes: Ordered envelopes
        unassigned_money: Part of the fund not assigned to any envelope
        fund_balance: Fund balance the envelopes were last synchronized with
    """
    envelopes: Tuple[Envelope, ...] = ()
    unassigned_money: Decimal = ZERO
    fund_balance: Decimal = ZERO

    @property
    def total_assigned(self) -> Decimal:
        return sum((envelope.assigned for envelope in self.envelopes), ZERO)

    @property
    def total_spent(self) -> Decimal:
        return sum((envelope.spent for envelope in self.envelopes), ZERO)

    @property
    def over_assigned(self) -> Decimal:
        """Amount by which assignments exceed the fund (after the fund shrank)."""
        return max(ZERO, self.total_assigned - self.fund_balance)

    def get(self, envelope_id: str) -> Optional[Envelope]:
        for envelope in self.envelopes:
            if envelope.id == envelope_id:
                return envelope
        return None


@dataclass(frozen=True)
class Contribution:
    """A recorded contribution toward a savings goal."""
    date: date
    amount: Decimal
    source: str = "manual"


@dataclass(frozen=True)
class SavingsGoal:
    """
    A named savings target.

    Attributes:
        id: Goal id
        name: Display name
        target_amount: Positive target
        deadline_month: Optional deadline as "YYYY-MM"
        progress: Sum of recorded contributions
        contribution_history: Ordered contributions
    """
    id: str
    name: str
    target_amount: Decimal
    deadline_month: Optional[str] = None
    progress: Decimal = ZERO
    contribution_history: Tuple[Contribution, ...] = field(default_factory=tuple)
