"""
Budgeting module for envelope (zero-based) budget management.

This module partitions the fund balance into envelopes with assigned/spent
tracking, transfers between envelopes and an unassigned pool. Every mutating
operation leaves sum(assigned) + unassigned_money equal to the fund balance;
when the fund shrinks below what is assigned, the gap is reported as
over_assigned instead of a negative pool.
"""

import logging
from dataclasses import replace
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from exceptions import (
    InsufficientEnvelopeFundsError,
    InvalidAmountError,
    InvalidInputError,
    OverAllocationError,
)
from models import ZERO, AllocatorState, Envelope, EnvelopeKind
from results import OperationResult
from utils import floor_cents, new_id, to_decimal, to_positive_decimal

# Configure logging
logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
CUSTOM_PREFIX = "custom_"

# (id, name, color, kind) of the built-in envelope set
DEFAULT_ENVELOPES: Tuple[Tuple[str, str, str, EnvelopeKind], ...] = (
    ("needs", "Needs", "blue", EnvelopeKind.FIXED),
    ("food", "Food", "green", EnvelopeKind.VARIABLE),
    ("transport", "Transport", "purple", EnvelopeKind.VARIABLE),
    ("leisure", "Leisure", "yellow", EnvelopeKind.VARIABLE),
    ("emergency_fund", "Emergency fund", "emerald", EnvelopeKind.SAVINGS),
    ("extra_debt_payment", "Extra debt payment", "red", EnvelopeKind.DEBT),
    ("other", "Other", "gray", EnvelopeKind.VARIABLE),
)
DEFAULT_ENVELOPE_IDS = frozenset(envelope_id for envelope_id, _, _, _ in DEFAULT_ENVELOPES)

DEFAULT_AUTO_SPLIT: Dict[str, Decimal] = {
    "needs": Decimal("50"),
    "food": Decimal("15"),
    "transport": Decimal("10"),
    "leisure": Decimal("10"),
    "emergency_fund": Decimal("10"),
    "extra_debt_payment": Decimal("5"),
}


class EnvelopeAllocator:
    """
    Manages envelope assignments over explicit AllocatorState snapshots.

    The allocator keeps no state; every method returns an OperationResult
    whose state is the snapshot to keep using.
    """

    def __init__(self, auto_split: Optional[Dict[str, Any]] = None):
        """
        Initialize the allocator.

        Args:
            auto_split: Percentages per built-in envelope id for auto_allocate
        """
        split = auto_split if auto_split is not None else DEFAULT_AUTO_SPLIT
        self.auto_split = {envelope_id: to_decimal(pct, "auto_split") for envelope_id, pct in split.items()}

    @staticmethod
    def default_state(fund_balance: Any = ZERO) -> AllocatorState:
        """Built-in envelopes with nothing assigned; the whole fund is unassigned."""
        fund = to_decimal(fund_balance, "fund_balance")
        envelopes = tuple(
            Envelope(id=envelope_id, name=name, color_tag=color, kind=kind, is_default=True)
            for envelope_id, name, color, kind in DEFAULT_ENVELOPES
        )
        return AllocatorState(envelopes=envelopes, unassigned_money=max(ZERO, fund), fund_balance=fund)

    @staticmethod
    def resync(state: AllocatorState, fund_balance: Any) -> AllocatorState:
        """
        Recompute the unassigned pool from a new fund balance.

        Args:
            state: Current allocator snapshot
            fund_balance: Fund balance after the latest ledger mutation

        Returns:
            New snapshot with unassigned_money = max(0, fund - sum(assigned))
        """
        fund = to_decimal(fund_balance, "fund_balance")
        unassigned = max(ZERO, fund - state.total_assigned)
        if fund < state.total_assigned:
            logger.warning(f"Envelopes over-assigned by {state.total_assigned - fund} after resync")
        return replace(state, unassigned_money=unassigned, fund_balance=fund)

    @staticmethod
    def _replace_envelope(state: AllocatorState, updated: Envelope) -> Tuple[Envelope, ...]:
        return tuple(updated if e.id == updated.id else e for e in state.envelopes)

    def set_assigned(self, state: AllocatorState, envelope_id: str, new_amount: Any) -> OperationResult[AllocatorState]:
        """
        Set how much money an envelope holds.

        Args:
            state: Current allocator snapshot
            envelope_id: Envelope to update
            new_amount: New assignment (>= 0)

        Returns:
            OperationResult with the new snapshot, or an OverAllocationError
            failure if the other envelopes plus new_amount exceed the fund
        """
        try:
            amount = to_decimal(new_amount, "assigned")
        except InvalidAmountError as e:
            return OperationResult.failure(e, state)
        if amount < ZERO:
            return OperationResult.failure(
                InvalidAmountError("Assigned amount cannot be negative", details={"assigned": new_amount}), state
            )

        envelope = state.get(envelope_id)
        if envelope is None:
            logger.warning(f"Assignment to unknown envelope {envelope_id} ignored")
            return OperationResult.not_found(state, "Envelope", envelope_id)

        others = state.total_assigned - envelope.assigned
        # Lowering an assignment is always allowed so an over-assigned state can be repaired
        if amount > envelope.assigned and others + amount > state.fund_balance:
            error = OverAllocationError(
                "Assignment exceeds the available fund",
                details={"envelope": envelope_id, "requested": amount, "assignable": max(ZERO, state.fund_balance - others)},
            )
            logger.warning(f"Rejected assignment: {error}")
            return OperationResult.failure(error, state)

        updated = replace(state, envelopes=self._replace_envelope(state, replace(envelope, assigned=amount)))
        logger.info(f"Assigned {amount} to envelope {envelope_id}")
        return OperationResult.success(self.resync(updated, state.fund_balance))

    def transfer(self, state: AllocatorState, from_id: str, to_id: str, amount: Any) -> OperationResult[AllocatorState]:
        """
        Move assigned money between two envelopes.

        Args:
            state: Current allocator snapshot
            from_id: Source envelope
            to_id: Destination envelope
            amount: Positive amount, at most the source's available money

        Returns:
            OperationResult with the new snapshot
        """
        try:
            value = to_positive_decimal(amount)
        except InvalidAmountError as e:
            return OperationResult.failure(e, state)
        if from_id == to_id:
            return OperationResult.failure(
                InvalidInputError("Cannot transfer an envelope to itself", details={"envelope": from_id}), state
            )

        source, target = state.get(from_id), state.get(to_id)
        if source is None or target is None:
            missing = from_id if source is None else to_id
            logger.warning(f"Transfer with unknown envelope {missing} ignored")
            return OperationResult.not_found(state, "Envelope", missing)

        if value > source.available:
            error = InsufficientEnvelopeFundsError(
                "Transfer exceeds the money available in the envelope",
                details={"envelope": from_id, "available": source.available, "requested": value},
            )
            logger.warning(f"Rejected transfer: {error}")
            return OperationResult.failure(error, state)

        envelopes = tuple(
            replace(e, assigned=e.assigned - value) if e.id == from_id
            else replace(e, assigned=e.assigned + value) if e.id == to_id
            else e
            for e in state.envelopes
        )
        logger.info(f"Transferred {value} from {from_id} to {to_id}")
        return OperationResult.success(replace(state, envelopes=envelopes))

    def record_spend(self, state: AllocatorState, envelope_id: str, amount: Any) -> OperationResult[AllocatorState]:
        """
        Record spending against an envelope.

        Spending past the assignment is allowed; the envelope becomes
        exceeded and a warning is returned.

        Returns:
            OperationResult with the new snapshot
        """
        try:
            value = to_positive_decimal(amount)
        except InvalidAmountError as e:
            return OperationResult.failure(e, state)

        envelope = state.get(envelope_id)
        if envelope is None:
            logger.warning(f"Spend on unknown envelope {envelope_id} ignored")
            return OperationResult.not_found(state, "Envelope", envelope_id)

        updated = replace(envelope, spent=envelope.spent + value)
        warnings = []
        if updated.is_exceeded:
            warnings.append(f"Envelope '{updated.name}' exceeded by {-updated.available}")
            logger.warning(warnings[-1])
        logger.info(f"Recorded spend of {value} on envelope {envelope_id}")
        return OperationResult.success(replace(state, envelopes=self._replace_envelope(state, updated)), warnings)

    def create(
        self,
        state: AllocatorState,
        name: str,
        color_tag: str = "gray",
        kind: Any = EnvelopeKind.VARIABLE
    ) -> OperationResult[AllocatorState]:
        """
        Create a user envelope with nothing assigned.

        Args:
            state: Current allocator snapshot
            name: Display name
            color_tag: UI color hint
            kind: EnvelopeKind or its string value

        Returns:
            OperationResult with the new snapshot
        """
        if not name or not str(name).strip():
            return OperationResult.failure(InvalidInputError("Envelope name is required"), state)
        try:
            envelope_kind = kind if isinstance(kind, EnvelopeKind) else EnvelopeKind(str(kind).lower())
        except ValueError as e:
            return OperationResult.failure(
                InvalidInputError("Unknown envelope kind", details={"kind": kind}, original_error=e), state
            )

        envelope = Envelope(id=new_id(CUSTOM_PREFIX), name=str(name).strip(), color_tag=color_tag or "gray", kind=envelope_kind)
        logger.info(f"Created envelope {envelope.id} ({envelope.name})")
        return OperationResult.success(replace(state, envelopes=state.envelopes + (envelope,)))

    def delete(self, state: AllocatorState, envelope_id: str) -> OperationResult[AllocatorState]:
        """
        Delete a user envelope; its assignment returns to the unassigned pool.

        The whole assigned amount goes back, spent money included: spending
        is already taken from the fund by the ledger, so the pool is simply
        resynced against the current fund balance.

        Returns:
            OperationResult with the new snapshot; built-in envelopes are
            rejected with InvalidInputError
        """
        if envelope_id in DEFAULT_ENVELOPE_IDS:
            return OperationResult.failure(
                InvalidInputError("Built-in envelopes cannot be deleted", details={"envelope": envelope_id}), state
            )
        envelope = state.get(envelope_id)
        if envelope is None:
            logger.warning(f"Delete of unknown envelope {envelope_id} ignored")
            return OperationResult.not_found(state, "Envelope", envelope_id)
        if envelope.is_default:
            return OperationResult.failure(
                InvalidInputError("Built-in envelopes cannot be deleted", details={"envelope": envelope_id}), state
            )

        remaining = replace(state, envelopes=tuple(e for e in state.envelopes if e.id != envelope_id))
        logger.info(f"Deleted envelope {envelope_id}; {envelope.assigned} returned to the pool")
        return OperationResult.success(self.resync(remaining, state.fund_balance))

    def auto_allocate(self, state: AllocatorState, fund_balance: Any) -> OperationResult[AllocatorState]:
        """
        Assign the fund across the built-in envelopes with a fixed split.

        Amounts are rounded down to cents; user envelopes are set to 0.

        Args:
            state: Current allocator snapshot
            fund_balance: Fund balance to distribute

        Returns:
            OperationResult with the new snapshot, or OverAllocationError if
            the split adds up to more than 100%
        """
        try:
            fund = to_decimal(fund_balance, "fund_balance")
        except InvalidAmountError as e:
            return OperationResult.failure(e, state)

        total_pct = sum(self.auto_split.values(), ZERO)
        if total_pct > HUNDRED or any(pct < ZERO for pct in self.auto_split.values()):
            error = OverAllocationError("Auto-allocation split must be between 0% and 100%", details={"total_pct": total_pct})
            logger.warning(f"Rejected auto allocation: {error}")
            return OperationResult.failure(error, state)

        unknown = set(self.auto_split) - {e.id for e in state.envelopes}
        warnings = [f"Auto-allocation skipped unknown envelope {envelope_id}" for envelope_id in sorted(unknown)]

        base = max(ZERO, fund)
        envelopes = tuple(
            replace(e, assigned=floor_cents(base * self.auto_split.get(e.id, ZERO) / HUNDRED))
            for e in state.envelopes
        )
        updated = self.resync(replace(state, envelopes=envelopes), fund)
        logger.info(f"Auto-allocated {updated.total_assigned} of {fund}")
        return OperationResult.success(updated, warnings)

    @staticmethod
    def check_invariant(state: AllocatorState) -> bool:
        """True when sum(assigned) + unassigned equals the fund plus any over-assignment."""
        return state.total_assigned + state.unassigned_money == state.fund_balance + state.over_assigned

    @staticmethod
    def summary(state: AllocatorState) -> Dict[str, Any]:
        """Aggregate metrics for the envelope health snapshot."""
        assigned_total = state.total_assigned
        spent_total = state.total_spent
        utilization_pct = (spent_total / assigned_total * HUNDRED) if assigned_total > 0 else ZERO
        return {
            "fund_balance": state.fund_balance,
            "assigned_total": assigned_total,
            "spent_total": spent_total,
            "available_total": assigned_total - spent_total,
            "unassigned_funds": state.unassigned_money,
            "over_assigned": state.over_assigned,
            "budget_utilization_pct": utilization_pct,
            "exceeded": [e.name for e in state.envelopes if e.is_exceeded],
        }

    @staticmethod
    def health_tips(summary: Dict[str, Any]) -> List[str]:
        """Generate budget tips based on summary metrics."""
        tips: List[str] = []
        if summary["over_assigned"] > 0:
            tips.append("You've assigned more than the fund holds. Move money out of lower-priority envelopes.")
        elif summary["unassigned_funds"] > 0:
            tips.append("Give every euro a job: assign the unassigned money to an envelope or goal.")

        if summary["available_total"] < 0:
            tips.append("Spending exceeds your assignments. Trim or move funds from other envelopes.")
        elif summary["available_total"] == 0 and summary["assigned_total"] > 0:
            tips.append("All assigned funds are spent. Consider building a buffer for next month.")

        if summary["budget_utilization_pct"] >= 90:
            tips.append("Envelope utilization is high. Pause discretionary spending to stay on track.")

        if not tips:
            tips.append("Great job! Every envelope is on track.")
        return tips

    @staticmethod
    def health_alerts(summary: Dict[str, Any]) -> List[str]:
        """High-priority alerts derived from summary metrics."""
        alerts: List[str] = []
        if summary["over_assigned"] > 0:
            alerts.append(f"Envelopes are over-assigned by {summary['over_assigned']}; rebalance to match the fund.")
        if summary["fund_balance"] < 0:
            alerts.append("The fund balance is negative.")
        for name in summary["exceeded"]:
            alerts.append(f"Envelope '{name}' is overspent.")
        return alerts
