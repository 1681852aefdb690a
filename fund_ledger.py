"""
Fund ledger module.

Keeps the single authoritative "available funds" balance consistent under
deposits, withdrawals tied to expense transactions, edits, deletions and
manual corrections. Every operation takes a LedgerState snapshot and returns
an OperationResult with the new snapshot; nothing is mutated in place.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Tuple

from exceptions import InvalidAmountError, InvalidInputError
from models import ZERO, AdjustmentRecord, DepositRecord, FundState, Transaction
from results import OperationResult
from utils import to_decimal, to_positive_decimal

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('date', 'concept', 'amount', 'category')


@dataclass(frozen=True)
class LedgerState:
    """Fund state plus the transactions that may be linked to it."""
    fund: FundState = field(default_factory=FundState)
    transactions: Tuple[Transaction, ...] = ()

    def find(self, transaction_id: str) -> Optional[Transaction]:
        for transaction in self.transactions:
            if transaction.id == transaction_id:
                return transaction
        return None

    def replace_transaction(self, updated: Transaction) -> Tuple[Transaction, ...]:
        return tuple(updated if t.id == updated.id else t for t in self.transactions)


class FundLedger:
    """
    Applies fund mutations over explicit ledger snapshots.

    The ledger holds no state of its own; the clock is injectable so manual
    corrections can be timestamped deterministically.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or (lambda: datetime.now(UTC))

    def deposit(self, state: LedgerState, amount: Any, on_date: Optional[date] = None) -> OperationResult[LedgerState]:
        """
        Add money to the fund.

        Args:
            state: Current ledger snapshot
            amount: Positive amount
            on_date: Deposit date (defaults to today)

        Returns:
            OperationResult with the new snapshot, or an InvalidAmountError failure
        """
        try:
            value = to_positive_decimal(amount)
        except InvalidAmountError as e:
            logger.warning(f"Rejected deposit: {e}")
            return OperationResult.failure(e, state)

        on_date = on_date or self.clock().date()
        fund = state.fund
        last_date = fund.last_deposit_date
        new_fund = replace(
            fund,
            balance=fund.balance + value,
            last_deposit_date=on_date if last_date is None or on_date >= last_date else last_date,
            deposit_history=fund.deposit_history + (DepositRecord(date=on_date, amount=value),),
        )
        logger.info(f"Deposited {value} on {on_date}; balance {fund.balance} -> {new_fund.balance}")
        return OperationResult.success(replace(state, fund=new_fund))

    def withdraw(self, state: LedgerState, transaction_id: str, amount: Any) -> OperationResult[LedgerState]:
        """
        Take an expense transaction's amount from the fund.

        The balance may go negative; that is reported as a warning. The
        transaction is marked fund_linked and its amount set to the
        withdrawn amount so a later reversal restores exactly that.

        Args:
            state: Current ledger snapshot
            transaction_id: Expense transaction the withdrawal belongs to
            amount: Positive amount

        Returns:
            OperationResult with the new snapshot
        """
        try:
            value = to_positive_decimal(amount)
        except InvalidAmountError as e:
            logger.warning(f"Rejected withdrawal for {transaction_id}: {e}")
            return OperationResult.failure(e, state)

        transaction = state.find(transaction_id)
        if transaction is None:
            logger.warning(f"Withdrawal for unknown transaction {transaction_id} ignored")
            return OperationResult.not_found(state, "Transaction", transaction_id)
        if transaction.fund_linked:
            logger.warning(f"Transaction {transaction_id} is already linked to the fund")
            return OperationResult.unchanged(state, f"Transaction {transaction_id} was already withdrawn from the fund")
        if not transaction.is_expense:
            error = InvalidInputError("Only expense transactions can be withdrawn from the fund", details={'id': transaction_id})
            logger.warning(f"Rejected withdrawal: {error}")
            return OperationResult.failure(error, state)

        new_balance = state.fund.balance - value
        linked = replace(transaction, amount=value, fund_linked=True)
        new_state = LedgerState(
            fund=replace(state.fund, balance=new_balance),
            transactions=state.replace_transaction(linked),
        )
        logger.info(f"Withdrew {value} for {transaction_id}; balance {state.fund.balance} -> {new_balance}")

        warnings = []
        if new_balance < ZERO:
            warnings.append(f"Fund balance is negative ({new_balance})")
        return OperationResult.success(new_state, warnings)

    def reverse(self, state: LedgerState, transaction_id: str) -> OperationResult[LedgerState]:
        """
        Delete a transaction, returning its amount to the fund if it was linked.

        Args:
            state: Current ledger snapshot
            transaction_id: Transaction to delete

        Returns:
            OperationResult with the new snapshot (no-op for unknown ids)
        """
        transaction = state.find(transaction_id)
        if transaction is None:
            logger.warning(f"Reversal for unknown transaction {transaction_id} ignored")
            return OperationResult.not_found(state, "Transaction", transaction_id)

        fund = state.fund
        if transaction.fund_linked:
            fund = replace(fund, balance=fund.balance + transaction.amount)
            logger.info(f"Reversed {transaction_id}; {transaction.amount} returned to the fund")
        else:
            logger.info(f"Removed unlinked transaction {transaction_id}")

        remaining = tuple(t for t in state.transactions if t.id != transaction_id)
        return OperationResult.success(LedgerState(fund=fund, transactions=remaining))

    def adjust_for_edit(
        self,
        state: LedgerState,
        transaction_id: str,
        old_amount: Any,
        new_amount: Any
    ) -> OperationResult[LedgerState]:
        """
        Apply an amount edit to the fund.

        balance += old - new when the transaction is linked; the stored
        transaction amount becomes new_amount either way.

        Args:
            state: Current ledger snapshot
            transaction_id: Edited transaction
            old_amount: Amount before the edit
            new_amount: Positive amount after the edit

        Returns:
            OperationResult with the new snapshot
        """
        try:
            old_value = to_decimal(old_amount, 'old_amount')
            new_value = to_positive_decimal(new_amount, 'new_amount')
        except InvalidAmountError as e:
            logger.warning(f"Rejected edit for {transaction_id}: {e}")
            return OperationResult.failure(e, state)

        transaction = state.find(transaction_id)
        if transaction is None:
            logger.warning(f"Edit for unknown transaction {transaction_id} ignored")
            return OperationResult.not_found(state, "Transaction", transaction_id)

        fund = state.fund
        warnings = []
        if transaction.fund_linked:
            fund = replace(fund, balance=fund.balance + old_value - new_value)
            logger.info(f"Adjusted fund for edit of {transaction_id}: {old_value} -> {new_value}")
            if fund.balance < ZERO:
                warnings.append(f"Fund balance is negative ({fund.balance})")

        updated = replace(transaction, amount=new_value)
        return OperationResult.success(
            LedgerState(fund=fund, transactions=state.replace_transaction(updated)),
            warnings
        )

    def set_manual_balance(
        self,
        state: LedgerState,
        new_amount: Any,
        reason: str = "",
        timestamp: Optional[datetime] = None
    ) -> OperationResult[LedgerState]:
        """
        Overwrite the balance with a real-world figure.

        The correction is recorded in the adjustment history, which is never
        pruned.

        Args:
            state: Current ledger snapshot
            new_amount: New balance (any sign)
            reason: Justification for the audit trail
            timestamp: Correction time (defaults to now, UTC)

        Returns:
            OperationResult with the new snapshot
        """
        try:
            value = to_decimal(new_amount, 'new_amount')
        except InvalidAmountError as e:
            logger.warning(f"Rejected manual balance: {e}")
            return OperationResult.failure(e, state)

        fund = state.fund
        record = AdjustmentRecord(
            timestamp=timestamp or self.clock(),
            previous_balance=fund.balance,
            new_balance=value,
            reason=reason,
        )
        new_fund = replace(fund, balance=value, adjustment_history=fund.adjustment_history + (record,))
        logger.info(f"Manual balance set {fund.balance} -> {value} ({reason or 'no reason given'})")
        return OperationResult.success(replace(state, fund=new_fund))

    def record_expense(self, state: LedgerState, transaction: Transaction) -> OperationResult[LedgerState]:
        """
        Add a transaction and, for expenses, withdraw its amount from the fund.

        Income records are stored without touching the fund; money enters
        the fund through deposit().

        Args:
            state: Current ledger snapshot
            transaction: New transaction (fund_linked is ignored)

        Returns:
            OperationResult with the new snapshot
        """
        if state.find(transaction.id) is not None:
            error = InvalidInputError("Transaction id already exists", details={'id': transaction.id})
            logger.warning(f"Rejected transaction: {error}")
            return OperationResult.failure(error, state)
        try:
            amount = to_positive_decimal(transaction.amount)
        except InvalidAmountError as e:
            logger.warning(f"Rejected transaction {transaction.id}: {e}")
            return OperationResult.failure(e, state)

        added = replace(state, transactions=state.transactions + (replace(transaction, amount=amount, fund_linked=False),))
        if not transaction.is_expense:
            logger.info(f"Recorded income {transaction.id} of {amount}")
            return OperationResult.success(added)
        return self.withdraw(added, transaction.id, amount)

    def edit_transaction(self, state: LedgerState, transaction_id: str, **fields: Any) -> OperationResult[LedgerState]:
        """
        Edit a transaction's date, concept, amount or category.

        Amount changes go through adjust_for_edit so linked transactions
        keep the fund consistent.

        Returns:
            OperationResult with the new snapshot
        """
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            error = InvalidInputError("Fields cannot be edited", details={'fields': sorted(unknown)})
            logger.warning(f"Rejected edit for {transaction_id}: {error}")
            return OperationResult.failure(error, state)

        transaction = state.find(transaction_id)
        if transaction is None:
            logger.warning(f"Edit for unknown transaction {transaction_id} ignored")
            return OperationResult.not_found(state, "Transaction", transaction_id)

        warnings = []
        if 'amount' in fields:
            result = self.adjust_for_edit(state, transaction_id, transaction.amount, fields.pop('amount'))
            if not result.ok:
                return result
            state = result.state
            warnings.extend(result.warnings)
            transaction = state.find(transaction_id)

        if fields:
            state = replace(state, transactions=state.replace_transaction(replace(transaction, **fields)))
            logger.info(f"Edited {transaction_id}: {sorted(fields)}")
        return OperationResult.success(state, warnings)

    @staticmethod
    def expected_balance(state: LedgerState) -> Decimal:
        """
        Balance implied by the history.

        Deposits minus linked expense amounts plus the net effect of each
        manual correction.
        """
        deposits = sum((d.amount for d in state.fund.deposit_history), ZERO)
        linked = sum((t.amount for t in state.transactions if t.fund_linked), ZERO)
        corrections = sum((a.new_balance - a.previous_balance for a in state.fund.adjustment_history), ZERO)
        return deposits - linked + corrections

    @classmethod
    def discrepancy(cls, state: LedgerState) -> Decimal:
        """Difference between the stored balance and the history (0 when consistent)."""
        return state.fund.balance - cls.expected_balance(state)

