"""
Application service tying the finance engine to storage.

Every mutation follows the same data flow: load the current snapshot, apply
a pure ledger/allocator/goal operation, resync the envelope pool with the
new fund balance and persist what changed. Rejected operations leave the
stored state untouched.
"""

import copy
import logging
from dataclasses import replace
from datetime import date, datetime
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from backup import create_backup
from budgeting import EnvelopeAllocator
from classification import Classifier
from config_manager import (
    DEFAULT_CONFIG,
    get_analysis_settings,
    get_auto_split,
    get_max_months,
)
from database_ops import DatabaseManager
from debt_payoff import DebtPayoffSimulator, NoDebts, PayoffPlan, Strategy
from distribution_analysis import DistributionAnalyzer, DistributionResult, build_inputs, monthly_income_for
from exceptions import InvalidAmountError, InvalidInputError
from fund_ledger import FundLedger, LedgerState
from models import (
    ZERO,
    AllocatorState,
    ObligationKind,
    ObligationStatus,
    RecurringObligation,
    SavingsGoal,
    Transaction,
    TransactionKind,
)
from monthly_overview import MonthSummary, ScheduledCharge, charge_calendar, summarize_month
from results import OperationResult
from savings_goals import ContributionSuggestion, GoalStats, GoalTracker
from snapshot import FinanceSnapshot, from_json, to_json
from utils import format_month, in_month, new_id, to_decimal, to_positive_decimal

logger = logging.getLogger(__name__)


class FinanceApp:
    """
    Orchestrates the engine components over a DatabaseManager.

    Attributes:
        db: Storage backend
        config: Merged configuration
        ledger: Fund ledger
        allocator: Envelope allocator
        analyzer: Distribution analyzer
        simulator: Debt payoff simulator
        goals: Goal tracker
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        config: Optional[Dict[str, Any]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        today: Optional[Callable[[], date]] = None
    ):
        """
        Initialize the application service.

        Args:
            db_manager: Storage backend (tables must exist)
            config: Configuration dictionary (defaults when omitted)
            clock: Clock for manual balance timestamps
            today: Provider of the current date
        """
        self.db = db_manager
        self.config = config if config is not None else copy.deepcopy(DEFAULT_CONFIG)
        self.today = today or date.today

        classifier = Classifier.from_config(self.config)
        self.ledger = FundLedger(clock)
        self.allocator = EnvelopeAllocator(get_auto_split(self.config))
        self.analyzer = DistributionAnalyzer(classifier, get_analysis_settings(self.config))
        self.simulator = DebtPayoffSimulator(classifier, get_max_months(self.config))
        self.goals = GoalTracker(self.today)

    # Loading

    def load_ledger(self) -> LedgerState:
        return LedgerState(fund=self.db.load_fund_state(), transactions=tuple(self.db.load_transactions()))

    def load_envelopes(self, fund_balance: Optional[Any] = None) -> AllocatorState:
        """
        Load the envelopes, resynchronized with the fund balance.

        The built-in set is used when no envelopes were ever stored.
        """
        if fund_balance is None:
            fund_balance = self.db.load_fund_state().balance
        state = self.db.load_envelopes()
        if state is None:
            return self.allocator.default_state(fund_balance)
        return self.allocator.resync(state, fund_balance)

    # Fund and transactions

    def _persist_ledger(self, before: LedgerState, after: LedgerState, envelopes: AllocatorState) -> None:
        previous = {t.id: t for t in before.transactions}
        current_ids = {t.id for t in after.transactions}
        self.db.commit_ledger(
            upserts=[t for t in after.transactions if previous.get(t.id) != t],
            removals=[transaction_id for transaction_id in previous if transaction_id not in current_ids],
            fund=after.fund if after.fund != before.fund else None,
            envelopes=envelopes,
        )

    def _apply_ledger(
        self,
        operation: Callable[..., OperationResult],
        *args: Any,
        envelope_step: Optional[Callable[[AllocatorState], OperationResult]] = None,
        **kwargs: Any
    ) -> OperationResult[LedgerState]:
        before = self.load_ledger()
        result = operation(before, *args, **kwargs)
        if not result.ok or result.noop:
            return result

        envelopes = self.load_envelopes(result.state.fund.balance)
        if envelope_step is not None:
            step = envelope_step(envelopes)
            if step.ok and not step.noop:
                envelopes = step.state
            result = replace(result, warnings=result.warnings + step.warnings)
        self._persist_ledger(before, result.state, envelopes)
        return result

    def deposit(self, amount: Any, on_date: Optional[date] = None) -> OperationResult[LedgerState]:
        """Deposit money (typically payroll) into the fund."""
        return self._apply_ledger(self.ledger.deposit, amount, on_date or self.today())

    def set_balance(self, amount: Any, reason: str = "") -> OperationResult[LedgerState]:
        """Overwrite the fund balance with a real-world figure."""
        return self._apply_ledger(self.ledger.set_manual_balance, amount, reason)

    def add_transaction(
        self,
        concept: str,
        amount: Any,
        category: str = "",
        on_date: Optional[date] = None,
        kind: Union[TransactionKind, str] = TransactionKind.EXPENSE,
        envelope_id: Optional[str] = None
    ) -> OperationResult[LedgerState]:
        """
        Record a one-off expense or income.

        Expenses are withdrawn from the fund. When envelope_id is given the
        expense is also recorded as spending against that envelope; the
        transaction, the fund and the envelopes are committed together.

        Returns:
            OperationResult with the new ledger snapshot; envelope warnings
            are merged into its warnings
        """
        try:
            kind = kind if isinstance(kind, TransactionKind) else TransactionKind(str(kind).lower())
            value = to_positive_decimal(amount)
        except ValueError as e:
            return OperationResult.failure(InvalidInputError("Unknown transaction kind", details={'kind': kind}, original_error=e))
        except InvalidAmountError as e:
            logger.warning(f"Rejected transaction: {e}")
            return OperationResult.failure(e)

        transaction = Transaction(
            id=new_id('txn_'),
            date=on_date or self.today(),
            concept=concept or "",
            amount=value,
            category=category or "",
            kind=kind,
        )
        envelope_step = None
        if envelope_id is not None and kind is TransactionKind.EXPENSE:
            envelope_step = partial(self.allocator.record_spend, envelope_id=envelope_id, amount=value)
        return self._apply_ledger(self.ledger.record_expense, transaction, envelope_step=envelope_step)

    def edit_transaction(self, transaction_id: str, **fields: Any) -> OperationResult[LedgerState]:
        """Edit a transaction's date, concept, amount or category."""
        return self._apply_ledger(self.ledger.edit_transaction, transaction_id, **fields)

    def delete_transaction(self, transaction_id: str) -> OperationResult[LedgerState]:
        """Delete a transaction, returning linked amounts to the fund."""
        return self._apply_ledger(self.ledger.reverse, transaction_id)

    def list_transactions(self, month: Optional[str] = None) -> List[Transaction]:
        transactions = self.db.load_transactions()
        if month:
            transactions = [t for t in transactions if in_month(t.date, month)]
        return transactions

    def fund_status(self) -> Dict[str, Any]:
        """Balance, last deposit and the gap between the balance and its history."""
        state = self.load_ledger()
        return {
            'balance': state.fund.balance,
            'last_deposit_date': state.fund.last_deposit_date,
            'deposits': len(state.fund.deposit_history),
            'adjustments': len(state.fund.adjustment_history),
            'discrepancy': self.ledger.discrepancy(state),
        }

    # Envelopes

    def _apply_allocator(self, operation: Callable[..., OperationResult], *args: Any) -> OperationResult[AllocatorState]:
        state = self.load_envelopes()
        result = operation(state, *args)
        if result.ok and not result.noop:
            self.db.store_envelopes(result.state)
        return result

    def assign_envelope(self, envelope_id: str, amount: Any) -> OperationResult[AllocatorState]:
        return self._apply_allocator(self.allocator.set_assigned, envelope_id, amount)

    def transfer_between_envelopes(self, from_id: str, to_id: str, amount: Any) -> OperationResult[AllocatorState]:
        return self._apply_allocator(self.allocator.transfer, from_id, to_id, amount)

    def spend_from_envelope(self, envelope_id: str, amount: Any) -> OperationResult[AllocatorState]:
        return self._apply_allocator(self.allocator.record_spend, envelope_id, amount)

    def create_envelope(self, name: str, color_tag: str = "gray", kind: Any = "variable") -> OperationResult[AllocatorState]:
        return self._apply_allocator(self.allocator.create, name, color_tag, kind)

    def delete_envelope(self, envelope_id: str) -> OperationResult[AllocatorState]:
        return self._apply_allocator(self.allocator.delete, envelope_id)

    def auto_allocate(self) -> OperationResult[AllocatorState]:
        """Distribute the whole fund across the built-in envelopes."""
        state = self.load_envelopes()
        return self._apply_allocator(self.allocator.auto_allocate, state.fund_balance)

    def envelope_health(self) -> Dict[str, Any]:
        """Envelope summary plus tips and alerts."""
        summary = self.allocator.summary(self.load_envelopes())
        summary['tips'] = self.allocator.health_tips(summary)
        summary['alerts'] = self.allocator.health_alerts(summary)
        return summary

    # Obligations and debts

    def add_obligation(
        self,
        name: str,
        amount: Any,
        day_of_month: int = 1,
        kind: Union[ObligationKind, str] = ObligationKind.OTHER,
        installments_remaining: Optional[int] = None,
        installments_total: Optional[int] = None,
        interest_rate_pct: Optional[Any] = None,
        category: str = ""
    ) -> OperationResult[RecurringObligation]:
        """
        Store a new recurring obligation.

        Returns:
            OperationResult holding the obligation, or an InvalidInputError
            failure listing the problems found
        """
        if not name or not str(name).strip():
            return OperationResult.failure(InvalidInputError("Obligation name is required"))
        try:
            obligation = RecurringObligation(
                id=new_id('fixed_'),
                name=str(name).strip(),
                amount=to_decimal(amount),
                day_of_month=int(day_of_month),
                kind=kind if isinstance(kind, ObligationKind) else ObligationKind(str(kind).lower()),
                status=ObligationStatus.ACTIVE,
                installments_remaining=installments_remaining,
                installments_total=installments_total,
                interest_rate_pct=to_decimal(interest_rate_pct, 'interest_rate_pct') if interest_rate_pct is not None else None,
                category=category or "",
            )
        except InvalidAmountError as e:
            logger.warning(f"Rejected obligation: {e}")
            return OperationResult.failure(e)
        except ValueError as e:
            return OperationResult.failure(InvalidInputError("Invalid obligation", details={'kind': kind}, original_error=e))

        problems = obligation.validate()
        if problems:
            error = InvalidInputError("Invalid obligation", details={'problems': problems})
            logger.warning(f"Rejected obligation {name}: {problems}")
            return OperationResult.failure(error)

        self.db.store_obligation(obligation)
        logger.info(f"Added obligation {obligation.id} ({obligation.name})")
        return OperationResult.success(obligation)

    def list_obligations(self) -> List[RecurringObligation]:
        return self.db.load_recurring_obligations()

    def _find_obligation(self, obligation_id: str) -> Optional[RecurringObligation]:
        return next((o for o in self.db.load_recurring_obligations() if o.id == obligation_id), None)

    def set_obligation_status(
        self,
        obligation_id: str,
        status: Union[ObligationStatus, str]
    ) -> OperationResult[Optional[RecurringObligation]]:
        """
        Pause, end or reactivate a recurring obligation.

        Only active obligations count in the analysis, the month summary
        and the charge calendar; ended debts also leave the payoff plan.
        """
        try:
            status = status if isinstance(status, ObligationStatus) else ObligationStatus(str(status).lower())
        except ValueError as e:
            return OperationResult.failure(InvalidInputError("Unknown obligation status", details={'status': status}, original_error=e))

        obligation = self._find_obligation(obligation_id)
        if obligation is None:
            logger.warning(f"Status change of unknown obligation {obligation_id} ignored")
            return OperationResult.not_found(None, "Obligation", obligation_id)
        if obligation.status is status:
            return OperationResult.success(obligation)

        updated = replace(obligation, status=status)
        self.db.store_obligation(updated)
        logger.info(f"Obligation {obligation_id} is now {status.value}")
        return OperationResult.success(updated)

    def delete_obligation(self, obligation_id: str) -> OperationResult[None]:
        """Delete a recurring obligation; unknown ids are a no-op."""
        if not self.db.remove_obligation(obligation_id):
            logger.warning(f"Delete of unknown obligation {obligation_id} ignored")
            return OperationResult.not_found(None, "Obligation", obligation_id)
        logger.info(f"Deleted obligation {obligation_id}")
        return OperationResult.success(None)

    def month_summary(self, month: Optional[str] = None) -> OperationResult[MonthSummary]:
        """
        Income, fixed and variable totals of a month and what remains.

        Base income is the month's deposits into the fund.
        """
        month = month or format_month(self.today())
        ledger = self.load_ledger()
        deposits = sum((d.amount for d in ledger.fund.deposit_history if in_month(d.date, month)), ZERO)
        try:
            summary = summarize_month(deposits, self.db.load_recurring_obligations(), ledger.transactions, month)
        except InvalidInputError as e:
            return OperationResult.failure(e)
        return OperationResult.success(summary)

    def upcoming_charges(self, month: Optional[str] = None) -> OperationResult[List[ScheduledCharge]]:
        """
        Active obligation charges of a month in date order.

        For the current month only charges from today on are listed.
        """
        today = self.today()
        month = month or format_month(today)
        from_day = today.day if in_month(today, month) else 1
        try:
            charges = charge_calendar(self.db.load_recurring_obligations(), month, from_day)
        except InvalidInputError as e:
            return OperationResult.failure(e)
        return OperationResult.success(charges)

    def plan_debts(
        self,
        strategy: Union[Strategy, str] = Strategy.SNOWBALL,
        extra_monthly_payment: Any = 0
    ) -> OperationResult[Union[PayoffPlan, NoDebts]]:
        """Project the payoff of the stored debts."""
        return self.simulator.project(self.db.load_recurring_obligations(), strategy, extra_monthly_payment)

    # Analysis

    def analyze_month(self, month: Optional[str] = None, income: Optional[Any] = None) -> OperationResult[DistributionResult]:
        """
        Analyze a month's spending distribution.

        Args:
            month: Month as "YYYY-MM" (defaults to the current month)
            income: Income for the month; defaults to the month's deposits
                plus income records

        Returns:
            OperationResult holding the DistributionResult
        """
        today = self.today()
        month = month or format_month(today)
        ledger = self.load_ledger()

        if income is None:
            deposits = sum((d.amount for d in ledger.fund.deposit_history if in_month(d.date, month)), ZERO)
            income = monthly_income_for(deposits, ledger.transactions, month)

        items = build_inputs(self.db.load_recurring_obligations(), ledger.transactions, month)
        return self.analyzer.analyze(income, items, as_of=today if in_month(today, month) else None)

    # Goals

    def list_goals(self) -> List[SavingsGoal]:
        return self.goals.sort_goals(self.db.load_goals())

    def create_goal(self, name: str, target_amount: Any, deadline_month: Optional[str] = None) -> OperationResult[SavingsGoal]:
        result = self.goals.create_goal(name, target_amount, deadline_month)
        if result.ok:
            self.db.store_goals(self.db.load_goals() + [result.state])
        return result

    def contribute_to_goal(
        self,
        goal_id: str,
        amount: Any,
        source: str = "manual",
        on_date: Optional[date] = None
    ) -> OperationResult:
        """Record a contribution; milestone notices come back as warnings."""
        result = self.goals.contribute_to(self.db.load_goals(), goal_id, amount, source, on_date)
        if result.ok and not result.noop:
            self.db.store_goals(list(result.state))
        return result

    def delete_goal(self, goal_id: str) -> OperationResult:
        result = self.goals.delete_goal(self.db.load_goals(), goal_id)
        if result.ok and not result.noop:
            self.db.store_goals(list(result.state))
        return result

    def goal_stats(self, goal: SavingsGoal) -> GoalStats:
        return self.goals.stats(goal)

    def goal_suggestions(self) -> List[ContributionSuggestion]:
        minimum = (self.config.get('goals') or {}).get('suggestion_minimum', 10)
        return self.goals.suggest_contributions(self.load_envelopes(), minimum)

    # Snapshots

    def export_snapshot(self, path: Optional[Union[str, Path]] = None) -> str:
        """
        Export the complete state as JSON.

        Args:
            path: Optional file to write

        Returns:
            The JSON document
        """
        snapshot = self.db.load_snapshot()
        snapshot = replace(snapshot, envelopes=self.load_envelopes(snapshot.fund_state.balance))
        text = to_json(snapshot)
        if path:
            Path(path).write_text(text, encoding='utf-8')
            logger.info(f"Exported snapshot to {path}")
        return text

    def import_snapshot(self, text: str, backup: bool = True) -> OperationResult[FinanceSnapshot]:
        """
        Replace the stored state with a JSON snapshot.

        The document is fully validated first; a rejected document leaves
        storage untouched. With backup=True the database file is copied
        before anything is written.

        Raises:
            BackupError: If the backup cannot be taken
            DatabaseError: If the replacement fails (it is rolled back)
        """
        result = from_json(text)
        if not result.ok:
            return result

        snapshot = result.state
        balance = snapshot.fund_state.balance
        if snapshot.envelopes.envelopes:
            envelopes = self.allocator.resync(snapshot.envelopes, balance)
        else:
            envelopes = self.allocator.default_state(balance)
        snapshot = replace(snapshot, envelopes=envelopes)

        warnings = list(result.warnings)
        if backup:
            backup_path = create_backup(self.db.engine.url.render_as_string(hide_password=False), self.config)
            warnings.append(f"Previous data backed up to {backup_path}")

        self.db.replace_all(snapshot)
        logger.info("Imported snapshot")
        return OperationResult.success(snapshot, warnings)
