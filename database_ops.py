"""
Database operations module for finance state storage.

This module handles database connections, schema creation, and the load/store
operations the engine's state snapshots are persisted through, using
SQLAlchemy ORM. Supports SQLite by default with easy migration to other
databases. Amounts are stored as decimal strings so values round-trip
exactly.
"""

import logging
from contextlib import contextmanager
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    Enum,
    ForeignKey,
    Integer,
    String,
    create_engine,
    func,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.types import TypeDecorator

from exceptions import DatabaseError
from models import (
    AdjustmentRecord,
    AllocatorState,
    Contribution,
    DepositRecord,
    Envelope,
    EnvelopeKind,
    FundState,
    ObligationKind,
    ObligationStatus,
    RecurringObligation,
    SavingsGoal,
    Transaction,
    TransactionKind,
)
from snapshot import FinanceSnapshot

# Configure logging
logger = logging.getLogger(__name__)

EDITABLE_TRANSACTION_FIELDS = ('date', 'concept', 'amount', 'category')


def utc_now() -> datetime:
    """
    Get current UTC datetime with timezone awareness.

    Returns:
        Current datetime in UTC with timezone info
    """
    return datetime.now(UTC)


class DecimalString(TypeDecorator):
    """
    Stores Decimal values as TEXT and returns them as Decimal.

    Avoids the float round trip of SQLite's NUMERIC affinity.
    """

    impl = String(40)
    cache_ok = True

    @property
    def python_type(self):  # type: ignore[override]
        return Decimal

    def process_bind_param(self, value: Any, dialect) -> Optional[str]:  # type: ignore[override]
        if value is None:
            return None
        return str(Decimal(str(value)) if not isinstance(value, Decimal) else value)

    def process_result_value(self, value: Any, dialect) -> Optional[Decimal]:  # type: ignore[override]
        if value is None:
            return None
        return Decimal(value)


class IsoTimestamp(TypeDecorator):
    """Stores timezone-aware datetimes as ISO-8601 text."""

    impl = String(40)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect) -> Optional[str]:  # type: ignore[override]
        return value.isoformat() if value is not None else None

    def process_result_value(self, value: Any, dialect) -> Optional[datetime]:  # type: ignore[override]
        return datetime.fromisoformat(value) if value is not None else None


# Base class for declarative models (using SQLAlchemy 2.0+ pattern)
Base = declarative_base()


class FundStateRow(Base):
    """Singleton row holding the fund balance."""

    __tablename__ = "fund_state"

    id = Column(Integer, primary_key=True)
    balance = Column(DecimalString(), nullable=False, default=Decimal("0"))
    last_deposit_date = Column(Date, nullable=True)
    updated_at = Column(IsoTimestamp(), default=utc_now, onupdate=utc_now, nullable=False)


class DepositRow(Base):
    """A deposit into the fund."""

    __tablename__ = "deposits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    position = Column(Integer, nullable=False, index=True)
    date = Column(Date, nullable=False)
    amount = Column(DecimalString(), nullable=False)


class AdjustmentRow(Base):
    """Audit row for a manual balance correction."""

    __tablename__ = "balance_adjustments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    position = Column(Integer, nullable=False, index=True)
    timestamp = Column(IsoTimestamp(), nullable=False)
    previous_balance = Column(DecimalString(), nullable=False)
    new_balance = Column(DecimalString(), nullable=False)
    reason = Column(String(255), nullable=False, default="")


class TransactionRow(Base):
    """
    SQLAlchemy model representing an expense or income transaction.

    Attributes:
        id: Transaction id
        position: Insertion order
        date: Transaction date
        concept: Short description
        amount: Positive amount
        category: Free-text category label
        fund_linked: True once the amount was taken from the fund
        kind: Expense or income
    """

    __tablename__ = "transactions"

    id = Column(String(64), primary_key=True)
    position = Column(Integer, nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    concept = Column(String(255), nullable=False, default="")
    amount = Column(DecimalString(), nullable=False)
    category = Column(String(100), nullable=False, default="", index=True)
    fund_linked = Column(Boolean, nullable=False, default=False)
    kind = Column(Enum(TransactionKind), nullable=False, default=TransactionKind.EXPENSE)

    def __repr__(self) -> str:
        return f"<TransactionRow(id={self.id}, date={self.date}, amount={self.amount}, linked={self.fund_linked})>"


class ObligationRow(Base):
    """SQLAlchemy model representing a recurring obligation."""

    __tablename__ = "obligations"

    id = Column(String(64), primary_key=True)
    position = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    amount = Column(DecimalString(), nullable=False)
    day_of_month = Column(Integer, nullable=False, default=1)
    kind = Column(Enum(ObligationKind), nullable=False, default=ObligationKind.OTHER)
    status = Column(Enum(ObligationStatus), nullable=False, default=ObligationStatus.ACTIVE)
    installments_remaining = Column(Integer, nullable=True)
    installments_total = Column(Integer, nullable=True)
    interest_rate_pct = Column(DecimalString(), nullable=True)
    category = Column(String(100), nullable=False, default="")

    def __repr__(self) -> str:
        return f"<ObligationRow(id={self.id}, name='{self.name}', amount={self.amount}, status={self.status})>"


class EnvelopeRow(Base):
    """SQLAlchemy model representing an envelope."""

    __tablename__ = "envelopes"

    id = Column(String(64), primary_key=True)
    position = Column(Integer, nullable=False)
    name = Column(String(100), nullable=False)
    color_tag = Column(String(20), nullable=False, default="gray")
    kind = Column(Enum(EnvelopeKind), nullable=False, default=EnvelopeKind.VARIABLE)
    assigned = Column(DecimalString(), nullable=False, default=Decimal("0"))
    spent = Column(DecimalString(), nullable=False, default=Decimal("0"))
    is_default = Column(Boolean, nullable=False, default=False)


class AllocatorMetaRow(Base):
    """Singleton row holding the unassigned pool."""

    __tablename__ = "allocator_meta"

    id = Column(Integer, primary_key=True)
    unassigned_money = Column(DecimalString(), nullable=False, default=Decimal("0"))
    fund_balance = Column(DecimalString(), nullable=False, default=Decimal("0"))


class GoalRow(Base):
    """SQLAlchemy model representing a savings goal."""

    __tablename__ = "goals"

    id = Column(String(64), primary_key=True)
    position = Column(Integer, nullable=False)
    name = Column(String(255), nullable=False)
    target_amount = Column(DecimalString(), nullable=False)
    deadline_month = Column(String(7), nullable=True)
    progress = Column(DecimalString(), nullable=False, default=Decimal("0"))

    contributions = relationship(
        "ContributionRow",
        order_by="ContributionRow.position",
        cascade="all, delete-orphan",
        back_populates="goal",
    )


class ContributionRow(Base):
    """A contribution toward a savings goal."""

    __tablename__ = "goal_contributions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    goal_id = Column(String(64), ForeignKey("goals.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    date = Column(Date, nullable=False)
    amount = Column(DecimalString(), nullable=False)
    source = Column(String(100), nullable=False, default="manual")

    goal = relationship("GoalRow", back_populates="contributions")


def _transaction_from_row(row: TransactionRow) -> Transaction:
    return Transaction(
        id=row.id,
        date=row.date,
        concept=row.concept,
        amount=row.amount,
        category=row.category,
        fund_linked=bool(row.fund_linked),
        kind=row.kind,
    )


def _obligation_from_row(row: ObligationRow) -> RecurringObligation:
    return RecurringObligation(
        id=row.id,
        name=row.name,
        amount=row.amount,
        day_of_month=row.day_of_month,
        kind=row.kind,
        status=row.status,
        installments_remaining=row.installments_remaining,
        installments_total=row.installments_total,
        interest_rate_pct=row.interest_rate_pct,
        category=row.category,
    )


def _goal_from_row(row: GoalRow) -> SavingsGoal:
    return SavingsGoal(
        id=row.id,
        name=row.name,
        target_amount=row.target_amount,
        deadline_month=row.deadline_month,
        progress=row.progress,
        contribution_history=tuple(
            Contribution(date=c.date, amount=c.amount, source=c.source) for c in row.contributions
        ),
    )


class DatabaseManager:
    """
    Manages database connections and operations.

    Each public method runs in its own session; a failure is logged, rolled
    back and raised as DatabaseError.
    """

    def __init__(self, connection_string: str):
        """
        Initialize the database manager.

        Args:
            connection_string: SQLAlchemy connection string (e.g., 'sqlite:///data/finance.db')

        Raises:
            DatabaseError: If database connection fails
        """
        try:
            self.engine = create_engine(connection_string, echo=False)
            self.SessionLocal = sessionmaker(bind=self.engine)
            logger.info(f"Database manager initialized with connection: {connection_string}")
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize database: {e}")
            raise DatabaseError("Failed to initialize database", original_error=e) from e

    def create_tables(self) -> None:
        """
        Create all database tables if they don't exist.

        Raises:
            DatabaseError: If table creation fails
        """
        try:
            Base.metadata.create_all(self.engine)
            logger.info("Database tables created/verified successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to create database tables: {e}")
            raise DatabaseError("Failed to create database tables", original_error=e) from e

    def get_session(self) -> Session:
        """
        Get a new database session.

        Note:
            Caller is responsible for closing the session.
        """
        return self.SessionLocal()

    @contextmanager
    def session_scope(self, operation: str) -> Iterator[Session]:
        """
        Provide a transactional scope around a series of operations.

        Args:
            operation: Name used in log and error messages

        Raises:
            DatabaseError: If any statement fails; the transaction is rolled back
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to {operation}: {e}")
            raise DatabaseError(f"Failed to {operation}", original_error=e) from e
        finally:
            session.close()

    @staticmethod
    def _next_position(session: Session, model) -> int:
        current = session.query(func.max(model.position)).scalar()
        return 0 if current is None else current + 1

    # Fund state

    def load_fund_state(self) -> FundState:
        """Load the fund with its deposit and adjustment history."""
        with self.session_scope("load fund state") as session:
            row = session.get(FundStateRow, 1)
            deposits = session.query(DepositRow).order_by(DepositRow.position).all()
            adjustments = session.query(AdjustmentRow).order_by(AdjustmentRow.position).all()
            return FundState(
                balance=row.balance if row else Decimal("0"),
                last_deposit_date=row.last_deposit_date if row else None,
                deposit_history=tuple(DepositRecord(date=d.date, amount=d.amount) for d in deposits),
                adjustment_history=tuple(
                    AdjustmentRecord(
                        timestamp=a.timestamp,
                        previous_balance=a.previous_balance,
                        new_balance=a.new_balance,
                        reason=a.reason,
                    )
                    for a in adjustments
                ),
            )

    @staticmethod
    def _write_fund_state(session: Session, fund: FundState) -> None:
        row = session.get(FundStateRow, 1)
        if row is None:
            row = FundStateRow(id=1)
            session.add(row)
        row.balance = fund.balance
        row.last_deposit_date = fund.last_deposit_date

        session.query(DepositRow).delete()
        session.query(AdjustmentRow).delete()
        session.add_all(
            DepositRow(position=i, date=d.date, amount=d.amount) for i, d in enumerate(fund.deposit_history)
        )
        session.add_all(
            AdjustmentRow(
                position=i,
                timestamp=a.timestamp,
                previous_balance=a.previous_balance,
                new_balance=a.new_balance,
                reason=a.reason,
            )
            for i, a in enumerate(fund.adjustment_history)
        )

    def store_fund_state(self, fund: FundState) -> None:
        """Persist the fund, replacing the stored history."""
        with self.session_scope("store fund state") as session:
            self._write_fund_state(session, fund)
        logger.debug(f"Stored fund state: balance={fund.balance}")

    # Transactions

    def load_transactions(self) -> List[Transaction]:
        """Load all transactions in insertion order."""
        with self.session_scope("load transactions") as session:
            rows = session.query(TransactionRow).order_by(TransactionRow.position).all()
            return [_transaction_from_row(row) for row in rows]

    @classmethod
    def _write_transaction(cls, session: Session, transaction: Transaction) -> None:
        row = session.get(TransactionRow, transaction.id)
        if row is None:
            row = TransactionRow(id=transaction.id, position=cls._next_position(session, TransactionRow))
            session.add(row)
        row.date = transaction.date
        row.concept = transaction.concept
        row.amount = transaction.amount
        row.category = transaction.category
        row.fund_linked = transaction.fund_linked
        row.kind = transaction.kind
        session.flush()

    def store_transaction(self, transaction: Transaction) -> None:
        """Insert or update a transaction."""
        with self.session_scope("store transaction") as session:
            self._write_transaction(session, transaction)
        logger.debug(f"Stored transaction {transaction.id}")

    def remove_transaction(self, transaction_id: str) -> bool:
        """
        Delete a transaction.

        Returns:
            True if a row was deleted, False for unknown ids
        """
        with self.session_scope("remove transaction") as session:
            deleted = session.query(TransactionRow).filter(TransactionRow.id == transaction_id).delete()
        if not deleted:
            logger.warning(f"Transaction {transaction_id} not found for removal")
        return bool(deleted)

    def edit_transaction(self, transaction_id: str, fields: Dict[str, Any]) -> Optional[Transaction]:
        """
        Update selected fields of a transaction.

        The amount of a fund-linked transaction cannot be changed here: the
        fund balance has to follow, so such edits go through
        FundLedger.adjust_for_edit and commit_ledger.

        Args:
            transaction_id: Transaction to edit
            fields: Mapping of field name to new value

        Returns:
            The updated transaction, or None for unknown ids

        Raises:
            DatabaseError: If a field cannot be edited or the update fails
        """
        unknown = set(fields) - set(EDITABLE_TRANSACTION_FIELDS)
        if unknown:
            raise DatabaseError("Fields cannot be edited", details={'fields': sorted(unknown)})

        with self.session_scope("edit transaction") as session:
            row = session.get(TransactionRow, transaction_id)
            if row is None:
                logger.warning(f"Transaction {transaction_id} not found for edit")
                return None
            if 'amount' in fields and row.fund_linked and fields['amount'] != row.amount:
                raise DatabaseError(
                    "Amount of a fund-linked transaction must be edited through the ledger",
                    details={'transaction': transaction_id}
                )
            for name, value in fields.items():
                setattr(row, name, value)
            session.flush()
            return _transaction_from_row(row)

    def commit_ledger(
        self,
        upserts: List[Transaction],
        removals: List[str],
        fund: Optional[FundState],
        envelopes: Optional[AllocatorState]
    ) -> None:
        """
        Write the outcome of one ledger operation in a single transaction.

        Args:
            upserts: Transactions to insert or update
            removals: Ids of transactions to delete
            fund: New fund state, or None when it did not change
            envelopes: Allocator state to store, or None to leave it

        Raises:
            DatabaseError: If any write fails; nothing is committed
        """
        with self.session_scope("commit ledger change") as session:
            for transaction in upserts:
                self._write_transaction(session, transaction)
            if removals:
                session.query(TransactionRow).filter(TransactionRow.id.in_(removals)).delete(synchronize_session=False)
            if fund is not None:
                self._write_fund_state(session, fund)
            if envelopes is not None:
                self._write_envelopes(session, envelopes)
        logger.debug(f"Committed ledger change: {len(upserts)} stored, {len(removals)} removed")

    # Recurring obligations

    def load_recurring_obligations(self) -> List[RecurringObligation]:
        """Load all recurring obligations in insertion order."""
        with self.session_scope("load obligations") as session:
            rows = session.query(ObligationRow).order_by(ObligationRow.position).all()
            return [_obligation_from_row(row) for row in rows]

    def store_obligation(self, obligation: RecurringObligation) -> None:
        """Insert or update a recurring obligation."""
        with self.session_scope("store obligation") as session:
            row = session.get(ObligationRow, obligation.id)
            if row is None:
                row = ObligationRow(id=obligation.id, position=self._next_position(session, ObligationRow))
                session.add(row)
            row.name = obligation.name
            row.amount = obligation.amount
            row.day_of_month = obligation.day_of_month
            row.kind = obligation.kind
            row.status = obligation.status
            row.installments_remaining = obligation.installments_remaining
            row.installments_total = obligation.installments_total
            row.interest_rate_pct = obligation.interest_rate_pct
            row.category = obligation.category
        logger.debug(f"Stored obligation {obligation.id}")

    def remove_obligation(self, obligation_id: str) -> bool:
        """Delete a recurring obligation; False for unknown ids."""
        with self.session_scope("remove obligation") as session:
            deleted = session.query(ObligationRow).filter(ObligationRow.id == obligation_id).delete()
        return bool(deleted)

    # Envelopes

    def load_envelopes(self) -> Optional[AllocatorState]:
        """
        Load the allocator state.

        Returns:
            AllocatorState, or None if envelopes were never stored
        """
        with self.session_scope("load envelopes") as session:
            meta = session.get(AllocatorMetaRow, 1)
            if meta is None:
                return None
            rows = session.query(EnvelopeRow).order_by(EnvelopeRow.position).all()
            return AllocatorState(
                envelopes=tuple(
                    Envelope(
                        id=row.id,
                        name=row.name,
                        color_tag=row.color_tag,
                        kind=row.kind,
                        assigned=row.assigned,
                        spent=row.spent,
                        is_default=bool(row.is_default),
                    )
                    for row in rows
                ),
                unassigned_money=meta.unassigned_money,
                fund_balance=meta.fund_balance,
            )

    @staticmethod
    def _write_envelopes(session: Session, state: AllocatorState) -> None:
        session.query(EnvelopeRow).delete()
        session.add_all(
            EnvelopeRow(
                id=e.id,
                position=i,
                name=e.name,
                color_tag=e.color_tag,
                kind=e.kind,
                assigned=e.assigned,
                spent=e.spent,
                is_default=e.is_default,
            )
            for i, e in enumerate(state.envelopes)
        )
        meta = session.get(AllocatorMetaRow, 1)
        if meta is None:
            meta = AllocatorMetaRow(id=1)
            session.add(meta)
        meta.unassigned_money = state.unassigned_money
        meta.fund_balance = state.fund_balance

    def store_envelopes(self, state: AllocatorState) -> None:
        """Persist the allocator state, replacing all envelopes."""
        with self.session_scope("store envelopes") as session:
            self._write_envelopes(session, state)
        logger.debug(f"Stored {len(state.envelopes)} envelopes")

    # Goals

    def load_goals(self) -> List[SavingsGoal]:
        """Load all savings goals with their contribution history."""
        with self.session_scope("load goals") as session:
            rows = session.query(GoalRow).order_by(GoalRow.position).all()
            return [_goal_from_row(row) for row in rows]

    @staticmethod
    def _write_goals(session: Session, goals: List[SavingsGoal]) -> None:
        for row in session.query(GoalRow).all():
            session.delete(row)
        session.flush()
        for i, goal in enumerate(goals):
            row = GoalRow(
                id=goal.id,
                position=i,
                name=goal.name,
                target_amount=goal.target_amount,
                deadline_month=goal.deadline_month,
                progress=goal.progress,
            )
            row.contributions = [
                ContributionRow(position=j, date=c.date, amount=c.amount, source=c.source)
                for j, c in enumerate(goal.contribution_history)
            ]
            session.add(row)

    def store_goals(self, goals: List[SavingsGoal]) -> None:
        """Persist the goal collection, replacing the stored one."""
        goals = list(goals)
        with self.session_scope("store goals") as session:
            self._write_goals(session, goals)
        logger.debug(f"Stored {len(goals)} goals")

    # Bulk

    def load_snapshot(self) -> FinanceSnapshot:
        """Load the complete state (envelopes default to an empty state)."""
        return FinanceSnapshot(
            fund_state=self.load_fund_state(),
            transactions=tuple(self.load_transactions()),
            obligations=tuple(self.load_recurring_obligations()),
            envelopes=self.load_envelopes() or AllocatorState(),
            goals=tuple(self.load_goals()),
        )

    def replace_all(self, snapshot: FinanceSnapshot) -> None:
        """
        Atomically replace the entire stored state.

        Everything is written in one transaction; on failure nothing changes.

        Raises:
            DatabaseError: If any write fails
        """
        with self.session_scope("replace stored state") as session:
            self._write_fund_state(session, snapshot.fund_state)

            session.query(TransactionRow).delete()
            session.add_all(
                TransactionRow(
                    id=t.id,
                    position=i,
                    date=t.date,
                    concept=t.concept,
                    amount=t.amount,
                    category=t.category,
                    fund_linked=t.fund_linked,
                    kind=t.kind,
                )
                for i, t in enumerate(snapshot.transactions)
            )

            session.query(ObligationRow).delete()
            session.add_all(
                ObligationRow(
                    id=o.id,
                    position=i,
                    name=o.name,
                    amount=o.amount,
                    day_of_month=o.day_of_month,
                    kind=o.kind,
                    status=o.status,
                    installments_remaining=o.installments_remaining,
                    installments_total=o.installments_total,
                    interest_rate_pct=o.interest_rate_pct,
                    category=o.category,
                )
                for i, o in enumerate(snapshot.obligations)
            )

            self._write_envelopes(session, snapshot.envelopes)
            self._write_goals(session, list(snapshot.goals))
        logger.info(
            f"Replaced stored state: {len(snapshot.transactions)} transactions, "
            f"{len(snapshot.obligations)} obligations, {len(snapshot.goals)} goals"
        )

    def close(self) -> None:
        """Close the database engine connection."""
        if hasattr(self, 'engine'):
            self.engine.dispose()
            logger.info("Database connection closed")
