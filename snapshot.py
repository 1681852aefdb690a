"""
Bulk export/import of the complete finance state.

A snapshot document holds the fund, transactions, recurring obligations,
envelopes and goals. Amounts are written as decimal strings and dates in
ISO format so a round trip is lossless. Import runs the schema migrations,
validates every top-level key and record, and either returns a complete
FinanceSnapshot or a failure; it never returns partial data.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any, Dict, List, Optional, Tuple

from exceptions import FinanceAppError, SnapshotError
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
from results import OperationResult
from schema_migration import CURRENT_SCHEMA_VERSION, migrate
from utils import parse_month, to_decimal

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ('fund_state', 'transactions', 'obligations', 'envelopes', 'goals', 'exported_at')


@dataclass(frozen=True)
class FinanceSnapshot:
    """Complete finance state as exported or imported."""
    fund_state: FundState = field(default_factory=FundState)
    transactions: Tuple[Transaction, ...] = ()
    obligations: Tuple[RecurringObligation, ...] = ()
    envelopes: AllocatorState = field(default_factory=AllocatorState)
    goals: Tuple[SavingsGoal, ...] = ()
    exported_at: Optional[datetime] = None


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _dec(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def export_snapshot(snapshot: FinanceSnapshot, exported_at: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Serialize a snapshot into a JSON-compatible document.

    Args:
        snapshot: State to export
        exported_at: Export timestamp (defaults to now, UTC)

    Returns:
        Document at CURRENT_SCHEMA_VERSION
    """
    fund = snapshot.fund_state
    allocator = snapshot.envelopes
    return {
        'schema_version': CURRENT_SCHEMA_VERSION,
        'exported_at': (exported_at or datetime.now(UTC)).isoformat(),
        'fund_state': {
            'balance': _dec(fund.balance),
            'last_deposit_date': _iso(fund.last_deposit_date),
            'deposit_history': [{'date': _iso(d.date), 'amount': _dec(d.amount)} for d in fund.deposit_history],
            'adjustment_history': [
                {
                    'timestamp': a.timestamp.isoformat(),
                    'previous_balance': _dec(a.previous_balance),
                    'new_balance': _dec(a.new_balance),
                    'reason': a.reason,
                }
                for a in fund.adjustment_history
            ],
        },
        'transactions': [
            {
                'id': t.id,
                'date': _iso(t.date),
                'concept': t.concept,
                'amount': _dec(t.amount),
                'category': t.category,
                'fund_linked': t.fund_linked,
                'kind': t.kind.value,
            }
            for t in snapshot.transactions
        ],
        'obligations': [
            {
                'id': o.id,
                'name': o.name,
                'amount': _dec(o.amount),
                'day_of_month': o.day_of_month,
                'kind': o.kind.value,
                'status': o.status.value,
                'installments_remaining': o.installments_remaining,
                'installments_total': o.installments_total,
                'interest_rate_pct': _dec(o.interest_rate_pct),
                'category': o.category,
            }
            for o in snapshot.obligations
        ],
        'envelopes': {
            'envelopes': [
                {
                    'id': e.id,
                    'name': e.name,
                    'color_tag': e.color_tag,
                    'kind': e.kind.value,
                    'assigned': _dec(e.assigned),
                    'spent': _dec(e.spent),
                    'is_default': e.is_default,
                }
                for e in allocator.envelopes
            ],
            'unassigned_money': _dec(allocator.unassigned_money),
            'fund_balance': _dec(allocator.fund_balance),
        },
        'goals': [
            {
                'id': g.id,
                'name': g.name,
                'target_amount': _dec(g.target_amount),
                'deadline_month': g.deadline_month,
                'progress': _dec(g.progress),
                'contribution_history': [
                    {'date': _iso(c.date), 'amount': _dec(c.amount), 'source': c.source}
                    for c in g.contribution_history
                ],
            }
            for g in snapshot.goals
        ],
    }


def to_json(snapshot: FinanceSnapshot, exported_at: Optional[datetime] = None) -> str:
    """Serialize a snapshot to a JSON string."""
    return json.dumps(export_snapshot(snapshot, exported_at), indent=2, ensure_ascii=False)


class _RecordParser:
    """Parses document sections, raising SnapshotError with the record location."""

    def __init__(self, section: str, index: Optional[int] = None):
        self.where = section if index is None else f"{section}[{index}]"

    def fail(self, message: str, error: Optional[Exception] = None) -> SnapshotError:
        return SnapshotError(f"Invalid {self.where}: {message}", details={'record': self.where}, original_error=error)

    def require(self, record: Any, key: str) -> Any:
        if not isinstance(record, dict):
            raise self.fail("record must be an object")
        if key not in record:
            raise self.fail(f"missing '{key}'")
        return record[key]

    def decimal(self, record: Dict[str, Any], key: str, optional: bool = False):
        value = record.get(key) if optional else self.require(record, key)
        if value is None and optional:
            return None
        try:
            return to_decimal(value, key)
        except FinanceAppError as e:
            raise self.fail(f"'{key}' is not a number", e) from e

    def date(self, record: Dict[str, Any], key: str, optional: bool = False) -> Optional[date]:
        value = record.get(key) if optional else self.require(record, key)
        if value is None and optional:
            return None
        try:
            return date.fromisoformat(str(value))
        except ValueError as e:
            raise self.fail(f"'{key}' is not an ISO date", e) from e

    def timestamp(self, record: Dict[str, Any], key: str) -> datetime:
        value = self.require(record, key)
        try:
            return datetime.fromisoformat(str(value))
        except ValueError as e:
            raise self.fail(f"'{key}' is not an ISO timestamp", e) from e

    def enum(self, record: Dict[str, Any], key: str, enum_cls):
        value = self.require(record, key)
        try:
            return enum_cls(value)
        except ValueError as e:
            raise self.fail(f"unknown {key} '{value}'", e) from e

    def optional_int(self, record: Dict[str, Any], key: str) -> Optional[int]:
        value = record.get(key)
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise self.fail(f"'{key}' is not an integer", e) from e

    def items(self, value: Any) -> List[Any]:
        if not isinstance(value, list):
            raise self.fail("must be a list")
        return value


def _parse_fund(raw: Any) -> FundState:
    p = _RecordParser('fund_state')
    deposits = []
    for i, item in enumerate(p.items(p.require(raw, 'deposit_history'))):
        dp = _RecordParser('fund_state.deposit_history', i)
        deposits.append(DepositRecord(date=dp.date(item, 'date'), amount=dp.decimal(item, 'amount')))
    adjustments = []
    for i, item in enumerate(p.items(p.require(raw, 'adjustment_history'))):
        ap = _RecordParser('fund_state.adjustment_history', i)
        adjustments.append(AdjustmentRecord(
            timestamp=ap.timestamp(item, 'timestamp'),
            previous_balance=ap.decimal(item, 'previous_balance'),
            new_balance=ap.decimal(item, 'new_balance'),
            reason=str(item.get('reason') or ''),
        ))
    return FundState(
        balance=p.decimal(raw, 'balance'),
        last_deposit_date=p.date(raw, 'last_deposit_date', optional=True),
        deposit_history=tuple(deposits),
        adjustment_history=tuple(adjustments),
    )


def _parse_transaction(raw: Any, index: int) -> Transaction:
    p = _RecordParser('transactions', index)
    transaction = Transaction(
        id=str(p.require(raw, 'id')),
        date=p.date(raw, 'date'),
        concept=str(raw.get('concept') or ''),
        amount=p.decimal(raw, 'amount'),
        category=str(raw.get('category') or ''),
        fund_linked=bool(raw.get('fund_linked', False)),
        kind=p.enum(raw, 'kind', TransactionKind),
    )
    if transaction.amount <= 0:
        raise p.fail("amount must be positive")
    return transaction


def _parse_obligation(raw: Any, index: int) -> RecurringObligation:
    p = _RecordParser('obligations', index)
    obligation = RecurringObligation(
        id=str(p.require(raw, 'id')),
        name=str(p.require(raw, 'name')),
        amount=p.decimal(raw, 'amount'),
        day_of_month=p.optional_int(raw, 'day_of_month') or 1,
        kind=p.enum(raw, 'kind', ObligationKind),
        status=p.enum(raw, 'status', ObligationStatus),
        installments_remaining=p.optional_int(raw, 'installments_remaining'),
        installments_total=p.optional_int(raw, 'installments_total'),
        interest_rate_pct=p.decimal(raw, 'interest_rate_pct', optional=True),
        category=str(raw.get('category') or ''),
    )
    problems = obligation.validate()
    if problems:
        raise p.fail("; ".join(problems))
    return obligation


def _parse_envelopes(raw: Any) -> AllocatorState:
    p = _RecordParser('envelopes')
    envelopes = []
    for i, item in enumerate(p.items(p.require(raw, 'envelopes'))):
        ep = _RecordParser('envelopes.envelopes', i)
        envelope = Envelope(
            id=str(ep.require(item, 'id')),
            name=str(ep.require(item, 'name')),
            color_tag=str(item.get('color_tag') or 'gray'),
            kind=ep.enum(item, 'kind', EnvelopeKind),
            assigned=ep.decimal(item, 'assigned'),
            spent=ep.decimal(item, 'spent'),
            is_default=bool(item.get('is_default', False)),
        )
        if envelope.assigned < 0 or envelope.spent < 0:
            raise ep.fail("assigned and spent cannot be negative")
        envelopes.append(envelope)
    return AllocatorState(
        envelopes=tuple(envelopes),
        unassigned_money=p.decimal(raw, 'unassigned_money'),
        fund_balance=p.decimal(raw, 'fund_balance'),
    )


def _parse_goal(raw: Any, index: int) -> SavingsGoal:
    p = _RecordParser('goals', index)
    contributions = []
    for i, item in enumerate(p.items(p.require(raw, 'contribution_history'))):
        cp = _RecordParser(f'goals[{index}].contribution_history', i)
        contributions.append(Contribution(
            date=cp.date(item, 'date'),
            amount=cp.decimal(item, 'amount'),
            source=str(item.get('source') or 'manual'),
        ))
    deadline = raw.get('deadline_month')
    if deadline:
        try:
            parse_month(deadline)
        except FinanceAppError as e:
            raise p.fail("deadline_month must be YYYY-MM", e) from e
    goal = SavingsGoal(
        id=str(p.require(raw, 'id')),
        name=str(p.require(raw, 'name')),
        target_amount=p.decimal(raw, 'target_amount'),
        deadline_month=deadline or None,
        progress=p.decimal(raw, 'progress'),
        contribution_history=tuple(contributions),
    )
    if goal.target_amount <= 0:
        raise p.fail("target_amount must be positive")
    if goal.progress < 0:
        raise p.fail("progress cannot be negative")
    return goal


def _check_unique(section: str, ids: List[str]) -> None:
    seen = set()
    for record_id in ids:
        if record_id in seen:
            raise SnapshotError(f"Duplicate id in {section}", details={'id': record_id})
        seen.add(record_id)


def import_snapshot(document: Any) -> OperationResult[FinanceSnapshot]:
    """
    Validate a snapshot document and build the state it describes.

    Args:
        document: Parsed document (any supported schema version)

    Returns:
        OperationResult holding the complete FinanceSnapshot, or a
        SnapshotError failure; migration notes are returned as warnings
    """
    try:
        migration = migrate(document)
        doc = migration.document

        missing = [key for key in REQUIRED_KEYS if key not in doc]
        if missing:
            raise SnapshotError("Snapshot is missing required keys", details={'missing': missing})

        parser = _RecordParser('snapshot')
        transactions = tuple(_parse_transaction(t, i) for i, t in enumerate(parser.items(doc['transactions'])))
        obligations = tuple(_parse_obligation(o, i) for i, o in enumerate(parser.items(doc['obligations'])))
        goals = tuple(_parse_goal(g, i) for i, g in enumerate(parser.items(doc['goals'])))
        envelopes = _parse_envelopes(doc['envelopes'])

        _check_unique('transactions', [t.id for t in transactions])
        _check_unique('obligations', [o.id for o in obligations])
        _check_unique('envelopes', [e.id for e in envelopes.envelopes])
        _check_unique('goals', [g.id for g in goals])

        exported_at = None
        if doc['exported_at']:
            exported_at = parser.timestamp(doc, 'exported_at')

        snapshot = FinanceSnapshot(
            fund_state=_parse_fund(doc['fund_state']),
            transactions=transactions,
            obligations=obligations,
            envelopes=envelopes,
            goals=goals,
            exported_at=exported_at,
        )
    except SnapshotError as e:
        logger.warning(f"Rejected snapshot import: {e}")
        return OperationResult.failure(e)

    logger.info(
        f"Validated snapshot (schema v{migration.from_version}): {len(snapshot.transactions)} transactions, "
        f"{len(snapshot.obligations)} obligations, {len(snapshot.goals)} goals"
    )
    return OperationResult.success(snapshot, migration.notes)


def from_json(text: str) -> OperationResult[FinanceSnapshot]:
    """Parse and import a JSON snapshot."""
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        error = SnapshotError("Snapshot is not valid JSON", original_error=e)
        logger.warning(f"Rejected snapshot import: {error}")
        return OperationResult.failure(error)
    return import_snapshot(document)
