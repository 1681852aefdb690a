"""
Versioned schema loader for stored finance documents.

Documents carry a schema_version. Loading detects the version and runs pure
migration steps up to CURRENT_SCHEMA_VERSION, returning the upgraded
document together with notes on what changed. Nothing is persisted here;
the caller decides whether to store the migrated document.

Version 1 is the legacy backup format: a 'config' block holding the fund
(fondoDisponible, historialNominas, ultimaNomina) plus gastosFijos,
gastosVariables and ingresos lists.
"""

import copy
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from budgeting import DEFAULT_ENVELOPES
from exceptions import FinanceAppError, SchemaMigrationError
from utils import to_decimal

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 2

_LEGACY_KEYS = ('config', 'gastosFijos', 'gastosVariables', 'ingresos')

_LEGACY_OBLIGATION_KINDS = {
    'suscripcion': 'subscription',
    'credito': 'debt',
    'servicio': 'service',
    'otro': 'other',
}

_LEGACY_STATUSES = {
    'activo': 'active',
    'pausado': 'paused',
    'finalizado': 'ended',
}


@dataclass
class MigrationResult:
    """
    Outcome of running the schema migrations on a document.

    Attributes:
        document: Document at CURRENT_SCHEMA_VERSION
        from_version: Version detected on input
        to_version: Version of the returned document
        notes: Human-readable description of each change made
    """
    document: Dict[str, Any]
    from_version: int
    to_version: int = CURRENT_SCHEMA_VERSION
    notes: List[str] = field(default_factory=list)

    @property
    def migrated(self) -> bool:
        return self.from_version != self.to_version


def detect_version(document: Dict[str, Any]) -> int:
    """
    Detect the schema version of a document.

    Raises:
        SchemaMigrationError: If the document is not a mapping or the
            version cannot be determined
    """
    if not isinstance(document, dict):
        raise SchemaMigrationError("Document must be a mapping", details={'type': type(document).__name__})

    if 'schema_version' in document:
        try:
            return int(document['schema_version'])
        except (TypeError, ValueError) as e:
            raise SchemaMigrationError(
                "Invalid schema_version",
                details={'schema_version': document['schema_version']},
                original_error=e
            ) from e

    if all(key in document for key in _LEGACY_KEYS):
        return 1

    raise SchemaMigrationError("Unrecognised document format: no schema_version")


def _legacy_amount(value: Any) -> str:
    """Legacy amounts were parsed leniently; unparseable values count as 0."""
    try:
        return str(to_decimal(value))
    except FinanceAppError:
        return '0'


def _legacy_int(value: Any) -> Optional[int]:
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _legacy_date(value: Any) -> Optional[str]:
    if not value:
        return None
    return str(value)[:10]


def _migrate_v1_to_v2(document: Dict[str, Any], now: datetime, notes: List[str]) -> Dict[str, Any]:
    config = document.get('config') or {}

    if 'fondoDisponible' in config:
        balance = to_decimal(_legacy_amount(config.get('fondoDisponible')))
    else:
        balance = to_decimal(_legacy_amount(config.get('incomeBase', 0)))
        notes.append("Fund initialised from incomeBase")

    deposits = [
        {'date': _legacy_date(item.get('fecha')), 'amount': _legacy_amount(item.get('cantidad'))}
        for item in config.get('historialNominas') or []
    ]

    transactions = []
    for item in document.get('gastosVariables') or []:
        transactions.append({
            'id': str(item.get('id')),
            'date': _legacy_date(item.get('fecha')),
            'concept': item.get('concepto') or '',
            'amount': _legacy_amount(item.get('cantidad')),
            'category': item.get('categoria') or '',
            'fund_linked': bool(item.get('deductedFromFund', False)),
            'kind': 'expense',
        })
    for item in document.get('ingresos') or []:
        transactions.append({
            'id': f"income_{item.get('id')}",
            'date': _legacy_date(item.get('fecha')),
            'concept': item.get('concepto') or '',
            'amount': _legacy_amount(item.get('cantidad')),
            'category': item.get('categoria') or '',
            'fund_linked': False,
            'kind': 'income',
        })

    obligations = []
    for item in document.get('gastosFijos') or []:
        obligations.append({
            'id': str(item.get('id')),
            'name': item.get('nombre') or '',
            'amount': _legacy_amount(item.get('cantidad')),
            'day_of_month': _legacy_int(item.get('diaDelMes')) or 1,
            'kind': _LEGACY_OBLIGATION_KINDS.get(str(item.get('tipo', 'otro')).lower(), 'other'),
            'status': _LEGACY_STATUSES.get(str(item.get('estado', 'activo')).lower(), 'active'),
            'installments_remaining': _legacy_int(item.get('cuotasRestantes')),
            'installments_total': _legacy_int(item.get('cuotasTotales')),
            'interest_rate_pct': None,
            'category': item.get('categoria') or '',
        })

    # Records without a positive amount cannot be represented
    for label, records in (('transaction', transactions), ('obligation', obligations)):
        kept = [r for r in records if to_decimal(r['amount']) > 0]
        for record in records:
            if record not in kept:
                notes.append(f"Skipped {label} {record['id']}: amount is not positive")
        records[:] = kept

    # Legacy balances have no audit trail; record the gap so history reconciles
    expected = sum((to_decimal(d['amount']) for d in deposits), Decimal('0')) - sum(
        (to_decimal(t['amount']) for t in transactions if t['fund_linked']), Decimal('0')
    )
    adjustments = []
    if expected != balance:
        adjustments.append({
            'timestamp': now.isoformat(),
            'previous_balance': str(expected),
            'new_balance': str(balance),
            'reason': 'Opening balance carried over from legacy data',
        })
        notes.append(f"Recorded opening balance adjustment of {balance - expected}")

    envelopes = [
        {
            'id': envelope_id,
            'name': name,
            'color_tag': color,
            'kind': kind.value,
            'assigned': '0',
            'spent': '0',
            'is_default': True,
        }
        for envelope_id, name, color, kind in DEFAULT_ENVELOPES
    ]
    notes.append("Created the built-in envelope set with nothing assigned")

    if document.get('clasificacionCategorias'):
        notes.append("Legacy category keywords were not migrated; set classification.keywords in config.yaml")

    return {
        'schema_version': 2,
        'exported_at': document.get('fecha'),
        'fund_state': {
            'balance': str(balance),
            'last_deposit_date': _legacy_date(config.get('ultimaNomina')),
            'deposit_history': deposits,
            'adjustment_history': adjustments,
        },
        'transactions': transactions,
        'obligations': obligations,
        'envelopes': {
            'envelopes': envelopes,
            'unassigned_money': str(max(balance, Decimal('0'))),
            'fund_balance': str(balance),
        },
        'goals': [],
    }


MIGRATIONS: Dict[int, Callable[[Dict[str, Any], datetime, List[str]], Dict[str, Any]]] = {
    1: _migrate_v1_to_v2,
}


def migrate(document: Dict[str, Any], now: Optional[datetime] = None) -> MigrationResult:
    """
    Upgrade a document to CURRENT_SCHEMA_VERSION.

    The input is never modified.

    Args:
        document: Parsed document
        now: Timestamp used for records created by the migration

    Returns:
        MigrationResult with the upgraded document

    Raises:
        SchemaMigrationError: If the version is unknown or newer than supported
    """
    from_version = detect_version(document)
    if from_version > CURRENT_SCHEMA_VERSION:
        raise SchemaMigrationError(
            "Document was written by a newer version",
            details={'schema_version': from_version, 'supported': CURRENT_SCHEMA_VERSION}
        )
    if from_version < 1:
        raise SchemaMigrationError("Unsupported schema version", details={'schema_version': from_version})

    now = now or datetime.now(UTC)
    notes: List[str] = []
    current = copy.deepcopy(document)
    version = from_version
    while version < CURRENT_SCHEMA_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            raise SchemaMigrationError("No migration available", details={'schema_version': version})
        try:
            current = step(current, now, notes)
        except (AttributeError, TypeError) as e:
            raise SchemaMigrationError(
                "Malformed record in legacy document",
                details={'schema_version': version},
                original_error=e
            ) from e
        version += 1
        logger.info(f"Migrated document from schema v{version - 1} to v{version}")

    return MigrationResult(document=current, from_version=from_version, to_version=version, notes=notes)
