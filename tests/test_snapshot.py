"""
Unit tests for snapshot export and import.

Validates lossless round trips, rejection of malformed documents without
partial results, and import of legacy documents.
"""

import json
from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from budgeting import EnvelopeAllocator
from exceptions import SnapshotError
from models import (
    AdjustmentRecord,
    Contribution,
    DepositRecord,
    FundState,
    ObligationKind,
    RecurringObligation,
    SavingsGoal,
    Transaction,
    TransactionKind,
)
from snapshot import REQUIRED_KEYS, FinanceSnapshot, export_snapshot, from_json, import_snapshot, to_json

LEGACY_DOCUMENT = {
    "fecha": "2024-03-10T09:30:00+00:00",
    "config": {
        "fondoDisponible": 850,
        "ultimaNomina": "2024-02-28",
        "historialNominas": [{"fecha": "2024-02-28", "cantidad": 1000}],
    },
    "gastosVariables": [
        {"id": 1, "fecha": "2024-03-02", "concepto": "Super", "cantidad": 100, "categoria": "Alimentación", "deductedFromFund": True},
        {"id": 2, "fecha": "2024-03-04", "concepto": "Cine", "cantidad": 25, "categoria": "Ocio"},
    ],
    "ingresos": [{"id": 7, "fecha": "2024-03-05", "concepto": "Venta", "cantidad": 40}],
    "gastosFijos": [
        {"id": 3, "nombre": "Coche", "cantidad": 150, "diaDelMes": 5, "tipo": "credito", "cuotasRestantes": 10, "cuotasTotales": 24},
    ],
}

EXPORTED_AT = datetime(2024, 3, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def snapshot():
    """A snapshot with one record of each kind."""
    allocator = EnvelopeAllocator()
    envelopes = allocator.set_assigned(allocator.default_state(Decimal("1874.99")), "food", "250.50").state
    return FinanceSnapshot(
        fund_state=FundState(
            balance=Decimal("1874.99"),
            last_deposit_date=date(2024, 3, 1),
            deposit_history=(DepositRecord(date(2024, 3, 1), Decimal("2000")),),
            adjustment_history=(
                AdjustmentRecord(EXPORTED_AT, Decimal("1900"), Decimal("1874.99"), "bank fee"),
            ),
        ),
        transactions=(
            Transaction("txn_1", date(2024, 3, 3), "Supermercado", Decimal("125.01"), "Alimentación", True),
            Transaction("txn_2", date(2024, 3, 5), "Bizum", Decimal("30"), "Extra", False, TransactionKind.INCOME),
        ),
        obligations=(
            RecurringObligation(
                "fixed_1", "Car loan", Decimal("150"), 31, ObligationKind.DEBT,
                installments_remaining=10, installments_total=24, interest_rate_pct=Decimal("6.5"),
            ),
        ),
        envelopes=envelopes,
        goals=(
            SavingsGoal(
                "goal_1", "Trip", Decimal("900"), "2024-08", Decimal("100"),
                (Contribution(date(2024, 3, 10), Decimal("100"), "leisure"),),
            ),
        ),
        exported_at=EXPORTED_AT,
    )


class TestRoundTrip:
    """Export then import yields the same state."""

    def test_json_round_trip(self, snapshot):
        result = from_json(to_json(snapshot, EXPORTED_AT))

        assert result.ok, result.error
        assert result.state == snapshot
        assert result.warnings == []

    def test_amounts_are_decimal_strings(self, snapshot):
        document = export_snapshot(snapshot, EXPORTED_AT)

        assert document['fund_state']['balance'] == "1874.99"
        assert document['transactions'][0]['amount'] == "125.01"
        assert document['obligations'][0]['interest_rate_pct'] == "6.5"
        assert set(REQUIRED_KEYS) <= set(document)


class TestValidation:
    """Malformed documents are rejected as a whole."""

    @pytest.fixture
    def document(self, snapshot):
        return export_snapshot(snapshot, EXPORTED_AT)

    def test_invalid_json(self):
        result = from_json("{not json")
        assert not result.ok
        assert isinstance(result.error, SnapshotError)
        assert result.state is None

    def test_missing_key(self, document):
        del document['goals']
        result = import_snapshot(document)

        assert not result.ok
        assert result.error.details['missing'] == ['goals']

    def test_duplicate_ids(self, document):
        document['transactions'].append(dict(document['transactions'][0]))
        result = import_snapshot(document)

        assert not result.ok
        assert "Duplicate" in str(result.error)

    def test_bad_record_is_located(self, document):
        document['transactions'][1]['amount'] = "lots"
        result = import_snapshot(document)

        assert not result.ok
        assert result.error.details['record'] == 'transactions[1]'

    def test_invalid_obligation(self, document):
        document['obligations'][0]['day_of_month'] = 40
        assert not import_snapshot(document).ok

    def test_unknown_enum_value(self, document):
        document['envelopes']['envelopes'][0]['kind'] = 'luxury'
        assert not import_snapshot(document).ok

    def test_newer_schema_rejected(self, document):
        document['schema_version'] = 99
        result = import_snapshot(document)

        assert not result.ok
        assert isinstance(result.error, SnapshotError)


class TestLegacyImport:
    """Legacy documents are migrated on import."""

    def test_legacy_document_imports(self):
        result = from_json(json.dumps(LEGACY_DOCUMENT))

        assert result.ok, result.error
        snapshot = result.state
        assert snapshot.fund_state.balance == Decimal("850")
        assert len(snapshot.transactions) == 3
        assert snapshot.obligations[0].kind is ObligationKind.DEBT
        assert snapshot.envelopes.unassigned_money == Decimal("850")
        assert result.warnings
