"""
Unit tests for schema version detection and the legacy document migration.
"""

import copy
from datetime import UTC, datetime

import pytest

from exceptions import SchemaMigrationError
from schema_migration import CURRENT_SCHEMA_VERSION, detect_version, migrate

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=UTC)

LEGACY_DOCUMENT = {
    'fecha': '2024-03-10T09:30:00+00:00',
    'config': {
        'fondoDisponible': 850,
        'ultimaNomina': '2024-02-28',
        'historialNominas': [{'fecha': '2024-02-28T08:00:00', 'cantidad': 1000}],
    },
    'gastosVariables': [
        {'id': 1, 'fecha': '2024-03-02', 'concepto': 'Super', 'cantidad': '100', 'categoria': 'Alimentación', 'deductedFromFund': True},
        {'id': 2, 'fecha': '2024-03-04', 'concepto': 'Cine', 'cantidad': 25, 'categoria': 'Ocio'},
    ],
    'ingresos': [
        {'id': 7, 'fecha': '2024-03-05', 'concepto': 'Venta bici', 'cantidad': 40, 'categoria': 'Extra'},
    ],
    'gastosFijos': [
        {
            'id': 3, 'nombre': 'Coche', 'cantidad': 150, 'diaDelMes': 5, 'tipo': 'credito',
            'estado': 'activo', 'cuotasRestantes': 10, 'cuotasTotales': 24, 'categoria': 'Préstamo',
        },
        {'id': 4, 'nombre': 'Gimnasio', 'cantidad': 'n/a', 'tipo': 'suscripcion', 'estado': 'pausado'},
    ],
}


class TestDetectVersion:
    """Tests for detect_version()."""

    def test_explicit_version(self):
        assert detect_version({'schema_version': 2}) == 2
        assert detect_version({'schema_version': '2'}) == 2

    def test_legacy_document(self):
        assert detect_version(LEGACY_DOCUMENT) == 1

    @pytest.mark.parametrize("document", [[], {'foo': 1}, {'schema_version': 'two'}])
    def test_unrecognised(self, document):
        with pytest.raises(SchemaMigrationError):
            detect_version(document)


class TestMigrate:
    """Tests for migrate()."""

    def test_current_version_is_untouched(self):
        document = {'schema_version': CURRENT_SCHEMA_VERSION, 'goals': []}
        result = migrate(document, NOW)

        assert not result.migrated
        assert result.document == document
        assert result.notes == []

    def test_newer_version_is_rejected(self):
        with pytest.raises(SchemaMigrationError):
            migrate({'schema_version': CURRENT_SCHEMA_VERSION + 1})

    def test_input_is_not_modified(self):
        original = copy.deepcopy(LEGACY_DOCUMENT)
        migrate(LEGACY_DOCUMENT, NOW)
        assert LEGACY_DOCUMENT == original

    def test_legacy_fund_and_records(self):
        result = migrate(LEGACY_DOCUMENT, NOW)
        doc = result.document

        assert result.migrated
        assert result.from_version == 1
        assert doc['schema_version'] == 2
        assert doc['fund_state']['balance'] == '850'
        assert doc['fund_state']['last_deposit_date'] == '2024-02-28'
        assert doc['fund_state']['deposit_history'] == [{'date': '2024-02-28', 'amount': '1000'}]

        expense, other, income = doc['transactions']
        assert expense['fund_linked'] is True
        assert other['fund_linked'] is False
        assert income['id'] == 'income_7'
        assert income['kind'] == 'income'

        [car] = doc['obligations']
        assert car['kind'] == 'debt'
        assert car['installments_remaining'] == 10
        assert car['day_of_month'] == 5
        assert "Skipped obligation 4: amount is not positive" in result.notes

    def test_opening_balance_adjustment(self):
        result = migrate(LEGACY_DOCUMENT, NOW)
        adjustments = result.document['fund_state']['adjustment_history']

        assert len(adjustments) == 1
        assert adjustments[0]['previous_balance'] == '900'
        assert adjustments[0]['new_balance'] == '850'
        assert adjustments[0]['timestamp'] == NOW.isoformat()
        assert any("opening balance" in note for note in result.notes)

    def test_default_envelopes_created(self):
        envelopes = migrate(LEGACY_DOCUMENT, NOW).document['envelopes']

        assert envelopes['unassigned_money'] == '850'
        assert all(e['is_default'] and e['assigned'] == '0' for e in envelopes['envelopes'])

    def test_fund_from_income_base(self):
        legacy = copy.deepcopy(LEGACY_DOCUMENT)
        del legacy['config']['fondoDisponible']
        legacy['config']['incomeBase'] = 1200

        result = migrate(legacy, NOW)

        assert result.document['fund_state']['balance'] == '1200'
        assert "Fund initialised from incomeBase" in result.notes
