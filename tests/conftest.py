"""
Shared fixtures for the test suite.
"""

import copy
from datetime import UTC, date, datetime

import pytest

from config_manager import DEFAULT_CONFIG
from database_ops import DatabaseManager
from financial_app import FinanceApp

FIXED_TODAY = date(2024, 3, 15)
FIXED_NOW = datetime(2024, 3, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def db_manager(tmp_path):
    """DatabaseManager backed by a throwaway SQLite file."""
    manager = DatabaseManager(f"sqlite:///{(tmp_path / 'finance.db').as_posix()}")
    manager.create_tables()
    try:
        yield manager
    finally:
        manager.close()


@pytest.fixture
def app_config(tmp_path):
    """Default configuration with backups redirected into tmp_path."""
    config = copy.deepcopy(DEFAULT_CONFIG)
    config['backup']['backup_dir'] = str(tmp_path / 'backups')
    return config


@pytest.fixture
def app(db_manager, app_config):
    """FinanceApp with a fixed clock."""
    return FinanceApp(db_manager, app_config, clock=lambda: FIXED_NOW, today=lambda: FIXED_TODAY)
