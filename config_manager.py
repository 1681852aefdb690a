"""
Configuration management module for the finance engine.

This module handles loading and saving configuration values: logging,
database location, the classification keyword table, analyzer thresholds,
the envelope auto-allocation split and the debt simulation cap. Missing
values fall back to DEFAULT_CONFIG.
"""

import copy
import logging
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from exceptions import ConfigError
from utils import to_decimal

logger = logging.getLogger(__name__)

CONFIG_FILE = 'config.yaml'

# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'file': None,
    },
    'database': {
        'data_dir': 'data',
        'path': 'finance.db',
        'connection_string': None,
    },
    'classification': {
        # Empty lists fall back to the built-in keyword table
        'keywords': {},
    },
    'analysis': {
        'deviation_critical': 10,
        'deviation_warning': 10,
        'savings_shortfall': -5,
        'savings_floor_pct': 10,
        'overspend_warning_pct': 85,
        'overspend_critical_pct': 95,
        'target_with_debt': {'needs': 50, 'wants': 20, 'debt': 30, 'savings': 10},
        'target_without_debt': {'needs': 50, 'wants': 30, 'savings': 20},
    },
    'envelopes': {
        'auto_split': {
            'needs': 50,
            'food': 15,
            'transport': 10,
            'leisure': 10,
            'emergency_fund': 10,
            'extra_debt_payment': 5,
        },
    },
    'debt_simulation': {
        'max_months': 360,
    },
    'goals': {
        'suggestion_minimum': 10,
    },
    'backup': {
        # None keeps backups in a backups/ folder beside the database file
        'backup_dir': None,
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge `override` into a copy of `base`, recursing into nested dicts."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML file (defaults to config.yaml)

    Returns:
        Configuration dictionary with defaults for missing values
    """
    try:
        path = Path(config_path or CONFIG_FILE)
        if path.exists():
            with open(path, 'r') as f:
                config = yaml.safe_load(f) or {}
        else:
            config = {}

        if not isinstance(config, dict):
            raise ConfigError("Configuration root must be a mapping", details={'path': str(path)})

        merged = _deep_merge(DEFAULT_CONFIG, config)
        logger.info(f"Configuration loaded from {path}")
        return merged

    except Exception as e:
        logger.error(f"Error loading configuration: {e}", exc_info=True)
        return copy.deepcopy(DEFAULT_CONFIG)


def save_config(config: Dict[str, Any], config_path: Optional[Union[str, Path]] = None) -> bool:
    """
    Save configuration to a YAML file.

    Keys already present in the file and absent from `config` are preserved.

    Args:
        config: Configuration dictionary to save
        config_path: Target file (defaults to config.yaml)

    Returns:
        True if successful, False otherwise
    """
    try:
        path = Path(config_path or CONFIG_FILE)

        # Read existing config to preserve other settings
        existing_config = {}
        if path.exists():
            with open(path, 'r') as f:
                existing_config = yaml.safe_load(f) or {}

        merged = _deep_merge(existing_config, config)

        with open(path, 'w') as f:
            yaml.safe_dump(merged, f, default_flow_style=False, allow_unicode=True)

        logger.info(f"Configuration saved to {path}")
        return True

    except Exception as e:
        logger.error(f"Error saving configuration: {e}", exc_info=True)
        return False


def get_keyword_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Return the user keyword table override (may be empty)."""
    return (config.get('classification') or {}).get('keywords') or {}


def get_auto_split(config: Dict[str, Any]) -> Dict[str, Decimal]:
    """
    Return the auto-allocation split as Decimal percentages.

    Raises:
        ConfigError: If a percentage is not numeric
    """
    raw = (config.get('envelopes') or {}).get('auto_split') or DEFAULT_CONFIG['envelopes']['auto_split']
    split = {}
    for envelope_id, pct in raw.items():
        try:
            split[str(envelope_id)] = to_decimal(pct, 'auto_split')
        except Exception as e:
            raise ConfigError(
                f"Invalid auto_split percentage for '{envelope_id}'",
                details={'value': pct},
                original_error=e
            ) from e
    return split


def get_analysis_settings(config: Dict[str, Any]) -> Dict[str, Any]:
    """Return the analysis section merged with defaults."""
    return _deep_merge(DEFAULT_CONFIG['analysis'], config.get('analysis') or {})


def get_max_months(config: Dict[str, Any]) -> int:
    """
    Return the debt simulation month cap.

    Raises:
        ConfigError: If the value is not a positive integer
    """
    value = (config.get('debt_simulation') or {}).get('max_months', 360)
    try:
        months = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError("debt_simulation.max_months must be an integer", details={'value': value}, original_error=e) from e
    if months <= 0:
        raise ConfigError("debt_simulation.max_months must be positive", details={'value': value})
    return months

