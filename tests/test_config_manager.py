"""
Unit tests for configuration loading, saving and section accessors.
"""

from decimal import Decimal

import pytest
import yaml

from config_manager import (
    DEFAULT_CONFIG,
    get_analysis_settings,
    get_auto_split,
    get_keyword_overrides,
    get_max_months,
    load_config,
    save_config,
)
from exceptions import ConfigError


class TestLoadConfig:
    """Tests for load_config."""

    def test_missing_file_returns_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")
        assert config == DEFAULT_CONFIG

    def test_values_are_deep_merged(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            "analysis": {"savings_floor_pct": 15},
            "classification": {"keywords": {"needs": ["Gym"]}},
        }))

        config = load_config(path)

        assert config["analysis"]["savings_floor_pct"] == 15
        assert config["analysis"]["overspend_warning_pct"] == 85
        assert get_keyword_overrides(config) == {"needs": ["Gym"]}

    def test_invalid_yaml_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("analysis: [unclosed")
        assert load_config(path) == DEFAULT_CONFIG

    def test_non_mapping_root_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        assert load_config(path) == DEFAULT_CONFIG

    def test_defaults_are_not_shared(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")
        config["analysis"]["savings_floor_pct"] = 99
        assert DEFAULT_CONFIG["analysis"]["savings_floor_pct"] == 10


class TestSaveConfig:
    """Tests for save_config."""

    def test_preserves_unknown_keys(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"custom": {"keep": True}, "debt_simulation": {"max_months": 120}}))

        assert save_config({"debt_simulation": {"max_months": 240}}, path)

        saved = yaml.safe_load(path.read_text())
        assert saved["custom"] == {"keep": True}
        assert saved["debt_simulation"]["max_months"] == 240


class TestAccessors:
    """Tests for typed section accessors."""

    def test_auto_split_is_decimal(self):
        split = get_auto_split(DEFAULT_CONFIG)
        assert split["needs"] == Decimal("50")
        assert sum(split.values()) == Decimal("100")

    def test_auto_split_rejects_bad_percentage(self):
        with pytest.raises(ConfigError):
            get_auto_split({"envelopes": {"auto_split": {"needs": "half"}}})

    def test_max_months(self):
        assert get_max_months({}) == 360
        assert get_max_months({"debt_simulation": {"max_months": "24"}}) == 24

    @pytest.mark.parametrize("value", [0, -5, "many"])
    def test_max_months_rejects_invalid(self, value):
        with pytest.raises(ConfigError):
            get_max_months({"debt_simulation": {"max_months": value}})

    def test_analysis_settings_merge(self):
        settings = get_analysis_settings({"analysis": {"target_without_debt": {"needs": 60, "wants": 20, "savings": 20}}})
        assert settings["target_without_debt"]["needs"] == 60
        assert settings["target_with_debt"]["debt"] == 30
