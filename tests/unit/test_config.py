"""
Unit tests for tuning profiles and service settings.
"""

import dataclasses

import pytest

from brok.config import DEFAULT_CONFIG, FORMAT_STRENGTHS, MasteryConfig, Settings, get_settings
from brok.errors import ConfigurationError
from brok.mastery import UnitType


class TestMasteryConfig:
    """Tests for MasteryConfig."""

    def test_defaults(self):
        config = MasteryConfig()
        assert config.p_master == 0.90
        assert config.u_max == 0.25
        assert config.s_min == 0.70
        assert config.k_confirmations == 3
        assert config.min_unit_types == 2
        assert config.lr_base == 0.3
        assert config.frontier_limit == 5

    def test_is_immutable(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            DEFAULT_CONFIG.p_master = 0.5

    def test_replace_builds_alternate_profile(self):
        strict = dataclasses.replace(DEFAULT_CONFIG, p_master=0.95)
        assert strict.p_master == 0.95
        assert DEFAULT_CONFIG.p_master == 0.90

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"p_master": 1.5},
            {"u_max": -0.1},
            {"k_confirmations": 0},
            {"frontier_limit": 0},
            {"lr_base": -1.0},
            {"p_clamp": (0.5, 0.4)},
            {"format_strengths": {"drill_set": 2.0}},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ConfigurationError):
            MasteryConfig(**kwargs)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            MasteryConfig(s_min=2.0)

    def test_format_strength_lookup(self):
        assert DEFAULT_CONFIG.format_strength("applied_free_response") == 0.9
        assert DEFAULT_CONFIG.format_strength(UnitType.DIAGNOSTIC_MCQ) == 0.4

    def test_every_unit_type_has_a_strength(self):
        for unit_type in UnitType:
            assert 0.0 <= DEFAULT_CONFIG.format_strength(unit_type) <= 1.0

    def test_unknown_format_rejected(self):
        with pytest.raises(ConfigurationError):
            DEFAULT_CONFIG.format_strength("essay")

    def test_custom_format_strengths_are_frozen(self):
        config = MasteryConfig(format_strengths={**FORMAT_STRENGTHS, "drill_set": 0.55})
        assert config.format_strength("drill_set") == 0.55
        with pytest.raises(TypeError):
            config.format_strengths["drill_set"] = 1.0

    def test_to_dict(self):
        payload = DEFAULT_CONFIG.to_dict()
        assert payload["p_master"] == 0.90
        assert payload["format_strengths"]["error_reversal"] == 0.7


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("BROK_DATABASE_URL", raising=False)
        settings = Settings(_env_file=None)
        assert settings.database_url == "sqlite:///brok_state.db"
        assert settings.log_level == "INFO"
        assert settings.get_mastery_config() == MasteryConfig()

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("BROK_MASTERY_P_MASTER", "0.95")
        monkeypatch.setenv("BROK_FRONTIER_LIMIT", "8")
        monkeypatch.setenv("BROK_CRITICAL_MISCONCEPTIONS", "sign-error, off-by-one,,")

        settings = Settings(_env_file=None)
        config = settings.get_mastery_config()

        assert config.p_master == 0.95
        assert config.frontier_limit == 8
        assert settings.get_critical_misconceptions() == frozenset({"sign-error", "off-by-one"})

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        assert get_settings() is get_settings()
        get_settings.cache_clear()
