"""
Tests for Configuration Module
"""

import pytest

from config.constants import *
from config import settings as settings_module
from utils.exceptions import ConfigurationError

from conftest import build_settings


class TestConstants:
    """Test model constants"""

    def test_fee_model(self):
        """Round-trip fee is quoted in percent, simulated fee as a rate"""
        assert ROUND_TRIP_FEE_PERCENT == 1.0
        assert SIMULATED_FEE_RATE == 0.01

    def test_similarity_weights_sum_to_one(self):
        assert sum(SIMILARITY_WEIGHTS) == pytest.approx(1.0)

    def test_kelly_bounds(self):
        assert 0 < KELLY_MIN_FRACTION < KELLY_MAX_FRACTION <= MAX_BANKROLL_FRACTION_PER_TRADE
        assert KELLY_MIN_WIN_PROBABILITY < KELLY_MAX_WIN_PROBABILITY < 1

    def test_tracking_parameters(self):
        assert OPPORTUNITY_EXPIRY_SEC == 300
        assert SPREAD_HISTORY_SIZE == 10
        assert SIGNIFICANT_PROFIT_CHANGE_PCT == 0.5


class TestArbitrageSettings:
    """Test pydantic-settings configuration"""

    def test_defaults(self, settings):
        assert settings.execution_mode == 'simulation'
        assert settings.min_profit_threshold == 0.5
        assert settings.min_confidence == 0.7
        assert settings.max_position_size_usd == 1000.0
        assert settings.max_total_exposure_usd == 5000.0
        assert settings.max_daily_loss_usd == 500.0
        assert settings.min_liquidity_usd == 5000.0
        assert settings.trade_cooldown_sec == 5.0
        assert settings.sim_starting_balance == 10000.0
        assert settings.enable_semantic_dependency is False

    def test_environment_override(self, monkeypatch):
        """Environment variables override defaults, case-insensitively"""
        monkeypatch.setenv('MIN_PROFIT_THRESHOLD', '1.5')
        monkeypatch.setenv('enable_negrisk', 'false')

        settings = build_settings()

        assert settings.min_profit_threshold == 1.5
        assert settings.enable_negrisk is False

    def test_rejects_live_execution_mode(self):
        with pytest.raises(ValueError):
            build_settings(execution_mode='live')

    def test_execution_mode_is_normalized(self):
        assert build_settings(execution_mode='SIMULATION').execution_mode == 'simulation'

    def test_rejects_unknown_llm_provider(self):
        with pytest.raises(ValueError):
            build_settings(llm_provider='anthropic-direct')

    def test_rejects_out_of_range_confidence(self):
        with pytest.raises(ValueError):
            build_settings(min_confidence=1.5)

    def test_position_limit_cannot_exceed_total_exposure(self):
        with pytest.raises(ValueError):
            build_settings(max_position_size_usd=6000.0, max_total_exposure_usd=5000.0)

    def test_semantic_detection_requires_both_flags(self):
        assert build_settings(enable_semantic_dependency=True).semantic_detection_active is False
        assert build_settings(
            enable_semantic_dependency=True, llm_enabled=True, llm_api_key='sk-test'
        ).semantic_detection_active is True


class TestPrerequisites:
    """Test startup credential validation"""

    def test_defaults_pass(self, settings):
        settings.validate_prerequisites()

    def test_semantic_detection_without_key_fails(self):
        settings = build_settings(enable_semantic_dependency=True, llm_enabled=True)

        with pytest.raises(ConfigurationError) as exc_info:
            settings.validate_prerequisites()

        assert exc_info.value.error_code == 'MISSING_LLM_API_KEY'

    def test_telegram_without_chat_id_fails(self):
        settings = build_settings(telegram_enabled=True, telegram_bot_token='123:abc')

        with pytest.raises(ConfigurationError) as exc_info:
            settings.validate_prerequisites()

        assert exc_info.value.error_code == 'MISSING_TELEGRAM_CREDENTIALS'


class TestSettingsCache:
    """Test process-level settings cache"""

    def test_get_settings_is_cached(self, monkeypatch):
        monkeypatch.setattr(settings_module, '_settings', None)

        first = settings_module.get_settings()
        second = settings_module.get_settings()

        assert first is second

    def test_reload_picks_up_environment(self, monkeypatch):
        monkeypatch.setattr(settings_module, '_settings', None)
        settings_module.get_settings()

        monkeypatch.setenv('DETECTION_INTERVAL_SEC', '42')
        reloaded = settings_module.reload_settings()

        assert reloaded.detection_interval_sec == 42.0
        assert settings_module.get_settings() is reloaded
