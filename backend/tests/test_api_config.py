import logging

from backend.app.api.config import EXCEPTION_THRESHOLD_ENV, exception_config_from_env, network_benchmark_apy
from backend.app.detection import DEFAULT_EXCEPTION_CONFIG


def _clear(monkeypatch):
    for env in EXCEPTION_THRESHOLD_ENV.values():
        monkeypatch.delenv(env, raising=False)
    monkeypatch.delenv("NETWORK_BENCHMARK_APY", raising=False)


def test_defaults_without_env(monkeypatch):
    _clear(monkeypatch)
    assert exception_config_from_env() == DEFAULT_EXCEPTION_CONFIG
    assert network_benchmark_apy() == 0.038


def test_env_overrides_thresholds(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("EXCEPTION_PORTFOLIO_VALUE_CHANGE_THRESHOLD", "0.02")
    monkeypatch.setenv("EXCEPTION_IN_TRANSIT_STUCK_DAYS", "3")
    monkeypatch.setenv("NETWORK_BENCHMARK_APY", "0.035")

    config = exception_config_from_env()
    assert config.portfolio_value_change_threshold == 0.02
    assert config.in_transit_stuck_days == 3.0
    assert config.rewards_anomaly_threshold == DEFAULT_EXCEPTION_CONFIG.rewards_anomaly_threshold
    assert network_benchmark_apy() == 0.035


def test_bad_env_values_are_ignored_with_warning(monkeypatch, caplog):
    _clear(monkeypatch)
    monkeypatch.setenv("EXCEPTION_REWARDS_ANOMALY_THRESHOLD", "lots")
    monkeypatch.setenv("EXCEPTION_VALIDATOR_COUNT_CHANGE_THRESHOLD", "  ")

    with caplog.at_level(logging.WARNING):
        config = exception_config_from_env()

    assert config == DEFAULT_EXCEPTION_CONFIG
    assert "EXCEPTION_REWARDS_ANOMALY_THRESHOLD" in caplog.text
