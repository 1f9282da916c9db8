from __future__ import annotations

import logging
import os
from typing import Dict, Optional

from backend.app.detection.config import DEFAULT_EXCEPTION_CONFIG, ExceptionConfig
from backend.app.portfolio.rollup import NETWORK_BENCHMARK_APY

logger = logging.getLogger(__name__)

EXCEPTION_THRESHOLD_ENV: Dict[str, str] = {
    "portfolio_value_change_threshold": "EXCEPTION_PORTFOLIO_VALUE_CHANGE_THRESHOLD",
    "validator_count_change_threshold": "EXCEPTION_VALIDATOR_COUNT_CHANGE_THRESHOLD",
    "in_transit_stuck_days": "EXCEPTION_IN_TRANSIT_STUCK_DAYS",
    "rewards_anomaly_threshold": "EXCEPTION_REWARDS_ANOMALY_THRESHOLD",
    "performance_divergence_threshold": "EXCEPTION_PERFORMANCE_DIVERGENCE_THRESHOLD",
}


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return None


def network_benchmark_apy() -> float:
    value = _env_float("NETWORK_BENCHMARK_APY")
    return NETWORK_BENCHMARK_APY if value is None else value


def exception_config_from_env() -> ExceptionConfig:
    overrides = {field: _env_float(env) for field, env in EXCEPTION_THRESHOLD_ENV.items()}
    return DEFAULT_EXCEPTION_CONFIG.merged(overrides)
