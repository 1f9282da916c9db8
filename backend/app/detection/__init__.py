from .config import DEFAULT_EXCEPTION_CONFIG, ExceptionConfig
from .detectors import (
    create_exception,
    detect_in_transit_stuck,
    detect_performance_divergence,
    detect_portfolio_value_change,
    detect_rewards_anomaly,
    detect_validator_count_change,
    run_exception_detection,
)
from .lifecycle import (
    InvalidTransition,
    apply_transition,
    can_transition,
    filter_exceptions_by_status,
    get_open_exceptions,
)

__all__ = [
    "DEFAULT_EXCEPTION_CONFIG",
    "ExceptionConfig",
    "InvalidTransition",
    "apply_transition",
    "can_transition",
    "create_exception",
    "detect_in_transit_stuck",
    "detect_performance_divergence",
    "detect_portfolio_value_change",
    "detect_rewards_anomaly",
    "detect_validator_count_change",
    "filter_exceptions_by_status",
    "get_open_exceptions",
    "run_exception_detection",
]
