from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class ExceptionConfig:
    """Detector thresholds. Ratios are fractions (0.05 = 5%)."""

    portfolio_value_change_threshold: float = 0.05
    validator_count_change_threshold: float = 0.10
    in_transit_stuck_days: float = 7
    rewards_anomaly_threshold: float = 0.30
    performance_divergence_threshold: float = 0.20

    def merged(self, overrides: Optional[Mapping[str, Any]] = None) -> "ExceptionConfig":
        """Copy with every non-None override applied; unknown keys are ignored."""
        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        changes = {k: v for k, v in overrides.items() if k in known and v is not None}
        return replace(self, **changes) if changes else self


DEFAULT_EXCEPTION_CONFIG = ExceptionConfig()
