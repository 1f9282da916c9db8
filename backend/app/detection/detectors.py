from __future__ import annotations

import math
import uuid
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from backend.app.domain.time import as_utc
from backend.app.domain.types import (
    CustodianPerformance,
    DetectionState,
    EvidenceLink,
    ExceptionRecord,
    ExceptionType,
    PortfolioSnapshot,
    RewardPoint,
    Severity,
    ValidatorWithTransit,
)

from .config import DEFAULT_EXCEPTION_CONFIG, ExceptionConfig

TRANSIT_STATES = frozenset({"in_transit", "pending_activation"})
MIN_REWARD_HISTORY = 3
SECONDS_PER_DAY = 24 * 60 * 60


def _pct(ratio: float) -> str:
    return f"{ratio * 100:.2f}"


def _short_id(value: str) -> str:
    return f"{value[:8]}..."


def create_exception(
    *,
    type: ExceptionType,
    title: str,
    description: str,
    severity: Severity,
    now: datetime,
    evidence_links: Optional[Sequence[EvidenceLink]] = None,
) -> ExceptionRecord:
    return ExceptionRecord(
        id=str(uuid.uuid4()),
        type=type,
        status="new",
        title=title,
        description=description,
        severity=severity,
        evidence_links=list(evidence_links or []),
        detected_at=now,
        created_at=now,
        updated_at=now,
    )


def detect_portfolio_value_change(
    previous: PortfolioSnapshot,
    current: PortfolioSnapshot,
    config: ExceptionConfig = DEFAULT_EXCEPTION_CONFIG,
    *,
    now: datetime,
) -> Optional[ExceptionRecord]:
    """
    Material move in total portfolio value.

    Formula:
      change_pct = |current - previous| / previous
      severity   = critical > 20%, high > 10%, else medium
    """
    if previous.total_value == 0:
        return None

    change = current.total_value - previous.total_value
    change_pct = abs(change) / previous.total_value
    if change_pct <= config.portfolio_value_change_threshold:
        return None

    direction = "increased" if change > 0 else "decreased"
    if change_pct > 0.2:
        severity: Severity = "critical"
    elif change_pct > 0.1:
        severity = "high"
    else:
        severity = "medium"

    pct = _pct(change_pct)
    return create_exception(
        type="portfolio_value_change",
        title=f"Portfolio value {direction} {pct}%",
        description=(
            f"Portfolio value changed from {previous.total_value} to {current.total_value} "
            f"({direction} {pct}%) between {previous.timestamp.isoformat()} "
            f"and {current.timestamp.isoformat()}"
        ),
        severity=severity,
        now=now,
    )


def detect_validator_count_change(
    previous_count: int,
    current_count: int,
    config: ExceptionConfig = DEFAULT_EXCEPTION_CONFIG,
    *,
    now: datetime,
) -> Optional[ExceptionRecord]:
    if previous_count == 0:
        return None

    change = current_count - previous_count
    change_pct = abs(change) / previous_count
    if change_pct <= config.validator_count_change_threshold:
        return None

    direction = "increased" if change > 0 else "decreased"
    return create_exception(
        type="validator_count_change",
        title=f"Validator count {direction} {_pct(change_pct)}%",
        description=(
            f"Validator count changed from {previous_count} to {current_count} "
            f"({direction} by {abs(change)} validators)"
        ),
        severity="high" if change_pct > 0.2 else "medium",
        now=now,
    )


def detect_in_transit_stuck(
    validators: Iterable[ValidatorWithTransit],
    config: ExceptionConfig = DEFAULT_EXCEPTION_CONFIG,
    *,
    now: datetime,
    as_of: Optional[datetime] = None,
) -> List[ExceptionRecord]:
    """
    One exception per validator sitting in a transit state past the threshold.

    Transit age is measured at `as_of` (defaults to `now`).
    """
    reference = as_of or now
    threshold_days = config.in_transit_stuck_days
    threshold_seconds = threshold_days * SECONDS_PER_DAY
    exceptions: List[ExceptionRecord] = []

    for validator in validators:
        if validator.stake_state not in TRANSIT_STATES or validator.transit_start_date is None:
            continue

        elapsed = (as_utc(reference) - as_utc(validator.transit_start_date)).total_seconds()
        if elapsed <= threshold_seconds:
            continue

        days_stuck = math.floor(elapsed / SECONDS_PER_DAY)
        label = f"Validator {_short_id(validator.id)}"
        exceptions.append(
            create_exception(
                type="in_transit_stuck",
                title=f"{label} stuck in transit",
                description=(
                    f"Validator has been in '{validator.stake_state}' state for {days_stuck} days "
                    f"(threshold: {threshold_days:g} days)"
                ),
                severity="high" if days_stuck > threshold_days * 2 else "medium",
                now=now,
                evidence_links=[EvidenceLink(type="validator", id=validator.id, label=label)],
            )
        )

    return exceptions


def detect_rewards_anomaly(
    reward_history: Iterable[RewardPoint],
    config: ExceptionConfig = DEFAULT_EXCEPTION_CONFIG,
    *,
    now: datetime,
) -> Optional[ExceptionRecord]:
    """
    Latest reward point vs. the mean of every earlier point.

    Formula:
      deviation = |latest - mean(history[:-1])| / mean(history[:-1])
    """
    points = sorted(reward_history, key=lambda p: p.date)
    if len(points) < MIN_REWARD_HISTORY:
        return None

    historical = points[:-1]
    latest = points[-1]
    historical_avg = sum(p.amount for p in historical) / len(historical)
    if historical_avg == 0:
        return None

    deviation = abs(latest.amount - historical_avg) / historical_avg
    threshold = config.rewards_anomaly_threshold
    if deviation <= threshold:
        return None

    direction = "spike" if latest.amount > historical_avg else "drop"
    pct = _pct(deviation)
    return create_exception(
        type="rewards_anomaly",
        title=f"Rewards {direction} detected ({pct}% deviation)",
        description=(
            f"Latest reward of {latest.amount} deviates {pct}% "
            f"from historical average of {historical_avg:.0f}"
        ),
        severity="high" if deviation > threshold * 2 else "medium",
        now=now,
    )


def detect_performance_divergence(
    custodian_performance: Sequence[CustodianPerformance],
    config: ExceptionConfig = DEFAULT_EXCEPTION_CONFIG,
    *,
    now: datetime,
) -> List[ExceptionRecord]:
    """Flag custodians whose yield trails the unweighted custodian average."""
    if len(custodian_performance) < 2:
        return []

    avg_apy = sum(c.trailing_apy_30d for c in custodian_performance) / len(custodian_performance)
    if avg_apy == 0:
        return []

    threshold = config.performance_divergence_threshold
    exceptions: List[ExceptionRecord] = []
    for custodian in custodian_performance:
        # positive deviation = below average
        deviation = (avg_apy - custodian.trailing_apy_30d) / avg_apy
        if deviation <= threshold:
            continue

        pct = _pct(deviation)
        exceptions.append(
            create_exception(
                type="performance_divergence",
                title=f"{custodian.custodian_name} underperforming by {pct}%",
                description=(
                    f"{custodian.custodian_name} trailing APY of {_pct(custodian.trailing_apy_30d)}% "
                    f"is {pct}% below portfolio average of {_pct(avg_apy)}%"
                ),
                severity="high" if deviation > threshold * 2 else "medium",
                now=now,
                evidence_links=[
                    EvidenceLink(
                        type="custodian",
                        id=custodian.custodian_id,
                        label=custodian.custodian_name,
                    )
                ],
            )
        )

    return exceptions


def run_exception_detection(
    state: DetectionState,
    config: Optional[ExceptionConfig] = None,
    *,
    now: datetime,
) -> List[ExceptionRecord]:
    cfg = config or DEFAULT_EXCEPTION_CONFIG
    exceptions: List[ExceptionRecord] = []

    value_change = detect_portfolio_value_change(
        state.previous_snapshot,
        state.current_snapshot,
        cfg,
        now=now,
    )
    if value_change:
        exceptions.append(value_change)

    previous_count = state.previous_snapshot.validator_count
    current_count = state.current_snapshot.validator_count
    if previous_count is not None and current_count is not None:
        count_change = detect_validator_count_change(previous_count, current_count, cfg, now=now)
        if count_change:
            exceptions.append(count_change)

    exceptions.extend(
        detect_in_transit_stuck(
            state.validators,
            cfg,
            now=now,
            as_of=state.current_snapshot.timestamp,
        )
    )

    anomaly = detect_rewards_anomaly(state.reward_history, cfg, now=now)
    if anomaly:
        exceptions.append(anomaly)

    exceptions.extend(detect_performance_divergence(state.custodian_performance, cfg, now=now))
    return exceptions
