from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Literal, Optional, Tuple

StakeState = Literal[
    "active",
    "pending_activation",
    "in_transit",
    "exiting",
    "exited",
]
STAKE_STATES: Tuple[str, ...] = (
    "active",
    "pending_activation",
    "in_transit",
    "exiting",
    "exited",
)

ValidatorStatus = Literal["active", "pending", "slashed", "exited"]

StakeEventType = Literal[
    "deposit",
    "activation",
    "reward",
    "penalty",
    "exit_initiated",
    "exit_completed",
    "withdrawal",
]

ExceptionType = Literal[
    "portfolio_value_change",
    "validator_count_change",
    "in_transit_stuck",
    "rewards_anomaly",
    "performance_divergence",
]
EXCEPTION_TYPES: Tuple[str, ...] = (
    "portfolio_value_change",
    "validator_count_change",
    "in_transit_stuck",
    "rewards_anomaly",
    "performance_divergence",
)

ExceptionStatus = Literal["new", "investigating", "resolved"]
EXCEPTION_STATUSES: Tuple[str, ...] = ("new", "investigating", "resolved")

Severity = Literal["low", "medium", "high", "critical"]
SEVERITY_LEVELS: Tuple[str, ...] = ("low", "medium", "high", "critical")

EvidenceType = Literal["validator", "custodian", "event", "external"]


# -------------------------
# Rollup inputs / outputs
# -------------------------

@dataclass(frozen=True)
class ValidatorWithContext:
    id: str
    pubkey: str
    operator_id: str
    operator_name: str
    custodian_id: Optional[str]
    custodian_name: str
    status: str
    stake_state: str
    balance: int
    effective_balance: int


@dataclass(frozen=True)
class RewardEvent:
    validator_id: str
    amount: int
    timestamp: datetime


@dataclass(frozen=True)
class StateBuckets:
    active: int = 0
    in_transit: int = 0
    rewards: int = 0
    exiting: int = 0


@dataclass(frozen=True)
class CustodianAllocation:
    custodian_id: str
    custodian_name: str
    value: int
    percentage: float
    trailing_apy_30d: float
    validator_count: int
    change_7d: Optional[float] = None
    change_30d: Optional[float] = None


@dataclass(frozen=True)
class PortfolioRollup:
    total_value: int
    trailing_apy_30d: float
    validator_count: int


@dataclass(frozen=True)
class PortfolioSummary:
    total_value: int
    trailing_apy_30d: float
    previous_month_apy: float
    network_benchmark_apy: float
    validator_count: int
    state_buckets: StateBuckets
    custodian_breakdown: List[CustodianAllocation]
    as_of_timestamp: datetime


@dataclass(frozen=True)
class ValidatorPerformance:
    validator_id: str
    pubkey: str
    operator_name: str
    custodian_name: str
    status: str
    stake_state: str
    balance: int
    effective_balance: int
    trailing_apy_30d: float
    rewards_total: int
    penalties: int
    last_activity_timestamp: Optional[datetime]


# -------------------------
# Exceptions
# -------------------------

@dataclass(frozen=True)
class EvidenceLink:
    type: EvidenceType
    id: str
    label: str
    url: Optional[str] = None


@dataclass(frozen=True)
class ExceptionRecord:
    id: str
    type: ExceptionType
    status: ExceptionStatus
    title: str
    description: str
    severity: Severity
    evidence_links: List[EvidenceLink]
    detected_at: datetime
    created_at: datetime
    updated_at: datetime
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution: Optional[str] = None


@dataclass(frozen=True)
class PortfolioSnapshot:
    total_value: int
    timestamp: datetime
    validator_count: Optional[int] = None


@dataclass(frozen=True)
class ValidatorWithTransit:
    id: str
    stake_state: str
    transit_start_date: Optional[datetime] = None


@dataclass(frozen=True)
class RewardPoint:
    date: date
    amount: int


@dataclass(frozen=True)
class CustodianPerformance:
    custodian_id: str
    custodian_name: str
    trailing_apy_30d: float


@dataclass(frozen=True)
class DetectionState:
    previous_snapshot: PortfolioSnapshot
    current_snapshot: PortfolioSnapshot
    validators: List[ValidatorWithTransit] = field(default_factory=list)
    reward_history: List[RewardPoint] = field(default_factory=list)
    custodian_performance: List[CustodianPerformance] = field(default_factory=list)
