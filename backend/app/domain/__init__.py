"""Domain types shared by the rollup, detection and reporting layers."""

from backend.app.domain.types import (  # noqa: F401
    CustodianAllocation,
    CustodianPerformance,
    DetectionState,
    EvidenceLink,
    ExceptionRecord,
    PortfolioRollup,
    PortfolioSnapshot,
    PortfolioSummary,
    RewardEvent,
    RewardPoint,
    StateBuckets,
    ValidatorPerformance,
    ValidatorWithContext,
    ValidatorWithTransit,
)
