from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Literal, Mapping, Optional, Tuple

from backend.app.domain.types import EvidenceLink

ReconciliationStatus = Literal["reconciled", "variance_detected", "requires_investigation"]
VarianceDirection = Literal["internal_higher", "external_higher", "match"]

# 0.1% covers ordinary timing differences between systems.
ACCEPTABLE_VARIANCE_THRESHOLD = 0.001
INVESTIGATION_THRESHOLD = 0.01


@dataclass(frozen=True)
class ValidatorBalance:
    validator_id: str
    balance: int


@dataclass(frozen=True)
class InternalTotal:
    total_value: int
    validator_count: int
    as_of_date: datetime
    validator_breakdown: List[ValidatorBalance] = field(default_factory=list)


@dataclass(frozen=True)
class ExternalStatement:
    source: str
    total_value: int
    report_date: datetime
    reference: Optional[str] = None


@dataclass(frozen=True)
class Variance:
    amount: int
    percentage: float
    direction: VarianceDirection


@dataclass(frozen=True)
class VarianceCategory:
    category: str
    amount: int
    explanation: str
    evidence_links: List[EvidenceLink]


@dataclass(frozen=True)
class ReconciliationReport:
    internal_total: int
    external_total: Optional[int]
    variance: int
    variance_percentage: float
    variance_categories: List[VarianceCategory]
    status: ReconciliationStatus
    source: str
    report_date: datetime
    internal_as_of_date: datetime


VARIANCE_CATEGORIES: Tuple[Tuple[str, str], ...] = (
    ("timing_difference", "Transactions processed at different times between systems"),
    ("reward_accrual", "Difference in reward calculation timing or methodology"),
    ("fees_difference", "Variance due to fee calculation or deduction timing"),
    ("pending_transactions", "Transactions pending finalization"),
    ("unexplained", "Variance requiring further investigation"),
)


def _short_label(validator_id: str) -> str:
    return f"Validator {validator_id[:8]}..."


def detect_variance(internal: InternalTotal, external: ExternalStatement) -> Variance:
    diff = internal.total_value - external.total_value
    if diff == 0:
        return Variance(amount=0, percentage=0.0, direction="match")

    amount = abs(diff)
    percentage = amount / internal.total_value if internal.total_value > 0 else 1.0
    return Variance(
        amount=amount,
        percentage=percentage,
        direction="internal_higher" if diff > 0 else "external_higher",
    )


def categorize_variance(
    breakdown: Mapping[str, int],
    evidence: Optional[Mapping[str, Iterable[Tuple[str, str]]]] = None,
) -> List[VarianceCategory]:
    """
    One category per positive breakdown component.

    `evidence` maps a breakdown key to (validator_id, label) pairs.
    """
    evidence = evidence or {}
    categories: List[VarianceCategory] = []
    for category, explanation in VARIANCE_CATEGORIES:
        amount = breakdown.get(category)
        if amount is None or amount <= 0:
            continue
        links = [
            EvidenceLink(type="validator", id=validator_id, label=label)
            for validator_id, label in evidence.get(category, ())
        ]
        categories.append(
            VarianceCategory(
                category=category,
                amount=amount,
                explanation=explanation,
                evidence_links=links,
            )
        )
    return categories


def _status_for(variance: Variance) -> ReconciliationStatus:
    if variance.amount == 0 or variance.percentage <= ACCEPTABLE_VARIANCE_THRESHOLD:
        return "reconciled"
    if variance.percentage <= INVESTIGATION_THRESHOLD:
        return "variance_detected"
    return "requires_investigation"


def create_reconciliation_report(
    internal: InternalTotal,
    external: ExternalStatement,
    breakdown: Optional[Mapping[str, int]] = None,
    evidence: Optional[Mapping[str, Iterable[Tuple[str, str]]]] = None,
) -> ReconciliationReport:
    variance = detect_variance(internal, external)

    if breakdown is not None:
        categories = categorize_variance(breakdown, evidence)
    elif variance.amount > 0:
        categories = [
            VarianceCategory(
                category="unexplained",
                amount=variance.amount,
                explanation="Variance requires categorization",
                evidence_links=[
                    EvidenceLink(type="validator", id=row.validator_id, label=_short_label(row.validator_id))
                    for row in internal.validator_breakdown
                ],
            )
        ]
    else:
        categories = []

    return ReconciliationReport(
        internal_total=internal.total_value,
        external_total=external.total_value,
        variance=variance.amount,
        variance_percentage=variance.percentage,
        variance_categories=categories,
        status=_status_for(variance),
        source=external.source,
        report_date=external.report_date,
        internal_as_of_date=internal.as_of_date,
    )


def reconcile_all_custodians(
    internal_totals: Mapping[str, InternalTotal],
    external_statements: Iterable[ExternalStatement],
    *,
    now: datetime,
) -> Dict[str, ReconciliationReport]:
    reports: Dict[str, ReconciliationReport] = {}
    for external in external_statements:
        internal = internal_totals.get(external.source)
        if internal is None:
            reports[external.source] = ReconciliationReport(
                internal_total=0,
                external_total=external.total_value,
                variance=external.total_value,
                variance_percentage=1.0,
                variance_categories=[
                    VarianceCategory(
                        category="missing_internal_data",
                        amount=external.total_value,
                        explanation="No internal data found for this custodian",
                        evidence_links=[],
                    )
                ],
                status="requires_investigation",
                source=external.source,
                report_date=external.report_date,
                internal_as_of_date=now,
            )
            continue
        reports[external.source] = create_reconciliation_report(internal, external)
    return reports


def is_reconciled(report: ReconciliationReport) -> bool:
    return report.status == "reconciled"


def total_unexplained_variance(reports: Mapping[str, ReconciliationReport]) -> int:
    total = 0
    for report in reports.values():
        for category in report.variance_categories:
            if category.category == "unexplained":
                total += category.amount
                break
    return total
