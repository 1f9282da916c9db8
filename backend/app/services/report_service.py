from __future__ import annotations

import csv
import io
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.domain.time import as_utc
from backend.app.domain.types import (
    CustodianAllocation,
    PortfolioSummary,
    RewardEvent,
    ValidatorPerformance,
    ValidatorWithContext,
)
from backend.app.models import StakeEvent
from backend.app.portfolio.reconciliation import (
    ExternalStatement,
    InternalTotal,
    ReconciliationReport,
    ValidatorBalance,
    reconcile_all_custodians,
)
from backend.app.portfolio.rollup import (
    NETWORK_BENCHMARK_APY,
    TRAILING_WINDOW_DAYS,
    calculate_trailing_yield,
)
from backend.app.services import portfolio_service

logger = logging.getLogger(__name__)

METHODOLOGY_VERSION = "1.0.0"


@dataclass(frozen=True)
class MonthlyStatement:
    report_id: str
    period_start: datetime
    period_end: datetime
    methodology_version: str
    generated_at: datetime
    summary: PortfolioSummary
    validator_schedule: List[ValidatorPerformance]
    custodian_breakdown: List[CustodianAllocation]
    reconciliation: Optional[ReconciliationReport] = None


def _share(value: int, total: int) -> str:
    return f"{value / (total if total > 0 else 1) * 100:.2f}%"


def _ratio_pct(value: Optional[float]) -> str:
    return "" if value is None else f"{value * 100:.2f}%"


# -------------------------
# Validator schedule
# -------------------------

def build_validator_schedule(
    validators: Iterable[ValidatorWithContext],
    events: Sequence[StakeEvent],
    *,
    period_start: datetime,
    period_end: datetime,
) -> List[ValidatorPerformance]:
    """
    Per-validator line items for a statement period.

    rewards_total / penalties: reward and penalty amounts inside the period.
    trailing_apy_30d: reward yield over the 30 days ending at period_end,
    against the validator's own balance.
    last_activity_timestamp: latest event of any type up to period_end.
    """
    start = as_utc(period_start)
    end = as_utc(period_end)
    window_start = end - timedelta(days=TRAILING_WINDOW_DAYS)

    by_validator: Dict[str, List[StakeEvent]] = {}
    for event in events:
        by_validator.setdefault(event.validator_id, []).append(event)

    schedule: List[ValidatorPerformance] = []
    for validator in validators:
        rows = [e for e in by_validator.get(validator.id, []) if as_utc(e.timestamp) <= end]
        in_period = [e for e in rows if as_utc(e.timestamp) >= start]

        rewards = [
            RewardEvent(
                validator_id=e.validator_id,
                amount=portfolio_service.parse_amount(e.amount),
                timestamp=as_utc(e.timestamp),
            )
            for e in rows
            if e.event_type == "reward"
        ]
        rewards_total = sum(
            portfolio_service.parse_amount(e.amount) for e in in_period if e.event_type == "reward"
        )
        penalties = sum(
            abs(portfolio_service.parse_amount(e.amount)) for e in in_period if e.event_type == "penalty"
        )
        last_activity = max((as_utc(e.timestamp) for e in rows), default=None)

        schedule.append(
            ValidatorPerformance(
                validator_id=validator.id,
                pubkey=validator.pubkey,
                operator_name=validator.operator_name,
                custodian_name=validator.custodian_name,
                status=validator.status,
                stake_state=validator.stake_state,
                balance=validator.balance,
                effective_balance=validator.effective_balance,
                trailing_apy_30d=calculate_trailing_yield(rewards, validator.balance, window_start, end),
                rewards_total=rewards_total,
                penalties=penalties,
                last_activity_timestamp=last_activity,
            )
        )

    return schedule


# -------------------------
# Statement
# -------------------------

def build_monthly_statement(
    db: Session,
    *,
    period_start: datetime,
    period_end: datetime,
    now: Optional[datetime] = None,
    network_benchmark_apy: float = NETWORK_BENCHMARK_APY,
    reconciliation: Optional[ReconciliationReport] = None,
) -> MonthlyStatement:
    now = now or datetime.now(timezone.utc)
    period_start = as_utc(period_start)
    period_end = as_utc(period_end)
    if period_end <= period_start:
        raise HTTPException(status_code=400, detail="period_end must be after period_start")

    summary = portfolio_service.compute_portfolio_summary(
        db,
        now=period_end,
        network_benchmark_apy=network_benchmark_apy,
    )
    validators = portfolio_service.load_validators(db)
    lookback = min(period_start, period_end - timedelta(days=TRAILING_WINDOW_DAYS))
    events = (
        db.execute(
            select(StakeEvent)
            .where(StakeEvent.timestamp >= lookback, StakeEvent.timestamp <= period_end)
            .order_by(StakeEvent.timestamp.asc(), StakeEvent.id.asc())
        )
        .scalars()
        .all()
    )
    schedule = build_validator_schedule(
        validators,
        events,
        period_start=period_start,
        period_end=period_end,
    )

    statement = MonthlyStatement(
        report_id=str(uuid.uuid4()),
        period_start=period_start,
        period_end=period_end,
        methodology_version=METHODOLOGY_VERSION,
        generated_at=now,
        summary=summary,
        validator_schedule=schedule,
        custodian_breakdown=list(summary.custodian_breakdown),
        reconciliation=reconciliation,
    )
    logger.info(
        "Monthly statement %s built for %s..%s: validators=%d",
        statement.report_id,
        period_start.date(),
        period_end.date(),
        len(schedule),
    )
    return statement


def render_monthly_statement_csv(statement: MonthlyStatement) -> str:
    """Statement as one CSV document: header, summary, custodians, validators, reconciliation."""
    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\n")
    summary = statement.summary
    buckets = summary.state_buckets

    writer.writerow(["Monthly Statement Report"])
    writer.writerow(["Report ID", statement.report_id])
    writer.writerow(["Period", f"{statement.period_start.isoformat()} to {statement.period_end.isoformat()}"])
    writer.writerow(["Methodology Version", statement.methodology_version])
    writer.writerow(["Generated At", statement.generated_at.isoformat()])
    writer.writerow([])

    writer.writerow(["Total Value", "Trailing APY", "Validator Count"])
    writer.writerow([summary.total_value, summary.trailing_apy_30d, summary.validator_count])
    writer.writerow(["As Of", summary.as_of_timestamp.isoformat()])
    writer.writerow([])

    writer.writerow(["State Buckets"])
    writer.writerow(["State", "Value (gwei)", "Percentage"])
    for label, value in (
        ("Active", buckets.active),
        ("In Transit", buckets.in_transit),
        ("Rewards", buckets.rewards),
        ("Exiting", buckets.exiting),
    ):
        writer.writerow([label, value, _share(value, summary.total_value)])
    writer.writerow([])

    writer.writerow(["Custodian Breakdown"])
    writer.writerow(
        ["Custodian ID", "Custodian", "Value (gwei)", "Percentage", "APY (30d)", "Validator Count", "7d Change", "30d Change"]
    )
    for c in statement.custodian_breakdown:
        writer.writerow(
            [
                c.custodian_id,
                c.custodian_name,
                c.value,
                _ratio_pct(c.percentage),
                _ratio_pct(c.trailing_apy_30d),
                c.validator_count,
                _ratio_pct(c.change_7d),
                _ratio_pct(c.change_30d),
            ]
        )
    writer.writerow([])

    writer.writerow(["Validator Schedule"])
    writer.writerow(
        [
            "Validator ID",
            "Pubkey",
            "Operator",
            "Custodian",
            "Status",
            "Stake State",
            "Balance (gwei)",
            "Effective Balance (gwei)",
            "Trailing APY (30d)",
            "Total Rewards (gwei)",
            "Penalties (gwei)",
            "Last Activity",
        ]
    )
    for v in statement.validator_schedule:
        writer.writerow(
            [
                v.validator_id,
                v.pubkey,
                v.operator_name,
                v.custodian_name,
                v.status,
                v.stake_state,
                v.balance,
                v.effective_balance,
                v.trailing_apy_30d,
                v.rewards_total,
                v.penalties,
                v.last_activity_timestamp.isoformat() if v.last_activity_timestamp else "",
            ]
        )

    recon = statement.reconciliation
    if recon is not None:
        writer.writerow([])
        writer.writerow(["Reconciliation Summary"])
        writer.writerow(["Metric", "Value"])
        writer.writerow(["Source", recon.source])
        writer.writerow(["Internal Total (gwei)", recon.internal_total])
        writer.writerow(["External Total (gwei)", recon.external_total if recon.external_total is not None else "N/A"])
        writer.writerow(["Variance (gwei)", recon.variance])
        writer.writerow(["Variance Percentage", f"{recon.variance_percentage * 100:.4f}%"])
        writer.writerow(["Status", recon.status])

    return out.getvalue()


# -------------------------
# Reconciliation
# -------------------------

def internal_totals_by_custodian(
    validators: Iterable[ValidatorWithContext],
    *,
    as_of: datetime,
) -> Dict[str, InternalTotal]:
    grouped: Dict[str, List[ValidatorWithContext]] = {}
    for validator in validators:
        if not validator.custodian_id:
            continue
        grouped.setdefault(validator.custodian_id, []).append(validator)

    return {
        custodian_id: InternalTotal(
            total_value=sum(v.balance for v in group),
            validator_count=len(group),
            as_of_date=as_of,
            validator_breakdown=[ValidatorBalance(validator_id=v.id, balance=v.balance) for v in group],
        )
        for custodian_id, group in grouped.items()
    }


def reconcile_statements(
    db: Session,
    statements: Sequence[ExternalStatement],
    *,
    now: Optional[datetime] = None,
) -> Dict[str, ReconciliationReport]:
    """Compare each external statement (source = custodian id) to internal balances."""
    now = now or datetime.now(timezone.utc)
    internal = internal_totals_by_custodian(portfolio_service.load_validators(db), as_of=now)
    reports = reconcile_all_custodians(internal, statements, now=now)

    flagged = [source for source, report in reports.items() if report.status != "reconciled"]
    if flagged:
        logger.warning("Reconciliation variance for %d source(s): %s", len(flagged), ", ".join(sorted(flagged)))
    else:
        logger.info("Reconciled %d statement(s) with no material variance", len(reports))
    return reports
