from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.domain.time import as_utc
from backend.app.domain.types import PortfolioSummary, RewardEvent, ValidatorWithContext
from backend.app.models import Custodian, DailySnapshot, Operator, StakeEvent, Validator
from backend.app.portfolio.rollup import (
    NETWORK_BENCHMARK_APY,
    TRAILING_WINDOW_DAYS,
    annotate_custodian_changes,
    build_portfolio_summary,
    calculate_trailing_yield,
)
from backend.app.portfolio.serialize import serialize_portfolio_summary

logger = logging.getLogger(__name__)

# current 30d window + previous 30d window
REWARD_LOOKBACK_DAYS = 60

APR_HISTORY_WINDOW_DAYS = 7
MAX_APR_HISTORY_DAYS = 180
MAX_LISTED_VALIDATORS = 100


def _now() -> datetime:
    return datetime.now(timezone.utc)


def parse_amount(raw: Optional[str], *, field: str = "amount") -> int:
    """Decimal-string amount -> int. Malformed values count as 0."""
    if raw is None or raw == "":
        return 0
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning("Unparseable %s %r treated as 0", field, raw)
        return 0


def load_validators(db: Session, *, custodian_id: Optional[str] = None) -> List[ValidatorWithContext]:
    stmt = (
        select(Validator, Operator, Custodian)
        .join(Operator, Operator.id == Validator.operator_id)
        .join(Custodian, Custodian.id == Operator.custodian_id)
    )
    if custodian_id is not None:
        stmt = stmt.where(Custodian.id == custodian_id)
    rows = db.execute(stmt.order_by(Validator.id.asc())).all()
    return [
        ValidatorWithContext(
            id=validator.id,
            pubkey=validator.pubkey,
            operator_id=operator.id,
            operator_name=operator.name,
            custodian_id=custodian.id,
            custodian_name=custodian.name,
            status=validator.status,
            stake_state=validator.stake_state,
            balance=parse_amount(validator.balance, field="balance"),
            effective_balance=parse_amount(validator.effective_balance, field="effective_balance"),
        )
        for validator, operator, custodian in rows
    ]


def load_reward_events(db: Session, *, since: Optional[datetime] = None) -> List[RewardEvent]:
    stmt = select(StakeEvent).where(StakeEvent.event_type == "reward")
    if since is not None:
        stmt = stmt.where(StakeEvent.timestamp >= since)
    stmt = stmt.order_by(StakeEvent.timestamp.asc(), StakeEvent.id.asc())
    return [
        RewardEvent(
            validator_id=row.validator_id,
            amount=parse_amount(row.amount),
            timestamp=as_utc(row.timestamp),
        )
        for row in db.execute(stmt).scalars().all()
    ]


def snapshot_on_or_before(db: Session, day: date) -> Optional[DailySnapshot]:
    return (
        db.execute(
            select(DailySnapshot)
            .where(DailySnapshot.date <= day.isoformat())
            .order_by(DailySnapshot.date.desc())
            .limit(1)
        )
        .scalars()
        .first()
    )


def _custodian_values(snapshot: Optional[DailySnapshot]) -> Dict[str, int]:
    if snapshot is None:
        return {}
    return {
        custodian_id: parse_amount(value, field="custodian_value")
        for custodian_id, value in (snapshot.custodian_values or {}).items()
    }


def compute_portfolio_summary(
    db: Session,
    *,
    now: datetime,
    network_benchmark_apy: float = NETWORK_BENCHMARK_APY,
) -> PortfolioSummary:
    validators = load_validators(db)
    rewards = load_reward_events(db, since=now - timedelta(days=REWARD_LOOKBACK_DAYS))
    summary = build_portfolio_summary(
        validators,
        rewards,
        now=now,
        network_benchmark_apy=network_benchmark_apy,
    )

    today = now.date()
    prior_7d = _custodian_values(snapshot_on_or_before(db, today - timedelta(days=7)))
    prior_30d = _custodian_values(snapshot_on_or_before(db, today - timedelta(days=30)))
    if prior_7d or prior_30d:
        summary = replace(
            summary,
            custodian_breakdown=annotate_custodian_changes(summary.custodian_breakdown, prior_7d, prior_30d),
        )

    logger.info(
        "Portfolio summary computed: validators=%d custodians=%d rewards=%d",
        summary.validator_count,
        len(summary.custodian_breakdown),
        len(rewards),
    )
    return summary


def get_portfolio_summary(
    db: Session,
    *,
    now: Optional[datetime] = None,
    network_benchmark_apy: float = NETWORK_BENCHMARK_APY,
) -> dict:
    now = now or _now()
    summary = compute_portfolio_summary(db, now=now, network_benchmark_apy=network_benchmark_apy)

    previous = snapshot_on_or_before(db, now.date() - timedelta(days=1))
    change_24h = None
    if previous is not None:
        change_24h = summary.total_value - parse_amount(previous.total_value, field="total_value")
    return serialize_portfolio_summary(summary, change_24h)


def record_daily_snapshot(
    db: Session,
    *,
    now: Optional[datetime] = None,
    network_benchmark_apy: float = NETWORK_BENCHMARK_APY,
) -> DailySnapshot:
    """Write (or overwrite) the snapshot row for `now`'s date."""
    now = now or _now()
    summary = compute_portfolio_summary(db, now=now, network_benchmark_apy=network_benchmark_apy)
    day = now.date().isoformat()

    snapshot = db.execute(select(DailySnapshot).where(DailySnapshot.date == day)).scalars().first()
    if snapshot is None:
        snapshot = DailySnapshot(date=day)
        db.add(snapshot)

    buckets = summary.state_buckets
    snapshot.total_value = str(summary.total_value)
    snapshot.active_stake = str(buckets.active)
    snapshot.in_transit_stake = str(buckets.in_transit)
    snapshot.rewards_accrued = str(buckets.rewards)
    snapshot.exiting_stake = str(buckets.exiting)
    snapshot.validator_count = summary.validator_count
    snapshot.trailing_apy_30d = summary.trailing_apy_30d
    snapshot.custodian_values = {c.custodian_id: str(c.value) for c in summary.custodian_breakdown}
    snapshot.created_at = now

    db.commit()
    db.refresh(snapshot)
    logger.info("Daily snapshot recorded for %s: total_value=%s", day, snapshot.total_value)
    return snapshot


def serialize_snapshot(snapshot: DailySnapshot) -> dict:
    return {
        "id": snapshot.id,
        "date": snapshot.date,
        "total_value": snapshot.total_value,
        "active_stake": snapshot.active_stake,
        "in_transit_stake": snapshot.in_transit_stake,
        "rewards_accrued": snapshot.rewards_accrued,
        "exiting_stake": snapshot.exiting_stake,
        "validator_count": snapshot.validator_count,
        "trailing_apy_30d": snapshot.trailing_apy_30d,
        "custodian_values": dict(snapshot.custodian_values or {}),
    }


# -------------------------
# Drill-downs
# -------------------------

def get_custodian_detail(db: Session, custodian_id: str, *, now: Optional[datetime] = None) -> dict:
    now = as_utc(now or _now())
    custodian = db.get(Custodian, custodian_id)
    if not custodian:
        raise HTTPException(status_code=404, detail="custodian not found")

    operators = (
        db.execute(select(Operator).where(Operator.custodian_id == custodian_id).order_by(Operator.id.asc()))
        .scalars()
        .all()
    )
    validators = load_validators(db, custodian_id=custodian_id)
    validator_ids = {v.id for v in validators}
    total_value = sum(v.balance for v in validators)

    window_start = now - timedelta(days=TRAILING_WINDOW_DAYS)
    rewards = [e for e in load_reward_events(db, since=window_start) if e.validator_id in validator_ids]
    per_operator = Counter(v.operator_id for v in validators)

    return {
        "id": custodian.id,
        "name": custodian.name,
        "description": custodian.description,
        "total_value": str(total_value),
        "validator_count": len(validators),
        "trailing_apy_30d": calculate_trailing_yield(rewards, total_value, window_start, now),
        "operators": [
            {
                "id": op.id,
                "name": op.name,
                "description": op.description,
                "validator_count": per_operator.get(op.id, 0),
            }
            for op in operators
        ],
        "validators": [
            {
                "id": v.id,
                "pubkey": v.pubkey,
                "status": v.status,
                "stake_state": v.stake_state,
                "balance": str(v.balance),
            }
            for v in validators[:MAX_LISTED_VALIDATORS]
        ],
        "created_at": as_utc(custodian.created_at).isoformat(),
        "updated_at": as_utc(custodian.updated_at).isoformat(),
        "as_of_timestamp": now.isoformat(),
    }


def _day_end(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, 23, 59, 59, 999999, tzinfo=timezone.utc)


def get_apr_history(db: Session, *, days: int = 90, now: Optional[datetime] = None) -> dict:
    """
    Rolling APR per custodian for each of the last `days` UTC days.

    Each point is the trailing yield over the APR_HISTORY_WINDOW_DAYS that end
    at the close of that day (at `now` for today), against the custodian's
    current balance. Values are rounded to 4 decimals; `days` is capped at
    MAX_APR_HISTORY_DAYS.
    """
    now = as_utc(now or _now())
    days = min(max(days, 1), MAX_APR_HISTORY_DAYS)
    window = timedelta(days=APR_HISTORY_WINDOW_DAYS)
    today = now.date()

    names: Dict[str, str] = {}
    principals: Dict[str, int] = defaultdict(int)
    owner: Dict[str, str] = {}
    for validator in load_validators(db):
        names[validator.custodian_id] = validator.custodian_name
        principals[validator.custodian_id] += validator.balance
        owner[validator.id] = validator.custodian_id

    first_window_start = _day_end(today - timedelta(days=days - 1)) - window
    rewards_by_custodian: Dict[str, List[RewardEvent]] = defaultdict(list)
    for event in load_reward_events(db, since=first_window_start):
        custodian_id = owner.get(event.validator_id)
        if custodian_id is not None:
            rewards_by_custodian[custodian_id].append(event)

    custodian_ids = sorted(names)
    series = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        window_end = min(_day_end(day), now)
        window_start = window_end - window
        series.append(
            {
                "date": day.isoformat(),
                "apr": {
                    custodian_id: round(
                        calculate_trailing_yield(
                            rewards_by_custodian[custodian_id],
                            principals[custodian_id],
                            window_start,
                            window_end,
                        ),
                        4,
                    )
                    for custodian_id in custodian_ids
                },
            }
        )

    return {
        "series": series,
        "custodians": [{"id": custodian_id, "name": names[custodian_id]} for custodian_id in custodian_ids],
        "window_days": APR_HISTORY_WINDOW_DAYS,
    }
