from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

from fastapi import HTTPException
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backend.app.domain.time import as_utc
from backend.app.models import Custodian, Operator, StakeEvent, Validator
from backend.app.services.portfolio_service import parse_amount

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _with_context(stmt):
    return (
        stmt.join(Validator, Validator.id == StakeEvent.validator_id)
        .join(Operator, Operator.id == Validator.operator_id)
        .join(Custodian, Custodian.id == Operator.custodian_id)
    )


def list_rewards(
    db: Session,
    *,
    validator_id: Optional[str] = None,
    custodian_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = 1,
    page_size: int = 20,
    now: Optional[datetime] = None,
) -> dict:
    """
    Paginated reward events, newest first, with validator context.

    The summary (7d / 30d / all-time totals) honours the validator and
    custodian filters but not the start / end range.
    """
    now = as_utc(now or _now())
    if start and end and as_utc(end) < as_utc(start):
        raise HTTPException(status_code=400, detail="end must not be before start")
    page = max(page, 1)
    page_size = min(max(page_size, 1), MAX_PAGE_SIZE)

    scope = [StakeEvent.event_type == "reward"]
    if validator_id:
        scope.append(StakeEvent.validator_id == validator_id)
    if custodian_id:
        scope.append(Custodian.id == custodian_id)
    filters = list(scope)
    if start:
        filters.append(StakeEvent.timestamp >= start)
    if end:
        filters.append(StakeEvent.timestamp <= end)

    count_stmt = _with_context(select(func.count()).select_from(StakeEvent)).where(*filters)
    total = int(db.execute(count_stmt).scalar_one() or 0)
    rows = db.execute(
        _with_context(select(StakeEvent, Validator.pubkey, Operator.name, Custodian.id, Custodian.name))
        .where(*filters)
        .order_by(StakeEvent.timestamp.desc(), StakeEvent.id.asc())
        .limit(page_size)
        .offset((page - 1) * page_size)
    ).all()
    data = [
        {
            "id": event.id,
            "validator_id": event.validator_id,
            "validator_pubkey": pubkey,
            "operator_name": operator_name,
            "custodian_id": cid,
            "custodian_name": custodian_name,
            "amount": event.amount,
            "epoch": event.epoch,
            "timestamp": as_utc(event.timestamp).isoformat(),
            "tx_hash": event.tx_hash,
            "finalized": event.finalized,
        }
        for event, pubkey, operator_name, cid, custodian_name in rows
    ]

    amounts = db.execute(_with_context(select(StakeEvent.amount, StakeEvent.timestamp)).where(*scope)).all()
    since_7d = now - timedelta(days=7)
    since_30d = now - timedelta(days=30)
    total_7d = total_30d = total_all = 0
    for amount, timestamp in amounts:
        value = parse_amount(amount)
        ts = as_utc(timestamp)
        total_all += value
        if since_30d <= ts <= now:
            total_30d += value
        if since_7d <= ts <= now:
            total_7d += value

    return {
        "data": data,
        "total": total,
        "page": page,
        "page_size": page_size,
        "has_more": (page - 1) * page_size + len(data) < total,
        "summary": {
            "total_7d": str(total_7d),
            "total_30d": str(total_30d),
            "total_all_time": str(total_all),
            "event_count": len(amounts),
        },
    }


def get_rewards_pulse(db: Session, *, now: Optional[datetime] = None) -> dict:
    """
    Claimable vs. accrued rewards as of `now`.

    Finalized rewards are claimable, unfinalized ones are accrued.
    claimable_24h_change is finalized rewards in the last 24 hours;
    claimed_this_month is finalized rewards since the first of the UTC month.
    """
    now = as_utc(now or _now())
    since_24h = now - timedelta(hours=24)
    month_start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)

    rows = db.execute(
        _with_context(
            select(StakeEvent.amount, StakeEvent.timestamp, StakeEvent.finalized, Custodian.id, Custodian.name)
        ).where(StakeEvent.event_type == "reward", StakeEvent.timestamp <= now)
    ).all()

    claimable = accrued = change_24h = this_month = 0
    by_custodian: Dict[Tuple[str, str], int] = defaultdict(int)
    for amount, timestamp, finalized, custodian_id, custodian_name in rows:
        value = parse_amount(amount)
        if not finalized:
            accrued += value
            continue
        ts = as_utc(timestamp)
        claimable += value
        by_custodian[(custodian_id, custodian_name)] += value
        if ts >= since_24h:
            change_24h += value
        if ts >= month_start:
            this_month += value

    breakdown = sorted(by_custodian.items(), key=lambda item: (-item[1], item[0][0]))
    logger.info("Rewards pulse: claimable=%d accrued=%d events=%d", claimable, accrued, len(rows))
    return {
        "claimable_now": str(claimable),
        "claimable_24h_change": str(change_24h),
        "accrued": str(accrued),
        "claimed_this_month": str(this_month),
        "custodian_breakdown": [
            {"custodian_id": custodian_id, "custodian_name": name, "amount": str(value)}
            for (custodian_id, name), value in breakdown
        ],
        "as_of_timestamp": now.isoformat(),
    }
