from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import HTTPException
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backend.app.domain.time import as_utc
from backend.app.domain.types import EvidenceLink, RewardEvent
from backend.app.models import Custodian, Operator, StakeEvent, Validator
from backend.app.portfolio.rollup import TRAILING_WINDOW_DAYS, calculate_trailing_yield
from backend.app.services.portfolio_service import parse_amount

MAX_PAGE_SIZE = 100
ETHERSCAN_TX_URL = "https://etherscan.io/tx/{tx_hash}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _require_validator(db: Session, validator_id: str) -> Validator:
    row = db.get(Validator, validator_id)
    if not row:
        raise HTTPException(status_code=404, detail="validator not found")
    return row


def _event_evidence(event: StakeEvent) -> List[dict]:
    if not event.tx_hash:
        return []
    link = EvidenceLink(
        type="external",
        id=event.tx_hash,
        label="View on Etherscan",
        url=ETHERSCAN_TX_URL.format(tx_hash=event.tx_hash),
    )
    return [asdict(link)]


def serialize_event(event: StakeEvent) -> dict:
    return {
        "id": event.id,
        "event_type": event.event_type,
        "amount": event.amount,
        "epoch": event.epoch,
        "slot": event.slot,
        "block_number": event.block_number,
        "tx_hash": event.tx_hash,
        "timestamp": as_utc(event.timestamp).isoformat(),
        "finalized": event.finalized,
        "created_at": as_utc(event.created_at).isoformat(),
        "evidence_links": _event_evidence(event),
    }


def get_validator_detail(db: Session, validator_id: str, *, now: Optional[datetime] = None) -> dict:
    """
    Validator with its operator / custodian context and reward figures.

    rewards_total and penalties cover the validator's whole history;
    trailing_apy_30d is the reward yield over the 30 days ending at `now`
    against the validator's own balance.
    """
    now = as_utc(now or _now())
    row = db.execute(
        select(Validator, Operator, Custodian)
        .join(Operator, Operator.id == Validator.operator_id)
        .join(Custodian, Custodian.id == Operator.custodian_id)
        .where(Validator.id == validator_id)
    ).first()
    if row is None:
        raise HTTPException(status_code=404, detail="validator not found")
    validator, operator, custodian = row

    events = db.execute(
        select(StakeEvent.event_type, StakeEvent.amount, StakeEvent.timestamp).where(
            StakeEvent.validator_id == validator_id
        )
    ).all()

    rewards = [
        RewardEvent(validator_id=validator_id, amount=parse_amount(amount), timestamp=as_utc(timestamp))
        for event_type, amount, timestamp in events
        if event_type == "reward"
    ]
    penalties = sum(abs(parse_amount(amount)) for event_type, amount, _ in events if event_type == "penalty")
    last_activity = max((as_utc(timestamp) for _, _, timestamp in events), default=as_utc(validator.updated_at))

    balance = parse_amount(validator.balance, field="balance")
    window_start = now - timedelta(days=TRAILING_WINDOW_DAYS)

    return {
        "id": validator.id,
        "pubkey": validator.pubkey,
        "operator_id": operator.id,
        "operator_name": operator.name,
        "custodian_id": custodian.id,
        "custodian_name": custodian.name,
        "withdrawal_credential": validator.withdrawal_credential,
        "status": validator.status,
        "stake_state": validator.stake_state,
        "balance": str(balance),
        "effective_balance": str(parse_amount(validator.effective_balance, field="effective_balance")),
        "activation_epoch": validator.activation_epoch,
        "exit_epoch": validator.exit_epoch,
        "trailing_apy_30d": calculate_trailing_yield(rewards, balance, window_start, now),
        "rewards_total": str(sum(e.amount for e in rewards)),
        "penalties": str(penalties),
        "last_activity_timestamp": last_activity.isoformat(),
        "created_at": as_utc(validator.created_at).isoformat(),
        "updated_at": as_utc(validator.updated_at).isoformat(),
    }


def list_validator_events(
    db: Session,
    validator_id: str,
    *,
    page: int = 1,
    page_size: int = 50,
) -> dict:
    _require_validator(db, validator_id)
    page = max(page, 1)
    page_size = min(max(page_size, 1), MAX_PAGE_SIZE)

    total = int(
        db.execute(
            select(func.count()).select_from(StakeEvent).where(StakeEvent.validator_id == validator_id)
        ).scalar_one()
        or 0
    )
    rows = (
        db.execute(
            select(StakeEvent)
            .where(StakeEvent.validator_id == validator_id)
            .order_by(StakeEvent.timestamp.desc(), StakeEvent.id.asc())
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        .scalars()
        .all()
    )
    data = [serialize_event(row) for row in rows]
    return {
        "data": data,
        "total": total,
        "page": page,
        "page_size": page_size,
        "has_more": (page - 1) * page_size + len(data) < total,
    }
