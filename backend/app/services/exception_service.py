from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import asdict, replace
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backend.app.detection import (
    ExceptionConfig,
    InvalidTransition,
    apply_transition,
    run_exception_detection,
)
from backend.app.detection.lifecycle import OPEN_STATUSES
from backend.app.domain.time import as_utc
from backend.app.domain.types import (
    EXCEPTION_STATUSES,
    EXCEPTION_TYPES,
    SEVERITY_LEVELS,
    CustodianPerformance,
    DetectionState,
    EvidenceLink,
    ExceptionRecord,
    PortfolioSnapshot,
    PortfolioSummary,
    RewardPoint,
    ValidatorWithTransit,
)
from backend.app.models import ExceptionItem, StakeEvent, Validator
from backend.app.portfolio.rollup import NETWORK_BENCHMARK_APY
from backend.app.portfolio.serialize import serialize_exception
from backend.app.services import portfolio_service

logger = logging.getLogger(__name__)

REWARD_HISTORY_DAYS = 14
MAX_PAGE_SIZE = 100


def _now() -> datetime:
    return datetime.now(timezone.utc)


# -------------------------
# Row <-> record
# -------------------------

def _row_to_record(row: ExceptionItem) -> ExceptionRecord:
    return ExceptionRecord(
        id=row.id,
        type=row.type,
        status=row.status,
        title=row.title,
        description=row.description,
        severity=row.severity,
        evidence_links=[EvidenceLink(**link) for link in (row.evidence_links or [])],
        detected_at=as_utc(row.detected_at),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
        resolved_at=as_utc(row.resolved_at),
        resolved_by=row.resolved_by,
        resolution=row.resolution,
    )


def fingerprint(exception: ExceptionRecord) -> str:
    ids = sorted(f"{link.type}:{link.id}" for link in exception.evidence_links)
    return "|".join([exception.type, *ids])


def _record_to_row(exception: ExceptionRecord) -> ExceptionItem:
    return ExceptionItem(
        id=exception.id,
        type=exception.type,
        status=exception.status,
        title=exception.title,
        description=exception.description,
        severity=exception.severity,
        evidence_links=[asdict(link) for link in exception.evidence_links],
        fingerprint=fingerprint(exception),
        detected_at=exception.detected_at,
        created_at=exception.created_at,
        updated_at=exception.updated_at,
    )


def _require_exception(db: Session, exception_id: str) -> ExceptionItem:
    row = db.get(ExceptionItem, exception_id)
    if not row:
        raise HTTPException(status_code=404, detail="exception not found")
    return row


# -------------------------
# Detection
# -------------------------

def _day_start(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def reward_history(db: Session, *, now: datetime) -> List[RewardPoint]:
    """
    Daily reward totals for the last REWARD_HISTORY_DAYS complete UTC days.

    Today is still accruing and is left out. Days without rewards count as 0
    once the first reward day has been seen, so an outage shows up as a drop.
    """
    end_day = as_utc(now).date()
    start_day = end_day - timedelta(days=REWARD_HISTORY_DAYS)
    rows = db.execute(
        select(StakeEvent.timestamp, StakeEvent.amount).where(
            StakeEvent.event_type == "reward",
            StakeEvent.timestamp >= _day_start(start_day),
            StakeEvent.timestamp < _day_start(end_day),
        )
    ).all()

    by_day: Dict[date, int] = defaultdict(int)
    for timestamp, amount in rows:
        by_day[as_utc(timestamp).date()] += portfolio_service.parse_amount(amount)
    if not by_day:
        return []

    day = min(by_day)
    points: List[RewardPoint] = []
    while day < end_day:
        points.append(RewardPoint(date=day, amount=by_day.get(day, 0)))
        day += timedelta(days=1)
    return points


def _transit_validators(db: Session) -> List[ValidatorWithTransit]:
    rows = db.execute(
        select(Validator).where(Validator.stake_state.in_(("in_transit", "pending_activation")))
    ).scalars().all()
    return [
        ValidatorWithTransit(
            id=row.id,
            stake_state=row.stake_state,
            transit_start_date=as_utc(row.stake_state_since),
        )
        for row in rows
    ]


def build_detection_state(
    db: Session,
    summary: PortfolioSummary,
    *,
    now: datetime,
) -> DetectionState:
    current = PortfolioSnapshot(
        total_value=summary.total_value,
        validator_count=summary.validator_count,
        timestamp=now,
    )

    previous_row = portfolio_service.snapshot_on_or_before(db, now.date() - timedelta(days=1))
    if previous_row is None:
        # no baseline yet: a zero previous value disables the change detectors
        previous = PortfolioSnapshot(total_value=0, validator_count=None, timestamp=now)
    else:
        previous = PortfolioSnapshot(
            total_value=portfolio_service.parse_amount(previous_row.total_value, field="total_value"),
            validator_count=previous_row.validator_count,
            timestamp=datetime.fromisoformat(previous_row.date).replace(tzinfo=timezone.utc),
        )

    return DetectionState(
        previous_snapshot=previous,
        current_snapshot=current,
        validators=_transit_validators(db),
        reward_history=reward_history(db, now=now),
        custodian_performance=[
            CustodianPerformance(
                custodian_id=c.custodian_id,
                custodian_name=c.custodian_name,
                trailing_apy_30d=c.trailing_apy_30d,
            )
            for c in summary.custodian_breakdown
        ],
    )


def run_detection(
    db: Session,
    *,
    config: Optional[ExceptionConfig] = None,
    now: Optional[datetime] = None,
    network_benchmark_apy: float = NETWORK_BENCHMARK_APY,
) -> List[dict]:
    """
    Run every detector over the store and persist what is new.

    A detection whose fingerprint matches an open (new / investigating)
    exception is skipped so repeated runs do not flood the queue.
    """
    now = now or _now()
    summary = portfolio_service.compute_portfolio_summary(
        db,
        now=now,
        network_benchmark_apy=network_benchmark_apy,
    )
    state = build_detection_state(db, summary, now=now)
    detected = run_exception_detection(state, config, now=now)

    open_fingerprints = set(
        db.execute(
            select(ExceptionItem.fingerprint).where(ExceptionItem.status.in_(tuple(OPEN_STATUSES)))
        ).scalars().all()
    )

    created: List[ExceptionRecord] = []
    for exception in detected:
        key = fingerprint(exception)
        if key in open_fingerprints:
            continue
        open_fingerprints.add(key)
        db.add(_record_to_row(exception))
        created.append(exception)

    db.commit()
    logger.info(
        "Exception detection run: detected=%d persisted=%d skipped_open=%d",
        len(detected),
        len(created),
        len(detected) - len(created),
    )
    return [serialize_exception(e) for e in created]


# -------------------------
# Queue
# -------------------------

def list_exceptions(
    db: Session,
    *,
    status: Optional[str] = None,
    severity: Optional[str] = None,
    type: Optional[str] = None,
    page: int = 1,
    page_size: int = 50,
) -> dict:
    if status and status not in EXCEPTION_STATUSES:
        raise HTTPException(status_code=400, detail="invalid status")
    if severity and severity not in SEVERITY_LEVELS:
        raise HTTPException(status_code=400, detail="invalid severity")
    if type and type not in EXCEPTION_TYPES:
        raise HTTPException(status_code=400, detail="invalid type")

    page = max(page, 1)
    page_size = min(max(page_size, 1), MAX_PAGE_SIZE)

    filters = []
    if status:
        filters.append(ExceptionItem.status == status)
    if severity:
        filters.append(ExceptionItem.severity == severity)
    if type:
        filters.append(ExceptionItem.type == type)

    total = int(db.execute(select(func.count()).select_from(ExceptionItem).where(*filters)).scalar_one() or 0)
    rows = (
        db.execute(
            select(ExceptionItem)
            .where(*filters)
            .order_by(ExceptionItem.detected_at.desc(), ExceptionItem.id.asc())
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        .scalars()
        .all()
    )
    data = [serialize_exception(_row_to_record(row)) for row in rows]
    return {
        "data": data,
        "total": total,
        "page": page,
        "page_size": page_size,
        "has_more": (page - 1) * page_size + len(data) < total,
    }


def get_exception(db: Session, exception_id: str) -> dict:
    return serialize_exception(_row_to_record(_require_exception(db, exception_id)))


def update_exception(
    db: Session,
    exception_id: str,
    *,
    status: Optional[str] = None,
    resolution: Optional[str] = None,
    resolved_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    now = now or _now()
    row = _require_exception(db, exception_id)
    current = _row_to_record(row)

    if status:
        try:
            updated = apply_transition(
                current,
                status,
                now=now,
                resolution=resolution,
                resolved_by=resolved_by,
            )
        except InvalidTransition as exc:
            logger.warning("Rejected exception %s transition %s->%s", exception_id, exc.current, exc.target)
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    else:
        updated = replace(
            current,
            resolution=resolution if resolution is not None else current.resolution,
            resolved_by=resolved_by if resolved_by is not None else current.resolved_by,
            updated_at=now,
        )

    row.status = updated.status
    row.resolution = updated.resolution
    row.resolved_by = updated.resolved_by
    row.resolved_at = updated.resolved_at
    row.updated_at = updated.updated_at
    db.commit()
    db.refresh(row)
    return serialize_exception(_row_to_record(row))
