from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from backend.app.db import get_db
from backend.app.services import rewards_service

router = APIRouter(prefix="/api/rewards", tags=["rewards"])


class RewardOut(BaseModel):
    id: str
    validator_id: str
    validator_pubkey: str
    operator_name: str
    custodian_id: str
    custodian_name: str
    amount: str
    epoch: Optional[int] = None
    timestamp: str
    tx_hash: Optional[str] = None
    finalized: bool


class RewardTotalsOut(BaseModel):
    total_7d: str
    total_30d: str
    total_all_time: str
    event_count: int


class RewardListOut(BaseModel):
    data: List[RewardOut]
    total: int
    page: int
    page_size: int
    has_more: bool
    summary: RewardTotalsOut


class CustodianRewardsOut(BaseModel):
    custodian_id: str
    custodian_name: str
    amount: str


class RewardsPulseOut(BaseModel):
    claimable_now: str
    claimable_24h_change: str
    accrued: str
    claimed_this_month: str
    custodian_breakdown: List[CustodianRewardsOut]
    as_of_timestamp: str


@router.get("", response_model=RewardListOut)
def list_rewards(
    validator_id: Optional[str] = Query(default=None),
    custodian_id: Optional[str] = Query(default=None),
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return rewards_service.list_rewards(
        db,
        validator_id=validator_id,
        custodian_id=custodian_id,
        start=start,
        end=end,
        page=page,
        page_size=page_size,
    )


@router.get("/pulse", response_model=RewardsPulseOut)
def get_rewards_pulse(db: Session = Depends(get_db)):
    return rewards_service.get_rewards_pulse(db)
