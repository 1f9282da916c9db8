from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from backend.app.db import get_db
from backend.app.services import validator_service

router = APIRouter(prefix="/api/validators", tags=["validators"])


class EvidenceLinkOut(BaseModel):
    type: str
    id: str
    label: str
    url: Optional[str] = None


class ValidatorDetailOut(BaseModel):
    id: str
    pubkey: str
    operator_id: str
    operator_name: str
    custodian_id: str
    custodian_name: str
    withdrawal_credential: str
    status: str
    stake_state: str
    balance: str
    effective_balance: str
    activation_epoch: Optional[int] = None
    exit_epoch: Optional[int] = None
    trailing_apy_30d: float
    rewards_total: str
    penalties: str
    last_activity_timestamp: str
    created_at: str
    updated_at: str


class StakeEventOut(BaseModel):
    id: str
    event_type: str
    amount: str
    epoch: Optional[int] = None
    slot: Optional[int] = None
    block_number: Optional[int] = None
    tx_hash: Optional[str] = None
    timestamp: str
    finalized: bool
    created_at: str
    evidence_links: List[EvidenceLinkOut]


class StakeEventListOut(BaseModel):
    data: List[StakeEventOut]
    total: int
    page: int
    page_size: int
    has_more: bool


@router.get("/{validator_id}", response_model=ValidatorDetailOut)
def get_validator(validator_id: str, db: Session = Depends(get_db)):
    return validator_service.get_validator_detail(db, validator_id)


@router.get("/{validator_id}/events", response_model=StakeEventListOut)
def list_validator_events(
    validator_id: str,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return validator_service.list_validator_events(db, validator_id, page=page, page_size=page_size)
