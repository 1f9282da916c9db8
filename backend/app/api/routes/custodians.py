from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from backend.app.db import get_db
from backend.app.services import portfolio_service

router = APIRouter(prefix="/api/custodians", tags=["custodians"])


class OperatorSummaryOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    validator_count: int


class CustodianValidatorOut(BaseModel):
    id: str
    pubkey: str
    status: str
    stake_state: str
    balance: str


class CustodianDetailOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    total_value: str
    validator_count: int
    trailing_apy_30d: float
    operators: List[OperatorSummaryOut]
    validators: List[CustodianValidatorOut]
    created_at: str
    updated_at: str
    as_of_timestamp: str


@router.get("/{custodian_id}", response_model=CustodianDetailOut)
def get_custodian(custodian_id: str, db: Session = Depends(get_db)):
    return portfolio_service.get_custodian_detail(db, custodian_id)
