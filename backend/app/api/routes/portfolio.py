from __future__ import annotations

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from backend.app.api.config import network_benchmark_apy
from backend.app.db import get_db
from backend.app.services import portfolio_service

router = APIRouter(prefix="/api/portfolio", tags=["portfolio"])


class StateBucketsOut(BaseModel):
    active: str
    in_transit: str
    rewards: str
    exiting: str


class CustodianAllocationOut(BaseModel):
    custodian_id: str
    custodian_name: str
    value: str
    percentage: float
    trailing_apy_30d: float
    validator_count: int
    change_7d: Optional[float] = None
    change_30d: Optional[float] = None


class PortfolioSummaryOut(BaseModel):
    total_value: str
    change_24h: str
    trailing_apy_30d: float
    previous_month_apy: float
    network_benchmark_apy: float
    validator_count: int
    state_buckets: StateBucketsOut
    custodian_breakdown: List[CustodianAllocationOut]
    as_of_timestamp: str


class DailySnapshotOut(BaseModel):
    id: str
    date: str
    total_value: str
    active_stake: str
    in_transit_stake: str
    rewards_accrued: str
    exiting_stake: str
    validator_count: int
    trailing_apy_30d: Optional[float]
    custodian_values: Dict[str, str]


@router.get("", response_model=PortfolioSummaryOut)
def get_portfolio(db: Session = Depends(get_db)):
    return portfolio_service.get_portfolio_summary(db, network_benchmark_apy=network_benchmark_apy())


@router.post("/snapshots", response_model=DailySnapshotOut)
def post_daily_snapshot(db: Session = Depends(get_db)):
    snapshot = portfolio_service.record_daily_snapshot(db, network_benchmark_apy=network_benchmark_apy())
    return portfolio_service.serialize_snapshot(snapshot)


class AprPointOut(BaseModel):
    date: str
    apr: Dict[str, float]


class CustodianRefOut(BaseModel):
    id: str
    name: str


class AprHistoryOut(BaseModel):
    series: List[AprPointOut]
    custodians: List[CustodianRefOut]
    window_days: int


@router.get("/apr-history", response_model=AprHistoryOut)
def get_apr_history(days: int = Query(default=90, ge=1), db: Session = Depends(get_db)):
    return portfolio_service.get_apr_history(db, days=days)
