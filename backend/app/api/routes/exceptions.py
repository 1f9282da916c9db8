from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.app.api.config import exception_config_from_env, network_benchmark_apy
from backend.app.db import get_db
from backend.app.services import exception_service

router = APIRouter(prefix="/api/exceptions", tags=["exceptions"])


class EvidenceLinkOut(BaseModel):
    type: str
    id: str
    label: str
    url: Optional[str] = None


class ExceptionOut(BaseModel):
    id: str
    type: str
    status: str
    title: str
    description: str
    severity: str
    evidence_links: List[EvidenceLinkOut]
    detected_at: str
    resolved_at: Optional[str] = None
    resolved_by: Optional[str] = None
    resolution: Optional[str] = None
    created_at: str
    updated_at: str


class ExceptionListOut(BaseModel):
    data: List[ExceptionOut]
    total: int
    page: int
    page_size: int
    has_more: bool


class ExceptionUpdateIn(BaseModel):
    status: Optional[str] = None
    resolution: Optional[str] = Field(default=None, max_length=4000)
    resolved_by: Optional[str] = Field(default=None, max_length=120)


@router.get("", response_model=ExceptionListOut)
def list_exceptions(
    status: Optional[str] = Query(default=None),
    severity: Optional[str] = Query(default=None),
    type: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return exception_service.list_exceptions(
        db,
        status=status,
        severity=severity,
        type=type,
        page=page,
        page_size=page_size,
    )


@router.post("/run", response_model=List[ExceptionOut])
def trigger_exception_detection(db: Session = Depends(get_db)):
    return exception_service.run_detection(
        db,
        config=exception_config_from_env(),
        network_benchmark_apy=network_benchmark_apy(),
    )


@router.get("/{exception_id}", response_model=ExceptionOut)
def get_exception(exception_id: str, db: Session = Depends(get_db)):
    return exception_service.get_exception(db, exception_id)


@router.patch("/{exception_id}", response_model=ExceptionOut)
def patch_exception(exception_id: str, req: ExceptionUpdateIn, db: Session = Depends(get_db)):
    return exception_service.update_exception(
        db,
        exception_id,
        status=req.status,
        resolution=req.resolution,
        resolved_by=req.resolved_by,
    )
