from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.app.api.config import network_benchmark_apy
from backend.app.db import get_db
from backend.app.portfolio.reconciliation import ExternalStatement, total_unexplained_variance
from backend.app.portfolio.serialize import serialize_reconciliation_report
from backend.app.services import report_service

router = APIRouter(prefix="/api", tags=["reports"])


class ExternalStatementIn(BaseModel):
    source: str = Field(..., min_length=1)
    total_value: str = Field(..., pattern=r"^\d+$")
    report_date: datetime
    reference: Optional[str] = None


class ReconciliationIn(BaseModel):
    statements: List[ExternalStatementIn] = Field(..., min_length=1)


class VarianceCategoryOut(BaseModel):
    category: str
    amount: str
    explanation: str
    evidence_links: List[dict]


class ReconciliationReportOut(BaseModel):
    internal_total: str
    external_total: Optional[str]
    variance: str
    variance_percentage: float
    status: str
    source: str
    report_date: str
    internal_as_of_date: str
    variance_categories: List[VarianceCategoryOut]


class ReconciliationOut(BaseModel):
    reports: Dict[str, ReconciliationReportOut]
    total_unexplained_variance: str


@router.get("/reports/monthly.csv")
def get_monthly_statement_csv(
    period_start: Optional[datetime] = Query(default=None),
    period_end: Optional[datetime] = Query(default=None),
    db: Session = Depends(get_db),
):
    now = datetime.now(timezone.utc)
    end = period_end or now
    start = period_start or end - timedelta(days=30)

    statement = report_service.build_monthly_statement(
        db,
        period_start=start,
        period_end=end,
        now=now,
        network_benchmark_apy=network_benchmark_apy(),
    )
    filename = f"statement-{statement.period_end.date().isoformat()}.csv"
    return Response(
        content=report_service.render_monthly_statement_csv(statement),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.post("/reconciliation", response_model=ReconciliationOut)
def post_reconciliation(req: ReconciliationIn, db: Session = Depends(get_db)):
    sources = [s.source for s in req.statements]
    if len(set(sources)) != len(sources):
        raise HTTPException(status_code=400, detail="duplicate statement source")

    statements = [
        ExternalStatement(
            source=s.source,
            total_value=int(s.total_value),
            report_date=s.report_date,
            reference=s.reference,
        )
        for s in req.statements
    ]
    reports = report_service.reconcile_statements(db, statements)
    return {
        "reports": {source: serialize_reconciliation_report(r) for source, r in reports.items()},
        "total_unexplained_variance": str(total_unexplained_variance(reports)),
    }
