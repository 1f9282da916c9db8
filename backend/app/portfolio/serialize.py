from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, Optional

from backend.app.domain.types import CustodianAllocation, ExceptionRecord, PortfolioSummary

from .reconciliation import ReconciliationReport

# Big integers travel as decimal strings; JSON numbers would lose precision.


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_custodian_allocation(allocation: CustodianAllocation) -> Dict[str, Any]:
    return {
        "custodian_id": allocation.custodian_id,
        "custodian_name": allocation.custodian_name,
        "value": str(allocation.value),
        "percentage": allocation.percentage,
        "trailing_apy_30d": allocation.trailing_apy_30d,
        "validator_count": allocation.validator_count,
        "change_7d": allocation.change_7d,
        "change_30d": allocation.change_30d,
    }


def serialize_portfolio_summary(summary: PortfolioSummary, change_24h: Optional[int] = None) -> Dict[str, Any]:
    buckets = summary.state_buckets
    return {
        "total_value": str(summary.total_value),
        "change_24h": str(change_24h if change_24h is not None else 0),
        "trailing_apy_30d": summary.trailing_apy_30d,
        "previous_month_apy": summary.previous_month_apy,
        "network_benchmark_apy": summary.network_benchmark_apy,
        "validator_count": summary.validator_count,
        "state_buckets": {
            "active": str(buckets.active),
            "in_transit": str(buckets.in_transit),
            "rewards": str(buckets.rewards),
            "exiting": str(buckets.exiting),
        },
        "custodian_breakdown": [serialize_custodian_allocation(c) for c in summary.custodian_breakdown],
        "as_of_timestamp": summary.as_of_timestamp.isoformat(),
    }


def serialize_exception(exception: ExceptionRecord) -> Dict[str, Any]:
    return {
        "id": exception.id,
        "type": exception.type,
        "status": exception.status,
        "title": exception.title,
        "description": exception.description,
        "severity": exception.severity,
        "evidence_links": [asdict(link) for link in exception.evidence_links],
        "detected_at": exception.detected_at.isoformat(),
        "resolved_at": _iso(exception.resolved_at),
        "resolved_by": exception.resolved_by,
        "resolution": exception.resolution,
        "created_at": exception.created_at.isoformat(),
        "updated_at": exception.updated_at.isoformat(),
    }


def serialize_reconciliation_report(report: ReconciliationReport) -> Dict[str, Any]:
    return {
        "internal_total": str(report.internal_total),
        "external_total": str(report.external_total) if report.external_total is not None else None,
        "variance": str(report.variance),
        "variance_percentage": report.variance_percentage,
        "status": report.status,
        "source": report.source,
        "report_date": report.report_date.isoformat(),
        "internal_as_of_date": report.internal_as_of_date.isoformat(),
        "variance_categories": [
            {
                "category": c.category,
                "amount": str(c.amount),
                "explanation": c.explanation,
                "evidence_links": [asdict(link) for link in c.evidence_links],
            }
            for c in report.variance_categories
        ],
    }
