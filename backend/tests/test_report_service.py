import csv
import io
from datetime import timedelta

import pytest

from backend.app.portfolio.reconciliation import ExternalStatement
from backend.app.services import report_service


def _rows(text):
    return list(csv.reader(io.StringIO(text)))


def test_validator_schedule_for_period(seed_portfolio, now):
    statement = report_service.build_monthly_statement(
        seed_portfolio,
        period_start=now - timedelta(days=30),
        period_end=now,
        now=now,
    )
    schedule = {v.validator_id: v for v in statement.validator_schedule}

    assert schedule["val-a1"].rewards_total == 29 * 3_000_000
    assert schedule["val-b1"].rewards_total == 29 * 6_000_000
    assert schedule["val-b1"].penalties == 1_000
    assert schedule["val-b1"].last_activity_timestamp == now - timedelta(days=1)
    assert schedule["val-a2"].rewards_total == 0
    assert schedule["val-a2"].trailing_apy_30d == 0.0
    assert schedule["val-a2"].last_activity_timestamp is None
    assert schedule["val-a1"].trailing_apy_30d > 0

    assert statement.methodology_version == "1.0.0"
    assert [c.custodian_id for c in statement.custodian_breakdown] == ["custodian-a", "custodian-b"]


def test_short_period_limits_rewards_but_not_trailing_yield(seed_portfolio, now):
    statement = report_service.build_monthly_statement(
        seed_portfolio,
        period_start=now - timedelta(days=5, hours=1),
        period_end=now,
        now=now,
    )
    a1 = next(v for v in statement.validator_schedule if v.validator_id == "val-a1")

    assert a1.rewards_total == 5 * 3_000_000
    assert a1.trailing_apy_30d == pytest.approx(29 * 3_000_000 / 32_000_000_000 * 365 / 30)


def test_render_monthly_statement_csv(seed_portfolio, now):
    statement = report_service.build_monthly_statement(
        seed_portfolio,
        period_start=now - timedelta(days=30),
        period_end=now,
        now=now,
    )
    rows = _rows(report_service.render_monthly_statement_csv(statement))

    assert rows[0] == ["Monthly Statement Report"]
    assert rows[1] == ["Report ID", statement.report_id]
    assert ["Methodology Version", "1.0.0"] in rows
    assert ["Active", "96000000000", "75.00%"] in rows
    assert ["In Transit", "32000000000", "25.00%"] in rows

    custodian_a = next(r for r in rows if r and r[0] == "custodian-a")
    assert custodian_a[1:4] == ["Alpha Custody", "64000000000", "50.00%"]
    assert custodian_a[6:] == ["", ""]

    b1 = next(r for r in rows if r and r[0] == "val-b1")
    assert b1[2:4] == ["Beta Ops", "Beta Custody"]
    assert b1[9:11] == [str(29 * 6_000_000), "1000"]

    a2 = next(r for r in rows if r and r[0] == "val-a2")
    assert a2[-1] == ""

    assert ["Reconciliation Summary"] not in rows


def test_render_includes_reconciliation_block(seed_portfolio, now):
    reports = report_service.reconcile_statements(
        seed_portfolio,
        [ExternalStatement(source="custodian-a", total_value=63_000_000_000, report_date=now)],
        now=now,
    )
    statement = report_service.build_monthly_statement(
        seed_portfolio,
        period_start=now - timedelta(days=30),
        period_end=now,
        now=now,
        reconciliation=reports["custodian-a"],
    )
    rows = _rows(report_service.render_monthly_statement_csv(statement))

    assert ["Reconciliation Summary"] in rows
    assert ["Variance (gwei)", "1000000000"] in rows
    assert ["Variance Percentage", "1.5625%"] in rows
    assert ["Status", "requires_investigation"] in rows


def test_reconcile_statements_by_custodian(seed_portfolio, now):
    reports = report_service.reconcile_statements(
        seed_portfolio,
        [
            ExternalStatement(source="custodian-b", total_value=64_000_000_000, report_date=now),
            ExternalStatement(source="custodian-z", total_value=5, report_date=now),
        ],
        now=now,
    )

    assert reports["custodian-b"].status == "reconciled"
    assert reports["custodian-z"].variance_categories[0].category == "missing_internal_data"
    assert reports["custodian-z"].internal_as_of_date == now
