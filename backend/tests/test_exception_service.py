from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from backend.app.detection import ExceptionConfig
from backend.app.models import Custodian, DailySnapshot, ExceptionItem, Operator, StakeEvent, Validator
from backend.app.services import exception_service


def test_run_detection_persists_store_exceptions(seed_portfolio, now):
    created = exception_service.run_detection(seed_portfolio, now=now)

    by_type = {e["type"]: e for e in created}
    assert sorted(by_type) == ["in_transit_stuck", "performance_divergence"]

    stuck = by_type["in_transit_stuck"]
    assert stuck["severity"] == "medium"
    assert stuck["evidence_links"][0]["id"] == "val-a2"
    assert stuck["description"] == "Validator has been in 'in_transit' state for 10 days (threshold: 7 days)"

    divergence = by_type["performance_divergence"]
    assert divergence["evidence_links"][0]["id"] == "custodian-a"
    assert divergence["title"].startswith("Alpha Custody underperforming by")

    rows = seed_portfolio.query(ExceptionItem).all()
    assert len(rows) == 2
    assert {r.fingerprint for r in rows} == {
        "in_transit_stuck|validator:val-a2",
        "performance_divergence|custodian:custodian-a",
    }


def test_repeated_runs_do_not_duplicate_open_exceptions(seed_portfolio, now):
    first = exception_service.run_detection(seed_portfolio, now=now)
    second = exception_service.run_detection(seed_portfolio, now=now + timedelta(minutes=1))

    assert len(first) == 2
    assert second == []
    assert seed_portfolio.query(ExceptionItem).count() == 2


def test_resolved_exception_can_be_detected_again(seed_portfolio, now):
    created = exception_service.run_detection(seed_portfolio, now=now)
    stuck = next(e for e in created if e["type"] == "in_transit_stuck")
    exception_service.update_exception(seed_portfolio, stuck["id"], status="resolved", now=now)

    rerun = exception_service.run_detection(seed_portfolio, now=now + timedelta(hours=1))
    assert [e["type"] for e in rerun] == ["in_transit_stuck"]


def test_run_detection_uses_config_thresholds(seed_portfolio, now):
    config = ExceptionConfig(in_transit_stuck_days=30, performance_divergence_threshold=0.5)
    assert exception_service.run_detection(seed_portfolio, config=config, now=now) == []


def test_run_detection_compares_against_previous_snapshot(seed_portfolio, now):
    seed_portfolio.add(
        DailySnapshot(
            date=(now.date() - timedelta(days=1)).isoformat(),
            total_value="100000000000",
            active_stake="0",
            in_transit_stake="0",
            rewards_accrued="0",
            exiting_stake="0",
            validator_count=3,
            custodian_values={},
        )
    )
    seed_portfolio.commit()

    created = exception_service.run_detection(
        seed_portfolio,
        config=ExceptionConfig(in_transit_stuck_days=30, performance_divergence_threshold=0.5),
        now=now,
    )
    assert [e["type"] for e in created] == ["portfolio_value_change"]
    assert created[0]["severity"] == "critical"
    assert created[0]["title"] == "Portfolio value increased 28.00%"


def test_list_exceptions_filters_and_paginates(seed_portfolio, now):
    exception_service.run_detection(seed_portfolio, now=now)

    everything = exception_service.list_exceptions(seed_portfolio)
    assert everything["total"] == 2
    assert everything["has_more"] is False

    page = exception_service.list_exceptions(seed_portfolio, page=1, page_size=1)
    assert len(page["data"]) == 1
    assert page["has_more"] is True

    only_stuck = exception_service.list_exceptions(seed_portfolio, type="in_transit_stuck")
    assert [e["type"] for e in only_stuck["data"]] == ["in_transit_stuck"]

    assert exception_service.list_exceptions(seed_portfolio, status="resolved")["total"] == 0

    capped = exception_service.list_exceptions(seed_portfolio, page_size=500)
    assert capped["page_size"] == 100


def test_list_exceptions_rejects_unknown_filters(sqlite_session):
    with pytest.raises(HTTPException) as excinfo:
        exception_service.list_exceptions(sqlite_session, severity="urgent")
    assert excinfo.value.status_code == 400


def test_update_exception_lifecycle(seed_portfolio, now):
    created = exception_service.run_detection(seed_portfolio, now=now)
    exception_id = created[0]["id"]
    later = now + timedelta(hours=2)

    investigating = exception_service.update_exception(seed_portfolio, exception_id, status="investigating", now=later)
    assert investigating["status"] == "investigating"
    assert investigating["resolved_at"] is None

    resolved = exception_service.update_exception(
        seed_portfolio,
        exception_id,
        status="resolved",
        resolution="operator confirmed queue delay",
        resolved_by="ops@fund",
        now=later,
    )
    assert resolved["status"] == "resolved"
    assert resolved["resolved_at"] == later.isoformat()
    assert resolved["resolved_by"] == "ops@fund"

    with pytest.raises(HTTPException) as excinfo:
        exception_service.update_exception(seed_portfolio, exception_id, status="new", now=later)
    assert excinfo.value.status_code == 400
    assert excinfo.value.detail == "invalid status transition resolved->new"


def test_update_exception_note_only_keeps_status(seed_portfolio, now):
    created = exception_service.run_detection(seed_portfolio, now=now)
    updated = exception_service.update_exception(
        seed_portfolio,
        created[0]["id"],
        resolution="looking into it",
        now=now + timedelta(minutes=1),
    )
    assert updated["status"] == "new"
    assert updated["resolution"] == "looking into it"


def test_missing_exception_is_404(sqlite_session):
    with pytest.raises(HTTPException) as excinfo:
        exception_service.get_exception(sqlite_session, "does-not-exist")
    assert excinfo.value.status_code == 404


MIDDAY = datetime(2025, 3, 31, 12, 0, tzinfo=timezone.utc)


def _seed_hourly_rewards(db, *, days=20, skip=lambda ts: False):
    db.add(Custodian(id="custodian-h", name="Hourly Custody"))
    db.flush()
    db.add(Operator(id="op-h", name="Hourly Ops", custodian_id="custodian-h"))
    db.flush()
    db.add(
        Validator(
            id="val-h1",
            pubkey="0x" + "h1" * 48,
            operator_id="op-h",
            status="active",
            stake_state="active",
            balance="32000000000",
            effective_balance="32000000000",
        )
    )
    db.flush()
    for hour in range(1, days * 24 + 1):
        ts = MIDDAY - timedelta(hours=hour)
        if not skip(ts):
            db.add(StakeEvent(validator_id="val-h1", event_type="reward", amount="1000", timestamp=ts))
    db.commit()


def _types(created):
    return [e["type"] for e in created]


def test_reward_history_covers_complete_days_only(sqlite_session):
    _seed_hourly_rewards(sqlite_session)

    history = exception_service.reward_history(sqlite_session, now=MIDDAY)

    assert len(history) == exception_service.REWARD_HISTORY_DAYS
    assert history[0].date == MIDDAY.date() - timedelta(days=14)
    assert history[-1].date == MIDDAY.date() - timedelta(days=1)
    assert {p.amount for p in history} == {24_000}


def test_steady_intraday_rewards_raise_no_rewards_anomaly(sqlite_session):
    _seed_hourly_rewards(sqlite_session)

    created = exception_service.run_detection(sqlite_session, now=MIDDAY)

    assert "rewards_anomaly" not in _types(created)


@pytest.mark.parametrize(
    "skip, pct, severity",
    [
        (lambda ts: ts.date() == MIDDAY.date() - timedelta(days=1) and ts.hour >= 12, "50.00", "medium"),
        (lambda ts: ts.date() == MIDDAY.date() - timedelta(days=1), "100.00", "high"),
    ],
)
def test_drop_in_last_complete_day_raises_rewards_anomaly(sqlite_session, skip, pct, severity):
    _seed_hourly_rewards(sqlite_session, skip=skip)

    created = exception_service.run_detection(sqlite_session, now=MIDDAY)

    anomalies = [e for e in created if e["type"] == "rewards_anomaly"]
    assert len(anomalies) == 1
    assert anomalies[0]["title"] == f"Rewards drop detected ({pct}% deviation)"
    assert anomalies[0]["severity"] == severity
