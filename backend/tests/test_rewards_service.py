from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from backend.app.models import StakeEvent
from backend.app.services import rewards_service


def test_list_rewards_with_summary(seed_portfolio, now):
    listing = rewards_service.list_rewards(seed_portfolio, page_size=4, now=now)

    assert listing["total"] == 58
    assert len(listing["data"]) == 4
    assert listing["has_more"] is True
    assert {r["validator_id"] for r in listing["data"][:2]} == {"val-a1", "val-b1"}
    assert listing["data"][0]["timestamp"] == (now - timedelta(days=1)).isoformat()
    assert listing["summary"] == {
        "total_7d": str(7 * 9_000_000),
        "total_30d": str(29 * 9_000_000),
        "total_all_time": str(29 * 9_000_000),
        "event_count": 58,
    }


def test_list_rewards_filters(seed_portfolio, now):
    by_custodian = rewards_service.list_rewards(seed_portfolio, custodian_id="custodian-b", page_size=100, now=now)
    assert by_custodian["total"] == 29
    assert {r["custodian_name"] for r in by_custodian["data"]} == {"Beta Custody"}
    assert by_custodian["summary"]["total_all_time"] == str(29 * 6_000_000)

    ranged = rewards_service.list_rewards(
        seed_portfolio,
        validator_id="val-a1",
        start=now - timedelta(days=3, hours=1),
        end=now,
        now=now,
    )
    assert ranged["total"] == 3
    assert {r["amount"] for r in ranged["data"]} == {"3000000"}


def test_list_rewards_rejects_inverted_range(seed_portfolio, now):
    with pytest.raises(HTTPException) as exc:
        rewards_service.list_rewards(seed_portfolio, start=now, end=now - timedelta(days=1), now=now)
    assert exc.value.status_code == 400


def test_rewards_pulse_splits_claimable_and_accrued(seed_portfolio, now):
    for event in seed_portfolio.query(StakeEvent).filter(StakeEvent.validator_id == "val-b1").all():
        event.finalized = True
    seed_portfolio.commit()

    pulse = rewards_service.get_rewards_pulse(seed_portfolio, now=now)

    month_start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    this_month = sum(1 for day in range(1, 30) if now - timedelta(days=day) >= month_start)

    assert pulse["claimable_now"] == str(29 * 6_000_000)
    assert pulse["accrued"] == str(29 * 3_000_000)
    assert pulse["claimable_24h_change"] == "6000000"
    assert pulse["claimed_this_month"] == str(this_month * 6_000_000)
    assert pulse["custodian_breakdown"] == [
        {"custodian_id": "custodian-b", "custodian_name": "Beta Custody", "amount": str(29 * 6_000_000)}
    ]
    assert pulse["as_of_timestamp"] == now.isoformat()


def test_rewards_pulse_empty_store(sqlite_session, now):
    pulse = rewards_service.get_rewards_pulse(sqlite_session, now=now)
    assert pulse["claimable_now"] == "0"
    assert pulse["custodian_breakdown"] == []
