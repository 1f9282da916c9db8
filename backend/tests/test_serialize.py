import json
from datetime import datetime, timedelta, timezone

from backend.app.detection import apply_transition, create_exception
from backend.app.domain.types import EvidenceLink, RewardEvent, ValidatorWithContext
from backend.app.portfolio.rollup import build_portfolio_summary
from backend.app.portfolio.serialize import serialize_exception, serialize_portfolio_summary


NOW = datetime(2025, 1, 31, tzinfo=timezone.utc)
HUGE = 2**70


def test_summary_big_integers_survive_json():
    validator = ValidatorWithContext(
        id="v1",
        pubkey="0xv1",
        operator_id="op",
        operator_name="Op",
        custodian_id="c-1",
        custodian_name="One",
        status="active",
        stake_state="active",
        balance=HUGE,
        effective_balance=HUGE,
    )
    summary = build_portfolio_summary(
        [validator],
        [RewardEvent(validator_id="v1", amount=HUGE // 1000, timestamp=NOW - timedelta(days=1))],
        now=NOW,
    )

    payload = json.loads(json.dumps(serialize_portfolio_summary(summary, change_24h=-5)))

    assert payload["total_value"] == str(HUGE)
    assert int(payload["total_value"]) == HUGE
    assert payload["change_24h"] == "-5"
    assert payload["state_buckets"]["rewards"] == str(HUGE // 1000)
    assert payload["custodian_breakdown"][0]["value"] == str(HUGE)
    assert isinstance(payload["trailing_apy_30d"], float)
    assert payload["as_of_timestamp"] == "2025-01-31T00:00:00+00:00"


def test_exception_serialization():
    exc = create_exception(
        type="in_transit_stuck",
        title="Validator abcdefgh... stuck in transit",
        description="stuck",
        severity="medium",
        now=NOW,
        evidence_links=[EvidenceLink(type="validator", id="abcdefghij", label="Validator abcdefgh...")],
    )
    payload = serialize_exception(exc)

    assert payload["evidence_links"] == [
        {"type": "validator", "id": "abcdefghij", "label": "Validator abcdefgh...", "url": None}
    ]
    assert payload["resolved_at"] is None
    assert payload["detected_at"] == NOW.isoformat()

    resolved = serialize_exception(apply_transition(exc, "resolved", now=NOW + timedelta(hours=1)))
    assert resolved["resolved_at"] == (NOW + timedelta(hours=1)).isoformat()
