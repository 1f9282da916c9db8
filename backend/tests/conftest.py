import os
import pathlib
import sys
import tempfile
from datetime import datetime, timedelta, timezone

import pytest


REPO_ROOT = pathlib.Path(__file__).resolve().parents[2]
sys.path.append(str(REPO_ROOT))

# API routes read the wall clock; seeded history stays anchored near it
NOW = datetime.now(timezone.utc).replace(microsecond=0)


def pytest_configure():
    if os.getenv("DATABASE_URL") or os.getenv("SQLALCHEMY_DATABASE_URL"):
        return
    temp_dir = tempfile.mkdtemp(prefix="staking-portfolio-tests-")
    db_path = pathlib.Path(temp_dir) / "pytest.db"
    os.environ["DATABASE_URL"] = f"sqlite:///{db_path}"


@pytest.fixture(scope="session")
def sqlite_engine():
    import backend.app.models  # noqa: F401
    from backend.app.db import Base, engine

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def sqlite_session(sqlite_engine):
    from backend.app.db import Base, SessionLocal

    session = SessionLocal()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def api_client(sqlite_engine, sqlite_session):
    from backend.app.db import get_db
    from backend.app.main import app
    from fastapi.testclient import TestClient

    def _get_test_db():
        yield sqlite_session

    app.dependency_overrides[get_db] = _get_test_db
    client = TestClient(app)
    try:
        yield client
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
def now():
    return NOW


@pytest.fixture()
def seed_portfolio(sqlite_session):
    """
    Two custodians, three validators, 30 days of daily rewards.

    custodian-a: val-a1 (active, 32 ETH) + val-a2 (in_transit for 10 days, 32 ETH)
    custodian-b: val-b1 (active, 64 ETH)
    """
    from backend.app.models import Custodian, Operator, StakeEvent, Validator

    db = sqlite_session
    db.add_all(
        [
            Custodian(id="custodian-a", name="Alpha Custody"),
            Custodian(id="custodian-b", name="Beta Custody"),
        ]
    )
    db.flush()
    db.add_all(
        [
            Operator(id="op-a", name="Alpha Ops", custodian_id="custodian-a"),
            Operator(id="op-b", name="Beta Ops", custodian_id="custodian-b"),
        ]
    )
    db.flush()
    db.add_all(
        [
            Validator(
                id="val-a1",
                pubkey="0x" + "a1" * 48,
                operator_id="op-a",
                status="active",
                stake_state="active",
                balance="32000000000",
                effective_balance="32000000000",
            ),
            Validator(
                id="val-a2",
                pubkey="0x" + "a2" * 48,
                operator_id="op-a",
                status="pending",
                stake_state="in_transit",
                stake_state_since=NOW - timedelta(days=10),
                balance="32000000000",
                effective_balance="32000000000",
            ),
            Validator(
                id="val-b1",
                pubkey="0x" + "b1" * 48,
                operator_id="op-b",
                status="active",
                stake_state="active",
                balance="64000000000",
                effective_balance="64000000000",
            ),
        ]
    )
    db.flush()
    for day in range(1, 30):
        ts = NOW - timedelta(days=day)
        db.add(StakeEvent(validator_id="val-a1", event_type="reward", amount="3000000", timestamp=ts))
        db.add(StakeEvent(validator_id="val-b1", event_type="reward", amount="6000000", timestamp=ts))
    db.add(StakeEvent(validator_id="val-b1", event_type="penalty", amount="1000", timestamp=NOW - timedelta(days=3)))
    db.commit()
    return db
