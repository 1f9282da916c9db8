from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.models import Custodian, Operator, StakeEvent, Validator

GWEI_PER_ETH = 1_000_000_000
DEPOSIT_GWEI = 32 * GWEI_PER_ETH
HISTORY_DAYS = 90

CUSTODIANS: List[Tuple[str, str, str]] = [
    ("custodian-coinbase", "Coinbase Prime", "Coinbase institutional custody"),
    ("custodian-anchorage", "Anchorage Digital", "Anchorage institutional custody"),
    ("custodian-bitgo", "BitGo", "BitGo institutional custody"),
]

OPERATORS: List[Tuple[str, str, str]] = [
    ("op-figment", "Figment", "custodian-coinbase"),
    ("op-blockdaemon", "Blockdaemon", "custodian-coinbase"),
    ("op-staked", "Staked", "custodian-anchorage"),
    ("op-chorus", "Chorus One", "custodian-bitgo"),
]

# (status, stake_state), cycled across validators
LIFECYCLE: List[Tuple[str, str]] = [
    ("active", "active"),
    ("active", "active"),
    ("active", "active"),
    ("pending", "pending_activation"),
    ("pending", "in_transit"),
    ("active", "exiting"),
    ("exited", "exited"),
]


def _hex(rng: random.Random, n: int) -> str:
    return "".join(rng.choice("0123456789abcdef") for _ in range(n))


def _daily_reward(rng: random.Random, custodian_id: str, days_ago: int) -> int:
    if custodian_id == "custodian-coinbase":
        return 35_000_000 + rng.randint(0, 10_000_000) + (HISTORY_DAYS - days_ago) * 50_000
    if custodian_id == "custodian-anchorage":
        reward = 38_000_000 + rng.randint(0, 10_000_000)
        # late-month spike
        return int(reward * 1.3) if 20 <= days_ago <= 30 else reward
    reward = 30_000_000 + rng.randint(0, 10_000_000)
    # operator outage window
    return int(reward * 0.6) if 40 <= days_ago <= 50 else reward


def seed_demo_portfolio(
    db: Session,
    *,
    validator_count: int = 50,
    now: Optional[datetime] = None,
    seed: int = 7,
) -> bool:
    """Insert a demo portfolio with 90 days of history. Returns False when data already exists."""
    if db.execute(select(Custodian.id).limit(1)).first():
        return False

    now = now or datetime.now(timezone.utc)
    rng = random.Random(seed)

    for custodian_id, name, description in CUSTODIANS:
        db.add(Custodian(id=custodian_id, name=name, description=description, created_at=now, updated_at=now))
    for operator_id, name, custodian_id in OPERATORS:
        db.add(Operator(id=operator_id, name=name, custodian_id=custodian_id, created_at=now, updated_at=now))
    db.flush()

    custodian_of: Dict[str, str] = {op_id: c_id for op_id, _, c_id in OPERATORS}
    validators: List[Validator] = []
    for i in range(validator_count):
        operator_id = OPERATORS[i % len(OPERATORS)][0]
        status, stake_state = LIFECYCLE[i % len(LIFECYCLE)]
        validator = Validator(
            id=f"val-{i:04d}",
            pubkey=f"0x{_hex(rng, 96)}",
            operator_id=operator_id,
            withdrawal_credential=f"0x01{_hex(rng, 62)}",
            status=status,
            stake_state=stake_state,
            stake_state_since=now - timedelta(days=rng.randint(1, 12)),
            activation_epoch=100_000 + i * 100,
            balance=str(DEPOSIT_GWEI + rng.randint(0, GWEI_PER_ETH // 2)),
            effective_balance=str(DEPOSIT_GWEI),
            created_at=now,
            updated_at=now,
        )
        validators.append(validator)
        db.add(validator)
    db.flush()

    epoch = 100_000
    for validator in validators:
        for event_type, amount, days_ago in (("deposit", DEPOSIT_GWEI, 91), ("activation", 0, 90)):
            db.add(
                StakeEvent(
                    validator_id=validator.id,
                    event_type=event_type,
                    amount=str(amount),
                    epoch=epoch,
                    slot=epoch * 32,
                    timestamp=now - timedelta(days=days_ago),
                    finalized=True,
                )
            )
            epoch += 1

    for days_ago in range(HISTORY_DAYS - 1, -1, -1):
        day_start = now - timedelta(days=days_ago)
        for validator in validators:
            if validator.stake_state != "active" or rng.random() > 0.6:
                continue
            db.add(
                StakeEvent(
                    validator_id=validator.id,
                    event_type="reward",
                    amount=str(_daily_reward(rng, custodian_of[validator.operator_id], days_ago)),
                    epoch=epoch,
                    slot=epoch * 32,
                    timestamp=min(day_start + timedelta(seconds=rng.randint(0, 86_399)), now),
                    finalized=True,
                )
            )
            epoch += 1

    db.commit()
    return True
