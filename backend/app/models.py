from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.db import Base


# -------------------------
# Helpers
# -------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def uuid_str() -> str:
    return str(uuid.uuid4())


# Balances and amounts are base-unit integers (gwei) that overflow BIGINT
# on some backends, so they are stored as decimal strings.
AMOUNT_LENGTH = 78


# -------------------------
# Portfolio structure
# -------------------------

class Custodian(Base):
    __tablename__ = "custodians"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    operators = relationship(
        "Operator",
        back_populates="custodian",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Operator(Base):
    __tablename__ = "operators"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    custodian_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("custodians.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    custodian = relationship("Custodian", back_populates="operators")
    validators = relationship(
        "Validator",
        back_populates="operator",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Validator(Base):
    """
    status: active | pending | slashed | exited (operational)
    stake_state: active | pending_activation | in_transit | exiting | exited (lifecycle)
    """
    __tablename__ = "validators"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    pubkey: Mapped[str] = mapped_column(String(98), nullable=False, unique=True)
    operator_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("operators.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    withdrawal_credential: Mapped[str] = mapped_column(String(66), nullable=False, default="")

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        server_default=text("'pending'"),
        default="pending",
    )
    stake_state: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        server_default=text("'pending_activation'"),
        default="pending_activation",
    )
    # when the validator entered its current stake_state
    stake_state_since: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    activation_epoch: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    exit_epoch: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    balance: Mapped[str] = mapped_column(String(AMOUNT_LENGTH), nullable=False, default="0")
    effective_balance: Mapped[str] = mapped_column(String(AMOUNT_LENGTH), nullable=False, default="0")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    operator = relationship("Operator", back_populates="validators")


class StakeEvent(Base):
    """
    event_type: deposit | activation | reward | penalty | exit_initiated | exit_completed | withdrawal
    """
    __tablename__ = "stake_events"
    __table_args__ = (
        Index("ix_stake_events_type_timestamp", "event_type", "timestamp"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    validator_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("validators.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[str] = mapped_column(String(AMOUNT_LENGTH), nullable=False)

    epoch: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    slot: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    block_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)

    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    finalized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class DailySnapshot(Base):
    """
    One row per day of portfolio totals. Feeds the value/count change
    detectors and the 24h / 7d / 30d change figures.
    """
    __tablename__ = "daily_snapshots"
    __table_args__ = (
        UniqueConstraint("date", name="uq_daily_snapshots_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    date: Mapped[str] = mapped_column(String(10), nullable=False)  # YYYY-MM-DD

    total_value: Mapped[str] = mapped_column(String(AMOUNT_LENGTH), nullable=False)
    active_stake: Mapped[str] = mapped_column(String(AMOUNT_LENGTH), nullable=False)
    in_transit_stake: Mapped[str] = mapped_column(String(AMOUNT_LENGTH), nullable=False)
    rewards_accrued: Mapped[str] = mapped_column(String(AMOUNT_LENGTH), nullable=False)
    exiting_stake: Mapped[str] = mapped_column(String(AMOUNT_LENGTH), nullable=False)
    validator_count: Mapped[int] = mapped_column(Integer, nullable=False)
    trailing_apy_30d: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # custodian_id -> value (decimal string)
    custodian_values: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


# -------------------------
# Exception queue
# -------------------------

class ExceptionItem(Base):
    __tablename__ = "exceptions"
    __table_args__ = (
        Index("ix_exceptions_status", "status"),
        Index("ix_exceptions_detected_at", "detected_at"),
        Index("ix_exceptions_fingerprint", "fingerprint"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        server_default=text("'new'"),
        default="new",
    )
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    evidence_links: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # type + evidence ids; one open exception per fingerprint
    fingerprint: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)

    detected_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    resolution: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
