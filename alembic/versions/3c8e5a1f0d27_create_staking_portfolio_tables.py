"""create staking portfolio tables

Revision ID: 3c8e5a1f0d27
Revises:
Create Date: 2026-10-01 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3c8e5a1f0d27"
down_revision = None
branch_labels = None
depends_on = None

AMOUNT = sa.String(length=78)


def upgrade() -> None:
    op.create_table(
        "custodians",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "operators",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("custodian_id", sa.String(length=36), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["custodian_id"], ["custodians.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_operators_custodian_id", "operators", ["custodian_id"])

    op.create_table(
        "validators",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("pubkey", sa.String(length=98), nullable=False),
        sa.Column("operator_id", sa.String(length=36), nullable=False),
        sa.Column("withdrawal_credential", sa.String(length=66), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("stake_state", sa.String(length=32), nullable=False, server_default="pending_activation"),
        sa.Column("stake_state_since", sa.DateTime(), nullable=True),
        sa.Column("activation_epoch", sa.Integer(), nullable=True),
        sa.Column("exit_epoch", sa.Integer(), nullable=True),
        sa.Column("balance", AMOUNT, nullable=False),
        sa.Column("effective_balance", AMOUNT, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["operator_id"], ["operators.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("pubkey"),
    )
    op.create_index("ix_validators_operator_id", "validators", ["operator_id"])

    op.create_table(
        "stake_events",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("validator_id", sa.String(length=36), nullable=False),
        sa.Column("event_type", sa.String(length=32), nullable=False),
        sa.Column("amount", AMOUNT, nullable=False),
        sa.Column("epoch", sa.Integer(), nullable=True),
        sa.Column("slot", sa.Integer(), nullable=True),
        sa.Column("block_number", sa.Integer(), nullable=True),
        sa.Column("tx_hash", sa.String(length=66), nullable=True),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("finalized", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["validator_id"], ["validators.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stake_events_validator_id", "stake_events", ["validator_id"])
    op.create_index("ix_stake_events_type_timestamp", "stake_events", ["event_type", "timestamp"])

    op.create_table(
        "daily_snapshots",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("date", sa.String(length=10), nullable=False),
        sa.Column("total_value", AMOUNT, nullable=False),
        sa.Column("active_stake", AMOUNT, nullable=False),
        sa.Column("in_transit_stake", AMOUNT, nullable=False),
        sa.Column("rewards_accrued", AMOUNT, nullable=False),
        sa.Column("exiting_stake", AMOUNT, nullable=False),
        sa.Column("validator_count", sa.Integer(), nullable=False),
        sa.Column("trailing_apy_30d", sa.Float(), nullable=True),
        sa.Column("custodian_values", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("date", name="uq_daily_snapshots_date"),
    )

    op.create_table(
        "exceptions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("type", sa.String(length=40), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="new"),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=False),
        sa.Column("evidence_links", sa.JSON(), nullable=False),
        sa.Column("fingerprint", sa.String(length=300), nullable=True),
        sa.Column("detected_at", sa.DateTime(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("resolved_by", sa.String(length=120), nullable=True),
        sa.Column("resolution", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_exceptions_status", "exceptions", ["status"])
    op.create_index("ix_exceptions_detected_at", "exceptions", ["detected_at"])
    op.create_index("ix_exceptions_fingerprint", "exceptions", ["fingerprint"])


def downgrade() -> None:
    op.drop_index("ix_exceptions_fingerprint", table_name="exceptions")
    op.drop_index("ix_exceptions_detected_at", table_name="exceptions")
    op.drop_index("ix_exceptions_status", table_name="exceptions")
    op.drop_table("exceptions")
    op.drop_table("daily_snapshots")
    op.drop_index("ix_stake_events_type_timestamp", table_name="stake_events")
    op.drop_index("ix_stake_events_validator_id", table_name="stake_events")
    op.drop_table("stake_events")
    op.drop_index("ix_validators_operator_id", table_name="validators")
    op.drop_table("validators")
    op.drop_index("ix_operators_custodian_id", table_name="operators")
    op.drop_table("operators")
    op.drop_table("custodians")
