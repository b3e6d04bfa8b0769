"""create ledger tables

Revision ID: b7d21e4f9a03
Revises:
Create Date: 2026-10-19 09:12:44.310582

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "b7d21e4f9a03"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

AMOUNT = sa.Numeric(precision=38, scale=18)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "events",
        sa.Column("id", sa.String(length=255), nullable=False),
        sa.Column("target_amount", AMOUNT, nullable=False),
        sa.Column("milestones", sa.JSON(), nullable=False),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_amount", AMOUNT, nullable=False, server_default="0"),
        sa.Column("unique_donor_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("commitment_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "commitments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("donor_ref", sa.String(length=255), nullable=False),
        sa.Column("committed_amount", AMOUNT, nullable=False),
        sa.Column("commitment_hash", sa.String(length=255), nullable=False),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("zk_proof_ref", sa.String(length=1024), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revealed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("revealed_amount", AMOUNT, nullable=True),
        sa.Column("revealed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("commitment_hash"),
        sa.UniqueConstraint("event_id", "sequence_number", name="uq_commitment_event_sequence"),
    )
    op.create_index("ix_commitments_event_id", "commitments", ["event_id"])
    op.create_index("ix_commitments_donor_ref", "commitments", ["donor_ref"])
    op.create_index("ix_commitments_recorded_at", "commitments", ["recorded_at"])

    op.create_table(
        "event_donors",
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("donor_ref", sa.String(length=255), nullable=False),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"]),
        sa.PrimaryKeyConstraint("event_id", "donor_ref"),
    )

    op.create_table(
        "achievements",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("trigger_type", sa.String(length=50), nullable=False),
        sa.Column("trigger_value", AMOUNT, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("is_unlocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("unlocked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id", "trigger_type", "trigger_value", name="uq_achievement_trigger"),
    )
    op.create_index("ix_achievements_event_id", "achievements", ["event_id"])

    op.create_table(
        "privacy_preferences",
        sa.Column("donor_ref", sa.String(length=255), nullable=False),
        sa.Column("reveal_amount", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reveal_name", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("custom_display_name", sa.String(length=50), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("donor_ref"),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("privacy_preferences")
    op.drop_index("ix_achievements_event_id", table_name="achievements")
    op.drop_table("achievements")
    op.drop_table("event_donors")
    op.drop_index("ix_commitments_recorded_at", table_name="commitments")
    op.drop_index("ix_commitments_donor_ref", table_name="commitments")
    op.drop_index("ix_commitments_event_id", table_name="commitments")
    op.drop_table("commitments")
    op.drop_table("events")
