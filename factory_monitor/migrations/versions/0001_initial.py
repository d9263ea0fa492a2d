"""Initial event store schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "workers",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("kind", sa.String(length=64), nullable=False, server_default=sa.text("'operator'")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )

    op.create_table(
        "workstations",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("kind", sa.String(length=64), nullable=False, server_default=sa.text("'assembly'")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("worker_id", sa.String(length=64), nullable=False),
        sa.Column("workstation_id", sa.String(length=64), nullable=False),
        sa.Column("event_type", sa.String(length=13), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("fingerprint", sa.String(length=64), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.CheckConstraint(
            "event_type IN ('working', 'idle', 'absent', 'product_count')",
            name="ck_events_event_type",
        ),
        sa.CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_events_confidence"),
        sa.CheckConstraint("count >= 0", name="ck_events_count"),
    )
    op.create_index("ix_events_timestamp", "events", ["timestamp"], unique=False)
    op.create_index("ix_events_fingerprint", "events", ["fingerprint"], unique=True)
    op.create_index("ix_events_worker_id_timestamp", "events", ["worker_id", "timestamp"], unique=False)
    op.create_index(
        "ix_events_workstation_id_timestamp",
        "events",
        ["workstation_id", "timestamp"],
        unique=False,
    )
    op.create_index("ix_events_event_type_timestamp", "events", ["event_type", "timestamp"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_events_event_type_timestamp", table_name="events")
    op.drop_index("ix_events_workstation_id_timestamp", table_name="events")
    op.drop_index("ix_events_worker_id_timestamp", table_name="events")
    op.drop_index("ix_events_fingerprint", table_name="events")
    op.drop_index("ix_events_timestamp", table_name="events")
    op.drop_table("events")
    op.drop_table("workstations")
    op.drop_table("workers")
