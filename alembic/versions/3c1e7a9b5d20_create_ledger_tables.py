"""Create users, contents, events and balance_operations

Revision ID: 3c1e7a9b5d20
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "3c1e7a9b5d20"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("username", sa.String(30), nullable=False, unique=True),
        sa.Column(
            "rewarded_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "contents",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "owner_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "parent_id",
            sa.Uuid(),
            sa.ForeignKey("contents.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("body", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("score", sa.Numeric(6, 3), nullable=True),
    )
    op.create_index("ix_contents_score_created_at", "contents", ["score", "created_at"])
    op.create_index(
        "ix_contents_owner_published", "contents", ["owner_id", "status", "published_at"]
    )

    op.create_table(
        "events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("type", sa.String(64), nullable=False),
        sa.Column("originator_user_id", sa.Uuid(), nullable=True),
        sa.Column("originator_ip", sa.String(45), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_events_type_originator", "events", ["type", "originator_user_id"])

    op.create_table(
        "balance_operations",
        sa.Column("sequence", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("id", sa.Uuid(), nullable=False, unique=True),
        sa.Column("balance_type", sa.String(32), nullable=False),
        sa.Column("recipient_id", sa.Uuid(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("originator_type", sa.String(16), nullable=False),
        sa.Column("originator_id", sa.Uuid(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_balance_operations_recipient_type",
        "balance_operations",
        ["recipient_id", "balance_type"],
    )
    op.create_index("ix_balance_operations_originator", "balance_operations", ["originator_id"])
    op.create_index(
        "uq_balance_operations_undo_originator",
        "balance_operations",
        ["originator_id"],
        unique=True,
        postgresql_where=sa.text("originator_type = 'undo'"),
    )

    # Balance lookup for ad-hoc SQL and reporting; the application sums in Python.
    op.execute(
        """
        CREATE OR REPLACE FUNCTION get_current_balance(
            balance_type_input TEXT, recipient_id_input UUID
        ) RETURNS INTEGER AS $$
            SELECT COALESCE(SUM(amount), 0)::INTEGER
            FROM balance_operations
            WHERE recipient_id = recipient_id_input
              AND (
                balance_type = balance_type_input
                OR (
                  balance_type_input = 'content:tabcoin'
                  AND balance_type IN ('content:tabcoin:credit', 'content:tabcoin:debit')
                )
              );
        $$ LANGUAGE sql STABLE;
        """
    )


def downgrade() -> None:
    op.execute("DROP FUNCTION IF EXISTS get_current_balance(TEXT, UUID)")
    op.drop_index("uq_balance_operations_undo_originator", table_name="balance_operations")
    op.drop_index("ix_balance_operations_originator", table_name="balance_operations")
    op.drop_index("ix_balance_operations_recipient_type", table_name="balance_operations")
    op.drop_table("balance_operations")
    op.drop_index("ix_events_type_originator", table_name="events")
    op.drop_table("events")
    op.drop_index("ix_contents_owner_published", table_name="contents")
    op.drop_index("ix_contents_score_created_at", table_name="contents")
    op.drop_table("contents")
    op.drop_table("users")
