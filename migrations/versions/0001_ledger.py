"""synced transactions ledger

Revision ID: 0001_ledger
Revises:
Create Date: 2026-09-28 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_ledger"
down_revision = None
branch_labels = None
depends_on = None


class GUID(sa.TypeDecorator):
    impl = sa.CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import UUID

            return dialect.type_descriptor(UUID(as_uuid=True))
        return dialect.type_descriptor(sa.CHAR(36))


class Money(sa.TypeDecorator):
    impl = sa.String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(sa.NUMERIC(12, 2))
        return dialect.type_descriptor(sa.String(32))


def upgrade() -> None:
    op.create_table(
        "synced_transactions",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("transaction_id", sa.String(length=64), nullable=False),
        sa.Column("terminal_id", sa.String(length=100), nullable=True),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("total", Money(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("request_hash", sa.String(length=64), nullable=False),
        sa.Column("synced_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_synced_transactions_transaction_id",
        "synced_transactions",
        ["transaction_id"],
        unique=True,
    )
    op.create_index("ix_synced_transactions_terminal_id", "synced_transactions", ["terminal_id"])


def downgrade() -> None:
    op.drop_index("ix_synced_transactions_terminal_id", table_name="synced_transactions")
    op.drop_index("ix_synced_transactions_transaction_id", table_name="synced_transactions")
    op.drop_table("synced_transactions")
