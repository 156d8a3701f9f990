"""Create accounts, payment_events and balance_unit_conversions (idempotent).

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

App startup runs Base.metadata.create_all first, so every statement uses IF NOT EXISTS.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    conn.execute(
        sa.text(
            """
            CREATE TABLE IF NOT EXISTS accounts (
                email VARCHAR PRIMARY KEY,
                balance INTEGER NOT NULL DEFAULT 0,
                pending_code VARCHAR UNIQUE,
                code_redeemed BOOLEAN NOT NULL DEFAULT false,
                created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                CONSTRAINT ck_accounts_balance_non_negative CHECK (balance >= 0)
            );
            """
        )
    )
    # Lookups only ever target live codes
    conn.execute(
        sa.text(
            "CREATE INDEX IF NOT EXISTS ix_accounts_live_pending_code "
            "ON accounts (pending_code) WHERE code_redeemed = false"
        )
    )
    conn.execute(
        sa.text(
            """
            CREATE TABLE IF NOT EXISTS payment_events (
                event_id VARCHAR PRIMARY KEY,
                provider VARCHAR NOT NULL DEFAULT 'stripe',
                email VARCHAR NOT NULL,
                plan_id VARCHAR,
                amount_units INTEGER NOT NULL,
                status VARCHAR NOT NULL DEFAULT 'processing',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
    )
    conn.execute(
        sa.text("CREATE INDEX IF NOT EXISTS ix_payment_events_email ON payment_events (email)")
    )
    conn.execute(
        sa.text(
            """
            CREATE TABLE IF NOT EXISTS balance_unit_conversions (
                id SERIAL PRIMARY KEY,
                name VARCHAR NOT NULL UNIQUE,
                from_unit VARCHAR NOT NULL,
                to_unit VARCHAR NOT NULL,
                numerator INTEGER NOT NULL,
                denominator INTEGER NOT NULL,
                accounts_converted INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
    )


def downgrade() -> None:
    op.drop_table("balance_unit_conversions")
    op.drop_table("payment_events")
    op.drop_index("ix_accounts_live_pending_code", table_name="accounts")
    op.drop_table("accounts")
