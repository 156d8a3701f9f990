"""Add issued_codes so retired login codes stay known to the store (idempotent).

Revision ID: 002_issued_codes
Revises: 001_initial
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "002_issued_codes"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    conn.execute(
        sa.text(
            """
            CREATE TABLE IF NOT EXISTS issued_codes (
                code_digest VARCHAR(64) PRIMARY KEY,
                email VARCHAR NOT NULL,
                issued_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
    )
    conn.execute(
        sa.text("CREATE INDEX IF NOT EXISTS ix_issued_codes_email ON issued_codes (email)")
    )


def downgrade() -> None:
    op.drop_index("ix_issued_codes_email", table_name="issued_codes")
    op.drop_table("issued_codes")
