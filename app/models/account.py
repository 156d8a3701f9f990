from sqlalchemy import Column, Integer, String, Boolean, DateTime, CheckConstraint, Index, text
from datetime import datetime
from app.db.base import Base


class Account(Base):
    """
    One row per customer, keyed by normalized (lowercase) email.

    balance is stored in the canonical unit declared in app.core.plans.BALANCE_UNIT.
    pending_code holds the single live one-time login code; issuing a new code
    overwrites it, which supersedes the previous one.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
        # Accelerates find_by_code; only unredeemed codes are ever looked up
        Index(
            "ix_accounts_live_pending_code",
            "pending_code",
            postgresql_where=text("code_redeemed = false"),
            sqlite_where=text("code_redeemed = 0"),
        ),
    )

    email = Column(String, primary_key=True)
    balance = Column(Integer, nullable=False, default=0, server_default="0")
    pending_code = Column(String, unique=True, nullable=True)
    code_redeemed = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Account {self.email} balance={self.balance}>"
