from sqlalchemy import Column, String, DateTime
from datetime import datetime
from app.db.base import Base


class IssuedCode(Base):
    """
    Every login code the store has handed out, kept after it is redeemed or superseded.

    Only the SHA-256 digest is stored. A snapshot code whose digest is here is known
    to the store and can never fall back to its embedded balance.
    """

    __tablename__ = "issued_codes"

    code_digest = Column(String(64), primary_key=True)
    email = Column(String, nullable=False, index=True)
    issued_at = Column(DateTime, default=datetime.utcnow, nullable=False)
