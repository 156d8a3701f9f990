from sqlalchemy import Column, Integer, String, DateTime
from datetime import datetime
from app.db.base import Base


class BalanceUnitConversion(Base):
    """Audit row for a one-time conversion of every account balance between units."""

    __tablename__ = "balance_unit_conversions"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    from_unit = Column(String, nullable=False)
    to_unit = Column(String, nullable=False)
    numerator = Column(Integer, nullable=False)
    denominator = Column(Integer, nullable=False)
    accounts_converted = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
