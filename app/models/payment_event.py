from sqlalchemy import Column, Integer, String, DateTime
from datetime import datetime
from app.db.base import Base


class PaymentEvent(Base):
    """
    Payment provider webhook events that have been applied to the ledger.

    The provider event id is the primary key, so a redelivered webhook cannot
    insert a second row and therefore cannot credit the account twice.
    """

    __tablename__ = "payment_events"

    event_id = Column(String, primary_key=True)
    provider = Column(String, nullable=False, default="stripe")
    email = Column(String, nullable=False, index=True)
    plan_id = Column(String, nullable=True)
    amount_units = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="processing")  # processing | credited
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
