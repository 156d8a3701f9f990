from dotenv import load_dotenv

load_dotenv()

from app.db.session import engine
from app.db.base import Base
from app.models import Account, IssuedCode, PaymentEvent, BalanceUnitConversion  # noqa: F401

print("Creating ledger tables...")
Base.metadata.create_all(bind=engine)
print("✅ accounts, issued_codes, payment_events and balance_unit_conversions are ready")
