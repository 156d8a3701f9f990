from app.models.account import Account
from app.models.issued_code import IssuedCode
from app.models.payment_event import PaymentEvent
from app.models.balance_unit_conversion import BalanceUnitConversion

__all__ = [
    "Account",
    "IssuedCode",
    "PaymentEvent",
    "BalanceUnitConversion",
]
