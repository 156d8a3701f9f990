from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import datetime


class LoginRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)


class LoginResponse(BaseModel):
    email: Optional[str] = None  # None when resolved from a balance snapshot only
    balance: int
    verified: bool


class LoginCodeRequest(BaseModel):
    email: EmailStr


class LoginCodeResponse(BaseModel):
    message: str
    is_new_account: bool = Field(alias="isNewAccount")

    class Config:
        populate_by_name = True


class PurchaseRequest(BaseModel):
    email: EmailStr
    plan_id: str = Field(alias="planId")
    client_balance_hint: Optional[int] = Field(default=None, alias="clientBalanceHint")  # advisory, ignored

    class Config:
        populate_by_name = True


class SpendRequest(BaseModel):
    email: EmailStr
    amount_units: int = Field(alias="amountUnits", gt=0)

    class Config:
        populate_by_name = True


class BalanceChangeResponse(BaseModel):
    previous_balance: int = Field(alias="previousBalance")
    new_balance: int = Field(alias="newBalance")

    class Config:
        populate_by_name = True


class BalanceResponse(BaseModel):
    email: str
    balance: int
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    class Config:
        populate_by_name = True


class CheckoutSessionRequest(BaseModel):
    email: EmailStr
    plan_id: str = Field(alias="planId")

    class Config:
        populate_by_name = True


class CheckoutSessionResponse(BaseModel):
    checkout_url: str = Field(alias="checkoutUrl")
    session_id: str = Field(alias="sessionId")

    class Config:
        populate_by_name = True
