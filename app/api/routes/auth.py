"""
One-time code login.
POST /login redeems a code; POST /login/request issues a fresh code by email.
"""
import logging

from fastapi import APIRouter, Depends

from app.dependencies.ledger import LEDGER_ERRORS, get_ledger, ledger_http_error
from app.schemas.ledger import LoginCodeRequest, LoginCodeResponse, LoginRequest, LoginResponse
from app.services.ledger import LedgerService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/login", response_model=LoginResponse)
def login(body: LoginRequest, ledger: LedgerService = Depends(get_ledger)):
    """
    Exchange a one-time code for the account's email and balance.
    Unknown and already-used codes get the same 401.
    """
    try:
        result = ledger.redeem(body.code)
    except LEDGER_ERRORS as e:
        raise ledger_http_error(e)
    return LoginResponse(email=result.email, balance=result.balance, verified=result.verified)


@router.post("/login/request", response_model=LoginCodeResponse)
def request_login(body: LoginCodeRequest, ledger: LedgerService = Depends(get_ledger)):
    try:
        result = ledger.request_login(body.email)
    except LEDGER_ERRORS as e:
        raise ledger_http_error(e)

    if result.is_new_account:
        message = "Account created! Check your email for your login link."
    else:
        message = "Check your email for your login link!"
    return LoginCodeResponse(message=message, is_new_account=result.is_new_account)
