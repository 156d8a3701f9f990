import hmac
import logging
import os

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.services.account_store import AccountStore
from app.services.auth_email import AuthEmailSender
from app.services.ledger import (
    InsufficientFunds,
    InvalidCode,
    LedgerConflict,
    LedgerError,
    LedgerService,
    NotFound,
    StoreUnavailable,
)

logger = logging.getLogger(__name__)

ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "").strip()


def get_ledger(db: Session = Depends(get_db)) -> LedgerService:
    """One ledger per request, bound to the request's database session."""
    return LedgerService(AccountStore(db), notifier=AuthEmailSender())


def require_admin_key(x_admin_key: str = Header(None)) -> None:
    """
    Guard for operator-only routes. Without ADMIN_API_KEY configured every call is refused,
    so balances can only be credited through the payment webhook.
    """
    if not ADMIN_API_KEY or not x_admin_key or not hmac.compare_digest(x_admin_key, ADMIN_API_KEY):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin key required"
        )


def ledger_http_error(error: Exception) -> HTTPException:
    """Translate a ledger/store failure into the response the client should see."""
    if isinstance(error, InvalidCode):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired code")
    if isinstance(error, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
    if isinstance(error, InsufficientFunds):
        return HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail="Not enough tokens. Please top up to continue."
        )
    if isinstance(error, LedgerConflict):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Your balance changed while we were updating it. Please try again."
        )
    if isinstance(error, StoreUnavailable):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service temporarily unavailable. Please try again shortly."
        )
    if isinstance(error, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, LedgerError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    logger.exception("[Ledger] Unexpected error: %s", error)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Something went wrong. Please try again."
    )


LEDGER_ERRORS = (LedgerError, StoreUnavailable, ValueError)
