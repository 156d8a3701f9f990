"""
Balance routes: operator purchase, spend and balance reads.
Clients send intents; every balance in a response comes from the ledger.
"""
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.plans import get_plan_tokens
from app.db.session import get_db
from app.dependencies.ledger import LEDGER_ERRORS, get_ledger, ledger_http_error, require_admin_key
from app.schemas.ledger import BalanceChangeResponse, BalanceResponse, PurchaseRequest, SpendRequest
from app.services.account_store import AccountStore
from app.services.ledger import LedgerService, NotFound
from app.utils.disposable_email import normalize_email

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/purchase",
    response_model=BalanceChangeResponse,
    dependencies=[Depends(require_admin_key)],
)
def purchase(body: PurchaseRequest, ledger: LedgerService = Depends(get_ledger)):
    """
    Credit a plan's tokens directly. Operator-only: requires X-Admin-Key and answers 403
    without it, so browsers never reach this route. Customers buy plans through
    /api/stripe/create-checkout-session and are credited by the Stripe webhook.
    clientBalanceHint is accepted for compatibility and never trusted.
    """
    try:
        amount = get_plan_tokens(body.plan_id)
        result = ledger.credit(
            body.email,
            amount,
            reason=f"purchase:{body.plan_id.strip().lower()}",
            balance_hint=body.client_balance_hint,
        )
    except LEDGER_ERRORS as e:
        raise ledger_http_error(e)
    return BalanceChangeResponse(
        previous_balance=result.previous_balance,
        new_balance=result.new_balance,
    )


@router.post("/spend", response_model=BalanceChangeResponse)
def spend(body: SpendRequest, ledger: LedgerService = Depends(get_ledger)):
    try:
        result = ledger.debit(body.email, body.amount_units)
    except LEDGER_ERRORS as e:
        raise ledger_http_error(e)
    return BalanceChangeResponse(
        previous_balance=result.previous_balance,
        new_balance=result.new_balance,
    )


@router.get("/balance", response_model=BalanceResponse)
def get_balance(email: str = Query(...), db: Session = Depends(get_db)):
    """Pure read of the stored balance, used by clients to resync a cached value."""
    try:
        normalized = normalize_email(email)
        account = AccountStore(db).find_by_email(normalized)
        if account is None:
            raise NotFound(normalized)
    except LEDGER_ERRORS as e:
        raise ledger_http_error(e)
    return BalanceResponse(email=account.email, balance=account.balance, updated_at=account.updated_at)
