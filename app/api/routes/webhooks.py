"""
Webhooks for the payment provider (Stripe).
checkout.session.completed credits the purchased plan exactly once per event id.
"""
import json
import logging
import os

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.core.plans import BALANCE_UNIT, get_plan_tokens
from app.dependencies.ledger import get_ledger, ledger_http_error
from app.services.ledger import LedgerError, LedgerService, StoreUnavailable

logger = logging.getLogger(__name__)

router = APIRouter()

STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")


def _parse_event(payload: bytes, sig_header: str | None) -> dict:
    if STRIPE_WEBHOOK_SECRET:
        try:
            stripe.Webhook.construct_event(payload, sig_header, STRIPE_WEBHOOK_SECRET)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning("[Stripe webhook] Signature verification failed: %s", e)
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid webhook signature"
            )
    # Unsigned bodies are only accepted when no secret is configured (local development)
    try:
        return json.loads(payload)
    except json.JSONDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")


@router.post("/stripe")
async def stripe_webhook(request: Request, ledger: LedgerService = Depends(get_ledger)):
    """
    Stripe webhook. Register this URL in the Stripe dashboard:
    https://your-backend.com/webhooks/stripe
    """
    payload = await request.body()
    data = _parse_event(payload, request.headers.get("stripe-signature"))

    event_id = data.get("id")
    event_type = data.get("type")
    obj = (data.get("data") or {}).get("object") or {}
    logger.info("[Stripe webhook] type=%s id=%s", event_type, event_id)

    if event_type != "checkout.session.completed":
        return {"status": "ignored"}

    if obj.get("payment_status") not in (None, "paid", "no_payment_required"):
        logger.info("[Stripe webhook] Session %s not paid yet (%s)", obj.get("id"), obj.get("payment_status"))
        return {"status": "ignored"}

    meta = obj.get("metadata") or {}
    email = meta.get("email") or obj.get("customer_email") or (obj.get("customer_details") or {}).get("email")
    plan_id = (meta.get("plan") or "").strip().lower()
    if not event_id or not email or not plan_id:
        logger.error("[Stripe webhook] Event %s missing email/plan metadata", event_id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing checkout metadata")

    try:
        amount = get_plan_tokens(plan_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if meta.get(BALANCE_UNIT) and meta.get(BALANCE_UNIT) != str(amount):
        # The plan table is authoritative; metadata is only a record of what was shown at checkout
        logger.warning(
            "[Stripe webhook] Event %s metadata says %s %s, plan %s grants %s",
            event_id, meta.get(BALANCE_UNIT), BALANCE_UNIT, plan_id, amount,
        )

    try:
        result = ledger.credit_payment(event_id, email, plan_id, amount)
    except (LedgerError, StoreUnavailable, ValueError) as e:
        # Non-2xx makes Stripe redeliver; the event claim was released
        raise ledger_http_error(e)

    if result is None:
        return {"status": "duplicate"}
    return {"status": "success"}
