"""
Stripe Checkout Session Routes
Creates one-time Checkout Sessions for token packages. Tokens are credited by the webhook.
"""
import logging
import os

import stripe
from fastapi import APIRouter, HTTPException, status

from app.core.plans import BALANCE_UNIT, get_plan
from app.schemas.ledger import CheckoutSessionRequest, CheckoutSessionResponse
from app.utils.disposable_email import is_disposable_email, normalize_email

logger = logging.getLogger(__name__)

router = APIRouter()

# Initialize Stripe
stripe.api_key = os.getenv("STRIPE_SECRET_KEY")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")


@router.post("/create-checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(body: CheckoutSessionRequest):
    """
    Create a Stripe Checkout Session for a token package.
    Returns the checkout URL to redirect the user to.
    """
    if not stripe.api_key:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stripe is not configured"
        )

    try:
        email = normalize_email(body.email)
        plan = get_plan(body.plan_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if is_disposable_email(email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Temporary or disposable email addresses are not allowed. Please use a permanent email address."
        )

    plan_id = body.plan_id.strip().lower()
    try:
        checkout_session = stripe.checkout.Session.create(
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": "usd",
                        "product_data": {
                            "name": f"{plan['name']} Token Pack",
                            "description": plan["description"],
                        },
                        "unit_amount": plan["price_cents"],
                    },
                    "quantity": 1,
                }
            ],
            mode="payment",
            customer_email=email,
            success_url=f"{FRONTEND_URL}/?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{FRONTEND_URL}/?canceled=true",
            metadata={
                "email": email,
                "plan": plan_id,
                BALANCE_UNIT: str(plan["tokens"]),
            },
        )
    except stripe.StripeError as e:
        logger.error("[Stripe] Error creating checkout session for %s: %s", email, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to create checkout session: {str(e)}"
        )

    logger.info("[Stripe] Created Checkout Session %s for %s (%s)", checkout_session.id, email, plan_id)
    return CheckoutSessionResponse(checkout_url=checkout_session.url, session_id=checkout_session.id)
