"""
Send one-time login codes by email (purchase confirmations and login requests).
Uses Resend if RESEND_API_KEY is set; otherwise no-op so ledger operations never fail on email.
"""
import logging
import os
from typing import Optional

import resend

from app.services.redemption_codes import fingerprint

logger = logging.getLogger(__name__)

RESEND_API_KEY = os.getenv("RESEND_API_KEY", "").strip()
FROM_EMAIL = os.getenv("AUTH_FROM_EMAIL", "Superfun Draw <clark@superfun.games>")
APP_NAME = os.getenv("APP_NAME", "Superfun Draw")
SITE_URL = os.getenv("FRONTEND_URL", "https://draw.superfun.games").rstrip("/")


def format_tokens(tokens: int) -> str:
    return f"{tokens:,}"


class AuthEmailSender:
    """Notification gateway. Best-effort: every method returns a bool and never raises."""

    def __init__(self, api_key: Optional[str] = None, from_email: Optional[str] = None):
        self.api_key = RESEND_API_KEY if api_key is None else api_key
        self.from_email = from_email or FROM_EMAIL

    def login_url(self, code: str) -> str:
        return f"{SITE_URL}/?auth={code}"

    def send(self, to_email: str, subject: str, body: str) -> bool:
        """
        Send a plain-text email.
        Returns True if handed to the provider, False if skipped (no API key) or rejected.
        """
        if not self.api_key or not to_email:
            logger.info("[auth_email] Email skipped for %s (provider not configured)", to_email)
            return False

        try:
            resend.api_key = self.api_key
            resend.Emails.send({
                "from": self.from_email,
                "to": [to_email],
                "subject": subject,
                "text": body.strip(),
            })
            logger.info("[auth_email] Email sent to %s", to_email)
            return True
        except Exception as e:
            logger.error("[auth_email] Failed to send email to %s: %s", to_email, e)
            return False

    def send_purchase_code(
        self,
        to_email: str,
        code: str,
        amount: int,
        new_balance: int,
        reason: str,
    ) -> bool:
        """Purchase confirmation carrying the fresh one-time login code."""
        plan = reason.split(":", 1)[1] if reason.startswith("purchase:") else ""
        plan_line = f"Token plan: {plan.capitalize()}\n" if plan else ""
        subject = f"Your {APP_NAME} tokens are ready! ({format_tokens(amount)} tokens)"
        body = f"""
Hi there!

Thanks for getting tokens for {APP_NAME}! Here are your details:

{plan_line}Tokens added: {format_tokens(amount)}
Balance: {format_tokens(new_balance)}
One-time login code: {code}

Click here to log in and start creating:
{self.login_url(code)}

Or visit the site and enter your code: {code}

Happy drawing!
- The {APP_NAME} Team

P.S. This code can only be used once. You'll get a new one if you purchase more tokens.
"""
        logger.info(
            "[auth_email] Purchase code %s for %s", fingerprint(code), to_email
        )
        return self.send(to_email, subject, body)

    def send_login_code(
        self,
        to_email: str,
        code: str,
        balance: int,
        is_new_account: bool,
    ) -> bool:
        """Login email, worded as a welcome for accounts created by this request."""
        if is_new_account:
            subject = f"Welcome to {APP_NAME}!"
            if balance:
                subject += f" ({format_tokens(balance)} tokens included)"
            intro = f"Welcome to {APP_NAME}! We've created your account."
        else:
            subject = f"Your {APP_NAME} login link ({format_tokens(balance)} tokens available)"
            intro = f"Here's your login link for {APP_NAME}!"

        body = f"""
Hi there!

{intro}

Current tokens: {format_tokens(balance)}
One-time login code: {code}

Click here to log in and continue creating:
{self.login_url(code)}

Or visit the site and enter your code: {code}

Happy drawing!
- The {APP_NAME} Team

P.S. This code can only be used once. Need more tokens? You can purchase them from your account.
"""
        return self.send(to_email, subject, body)
