"""
Ledger service: the only place account balances change.

credit (purchase / webhook), debit (spend on a generation), redeem (one-time code login)
and request_login (issue a fresh code by email). Balances are always read from the
account store; anything a client claims about its balance is advisory and ignored.
"""
import logging
import os
from dataclasses import dataclass
from typing import Optional, Protocol

from app.core.plans import LEDGER_MAX_RETRIES, WELCOME_BONUS_TOKENS
from app.models.account import Account
from app.services import redemption_codes as codes
from app.services.account_store import AccountStore, StoreUnavailable
from app.utils.disposable_email import is_disposable_email, normalize_email

logger = logging.getLogger(__name__)

SNAPSHOT_CODES_ENABLED = os.getenv("SNAPSHOT_CODES_ENABLED", "false").lower() in ("1", "true", "yes")

__all__ = [
    "LedgerService",
    "LedgerError",
    "NotFound",
    "InsufficientFunds",
    "InvalidCode",
    "LedgerConflict",
    "StoreUnavailable",
    "CreditResult",
    "DebitResult",
    "RedeemResult",
    "LoginRequestResult",
]


class LedgerError(Exception):
    """Base class for ledger failures that callers map to user-facing responses."""


class NotFound(LedgerError):
    def __init__(self, email: str):
        super().__init__(f"No account for {email}")
        self.email = email


class InsufficientFunds(LedgerError):
    def __init__(self, balance: int, required: int):
        super().__init__(f"Insufficient balance: have {balance}, need {required}")
        self.balance = balance
        self.required = required


class InvalidCode(LedgerError):
    """Unknown, superseded or already used code. Deliberately does not say which."""

    def __init__(self):
        super().__init__("Invalid or expired code")


class LedgerConflict(LedgerError):
    """Compare-and-set kept losing to concurrent writers; safe to retry later."""

    def __init__(self, email: str, operation: str):
        super().__init__(f"Concurrent update on {email} during {operation}")
        self.email = email
        self.operation = operation


class Notifier(Protocol):
    def send_purchase_code(
        self, to_email: str, code: str, amount: int, new_balance: int, reason: str
    ) -> bool: ...

    def send_login_code(
        self, to_email: str, code: str, balance: int, is_new_account: bool
    ) -> bool: ...


@dataclass
class CreditResult:
    email: str
    previous_balance: int
    new_balance: int
    code: str


@dataclass
class DebitResult:
    email: str
    previous_balance: int
    new_balance: int


@dataclass
class RedeemResult:
    email: Optional[str]
    balance: int
    # False for the degraded snapshot path: the email is unknown and the balance is approximate
    verified: bool


@dataclass
class LoginRequestResult:
    email: str
    balance: int
    is_new_account: bool
    code: str
    email_sent: bool


class LedgerService:
    def __init__(
        self,
        store: AccountStore,
        notifier: Optional[Notifier] = None,
        max_retries: int = LEDGER_MAX_RETRIES,
        welcome_bonus: int = WELCOME_BONUS_TOKENS,
        snapshot_codes: bool = SNAPSHOT_CODES_ENABLED,
    ):
        self.store = store
        self.notifier = notifier
        self.max_retries = max(1, max_retries)
        self.welcome_bonus = max(0, welcome_bonus)
        self.snapshot_codes = snapshot_codes

    def _mint(self, email: str, balance: int) -> str:
        if self.snapshot_codes:
            return codes.mint_with_snapshot(balance)
        return codes.mint(email)

    def credit(
        self,
        email: str,
        amount: int,
        reason: str,
        balance_hint: Optional[int] = None,
    ) -> CreditResult:
        """
        Add amount to the account (creating it on first purchase), issue a new one-time
        code that supersedes any previous one, then email it.
        """
        email = normalize_email(email)
        if amount <= 0:
            raise ValueError("Credit amount must be positive")

        for attempt in range(1, self.max_retries + 1):
            account = self.store.find_by_email(email)
            previous_balance = account.balance if account else 0
            if balance_hint is not None and balance_hint != previous_balance:
                logger.warning(
                    "[Ledger] Ignoring client balance hint for %s (hint=%s, stored=%s)",
                    email, balance_hint, previous_balance,
                )

            new_balance = previous_balance + amount
            code = self._mint(email, new_balance)
            if self.store.upsert(email, new_balance, code, expected_balance=previous_balance):
                break
            logger.info("[Ledger] credit retry %s/%s for %s", attempt, self.max_retries, email)
        else:
            raise LedgerConflict(email, "credit")

        logger.info(
            "[Ledger] Credited %s: %s + %s = %s (%s, code %s)",
            email, previous_balance, amount, new_balance, reason, codes.fingerprint(code),
        )

        # The balance is committed; a failed email is logged and the user can request a new code
        if self.notifier is not None:
            try:
                sent = self.notifier.send_purchase_code(email, code, amount, new_balance, reason)
            except Exception as e:
                logger.error("[Ledger] Notification for %s raised: %s", email, e)
                sent = False
            if not sent:
                logger.warning("[Ledger] Code email not delivered for %s after credit", email)

        return CreditResult(
            email=email,
            previous_balance=previous_balance,
            new_balance=new_balance,
            code=code,
        )

    def debit(self, email: str, amount: int) -> DebitResult:
        """Remove amount from the balance. Never clamps and never partially debits."""
        email = normalize_email(email)
        if amount <= 0:
            raise ValueError("Debit amount must be positive")

        for attempt in range(1, self.max_retries + 1):
            account = self.store.find_by_email(email)
            if account is None:
                raise NotFound(email)
            previous_balance = account.balance
            if previous_balance < amount:
                logger.info(
                    "[Ledger] Debit of %s rejected for %s (balance %s)",
                    amount, email, previous_balance,
                )
                raise InsufficientFunds(previous_balance, amount)

            new_balance = previous_balance - amount
            if self.store.set_balance(email, new_balance, expected_balance=previous_balance):
                logger.info(
                    "[Ledger] Debited %s: %s - %s = %s",
                    email, previous_balance, amount, new_balance,
                )
                return DebitResult(
                    email=email,
                    previous_balance=previous_balance,
                    new_balance=new_balance,
                )
            logger.info("[Ledger] debit retry %s/%s for %s", attempt, self.max_retries, email)

        raise LedgerConflict(email, "debit")

    def redeem(self, code: str) -> RedeemResult:
        """
        Exchange a one-time code for the account's identity and balance.

        The store is authoritative. A signed snapshot code is only honoured when the
        store never issued the code (or cannot be reached), and the result is unverified.
        Redeemed and superseded codes stay known to the store, so they never fall back.
        """
        normalized = codes.normalize(code)
        if not normalized:
            raise InvalidCode()
        tag = codes.fingerprint(normalized)

        try:
            account = self.store.find_by_code(normalized)
            if account is not None:
                return self._redeem_live(normalized, account)

            if self.store.code_was_issued(normalized):
                logger.info("[Ledger] Code %s was already redeemed or superseded", tag)
                raise InvalidCode()
        except StoreUnavailable:
            snapshot = codes.decode_snapshot(normalized)
            if snapshot is None:
                raise
            logger.warning("[Ledger] Store unavailable; code %s resolved from snapshot", tag)
            return RedeemResult(email=None, balance=snapshot, verified=False)

        snapshot = codes.decode_snapshot(normalized)
        if snapshot is not None:
            logger.warning("[Ledger] Code %s never issued by this store; resolved from snapshot", tag)
            return RedeemResult(email=None, balance=snapshot, verified=False)

        logger.info("[Ledger] Code %s rejected", tag)
        raise InvalidCode()

    def _redeem_live(self, code: str, account: Account) -> RedeemResult:
        tag = codes.fingerprint(code)
        # Read before the mark commits and expires the instance
        email, looked_up_balance = account.email, account.balance
        if not self.store.mark_code_redeemed(code):
            logger.info("[Ledger] Code %s lost a concurrent redemption", tag)
            raise InvalidCode()
        logger.info("[Ledger] Code %s redeemed by %s", tag, email)

        # The code is spent from here on; an outage must not turn the login into an error
        try:
            fresh = self.store.find_by_email(email)
        except StoreUnavailable:
            logger.warning("[Ledger] Balance re-read failed after redeeming %s; using lookup value", tag)
            fresh = None
        balance = fresh.balance if fresh is not None else looked_up_balance
        return RedeemResult(email=email, balance=balance, verified=True)

    def get_balance(self, email: str) -> int:
        email = normalize_email(email)
        balance = self.store.get_balance(email)
        if balance is None:
            raise NotFound(email)
        return balance

    def request_login(self, email: str) -> LoginRequestResult:
        """
        Issue a fresh login code for email and send it. The account is created on the
        first request with the configured welcome bonus; existing balances are untouched.
        """
        email = normalize_email(email)

        for attempt in range(1, self.max_retries + 1):
            account = self.store.find_by_email(email)
            is_new_account = account is None
            if is_new_account and is_disposable_email(email):
                raise ValueError(
                    "Temporary or disposable email addresses are not allowed. "
                    "Please use a permanent email address."
                )

            current = account.balance if account else 0
            balance = self.welcome_bonus if is_new_account else current
            code = self._mint(email, balance)
            if self.store.upsert(email, balance, code, expected_balance=current):
                break
            logger.info("[Ledger] login code retry %s/%s for %s", attempt, self.max_retries, email)
        else:
            raise LedgerConflict(email, "request_login")

        logger.info(
            "[Ledger] Issued login code %s for %s (new=%s)",
            codes.fingerprint(code), email, is_new_account,
        )

        email_sent = False
        if self.notifier is not None:
            try:
                email_sent = self.notifier.send_login_code(email, code, balance, is_new_account)
            except Exception as e:
                logger.error("[Ledger] Login email for %s raised: %s", email, e)

        return LoginRequestResult(
            email=email,
            balance=balance,
            is_new_account=is_new_account,
            code=code,
            email_sent=email_sent,
        )

    def credit_payment(
        self,
        event_id: str,
        email: str,
        plan_id: str,
        amount_units: int,
        provider: str = "stripe",
    ) -> Optional[CreditResult]:
        """
        Apply a completed payment exactly once per provider event id.
        Returns None when the event was already applied.
        """
        email = normalize_email(email)
        if not self.store.claim_payment_event(event_id, email, plan_id, amount_units, provider):
            logger.info("[Ledger] Payment event %s already processed; skipping", event_id)
            return None

        try:
            result = self.credit(email, amount_units, reason=f"purchase:{plan_id}")
        except Exception:
            try:
                self.store.release_payment_event(event_id)
            except StoreUnavailable:
                logger.error("[Ledger] Could not release payment event %s", event_id)
            raise

        self.store.complete_payment_event(event_id)
        return result
