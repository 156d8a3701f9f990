"""
Credential store: durable persistence of accounts (email, balance, pending one-time code).

Every mutation is a single UPDATE/INSERT statement so that independent request handlers
racing on the same row cannot lose updates. Callers that computed a new balance from a
value they read earlier pass expected_balance, turning the write into a compare-and-set.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import delete, insert, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session

from app.models.account import Account
from app.models.issued_code import IssuedCode
from app.models.payment_event import PaymentEvent
from app.services.redemption_codes import digest, fingerprint

logger = logging.getLogger(__name__)


class StoreUnavailable(Exception):
    """The database could not be reached. State is unknown; callers must not assume zero."""

    def __init__(self, operation: str):
        super().__init__(f"Account store unavailable during {operation}")
        self.operation = operation


class AccountStore:
    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (OperationalError, InterfaceError) as e:
            self.db.rollback()
            logger.error("[AccountStore] %s failed, database unreachable: %s", operation, e)
            raise StoreUnavailable(operation) from e

    def find_by_email(self, email: str) -> Optional[Account]:
        with self._guard("find_by_email"):
            return (
                self.db.query(Account)
                .filter(Account.email == email)
                .populate_existing()
                .first()
            )

    def find_by_code(self, code: str, include_redeemed: bool = False) -> Optional[Account]:
        """
        Look up the account holding this code.
        Only live (unredeemed) codes match unless include_redeemed is set.
        """
        if not code:
            return None
        with self._guard("find_by_code"):
            query = self.db.query(Account).filter(Account.pending_code == code)
            if not include_redeemed:
                query = query.filter(Account.code_redeemed.is_(False))
            return query.populate_existing().first()

    def get_balance(self, email: str) -> Optional[int]:
        account = self.find_by_email(email)
        return account.balance if account else None

    def _record_issued(self, code: Optional[str], email: str, now: datetime) -> None:
        # Same transaction as the account write; a digest collision raises IntegrityError
        if code:
            self.db.execute(insert(IssuedCode).values(code_digest=digest(code), email=email, issued_at=now))

    def code_was_issued(self, code: str) -> bool:
        """True when this store ever issued the code, whatever happened to it since."""
        if not code:
            return False
        with self._guard("code_was_issued"):
            return self.db.get(IssuedCode, digest(code)) is not None

    def upsert(
        self,
        email: str,
        balance: int,
        code: Optional[str],
        expected_balance: Optional[int] = None,
    ) -> Optional[Account]:
        """
        Create the account, or replace its balance and pending code (resetting code_redeemed).

        This is a full replace: callers compute the new balance. With expected_balance the
        update only applies while the stored balance still equals it. Returns None when the
        write lost a race (balance changed, concurrent insert, or code collision).
        The new code is recorded in issued_codes in the same transaction.
        """
        if balance < 0:
            raise ValueError("balance must be non-negative")
        now = datetime.utcnow()

        with self._guard("upsert"):
            stmt = update(Account).where(Account.email == email)
            if expected_balance is not None:
                stmt = stmt.where(Account.balance == expected_balance)
            stmt = stmt.values(
                balance=balance,
                pending_code=code,
                code_redeemed=False,
                updated_at=now,
            ).execution_options(synchronize_session=False)

            try:
                result = self.db.execute(stmt)
                if result.rowcount == 1:
                    self._record_issued(code, email, now)
            except IntegrityError:
                self.db.rollback()
                logger.warning("[AccountStore] upsert for %s hit a duplicate pending code", email)
                return None

            if result.rowcount == 1:
                self.db.commit()
                return self.find_by_email(email)

            self.db.rollback()
            if self.find_by_email(email) is not None:
                # Row exists, so the compare-and-set guard did not match
                logger.info("[AccountStore] upsert for %s lost a concurrent update", email)
                return None

            account = Account(
                email=email,
                balance=balance,
                pending_code=code,
                code_redeemed=False,
                created_at=now,
                updated_at=now,
            )
            try:
                self._record_issued(code, email, now)
                self.db.add(account)
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                logger.info("[AccountStore] concurrent insert or code collision for %s", email)
                return None
            logger.info("[AccountStore] Created account %s", email)
            return self.find_by_email(email)

    def mark_code_redeemed(self, code: str) -> bool:
        """
        Flip code_redeemed for a live code. True exactly once per code, even when
        several callers race: the WHERE clause only matches while the code is unredeemed.
        """
        if not code:
            return False
        with self._guard("mark_code_redeemed"):
            result = self.db.execute(
                update(Account)
                .where(Account.pending_code == code, Account.code_redeemed.is_(False))
                .values(code_redeemed=True, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                logger.info("[AccountStore] code %s not redeemable", fingerprint(code))
                return False
            self.db.commit()
            return True

    def set_balance(
        self,
        email: str,
        new_balance: int,
        expected_balance: Optional[int] = None,
    ) -> bool:
        """Single-statement balance write; with expected_balance it is a compare-and-set."""
        if new_balance < 0:
            raise ValueError("balance must be non-negative")
        with self._guard("set_balance"):
            stmt = update(Account).where(Account.email == email)
            if expected_balance is not None:
                stmt = stmt.where(Account.balance == expected_balance)
            result = self.db.execute(
                stmt.values(balance=new_balance, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                return False
            self.db.commit()
            return True

    def claim_payment_event(
        self,
        event_id: str,
        email: str,
        plan_id: Optional[str],
        amount_units: int,
        provider: str = "stripe",
    ) -> bool:
        """
        Record a payment event before it is applied. False means the event id was
        already claimed (webhook redelivery) and must not be credited again.
        """
        with self._guard("claim_payment_event"):
            try:
                self.db.execute(insert(PaymentEvent).values(
                    event_id=event_id,
                    provider=provider,
                    email=email,
                    plan_id=plan_id,
                    amount_units=amount_units,
                    status="processing",
                    created_at=datetime.utcnow(),
                    updated_at=datetime.utcnow(),
                ))
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                return False
            return True

    def complete_payment_event(self, event_id: str) -> None:
        with self._guard("complete_payment_event"):
            self.db.execute(
                update(PaymentEvent)
                .where(PaymentEvent.event_id == event_id)
                .values(status="credited", updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            self.db.commit()

    def release_payment_event(self, event_id: str) -> None:
        """Forget a claimed event whose credit failed so the provider's retry can apply it."""
        with self._guard("release_payment_event"):
            self.db.execute(
                delete(PaymentEvent).where(
                    PaymentEvent.event_id == event_id,
                    PaymentEvent.status == "processing",
                )
            )
            self.db.commit()
