import os

# Configure before any app module reads its environment
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["CODE_SIGNING_SECRET"] = "test-code-signing-secret"
os.environ["RESEND_API_KEY"] = ""
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ["SNAPSHOT_CODES_ENABLED"] = "false"
os.environ["WELCOME_BONUS_TOKENS"] = "0"

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.db.base import Base
from app.db.session import SessionLocal, engine, get_db
import app.models  # noqa: F401
from app.services.account_store import AccountStore
from app.services.ledger import LedgerService


class FakeNotifier:
    def __init__(self) -> None:
        self.purchase_codes: list[tuple[str, str, int, int, str]] = []
        self.login_codes: list[tuple[str, str, int, bool]] = []
        self.fail = False

    def send_purchase_code(self, to_email, code, amount, new_balance, reason):
        if self.fail:
            raise RuntimeError("smtp down")
        self.purchase_codes.append((to_email, code, amount, new_balance, reason))
        return True

    def send_login_code(self, to_email, code, balance, is_new_account):
        if self.fail:
            raise RuntimeError("smtp down")
        self.login_codes.append((to_email, code, balance, is_new_account))
        return True

    @property
    def last_code(self) -> str:
        sent = self.purchase_codes + self.login_codes
        return sent[-1][1]


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db) -> AccountStore:
    return AccountStore(db)


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def ledger(store, notifier) -> LedgerService:
    return LedgerService(store, notifier=notifier)


@pytest.fixture
def client(db, notifier):
    from app.dependencies.ledger import get_ledger
    from app.main import app

    def _ledger_with_fake_notifier(session: Session = Depends(get_db)) -> LedgerService:
        return LedgerService(AccountStore(session), notifier=notifier)

    app.dependency_overrides[get_ledger] = _ledger_with_fake_notifier
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
