from app.dependencies.ledger import get_ledger
from app.main import app
from app.services.account_store import StoreUnavailable

ADMIN = {"X-Admin-Key": "test-admin-key"}


def _purchase(client, email="a@x.com", plan_id="micro", **extra):
    return client.post("/purchase", json={"email": email, "planId": plan_id, **extra}, headers=ADMIN)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_purchase_login_and_code_reuse(client, notifier):
    response = _purchase(client)
    assert response.status_code == 200
    assert response.json() == {"previousBalance": 0, "newBalance": 200_000}

    code = notifier.last_code
    login = client.post("/login", json={"code": code})
    assert login.status_code == 200
    assert login.json() == {"email": "a@x.com", "balance": 200_000, "verified": True}

    reused = client.post("/login", json={"code": code})
    assert reused.status_code == 401
    assert reused.json()["detail"] == "Invalid or expired code"


def test_unknown_and_used_codes_look_the_same(client, notifier):
    _purchase(client)
    code = notifier.last_code
    client.post("/login", json={"code": code})

    used = client.post("/login", json={"code": code})
    unknown = client.post("/login", json={"code": "ZZZZ-ZZZZ-ZZZZ"})

    assert used.status_code == unknown.status_code == 401
    assert used.json() == unknown.json()


def test_purchase_requires_admin_key(client):
    missing = client.post("/purchase", json={"email": "a@x.com", "planId": "micro"})
    wrong = client.post(
        "/purchase", json={"email": "a@x.com", "planId": "micro"}, headers={"X-Admin-Key": "nope"}
    )

    assert missing.status_code == 403
    assert wrong.status_code == 403
    assert client.get("/balance", params={"email": "a@x.com"}).status_code == 404


def test_purchase_ignores_client_balance_hint(client, store):
    store.upsert("a@x.com", 500, None)

    response = _purchase(client, clientBalanceHint=999_999)

    assert response.json() == {"previousBalance": 500, "newBalance": 200_500}


def test_purchase_unknown_plan(client):
    response = _purchase(client, plan_id="mega")

    assert response.status_code == 400
    assert "Invalid plan" in response.json()["detail"]


def test_spend_more_than_balance(client, store):
    store.upsert("a@x.com", 300, None)

    response = client.post("/spend", json={"email": "a@x.com", "amountUnits": 500})

    assert response.status_code == 402
    assert client.get("/balance", params={"email": "a@x.com"}).json()["balance"] == 300


def test_spend_then_balance(client, store):
    store.upsert("a@x.com", 1000, None)

    response = client.post("/spend", json={"email": "a@x.com", "amountUnits": 400})
    balance = client.get("/balance", params={"email": "A@x.com"})

    assert response.json() == {"previousBalance": 1000, "newBalance": 600}
    assert balance.status_code == 200
    assert balance.json()["email"] == "a@x.com"
    assert balance.json()["balance"] == 600
    assert balance.json()["updatedAt"]


def test_spend_unknown_account(client):
    response = client.post("/spend", json={"email": "ghost@x.com", "amountUnits": 1})

    assert response.status_code == 404


def test_spend_rejects_non_positive_amount(client, store):
    store.upsert("a@x.com", 1000, None)

    response = client.post("/spend", json={"email": "a@x.com", "amountUnits": 0})

    assert response.status_code == 422


def test_login_request_creates_account_and_emails_code(client, notifier):
    first = client.post("/login/request", json={"email": "kid@superfun.games"})
    second = client.post("/login/request", json={"email": "kid@superfun.games"})

    assert first.status_code == 200
    assert first.json()["isNewAccount"] is True
    assert second.json()["isNewAccount"] is False
    assert len(notifier.login_codes) == 2

    login = client.post("/login", json={"code": notifier.last_code})
    assert login.json() == {"email": "kid@superfun.games", "balance": 0, "verified": True}


def test_login_request_rejects_disposable_email(client):
    response = client.post("/login/request", json={"email": "someone@mailinator.com"})

    assert response.status_code == 400
    assert "disposable" in response.json()["detail"]


def test_store_outage_is_503(client):
    class UnreachableLedger:
        def debit(self, email, amount):
            raise StoreUnavailable("find_by_email")

    app.dependency_overrides[get_ledger] = lambda: UnreachableLedger()

    response = client.post("/spend", json={"email": "a@x.com", "amountUnits": 5})

    assert response.status_code == 503
