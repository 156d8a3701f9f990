from types import SimpleNamespace

import stripe


def test_checkout_session_for_plan(client, monkeypatch):
    created = {}

    def fake_create(**kwargs):
        created.update(kwargs)
        return SimpleNamespace(id="cs_test_123", url="https://checkout.stripe.com/c/pay/cs_test_123")

    monkeypatch.setattr(stripe, "api_key", "sk_test_123")
    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)

    response = client.post("/api/stripe/create-checkout-session", json={"email": "A@x.com", "planId": "tinker"})

    assert response.status_code == 200
    assert response.json() == {
        "checkoutUrl": "https://checkout.stripe.com/c/pay/cs_test_123",
        "sessionId": "cs_test_123",
    }
    assert created["mode"] == "payment"
    assert created["line_items"][0]["price_data"]["unit_amount"] == 1500
    assert created["metadata"] == {"email": "a@x.com", "plan": "tinker", "tokens": "500000"}


def test_checkout_rejects_unknown_plan(client, monkeypatch):
    monkeypatch.setattr(stripe, "api_key", "sk_test_123")

    response = client.post("/api/stripe/create-checkout-session", json={"email": "a@x.com", "planId": "mega"})

    assert response.status_code == 400


def test_checkout_without_stripe_configured(client, monkeypatch):
    monkeypatch.setattr(stripe, "api_key", None)

    response = client.post("/api/stripe/create-checkout-session", json={"email": "a@x.com", "planId": "micro"})

    assert response.status_code == 500
