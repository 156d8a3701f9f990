import json

import pytest

from app.client.session import SessionClient, SessionError, format_token_count
from app.services import redemption_codes as codes

ADMIN_KEY = "test-admin-key"


@pytest.mark.parametrize("tokens, expected", [
    (1_250_000, "1.25m"),
    (2_000_000, "2.00m"),
    (354_000, "354k"),
    (1_500, "1.5k"),
    (1_250, "1.3k"),
    (1_005_000, "1.01m"),
    (999, "999"),
    (0, "0"),
])
def test_format_token_count(tokens, expected):
    assert format_token_count(tokens) == expected


def test_login_caches_identity_and_balance(client, notifier, tmp_path):
    cache = tmp_path / "session.json"
    session = SessionClient(client, cache_path=str(cache))

    session.request_login("kid@superfun.games")
    state = session.login(notifier.last_code)

    assert (state.email, state.balance, state.verified) == ("kid@superfun.games", 0, True)
    assert json.loads(cache.read_text())["email"] == "kid@superfun.games"
    assert SessionClient(client, cache_path=str(cache)).email == "kid@superfun.games"


def test_server_balance_overwrites_stale_cache(client, store, tmp_path):
    cache = tmp_path / "session.json"
    cache.write_text(json.dumps({"email": "a@x.com", "balance": 999_999, "verified": True}))
    store.upsert("a@x.com", 500, None)
    session = SessionClient(client, cache_path=str(cache))

    assert session.has_balance()
    state = session.purchase("micro", admin_key=ADMIN_KEY)

    assert state.balance == 200_500
    assert session.refresh().balance == 200_500


def test_spending_requires_a_session(client):
    session = SessionClient(client)

    with pytest.raises(SessionError) as excinfo:
        session.spend(10)

    assert excinfo.value.status_code == 401


def test_refresh_for_missing_account_clears_session(client, tmp_path):
    cache = tmp_path / "session.json"
    cache.write_text(json.dumps({"email": "gone@x.com", "balance": 40}))
    session = SessionClient(client, cache_path=str(cache))

    assert session.refresh() is None
    assert session.email is None
    assert not session.has_balance()
    assert not cache.exists()


def test_corrupt_cache_is_discarded(client, tmp_path):
    cache = tmp_path / "session.json"
    cache.write_text("{not json")

    session = SessionClient(client, cache_path=str(cache))

    assert session.state is None
    assert not cache.exists()


def test_failed_login_keeps_no_session(client):
    session = SessionClient(client)

    with pytest.raises(SessionError) as excinfo:
        session.login("ZZZZ-ZZZZ-ZZZZ")

    assert excinfo.value.status_code == 401
    assert session.state is None


def test_unverified_snapshot_login(client):
    session = SessionClient(client)

    state = session.login(codes.mint_with_snapshot(7_000))

    assert (state.email, state.balance, state.verified) == (None, 7_000, False)
    assert session.refresh() is state


def test_spend_and_logout(client, notifier, store):
    store.upsert("a@x.com", 1000, None)
    session = SessionClient(client)
    session.request_login("a@x.com")
    session.login(notifier.last_code)

    assert session.spend(400).balance == 600
    with pytest.raises(SessionError) as excinfo:
        session.spend(5_000)
    assert excinfo.value.status_code == 402
    assert session.balance == 600

    session.logout()
    assert session.state is None
    assert not session.has_balance()
