"""
Client-side session cache for the ledger API.

Keeps the last known identity and balance (optionally persisted to a JSON file, the
counterpart of the browser's localStorage entry). The cached balance is only a hint:
every authoritative response from the server overwrites it.
"""
import json
import logging
import os
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


def _half_up(value: Decimal, places: str) -> Decimal:
    return value.quantize(Decimal(places), rounding=ROUND_HALF_UP)


def format_token_count(tokens: int) -> str:
    """1,250,000 -> "1.25m", 354,000 -> "354k", 1,250 -> "1.3k", 999 -> "999". Halves round up."""
    if tokens >= 1_000_000:
        return f"{_half_up(Decimal(tokens) / 1_000_000, '0.01')}m"
    if tokens >= 1000:
        if tokens % 1000 == 0:
            return f"{tokens // 1000}k"
        return str(_half_up(Decimal(tokens) / 1000, "0.1")).rstrip("0").rstrip(".") + "k"
    return str(tokens)


class SessionError(Exception):
    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class SessionState:
    email: Optional[str]
    balance: int
    verified: bool = True


class SessionClient:
    def __init__(self, http: httpx.Client, cache_path: Optional[str] = None):
        self.http = http
        self.cache_path = cache_path
        self.state: Optional[SessionState] = self._load()

    def _load(self) -> Optional[SessionState]:
        if not self.cache_path or not os.path.exists(self.cache_path):
            return None
        try:
            with open(self.cache_path) as f:
                data = json.load(f)
            return SessionState(
                email=data.get("email"),
                balance=int(data.get("balance", 0)),
                verified=bool(data.get("verified", True)),
            )
        except (OSError, ValueError, TypeError, AttributeError):
            logger.warning("[Session] Discarding unreadable session cache %s", self.cache_path)
            self._remove_cache()
            return None

    def _save(self, state: SessionState) -> SessionState:
        self.state = state
        if self.cache_path:
            with open(self.cache_path, "w") as f:
                json.dump(asdict(state), f)
        return state

    def _remove_cache(self) -> None:
        if self.cache_path and os.path.exists(self.cache_path):
            os.remove(self.cache_path)

    @staticmethod
    def _check(response: httpx.Response) -> Dict[str, Any]:
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail")
            except ValueError:
                detail = None
            raise SessionError(detail or response.reason_phrase or "Request failed", response.status_code)
        return response.json()

    @property
    def email(self) -> Optional[str]:
        return self.state.email if self.state else None

    @property
    def balance(self) -> int:
        return self.state.balance if self.state else 0

    def login(self, code: str) -> SessionState:
        data = self._check(self.http.post("/login", json={"code": code}))
        return self._save(SessionState(
            email=data.get("email"),
            balance=data["balance"],
            verified=data.get("verified", True),
        ))

    def request_login(self, email: str) -> Dict[str, Any]:
        return self._check(self.http.post("/login/request", json={"email": email}))

    def refresh(self) -> Optional[SessionState]:
        """Resync the cached balance from the server. A missing account clears the session."""
        if not self.email:
            return self.state
        response = self.http.get("/balance", params={"email": self.email})
        if response.status_code == 404:
            logger.info("[Session] Account %s no longer exists; clearing session", self.email)
            self.logout()
            return None
        data = self._check(response)
        return self._save(SessionState(email=data["email"], balance=data["balance"], verified=True))

    def purchase(self, plan_id: str, admin_key: Optional[str] = None) -> SessionState:
        if not self.email:
            raise SessionError("Log in before purchasing tokens", 401)
        headers = {"X-Admin-Key": admin_key} if admin_key else {}
        data = self._check(self.http.post(
            "/purchase",
            json={"email": self.email, "planId": plan_id, "clientBalanceHint": self.balance},
            headers=headers,
        ))
        return self._save(SessionState(email=self.email, balance=data["newBalance"], verified=True))

    def spend(self, amount: int) -> SessionState:
        if not self.email:
            raise SessionError("Log in before spending tokens", 401)
        data = self._check(self.http.post(
            "/spend", json={"email": self.email, "amountUnits": amount}
        ))
        return self._save(SessionState(email=self.email, balance=data["newBalance"], verified=True))

    def has_balance(self) -> bool:
        """Cached hint for the UI; the server still enforces the real balance."""
        return self.balance > 0

    def logout(self) -> None:
        self.state = None
        self._remove_cache()
