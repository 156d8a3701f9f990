"""
Email address helpers: normalization and the disposable/temporary domain blocklist.
Accounts are keyed by normalized email, so every entry point goes through normalize_email.
"""
import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)

BLOCKLIST_PATH = os.path.join(os.path.dirname(__file__), "..", "data", "disposable_email_blocklist.txt")

_blocked_domains: Optional[frozenset] = None


def normalize_email(email: str) -> str:
    """
    Lowercase and strip an email address.
    Raises ValueError for values that cannot be an address at all.
    """
    normalized = (email or "").strip().lower()
    local, _, domain = normalized.rpartition("@")
    if not local or not domain or " " in normalized:
        raise ValueError("Invalid email format.")
    return normalized


def _blocklist() -> frozenset:
    global _blocked_domains
    if _blocked_domains is not None:
        return _blocked_domains

    try:
        with open(BLOCKLIST_PATH, encoding="utf-8") as f:
            entries = (line.strip().lower() for line in f)
            _blocked_domains = frozenset(e for e in entries if e and not e.startswith("#"))
    except FileNotFoundError:
        logger.warning("Disposable email blocklist missing at %s; nothing will be blocked", BLOCKLIST_PATH)
        _blocked_domains = frozenset()
        return _blocked_domains

    logger.info("Disposable email blocklist: %s domains", len(_blocked_domains))
    return _blocked_domains


def ensure_blocklist_loaded() -> int:
    """Load blocklist at startup so a missing file shows up early. Returns the domain count."""
    return len(_blocklist())


def is_disposable_email(email: str) -> bool:
    """True when the domain, or any parent domain (x.mailinator.com), is blocklisted."""
    if not email or "@" not in email:
        return False
    labels = email.strip().lower().rpartition("@")[2].split(".")
    blocked = _blocklist()
    return any(".".join(labels[i:]) in blocked for i in range(len(labels) - 1))
