"""
One-time login/redeem codes.

Two shapes are minted:
- plain codes: 12 random Crockford base-32 characters (60 bits), shown as XXXX-XXXX-XXXX.
  Resolved only through the accounts table.
- snapshot codes: S<thousands>-<random>-<issued minute>-<tag>. They carry a signed, lossy
  copy of the balance (truncated to the nearest 1000) so a login can still show a balance
  when the accounts row is not there yet. Never authoritative when the store knows the code.
"""
import base64
import hashlib
import hmac
import os
import secrets
from datetime import datetime, timezone
from typing import Optional

CODE_SIGNING_SECRET = os.getenv("CODE_SIGNING_SECRET", "dev-code-signing-secret-change-me")
SNAPSHOT_CODE_TTL_MINUTES = int(os.getenv("SNAPSHOT_CODE_TTL_MINUTES", "60"))

CROCKFORD_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
PLAIN_CODE_LENGTH = 12
SNAPSHOT_RANDOM_LENGTH = 8
SNAPSHOT_GRANULARITY = 1000

# Characters people confuse when typing a code from an email
_LOOKALIKES = str.maketrans({"O": "0", "I": "1", "L": "1"})


def _random_chars(length: int) -> str:
    return "".join(secrets.choice(CROCKFORD_ALPHABET) for _ in range(length))


def _to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("base36 value must be non-negative")
    digits = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def _group(raw: str) -> str:
    return "-".join(raw[i:i + 4] for i in range(0, len(raw), 4))


def _tag(body: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), body.encode(), hashlib.sha256).digest()
    return base64.b32encode(digest[:5]).decode()


def _epoch_minute(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() // 60)


def mint(email: str) -> str:
    """
    Return a fresh plain code. The email does not influence the value;
    uniqueness comes from 60 bits of randomness.
    """
    return _group(_random_chars(PLAIN_CODE_LENGTH))


def mint_with_snapshot(
    balance: int,
    issued_at: Optional[datetime] = None,
    secret: Optional[str] = None,
) -> str:
    """Return a code embedding balance // 1000, the issue minute and an HMAC tag."""
    if balance < 0:
        raise ValueError("balance must be non-negative")
    issued_at = issued_at or datetime.now(timezone.utc)
    body = "-".join([
        "S" + _to_base36(balance // SNAPSHOT_GRANULARITY),
        _random_chars(SNAPSHOT_RANDOM_LENGTH),
        _to_base36(_epoch_minute(issued_at)),
    ])
    return f"{body}-{_tag(body, secret or CODE_SIGNING_SECRET)}"


def is_snapshot_code(code: str) -> bool:
    parts = normalize(code).split("-")
    return len(parts) == 4 and parts[0].startswith("S") and len(parts[0]) > 1


def decode_snapshot(
    code: str,
    now: Optional[datetime] = None,
    secret: Optional[str] = None,
    ttl_minutes: Optional[int] = None,
) -> Optional[int]:
    """
    Return the (truncated) balance carried by a snapshot code, or None when the code
    is not a snapshot code, its tag does not verify, or it has expired.
    """
    if not code:
        return None
    normalized = normalize(code)
    if not is_snapshot_code(normalized):
        return None
    head, random_part, minute_part, tag = normalized.split("-")
    if len(random_part) != SNAPSHOT_RANDOM_LENGTH:
        return None

    body = f"{head}-{random_part}-{minute_part}"
    if not hmac.compare_digest(tag, _tag(body, secret or CODE_SIGNING_SECRET)):
        return None

    try:
        thousands = int(head[1:], 36)
        issued_minute = int(minute_part, 36)
    except ValueError:
        return None

    ttl = SNAPSHOT_CODE_TTL_MINUTES if ttl_minutes is None else ttl_minutes
    now_minute = _epoch_minute(now or datetime.now(timezone.utc))
    if issued_minute > now_minute + 1 or now_minute - issued_minute > ttl:
        return None
    return thousands * SNAPSHOT_GRANULARITY


def normalize(code: str) -> str:
    """
    Canonical form used for storage and lookup.
    Plain codes tolerate lowercase, spaces, missing dashes and O/I/L look-alikes.
    """
    cleaned = "".join((code or "").split()).upper()
    parts = cleaned.split("-")
    if len(parts) == 4 and parts[0].startswith("S"):
        return cleaned
    compact = cleaned.replace("-", "").translate(_LOOKALIKES)
    if len(compact) == PLAIN_CODE_LENGTH and all(c in CROCKFORD_ALPHABET for c in compact):
        return _group(compact)
    return cleaned


def fingerprint(code: str) -> str:
    """Short, non-reversible identifier for logs."""
    return hashlib.sha256(normalize(code).encode()).hexdigest()[:10]


def digest(code: str) -> str:
    """Full SHA-256 of the normalized code; what the store keeps for issued codes."""
    return hashlib.sha256(normalize(code).encode()).hexdigest()
