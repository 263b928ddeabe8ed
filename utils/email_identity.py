import hashlib
import hmac
import re

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def is_valid_email(email: str) -> bool:
    return isinstance(email, str) and len(email) <= 255 and _EMAIL_RE.match(email) is not None


def email_lookup_key(email: str, key: str) -> str:
    """
    Deterministic one-way digest of the normalized email.
    Used as the indexed column so lookups never need the raw address.
    """
    return hmac.new(
        key.encode("utf-8"),
        normalize_email(email).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
