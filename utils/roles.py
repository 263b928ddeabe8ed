from models.account import ROLE_ADMIN, ROLE_USER
from utils.email_identity import email_lookup_key


def lookup_keys(emails, secret: str) -> frozenset:
    return frozenset(email_lookup_key(e, secret) for e in emails or [] if e and e.strip())


def role_for_new_account(email_key: str, admin_keys) -> str:
    """Accounts whose email is on the ADMIN_EMAILS seed list start as admin."""
    return ROLE_ADMIN if email_key in admin_keys else ROLE_USER
