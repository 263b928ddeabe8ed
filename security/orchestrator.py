from collections import namedtuple
from datetime import timedelta

from models.account import ROLE_ADMIN
from security.errors import TokenInvalid
from utils.clock import utcnow
from utils.logging import get_logger

log = get_logger(__name__)

LoginResult = namedtuple(
    "LoginResult",
    ["account", "access_token", "refresh_token", "expires_in", "is_new_account"],
)
RefreshResult = namedtuple("RefreshResult", ["access_token", "expires_in"])
ValidationResult = namedtuple("ValidationResult", ["valid", "account"])


class AuthOrchestrator:
    """The externally visible auth flows, composed from the core services."""

    def __init__(self, store, codes, tokens, audit, *, rate_windows_seconds=(900,), clock=utcnow):
        self.store = store
        self.codes = codes
        self.tokens = tokens
        self.audit = audit
        self.rate_window = timedelta(seconds=max(rate_windows_seconds))
        self.clock = clock

    def request_code(self, email, ip=None, user_agent=None):
        return self.codes.request_code(email, ip, user_agent)

    def verify_code(self, email, code, ip=None, user_agent=None) -> LoginResult:
        login = self.codes.verify_code(email, code, ip, user_agent)
        pair = self.tokens.issue(login.account)
        return LoginResult(
            login.account,
            pair.access_token,
            pair.refresh_token,
            self.tokens.access_ttl_seconds,
            login.is_new_account,
        )

    def refresh(self, refresh_token) -> RefreshResult:
        return RefreshResult(self.tokens.refresh(refresh_token), self.tokens.access_ttl_seconds)

    def validate(self, token) -> ValidationResult:
        check = self.tokens.validate(token)
        return ValidationResult(check.valid, check.account)

    def authenticate(self, token):
        """Account behind a valid access token, or TokenInvalid."""
        check = self.tokens.validate(token)
        if not check.valid:
            raise TokenInvalid()
        return check.account

    def logout(self, access_token, refresh_token=None, ip=None, user_agent=None) -> bool:
        subject = self.tokens.subject_of(access_token)
        # nothing is revoked unless both tokens belong to one account
        if refresh_token and self.tokens.subject_of(refresh_token) != subject:
            log.warning("logout_subject_mismatch", account_id=subject)
            raise TokenInvalid("Refresh token belongs to another account")
        claims = self.tokens.revoke(access_token, ip, user_agent)
        if refresh_token:
            self.tokens.revoke(refresh_token, ip, user_agent)
        self.audit.record(claims["sub"], "LOGOUT", ip, user_agent, None)
        return True

    def security_events(self, account_id=None, action=None, limit=200):
        return self.audit.events(account_id=account_id, action=action, limit=limit)

    def make_admin(self, email) -> bool:
        account = self.store.get_account_by_email_key(self.codes.lookup_key(email))
        if account is None:
            return False
        self.store.set_role(account.id, ROLE_ADMIN)
        self.audit.record(account.id, "ROLE_CHANGED", details={"role": ROLE_ADMIN})
        return True

    def cleanup(self) -> dict:
        counts = self.store.purge_expired(self.clock(), self.rate_window)
        log.info("maintenance_sweep", **counts)
        return counts
