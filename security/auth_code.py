import re
import secrets
from collections import namedtuple
from datetime import timedelta

import bcrypt

from models.rate_limit_window import (
    ACTION_CODE_REQUEST,
    ACTION_VERIFY_ATTEMPT,
    KIND_EMAIL,
    KIND_IP,
)
from models.security_event import SEVERITY_HIGH, SEVERITY_LOW, SEVERITY_MEDIUM
from security.errors import (
    AccountLocked,
    AuthError,
    CodeAttemptsExceeded,
    CodeInvalid,
    CodeNotFoundOrExpired,
    Cooldown,
    EmailNotAllowed,
    InvalidInput,
    RateLimited,
)
from security.rate_limit import retry_after_seconds
from utils.clock import utcnow
from utils.email_identity import email_lookup_key, is_valid_email, normalize_email
from utils.logging import get_logger
from utils.roles import role_for_new_account

log = get_logger(__name__)

CODE_LENGTH = 6
_CODE_RE = re.compile(r"^\d{%d}$" % CODE_LENGTH)

CodeIssued = namedtuple("CodeIssued", ["code_id", "expires_at", "next_request_allowed_at"])
VerifiedLogin = namedtuple("VerifiedLogin", ["account", "is_new_account"])

_CODE_FAILURES = (CodeInvalid, CodeAttemptsExceeded, CodeNotFoundOrExpired)


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** CODE_LENGTH):0{CODE_LENGTH}d}"


def hash_code(code: str, rounds: int = 10) -> str:
    return bcrypt.hashpw(code.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_code_hash(code: str, code_hash: str) -> bool:
    if not code or not code_hash:
        return False
    try:
        return bcrypt.checkpw(code.encode("utf-8"), code_hash.encode("utf-8"))
    except ValueError:
        return False


class AuthCodeService:
    """
    Issues and verifies one-time email codes.

    Verification never reads a code before claiming it: the claim is a
    conditional write, and only its winner compares digests. A mismatch
    hands the code back (until its attempt cap) and counts against the
    email's lockout.
    """

    def __init__(self, store, rate_limiter, lockout, audit, email_sender, *,
                 lookup_secret: str,
                 code_ttl_seconds: int = 300,
                 cooldown_seconds: int = 60,
                 max_code_attempts: int = 5,
                 hash_rounds: int = 10,
                 request_window_seconds: int = 900,
                 request_max: int = 3,
                 verify_window_seconds: int = 900,
                 verify_max: int = 5,
                 admin_keys=frozenset(),
                 allowed_keys=frozenset(),
                 clock=utcnow):
        self.store = store
        self.rate_limiter = rate_limiter
        self.lockout = lockout
        self.audit = audit
        self.email_sender = email_sender
        self.lookup_secret = lookup_secret
        self.code_ttl = timedelta(seconds=code_ttl_seconds)
        self.cooldown = timedelta(seconds=cooldown_seconds)
        self.max_code_attempts = max_code_attempts
        self.hash_rounds = hash_rounds
        self.request_window_seconds = request_window_seconds
        self.request_max = request_max
        self.verify_window_seconds = verify_window_seconds
        self.verify_max = verify_max
        self.admin_keys = admin_keys
        self.allowed_keys = allowed_keys
        self.clock = clock

    def lookup_key(self, email: str) -> str:
        return email_lookup_key(email, self.lookup_secret)

    # ---------- request ----------

    def request_code(self, email: str, ip=None, user_agent=None) -> CodeIssued:
        email = normalize_email(email)
        try:
            return self._request_code(email, ip, user_agent)
        except AuthError as exc:
            log.info("auth_code_request_rejected", kind=exc.kind)
            self.audit.record(
                None,
                "AUTH_CODE_REQUEST_FAILED",
                ip,
                user_agent,
                {"reason": exc.kind, "message": exc.message},
                SEVERITY_MEDIUM,
            )
            raise

    def _request_code(self, email, ip, user_agent) -> CodeIssued:
        if not is_valid_email(email):
            raise InvalidInput("Enter a valid email address")

        key = self.lookup_key(email)
        if self.allowed_keys and key not in self.allowed_keys:
            raise EmailNotAllowed()

        self.lockout.ensure_open(key)

        if ip:
            self._enforce_rate(ip, KIND_IP, ACTION_CODE_REQUEST,
                               self.request_window_seconds, self.request_max)
        self._enforce_rate(key, KIND_EMAIL, ACTION_CODE_REQUEST,
                           self.request_window_seconds, self.request_max)

        now = self.clock()
        last_created = self.store.latest_code_created_at(key)
        if last_created and now - last_created < self.cooldown:
            raise Cooldown(retry_after_seconds(last_created + self.cooldown, now))

        code = generate_code()
        expires_at = now + self.code_ttl
        row = self.store.issue_code(
            email_key=key,
            code_hash=hash_code(code, self.hash_rounds),
            expires_at=expires_at,
            ip=ip,
            user_agent=user_agent[:255] if user_agent else None,
            now=now,
            stale_before=now - self.cooldown,
        )
        if row is None:
            # a concurrent request for the same email stored its code first
            raise Cooldown(int(self.cooldown.total_seconds()))
        code_id = row.id

        # The stored row stays even if delivery fails
        self.email_sender.send(email, code)

        account = self.store.get_account_by_email_key(key)
        self.audit.record(
            account.id if account else None,
            "AUTH_CODE_REQUESTED",
            ip,
            user_agent,
            {"code_id": code_id},
            SEVERITY_LOW,
        )
        log.info("auth_code_issued", code_id=code_id)
        return CodeIssued(code_id, expires_at, now + self.cooldown)

    # ---------- verify ----------

    def verify_code(self, email: str, code: str, ip=None, user_agent=None) -> VerifiedLogin:
        email = normalize_email(email)
        code = (code or "").strip() if isinstance(code, str) else ""
        try:
            return self._verify_code(email, code, ip, user_agent)
        except AuthError as exc:
            severity = SEVERITY_HIGH if isinstance(exc, _CODE_FAILURES + (AccountLocked,)) else SEVERITY_MEDIUM
            log.info("auth_code_verify_rejected", kind=exc.kind)
            account = self._account_for(email)
            self.audit.record(
                account.id if account else None,
                "AUTH_FAILED",
                ip,
                user_agent,
                {"reason": exc.kind},
                severity,
            )
            raise

    def _account_for(self, email):
        if not is_valid_email(email):
            return None
        try:
            return self.store.get_account_by_email_key(self.lookup_key(email))
        except AuthError:
            return None

    def _verify_code(self, email, code, ip, user_agent) -> VerifiedLogin:
        if not is_valid_email(email):
            raise InvalidInput("Enter a valid email address")
        if not _CODE_RE.match(code):
            raise InvalidInput(f"The code must be {CODE_LENGTH} digits")

        key = self.lookup_key(email)
        self.lockout.ensure_open(key)

        if ip:
            self._enforce_rate(ip, KIND_IP, ACTION_VERIFY_ATTEMPT,
                               self.verify_window_seconds, self.verify_max)

        now = self.clock()
        claimed = self.store.claim_code(key, now, self.max_code_attempts)
        if claimed is None:
            attempts = self.store.unused_code_attempts(key, now)
            if attempts is not None and attempts >= self.max_code_attempts:
                raise CodeAttemptsExceeded()
            raise CodeNotFoundOrExpired()

        if not verify_code_hash(code, claimed.code_hash):
            attempts = self.store.release_code(claimed.id, key)
            fail_count, locked_now = self.lockout.register_failure(key)
            log.info("auth_code_mismatch", code_id=claimed.id, attempts=attempts, fail_count=fail_count)
            if locked_now:
                locked_until = now + self.lockout.lockout
                raise AccountLocked(locked_until, retry_after_seconds(locked_until, now),
                                    "Too many failed attempts. Account locked.")
            if attempts >= self.max_code_attempts:
                raise CodeAttemptsExceeded()
            raise CodeInvalid()

        # consumed for good
        account = self.store.get_account_by_email_key(key)
        created = False
        if account is None:
            account, created = self.store.create_account(
                email, key, role_for_new_account(key, self.admin_keys), now
            )
            if created:
                self.audit.record(account.id, "ACCOUNT_CREATED", ip, user_agent, None, SEVERITY_LOW)

        self.lockout.reset(key)
        self.store.record_login(account.id, ip, now)
        self.audit.record(account.id, "LOGIN_SUCCESS", ip, user_agent,
                          {"code_id": claimed.id}, SEVERITY_LOW)
        log.info("auth_code_verified", account_id=account.id, new_account=created)
        return VerifiedLogin(account, created)

    def _enforce_rate(self, identifier, kind, action, window_seconds, max_count):
        decision = self.rate_limiter.check(identifier, kind, action, window_seconds, max_count)
        if not decision.allowed:
            raise RateLimited(decision.reset_at, retry_after_seconds(decision.reset_at, self.clock()))
