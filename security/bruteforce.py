from collections import namedtuple
from datetime import timedelta

from security.errors import AccountLocked
from security.rate_limit import retry_after_seconds
from utils.clock import utcnow
from utils.logging import get_logger

log = get_logger(__name__)

LockoutStatus = namedtuple("LockoutStatus", ["failed_attempt_count", "locked_until"])


class LockoutGuard:
    """
    Per-email lockout: Open until `max_failures` consecutive failed
    verifications, then Locked for `lockout_minutes`. Unlocking is lazy,
    done by the first request that sees the lock has passed.
    """

    def __init__(self, store, max_failures: int = 5, lockout_minutes: int = 15, clock=utcnow):
        self.store = store
        self.max_failures = max_failures
        self.lockout = timedelta(minutes=lockout_minutes)
        self.clock = clock

    def status(self, email_key: str) -> LockoutStatus:
        row = self.store.get_login_attempt(email_key)
        if not row:
            return LockoutStatus(0, None)
        return LockoutStatus(row.fail_count, row.locked_until)

    def is_locked(self, email_key: str) -> tuple[bool, int]:
        """
        Returns (locked, seconds_remaining)
        """
        row = self.store.get_login_attempt(email_key)
        if not row or not row.locked_until:
            return False, 0

        now = self.clock()
        if row.locked_until > now:
            return True, retry_after_seconds(row.locked_until, now)

        if self.store.clear_expired_lock(email_key, now):
            log.info("lockout_cleared", email_key=email_key)
        return False, 0

    def ensure_open(self, email_key: str) -> None:
        locked, seconds = self.is_locked(email_key)
        if locked:
            raise AccountLocked(self.clock() + timedelta(seconds=seconds), seconds)

    def register_failure(self, email_key: str) -> tuple[int, bool]:
        """
        Increments failure counter. Returns (fail_count, locked_now).
        Locks on exactly the `max_failures`-th failure.
        """
        now = self.clock()
        state = self.store.record_failure(email_key, now)

        locked_now = False
        if state.fail_count >= self.max_failures:
            self.store.lock(email_key, now + self.lockout, now)
            locked_now = True
            log.warning("lockout_engaged", email_key=email_key, fail_count=state.fail_count)
        return state.fail_count, locked_now

    def reset(self, email_key: str) -> None:
        """
        Clears failure counter after a successful verification.
        """
        self.store.reset_failures(email_key, self.clock())
