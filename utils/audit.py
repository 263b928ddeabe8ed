import json

from models.security_event import SEVERITY_LOW
from security.errors import StoreUnavailable
from utils.clock import utcnow
from utils.logging import get_logger

log = get_logger(__name__)


class SecurityAuditLog:
    """Append-only security trail. Writing is best-effort."""

    def __init__(self, store, clock=utcnow):
        self.store = store
        self.clock = clock

    def record(self, account_id, action: str, ip=None, user_agent=None, details=None, severity=SEVERITY_LOW) -> bool:
        if details is not None and not isinstance(details, str):
            details = json.dumps(details, default=str)
        try:
            self.store.add_security_event(
                account_id=account_id,
                action=action,
                ip=ip,
                user_agent=user_agent[:255] if user_agent else None,
                details=details,
                severity=severity,
                now=self.clock(),
            )
        except StoreUnavailable:
            # the primary flow carries on; this line is what monitoring picks up
            log.error("audit_write_failed", action=action, severity=severity)
            return False
        return True

    def events(self, account_id=None, action=None, limit: int = 200):
        limit = max(1, min(int(limit or 200), 500))
        return self.store.list_security_events(account_id=account_id, action=action, limit=limit)
