class AuthError(Exception):
    """
    Base for every failure the auth core reports to its caller.
    `kind` is the stable name routes and tests match on.
    """
    kind = "auth_error"
    message = "Authentication failed"

    def __init__(self, message=None, **detail):
        self.message = message or self.message
        self.detail = detail
        super().__init__(self.message)


class InvalidInput(AuthError):
    kind = "invalid_input"
    message = "Invalid input"


class EmailNotAllowed(InvalidInput):
    kind = "email_not_allowed"
    message = "This email address is not allowed to sign in"


class AccountLocked(AuthError):
    kind = "account_locked"
    message = "Account temporarily locked. Try again later."

    def __init__(self, locked_until, retry_after_seconds: int, message=None):
        super().__init__(message, retry_after_seconds=retry_after_seconds)
        self.locked_until = locked_until
        self.retry_after_seconds = retry_after_seconds


class RateLimited(AuthError):
    kind = "rate_limited"
    message = "Too many requests. Slow down."

    def __init__(self, reset_at, retry_after_seconds: int, message=None):
        super().__init__(
            message,
            reset_at=reset_at.isoformat(),
            retry_after_seconds=retry_after_seconds,
        )
        self.reset_at = reset_at
        self.retry_after_seconds = retry_after_seconds


class Cooldown(AuthError):
    kind = "cooldown"
    message = "A code was sent recently. Wait before requesting another."

    def __init__(self, retry_after_seconds: int, message=None):
        super().__init__(message, retry_after_seconds=retry_after_seconds)
        self.retry_after_seconds = retry_after_seconds


class CodeNotFoundOrExpired(AuthError):
    kind = "code_not_found_or_expired"
    message = "Code not found or expired"


class CodeAttemptsExceeded(AuthError):
    kind = "code_attempts_exceeded"
    message = "Too many attempts for this code"


class CodeInvalid(AuthError):
    kind = "code_invalid"
    message = "Invalid code"


class DeliveryFailed(AuthError):
    kind = "delivery_failed"
    message = "Could not deliver the code. Try again later."

    TIMEOUT = "timeout"
    REJECTED = "rejected"
    UNAUTHENTICATED = "unauthenticated"

    def __init__(self, reason: str, message=None):
        super().__init__(message, reason=reason)
        self.reason = reason


class TokenInvalid(AuthError):
    kind = "token_invalid"
    message = "Invalid or expired token"


class StoreUnavailable(AuthError):
    kind = "store_unavailable"
    message = "Service temporarily unavailable"
