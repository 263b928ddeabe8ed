from .db import db
from .account import Account
from .auth_code import AuthCode
from .login_attempt import LoginAttempt
from .rate_limit_window import RateLimitWindow
from .revocation_entry import RevocationEntry
from .security_event import SecurityEvent
