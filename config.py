import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _csv(name: str) -> list:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")
    # Keys the email lookup digest; falls back to SECRET_KEY
    EMAIL_LOOKUP_KEY = os.getenv("EMAIL_LOOKUP_KEY")

    # SQLite database file stored beside the app as illustauto.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "illustauto.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Signed tokens (access and refresh use independent secrets)
    JWT_SECRET = os.getenv("JWT_SECRET", "dev-only-access-secret-change-me")
    JWT_REFRESH_SECRET = os.getenv("JWT_REFRESH_SECRET", "dev-only-refresh-secret-change-me")
    JWT_ISSUER = os.getenv("JWT_ISSUER", "illustauto")
    JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "illustauto-users")
    ACCESS_TOKEN_TTL_SECONDS = int(os.getenv("ACCESS_TOKEN_TTL_SECONDS", str(24 * 60 * 60)))
    REFRESH_TOKEN_TTL_SECONDS = int(os.getenv("REFRESH_TOKEN_TTL_SECONDS", str(7 * 24 * 60 * 60)))

    # One-time email codes
    AUTH_CODE_TTL_SECONDS = int(os.getenv("AUTH_CODE_TTL_SECONDS", "300"))  # 5 minutes
    AUTH_CODE_COOLDOWN_SECONDS = int(os.getenv("AUTH_CODE_COOLDOWN_SECONDS", "60"))
    AUTH_CODE_MAX_ATTEMPTS = int(os.getenv("AUTH_CODE_MAX_ATTEMPTS", "5"))
    AUTH_CODE_HASH_ROUNDS = int(os.getenv("AUTH_CODE_HASH_ROUNDS", "10"))

    # Brute-force protection
    MAX_FAILED_ATTEMPTS = int(os.getenv("MAX_FAILED_ATTEMPTS", "5"))
    LOCKOUT_MINUTES = int(os.getenv("LOCKOUT_MINUTES", "15"))

    # Rate limits (per IP and per email digest)
    CODE_REQUEST_RATE_WINDOW_SECONDS = int(os.getenv("CODE_REQUEST_RATE_WINDOW_SECONDS", "900"))
    CODE_REQUEST_RATE_MAX = int(os.getenv("CODE_REQUEST_RATE_MAX", "3"))
    VERIFY_RATE_WINDOW_SECONDS = int(os.getenv("VERIFY_RATE_WINDOW_SECONDS", "900"))
    VERIFY_RATE_MAX = int(os.getenv("VERIFY_RATE_MAX", "5"))

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"
    EMAIL_SEND_TIMEOUT_SECONDS = float(os.getenv("EMAIL_SEND_TIMEOUT_SECONDS", "10"))
    # Development only: log the code when SMTP is not configured
    EMAIL_CONSOLE_FALLBACK = os.getenv("EMAIL_CONSOLE_FALLBACK", "false").lower() == "true"

    # Seed inputs
    ADMIN_EMAILS = _csv("ADMIN_EMAILS")
    ALLOWED_EMAILS = _csv("ALLOWED_EMAILS")

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_JSON = os.getenv("LOG_JSON", "true").lower() == "true"

    # Basic app settings
    DEBUG = False
