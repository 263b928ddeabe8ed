import click
from flask import Flask
from flask_migrate import Migrate

from config import Config
from models import db
from models.store import PersistentStore
from routes import health_bp, auth_bp, security_events_bp
from security.auth_code import AuthCodeService
from security.bruteforce import LockoutGuard
from security.orchestrator import AuthOrchestrator
from security.rate_limit import RateLimiter
from security.tokens import TokenService
from utils.audit import SecurityAuditLog
from utils.auth_context import load_current_account
from utils.clock import utcnow
from utils.emailer import SmtpEmailSender
from utils.logging import configure_logging
from utils.roles import lookup_keys


def build_auth(config, session, clock=utcnow, email_sender=None) -> AuthOrchestrator:
    """Wire the auth core around one store; nothing here is global."""
    lookup_secret = config.get("EMAIL_LOOKUP_KEY") or config["SECRET_KEY"]

    store = PersistentStore(session)
    audit = SecurityAuditLog(store, clock=clock)
    rate_limiter = RateLimiter(store, clock=clock)
    lockout = LockoutGuard(
        store,
        max_failures=config["MAX_FAILED_ATTEMPTS"],
        lockout_minutes=config["LOCKOUT_MINUTES"],
        clock=clock,
    )
    codes = AuthCodeService(
        store,
        rate_limiter,
        lockout,
        audit,
        email_sender or SmtpEmailSender.from_config(config),
        lookup_secret=lookup_secret,
        code_ttl_seconds=config["AUTH_CODE_TTL_SECONDS"],
        cooldown_seconds=config["AUTH_CODE_COOLDOWN_SECONDS"],
        max_code_attempts=config["AUTH_CODE_MAX_ATTEMPTS"],
        hash_rounds=config["AUTH_CODE_HASH_ROUNDS"],
        request_window_seconds=config["CODE_REQUEST_RATE_WINDOW_SECONDS"],
        request_max=config["CODE_REQUEST_RATE_MAX"],
        verify_window_seconds=config["VERIFY_RATE_WINDOW_SECONDS"],
        verify_max=config["VERIFY_RATE_MAX"],
        admin_keys=lookup_keys(config.get("ADMIN_EMAILS"), lookup_secret),
        allowed_keys=lookup_keys(config.get("ALLOWED_EMAILS"), lookup_secret),
        clock=clock,
    )
    tokens = TokenService(
        store,
        audit,
        access_secret=config["JWT_SECRET"],
        refresh_secret=config["JWT_REFRESH_SECRET"],
        issuer=config["JWT_ISSUER"],
        audience=config["JWT_AUDIENCE"],
        access_ttl_seconds=config["ACCESS_TOKEN_TTL_SECONDS"],
        refresh_ttl_seconds=config["REFRESH_TOKEN_TTL_SECONDS"],
        clock=clock,
    )
    return AuthOrchestrator(
        store,
        codes,
        tokens,
        audit,
        rate_windows_seconds=(
            config["CODE_REQUEST_RATE_WINDOW_SECONDS"],
            config["VERIFY_RATE_WINDOW_SECONDS"],
        ),
        clock=clock,
    )


def create_app(config_overrides=None, clock=None, email_sender=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    configure_logging(app.config["LOG_LEVEL"], app.config["LOG_JSON"])

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(security_events_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    app.extensions["auth"] = build_auth(
        app.config, db.session, clock=clock or utcnow, email_sender=email_sender
    )

    @app.before_request
    def _load_account():
        load_current_account()

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Cache-Control"] = "no-store"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app


def register_cli(app):
    @app.cli.command("make-admin")
    @click.argument("email")
    def make_admin(email):
        """Promote an existing account to admin by email."""
        if not app.extensions["auth"].make_admin(email):
            click.echo("Account not found")
            return
        click.echo(f"{email.strip().lower()} promoted to admin")

    @app.cli.command("auth-cleanup")
    def auth_cleanup():
        """Delete expired codes, revocations, rate windows and idle lockout rows."""
        counts = app.extensions["auth"].cleanup()
        for table, count in counts.items():
            click.echo(f"{table}: {count} removed")


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
