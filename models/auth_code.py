import uuid

from models.db import db
from utils.clock import utcnow


class AuthCode(db.Model):
    __tablename__ = "auth_codes"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email_key = db.Column(db.String(64), nullable=False, index=True)

    # bcrypt digest; the plaintext code is never stored
    code_hash = db.Column(db.String(128), nullable=False)

    expires_at = db.Column(db.DateTime, nullable=False)
    used = db.Column(db.Boolean, default=False, nullable=False)
    attempts = db.Column(db.Integer, default=0, nullable=False)

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        # At most one unused code per email, even under concurrent requests
        db.Index(
            "uq_auth_codes_email_unused",
            "email_key",
            unique=True,
            sqlite_where=db.text("NOT used"),
            postgresql_where=db.text("NOT used"),
        ),
    )
