from models.db import db

KIND_IP = "ip"
KIND_EMAIL = "email"

ACTION_CODE_REQUEST = "code_request"
ACTION_VERIFY_ATTEMPT = "verify_attempt"


class RateLimitWindow(db.Model):
    __tablename__ = "rate_limits"

    id = db.Column(db.Integer, primary_key=True)

    # an IP address or an email lookup key
    identifier = db.Column(db.String(128), nullable=False)
    identifier_kind = db.Column(db.String(10), nullable=False)
    action = db.Column(db.String(32), nullable=False)

    count = db.Column(db.Integer, default=0, nullable=False)
    window_start = db.Column(db.DateTime, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("identifier", "identifier_kind", "action", name="uq_rate_limit_key"),
    )
