from models.db import db
from utils.clock import utcnow

SEVERITY_LOW = "low"
SEVERITY_MEDIUM = "medium"
SEVERITY_HIGH = "high"


class SecurityEvent(db.Model):
    __tablename__ = "security_events"

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.String(36), nullable=True, index=True)  # nullable for unauth events
    action = db.Column(db.String(80), nullable=False)  # e.g. AUTH_CODE_REQUESTED, LOGIN_SUCCESS

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    details = db.Column(db.Text, nullable=True)
    severity = db.Column(db.String(10), nullable=False, default=SEVERITY_LOW)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "account_id": self.account_id,
            "action": self.action,
            "ip": self.ip,
            "user_agent": self.user_agent,
            "details": self.details,
            "severity": self.severity,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
