from models.db import db
from utils.clock import utcnow


class RevocationEntry(db.Model):
    __tablename__ = "revoked_tokens"

    id = db.Column(db.Integer, primary_key=True)
    token_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    account_id = db.Column(db.String(36), nullable=True, index=True)

    # mirrors the token's own expiry so the row can be pruned afterwards
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
