from flask import Blueprint, current_app, g, jsonify, request

from models.account import ROLE_ADMIN
from security.rbac import require_roles
from utils.auth_context import login_required

security_events_bp = Blueprint("security_events", __name__)


def _list(account_id):
    limit = request.args.get("limit", type=int) or 200
    action = request.args.get("action")
    rows = current_app.extensions["auth"].security_events(
        account_id=account_id, action=action, limit=limit
    )
    return jsonify([r.to_dict() for r in rows]), 200


@security_events_bp.get("/auth/security-events")
@login_required
def own_security_events():
    return _list(g.account.id)


@security_events_bp.get("/admin/security-events")
@require_roles(ROLE_ADMIN)
def all_security_events():
    return _list(request.args.get("account_id"))
