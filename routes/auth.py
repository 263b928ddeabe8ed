from flask import Blueprint, request, jsonify, current_app, g

from security.errors import (
    AccountLocked,
    AuthError,
    CodeAttemptsExceeded,
    CodeInvalid,
    CodeNotFoundOrExpired,
    Cooldown,
    DeliveryFailed,
    InvalidInput,
    RateLimited,
    StoreUnavailable,
    TokenInvalid,
)
from utils.auth_context import client_ip, client_user_agent, login_required
from utils.logging import get_logger

log = get_logger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

# Wrong, expired and exhausted codes look the same from outside
_CODE_ERRORS = (CodeInvalid, CodeNotFoundOrExpired, CodeAttemptsExceeded)
_CODE_ERROR_MESSAGE = "Code invalid or expired"

_STATUS = (
    (InvalidInput, 400),
    (_CODE_ERRORS, 401),
    (TokenInvalid, 401),
    (AccountLocked, 423),
    (RateLimited, 429),
    (Cooldown, 429),
    (DeliveryFailed, 502),
    (StoreUnavailable, 503),
)


def _auth():
    return current_app.extensions["auth"]


def error_response(exc: AuthError):
    if isinstance(exc, _CODE_ERRORS):
        return jsonify(error=_CODE_ERROR_MESSAGE, kind="code_invalid_or_expired"), 401

    status = 400
    for kinds, code in _STATUS:
        if isinstance(exc, kinds):
            status = code
            break

    body = {"error": exc.message, "kind": exc.kind}
    if isinstance(exc, DeliveryFailed):
        body["error"] = DeliveryFailed.message
    else:
        body.update(exc.detail)
    resp = jsonify(body)
    if status in (423, 429) and "retry_after_seconds" in exc.detail:
        resp.headers["Retry-After"] = str(exc.detail["retry_after_seconds"])
    return resp, status


@auth_bp.app_errorhandler(AuthError)
def handle_auth_error(exc):
    return error_response(exc)


def _payload():
    return request.get_json(silent=True) or {}


def _text(data, name):
    value = data.get(name)
    return value if isinstance(value, str) else ""


@auth_bp.post("/request-code")
def request_code():
    data = _payload()
    issued = _auth().request_code(_text(data, "email"), client_ip(), client_user_agent())
    return jsonify(
        message="Code sent",
        code_id=issued.code_id,
        expires_at=issued.expires_at.isoformat(),
        next_request_allowed_at=issued.next_request_allowed_at.isoformat(),
    ), 202


@auth_bp.post("/verify-code")
def verify_code():
    data = _payload()
    result = _auth().verify_code(
        _text(data, "email"), _text(data, "code"), client_ip(), client_user_agent()
    )
    return jsonify(
        account=result.account.to_dict(),
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        expires_in=result.expires_in,
        is_new_account=result.is_new_account,
    ), 200


@auth_bp.post("/refresh")
def refresh():
    data = _payload()
    result = _auth().refresh(_text(data, "refresh_token"))
    return jsonify(access_token=result.access_token, expires_in=result.expires_in), 200


@auth_bp.post("/logout")
@login_required
def logout():
    data = _payload()
    _auth().logout(
        g.token,
        refresh_token=_text(data, "refresh_token") or None,
        ip=client_ip(),
        user_agent=client_user_agent(),
    )
    return jsonify(ok=True), 200


@auth_bp.get("/validate")
def validate():
    if g.account is None:
        return jsonify(valid=False, account=None), 200
    return jsonify(valid=True, account=g.account.to_dict()), 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(g.account.to_dict()), 200
