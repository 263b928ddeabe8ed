from functools import wraps

from flask import current_app, g, jsonify, request


def client_ip():
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr


def client_user_agent():
    return (request.headers.get("User-Agent") or "")[:255] or None


def bearer_token():
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def load_current_account():
    g.account = None
    g.token = bearer_token()
    if not g.token:
        return
    result = current_app.extensions["auth"].validate(g.token)
    if result.valid:
        g.account = result.account


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "account", None) is None:
            return jsonify(error="Authentication required", kind="token_invalid"), 401
        return fn(*args, **kwargs)
    return wrapper
