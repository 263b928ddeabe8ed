from functools import wraps

from flask import g, jsonify

from models.account import ROLE_ADMIN


def has_role(role_name: str) -> bool:
    account = getattr(g, "account", None)
    if not account:
        return False
    return account.role == role_name


def require_roles(*role_names: str):
    """
    Usage: @require_roles("admin")
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            account = getattr(g, "account", None)
            if account is None:
                return jsonify(error="Authentication required", kind="token_invalid"), 401

            if not has_role(ROLE_ADMIN) and not any(has_role(r) for r in role_names):
                return jsonify(error="Forbidden"), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator
