# security.py
import hmac
import os
from functools import wraps

from flask import jsonify, session


# ------------------------------------------------------------
# Session & User Helpers
# ------------------------------------------------------------
def get_session_payload():
    """
    Returns the raw session["user"] dictionary.
    Expected format:
    {
        "username": "...",
        "is_admin": true
    }
    """
    return session.get("user")


def get_current_user():
    payload = get_session_payload()
    if not payload or not payload.get("username"):
        return None
    return payload


def check_credentials(username, password):
    """
    Placeholder check: any non-empty username is accepted. When
    PORTAL_USERNAME / PORTAL_PASSWORD are set, they must match.
    """
    username = (username or "").strip()
    if not username:
        return False

    expected_user = os.environ.get("PORTAL_USERNAME")
    expected_pass = os.environ.get("PORTAL_PASSWORD")
    if expected_user and not hmac.compare_digest(username, expected_user):
        return False
    if expected_pass and not hmac.compare_digest(password or "", expected_pass):
        return False
    return True


def login_user(username):
    session["user"] = {"username": username.strip(), "is_admin": True}
    return session["user"]


def logout_user():
    session.pop("user", None)


# ------------------------------------------------------------
# Login Enforcement
# ------------------------------------------------------------
def login_required_api(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not get_current_user():
            return jsonify({"ok": False, "error": "Unauthorized"}), 401
        return fn(*args, **kwargs)
    return wrapper
