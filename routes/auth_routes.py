from flask import Blueprint, jsonify, request

from security import check_credentials, get_current_user, login_user, logout_user


auth_bp = Blueprint("auth", __name__)


# =====================================================================
# LOGIN
# =====================================================================
@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or request.form
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""

    if not check_credentials(username, password):
        return jsonify({"ok": False, "error": "Invalid username or password"}), 401

    user = login_user(username)
    return jsonify({"ok": True, "user": user})


@auth_bp.get("/api/me")
def whoami():
    user = get_current_user()
    if not user:
        return jsonify({"ok": False, "error": "Unauthorized"}), 401
    return jsonify({"ok": True, "user": user})


# =====================================================================
# LOGOUT
# =====================================================================
@auth_bp.post("/logout")
def logout():
    logout_user()
    return jsonify({"ok": True})
