# handlers/password_reset.py
import logging
import re
from typing import List

from flask import Blueprint, current_app, jsonify, request
from werkzeug.security import generate_password_hash

from auth import AuthError, decode_token, issue_token
from database import db_session
from models import UserAccount

logger = logging.getLogger(__name__)

bp = Blueprint("password_reset", __name__)

RESET_PURPOSE = "password_reset"
MIN_PASSWORD_LENGTH = 12
SPECIAL_CHARS = re.compile(r"[!@#$%^&*()_+=;:'\",.<>?|{}\[\]\-/\\~`]")
COMMON_PATTERNS = [
    re.compile(r"^(password|123456|qwerty|abc123|letmein|monkey|dragon)", re.IGNORECASE),
    re.compile(r"^(\d)\1+$"),
    re.compile(r"^([a-z])\1+$", re.IGNORECASE),
    re.compile(r"^(abcd|1234|qwert|asdf)", re.IGNORECASE),
]


def validate_password(password: str) -> List[str]:
    """Return the list of policy violations (empty when the password is acceptable)."""
    problems = []
    if len(password) < MIN_PASSWORD_LENGTH:
        problems.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not re.search(r"[A-Z]", password):
        problems.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        problems.append("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", password):
        problems.append("Password must contain at least one number")
    if not SPECIAL_CHARS.search(password):
        problems.append("Password must contain at least one special character")
    if any(p.search(password) for p in COMMON_PATTERNS):
        problems.append("Password contains common patterns that are easy to guess")
    return problems


def _failure(message: str, toast: str, status: int = 400):
    return jsonify({"success": False, "message": message, "toast": {"type": "error", "message": toast}}), status


def log_reset_token(email: str, token: str) -> None:
    """Default delivery hook; a mailer replaces it via app.extensions['reset_token_sender']."""
    logger.info("Password reset token issued for %s (no mail delivery configured)", email)


@bp.route("/api/reset-password", methods=["POST", "OPTIONS"])
def reset_password():
    if request.method == "OPTIONS":
        return ("", 204)

    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return _failure("Invalid request body. Failed to parse JSON.", "Invalid request format")

    password = body.get("password")
    token = body.get("token")
    if not password:
        return _failure("Missing required field: password is required.", "Password is required")
    if not token:
        return _failure("Missing required field: token is required.", "Reset link is missing or invalid")

    problems = validate_password(password)
    if problems:
        return _failure(problems[0] + ".", problems[0])

    settings = current_app.config["SETTINGS"]
    try:
        user_id = str(decode_token(token, settings, purpose=RESET_PURPOSE)["sub"])
    except AuthError as e:
        logger.info("Rejected password reset token: %s", e.reason)
        return _failure("Reset link is invalid or has expired.", "Reset link is invalid or has expired", 401)

    with db_session() as db:
        account = db.get(UserAccount, user_id)
        if account is None:
            return _failure("Failed to reset password. The user ID may be invalid.",
                            "Invalid user ID for password reset", 404)
        account.password_hash = generate_password_hash(password)
        account.is_verified = True

    logger.info("Password reset for user_id=%s", user_id)
    return jsonify({
        "success": True,
        "message": "Password has been reset successfully.",
        "toast": {"type": "success", "message": "Password updated. You can now sign in."},
        "userId": user_id,
        "verified": True,
    })


@bp.route("/api/reset-password/request", methods=["POST", "OPTIONS"])
def request_reset():
    if request.method == "OPTIONS":
        return ("", 204)

    body = request.get_json(silent=True) or {}
    email = str(body.get("email") or "").strip().lower()
    if not email:
        return _failure("Missing required field: email is required.", "Email is required")

    with db_session() as db:
        account = db.query(UserAccount).filter(UserAccount.email == email).one_or_none()
        user_id = account.id if account else None

    if user_id:
        settings = current_app.config["SETTINGS"]
        token = issue_token(settings, user_id, settings.PASSWORD_RESET_TTL, purpose=RESET_PURPOSE)
        sender = current_app.extensions.get("reset_token_sender", log_reset_token)
        sender(email, token)
    else:
        logger.info("Password reset requested for unknown email")

    # Identical response whether or not the email belongs to an account
    return jsonify({
        "success": True,
        "message": "If an account exists for that email, a reset link has been sent.",
        "toast": {"type": "success", "message": "Check your email for a reset link"},
    })
