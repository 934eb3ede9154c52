from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash, generate_password_hash

from app.checkin.emails import deliver, password_reset_email, verification_email
from app.core.extensions import db
from app.core.models import User, as_utc, utcnow

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api")

MIN_PASSWORD_LENGTH = 8


def _payload() -> dict[str, str]:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return {k: v for k, v in request.form.items()}


def _message(text: str, status: int = 200):
    return jsonify({"message": text}), status


def _user_dict(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "email": user.email,
        "fullName": user.full_name,
        "isEmailVerified": user.is_email_verified,
    }


def generate_verification_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


def _send_verification_code(user: User) -> None:
    code = generate_verification_code()
    user.verification_code = code
    user.verification_code_expiry = utcnow() + timedelta(
        minutes=current_app.config["VERIFICATION_CODE_TTL_MINUTES"]
    )
    db.session.add(user)
    db.session.commit()
    result = deliver(verification_email(user.email, code))
    if not result.success:
        logger.error("Verification email to %s failed: %s", user.email, result.details)


def _find_user(email: str) -> User | None:
    return User.query.filter_by(email=(email or "").strip().lower()).first()


@auth_bp.post("/register")
def register():
    payload = _payload()
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    if not email.isascii() or "@" not in email or email.startswith("@") or email.endswith("@"):
        return _message("Please enter a valid email address", 400)
    if len(password) < MIN_PASSWORD_LENGTH:
        return _message(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long", 400)
    if _find_user(email):
        return _message("Email already registered", 400)

    user = User(
        email=email,
        full_name=(payload.get("fullName") or "").strip(),
        password_hash=generate_password_hash(password),
    )
    db.session.add(user)
    db.session.commit()
    _send_verification_code(user)
    logger.info("Registered user %s", user.id)
    body = _user_dict(user)
    body["message"] = "Registration successful. Please check your email for verification code."
    return jsonify(body), 201


@auth_bp.post("/verify-email")
def verify_email():
    payload = _payload()
    email = payload.get("email") or ""
    code = str(payload.get("code") or "").strip()
    if not email or not code:
        return _message("Email and verification code are required", 400)
    user = _find_user(email)
    if not user:
        return _message("User not found", 404)
    if user.is_email_verified:
        return _message("Email already verified", 400)
    if not user.verification_code or not secrets.compare_digest(user.verification_code, code):
        return _message("Invalid verification code", 400)
    expiry = as_utc(user.verification_code_expiry)
    if expiry and utcnow() > expiry:
        return _message("Verification code expired", 400)

    user.is_email_verified = True
    user.verification_code = None
    user.verification_code_expiry = None
    db.session.add(user)
    db.session.commit()
    login_user(user)
    body = _user_dict(user)
    body["message"] = "Email verified successfully"
    return jsonify(body)


@auth_bp.post("/resend-verification")
def resend_verification():
    email = _payload().get("email") or ""
    if not email:
        return _message("Email is required", 400)
    user = _find_user(email)
    if not user:
        return _message("User not found", 404)
    if user.is_email_verified:
        return _message("Email already verified", 400)
    _send_verification_code(user)
    return _message("Verification code sent successfully")


@auth_bp.post("/login")
def login():
    payload = _payload()
    user = _find_user(payload.get("email") or "")
    if not user or not check_password_hash(user.password_hash, payload.get("password") or ""):
        return _message("Invalid email or password", 401)
    if not user.is_email_verified:
        return _message("Please verify your email before logging in", 401)
    login_user(user)
    return jsonify(_user_dict(user))


@auth_bp.post("/logout")
@login_required
def logout():
    logout_user()
    return _message("Logged out")


@auth_bp.get("/user")
def current_user_view():
    if not current_user.is_authenticated:
        return _message("Not authenticated", 401)
    return jsonify(_user_dict(current_user))


@auth_bp.post("/forgot-password")
def forgot_password():
    email = _payload().get("email") or ""
    if not email:
        return _message("Email is required", 400)
    user = _find_user(email)
    if user:
        token = secrets.token_hex(32)
        user.reset_password_token = token
        user.reset_password_expiry = utcnow() + timedelta(minutes=current_app.config["PASSWORD_RESET_TTL_MINUTES"])
        db.session.add(user)
        db.session.commit()
        result = deliver(password_reset_email(user.email, token))
        if not result.success:
            logger.error("Password reset email to %s failed: %s", user.email, result.details)
    return _message("If your email is registered, you will receive a password reset link")


@auth_bp.post("/reset-password")
def reset_password():
    payload = _payload()
    token = (payload.get("token") or "").strip()
    password = payload.get("password") or ""
    if not token or not password:
        return _message("Token and new password are required", 400)
    if len(password) < MIN_PASSWORD_LENGTH:
        return _message(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long", 400)
    user = User.query.filter_by(reset_password_token=token).first()
    expiry = as_utc(user.reset_password_expiry) if user else None
    if not user or not expiry or utcnow() > expiry:
        return _message("Invalid or expired token", 400)

    user.password_hash = generate_password_hash(password)
    user.reset_password_token = None
    user.reset_password_expiry = None
    db.session.add(user)
    db.session.commit()
    login_user(user)
    return _message("Password reset successful")


@auth_bp.post("/change-password")
@login_required
def change_password():
    payload = _payload()
    current_password = payload.get("currentPassword") or ""
    new_password = payload.get("newPassword") or ""
    if not current_password or not new_password:
        return _message("Current password and new password are required", 400)
    if len(new_password) < MIN_PASSWORD_LENGTH:
        return _message(f"New password must be at least {MIN_PASSWORD_LENGTH} characters long", 400)
    user = current_user._get_current_object()
    if not check_password_hash(user.password_hash, current_password):
        return _message("Current password is incorrect", 400)
    user.password_hash = generate_password_hash(new_password)
    db.session.add(user)
    db.session.commit()
    return _message("Password changed successfully")
