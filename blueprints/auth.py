import logging
from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_user, logout_user

from accounts import create_agent, create_user
from errors import AuthenticationError, PortalError, ValidationError
from extensions import db
from logger import log_security_event
from models import Investor, LoginAttempt, PasswordResetCode, Role, User
from notifications import send_password_reset_email
from security import login_required
from utils import client_ip, generate_reset_code, sanitize_input, utcnow, validate_password

logger = logging.getLogger(__name__)

MAX_RESET_ATTEMPTS = 5

bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _json_body():
    data = request.get_json(silent=True)
    if not data:
        raise ValidationError("Invalid or missing JSON body")
    return data

#===========================================================================
#      REGISTRATION
#==============================================================================
@bp.route("/register", methods=["POST"])
def register():
    """
    Self registration for investors and consultants.
    Consultants get an agent code and are placed under their introducer when given.
    """
    data = _json_body()
    role = (data.get("role") or "").strip().lower()
    if role not in (Role.INVESTOR.value, Role.CONSULTANT.value):
        raise ValidationError("Role must be 'investor' or 'consultant'")

    try:
        user = create_user(
            data.get("email"),
            sanitize_input(data.get("full_name")),
            data.get("password", ""),
            role,
        )

        if role == Role.CONSULTANT.value:
            create_agent(
                user,
                introducer_code=data.get("introducer_code"),
                contact_number=sanitize_input(data.get("contact_number")),
            )
        else:
            nric = sanitize_input(data.get("nric"))
            if not nric:
                raise ValidationError("NRIC / passport number is required")
            db.session.add(Investor(
                user_id=user.id,
                nric=nric,
                contact_number=sanitize_input(data.get("contact_number")),
            ))

        db.session.commit()
    except PortalError:
        db.session.rollback()
        raise
    except Exception:
        db.session.rollback()
        current_app.logger.error("Registration failed", exc_info=True)
        return jsonify({"error": "Registration failed. Please try again."}), 500

    current_app.logger.info(f"Registered {role} user {user.id}")
    return jsonify({
        "status": "success",
        "message": "Registration successful",
        "user": user.to_dict(include_permissions=True),
    }), 201

# --------------------------------------------------
#      Login / logout / session
# --------------------------------------------------
@bp.route("/login", methods=["POST"])
def login():
    """
    Authenticate a user.
    Expected JSON: {"email": "", "password": ""}
    """
    data = _json_body()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if not email or not password:
        raise ValidationError("Email and password are required")

    ip = client_ip(request)
    user = User.query.filter_by(email=email).first()
    success = bool(user and user.check_password(password))

    db.session.add(LoginAttempt(
        user_id=user.id if user else None,
        email=email,
        ip_address=ip,
        success=success,
    ))

    if not success:
        db.session.commit()
        log_security_event("login_failed", {"ip": ip, "email": email})
        raise AuthenticationError("Invalid credentials")

    if not user.is_active:
        db.session.commit()
        log_security_event("login_inactive_account", {"ip": ip, "email": email}, user_id=user.id)
        raise AuthenticationError("Account is deactivated")

    user.last_login_at = utcnow()
    db.session.commit()
    login_user(user)

    current_app.logger.info(f"User {user.id} logged in")
    return jsonify({
        "message": "Login successful",
        "user": user.to_dict(include_permissions=True),
        "must_change_password": user.must_change_password,
    }), 200


@bp.route("/logout", methods=["POST"])
def logout():
    logout_user()
    return jsonify({"message": "Logged out successfully"}), 200


@bp.route("/session", methods=["GET"])
def check_session():
    """Returns current logged-in user data if authenticated"""
    if not current_user.is_authenticated:
        return jsonify({"authenticated": False}), 200

    return jsonify({
        "authenticated": True,
        "user": current_user.to_dict(include_permissions=True),
    }), 200

# --------------------------------------------------
#      Password reset & change
# --------------------------------------------------
@bp.route("/password/reset", methods=["POST"])
def request_password_reset():
    """
    Step 1: request a reset code by email.
    The response never reveals whether the account exists.
    """
    data = _json_body()
    email = (data.get("email") or "").strip().lower()
    if not email:
        raise ValidationError("Email is required")

    generic = {
        "success": True,
        "message": "If your account exists, a reset code has been sent to your email.",
    }

    user = User.query.filter_by(email=email).first()
    if not user or not user.is_active:
        logger.warning(f"Password reset attempt for unknown or inactive account: {email}")
        return jsonify(generic), 200

    now = utcnow()
    PasswordResetCode.query.filter_by(user_id=user.id, used_at=None).update({"used_at": now})

    code = generate_reset_code()
    reset = PasswordResetCode(
        user_id=user.id,
        expires_at=now + timedelta(minutes=current_app.config["PASSWORD_RESET_TTL_MINUTES"]),
    )
    reset.set_code(code)
    db.session.add(reset)
    db.session.commit()

    send_password_reset_email(user.email, code)
    logger.info(f"Password reset code generated for user {user.id}")
    return jsonify(generic), 200


@bp.route("/password/confirm", methods=["POST"])
def confirm_password_reset():
    """Step 2: verify the code and set the new password."""
    data = _json_body()
    email = (data.get("email") or "").strip().lower()
    code = (data.get("code") or "").strip()
    new_password = data.get("new_password") or ""

    if not all([email, code, new_password]):
        raise ValidationError("Email, code and new password are required")

    user = User.query.filter_by(email=email).first()
    reset = None
    if user:
        reset = (
            PasswordResetCode.query.filter_by(user_id=user.id, used_at=None)
            .order_by(PasswordResetCode.id.desc())
            .first()
        )

    if not reset:
        raise ValidationError("Invalid or expired reset code")

    if utcnow() > reset.expires_at or reset.attempts >= MAX_RESET_ATTEMPTS:
        reset.used_at = utcnow()
        db.session.commit()
        raise ValidationError("Invalid or expired reset code")

    if not reset.check_code(code):
        reset.attempts += 1
        db.session.commit()
        log_security_event("password_reset_bad_code", {"ip": client_ip(request), "email": email}, user_id=user.id)
        raise ValidationError("Invalid or expired reset code")

    ok, errors = validate_password(new_password)
    if not ok:
        raise ValidationError("Password does not meet requirements", details=errors)

    if user.check_password(new_password):
        raise ValidationError("New password must be different from current password")

    user.set_password(new_password)
    user.must_change_password = False
    reset.used_at = utcnow()
    db.session.commit()

    logger.info(f"Password successfully reset for user {user.id}")
    return jsonify({
        "success": True,
        "message": "Password has been reset successfully. You can now login with your new password.",
    }), 200


@bp.route("/password/change", methods=["POST"])
@login_required
def change_password():
    data = _json_body()
    current_password = data.get("current_password") or ""
    new_password = data.get("new_password") or ""

    if not current_user.check_password(current_password):
        log_security_event("password_change_failed", {"ip": client_ip(request)}, user_id=current_user.id)
        raise AuthenticationError("Current password is incorrect")

    ok, errors = validate_password(new_password)
    if not ok:
        raise ValidationError("Password does not meet requirements", details=errors)

    if current_password == new_password:
        raise ValidationError("New password must be different from current password")

    current_user.set_password(new_password)
    current_user.must_change_password = False
    db.session.commit()

    current_app.logger.info(f"User {current_user.id} changed password")
    return jsonify({"success": True, "message": "Password updated"}), 200
