import logging
import secrets
from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user
from sqlalchemy import func

from errors import Conflict, NotFound, PortalError, ValidationError
from extensions import db
from models import (
    KYC_FLAGS, ActivityAlert, Application, ApplicationStatus, AuditLog, InviteToken, KycStatus, Role,
)
from notifications import send_approval_email, send_rejection_email, send_request_info_email
from security import roles_required
from utils import client_ip, parse_date, sanitize_input, utcnow, validate_email, validate_phone

logger = logging.getLogger(__name__)

bp = Blueprint("applications", __name__, url_prefix="/api")

# Free-text intake fields, sections A to E
TEXT_FIELDS = (
    "full_name", "nric", "address", "marital_status", "postcode", "gender", "city_country",
    "contact_number", "introducer_name", "introducer_id",
    "account_holder_name", "bank_name", "account_number",
    "previous_experience", "currently_promoting", "working_style",
    "beneficiary_full_name", "beneficiary_nric", "beneficiary_postcode", "beneficiary_city_country",
    "beneficiary_relation", "beneficiary_contact_number", "beneficiary_email_address",
    "beneficiary_account_holder_name", "beneficiary_bank_name", "beneficiary_account_number",
    "applicant_signature", "signature_name",
)
DATE_FIELDS = ("date_of_birth", "beneficiary_date_of_birth", "signature_date")
REQUIRED_FIELDS = ("full_name", "nric", "contact_number", "email")

KYC_FLAG_ALIASES = {
    "identity": "kyc_identity_verified",
    "address": "kyc_address_verified",
    "bank": "kyc_bank_verified",
    "agreement": "kyc_agreement_verified",
}


def _get_application(application_id):
    application = db.session.get(Application, application_id)
    if not application:
        raise NotFound("Application not found")
    return application


def build_application(data, source="portal"):
    """Validate intake data and return an unsaved Application."""
    email = str(data.get("email") or "").strip().lower()
    missing = [f for f in REQUIRED_FIELDS if not str(data.get(f) or "").strip()]
    if missing:
        raise ValidationError("Missing required fields", details=missing)
    if not validate_email(email):
        raise ValidationError("Invalid email address")
    if not validate_phone(data.get("contact_number")):
        raise ValidationError("Invalid contact number")

    if Application.query.filter(func.lower(Application.email) == email).first():
        raise Conflict("An application with this email already exists")

    application = Application(email=email, source=source)
    for field in TEXT_FIELDS:
        value = data.get(field)
        if value not in (None, ""):
            setattr(application, field, sanitize_input(value))
    for field in DATE_FIELDS:
        setattr(application, field, parse_date(data.get(field), field))

    if application.introducer_id:
        application.introducer_id = application.introducer_id.upper()
    application.declaration = bool(data.get("declaration"))
    return application

#===========================================================================
#      PUBLIC INTAKE
#==============================================================================
@bp.route("/applications", methods=["POST"])
def submit_application():
    data = request.get_json(silent=True)
    if not data:
        raise ValidationError("Invalid or missing JSON body")

    application = build_application(data)
    if not application.declaration:
        raise ValidationError("The declaration must be accepted")

    try:
        db.session.add(application)
        db.session.flush()
        ActivityAlert.raise_alert(
            "new_application",
            "New consultant application",
            f"{application.full_name} ({application.email}) submitted an application",
            target=application,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.error("Failed to save application", exc_info=True)
        return jsonify({"error": "Failed to submit application"}), 500

    current_app.logger.info(f"Application {application.id} submitted by {application.email}")
    return jsonify({
        "success": True,
        "message": "Application submitted successfully",
        "application_id": application.id,
    }), 201

#===========================================================================
#      ADMIN REVIEW
#==============================================================================
@bp.route("/admin/applications", methods=["GET"])
@roles_required(Role.ADMIN.value)
def list_applications():
    status = request.args.get("status")
    kyc_status = request.args.get("kyc_status")

    query = Application.query
    if status and status != "ALL":
        query = query.filter(Application.application_status == status.upper())
    if kyc_status and kyc_status != "ALL":
        query = query.filter(Application.kyc_status == kyc_status.upper())

    applications = query.order_by(Application.created_at.desc(), Application.id.desc()).all()

    counts = dict(
        db.session.query(Application.application_status, func.count(Application.id))
        .group_by(Application.application_status).all()
    )
    kyc_pending = Application.query.filter_by(kyc_status=KycStatus.PENDING.value).count()

    return jsonify({
        "applications": [a.to_dict() for a in applications],
        "stats": {
            "total": sum(counts.values()),
            "pending": counts.get(ApplicationStatus.PENDING.value, 0),
            "approved": counts.get(ApplicationStatus.APPROVED.value, 0),
            "rejected": counts.get(ApplicationStatus.REJECTED.value, 0),
            "kyc_pending": kyc_pending,
        },
    }), 200


@bp.route("/admin/applications/<int:application_id>", methods=["GET"])
@roles_required(Role.ADMIN.value)
def application_detail(application_id):
    return jsonify({"application": _get_application(application_id).to_dict(detail=True)}), 200


@bp.route("/admin/applications/<int:application_id>/kyc", methods=["PATCH"])
@roles_required(Role.ADMIN.value)
def update_kyc(application_id):
    """
    Set one KYC flag.
    All four flags set -> COMPLETED with verifier; first flag while PENDING -> IN_PROGRESS.
    """
    application = _get_application(application_id)
    data = request.get_json(silent=True) or {}

    flag = KYC_FLAG_ALIASES.get(data.get("flag"), data.get("flag"))
    if flag not in KYC_FLAGS:
        raise ValidationError(f"Unknown KYC flag: {data.get('flag')}")
    if "value" not in data:
        raise ValidationError("value is required")
    value = data["value"]
    if not isinstance(value, bool):
        raise ValidationError("value must be true or false")

    setattr(application, flag, value)

    if all(getattr(application, f) for f in KYC_FLAGS):
        application.kyc_status = KycStatus.COMPLETED.value
        application.kyc_verified_by = current_user.id
        application.kyc_verified_at = utcnow()
    elif application.kyc_status == KycStatus.COMPLETED.value:
        application.kyc_status = KycStatus.IN_PROGRESS.value
        application.kyc_verified_by = None
        application.kyc_verified_at = None
    elif value and application.kyc_status == KycStatus.PENDING.value:
        application.kyc_status = KycStatus.IN_PROGRESS.value

    AuditLog.record(
        "kyc_flag_updated", actor_id=current_user.id, target=application,
        details={"flag": flag, "value": value}, ip_address=client_ip(request),
    )
    db.session.commit()

    return jsonify({
        "success": True,
        "kyc_status": application.kyc_status,
        "flags": application.kyc_flags(),
    }), 200


@bp.route("/admin/applications/<int:application_id>/notes", methods=["PATCH"])
@roles_required(Role.ADMIN.value)
def update_notes(application_id):
    application = _get_application(application_id)
    data = request.get_json(silent=True) or {}
    application.kyc_notes = sanitize_input(data.get("notes", "")) or ""
    db.session.commit()
    return jsonify({"success": True, "kyc_notes": application.kyc_notes}), 200


def _require_pending(application):
    if application.application_status != ApplicationStatus.PENDING.value:
        raise Conflict(f"Application is already {application.application_status}")


@bp.route("/admin/applications/<int:application_id>/approve", methods=["POST"])
@roles_required(Role.ADMIN.value)
def approve_application(application_id):
    application = _get_application(application_id)
    _require_pending(application)

    if application.kyc_status != KycStatus.COMPLETED.value:
        raise ValidationError("KYC verification must be completed before approval")

    try:
        now = utcnow()
        invite = InviteToken(
            token=secrets.token_urlsafe(32),
            application_id=application.id,
            email=application.email,
            expires_at=now + timedelta(days=current_app.config["INVITE_TOKEN_TTL_DAYS"]),
        )
        db.session.add(invite)

        application.application_status = ApplicationStatus.APPROVED.value
        application.reviewed_by = current_user.id
        application.reviewed_at = now
        application.invite_sent = True

        AuditLog.record("application_approved", actor_id=current_user.id, target=application,
                        ip_address=client_ip(request))
        ActivityAlert.raise_alert(
            "application_approved", "Application approved",
            f"{application.full_name} was approved", target=application,
        )
        db.session.commit()
    except PortalError:
        db.session.rollback()
        raise
    except Exception:
        db.session.rollback()
        current_app.logger.error(f"Approval failed for application {application_id}", exc_info=True)
        return jsonify({"error": "Failed to approve application"}), 500

    email_sent = send_approval_email(application, invite)
    current_app.logger.info(f"Application {application.id} approved by {current_user.id}")

    return jsonify({
        "success": True,
        "application": application.to_dict(),
        "invite_token": invite.token,
        "invite_expires_at": invite.expires_at.isoformat(),
        "email_sent": email_sent,
    }), 200


@bp.route("/admin/applications/<int:application_id>/reject", methods=["POST"])
@roles_required(Role.ADMIN.value)
def reject_application(application_id):
    application = _get_application(application_id)
    _require_pending(application)
    data = request.get_json(silent=True) or {}

    application.application_status = ApplicationStatus.REJECTED.value
    application.rejection_reason = sanitize_input(data.get("reason"))
    application.reviewed_by = current_user.id
    application.reviewed_at = utcnow()

    AuditLog.record("application_rejected", actor_id=current_user.id, target=application,
                    details={"reason": application.rejection_reason}, ip_address=client_ip(request))
    ActivityAlert.raise_alert(
        "application_rejected", "Application rejected",
        f"{application.full_name} was rejected", target=application,
    )
    db.session.commit()

    email_sent = send_rejection_email(application, application.rejection_reason)
    return jsonify({"success": True, "application": application.to_dict(), "email_sent": email_sent}), 200


@bp.route("/admin/applications/<int:application_id>/request-info", methods=["POST"])
@roles_required(Role.ADMIN.value)
def request_more_info(application_id):
    application = _get_application(application_id)
    _require_pending(application)
    data = request.get_json(silent=True) or {}

    message = sanitize_input(data.get("message"))
    if not message:
        raise ValidationError("message is required")

    application.more_info_requested_at = utcnow()
    stamp = application.more_info_requested_at.strftime("%Y-%m-%d")
    application.kyc_notes = "\n".join(filter(None, [application.kyc_notes, f"[{stamp}] Info requested: {message}"]))

    AuditLog.record("application_info_requested", actor_id=current_user.id, target=application,
                    details={"message": message}, ip_address=client_ip(request))
    db.session.commit()

    email_sent = send_request_info_email(application, message)
    return jsonify({"success": True, "application": application.to_dict(), "email_sent": email_sent}), 200
