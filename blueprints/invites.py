from flask import Blueprint, current_app, jsonify, request
from flask_login import login_user

from accounts import create_agent, create_user
from errors import Conflict, NotFound, PortalError, ValidationError
from extensions import db
from models import ActivityAlert, AuditLog, InviteToken, Role
from utils import client_ip, utcnow

bp = Blueprint("invites", __name__, url_prefix="/api/invites")


def _valid_invite(token):
    """Exists, not expired, not used."""
    invite = InviteToken.query.filter_by(token=token).first()
    if not invite:
        raise NotFound("Invalid invitation link")
    if invite.is_used:
        raise Conflict("This invitation has already been used")
    if invite.is_expired():
        raise ValidationError("This invitation has expired")
    return invite


@bp.route("/<token>", methods=["GET"])
def validate_invite(token):
    invite = _valid_invite(token)
    application = invite.application
    return jsonify({
        "valid": True,
        "email": invite.email,
        "expires_at": invite.expires_at.isoformat(),
        "prefill": {
            "full_name": application.full_name,
            "contact_number": application.contact_number,
            "introducer_name": application.introducer_name,
            "introducer_id": application.introducer_id,
        },
    }), 200


@bp.route("/<token>/accept", methods=["POST"])
def accept_invite(token):
    """
    Turn an approved application into a consultant account.
    Creates the User and Agent, places the agent under its introducer and burns the token.
    """
    invite = _valid_invite(token)
    data = request.get_json(silent=True) or {}

    password = data.get("password") or ""
    if password != data.get("confirm_password"):
        raise ValidationError("Passwords do not match")
    if not data.get("accept_terms"):
        raise ValidationError("You must accept the terms and conditions")

    application = invite.application
    try:
        user = create_user(invite.email, application.full_name, password, Role.CONSULTANT.value)
        agent = create_agent(
            user,
            introducer_code=application.introducer_id,
            application=application,
            nric=application.nric,
            date_of_birth=application.date_of_birth,
            contact_number=application.contact_number,
            address=application.address,
            postcode=application.postcode,
            city=application.city_country,
            account_holder_name=application.account_holder_name,
            bank_name=application.bank_name,
            account_number=application.account_number,
            introducer_name=application.introducer_name,
        )

        invite.used_at = utcnow()
        invite.used_by = user.id
        AuditLog.record("invite_accepted", actor_id=user.id, target=invite, ip_address=client_ip(request))
        ActivityAlert.raise_alert(
            "consultant_onboarded", "Consultant onboarded",
            f"{user.full_name} joined as {agent.agent_code}", target=agent,
        )
        db.session.commit()
    except PortalError:
        db.session.rollback()
        raise
    except Exception:
        db.session.rollback()
        current_app.logger.error(f"Invite acceptance failed for {invite.email}", exc_info=True)
        return jsonify({"error": "Failed to create account"}), 500

    login_user(user)
    current_app.logger.info(f"Invite {invite.id} accepted; agent {agent.agent_code} created")
    return jsonify({
        "success": True,
        "user": user.to_dict(include_permissions=True),
        "agent": agent.to_dict(),
    }), 201
