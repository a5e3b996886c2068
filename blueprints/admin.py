import logging
from decimal import Decimal

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user
from sqlalchemy import func, or_

from dividends.calculator import calculate_for_investment
from errors import NotFound, ValidationError
from extensions import db
from models import (
    Agent, Application, ApplicationStatus, AuditLog, Commission, Investment, InvestmentStatus, Investor,
    Role, User,
)
from security import admin_required, permission_required
from utils import client_ip

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/api")

SEARCH_LIMIT = 50


def _sum(column, *criteria):
    value = db.session.query(func.coalesce(func.sum(column), 0)).filter(*criteria).scalar()
    return float(Decimal(str(value)))

#===========================================================================
#      DASHBOARD
#==============================================================================
@admin_bp.route("/admin/dashboard", methods=["GET"])
@admin_required
def admin_dashboard():
    investments = Investment.query.all()
    dividends_paid = sum(
        (calculate_for_investment(i)["total_dividends_paid"] for i in investments), Decimal("0")
    )

    return jsonify({
        "total_users": User.query.count(),
        "total_investors": Investor.query.count(),
        "total_consultants": Agent.query.count(),
        "total_investment": _sum(Investment.amount),
        "active_investments": Investment.query.filter_by(status=InvestmentStatus.ACTIVE.value).count(),
        "commissions_due": _sum(Commission.amount, Commission.paid.is_(False)),
        "pending_applications": Application.query.filter_by(
            application_status=ApplicationStatus.PENDING.value
        ).count(),
        "dividends_paid_to_date": float(dividends_paid),
    }), 200

#===========================================================================
#      USERS
#==============================================================================
@admin_bp.route("/admin/users", methods=["GET"])
@admin_required
def list_users():
    query = User.query
    role = request.args.get("role")
    if role:
        query = query.filter(User.role == role.lower())
    active = request.args.get("active")
    if active in ("true", "false"):
        query = query.filter(User.is_active.is_(active == "true"))

    users = query.order_by(User.created_at.desc(), User.id.desc()).all()
    return jsonify({"users": [u.to_dict() for u in users], "count": len(users)}), 200


@admin_bp.route("/admin/users/<int:user_id>", methods=["PATCH"])
@admin_required
def update_user(user_id):
    user = db.session.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    data = request.get_json(silent=True) or {}

    changes = {}
    if "role" in data:
        role = (data.get("role") or "").lower()
        if role not in {r.value for r in Role}:
            raise ValidationError(f"Unknown role: {role}")
        if user.id == current_user.id and role != Role.ADMIN.value:
            raise ValidationError("You cannot remove your own admin role")
        changes["role"] = (user.role, role)
        user.role = role

    if "is_active" in data:
        is_active = bool(data.get("is_active"))
        if user.id == current_user.id and not is_active:
            raise ValidationError("You cannot deactivate your own account")
        changes["is_active"] = (user.is_active, is_active)
        user.is_active = is_active

    if not changes:
        raise ValidationError("Nothing to update")

    AuditLog.record("user_updated", actor_id=current_user.id, target=user,
                    details={k: list(v) for k, v in changes.items()}, ip_address=client_ip(request))
    db.session.commit()

    current_app.logger.info(f"Admin {current_user.id} updated user {user.id}: {changes}")
    return jsonify({"success": True, "user": user.to_dict()}), 200

#===========================================================================
#      SEARCH
#==============================================================================
@admin_bp.route("/admin/search", methods=["GET"])
@admin_required
def admin_search():
    """Admin search across users, investors and applications"""
    query = request.args.get("q", "").strip()
    if not query:
        return jsonify({
            "users": [],
            "investors": [],
            "applications": [],
            "message": "Please provide a search query",
        }), 400

    users = search_users(query)
    investors = search_investors(query)
    applications = search_applications(query)

    return jsonify({
        "users": users,
        "investors": investors,
        "applications": applications,
        "total_results": len(users) + len(investors) + len(applications),
    }), 200


def search_users(query):
    """Search users by name, email, agent code, or ID"""
    like = f"%{query}%"
    criteria = [User.full_name.ilike(like), User.email.ilike(like), Agent.agent_code.ilike(like)]
    if query.isdigit():
        criteria.append(User.id == int(query))

    users = (
        User.query.outerjoin(Agent, Agent.user_id == User.id)
        .filter(or_(*criteria))
        .limit(SEARCH_LIMIT).all()
    )
    return [
        {
            "id": u.id,
            "full_name": u.full_name,
            "email": u.email,
            "role": u.role,
            "agent_code": u.agent.agent_code if u.agent else None,
            "is_active": u.is_active,
            "type": "user",
        }
        for u in users
    ]


def search_investors(query):
    like = f"%{query}%"
    investors = (
        Investor.query.join(User, Investor.user_id == User.id)
        .filter(or_(User.full_name.ilike(like), User.email.ilike(like), Investor.nric.ilike(like),
                    Investor.contact_number.ilike(like)))
        .limit(SEARCH_LIMIT).all()
    )
    return [{**i.to_dict(), "type": "investor"} for i in investors]


def search_applications(query):
    like = f"%{query}%"
    applications = (
        Application.query
        .filter(or_(Application.full_name.ilike(like), Application.email.ilike(like),
                    Application.nric.ilike(like), Application.contact_number.ilike(like)))
        .limit(SEARCH_LIMIT).all()
    )
    return [{**a.to_dict(), "type": "application"} for a in applications]

#===========================================================================
#      REPORTS
#==============================================================================
@admin_bp.route("/reports/summary", methods=["GET"])
@permission_required("view_reports")
def reports_summary():
    """Volume by tier, commissions by type and applications by status. Consultants see their own book."""
    investment_q = db.session.query(Investment.tier, func.count(Investment.id), func.sum(Investment.amount))
    commission_q = db.session.query(Commission.commission_type, func.count(Commission.id), func.sum(Commission.amount))
    application_q = db.session.query(Application.application_status, func.count(Application.id))

    scope = "all"
    if current_user.role == Role.CONSULTANT.value:
        agent = current_user.agent
        agent_id = agent.id if agent else -1
        investment_q = investment_q.filter(Investment.agent_id == agent_id)
        commission_q = commission_q.filter(Commission.agent_id == agent_id)
        application_q = application_q.filter(Application.introducer_id == (agent.agent_code if agent else None))
        scope = "own"

    return jsonify({
        "scope": scope,
        "investment_by_tier": [
            {"tier": tier, "count": count, "amount": float(amount or 0)}
            for tier, count, amount in investment_q.group_by(Investment.tier).order_by(Investment.tier).all()
        ],
        "commissions_by_type": [
            {"type": ctype, "count": count, "amount": float(amount or 0)}
            for ctype, count, amount in commission_q.group_by(Commission.commission_type).all()
        ],
        "applications_by_status": {
            status: count for status, count in application_q.group_by(Application.application_status).all()
        },
    }), 200
