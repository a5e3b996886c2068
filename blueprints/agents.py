import logging
from decimal import Decimal

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user
from sqlalchemy import func

from dividends.commission import CommissionHelper
from dividends.hierarchy import LEVEL_LABELS, LEVEL_ORDER, AgentHierarchyHelper
from errors import NotFound, PermissionDenied, PortalError, ValidationError
from extensions import db
from models import Agent, AuditLog, Commission, Investment, InvestmentStatus, Investor, Role, User
from security import admin_required, roles_required
from utils import client_ip, parse_date, sanitize_input

logger = logging.getLogger(__name__)

bp = Blueprint("agents", __name__, url_prefix="/api")

PROFILE_FIELDS = (
    "nric", "contact_number", "address", "postcode", "city", "country",
    "account_holder_name", "bank_name", "account_number",
)
PROFILE_REQUIRED = ("nric", "contact_number", "account_holder_name", "bank_name", "account_number")


def _current_agent():
    agent = current_user.agent
    if agent is None:
        raise PermissionDenied("Consultant profile not found")
    return agent


def _get_agent(agent_id):
    agent = db.session.get(Agent, agent_id)
    if not agent:
        raise NotFound("Agent not found")
    return agent

#===========================================================================
#      CONSULTANT SELF SERVICE
#==============================================================================
@bp.route("/agent/dashboard", methods=["GET"])
@roles_required(Role.CONSULTANT.value)
def agent_dashboard():
    agent = _current_agent()

    investors = Investor.query.filter_by(agent_id=agent.id).all()
    volume = (
        db.session.query(func.coalesce(func.sum(Investment.amount), 0))
        .filter(Investment.agent_id == agent.id)
        .scalar()
    )
    active_count = Investment.query.filter_by(agent_id=agent.id, status=InvestmentStatus.ACTIVE.value).count()

    return jsonify({
        "agent": {**agent.to_dict(), "level_label": LEVEL_LABELS.get(agent.level, agent.level)},
        "commission_stats": CommissionHelper.commission_stats(agent),
        "commission_structure": CommissionHelper.commission_structure(),
        "investors": [i.to_dict() for i in investors],
        "investor_count": len(investors),
        "subordinates": AgentHierarchyHelper.direct_subordinates(agent.id),
        "investment_volume": float(Decimal(str(volume))),
        "active_investments": active_count,
        "profile_completed": agent.profile_completed,
    }), 200


@bp.route("/agent/commissions", methods=["GET"])
@roles_required(Role.CONSULTANT.value)
def agent_commissions():
    agent = _current_agent()
    query = Commission.query.filter_by(agent_id=agent.id)

    commission_type = (request.args.get("type") or "").upper()
    if commission_type:
        query = query.filter(Commission.commission_type == commission_type)
    paid = request.args.get("paid")
    if paid in ("true", "false"):
        query = query.filter(Commission.paid.is_(paid == "true"))

    commissions = query.order_by(Commission.created_at.desc(), Commission.id.desc()).all()
    return jsonify({
        "commissions": [c.to_dict() for c in commissions],
        "stats": CommissionHelper.commission_stats(agent),
    }), 200


@bp.route("/agent/network", methods=["GET"])
@roles_required(Role.CONSULTANT.value)
def agent_network():
    agent = _current_agent()
    return jsonify({
        "network": AgentHierarchyHelper.network_summary(agent.id),
        "downline": AgentHierarchyHelper.get_downline(agent.id),
    }), 200


@bp.route("/agent/profile", methods=["PUT"])
@roles_required(Role.CONSULTANT.value)
def update_agent_profile():
    agent = _current_agent()
    data = request.get_json(silent=True) or {}

    for field in PROFILE_FIELDS:
        if field in data:
            setattr(agent, field, sanitize_input(data.get(field)) or None)
    if "date_of_birth" in data:
        agent.date_of_birth = parse_date(data.get("date_of_birth"), "date_of_birth")
    if data.get("full_name"):
        current_user.full_name = sanitize_input(data["full_name"])

    agent.profile_completed = all(getattr(agent, f) for f in PROFILE_REQUIRED)
    db.session.commit()

    current_app.logger.info(f"Agent {agent.agent_code} updated profile (completed={agent.profile_completed})")
    return jsonify({"success": True, "agent": agent.to_dict(include_bank=True)}), 200

#===========================================================================
#      ADMIN: AGENTS & COMMISSIONS
#==============================================================================
@bp.route("/admin/agents", methods=["GET"])
@admin_required
def list_agents():
    query = Agent.query.join(User, Agent.user_id == User.id)
    level = (request.args.get("level") or "").upper()
    if level:
        query = query.filter(Agent.level == level)

    agents = query.order_by(Agent.id).all()
    pending = dict(
        db.session.query(Commission.agent_id, func.sum(Commission.amount))
        .filter(Commission.paid.is_(False))
        .group_by(Commission.agent_id).all()
    )
    return jsonify({
        "agents": [
            {**a.to_dict(), "pending_commissions": float(pending.get(a.id) or 0), "investor_count": len(a.investors)}
            for a in agents
        ],
        "levels": [{"level": lvl, "label": LEVEL_LABELS[lvl]} for lvl in LEVEL_ORDER],
    }), 200


@bp.route("/admin/agents/<int:agent_id>/level", methods=["PATCH"])
@admin_required
def update_agent_level(agent_id):
    agent = _get_agent(agent_id)
    data = request.get_json(silent=True) or {}
    level = (data.get("level") or "").upper()
    if level not in LEVEL_ORDER:
        raise ValidationError(f"level must be one of {', '.join(LEVEL_ORDER)}")

    previous = agent.level
    agent.level = level
    AuditLog.record("agent_level_changed", actor_id=current_user.id, target=agent,
                    details={"from": previous, "to": level}, ip_address=client_ip(request))
    db.session.commit()

    current_app.logger.info(f"Agent {agent.agent_code} level {previous} -> {level}")
    return jsonify({"success": True, "agent": agent.to_dict()}), 200


@bp.route("/admin/agents/<int:agent_id>/parent", methods=["PATCH"])
@admin_required
def update_agent_parent(agent_id):
    data = request.get_json(silent=True) or {}
    parent_id = data.get("parent_id")
    try:
        parent_id = int(parent_id) if parent_id not in (None, "") else None
    except (TypeError, ValueError):
        raise ValidationError("parent_id must be an integer or null")

    try:
        agent = AgentHierarchyHelper.move_agent(agent_id, parent_id)
        AuditLog.record("agent_moved", actor_id=current_user.id, target=agent,
                        details={"parent_id": parent_id}, ip_address=client_ip(request))
        db.session.commit()
    except PortalError:
        db.session.rollback()
        raise
    except Exception:
        db.session.rollback()
        current_app.logger.error(f"Moving agent {agent_id} failed", exc_info=True)
        return jsonify({"error": "Failed to move agent"}), 500

    return jsonify({
        "success": True,
        "agent": agent.to_dict(),
        "upline": AgentHierarchyHelper.get_upline(agent.id),
    }), 200


@bp.route("/admin/commissions/mark-paid", methods=["POST"])
@admin_required
def mark_commissions_paid():
    data = request.get_json(silent=True) or {}
    ids = data.get("commission_ids")
    if not isinstance(ids, list) or not ids:
        raise ValidationError("commission_ids must be a non-empty list")
    try:
        ids = [int(cid) for cid in ids]
    except (TypeError, ValueError):
        raise ValidationError("commission_ids must be integers")

    updated = CommissionHelper.mark_paid(ids)
    AuditLog.record("commissions_marked_paid", actor_id=current_user.id,
                    details={"ids": ids, "updated": updated}, ip_address=client_ip(request))
    db.session.commit()
    return jsonify({"success": True, "updated": updated}), 200


@bp.route("/admin/commissions/accrue-passive", methods=["POST"])
@admin_required
def accrue_passive():
    data = request.get_json(silent=True) or {}
    as_of = parse_date(data.get("as_of"), "as_of")

    try:
        created = CommissionHelper.accrue_passive_commissions(as_of)
        AuditLog.record("passive_commissions_accrued", actor_id=current_user.id,
                        details={"created": len(created), "as_of": as_of.isoformat() if as_of else None},
                        ip_address=client_ip(request))
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.error("Passive commission accrual failed", exc_info=True)
        return jsonify({"error": "Failed to accrue passive commissions"}), 500

    return jsonify({
        "success": True,
        "created": len(created),
        "total_amount": float(sum((c.amount for c in created), Decimal("0"))),
    }), 200
