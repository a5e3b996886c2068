import logging
from datetime import date

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from accounts import create_user
from dividends.calculator import DEFAULT_PERIOD_YEARS, calculate_for_investment, serialize, summarise
from dividends.commission import CommissionHelper
from dividends.tiers import rates_for, tier_for_amount
from errors import NotFound, PermissionDenied, PortalError, ValidationError
from extensions import db
from models import (
    ActivityAlert, Agent, AuditLog, DividendType, Investment, InvestmentStatus, Investor, Role, User,
)
from notifications import send_investor_welcome_email
from security import permission_required, roles_required
from utils import client_ip, generate_temporary_password, money, parse_date, sanitize_input, to_decimal

logger = logging.getLogger(__name__)

bp = Blueprint("investors", __name__, url_prefix="/api")

INVESTOR_FIELDS = (
    "company_name", "occupation", "address", "postcode", "city", "country", "contact_number",
    "gender", "nationality", "race", "source_of_income", "estimated_annual_income",
    "years_of_investment_experience", "bank_account_beneficiary_name", "bank_name", "bank_branch",
    "account_no", "swift_code", "emergency_contact_name", "emergency_contact_relationship",
    "emergency_contact_mobile", "emergency_contact_email",
)


def _current_agent():
    agent = current_user.agent
    if agent is None:
        raise PermissionDenied("Consultant profile not found")
    return agent


def _get_investor(investor_id):
    investor = db.session.get(Investor, investor_id)
    if not investor:
        raise NotFound("Investor not found")
    return investor


def _ensure_can_view(investor):
    if current_user.is_admin:
        return
    if current_user.is_consultant and current_user.agent and investor.agent_id == current_user.agent.id:
        return
    if current_user.is_investor and investor.user_id == current_user.id:
        return
    raise PermissionDenied("Access denied")


def build_investment(investor, agent_id, payload):
    """Unsaved Investment with tier and rates derived from amount and dividend type."""
    if not isinstance(payload, dict):
        raise ValidationError("investment details are required")

    amount = money(to_decimal(payload.get("amount"), "amount"))
    dividend_type = (payload.get("dividend_type") or DividendType.STANDARD.value).upper()
    tier = tier_for_amount(amount)
    quarterly_rate, yearly_rate = rates_for(tier, dividend_type)

    try:
        period_years = int(payload.get("period_years") or DEFAULT_PERIOD_YEARS)
    except (TypeError, ValueError):
        raise ValidationError("period_years must be a whole number")
    if not 1 <= period_years <= 30:
        raise ValidationError("period_years must be between 1 and 30")

    return Investment(
        investor=investor,
        agent_id=agent_id,
        dividend_type=dividend_type,
        tier=tier,
        amount=amount,
        quarterly_rate=quarterly_rate,
        yearly_rate=yearly_rate,
        start_date=parse_date(payload.get("start_date"), "start_date") or date.today(),
        period_years=period_years,
        status=InvestmentStatus.ACTIVE.value,
    )


def _resolve_agent_id(data):
    """Consultants always sell as themselves; admins may name any agent."""
    if current_user.is_consultant:
        return _current_agent().id

    agent_id = data.get("agent_id")
    if agent_id in (None, ""):
        agent_code = data.get("agent_code")
        if not agent_code:
            return None
        agent = Agent.query.filter_by(agent_code=str(agent_code).upper()).first()
    else:
        try:
            agent = db.session.get(Agent, int(agent_id))
        except (TypeError, ValueError):
            raise ValidationError("agent_id must be an integer")
    if not agent:
        raise NotFound("Agent not found")
    return agent.id

#===========================================================================
#      INVESTOR ONBOARDING
#==============================================================================
@bp.route("/investors", methods=["POST"])
@permission_required("register_investors")
def create_investor():
    """
    Register an investor with a first investment.
    Creates the login (temporary password), the investor profile, the investment
    and the sale commissions in one transaction.
    """
    data = request.get_json(silent=True)
    if not data:
        raise ValidationError("Invalid or missing JSON body")

    nric = sanitize_input(data.get("nric"))
    if not nric:
        raise ValidationError("NRIC / passport number is required")

    temporary_password = generate_temporary_password()
    try:
        agent_id = _resolve_agent_id(data)
        user = create_user(
            data.get("email"),
            sanitize_input(data.get("full_name")),
            temporary_password,
            Role.INVESTOR.value,
            must_change_password=True,
        )

        investor = Investor(
            user_id=user.id,
            agent_id=agent_id,
            nric=nric,
            date_of_birth=parse_date(data.get("date_of_birth"), "date_of_birth"),
            politically_exposed=bool(data.get("politically_exposed")),
        )
        for field in INVESTOR_FIELDS:
            value = data.get(field)
            if value not in (None, ""):
                setattr(investor, field, sanitize_input(value))
        db.session.add(investor)

        investment = build_investment(investor, agent_id, data.get("investment"))
        db.session.add(investment)
        db.session.flush()

        CommissionHelper.record_investment_commissions(investment)

        AuditLog.record("investor_created", actor_id=current_user.id, target=investor,
                        details={"investment_id": investment.id}, ip_address=client_ip(request))
        ActivityAlert.raise_alert(
            "new_investor", "New investor registered",
            f"{user.full_name} invested RM {investment.amount:,.2f} (tier {investment.tier})",
            target=investor,
        )
        db.session.commit()
    except PortalError:
        db.session.rollback()
        raise
    except Exception:
        db.session.rollback()
        current_app.logger.error("Investor registration failed", exc_info=True)
        return jsonify({"error": "Failed to register investor"}), 500

    email_sent = send_investor_welcome_email(user, temporary_password)
    current_app.logger.info(f"Investor {investor.id} registered by user {current_user.id}")

    return jsonify({
        "success": True,
        "investor": investor.to_dict(include_investments=True),
        "temporary_password": temporary_password,
        "email_sent": email_sent,
    }), 201


@bp.route("/investors", methods=["GET"])
@roles_required(Role.ADMIN.value, Role.CONSULTANT.value)
def list_investors():
    query = Investor.query.join(User, Investor.user_id == User.id)
    if current_user.is_consultant:
        query = query.filter(Investor.agent_id == _current_agent().id)

    search = (request.args.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        query = query.filter(
            User.full_name.ilike(like) | User.email.ilike(like) | Investor.nric.ilike(like)
        )

    investors = query.order_by(Investor.created_at.desc(), Investor.id.desc()).all()
    return jsonify({"investors": [i.to_dict() for i in investors], "count": len(investors)}), 200


@bp.route("/investors/<int:investor_id>", methods=["GET"])
@roles_required()
def investor_detail(investor_id):
    investor = _get_investor(investor_id)
    _ensure_can_view(investor)

    as_of = parse_date(request.args.get("as_of"), "as_of")
    calculations = [calculate_for_investment(i, as_of) for i in investor.investments]

    result = investor.to_dict(include_investments=True)
    result["dividends"] = [serialize(c) for c in calculations]
    result["summary"] = serialize(summarise(calculations))
    return jsonify({"investor": result}), 200


@bp.route("/investors/<int:investor_id>/investments", methods=["POST"])
@roles_required(Role.ADMIN.value, Role.CONSULTANT.value)
def add_investment(investor_id):
    investor = _get_investor(investor_id)
    if current_user.is_consultant and investor.agent_id != _current_agent().id:
        raise PermissionDenied("Access denied")

    data = request.get_json(silent=True) or {}
    try:
        investment = build_investment(investor, investor.agent_id, data)
        db.session.add(investment)
        db.session.flush()
        CommissionHelper.record_investment_commissions(investment)
        AuditLog.record("investment_added", actor_id=current_user.id, target=investment,
                        ip_address=client_ip(request))
        db.session.commit()
    except PortalError:
        db.session.rollback()
        raise
    except Exception:
        db.session.rollback()
        current_app.logger.error(f"Adding investment for investor {investor_id} failed", exc_info=True)
        return jsonify({"error": "Failed to add investment"}), 500

    return jsonify({"success": True, "investment": investment.to_dict()}), 201


@bp.route("/investments/<int:investment_id>/status", methods=["PATCH"])
@roles_required(Role.ADMIN.value)
def update_investment_status(investment_id):
    investment = db.session.get(Investment, investment_id)
    if not investment:
        raise NotFound("Investment not found")

    data = request.get_json(silent=True) or {}
    status = (data.get("status") or "").upper()
    if status not in {s.value for s in InvestmentStatus}:
        raise ValidationError("status must be ACTIVE, COMPLETED or SUSPENDED")

    previous = investment.status
    investment.status = status
    AuditLog.record("investment_status_changed", actor_id=current_user.id, target=investment,
                    details={"from": previous, "to": status}, ip_address=client_ip(request))
    db.session.commit()

    current_app.logger.info(f"Investment {investment.id} status {previous} -> {status}")
    return jsonify({"success": True, "investment": investment.to_dict()}), 200


@bp.route("/investor/dashboard", methods=["GET"])
@roles_required(Role.INVESTOR.value)
def investor_dashboard():
    investor = current_user.investor
    if investor is None:
        raise NotFound("Investor profile not found")

    as_of = parse_date(request.args.get("as_of"), "as_of")
    calculations = [calculate_for_investment(i, as_of) for i in investor.investments]

    return jsonify({
        "investor": investor.to_dict(),
        "agent": investor.agent.to_dict() if investor.agent else None,
        "investments": [i.to_dict() for i in investor.investments],
        "dividends": [serialize(c) for c in calculations],
        "summary": serialize(summarise(calculations)),
        "must_change_password": current_user.must_change_password,
    }), 200
