from flask import Blueprint, jsonify, request
from flask_login import current_user

from dividends.calculator import calculate_for_investment, serialize, summarise
from dividends.tiers import tier_table
from errors import NotFound, PermissionDenied
from extensions import db
from models import Investment, InvestmentStatus
from security import permission_required, roles_required
from utils import parse_date

bp = Blueprint("dividends", __name__, url_prefix="/api/dividends")


@bp.route("", methods=["GET"])
@permission_required("manage_dividends")
def dividend_overview():
    """Calculations for every investment plus portfolio totals. ?status= narrows the list."""
    as_of = parse_date(request.args.get("as_of"), "as_of")
    query = Investment.query
    status = (request.args.get("status") or "").upper()
    if status in {s.value for s in InvestmentStatus}:
        query = query.filter(Investment.status == status)

    calculations = [calculate_for_investment(i, as_of) for i in query.order_by(Investment.id).all()]
    return jsonify({
        "as_of": (as_of.isoformat() if as_of else None),
        "calculations": [serialize(c) for c in calculations],
        "summary": serialize(summarise(calculations)),
    }), 200


@bp.route("/tiers", methods=["GET"])
@roles_required()
def tiers():
    return jsonify({"tiers": tier_table()}), 200


@bp.route("/investments/<int:investment_id>", methods=["GET"])
@roles_required()
def investment_dividend(investment_id):
    investment = db.session.get(Investment, investment_id)
    if not investment:
        raise NotFound("Investment not found")

    allowed = (
        current_user.is_admin
        or (current_user.is_consultant and current_user.agent is not None
            and investment.agent_id == current_user.agent.id)
        or (current_user.is_investor and investment.investor.user_id == current_user.id)
    )
    if not allowed:
        raise PermissionDenied("Access denied")

    as_of = parse_date(request.args.get("as_of"), "as_of")
    return jsonify({"calculation": serialize(calculate_for_investment(investment, as_of))}), 200
