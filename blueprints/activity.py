from datetime import datetime

from flask import Blueprint, jsonify, request
from flask_login import current_user

from errors import NotFound, ValidationError
from extensions import db
from models import ActivityAlert
from security import admin_required
from utils import utcnow

bp = Blueprint("activity", __name__, url_prefix="/api/admin/alerts")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _parse_since(value):
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        raise ValidationError("since must be an ISO timestamp")


@bp.route("", methods=["GET"])
@admin_required
def list_alerts():
    """
    Recent alerts for the notification panel, newest first.
    Clients poll with ?since=<last created_at> to pick up new entries.
    """
    page_size = request.args.get("page_size", DEFAULT_PAGE_SIZE, type=int)
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        raise ValidationError(f"Page size must be between 1 and {MAX_PAGE_SIZE}")

    query = ActivityAlert.query
    since = _parse_since(request.args.get("since"))
    if since:
        query = query.filter(ActivityAlert.created_at > since)
    if request.args.get("unread") in ("1", "true"):
        query = query.filter(ActivityAlert.is_read.is_(False))

    alerts = query.order_by(ActivityAlert.created_at.desc(), ActivityAlert.id.desc()).limit(page_size).all()
    unread = ActivityAlert.query.filter(ActivityAlert.is_read.is_(False)).count()

    return jsonify({
        "alerts": [a.to_dict() for a in alerts],
        "unread_count": unread,
        "server_time": utcnow().isoformat(),
    }), 200


@bp.route("/<int:alert_id>/read", methods=["POST"])
@admin_required
def mark_alert_read(alert_id):
    alert = db.session.get(ActivityAlert, alert_id)
    if not alert:
        raise NotFound("Alert not found")

    if not alert.is_read:
        alert.is_read = True
        alert.read_at = utcnow()
        alert.read_by = current_user.id
        db.session.commit()
    return jsonify({"success": True, "alert": alert.to_dict()}), 200


@bp.route("/read-all", methods=["POST"])
@admin_required
def mark_all_read():
    updated = ActivityAlert.query.filter(ActivityAlert.is_read.is_(False)).update(
        {"is_read": True, "read_at": utcnow(), "read_by": current_user.id},
        synchronize_session=False,
    )
    db.session.commit()
    return jsonify({"success": True, "updated": updated}), 200
