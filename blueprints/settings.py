from flask import Blueprint, jsonify, request
from flask_login import current_user

from errors import ValidationError
from extensions import db
from models import UserSettings
from security import login_required

bp = Blueprint("settings", __name__, url_prefix="/api/settings")

DEFAULT_SETTINGS = {
    "notifications": {"email": True, "new_applications": True, "commission_updates": True},
    "display_currency": "MYR",
    "theme": "dark",
    "language": "en",
}
ALLOWED_KEYS = set(DEFAULT_SETTINGS)


def _merged(data):
    merged = {**DEFAULT_SETTINGS, **(data or {})}
    merged["notifications"] = {**DEFAULT_SETTINGS["notifications"], **((data or {}).get("notifications") or {})}
    return merged


@bp.route("", methods=["GET"])
@login_required
def get_settings():
    settings = current_user.settings
    return jsonify({"settings": _merged(settings.data if settings else None)}), 200


@bp.route("", methods=["PUT"])
@login_required
def update_settings():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Settings must be a JSON object")

    unknown = sorted(set(data) - ALLOWED_KEYS)
    if unknown:
        raise ValidationError("Unknown settings", details=unknown)
    if "notifications" in data and not isinstance(data["notifications"], dict):
        raise ValidationError("notifications must be an object")

    settings = current_user.settings
    if settings is None:
        settings = UserSettings(user_id=current_user.id, data={})
        db.session.add(settings)

    updated = dict(settings.data or {})
    for key, value in data.items():
        if key == "notifications":
            value = {**(updated.get("notifications") or {}), **value}
        updated[key] = value

    # reassign so the JSON column is flagged dirty
    settings.data = _merged(updated)
    db.session.commit()

    return jsonify({"success": True, "settings": settings.data}), 200
