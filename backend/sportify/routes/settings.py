# Overview: Flask API routes for global store settings.

from flask import Blueprint, request, jsonify, g

from ..extensions import db
from ..models.users import ROLE_ADMIN
from ..services import settings_service
from ..services.settings_service import SettingsError
from ..decorators import require_actor, require_role


settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("/")
def get_settings_route():
    """Public: storefronts need the currency, tax rate and shipping rates."""
    row = settings_service.get_global_settings()
    # first read may have created the row
    db.session.commit()
    return jsonify({"settings": row.to_dict()}), 200


@settings_bp.put("/")
@require_actor
@require_role(ROLE_ADMIN)
def update_settings_route():
    payload = request.get_json(silent=True) or {}
    try:
        row = settings_service.update_global_settings(payload, updated_by_user_id=g.current_user.id)
    except SettingsError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"settings": row.to_dict()}), 200
