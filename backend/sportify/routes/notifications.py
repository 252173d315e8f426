# Overview: Flask API routes for the caller's in-app notifications.

from flask import Blueprint, request, jsonify, g

from ..extensions import db
from ..models import Notification
from ..services import notification_service
from ..decorators import require_actor


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("/")
@require_actor
def list_notifications_route():
    rows = notification_service.list_notifications(
        user_id=g.current_user.id,
        unread_only=request.args.get("unread") == "true",
    )
    return jsonify({"items": [n.to_dict() for n in rows]}), 200


@notifications_bp.put("/<int:notification_id>/read")
@require_actor
def mark_read_route(notification_id: int):
    note = db.session.get(Notification, notification_id)
    if note is None or note.user_id != g.current_user.id:
        return jsonify({"error": "Notification not found"}), 404
    note.is_read = True
    db.session.commit()
    return jsonify({"notification": note.to_dict()}), 200
