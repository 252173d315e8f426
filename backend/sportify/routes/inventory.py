# Overview: Flask API routes for the stock ledger; parses input and returns JSON responses.

# backend/sportify/routes/inventory.py
"""
Inventory routes.

All routes require a staff or admin actor. Writes go through stock_service,
which owns every counter change and the movement ledger.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..models import LowStockAlert
from ..models.users import ROLE_ADMIN, ROLE_STAFF
from ..services import stock_service
from ..services.stock_service import InsufficientStock, StockEntryNotFound, StockError
from ..validation import ValidationError, optional_int, require_int, require_str
from ..decorators import require_actor, require_role


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

STOCK_ROLES = (ROLE_STAFF, ROLE_ADMIN)


def _stock_error(e: StockError):
    if isinstance(e, StockEntryNotFound):
        return jsonify({"error": str(e)}), 404
    if isinstance(e, InsufficientStock):
        return jsonify({"error": str(e), "requested": e.requested, "available": e.available}), 400
    return jsonify({"error": str(e)}), 400


@inventory_bp.get("/summary")
@require_actor
@require_role(*STOCK_ROLES)
def inventory_summary_route():
    return jsonify({"summary": stock_service.get_inventory_summary()}), 200


@inventory_bp.get("/low-stock")
@require_actor
@require_role(*STOCK_ROLES)
def low_stock_route():
    entries = stock_service.list_low_stock()
    return jsonify({"items": [e.to_dict() for e in entries], "count": len(entries)}), 200


@inventory_bp.get("/alerts")
@require_actor
@require_role(*STOCK_ROLES)
def list_alerts_route():
    q = db.session.query(LowStockAlert)
    status = request.args.get("status")
    if status:
        q = q.filter(LowStockAlert.status == status.upper())
    limit = min(max(request.args.get("limit", 50, type=int), 1), 200)
    rows = q.order_by(LowStockAlert.created_at.desc(), LowStockAlert.id.desc()).limit(limit).all()
    return jsonify({"items": [a.to_dict() for a in rows]}), 200


@inventory_bp.get("/<int:product_id>")
@require_actor
@require_role(*STOCK_ROLES)
def get_stock_entry_route(product_id: int):
    try:
        entry = stock_service.get_stock_entry(product_id)
    except StockError as e:
        return _stock_error(e)
    return jsonify({"entry": entry.to_dict()}), 200


@inventory_bp.get("/<int:product_id>/movements")
@require_actor
@require_role(*STOCK_ROLES)
def list_movements_route(product_id: int):
    page = request.args.get("page", 1, type=int)
    per_page = request.args.get("per_page", 20, type=int)
    try:
        rows, total = stock_service.list_movements(
            product_id=product_id,
            page=page,
            per_page=per_page,
            movement_type=request.args.get("type"),
        )
    except StockError as e:
        return _stock_error(e)
    return jsonify({"items": [m.to_dict() for m in rows], "total": total, "page": page}), 200


@inventory_bp.post("/<int:product_id>/add")
@require_actor
@require_role(*STOCK_ROLES)
def add_stock_route(product_id: int):
    """Receive stock. Body: quantity, reason, optional cost_cents and notes."""
    payload = request.get_json(silent=True) or {}
    try:
        quantity = require_int(payload, "quantity", minimum=1)
        reason = require_str(payload, "reason")
        cost_cents = optional_int(payload, "cost_cents", minimum=0)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        entry = stock_service.add_stock(
            product_id=product_id,
            quantity=quantity,
            reason=reason,
            cost_cents=cost_cents,
            notes=payload.get("notes"),
            performed_by_user_id=g.current_user.id,
        )
    except StockError as e:
        return _stock_error(e)
    except Exception:
        current_app.logger.exception("Failed to add stock")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"entry": entry.to_dict()}), 201


def _stock_out(product_id: int, operation):
    payload = request.get_json(silent=True) or {}
    try:
        quantity = require_int(payload, "quantity", minimum=1)
        reason = require_str(payload, "reason")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        entry = operation(
            product_id=product_id,
            quantity=quantity,
            reason=reason,
            notes=payload.get("notes"),
            performed_by_user_id=g.current_user.id,
        )
    except StockError as e:
        return _stock_error(e)
    except Exception:
        current_app.logger.exception("Failed to record stock movement")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"entry": entry.to_dict()}), 200


@inventory_bp.post("/<int:product_id>/remove")
@require_actor
@require_role(*STOCK_ROLES)
def remove_stock_route(product_id: int):
    return _stock_out(product_id, stock_service.remove_stock)


@inventory_bp.post("/<int:product_id>/damage")
@require_actor
@require_role(*STOCK_ROLES)
def record_damage_route(product_id: int):
    return _stock_out(product_id, stock_service.record_damage)


@inventory_bp.post("/<int:product_id>/return")
@require_actor
@require_role(*STOCK_ROLES)
def record_return_route(product_id: int):
    return _stock_out(product_id, stock_service.record_return)


@inventory_bp.post("/<int:product_id>/adjust")
@require_actor
@require_role(*STOCK_ROLES)
def adjust_stock_route(product_id: int):
    """Set the counted quantity. Body: new_quantity, reason, optional notes."""
    payload = request.get_json(silent=True) or {}
    try:
        new_quantity = require_int(payload, "new_quantity", minimum=0)
        reason = require_str(payload, "reason")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        entry = stock_service.adjust_stock(
            product_id=product_id,
            new_quantity=new_quantity,
            reason=reason,
            notes=payload.get("notes"),
            performed_by_user_id=g.current_user.id,
        )
    except stock_service.StockConflict as e:
        return jsonify({"error": str(e)}), 409
    except StockError as e:
        return _stock_error(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"entry": entry.to_dict()}), 200


@inventory_bp.post("/<int:product_id>/reserve")
@require_actor
@require_role(*STOCK_ROLES)
def reserve_stock_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        quantity = require_int(payload, "quantity", minimum=1)
        entry = stock_service.reserve_stock(product_id=product_id, quantity=quantity)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except StockError as e:
        return _stock_error(e)
    return jsonify({"entry": entry.to_dict()}), 200


@inventory_bp.post("/<int:product_id>/release")
@require_actor
@require_role(*STOCK_ROLES)
def release_stock_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        quantity = require_int(payload, "quantity", minimum=1)
        entry = stock_service.release_reserved_stock(product_id=product_id, quantity=quantity)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except StockError as e:
        return _stock_error(e)
    return jsonify({"entry": entry.to_dict()}), 200


@inventory_bp.put("/<int:product_id>/settings")
@require_actor
@require_role(*STOCK_ROLES)
def update_settings_route(product_id: int):
    """Edit min/max levels and reorder thresholds."""
    payload = request.get_json(silent=True) or {}
    try:
        data = {}
        for key in stock_service.SETTINGS_FIELDS:
            if key in payload:
                data[key] = None if payload[key] is None else require_int(payload, key, minimum=0)
        entry = stock_service.update_inventory_settings(product_id=product_id, data=data)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except StockError as e:
        return _stock_error(e)
    return jsonify({"entry": entry.to_dict()}), 200
