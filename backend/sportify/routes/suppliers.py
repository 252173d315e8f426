# Overview: Flask API routes for supplier balances and payouts.

from flask import Blueprint, request, jsonify, g, current_app

from ..models.users import ROLE_ADMIN, ROLE_STAFF, ROLE_SUPPLIER
from ..services import order_service
from ..services.order_service import OrderError, SupplierNotFound
from ..decorators import require_actor, require_role


suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


@suppliers_bp.get("/<int:supplier_id>/balance")
@require_actor
def supplier_balance_route(supplier_id: int):
    """Suppliers see their own balance; staff and admins see any."""
    user = g.current_user
    if user.role == ROLE_SUPPLIER and user.id != supplier_id:
        return jsonify({"error": "Not authorized"}), 403
    if user.role not in (ROLE_SUPPLIER, ROLE_STAFF, ROLE_ADMIN):
        return jsonify({"error": "Permission denied"}), 403
    try:
        balance = order_service.get_supplier_balance(supplier_id)
    except SupplierNotFound as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"balance": balance}), 200


@suppliers_bp.post("/<int:supplier_id>/pay")
@require_actor
@require_role(ROLE_ADMIN)
def pay_supplier_route(supplier_id: int):
    """Body: item_ids (order item ids to mark as paid out)."""
    payload = request.get_json(silent=True) or {}
    try:
        payout = order_service.mark_items_paid(
            supplier_user_id=supplier_id,
            item_ids=payload.get("item_ids"),
            paid_by_user_id=g.current_user.id,
        )
    except SupplierNotFound as e:
        return jsonify({"error": str(e)}), 404
    except OrderError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to pay supplier")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"payout": payout}), 200
