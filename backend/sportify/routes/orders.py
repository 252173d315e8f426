# Overview: Flask API routes for orders; parses input and returns JSON responses.

# backend/sportify/routes/orders.py
"""
Order API routes.

Customers place and view their own orders and may cancel them while they are
still pending/processing. Staff and admins drive shipment and payment status.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models.users import ROLE_ADMIN, ROLE_STAFF, ROLE_SUPPLIER
from ..services import order_service
from ..services.order_service import OrderError, OrderNotFound
from ..services.stock_service import InsufficientStock, StockError
from ..services.discount_service import DiscountError
from ..validation import ValidationError, require_int
from ..decorators import require_actor, require_role


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

MANAGER_ROLES = (ROLE_STAFF, ROLE_ADMIN)


def _can_view(order) -> bool:
    user = g.current_user
    if user.role in MANAGER_ROLES:
        return True
    if user.role == ROLE_SUPPLIER:
        return any(item.supplier_user_id == user.id for item in order.items)
    return order.user_id == user.id


@orders_bp.post("/")
@require_actor
def place_order_route():
    """
    Place an order from the caller's cart.

    409 when any line is short on stock; nothing is decremented in that case.
    """
    payload = request.get_json(silent=True) or {}
    try:
        order = order_service.place_order(
            user_id=g.current_user.id,
            payment_method=payload.get("payment_method"),
            shipping_address=payload.get("shipping_address"),
            billing_address=payload.get("billing_address"),
            notes=payload.get("notes"),
        )
    except InsufficientStock as e:
        return jsonify({"error": str(e), "requested": e.requested, "available": e.available}), 409
    except (OrderError, DiscountError, StockError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to place order")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"order": order.to_dict()}), 201


@orders_bp.get("/")
@require_actor
def list_orders_route():
    user = g.current_user
    filters = {}
    if user.role == ROLE_SUPPLIER:
        filters["supplier_user_id"] = user.id
    elif user.role not in MANAGER_ROLES:
        filters["user_id"] = user.id

    page = request.args.get("page", 1, type=int)
    rows, total = order_service.list_orders(
        shipment_status=request.args.get("status"),
        payment_status=request.args.get("payment_status"),
        page=page,
        per_page=request.args.get("per_page", 20, type=int),
        **filters,
    )
    return jsonify({"items": [o.to_dict() for o in rows], "total": total, "page": page}), 200


@orders_bp.get("/stats")
@require_actor
@require_role(*MANAGER_ROLES)
def order_stats_route():
    return jsonify({"stats": order_service.get_order_stats()}), 200


@orders_bp.get("/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
    except OrderNotFound as e:
        return jsonify({"error": str(e)}), 404
    if not _can_view(order):
        return jsonify({"error": "Not authorized to access this order"}), 403
    return jsonify({"order": order.to_dict()}), 200


@orders_bp.put("/<int:order_id>/shipment")
@require_actor
@require_role(*MANAGER_ROLES)
def update_shipment_route(order_id: int):
    """Body: status, tracking_number, carrier, notes (all optional)."""
    payload = request.get_json(silent=True) or {}
    try:
        order = order_service.update_shipment_status(
            order_id=order_id,
            status=payload.get("status"),
            tracking_number=payload.get("tracking_number"),
            carrier=payload.get("carrier"),
            notes=payload.get("notes"),
            performed_by_user_id=g.current_user.id,
        )
    except OrderNotFound as e:
        return jsonify({"error": str(e)}), 404
    except (OrderError, StockError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update shipment")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"order": order.to_dict()}), 200


@orders_bp.put("/<int:order_id>/cancel")
@require_actor
def cancel_order_route(order_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        order = order_service.get_order(order_id)
        if g.current_user.role not in MANAGER_ROLES and order.user_id != g.current_user.id:
            return jsonify({"error": "Not authorized to cancel this order"}), 403
        order = order_service.cancel_order(
            order_id=order_id,
            reason=payload.get("reason"),
            performed_by_user_id=g.current_user.id,
        )
    except OrderNotFound as e:
        return jsonify({"error": str(e)}), 404
    except (OrderError, StockError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"order": order.to_dict()}), 200


@orders_bp.put("/<int:order_id>/payment")
@require_actor
@require_role(*MANAGER_ROLES)
def update_payment_route(order_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        order = order_service.update_payment_status(order_id=order_id, status=payload.get("status"))
    except OrderNotFound as e:
        return jsonify({"error": str(e)}), 404
    except OrderError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"order": order.to_dict()}), 200


@orders_bp.post("/<int:order_id>/refund")
@require_actor
@require_role(*MANAGER_ROLES)
def refund_route(order_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        amount = require_int(payload, "amount_cents", minimum=1)
        order = order_service.process_refund(order_id=order_id, amount_cents=amount)
    except OrderNotFound as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, OrderError) as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"order": order.to_dict()}), 200
