# Overview: Flask API routes for the current user's cart.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import cart_service
from ..services.cart_service import CartError, CartItemNotFound
from ..services.discount_service import DiscountError, DiscountNotFound
from ..validation import ValidationError, require_int
from ..decorators import require_actor


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def _cart_response(status: int = 200):
    return jsonify({"cart": cart_service.get_summary(user_id=g.current_user.id)}), status


@cart_bp.get("/")
@require_actor
def get_cart_route():
    return _cart_response()


@cart_bp.post("/items")
@require_actor
def add_item_route():
    """Body: product_id, quantity (default 1), optional selected_size / selected_color."""
    payload = request.get_json(silent=True) or {}
    try:
        product_id = require_int(payload, "product_id", minimum=1)
        quantity = require_int({"quantity": payload.get("quantity", 1)}, "quantity")
        cart_service.add_item(
            user_id=g.current_user.id,
            product_id=product_id,
            quantity=quantity,
            selected_size=payload.get("selected_size"),
            selected_color=payload.get("selected_color"),
        )
    except (ValidationError, CartError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to add cart item")
        return jsonify({"error": "Internal server error"}), 500
    return _cart_response(201)


@cart_bp.put("/items/<int:item_id>")
@require_actor
def update_item_route(item_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        quantity = require_int(payload, "quantity")
        cart_service.update_item_quantity(user_id=g.current_user.id, item_id=item_id, quantity=quantity)
    except CartItemNotFound as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, CartError) as e:
        return jsonify({"error": str(e)}), 400
    return _cart_response()


@cart_bp.delete("/items/<int:item_id>")
@require_actor
def remove_item_route(item_id: int):
    try:
        cart_service.remove_item(user_id=g.current_user.id, item_id=item_id)
    except CartItemNotFound as e:
        return jsonify({"error": str(e)}), 404
    return _cart_response()


@cart_bp.delete("/")
@require_actor
def clear_cart_route():
    cart_service.clear_cart(user_id=g.current_user.id)
    return _cart_response()


@cart_bp.post("/discount")
@require_actor
def apply_discount_route():
    payload = request.get_json(silent=True) or {}
    try:
        cart_service.apply_discount(user_id=g.current_user.id, code=payload.get("code"))
    except DiscountNotFound as e:
        return jsonify({"error": str(e)}), 404
    except (DiscountError, CartError) as e:
        return jsonify({"error": str(e)}), 400
    return _cart_response()


@cart_bp.delete("/discount")
@require_actor
def remove_discount_route():
    cart_service.remove_discount(user_id=g.current_user.id)
    return _cart_response()


@cart_bp.put("/shipping")
@require_actor
def update_shipping_route():
    """Body: method and/or address (object), optional billing_address."""
    payload = request.get_json(silent=True) or {}
    try:
        if "method" in payload:
            cart_service.set_shipping_method(user_id=g.current_user.id, method=payload["method"])
        if "address" in payload:
            cart_service.update_shipping_address(
                user_id=g.current_user.id,
                address=payload["address"],
                billing_address=payload.get("billing_address"),
            )
    except CartError as e:
        return jsonify({"error": str(e)}), 400
    return _cart_response()
