# Overview: Flask API routes for discount codes.

from flask import Blueprint, request, jsonify, g

from ..models.users import ROLE_ADMIN, ROLE_STAFF
from ..services import discount_service
from ..services.discount_service import DiscountError, DiscountNotFound
from ..services.order_totals import round_cents
from ..validation import ValidationError, require_int
from ..decorators import require_actor, require_role


discounts_bp = Blueprint("discounts", __name__, url_prefix="/api/discounts")

MANAGER_ROLES = (ROLE_STAFF, ROLE_ADMIN)


@discounts_bp.get("/")
@require_actor
@require_role(*MANAGER_ROLES)
def list_discounts_route():
    page = request.args.get("page", 1, type=int)
    rows, total = discount_service.list_discounts(
        page=page,
        per_page=request.args.get("per_page", 20, type=int),
        active_only=request.args.get("active") == "true",
        search=request.args.get("search"),
    )
    return jsonify({"items": [d.to_dict() for d in rows], "total": total, "page": page}), 200


@discounts_bp.post("/")
@require_actor
@require_role(*MANAGER_ROLES)
def create_discount_route():
    payload = request.get_json(silent=True) or {}
    try:
        discount = discount_service.create_discount(payload, created_by_user_id=g.current_user.id)
    except DiscountError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"discount": discount.to_dict()}), 201


@discounts_bp.get("/<int:discount_id>")
@require_actor
@require_role(*MANAGER_ROLES)
def get_discount_route(discount_id: int):
    try:
        discount = discount_service.get_discount(discount_id)
    except DiscountNotFound as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"discount": discount.to_dict()}), 200


@discounts_bp.put("/<int:discount_id>")
@require_actor
@require_role(*MANAGER_ROLES)
def update_discount_route(discount_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        discount = discount_service.update_discount(discount_id, payload)
    except DiscountNotFound as e:
        return jsonify({"error": str(e)}), 404
    except DiscountError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"discount": discount.to_dict()}), 200


@discounts_bp.delete("/<int:discount_id>")
@require_actor
@require_role(*MANAGER_ROLES)
def deactivate_discount_route(discount_id: int):
    try:
        discount = discount_service.deactivate_discount(discount_id)
    except DiscountNotFound as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"discount": discount.to_dict()}), 200


@discounts_bp.post("/validate")
@require_actor
def validate_discount_route():
    """Check a code against a subtotal without touching any cart."""
    payload = request.get_json(silent=True) or {}
    try:
        subtotal_cents = require_int(payload, "subtotal_cents", minimum=0)
        applied, amount = discount_service.resolve_discount(payload.get("code"), subtotal_cents)
    except DiscountNotFound as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, DiscountError) as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({
        "code": applied.code,
        "discount_type": applied.discount_type,
        "discount_value": applied.discount_value,
        "discount_cents": round_cents(amount),
    }), 200
