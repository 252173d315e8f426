# Overview: Service-layer operations for the shopping cart; every mutation ends in recompute_cart().

from __future__ import annotations

from ..extensions import db
from ..models import Cart, CartItem, Product
from ..models.sales import SHIPPING_METHODS
from . import discount_service, settings_service
from .order_totals import AppliedDiscount, OrderTotals, compute_order_totals, compute_subtotal, round_cents


MAX_ITEM_QUANTITY = 100


class CartError(ValueError):
    pass


class CartItemNotFound(CartError):
    pass


def _require_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise CartError("quantity must be an integer")
    if quantity < 1 or quantity > MAX_ITEM_QUANTITY:
        raise CartError(f"quantity must be between 1 and {MAX_ITEM_QUANTITY}")
    return quantity


def _available_for(product: Product) -> int:
    entry = product.stock_entry
    return entry.available_stock if entry is not None else 0


def _applied_discount(cart: Cart) -> AppliedDiscount | None:
    if not cart.discount_code:
        return None
    return AppliedDiscount(
        code=cart.discount_code,
        discount_type=cart.discount_type,
        discount_value=cart.discount_value or 0,
        max_discount_cents=cart.discount_max_cents,
    )


def compute_cart_totals(cart: Cart) -> OrderTotals:
    """Totals for the cart as it stands, with settings read fresh."""
    settings = settings_service.get_global_settings()
    shipping = settings.shipping_rates().get(cart.shipping_method, 0) if cart.items else 0
    return compute_order_totals(
        cart.items,
        _applied_discount(cart),
        settings.tax_rate_bps,
        shipping,
    )


def recompute_cart(cart: Cart) -> Cart:
    """
    Rewrite all stored totals together.

    The only writer of the *_cents columns on Cart; call after any change to
    items, discount or shipping method and before commit.
    """
    totals = compute_cart_totals(cart).to_dict()
    cart.subtotal_cents = totals["subtotal_cents"]
    cart.discount_cents = totals["discount_cents"]
    cart.tax_cents = totals["tax_cents"]
    cart.shipping_cents = totals["shipping_cents"]
    cart.total_cents = totals["total_cents"]
    return cart


def get_cart(user_id: int) -> Cart | None:
    return db.session.query(Cart).filter_by(user_id=user_id).first()


def get_or_create_cart(user_id: int) -> Cart:
    cart = get_cart(user_id)
    if cart is None:
        cart = Cart(user_id=user_id, shipping_method="standard")
        db.session.add(cart)
        recompute_cart(cart)
        db.session.commit()
    return cart


def _find_item(cart: Cart, item_id: int) -> CartItem:
    for item in cart.items:
        if item.id == item_id:
            return item
    raise CartItemNotFound("Cart item not found")


def add_item(
    *,
    user_id: int,
    product_id: int,
    quantity: int,
    selected_size: str | None = None,
    selected_color: str | None = None,
) -> Cart:
    """Add a product line, merging into an existing line with the same size/color."""
    quantity = _require_quantity(quantity)

    product = db.session.get(Product, product_id)
    if product is None or not product.is_active:
        raise CartError("Product not found or not available")

    cart = get_or_create_cart(user_id)
    existing = next(
        (
            item for item in cart.items
            if item.product_id == product.id
            and item.selected_size == selected_size
            and item.selected_color == selected_color
        ),
        None,
    )

    new_quantity = quantity + (existing.quantity if existing is not None else 0)
    if new_quantity > MAX_ITEM_QUANTITY:
        raise CartError(f"quantity must be between 1 and {MAX_ITEM_QUANTITY}")
    available = _available_for(product)
    if new_quantity > available:
        raise CartError(f"Insufficient stock. Only {available} item(s) available")

    if existing is not None:
        existing.quantity = new_quantity
        existing.unit_price_cents = product.price_cents
    else:
        cart.items.append(
            CartItem(
                product_id=product.id,
                quantity=quantity,
                unit_price_cents=product.price_cents,
                selected_size=selected_size,
                selected_color=selected_color,
            )
        )

    recompute_cart(cart)
    db.session.commit()
    return cart


def update_item_quantity(*, user_id: int, item_id: int, quantity: int) -> Cart:
    quantity = _require_quantity(quantity)
    cart = get_or_create_cart(user_id)
    item = _find_item(cart, item_id)

    available = _available_for(item.product)
    if quantity > available:
        raise CartError(f"Insufficient stock. Only {available} item(s) available")

    item.quantity = quantity
    recompute_cart(cart)
    db.session.commit()
    return cart


def remove_item(*, user_id: int, item_id: int) -> Cart:
    cart = get_or_create_cart(user_id)
    item = _find_item(cart, item_id)
    cart.items.remove(item)
    recompute_cart(cart)
    db.session.commit()
    return cart


def reset_cart(cart: Cart) -> Cart:
    """Empty items and drop the discount without committing."""
    cart.items.clear()
    cart.discount_code = None
    cart.discount_type = None
    cart.discount_value = None
    cart.discount_max_cents = None
    recompute_cart(cart)
    return cart


def clear_cart(*, user_id: int) -> Cart:
    cart = get_or_create_cart(user_id)
    reset_cart(cart)
    db.session.commit()
    return cart


def apply_discount(*, user_id: int, code: str) -> Cart:
    """
    Validate a code against the cart subtotal and snapshot it onto the cart.

    An invalid, expired or inapplicable code raises and the cart is left as it was.
    """
    cart = get_or_create_cart(user_id)
    if not cart.items:
        raise CartError("Cart is empty")

    subtotal_cents = round_cents(compute_subtotal(cart.items))
    applied, _amount = discount_service.resolve_discount(code, subtotal_cents)

    cart.discount_code = applied.code
    cart.discount_type = applied.discount_type
    cart.discount_value = applied.discount_value
    cart.discount_max_cents = applied.max_discount_cents
    recompute_cart(cart)
    db.session.commit()
    return cart


def remove_discount(*, user_id: int) -> Cart:
    cart = get_or_create_cart(user_id)
    cart.discount_code = None
    cart.discount_type = None
    cart.discount_value = None
    cart.discount_max_cents = None
    recompute_cart(cart)
    db.session.commit()
    return cart


def set_shipping_method(*, user_id: int, method: str) -> Cart:
    if method not in SHIPPING_METHODS:
        raise CartError("shipping method must be standard, express, or overnight")
    cart = get_or_create_cart(user_id)
    cart.shipping_method = method
    recompute_cart(cart)
    db.session.commit()
    return cart


def update_shipping_address(*, user_id: int, address: dict, billing_address: dict | None = None) -> Cart:
    if not isinstance(address, dict) or not address:
        raise CartError("shipping address is required")
    cart = get_or_create_cart(user_id)
    cart.shipping_address = address
    if billing_address is not None:
        cart.billing_address = billing_address
    recompute_cart(cart)
    db.session.commit()
    return cart


def get_summary(*, user_id: int) -> dict:
    """Cart payload with totals recomputed against current settings."""
    cart = get_or_create_cart(user_id)
    recompute_cart(cart)
    db.session.commit()

    summary = cart.to_dict()
    summary["item_count"] = sum(item.quantity for item in cart.items)
    summary["currency"] = settings_service.get_global_settings().currency
    return summary
