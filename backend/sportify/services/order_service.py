# Overview: Service-layer operations for orders: checkout, shipment/payment state machines, cancellation and refunds.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Cart, DocumentSequence, Order, OrderItem, User
from ..models.inventory import MOVEMENT_RETURN
from ..models.sales import (
    PAYMENT_METHODS,
    PAYMENT_PENDING,
    PAYMENT_PAID,
    PAYMENT_FAILED,
    PAYMENT_REFUNDED,
    PAYMENT_PARTIALLY_REFUNDED,
    SHIPMENT_PENDING,
    SHIPMENT_PROCESSING,
    SHIPMENT_SHIPPED,
    SHIPMENT_DELIVERED,
    SHIPMENT_CANCELLED,
    SHIPMENT_RETURNED,
)
from ..models.users import ROLE_SUPPLIER
from sportify.time_utils import utcnow
from . import cart_service, discount_service, settings_service, stock_service
from .concurrency import run_in_transaction
from .order_totals import compute_order_totals, compute_subtotal, compute_supplier_net, round_cents


ORDER_NUMBER_PREFIX = "SPF"

SHIPMENT_TRANSITIONS = {
    SHIPMENT_PENDING: {SHIPMENT_PROCESSING, SHIPMENT_CANCELLED, SHIPMENT_RETURNED},
    SHIPMENT_PROCESSING: {SHIPMENT_SHIPPED, SHIPMENT_CANCELLED, SHIPMENT_RETURNED},
    SHIPMENT_SHIPPED: {SHIPMENT_DELIVERED},
    SHIPMENT_DELIVERED: set(),
    SHIPMENT_CANCELLED: set(),
    SHIPMENT_RETURNED: set(),
}

PAYMENT_TRANSITIONS = {
    PAYMENT_PENDING: {PAYMENT_PAID, PAYMENT_FAILED},
    PAYMENT_PAID: {PAYMENT_REFUNDED, PAYMENT_PARTIALLY_REFUNDED},
    PAYMENT_PARTIALLY_REFUNDED: {PAYMENT_REFUNDED},
    PAYMENT_FAILED: set(),
    PAYMENT_REFUNDED: set(),
}

# Statuses that put the goods back on the shelf
RESTOCK_STATUSES = {SHIPMENT_CANCELLED, SHIPMENT_RETURNED}


class OrderError(ValueError):
    pass


class OrderNotFound(OrderError):
    pass


class InvalidStatusTransition(OrderError):
    pass


class SupplierNotFound(OrderError):
    pass


def next_order_number() -> str:
    """
    Allocate the next order number inside the caller's transaction.

    The counter moves with a single UPDATE; two checkouts can never be
    handed the same number.
    """
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == "ORDER")
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type="ORDER", next_number=2))
            return f"{ORDER_NUMBER_PREFIX}-{1:06d}"
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type="ORDER")
        .scalar()
    )
    return f"{ORDER_NUMBER_PREFIX}-{current - 1:06d}"


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFound("Order not found")
    return order


def list_orders(
    *,
    user_id: int | None = None,
    supplier_user_id: int | None = None,
    shipment_status: str | None = None,
    payment_status: str | None = None,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[Order], int]:
    q = db.session.query(Order)
    if user_id is not None:
        q = q.filter(Order.user_id == user_id)
    if supplier_user_id is not None:
        q = q.filter(Order.items.any(OrderItem.supplier_user_id == supplier_user_id))
    if shipment_status:
        q = q.filter(Order.shipment_status == shipment_status)
    if payment_status:
        q = q.filter(Order.payment_status == payment_status)

    total = q.count()
    page = max(1, page)
    per_page = min(max(1, per_page), 100)
    rows = (
        q.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return rows, total


def _dispatch_alerts(alerts) -> None:
    if not alerts or not current_app.config.get("DISPATCH_ALERTS_INLINE", True):
        return
    from .notification_service import dispatch_alert

    for alert_id in [a.id for a in alerts]:
        try:
            dispatch_alert(alert_id)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("inline dispatch of low stock alert %s failed", alert_id)


def place_order(
    *,
    user_id: int,
    payment_method: str,
    shipping_address: dict | None,
    billing_address: dict | None = None,
    notes: str | None = None,
) -> Order:
    """
    Turn the user's cart into an order in one transaction.

    - the applied discount is checked again (expired or inactive rejects)
    - totals are recomputed with the current tax and shipping settings
    - stock is taken per line through the ledger; any shortfall aborts
      the whole order and nothing is decremented
    - discount usage is counted and the cart emptied
    """
    def _op():
        if payment_method not in PAYMENT_METHODS:
            raise OrderError("Invalid payment method")

        cart = db.session.query(Cart).filter_by(user_id=user_id).first()
        if cart is None or not cart.items:
            raise OrderError("Cart is empty")

        address = shipping_address or cart.shipping_address
        if not isinstance(address, dict) or not address:
            raise OrderError("shipping address is required")

        for item in cart.items:
            if item.product is None or not item.product.is_active:
                raise OrderError(f"Product {item.product_id} is no longer available")

        applied = None
        if cart.discount_code:
            subtotal_cents = round_cents(compute_subtotal(cart.items))
            applied, _amount = discount_service.resolve_discount(cart.discount_code, subtotal_cents)

        settings = settings_service.get_global_settings()
        totals = compute_order_totals(
            cart.items,
            applied,
            settings.tax_rate_bps,
            settings.shipping_rates().get(cart.shipping_method, 0),
        )
        cents = totals.to_dict()

        order = Order(
            order_number=next_order_number(),
            user_id=user_id,
            shipping_address=address,
            billing_address=billing_address or cart.billing_address or address,
            shipping_method=cart.shipping_method,
            payment_method=payment_method,
            payment_status=PAYMENT_PENDING,
            shipment_status=SHIPMENT_PENDING,
            subtotal_cents=cents["subtotal_cents"],
            discount_cents=cents["discount_cents"],
            tax_cents=cents["tax_cents"],
            shipping_cents=cents["shipping_cents"],
            total_cents=cents["total_cents"],
            tax_rate_bps=settings.tax_rate_bps,
            discount_code=applied.code if applied else None,
            discount_type=applied.discount_type if applied else None,
            discount_value=applied.discount_value if applied else None,
            notes=notes,
        )
        for item in cart.items:
            order.items.append(
                OrderItem(
                    product_id=item.product_id,
                    name=item.product.name,
                    quantity=item.quantity,
                    unit_price_cents=item.unit_price_cents,
                    line_total_cents=item.unit_price_cents * item.quantity,
                    selected_size=item.selected_size,
                    selected_color=item.selected_color,
                    supplier_user_id=item.product.supplier_user_id,
                )
            )
        db.session.add(order)
        db.session.flush()

        alerts = []
        for item in order.items:
            _entry, alert = stock_service.remove_stock_inner(
                product_id=item.product_id,
                quantity=item.quantity,
                reason="Order placed",
                reference=order.order_number,
                performed_by_user_id=user_id,
            )
            if alert is not None:
                alerts.append(alert)

        if applied is not None:
            discount_service.increment_usage(applied.code)

        cart_service.reset_cart(cart)
        db.session.flush()
        return order, alerts

    order, alerts = run_in_transaction(_op)
    current_app.logger.info("order %s placed by user %s", order.order_number, user_id)
    _dispatch_alerts(alerts)
    return order


def _restock(order: Order, *, performed_by_user_id: int | None, reason: str) -> None:
    for item in order.items:
        stock_service.add_stock_inner(
            product_id=item.product_id,
            quantity=item.quantity,
            reason=reason,
            performed_by_user_id=performed_by_user_id,
            movement_type=MOVEMENT_RETURN,
            reference=order.order_number,
        )


def _check_transition(table: dict, current: str, target: str, axis: str) -> None:
    if target not in table:
        raise OrderError(f"Invalid {axis} status")
    if target not in table.get(current, set()):
        raise InvalidStatusTransition(f"Cannot move {axis} status from {current} to {target}")


def update_shipment_status(
    *,
    order_id: int,
    status: str | None = None,
    tracking_number: str | None = None,
    carrier: str | None = None,
    notes: str | None = None,
    performed_by_user_id: int | None = None,
) -> Order:
    def _op():
        order = get_order(order_id)

        if status is not None and status != order.shipment_status:
            _check_transition(SHIPMENT_TRANSITIONS, order.shipment_status, status, "shipment")
            order.shipment_status = status
            now = utcnow()
            if status == SHIPMENT_SHIPPED:
                order.shipped_at = now
            elif status == SHIPMENT_DELIVERED:
                order.delivered_at = now
            elif status in RESTOCK_STATUSES:
                order.cancelled_at = now
                _restock(
                    order,
                    performed_by_user_id=performed_by_user_id,
                    reason=f"Order {order.order_number} {status}",
                )

        if tracking_number is not None:
            order.tracking_number = tracking_number.strip() or None
        if carrier is not None:
            order.carrier = carrier.strip() or None
        if notes is not None:
            order.shipment_notes = notes
        db.session.flush()
        return order

    return run_in_transaction(_op)


def cancel_order(*, order_id: int, reason: str | None, performed_by_user_id: int | None) -> Order:
    """Cancel a pending/processing order and put its items back in stock."""
    def _op():
        order = get_order(order_id)
        if SHIPMENT_CANCELLED not in SHIPMENT_TRANSITIONS.get(order.shipment_status, set()):
            raise InvalidStatusTransition("Order cannot be cancelled at this stage")

        order.shipment_status = SHIPMENT_CANCELLED
        order.cancelled_at = utcnow()
        order.cancellation_reason = (reason or "").strip()[:255] or None
        _restock(
            order,
            performed_by_user_id=performed_by_user_id,
            reason=f"Order {order.order_number} cancelled",
        )
        db.session.flush()
        return order

    order = run_in_transaction(_op)
    current_app.logger.info("order %s cancelled", order.order_number)
    return order


def update_payment_status(*, order_id: int, status: str) -> Order:
    def _op():
        order = get_order(order_id)
        _check_transition(PAYMENT_TRANSITIONS, order.payment_status, status, "payment")
        if status == PAYMENT_REFUNDED:
            order.refund_cents = order.total_cents
            order.refunded_at = utcnow()
        order.payment_status = status
        db.session.flush()
        return order

    return run_in_transaction(_op)


def process_refund(*, order_id: int, amount_cents: int) -> Order:
    """
    Refund part or all of a paid order.

    Refunds accumulate; reaching the order total marks it refunded, anything
    less is partially_refunded. Refunding past the total is rejected.
    """
    def _op():
        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
            raise OrderError("amount_cents must be a positive integer")

        order = get_order(order_id)
        if order.payment_status not in (PAYMENT_PAID, PAYMENT_PARTIALLY_REFUNDED):
            raise InvalidStatusTransition("Only paid orders can be refunded")

        refunded = (order.refund_cents or 0) + amount_cents
        if refunded > order.total_cents:
            raise OrderError("Refund amount exceeds order total")

        order.refund_cents = refunded
        order.refunded_at = utcnow()
        order.payment_status = (
            PAYMENT_REFUNDED if refunded == order.total_cents else PAYMENT_PARTIALLY_REFUNDED
        )
        db.session.flush()
        return order

    return run_in_transaction(_op)


def get_order_stats() -> dict:
    totals = db.session.query(
        func.count(Order.id),
        func.coalesce(func.sum(Order.total_cents), 0),
    ).filter(Order.shipment_status.notin_((SHIPMENT_CANCELLED, SHIPMENT_RETURNED))).one()

    by_status = dict(
        db.session.query(Order.shipment_status, func.count(Order.id))
        .group_by(Order.shipment_status)
        .all()
    )

    count, revenue = int(totals[0] or 0), int(totals[1] or 0)
    return {
        "total_orders": sum(by_status.values()),
        "revenue_cents": revenue,
        "average_order_value_cents": (revenue + count // 2) // count if count else 0,
        "by_shipment_status": {status: by_status.get(status, 0) for status in SHIPMENT_TRANSITIONS},
    }


# =============================================================================
# SUPPLIER PAYOUTS
# =============================================================================

def _load_supplier(supplier_user_id: int) -> User:
    supplier = db.session.get(User, supplier_user_id)
    if supplier is None or supplier.role != ROLE_SUPPLIER:
        raise SupplierNotFound("Supplier not found")
    return supplier


def _delivered_supplier_items(supplier_user_id: int):
    return (
        db.session.query(OrderItem, Order.order_number)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(
            OrderItem.supplier_user_id == supplier_user_id,
            Order.shipment_status == SHIPMENT_DELIVERED,
        )
        .order_by(Order.id.asc(), OrderItem.id.asc())
    )


def get_supplier_balance(supplier_user_id: int) -> dict:
    """
    Earnings of one supplier over delivered order lines.

    Each line is netted of the current site commission and rounded to the
    cent on its own; paid lines count towards total_paid, the rest are listed
    as pending.
    """
    supplier = _load_supplier(supplier_user_id)
    commission_bps = settings_service.get_global_settings().site_commission_bps

    earned = paid = 0
    pending = []
    for item, order_number in _delivered_supplier_items(supplier.id).all():
        net = round_cents(compute_supplier_net(item.line_total_cents, commission_bps))
        earned += net
        if item.paid_to_supplier:
            paid += net
            continue
        pending.append({
            "order_id": item.order_id,
            "order_number": order_number,
            "item_id": item.id,
            "name": item.name,
            "quantity": item.quantity,
            "line_total_cents": item.line_total_cents,
            "net_cents": net,
        })

    return {
        "supplier_user_id": supplier.id,
        "commission_bps": commission_bps,
        "total_earned_cents": earned,
        "total_paid_cents": paid,
        "pending_cents": earned - paid,
        "pending_items": pending,
    }


def mark_items_paid(*, supplier_user_id: int, item_ids, paid_by_user_id: int | None = None) -> dict:
    """
    Mark delivered, unpaid lines of one supplier as paid out.

    All-or-nothing: an id that is unknown, belongs to another supplier, is not
    delivered yet, or is already paid rejects the whole batch. Amounts are
    taken from the stored lines, never from the caller. The supplier is told
    about the payout after commit; that notice never fails the payout.
    """
    if not isinstance(item_ids, (list, tuple)) or not item_ids:
        raise OrderError("item_ids must be a non-empty list")
    if any(isinstance(i, bool) or not isinstance(i, int) for i in item_ids):
        raise OrderError("item_ids must be integers")
    ids = sorted(set(item_ids))

    def _op():
        supplier = _load_supplier(supplier_user_id)
        commission_bps = settings_service.get_global_settings().site_commission_bps

        rows = (
            _delivered_supplier_items(supplier.id)
            .filter(OrderItem.id.in_(ids), OrderItem.paid_to_supplier.is_(False))
            .all()
        )
        payable = {item.id for item, _ in rows}
        missing = [i for i in ids if i not in payable]
        if missing:
            raise OrderError(f"Items not payable for this supplier: {missing}")

        stmt = (
            update(OrderItem)
            .where(OrderItem.id.in_(ids), OrderItem.paid_to_supplier.is_(False))
            .values(paid_to_supplier=True, paid_to_supplier_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if db.session.execute(stmt).rowcount != len(ids):
            raise OrderError("Items were paid by another request; reload and retry")

        total = sum(round_cents(compute_supplier_net(item.line_total_cents, commission_bps)) for item, _ in rows)
        order_numbers = sorted({number for _, number in rows})
        for item, _ in rows:
            db.session.refresh(item)
        return supplier, total, order_numbers

    supplier, total, order_numbers = run_in_transaction(_op)
    current_app.logger.info(
        "supplier %s paid %s cents for %d item(s) by user %s",
        supplier.id, total, len(ids), paid_by_user_id,
    )

    from .notification_service import notify_supplier_payment

    notify_supplier_payment(supplier_user_id=supplier.id, total_cents=total, order_numbers=order_numbers)
    return {
        "supplier_user_id": supplier.id,
        "paid_item_ids": ids,
        "total_paid_cents": total,
        "order_numbers": order_numbers,
    }
