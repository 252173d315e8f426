from __future__ import annotations

from ..extensions import db
from sportify.time_utils import to_utc_z


SHIPPING_METHODS = ("standard", "express", "overnight")

SHIPMENT_PENDING = "pending"
SHIPMENT_PROCESSING = "processing"
SHIPMENT_SHIPPED = "shipped"
SHIPMENT_DELIVERED = "delivered"
SHIPMENT_CANCELLED = "cancelled"
SHIPMENT_RETURNED = "returned"

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"
PAYMENT_PARTIALLY_REFUNDED = "partially_refunded"

PAYMENT_METHODS = ("credit_card", "debit_card", "paypal", "stripe", "cash_on_delivery")


class Cart(db.Model):
    """
    Active shopping cart, one per user.

    The *_cents totals are derived. cart_service.recompute_cart() rewrites
    all of them together before every commit.
    """
    __tablename__ = "carts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    # Applied discount snapshot (code is re-validated at checkout)
    discount_code = db.Column(db.String(64), nullable=True)
    discount_type = db.Column(db.String(16), nullable=True)
    discount_value = db.Column(db.Integer, nullable=True)
    discount_max_cents = db.Column(db.Integer, nullable=True)

    shipping_method = db.Column(db.String(16), nullable=False, default="standard")
    shipping_address = db.Column(db.JSON, nullable=True)
    billing_address = db.Column(db.JSON, nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    items = db.relationship(
        "CartItem",
        backref="cart",
        lazy=True,
        order_by="CartItem.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "items": [item.to_dict() for item in self.items],
            "applied_discount": (
                {
                    "code": self.discount_code,
                    "discount_type": self.discount_type,
                    "discount_value": self.discount_value,
                }
                if self.discount_code
                else None
            ),
            "shipping_method": self.shipping_method,
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "shipping_cents": self.shipping_cents,
            "total_cents": self.total_cents,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class CartItem(db.Model):
    """Line on a cart. unit_price_cents is captured when the item is added."""
    __tablename__ = "cart_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    selected_size = db.Column(db.String(32), nullable=True)
    selected_color = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.unit_price_cents * self.quantity,
            "selected_size": self.selected_size,
            "selected_color": self.selected_color,
        }


class Order(db.Model):
    """
    Placed order.

    Two independent status axes:
    - shipment_status: pending -> processing -> shipped -> delivered,
      with cancelled/returned reachable only from pending or processing
    - payment_status: pending -> paid -> refunded|partially_refunded, or pending -> failed
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        db.Index("ix_orders_status_created", "shipment_status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable order number (e.g., "SPF-000042")
    order_number = db.Column(db.String(64), nullable=False, unique=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    shipping_address = db.Column(db.JSON, nullable=True)
    billing_address = db.Column(db.JSON, nullable=True)
    shipping_method = db.Column(db.String(16), nullable=False, default="standard")

    payment_method = db.Column(db.String(32), nullable=False)
    payment_status = db.Column(db.String(24), nullable=False, default=PAYMENT_PENDING, index=True)
    shipment_status = db.Column(db.String(16), nullable=False, default=SHIPMENT_PENDING, index=True)

    # Pricing breakdown (cents, rounded for presentation at placement time)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False)

    discount_code = db.Column(db.String(64), nullable=True)
    discount_type = db.Column(db.String(16), nullable=True)
    discount_value = db.Column(db.Integer, nullable=True)

    tracking_number = db.Column(db.String(128), nullable=True)
    carrier = db.Column(db.String(64), nullable=True)
    shipment_notes = db.Column(db.Text, nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    refund_cents = db.Column(db.Integer, nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )
    customer = db.relationship("User", foreign_keys=[user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "items": [item.to_dict() for item in self.items],
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "shipping_method": self.shipping_method,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "shipment_status": self.shipment_status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "shipping_cents": self.shipping_cents,
            "total_cents": self.total_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "discount": (
                {
                    "code": self.discount_code,
                    "discount_type": self.discount_type,
                    "discount_value": self.discount_value,
                }
                if self.discount_code
                else None
            ),
            "tracking_number": self.tracking_number,
            "carrier": self.carrier,
            "shipment_notes": self.shipment_notes,
            "shipped_at": to_utc_z(self.shipped_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "refund_cents": self.refund_cents,
            "refunded_at": to_utc_z(self.refunded_at),
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderItem(db.Model):
    """Snapshot of a cart line at checkout time."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    selected_size = db.Column(db.String(32), nullable=True)
    selected_color = db.Column(db.String(32), nullable=True)

    supplier_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    paid_to_supplier = db.Column(db.Boolean, nullable=False, default=False)
    paid_to_supplier_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "selected_size": self.selected_size,
            "selected_color": self.selected_color,
            "supplier_user_id": self.supplier_user_id,
            "paid_to_supplier": self.paid_to_supplier,
            "paid_to_supplier_at": to_utc_z(self.paid_to_supplier_at),
        }
