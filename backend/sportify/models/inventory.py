from __future__ import annotations

from ..extensions import db
from sportify.time_utils import to_utc_z


MOVEMENT_STOCK_IN = "stock_in"
MOVEMENT_STOCK_OUT = "stock_out"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_DAMAGE = "damage"
MOVEMENT_RETURN = "return"
VALID_MOVEMENT_TYPES = {
    MOVEMENT_STOCK_IN,
    MOVEMENT_STOCK_OUT,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_DAMAGE,
    MOVEMENT_RETURN,
}


class StockEntry(db.Model):
    """
    Authoritative stock counts for one product.

    DERIVED FIELDS:
    available_stock, is_low_stock and is_out_of_stock are recomputed by
    stock_service.update_stock_flags() before every flush. There is no ORM
    hook doing it implicitly; a mutation that skips the call is a bug.

    COUNTERS:
    current_stock / reserved_stock are only changed through guarded UPDATE
    statements in stock_service, never by read-modify-write on this object.
    """
    __tablename__ = "stock_entries"
    __table_args__ = (
        db.CheckConstraint("current_stock >= 0", name="ck_stock_current_non_negative"),
        db.CheckConstraint("reserved_stock >= 0", name="ck_stock_reserved_non_negative"),
        db.CheckConstraint("reserved_stock <= current_stock", name="ck_stock_reserved_within_current"),
        db.Index("ix_stock_entries_flags", "is_low_stock", "is_out_of_stock"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, unique=True, index=True)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    reserved_stock = db.Column(db.Integer, nullable=False, default=0)
    available_stock = db.Column(db.Integer, nullable=False, default=0)

    # Operator-configured thresholds
    min_stock_level = db.Column(db.Integer, nullable=False, default=5)
    max_stock_level = db.Column(db.Integer, nullable=True)
    reorder_point = db.Column(db.Integer, nullable=True)
    reorder_quantity = db.Column(db.Integer, nullable=True)

    total_stock_in = db.Column(db.Integer, nullable=False, default=0)
    total_stock_out = db.Column(db.Integer, nullable=False, default=0)
    average_cost_cents = db.Column(db.Integer, nullable=True)

    is_low_stock = db.Column(db.Boolean, nullable=False, default=True)
    is_out_of_stock = db.Column(db.Boolean, nullable=False, default=True)

    last_restocked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_stock_out_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("stock_entry", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<StockEntry product_id={self.product_id} current={self.current_stock} "
            f"reserved={self.reserved_stock}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "current_stock": self.current_stock,
            "reserved_stock": self.reserved_stock,
            "available_stock": self.available_stock,
            "min_stock_level": self.min_stock_level,
            "max_stock_level": self.max_stock_level,
            "reorder_point": self.reorder_point,
            "reorder_quantity": self.reorder_quantity,
            "total_stock_in": self.total_stock_in,
            "total_stock_out": self.total_stock_out,
            "average_cost_cents": self.average_cost_cents,
            "is_low_stock": self.is_low_stock,
            "is_out_of_stock": self.is_out_of_stock,
            "last_restocked_at": to_utc_z(self.last_restocked_at),
            "last_stock_out_at": to_utc_z(self.last_stock_out_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only record of one stock change.

    quantity is the magnitude; quantity_delta carries the sign so that
    new_stock == previous_stock + quantity_delta always holds.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_entry_created", "stock_entry_id", "created_at"),
        db.Index("ix_stock_movements_product_type", "product_id", "type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_entry_id = db.Column(db.Integer, db.ForeignKey("stock_entries.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # stock_in, stock_out, adjustment, damage, return
    type = db.Column(db.String(16), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    quantity_delta = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=False)
    reference = db.Column(db.String(128), nullable=True)  # order number, PO number, etc.
    notes = db.Column(db.Text, nullable=True)
    cost_cents = db.Column(db.Integer, nullable=True)

    performed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    stock_entry = db.relationship("StockEntry", backref=db.backref("movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_entry_id": self.stock_entry_id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity": self.quantity,
            "quantity_delta": self.quantity_delta,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reason": self.reason,
            "reference": self.reference,
            "notes": self.notes,
            "cost_cents": self.cost_cents,
            "performed_by_user_id": self.performed_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


ALERT_PENDING = "PENDING"
ALERT_SENT = "SENT"
ALERT_FAILED = "FAILED"
ALERT_SKIPPED = "SKIPPED"


class LowStockAlert(db.Model):
    """
    Outbox row for "stock crossed the reorder point".

    Written in the same transaction as the stock mutation; delivery to the
    supplier happens afterwards in notification_service and can fail without
    touching the stock change.
    """
    __tablename__ = "low_stock_alerts"
    __table_args__ = (
        db.Index("ix_low_stock_alerts_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_entry_id = db.Column(db.Integer, db.ForeignKey("stock_entries.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    stock_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    # Snapshot at the time the threshold was crossed
    current_stock = db.Column(db.Integer, nullable=False)
    reorder_point = db.Column(db.Integer, nullable=False)

    # movement, scan
    source = db.Column(db.String(16), nullable=False, default="movement")

    status = db.Column(db.String(16), nullable=False, default=ALERT_PENDING, index=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_entry_id": self.stock_entry_id,
            "product_id": self.product_id,
            "stock_movement_id": self.stock_movement_id,
            "current_stock": self.current_stock,
            "reorder_point": self.reorder_point,
            "source": self.source,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": to_utc_z(self.created_at),
            "processed_at": to_utc_z(self.processed_at),
        }
