# Overview: Service-layer operations for the per-product stock ledger; encapsulates business logic and database work.

# backend/sportify/services/stock_service.py

from __future__ import annotations

from flask import current_app
from sqlalchemy import case, func, or_, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, StockEntry, StockMovement, LowStockAlert
from ..models.inventory import (
    MOVEMENT_STOCK_IN,
    MOVEMENT_STOCK_OUT,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_DAMAGE,
    MOVEMENT_RETURN,
    VALID_MOVEMENT_TYPES,
)
from sportify.time_utils import utcnow
from . import settings_service
from .concurrency import execute_guarded_update, lock_for_update, run_in_transaction
"""
Sportify Stock Ledger Invariants (authoritative)

Counters:
- current_stock >= 0, reserved_stock >= 0, reserved_stock <= current_stock.
- available_stock == current_stock - reserved_stock immediately after every mutation.
- is_low_stock == (available_stock <= min_stock_level)
- is_out_of_stock == (available_stock <= 0)

Writes:
- Counters change only through guarded UPDATE statements. A decrement whose
  guard fails raises InsufficientStock and leaves the row untouched; there is
  no read-then-write window for concurrent checkouts to oversell through.
- Derived fields are recomputed explicitly (update_stock_flags) after the
  counter UPDATE and before commit.
- Each call is one transaction. Nothing is retried.

Ledger:
- Every change to current_stock appends exactly one StockMovement with
  new_stock == previous_stock + quantity_delta.
- Reservations move reserved_stock only and do not write movements.

Low stock:
- remove/adjust/damage queue exactly one LowStockAlert when the resulting
  current_stock <= reorder_point. Delivery runs after commit and can never
  undo or fail the stock change.
"""


class StockError(ValueError):
    """Raised for stock ledger operation errors."""


class InvalidQuantity(StockError):
    pass


class InsufficientStock(StockError):
    def __init__(self, message: str, *, requested: int, available: int):
        super().__init__(message)
        self.requested = requested
        self.available = available


class StockEntryNotFound(StockError):
    pass


class StockConflict(StockError):
    """The entry changed between read and write; the caller may resubmit."""


SETTINGS_FIELDS = ("min_stock_level", "max_stock_level", "reorder_point", "reorder_quantity")


def _require_positive_int(value, field: str = "quantity") -> int:
    # bool is an int subclass; True is not a quantity
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidQuantity(f"{field} must be a positive integer")
    return value


def _require_non_negative_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidQuantity(f"{field} must be a non-negative integer")
    return value


def _require_reason(reason) -> str:
    reason = (reason or "").strip() if isinstance(reason, str) else ""
    if not reason:
        raise StockError("reason is required")
    return reason[:255]


def update_stock_flags(entry: StockEntry) -> StockEntry:
    """Recompute the derived fields from the counters and thresholds."""
    entry.available_stock = entry.current_stock - entry.reserved_stock
    entry.is_low_stock = entry.available_stock <= entry.min_stock_level
    entry.is_out_of_stock = entry.available_stock <= 0
    return entry


def _load_product(product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id).first()
    if product is None:
        raise StockEntryNotFound("product not found")
    return product


def get_stock_entry(product_id: int) -> StockEntry:
    entry = db.session.query(StockEntry).filter_by(product_id=product_id).first()
    if entry is None:
        raise StockEntryNotFound("inventory not found for product")
    return entry


def get_or_create_stock_entry(product_id: int, *, lock: bool = False) -> StockEntry:
    """
    Return the product's entry, creating an empty one on first use.

    Creation runs in a savepoint so two requests racing to create the same
    entry end up sharing the row that won the unique constraint.
    """
    query = db.session.query(StockEntry).filter_by(product_id=product_id)
    if lock:
        query = lock_for_update(query)
    entry = query.first()
    if entry is not None:
        return entry

    product = _load_product(product_id)
    min_level = product.min_stock_level
    if min_level is None:
        min_level = settings_service.get_global_settings().low_stock_threshold
    entry = StockEntry(
        product_id=product.id,
        current_stock=0,
        reserved_stock=0,
        min_stock_level=min_level,
        total_stock_in=0,
        total_stock_out=0,
    )
    update_stock_flags(entry)
    try:
        with db.session.begin_nested():
            db.session.add(entry)
    except IntegrityError:
        entry = query.one()
    return entry


def _weighted_average_cost(
    previous_avg: int | None, previous_units: int, cost_cents: int, quantity: int
) -> int:
    if previous_avg is None or previous_units <= 0:
        return cost_cents
    total_units = previous_units + quantity
    total_cost = previous_avg * previous_units + cost_cents * quantity
    # nearest-cent rounding (half-up)
    return (total_cost + (total_units // 2)) // total_units


def _append_movement(
    entry: StockEntry,
    *,
    movement_type: str,
    quantity_delta: int,
    previous_stock: int,
    reason: str,
    performed_by_user_id: int | None,
    reference: str | None = None,
    notes: str | None = None,
    cost_cents: int | None = None,
) -> StockMovement:
    if movement_type not in VALID_MOVEMENT_TYPES:
        raise StockError(f"invalid movement type {movement_type!r}")

    movement = StockMovement(
        stock_entry_id=entry.id,
        product_id=entry.product_id,
        type=movement_type,
        quantity=abs(quantity_delta),
        quantity_delta=quantity_delta,
        previous_stock=previous_stock,
        new_stock=previous_stock + quantity_delta,
        reason=reason,
        reference=reference,
        notes=notes,
        cost_cents=cost_cents,
        performed_by_user_id=performed_by_user_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def _queue_low_stock_alert(entry: StockEntry, movement: StockMovement) -> LowStockAlert | None:
    if entry.reorder_point is None or entry.current_stock > entry.reorder_point:
        return None

    alert = LowStockAlert(
        stock_entry_id=entry.id,
        product_id=entry.product_id,
        stock_movement_id=movement.id,
        current_stock=entry.current_stock,
        reorder_point=entry.reorder_point,
        source="movement",
    )
    db.session.add(alert)
    db.session.flush()
    return alert


def _after_commit(entry: StockEntry, alert: LowStockAlert | None) -> StockEntry:
    if alert is not None and current_app.config.get("DISPATCH_ALERTS_INLINE", True):
        from .notification_service import dispatch_alert

        alert_id = alert.id
        try:
            dispatch_alert(alert_id)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("inline dispatch of low stock alert %s failed", alert_id)
    return entry


# =============================================================================
# STOCK IN
# =============================================================================

def add_stock_inner(
    *,
    product_id: int,
    quantity: int,
    reason: str,
    performed_by_user_id: int | None,
    movement_type: str = MOVEMENT_STOCK_IN,
    cost_cents: int | None = None,
    reference: str | None = None,
    notes: str | None = None,
) -> StockEntry:
    """Core stock-in logic without commit. Also used by order cancellation."""
    quantity = _require_positive_int(quantity)
    reason = _require_reason(reason)
    if cost_cents is not None:
        _require_non_negative_int(cost_cents, "cost_cents")

    entry = get_or_create_stock_entry(product_id)
    previous_avg = entry.average_cost_cents

    stmt = (
        update(StockEntry)
        .where(StockEntry.id == entry.id)
        .values(
            current_stock=StockEntry.current_stock + quantity,
            total_stock_in=StockEntry.total_stock_in + quantity,
            last_restocked_at=utcnow(),
            version_id=StockEntry.version_id + 1,
        )
    )
    if not execute_guarded_update(stmt):
        raise StockEntryNotFound("inventory not found for product")

    db.session.refresh(entry)
    previous_stock = entry.current_stock - quantity

    if cost_cents is not None:
        entry.average_cost_cents = _weighted_average_cost(
            previous_avg, previous_stock, cost_cents, quantity
        )

    _append_movement(
        entry,
        movement_type=movement_type,
        quantity_delta=quantity,
        previous_stock=previous_stock,
        reason=reason,
        performed_by_user_id=performed_by_user_id,
        reference=reference,
        notes=notes,
        cost_cents=cost_cents,
    )
    update_stock_flags(entry)
    db.session.flush()
    return entry


def add_stock(
    *,
    product_id: int,
    quantity: int,
    reason: str,
    performed_by_user_id: int | None,
    cost_cents: int | None = None,
    notes: str | None = None,
) -> StockEntry:
    """Receive units into stock (stock_in movement)."""
    def _op():
        return add_stock_inner(
            product_id=product_id,
            quantity=quantity,
            reason=reason,
            performed_by_user_id=performed_by_user_id,
            cost_cents=cost_cents,
            notes=notes,
        )

    return run_in_transaction(_op)


def record_return(
    *,
    product_id: int,
    quantity: int,
    reason: str,
    performed_by_user_id: int | None,
    reference: str | None = None,
    notes: str | None = None,
) -> StockEntry:
    """Put returned units back on the shelf (return movement)."""
    def _op():
        return add_stock_inner(
            product_id=product_id,
            quantity=quantity,
            reason=reason,
            performed_by_user_id=performed_by_user_id,
            movement_type=MOVEMENT_RETURN,
            reference=reference,
            notes=notes,
        )

    return run_in_transaction(_op)


# =============================================================================
# STOCK OUT
# =============================================================================

def remove_stock_inner(
    *,
    product_id: int,
    quantity: int,
    reason: str,
    performed_by_user_id: int | None,
    movement_type: str = MOVEMENT_STOCK_OUT,
    reference: str | None = None,
    notes: str | None = None,
) -> tuple[StockEntry, LowStockAlert | None]:
    """
    Core stock-out logic without commit.

    The decrement only happens if available stock covers it at the moment
    the UPDATE runs. Also used by order placement for each line.
    """
    quantity = _require_positive_int(quantity)
    reason = _require_reason(reason)

    entry = get_or_create_stock_entry(product_id)

    stmt = (
        update(StockEntry)
        .where(
            StockEntry.id == entry.id,
            StockEntry.current_stock - StockEntry.reserved_stock >= quantity,
        )
        .values(
            current_stock=StockEntry.current_stock - quantity,
            total_stock_out=StockEntry.total_stock_out + quantity,
            last_stock_out_at=utcnow(),
            version_id=StockEntry.version_id + 1,
        )
    )
    if not execute_guarded_update(stmt):
        db.session.refresh(entry)
        available = entry.current_stock - entry.reserved_stock
        raise InsufficientStock(
            "Insufficient stock available",
            requested=quantity,
            available=available,
        )

    db.session.refresh(entry)
    previous_stock = entry.current_stock + quantity

    movement = _append_movement(
        entry,
        movement_type=movement_type,
        quantity_delta=-quantity,
        previous_stock=previous_stock,
        reason=reason,
        performed_by_user_id=performed_by_user_id,
        reference=reference,
        notes=notes,
    )
    update_stock_flags(entry)
    alert = _queue_low_stock_alert(entry, movement)
    db.session.flush()
    return entry, alert


def remove_stock(
    *,
    product_id: int,
    quantity: int,
    reason: str,
    performed_by_user_id: int | None,
    reference: str | None = None,
    notes: str | None = None,
    movement_type: str = MOVEMENT_STOCK_OUT,
) -> StockEntry:
    """Take units out of stock (stock_out movement)."""
    def _op():
        return remove_stock_inner(
            product_id=product_id,
            quantity=quantity,
            reason=reason,
            performed_by_user_id=performed_by_user_id,
            movement_type=movement_type,
            reference=reference,
            notes=notes,
        )

    entry, alert = run_in_transaction(_op)
    return _after_commit(entry, alert)


def record_damage(
    *,
    product_id: int,
    quantity: int,
    reason: str,
    performed_by_user_id: int | None,
    notes: str | None = None,
) -> StockEntry:
    """Write off damaged units (damage movement). Same guard as remove_stock."""
    def _op():
        return remove_stock_inner(
            product_id=product_id,
            quantity=quantity,
            reason=reason,
            performed_by_user_id=performed_by_user_id,
            movement_type=MOVEMENT_DAMAGE,
            notes=notes,
        )

    entry, alert = run_in_transaction(_op)
    return _after_commit(entry, alert)


# =============================================================================
# ADJUSTMENT (stock-takes, corrections)
# =============================================================================

def adjust_stock(
    *,
    product_id: int,
    new_quantity: int,
    reason: str,
    performed_by_user_id: int | None,
    notes: str | None = None,
) -> StockEntry:
    """
    Set current_stock to a counted value and record the signed delta.

    The write is a compare-and-swap on the value that was read: if another
    request moved the counter in between, StockConflict is raised instead of
    silently discarding that change. Counting below the reserved quantity is
    rejected.
    """
    def _op():
        qty = _require_non_negative_int(new_quantity, "new_quantity")
        clean_reason = _require_reason(reason)

        entry = get_or_create_stock_entry(product_id, lock=True)
        previous_stock = entry.current_stock
        if qty < entry.reserved_stock:
            raise InvalidQuantity(
                f"new_quantity cannot be below reserved stock ({entry.reserved_stock})"
            )

        stmt = (
            update(StockEntry)
            .where(
                StockEntry.id == entry.id,
                StockEntry.current_stock == previous_stock,
                StockEntry.reserved_stock <= qty,
            )
            .values(
                current_stock=qty,
                version_id=StockEntry.version_id + 1,
            )
        )
        if not execute_guarded_update(stmt):
            raise StockConflict("stock changed while adjusting; reload and retry")

        db.session.refresh(entry)
        movement = _append_movement(
            entry,
            movement_type=MOVEMENT_ADJUSTMENT,
            quantity_delta=qty - previous_stock,
            previous_stock=previous_stock,
            reason=clean_reason,
            performed_by_user_id=performed_by_user_id,
            notes=notes,
        )
        update_stock_flags(entry)
        alert = _queue_low_stock_alert(entry, movement)
        db.session.flush()
        return entry, alert

    entry, alert = run_in_transaction(_op)
    return _after_commit(entry, alert)


# =============================================================================
# RESERVATIONS
# =============================================================================

def reserve_stock(*, product_id: int, quantity: int) -> StockEntry:
    """Hold units for a pending checkout. Fails if they are not available."""
    def _op():
        qty = _require_positive_int(quantity)
        entry = get_or_create_stock_entry(product_id)

        stmt = (
            update(StockEntry)
            .where(
                StockEntry.id == entry.id,
                StockEntry.current_stock - StockEntry.reserved_stock >= qty,
            )
            .values(
                reserved_stock=StockEntry.reserved_stock + qty,
                version_id=StockEntry.version_id + 1,
            )
        )
        if not execute_guarded_update(stmt):
            db.session.refresh(entry)
            raise InsufficientStock(
                "Insufficient stock for reservation",
                requested=qty,
                available=entry.current_stock - entry.reserved_stock,
            )

        db.session.refresh(entry)
        update_stock_flags(entry)
        db.session.flush()
        return entry

    return run_in_transaction(_op)


def release_reserved_stock(*, product_id: int, quantity: int) -> StockEntry:
    """
    Return held units to available stock.

    Releasing more than is reserved clamps reserved_stock at 0.
    """
    def _op():
        qty = _require_positive_int(quantity)
        entry = get_stock_entry(product_id)

        stmt = (
            update(StockEntry)
            .where(StockEntry.id == entry.id)
            .values(
                reserved_stock=case(
                    (StockEntry.reserved_stock > qty, StockEntry.reserved_stock - qty),
                    else_=0,
                ),
                version_id=StockEntry.version_id + 1,
            )
        )
        execute_guarded_update(stmt)

        db.session.refresh(entry)
        update_stock_flags(entry)
        db.session.flush()
        return entry

    return run_in_transaction(_op)


# =============================================================================
# THRESHOLDS & REPORTING
# =============================================================================

def update_inventory_settings(*, product_id: int, data: dict) -> StockEntry:
    """Edit min/max levels and reorder thresholds, then recompute flags."""
    def _op():
        entry = get_or_create_stock_entry(product_id)
        for field in SETTINGS_FIELDS:
            if field not in data:
                continue
            value = data[field]
            if value is None:
                if field == "min_stock_level":
                    raise InvalidQuantity("min_stock_level cannot be null")
                setattr(entry, field, None)
                continue
            setattr(entry, field, _require_non_negative_int(value, field))

        update_stock_flags(entry)
        db.session.flush()
        return entry

    return run_in_transaction(_op)


def list_movements(
    *,
    product_id: int,
    page: int = 1,
    per_page: int = 20,
    movement_type: str | None = None,
) -> tuple[list[StockMovement], int]:
    """Newest-first page of a product's movements and the total count."""
    entry = get_stock_entry(product_id)
    q = db.session.query(StockMovement).filter_by(stock_entry_id=entry.id)
    if movement_type:
        if movement_type not in VALID_MOVEMENT_TYPES:
            raise StockError(f"invalid movement type {movement_type!r}")
        q = q.filter_by(type=movement_type)

    total = q.count()
    page = max(1, page)
    per_page = min(max(1, per_page), 200)
    rows = (
        q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return rows, total


def list_low_stock() -> list[StockEntry]:
    return (
        db.session.query(StockEntry)
        .filter(or_(StockEntry.is_low_stock.is_(True), StockEntry.is_out_of_stock.is_(True)))
        .order_by(StockEntry.available_stock.asc(), StockEntry.id.asc())
        .all()
    )


def get_inventory_summary() -> dict:
    row = db.session.query(
        func.count(StockEntry.id).label("total_products"),
        func.coalesce(func.sum(StockEntry.current_stock), 0).label("total_stock"),
        func.coalesce(func.sum(StockEntry.reserved_stock), 0).label("total_reserved"),
        func.coalesce(func.sum(StockEntry.available_stock), 0).label("total_available"),
        func.coalesce(func.sum(case((StockEntry.is_low_stock.is_(True), 1), else_=0)), 0).label("low_stock_count"),
        func.coalesce(func.sum(case((StockEntry.is_out_of_stock.is_(True), 1), else_=0)), 0).label("out_of_stock_count"),
    ).one()

    return {
        "total_products": int(row.total_products or 0),
        "total_stock": int(row.total_stock or 0),
        "total_reserved": int(row.total_reserved or 0),
        "total_available": int(row.total_available or 0),
        "low_stock_count": int(row.low_stock_count or 0),
        "out_of_stock_count": int(row.out_of_stock_count or 0),
    }
