# Overview: Supplier notifications: low-stock alert delivery (email seam + in-app) and payout notices.

from __future__ import annotations

from typing import Callable

from flask import current_app
from sqlalchemy import and_

from ..extensions import db
from ..models import LowStockAlert, Notification, Product, StockEntry, User
from ..models.inventory import ALERT_PENDING, ALERT_SENT, ALERT_FAILED, ALERT_SKIPPED
from sportify.time_utils import utcnow
from . import settings_service


class NotificationDeliveryFailure(Exception):
    """Raised by an email sender when the message could not be delivered."""


EmailSender = Callable[[dict], None]


def render_low_stock_message(payload: dict) -> tuple[str, str]:
    subject = f"Low stock alert: {payload['product_name']}"
    body = (
        f"Stock for {payload['product_name']} is down to {payload['current_stock']} "
        f"unit(s), at or below the reorder point of {payload['reorder_point']}. "
        "Please arrange a restock."
    )
    return subject, body


def log_email_sender(payload: dict) -> None:
    """Default sender: writes the rendered message to the app log."""
    subject, body = render_low_stock_message(payload)
    current_app.logger.info(
        "low stock email to=%s subject=%r body=%r",
        payload["supplier_email"],
        subject,
        body,
    )


def _resolve_sender(sender: EmailSender | None) -> EmailSender:
    if sender is not None:
        return sender
    configured = current_app.config.get("LOW_STOCK_EMAIL_SENDER")
    return configured or log_email_sender


def _deliver(alert: LowStockAlert, product: Product, supplier, sender: EmailSender | None) -> None:
    payload = {
        "supplier_email": supplier.email,
        "product_name": product.name,
        "current_stock": alert.current_stock,
        "reorder_point": alert.reorder_point,
    }
    _resolve_sender(sender)(payload)

    subject, body = render_low_stock_message(payload)
    db.session.add(
        Notification(
            user_id=supplier.id,
            title=subject,
            message=body,
            link=f"/supplier/products/{product.id}",
        )
    )
    alert.status = ALERT_SENT
    alert.last_error = None
    alert.processed_at = utcnow()
    db.session.commit()


def _mark_failed(alert_id: int, exc: Exception) -> LowStockAlert | None:
    try:
        alert = db.session.get(LowStockAlert, alert_id)
        alert.attempts = (alert.attempts or 0) + 1
        alert.status = ALERT_FAILED
        alert.last_error = str(exc)[:1000] or exc.__class__.__name__
        db.session.commit()
        return alert
    except Exception:
        db.session.rollback()
        current_app.logger.exception("could not record failure for low stock alert %s", alert_id)
        return None


def dispatch_alert(alert_id: int, *, sender: EmailSender | None = None) -> LowStockAlert | None:
    """
    Deliver one queued alert. Never raises for delivery problems.

    The stock change that queued the alert is already committed; a failure
    anywhere in delivery (email, in-app notification, commit) is rolled back,
    logged and recorded on the alert row only.
    """
    alert = db.session.get(LowStockAlert, alert_id)
    if alert is None:
        current_app.logger.warning("low stock alert %s not found", alert_id)
        return None
    if alert.status not in (ALERT_PENDING, ALERT_FAILED):
        return alert

    product = db.session.get(Product, alert.product_id)
    supplier = product.supplier if product is not None else None

    if supplier is None or not supplier.email:
        alert.attempts = (alert.attempts or 0) + 1
        alert.status = ALERT_SKIPPED
        alert.processed_at = utcnow()
        db.session.commit()
        return alert

    product_id = alert.product_id
    try:
        alert.attempts = (alert.attempts or 0) + 1
        _deliver(alert, product, supplier, sender)
    except Exception as exc:  # delivery failures must not escape
        current_app.logger.exception(
            "low stock alert %s delivery failed for product %s", alert_id, product_id
        )
        db.session.rollback()
        return _mark_failed(alert_id, exc)
    return alert


def dispatch_pending_alerts(*, sender: EmailSender | None = None, limit: int = 100) -> dict:
    """Drain PENDING (and previously FAILED) alerts, oldest first."""
    ids = [
        row[0]
        for row in db.session.query(LowStockAlert.id)
        .filter(LowStockAlert.status.in_((ALERT_PENDING, ALERT_FAILED)))
        .order_by(LowStockAlert.created_at.asc(), LowStockAlert.id.asc())
        .limit(limit)
        .all()
    ]

    counts = {ALERT_SENT: 0, ALERT_FAILED: 0, ALERT_SKIPPED: 0}
    for alert_id in ids:
        alert = dispatch_alert(alert_id, sender=sender)
        if alert is not None and alert.status in counts:
            counts[alert.status] += 1
    return {"processed": len(ids), "sent": counts[ALERT_SENT], "failed": counts[ALERT_FAILED], "skipped": counts[ALERT_SKIPPED]}


def scan_low_stock() -> list[LowStockAlert]:
    """
    Queue an alert for every entry at or below its reorder point that has
    no alert waiting yet (PENDING, or FAILED and due for retry). Intended
    for a daily scheduled run.
    """
    pending = (
        db.session.query(LowStockAlert.id)
        .filter(
            LowStockAlert.stock_entry_id == StockEntry.id,
            LowStockAlert.status.in_((ALERT_PENDING, ALERT_FAILED)),
        )
        .exists()
    )
    entries = (
        db.session.query(StockEntry)
        .filter(
            and_(
                StockEntry.reorder_point.isnot(None),
                StockEntry.current_stock <= StockEntry.reorder_point,
            ),
            ~pending,
        )
        .order_by(StockEntry.id.asc())
        .all()
    )

    alerts = []
    for entry in entries:
        alert = LowStockAlert(
            stock_entry_id=entry.id,
            product_id=entry.product_id,
            current_stock=entry.current_stock,
            reorder_point=entry.reorder_point,
            source="scan",
        )
        db.session.add(alert)
        alerts.append(alert)

    db.session.commit()
    current_app.logger.info("low stock scan queued %d alert(s)", len(alerts))
    return alerts


def list_notifications(*, user_id: int, unread_only: bool = False) -> list[Notification]:
    q = db.session.query(Notification).filter_by(user_id=user_id)
    if unread_only:
        q = q.filter_by(is_read=False)
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).all()


def format_cents(cents: int) -> str:
    return f"{cents // 100}.{cents % 100:02d}"


def render_supplier_payment_message(payload: dict) -> tuple[str, str]:
    subject = "Payment received for your orders"
    body = (
        f"A payout of {payload['currency']} {format_cents(payload['total_cents'])} was made "
        f"for order(s) {', '.join(payload['order_numbers'])}."
    )
    return subject, body


def notify_supplier_payment(*, supplier_user_id: int, total_cents: int, order_numbers: list[str]) -> Notification | None:
    """
    Email and in-app notice for a supplier payout. Runs after the payout has
    committed, so failures are logged and never raised.
    """
    try:
        supplier = db.session.get(User, supplier_user_id)
        if supplier is None:
            return None
        payload = {
            "supplier_email": supplier.email,
            "currency": settings_service.get_global_settings().currency,
            "total_cents": total_cents,
            "order_numbers": order_numbers,
        }
        subject, body = render_supplier_payment_message(payload)
        if supplier.email:
            current_app.logger.info("supplier payment email to=%s subject=%r body=%r", supplier.email, subject, body)

        note = Notification(user_id=supplier.id, title=subject, message=body, link="/supplier/payments")
        db.session.add(note)
        db.session.commit()
        return note
    except Exception:
        db.session.rollback()
        current_app.logger.exception("supplier payment notice failed for supplier %s", supplier_user_id)
        return None
