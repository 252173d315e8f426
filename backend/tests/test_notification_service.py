import pytest

from sportify.models import LowStockAlert, Notification
from sportify.models.inventory import ALERT_FAILED, ALERT_PENDING, ALERT_SENT, ALERT_SKIPPED
from sportify.services import notification_service, stock_service
from sportify.services.notification_service import NotificationDeliveryFailure


@pytest.fixture
def no_inline_dispatch(app, monkeypatch):
    monkeypatch.setitem(app.config, "DISPATCH_ALERTS_INLINE", False)


def _low(product, staff, *, stock=3, reorder_point=5):
    stock_service.add_stock(
        product_id=product.id, quantity=stock, reason="Initial delivery", performed_by_user_id=staff.id
    )
    stock_service.update_inventory_settings(product_id=product.id, data={"reorder_point": reorder_point})


def test_render_message():
    subject, body = notification_service.render_low_stock_message(
        {"product_name": "Match Football", "current_stock": 2, "reorder_point": 5, "supplier_email": "x@y"}
    )
    assert subject == "Low stock alert: Match Football"
    assert "down to 2 unit(s)" in body
    assert "reorder point of 5" in body


def test_scan_queues_one_alert_per_low_entry(db_session, product, other_product, staff):
    _low(product, staff)
    _low(other_product, staff, stock=20)

    alerts = notification_service.scan_low_stock()
    assert [a.product_id for a in alerts] == [product.id]
    assert alerts[0].source == "scan"
    assert alerts[0].status == ALERT_PENDING

    # still pending, so a second scan adds nothing
    assert notification_service.scan_low_stock() == []
    assert db_session.query(LowStockAlert).count() == 1


def test_dispatch_pending_sends_and_notifies(db_session, product, staff, supplier):
    _low(product, staff)
    notification_service.scan_low_stock()

    messages = []
    result = notification_service.dispatch_pending_alerts(sender=messages.append)

    assert result == {"processed": 1, "sent": 1, "failed": 0, "skipped": 0}
    assert messages[0]["supplier_email"] == supplier.email
    alert = db_session.query(LowStockAlert).one()
    assert alert.status == ALERT_SENT
    assert alert.processed_at is not None

    notes = notification_service.list_notifications(user_id=supplier.id, unread_only=True)
    assert len(notes) == 1
    assert notes[0].link == f"/supplier/products/{product.id}"

    # nothing left to do
    assert notification_service.dispatch_pending_alerts(sender=messages.append)["processed"] == 0


def test_failed_alert_is_retried(db_session, product, staff, supplier):
    _low(product, staff)
    notification_service.scan_low_stock()

    def refuse(payload):
        raise NotificationDeliveryFailure("mailbox full")

    result = notification_service.dispatch_pending_alerts(sender=refuse)
    assert result["failed"] == 1
    alert = db_session.query(LowStockAlert).one()
    assert alert.status == ALERT_FAILED
    assert alert.last_error == "mailbox full"

    result = notification_service.dispatch_pending_alerts(sender=lambda payload: None)
    assert result["sent"] == 1
    alert = db_session.query(LowStockAlert).one()
    assert alert.attempts == 2
    assert alert.last_error is None


def test_supplier_without_email_is_skipped(db_session, product, staff, supplier):
    supplier.email = ""
    db_session.commit()
    _low(product, staff)
    notification_service.scan_low_stock()

    result = notification_service.dispatch_pending_alerts(sender=lambda payload: None)
    assert result["skipped"] == 1
    assert db_session.query(LowStockAlert).one().status == ALERT_SKIPPED
    assert db_session.query(Notification).count() == 0


def test_movement_alert_left_pending_when_not_inline(db_session, product, staff, no_inline_dispatch):
    _low(product, staff, stock=10)
    stock_service.remove_stock(product_id=product.id, quantity=7, reason="sale", performed_by_user_id=staff.id)

    alert = db_session.query(LowStockAlert).one()
    assert alert.source == "movement"
    assert alert.status == ALERT_PENDING

    # the scan does not duplicate an alert that is already waiting
    assert notification_service.scan_low_stock() == []


def test_missing_alert_returns_none(db_session):
    assert notification_service.dispatch_alert(424242) is None


def test_scan_does_not_requeue_failed_alert(db_session, product, staff, supplier):
    _low(product, staff)
    notification_service.scan_low_stock()

    def refuse(payload):
        raise NotificationDeliveryFailure("mailbox full")

    notification_service.dispatch_pending_alerts(sender=refuse)
    assert db_session.query(LowStockAlert).one().status == ALERT_FAILED

    # the failed alert is retried by dispatch, so the scan leaves it alone
    assert notification_service.scan_low_stock() == []

    messages = []
    result = notification_service.dispatch_pending_alerts(sender=messages.append)
    assert result["sent"] == 1
    assert len(messages) == 1


def test_payment_notice_never_raises(db_session, supplier, monkeypatch):
    def broken_notification(**kwargs):
        raise RuntimeError("notification store down")

    monkeypatch.setattr(notification_service, "Notification", broken_notification)
    note = notification_service.notify_supplier_payment(
        supplier_user_id=supplier.id, total_cents=12345, order_numbers=["SPF-000001"]
    )
    assert note is None


def test_render_payment_message():
    subject, body = notification_service.render_supplier_payment_message(
        {"currency": "LKR", "total_cents": 4590, "order_numbers": ["SPF-000001", "SPF-000002"]}
    )
    assert subject == "Payment received for your orders"
    assert body == "A payout of LKR 45.90 was made for order(s) SPF-000001, SPF-000002."
