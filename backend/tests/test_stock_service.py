"""
Stock ledger tests.

Verifies:
- Counters never go negative; failed decrements leave the row untouched
- Derived flags always match the counters
- Every change to current_stock appends exactly one consistent movement
- Low-stock alerts fire once per call and delivery failures never leak
"""

import logging

import pytest

from sqlalchemy import update

from sportify.extensions import db
from sportify.models import LowStockAlert, Notification, StockEntry, StockMovement
from sportify.models.inventory import ALERT_FAILED, ALERT_SENT, ALERT_SKIPPED
from sportify.services import settings_service, stock_service
from sportify.services.concurrency import execute_guarded_update
from sportify.services.notification_service import NotificationDeliveryFailure
from sportify.services.stock_service import (
    InsufficientStock,
    InvalidQuantity,
    StockEntryNotFound,
    StockConflict,
    StockError,
)


def _stock(product, staff, quantity=10, **kwargs):
    return stock_service.add_stock(
        product_id=product.id,
        quantity=quantity,
        reason="Initial delivery",
        performed_by_user_id=staff.id,
        **kwargs,
    )


def _assert_flags(entry):
    assert entry.available_stock == entry.current_stock - entry.reserved_stock
    assert entry.is_low_stock == (entry.available_stock <= entry.min_stock_level)
    assert entry.is_out_of_stock == (entry.available_stock <= 0)


# =============================================================================
# STOCK IN / OUT
# =============================================================================


class TestAddAndRemove:
    def test_first_add_creates_entry(self, db_session, product, staff):
        entry = _stock(product, staff, 10)

        assert entry.product_id == product.id
        assert entry.current_stock == 10
        assert entry.total_stock_in == 10
        assert entry.min_stock_level == product.min_stock_level
        assert entry.last_restocked_at is not None
        _assert_flags(entry)
        assert entry.is_low_stock is False

        movement = db_session.query(StockMovement).one()
        assert movement.type == "stock_in"
        assert (movement.previous_stock, movement.quantity_delta, movement.new_stock) == (0, 10, 10)
        assert movement.performed_by_user_id == staff.id

    def test_min_level_falls_back_to_store_threshold(self, db_session, product, other_product, staff):
        settings_service.update_global_settings({"low_stock_threshold": 3})

        fallback = _stock(other_product, staff, 3)
        assert other_product.min_stock_level is None
        assert fallback.min_stock_level == 3
        assert fallback.is_low_stock is True

        own = _stock(product, staff, 3)
        assert own.min_stock_level == 5

    def test_remove_decrements_and_counts_out(self, db_session, product, staff):
        _stock(product, staff, 10)
        entry = stock_service.remove_stock(
            product_id=product.id,
            quantity=3,
            reason="Counter sale",
            performed_by_user_id=staff.id,
            reference="POS-1",
        )

        assert entry.current_stock == 7
        assert entry.total_stock_out == 3
        assert entry.last_stock_out_at is not None
        out = db_session.query(StockMovement).filter_by(type="stock_out").one()
        assert out.quantity == 3
        assert out.quantity_delta == -3
        assert out.reference == "POS-1"

    def test_remove_beyond_available_leaves_state_unchanged(self, db_session, product, staff):
        _stock(product, staff, 10)
        before = db_session.query(StockEntry).filter_by(product_id=product.id).one().version_id

        with pytest.raises(InsufficientStock) as exc:
            stock_service.remove_stock(
                product_id=product.id,
                quantity=11,
                reason="Counter sale",
                performed_by_user_id=staff.id,
            )

        assert exc.value.requested == 11
        assert exc.value.available == 10
        entry = db_session.query(StockEntry).filter_by(product_id=product.id).one()
        assert entry.current_stock == 10
        assert entry.total_stock_out == 0
        assert entry.version_id == before
        assert db_session.query(StockMovement).count() == 1

    def test_remove_cannot_take_reserved_units(self, db_session, product, staff):
        _stock(product, staff, 10)
        stock_service.reserve_stock(product_id=product.id, quantity=8)

        with pytest.raises(InsufficientStock):
            stock_service.remove_stock(
                product_id=product.id, quantity=3, reason="sale", performed_by_user_id=staff.id
            )

    def test_damage_and_return_movement_types(self, db_session, product, staff):
        _stock(product, staff, 10)
        stock_service.record_damage(
            product_id=product.id, quantity=2, reason="Torn stitching", performed_by_user_id=staff.id
        )
        entry = stock_service.record_return(
            product_id=product.id, quantity=1, reason="Customer return", performed_by_user_id=staff.id
        )

        assert entry.current_stock == 9
        types = [m.type for m in db_session.query(StockMovement).order_by(StockMovement.id).all()]
        assert types == ["stock_in", "damage", "return"]

    def test_weighted_average_cost(self, db_session, product, staff):
        _stock(product, staff, 10, cost_cents=1000)
        entry = _stock(product, staff, 10, cost_cents=2000)
        assert entry.average_cost_cents == 1500

    def test_unknown_product(self, db_session, staff):
        with pytest.raises(StockEntryNotFound):
            stock_service.add_stock(product_id=9999, quantity=1, reason="x", performed_by_user_id=staff.id)

    def test_reason_required(self, db_session, product, staff):
        with pytest.raises(StockError):
            stock_service.add_stock(product_id=product.id, quantity=1, reason="  ", performed_by_user_id=staff.id)

    @pytest.mark.parametrize("bad", [0, -1, 1.5, True, "3", None])
    def test_invalid_quantity_rejected_before_any_write(self, db_session, product, staff, bad):
        _stock(product, staff, 10)
        with pytest.raises(InvalidQuantity):
            stock_service.remove_stock(
                product_id=product.id, quantity=bad, reason="sale", performed_by_user_id=staff.id
            )
        with pytest.raises(InvalidQuantity):
            stock_service.add_stock(
                product_id=product.id, quantity=bad, reason="sale", performed_by_user_id=staff.id
            )
        assert db_session.query(StockMovement).count() == 1


# =============================================================================
# ADJUSTMENTS
# =============================================================================


class TestAdjust:
    def test_adjust_records_signed_delta(self, db_session, product, staff):
        _stock(product, staff, 10)
        entry = stock_service.adjust_stock(
            product_id=product.id, new_quantity=7, reason="Stock-take", performed_by_user_id=staff.id
        )

        assert entry.current_stock == 7
        adj = db_session.query(StockMovement).filter_by(type="adjustment").one()
        assert (adj.previous_stock, adj.quantity_delta, adj.new_stock, adj.quantity) == (10, -3, 7, 3)

    def test_adjust_to_same_value_still_records_movement(self, db_session, product, staff):
        _stock(product, staff, 10)
        stock_service.adjust_stock(
            product_id=product.id, new_quantity=10, reason="Stock-take", performed_by_user_id=staff.id
        )
        adj = db_session.query(StockMovement).filter_by(type="adjustment").one()
        assert adj.quantity_delta == 0

    def test_adjust_below_reserved_rejected(self, db_session, product, staff):
        _stock(product, staff, 10)
        stock_service.reserve_stock(product_id=product.id, quantity=4)

        with pytest.raises(InvalidQuantity):
            stock_service.adjust_stock(
                product_id=product.id, new_quantity=3, reason="Stock-take", performed_by_user_id=staff.id
            )
        assert db_session.query(StockEntry).filter_by(product_id=product.id).one().current_stock == 10

    def test_adjust_negative_rejected(self, db_session, product, staff):
        with pytest.raises(InvalidQuantity):
            stock_service.adjust_stock(
                product_id=product.id, new_quantity=-1, reason="Stock-take", performed_by_user_id=staff.id
            )


# =============================================================================
# CONCURRENT WRITERS
# =============================================================================


@pytest.fixture
def writer_moves_stock_first(monkeypatch):
    """
    Make another writer set current_stock just before the guarded UPDATE
    runs, while the entry loaded by the service still holds the old value.
    """
    def install(product_id, new_stock):
        def racing_update(stmt):
            db.session.execute(
                update(StockEntry)
                .where(StockEntry.product_id == product_id)
                .values(current_stock=new_stock)
                .execution_options(synchronize_session=False)
            )
            return execute_guarded_update(stmt)

        monkeypatch.setattr(stock_service, "execute_guarded_update", racing_update)

    return install


class TestConcurrentWriters:
    def test_stale_entry_cannot_oversell(self, db_session, product, staff, writer_moves_stock_first):
        _stock(product, staff, 10)
        stale = stock_service.get_stock_entry(product.id)
        assert stale.current_stock == 10

        writer_moves_stock_first(product.id, 2)
        with pytest.raises(InsufficientStock) as exc:
            stock_service.remove_stock(
                product_id=product.id, quantity=5, reason="sale", performed_by_user_id=staff.id
            )

        assert exc.value.requested == 5
        assert exc.value.available == 2
        assert db_session.query(StockMovement).filter_by(type="stock_out").count() == 0
        assert db_session.query(StockEntry).filter_by(product_id=product.id).one().total_stock_out == 0

    def test_adjust_raises_conflict_when_row_moves(self, db_session, product, staff, writer_moves_stock_first):
        _stock(product, staff, 10)

        writer_moves_stock_first(product.id, 8)
        with pytest.raises(StockConflict):
            stock_service.adjust_stock(
                product_id=product.id, new_quantity=6, reason="Stock-take", performed_by_user_id=staff.id
            )

        assert db_session.query(StockMovement).filter_by(type="adjustment").count() == 0
        assert db_session.query(StockEntry).filter_by(product_id=product.id).one().current_stock == 10


# =============================================================================
# RESERVATIONS
# =============================================================================


class TestReservations:
    def test_reserve_then_release(self, db_session, product, staff):
        _stock(product, staff, 10)

        entry = stock_service.reserve_stock(product_id=product.id, quantity=4)
        assert (entry.current_stock, entry.reserved_stock, entry.available_stock) == (10, 4, 6)
        _assert_flags(entry)

        entry = stock_service.release_reserved_stock(product_id=product.id, quantity=4)
        assert (entry.current_stock, entry.reserved_stock, entry.available_stock) == (10, 0, 10)
        _assert_flags(entry)

    def test_reservations_do_not_write_movements(self, db_session, product, staff):
        _stock(product, staff, 10)
        stock_service.reserve_stock(product_id=product.id, quantity=2)
        stock_service.release_reserved_stock(product_id=product.id, quantity=2)
        assert db_session.query(StockMovement).count() == 1

    def test_reserve_more_than_available(self, db_session, product, staff):
        _stock(product, staff, 3)
        with pytest.raises(InsufficientStock):
            stock_service.reserve_stock(product_id=product.id, quantity=4)
        assert db_session.query(StockEntry).filter_by(product_id=product.id).one().reserved_stock == 0

    def test_over_release_clamps_at_zero(self, db_session, product, staff):
        _stock(product, staff, 10)
        stock_service.reserve_stock(product_id=product.id, quantity=2)
        entry = stock_service.release_reserved_stock(product_id=product.id, quantity=5)
        assert entry.reserved_stock == 0
        assert entry.available_stock == 10


# =============================================================================
# LEDGER PROPERTIES
# =============================================================================


class TestLedgerProperties:
    def test_sequence_keeps_counters_flags_and_movements_consistent(self, db_session, product, staff):
        ops = [
            lambda: _stock(product, staff, 8),
            lambda: stock_service.remove_stock(product_id=product.id, quantity=5, reason="sale", performed_by_user_id=staff.id),
            lambda: stock_service.reserve_stock(product_id=product.id, quantity=2),
            lambda: stock_service.adjust_stock(product_id=product.id, new_quantity=12, reason="count", performed_by_user_id=staff.id),
            lambda: stock_service.record_damage(product_id=product.id, quantity=1, reason="wet", performed_by_user_id=staff.id),
            lambda: stock_service.release_reserved_stock(product_id=product.id, quantity=2),
            lambda: stock_service.remove_stock(product_id=product.id, quantity=11, reason="sale", performed_by_user_id=staff.id),
        ]
        for op in ops:
            entry = op()
            assert entry.current_stock >= 0
            assert entry.reserved_stock >= 0
            _assert_flags(entry)

        assert entry.current_stock == 0
        assert entry.is_out_of_stock is True

        movements = db_session.query(StockMovement).order_by(StockMovement.id).all()
        assert len(movements) == 5
        running = 0
        for m in movements:
            assert m.previous_stock == running
            assert m.new_stock - m.previous_stock == m.quantity_delta
            running = m.new_stock
        assert running == entry.current_stock

    def test_settings_recompute_flags(self, db_session, product, staff):
        _stock(product, staff, 6)
        entry = stock_service.update_inventory_settings(
            product_id=product.id, data={"min_stock_level": 6, "reorder_point": 3}
        )
        assert entry.is_low_stock is True
        assert entry.reorder_point == 3

    def test_settings_reject_negative(self, db_session, product, staff):
        _stock(product, staff, 6)
        with pytest.raises(InvalidQuantity):
            stock_service.update_inventory_settings(product_id=product.id, data={"reorder_point": -2})

    def test_list_movements_newest_first(self, db_session, product, staff):
        _stock(product, staff, 5)
        _stock(product, staff, 5)
        stock_service.remove_stock(product_id=product.id, quantity=1, reason="sale", performed_by_user_id=staff.id)

        rows, total = stock_service.list_movements(product_id=product.id, page=1, per_page=2)
        assert total == 3
        assert [r.type for r in rows] == ["stock_out", "stock_in"]

        rows, total = stock_service.list_movements(product_id=product.id, movement_type="stock_in")
        assert total == 2

    def test_low_stock_listing_and_summary(self, db_session, product, other_product, staff):
        _stock(product, staff, 20)
        _stock(other_product, staff, 2)

        low = stock_service.list_low_stock()
        assert [e.product_id for e in low] == [other_product.id]

        summary = stock_service.get_inventory_summary()
        assert summary["total_products"] == 2
        assert summary["total_stock"] == 22
        assert summary["low_stock_count"] == 1
        assert summary["out_of_stock_count"] == 0


# =============================================================================
# LOW-STOCK ALERTS
# =============================================================================


class TestLowStockAlerts:
    @pytest.fixture
    def sent(self, app, monkeypatch):
        messages = []
        monkeypatch.setitem(app.config, "LOW_STOCK_EMAIL_SENDER", messages.append)
        return messages

    def _with_reorder_point(self, product, staff, point=5):
        _stock(product, staff, 10)
        stock_service.update_inventory_settings(product_id=product.id, data={"reorder_point": point})

    def test_crossing_reorder_point_notifies_supplier_once(self, db_session, product, staff, supplier, sent):
        self._with_reorder_point(product, staff)

        entry = stock_service.remove_stock(
            product_id=product.id, quantity=6, reason="sale", performed_by_user_id=staff.id
        )

        assert entry.current_stock == 4
        assert sent == [{
            "supplier_email": supplier.email,
            "product_name": "Match Football",
            "current_stock": 4,
            "reorder_point": 5,
        }]
        alert = db_session.query(LowStockAlert).one()
        assert alert.status == ALERT_SENT
        assert alert.attempts == 1
        note = db_session.query(Notification).one()
        assert note.user_id == supplier.id
        assert "Match Football" in note.title

    def test_above_reorder_point_no_alert(self, db_session, product, staff, sent):
        self._with_reorder_point(product, staff)
        stock_service.remove_stock(product_id=product.id, quantity=4, reason="sale", performed_by_user_id=staff.id)
        assert sent == []
        assert db_session.query(LowStockAlert).count() == 0

    def test_no_reorder_point_no_alert(self, db_session, product, staff, sent):
        _stock(product, staff, 10)
        stock_service.remove_stock(product_id=product.id, quantity=10, reason="sale", performed_by_user_id=staff.id)
        assert db_session.query(LowStockAlert).count() == 0

    def test_adjust_and_damage_also_alert(self, db_session, product, staff, sent):
        self._with_reorder_point(product, staff)
        stock_service.adjust_stock(product_id=product.id, new_quantity=5, reason="count", performed_by_user_id=staff.id)
        stock_service.record_damage(product_id=product.id, quantity=1, reason="wet", performed_by_user_id=staff.id)
        assert len(sent) == 2
        assert db_session.query(LowStockAlert).count() == 2

    def test_delivery_failure_is_logged_not_raised(self, app, db_session, product, staff, monkeypatch, caplog):
        def broken_sender(payload):
            raise NotificationDeliveryFailure("SMTP connection refused")

        monkeypatch.setitem(app.config, "LOW_STOCK_EMAIL_SENDER", broken_sender)
        self._with_reorder_point(product, staff)

        with caplog.at_level(logging.ERROR):
            entry = stock_service.remove_stock(
                product_id=product.id, quantity=6, reason="sale", performed_by_user_id=staff.id
            )

        assert entry.current_stock == 4
        alert = db_session.query(LowStockAlert).one()
        assert alert.status == ALERT_FAILED
        assert "SMTP connection refused" in alert.last_error
        assert "delivery failed" in caplog.text
        assert db_session.query(Notification).count() == 0

    def test_notification_store_failure_is_not_raised(self, app, db_session, product, staff, monkeypatch, caplog):
        from sportify.services import notification_service

        def broken_notification(**kwargs):
            raise RuntimeError("notification store down")

        monkeypatch.setattr(notification_service, "Notification", broken_notification)
        self._with_reorder_point(product, staff)

        with caplog.at_level(logging.ERROR):
            entry = stock_service.remove_stock(
                product_id=product.id, quantity=6, reason="sale", performed_by_user_id=staff.id
            )

        assert entry.current_stock == 4
        assert stock_service.get_stock_entry(product.id).current_stock == 4
        alert = db_session.query(LowStockAlert).one()
        assert alert.status == ALERT_FAILED
        assert alert.attempts == 1
        assert "notification store down" in alert.last_error
        assert "delivery failed" in caplog.text
        assert db_session.query(Notification).count() == 0

    def test_product_without_supplier_is_skipped(self, db_session, product, staff, sent):
        product.supplier_user_id = None
        db.session.commit()
        self._with_reorder_point(product, staff)

        stock_service.remove_stock(product_id=product.id, quantity=6, reason="sale", performed_by_user_id=staff.id)

        assert sent == []
        assert db_session.query(LowStockAlert).one().status == ALERT_SKIPPED

    def test_inline_dispatch_disabled_leaves_alert_pending(self, app, db_session, product, staff, sent, monkeypatch):
        monkeypatch.setitem(app.config, "DISPATCH_ALERTS_INLINE", False)
        self._with_reorder_point(product, staff)
        stock_service.remove_stock(product_id=product.id, quantity=6, reason="sale", performed_by_user_id=staff.id)

        assert sent == []
        assert db_session.query(LowStockAlert).one().status == "PENDING"
