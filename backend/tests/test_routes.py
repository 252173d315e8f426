"""
HTTP-level tests: actor/role checks and the status codes the API promises.
"""

from sportify.models import LowStockAlert, User
from sportify.models.inventory import ALERT_FAILED
from sportify.models.users import ROLE_CUSTOMER, ROLE_SUPPLIER
from sportify.services import stock_service


ADDRESS = {"line1": "12 Galle Road", "city": "Colombo", "country": "LK"}


def headers_for(user):
    return {"X-User-Id": str(user.id)}


def _stock(product, staff, quantity=10):
    stock_service.add_stock(
        product_id=product.id, quantity=quantity, reason="Initial delivery", performed_by_user_id=staff.id
    )


class TestActor:
    def test_missing_header_is_401(self, client, db_session, product):
        assert client.get("/api/cart/").status_code == 401
        assert client.get(f"/api/inventory/{product.id}").status_code == 401

    def test_unknown_or_inactive_user_is_401(self, client, db_session, customer):
        assert client.get("/api/cart/", headers={"X-User-Id": "9999"}).status_code == 401
        assert client.get("/api/cart/", headers={"X-User-Id": "abc"}).status_code == 401

        customer.is_active = False
        db_session.commit()
        assert client.get("/api/cart/", headers=headers_for(customer)).status_code == 401

    def test_customer_cannot_touch_inventory(self, client, db_session, product, customer_headers):
        resp = client.post(
            f"/api/inventory/{product.id}/add",
            json={"quantity": 5, "reason": "sneaky"},
            headers=customer_headers,
        )
        assert resp.status_code == 403

    def test_only_admin_updates_settings(self, client, db_session, staff_headers, admin_headers):
        assert client.put("/api/settings/", json={"tax_rate_bps": 900}, headers=staff_headers).status_code == 403

        resp = client.put("/api/settings/", json={"tax_rate_bps": 900}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["settings"]["tax_rate_bps"] == 900

        resp = client.put("/api/settings/", json={"tax_rate_bps": 20000}, headers=admin_headers)
        assert resp.status_code == 400


class TestInventoryRoutes:
    def test_add_remove_and_movements(self, client, db_session, product, staff_headers):
        resp = client.post(
            f"/api/inventory/{product.id}/add",
            json={"quantity": 10, "reason": "Delivery", "cost_cents": 4000},
            headers=staff_headers,
        )
        assert resp.status_code == 201
        assert resp.get_json()["entry"]["current_stock"] == 10

        resp = client.post(
            f"/api/inventory/{product.id}/remove",
            json={"quantity": 11, "reason": "sale"},
            headers=staff_headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["available"] == 10

        resp = client.get(f"/api/inventory/{product.id}/movements", headers=staff_headers)
        body = resp.get_json()
        assert body["total"] == 1
        assert body["items"][0]["type"] == "stock_in"

    def test_bad_quantity_is_400(self, client, db_session, product, staff_headers):
        for quantity in (0, -3, 1.5, "ten"):
            resp = client.post(
                f"/api/inventory/{product.id}/add",
                json={"quantity": quantity, "reason": "x"},
                headers=staff_headers,
            )
            assert resp.status_code == 400

    def test_unknown_entry_is_404(self, client, db_session, product, staff_headers):
        assert client.get(f"/api/inventory/{product.id}", headers=staff_headers).status_code == 404

    def test_adjust_and_summary(self, client, db_session, product, staff, staff_headers):
        _stock(product, staff)
        resp = client.post(
            f"/api/inventory/{product.id}/adjust",
            json={"new_quantity": 4, "reason": "Stock-take"},
            headers=staff_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["entry"]["is_low_stock"] is True

        summary = client.get("/api/inventory/summary", headers=staff_headers).get_json()["summary"]
        assert summary["total_stock"] == 4
        assert summary["low_stock_count"] == 1


class TestCheckoutRoutes:
    def test_cart_to_order(self, client, db_session, product, staff, customer_headers):
        _stock(product, staff)
        resp = client.post("/api/cart/items", json={"product_id": product.id}, headers=customer_headers)
        assert resp.status_code == 201
        cart = resp.get_json()["cart"]
        assert cart["item_count"] == 1
        assert cart["subtotal_cents"] == 100000

        resp = client.post(
            "/api/orders/",
            json={"payment_method": "cash_on_delivery", "shipping_address": ADDRESS},
            headers=customer_headers,
        )
        assert resp.status_code == 201
        order = resp.get_json()["order"]
        assert order["order_number"] == "SPF-000001"

        resp = client.get(f"/api/orders/{order['id']}", headers=customer_headers)
        assert resp.status_code == 200

    def test_shortfall_is_409(self, client, db_session, product, staff, customer_headers):
        _stock(product, staff, 3)
        client.post("/api/cart/items", json={"product_id": product.id, "quantity": 3}, headers=customer_headers)
        stock_service.remove_stock(
            product_id=product.id, quantity=2, reason="Counter sale", performed_by_user_id=staff.id
        )

        resp = client.post(
            "/api/orders/",
            json={"payment_method": "credit_card", "shipping_address": ADDRESS},
            headers=customer_headers,
        )
        assert resp.status_code == 409
        assert resp.get_json()["requested"] == 3
        assert resp.get_json()["available"] == 1

    def test_other_customer_cannot_view_order(self, client, db_session, product, staff, customer_headers):
        _stock(product, staff)
        client.post("/api/cart/items", json={"product_id": product.id}, headers=customer_headers)
        order = client.post(
            "/api/orders/",
            json={"payment_method": "paypal", "shipping_address": ADDRESS},
            headers=customer_headers,
        ).get_json()["order"]

        stranger = User(email="stranger@example.com", role=ROLE_CUSTOMER, is_active=True)
        db_session.add(stranger)
        db_session.commit()

        resp = client.get(f"/api/orders/{order['id']}", headers=headers_for(stranger))
        assert resp.status_code == 403
        resp = client.put(f"/api/orders/{order['id']}/cancel", json={}, headers=headers_for(stranger))
        assert resp.status_code == 403

    def test_stats_need_manager(self, client, db_session, customer_headers, staff_headers):
        assert client.get("/api/orders/stats", headers=customer_headers).status_code == 403
        resp = client.get("/api/orders/stats", headers=staff_headers)
        assert resp.status_code == 200
        assert resp.get_json()["stats"]["total_orders"] == 0

    def test_validate_discount(self, client, db_session, customer_headers):
        resp = client.post(
            "/api/discounts/validate", json={"code": "NOPE", "subtotal_cents": 1000}, headers=customer_headers
        )
        assert resp.status_code == 404


class TestPublicRoutes:
    def test_settings_are_public(self, client, db_session):
        resp = client.get("/api/settings/")
        assert resp.status_code == 200
        settings = resp.get_json()["settings"]
        assert settings["tax_rate_bps"] == 800
        assert settings["shipping_rates"]["standard"] == 50000

    def test_health(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["alert_outbox"]["details"] == {"pending": 0, "failed": 0}

    def test_health_degraded_on_failed_alerts(self, client, db_session, product, staff):
        _stock(product, staff)
        entry = stock_service.get_stock_entry(product.id)
        db_session.add(
            LowStockAlert(
                stock_entry_id=entry.id,
                product_id=product.id,
                current_stock=1,
                reorder_point=5,
                status=ALERT_FAILED,
            )
        )
        db_session.commit()

        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "degraded"


class TestNotificationRoutes:
    def test_supplier_reads_low_stock_notification(self, client, db_session, product, staff, supplier):
        _stock(product, staff)
        stock_service.update_inventory_settings(product_id=product.id, data={"reorder_point": 5})
        stock_service.remove_stock(product_id=product.id, quantity=6, reason="sale", performed_by_user_id=staff.id)

        resp = client.get("/api/notifications/?unread=true", headers=headers_for(supplier))
        items = resp.get_json()["items"]
        assert len(items) == 1
        assert items[0]["title"] == "Low stock alert: Match Football"

        resp = client.put(f"/api/notifications/{items[0]['id']}/read", headers=headers_for(supplier))
        assert resp.status_code == 200
        assert resp.get_json()["notification"]["is_read"] is True

        resp = client.get("/api/notifications/?unread=true", headers=headers_for(supplier))
        assert resp.get_json()["items"] == []

    def test_cannot_read_someone_elses(self, client, db_session, product, staff, supplier, customer_headers):
        _stock(product, staff)
        stock_service.update_inventory_settings(product_id=product.id, data={"reorder_point": 5})
        stock_service.remove_stock(product_id=product.id, quantity=6, reason="sale", performed_by_user_id=staff.id)

        note_id = client.get("/api/notifications/", headers=headers_for(supplier)).get_json()["items"][0]["id"]
        resp = client.put(f"/api/notifications/{note_id}/read", headers=customer_headers)
        assert resp.status_code == 404


class TestSupplierRoutes:
    def _delivered_order(self, client, product, staff, customer_headers, staff_headers):
        _stock(product, staff)
        client.post("/api/cart/items", json={"product_id": product.id}, headers=customer_headers)
        order = client.post(
            "/api/orders/",
            json={"payment_method": "credit_card", "shipping_address": ADDRESS},
            headers=customer_headers,
        ).get_json()["order"]
        for status in ("processing", "shipped", "delivered"):
            resp = client.put(f"/api/orders/{order['id']}/shipment", json={"status": status}, headers=staff_headers)
            assert resp.status_code == 200
        return order

    def test_supplier_sees_own_balance_only(
        self, client, db_session, product, staff, supplier, customer_headers, staff_headers
    ):
        self._delivered_order(client, product, staff, customer_headers, staff_headers)

        resp = client.get(f"/api/suppliers/{supplier.id}/balance", headers=headers_for(supplier))
        assert resp.status_code == 200
        assert resp.get_json()["balance"]["pending_cents"] == 90000

        assert client.get(f"/api/suppliers/{supplier.id}/balance", headers=staff_headers).status_code == 200
        assert client.get(f"/api/suppliers/{supplier.id}/balance", headers=customer_headers).status_code == 403

        rival = User(email="rival@gear.example", role=ROLE_SUPPLIER, is_active=True)
        db_session.add(rival)
        db_session.commit()
        resp = client.get(f"/api/suppliers/{supplier.id}/balance", headers=headers_for(rival))
        assert resp.status_code == 403

    def test_only_admin_pays(
        self, client, db_session, product, staff, supplier, customer_headers, staff_headers, admin_headers
    ):
        order = self._delivered_order(client, product, staff, customer_headers, staff_headers)
        item_id = order["items"][0]["id"]

        resp = client.post(f"/api/suppliers/{supplier.id}/pay", json={"item_ids": [item_id]}, headers=staff_headers)
        assert resp.status_code == 403

        resp = client.post(f"/api/suppliers/{supplier.id}/pay", json={"item_ids": []}, headers=admin_headers)
        assert resp.status_code == 400

        resp = client.post(f"/api/suppliers/{supplier.id}/pay", json={"item_ids": [item_id]}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["payout"]["total_paid_cents"] == 90000

        resp = client.post("/api/suppliers/99999/pay", json={"item_ids": [item_id]}, headers=admin_headers)
        assert resp.status_code == 404
