"""
HTTP-level tests: caller identity headers, status codes and response shapes.
"""

from decimal import Decimal

from orderflow.models import Order, Variant, PartnerEarning

from conftest import USER_ID, user_headers, admin_headers, add_cart_line, live_window


def _checkout(client, address, **extra):
    return client.post("/api/checkout", json={"address_id": address.id, **extra}, headers=user_headers())


class TestIdentity:
    def test_cart_requires_user(self, client, db_session):
        assert client.get("/api/cart").status_code == 401
        assert client.get("/api/cart", headers={"X-User-Id": "abc"}).status_code == 401

    def test_admin_routes_require_admin(self, client, db_session):
        assert client.get("/api/admin/orders").status_code == 403
        assert client.get("/api/admin/orders", headers=user_headers()).status_code == 403
        assert client.get("/api/admin/rules/moq", headers={"X-Admin-Id": "0"}).status_code == 403

    def test_health_reports_disabled_gateway_as_degraded(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "degraded"
        assert body["checks"]["database"]["status"] == "healthy"

    def test_health_with_gateway(self, client, db_session, gateway):
        assert client.get("/health").get_json()["status"] == "healthy"


class TestCartAndCheckout:
    def test_add_item_returns_priced_cart(self, client, db_session, variant):
        resp = client.post("/api/cart/items", json={"variant_id": variant.id, "quantity": 3}, headers=user_headers())
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["item_count"] == 1
        assert body["items"][0]["unit_price"] == "100.00"
        assert body["sub_total"] == "300.00"

    def test_add_item_errors(self, client, db_session, make_variant):
        v = make_variant(quantity=2)
        assert client.post("/api/cart/items", json={"quantity": 1}, headers=user_headers()).status_code == 400
        assert client.post("/api/cart/items", json={"variant_id": 999, "quantity": 1}, headers=user_headers()).status_code == 404

        resp = client.post("/api/cart/items", json={"variant_id": v.id, "quantity": 3}, headers=user_headers())
        assert resp.status_code == 409
        assert resp.get_json()["details"]["on_hand"] == 2

    def test_update_and_clear(self, client, db_session, variant):
        item = add_cart_line(db_session, variant, 1)
        resp = client.patch(f"/api/cart/items/{item.id}", json={"quantity": 4}, headers=user_headers())
        assert resp.status_code == 200
        assert resp.get_json()["total_quantity"] == 4

        resp = client.delete("/api/cart", headers=user_headers())
        assert resp.get_json() == {"removed": 1}

    def test_checkout_creates_order(self, client, db_session, variant, address):
        add_cart_line(db_session, variant, 2)

        resp = _checkout(client, address)

        assert resp.status_code == 201
        order = resp.get_json()["order"]
        assert order["status"] == "PENDING"
        assert order["order_number"] == "ORD-000001"
        assert order["total"] == "200.00"
        assert order["items"][0]["price_source"] == "DEFAULT"

        listed = client.get("/api/orders", headers=user_headers()).get_json()["orders"]
        assert [o["id"] for o in listed] == [order["id"]]
        assert client.get(f"/api/orders/{order['id']}", headers=user_headers(USER_ID + 1)).status_code == 404

    def test_checkout_insufficient_stock(self, client, db_session, make_variant, address):
        v = make_variant(quantity=5)
        add_cart_line(db_session, v, 6)

        resp = _checkout(client, address)

        assert resp.status_code == 409
        db_session.expire_all()
        assert db_session.query(Order).count() == 0
        assert db_session.get(Variant, v.id).quantity == 5

    def test_checkout_empty_cart(self, client, db_session, address):
        assert _checkout(client, address).status_code == 400


class TestAdminOrders:
    def test_invalid_transition_is_409(self, client, db_session, variant, address):
        add_cart_line(db_session, variant, 1)
        order_id = _checkout(client, address).get_json()["order"]["id"]

        resp = client.post(f"/api/admin/orders/{order_id}/status", json={"status": "delivered"}, headers=admin_headers())

        assert resp.status_code == 409
        assert resp.get_json()["details"]["allowed"] == ["CANCELLED", "PAID", "PROCESSING"]

    def test_transition_flow(self, client, db_session, variant, address):
        add_cart_line(db_session, variant, 1)
        order_id = _checkout(client, address).get_json()["order"]["id"]

        for status in ("PROCESSING", "SHIPPED"):
            resp = client.post(
                f"/api/admin/orders/{order_id}/status",
                json={"status": status, "tracking_number": "TRK-9"},
                headers=admin_headers(),
            )
            assert resp.status_code == 200

        detail = client.get(f"/api/admin/orders/{order_id}", headers=admin_headers()).get_json()["order"]
        assert detail["status"] == "SHIPPED"
        assert detail["tracking"]["tracking_number"] == "TRK-9"
        assert detail["allowed_transitions"] == ["CANCELLED", "DELIVERED"]

    def test_missing_status_and_unknown_order(self, client, db_session):
        assert client.post("/api/admin/orders/1/status", json={}, headers=admin_headers()).status_code == 400
        resp = client.post("/api/admin/orders/4040/status", json={"status": "PAID"}, headers=admin_headers())
        assert resp.status_code == 404


class TestPricingRoutes:
    def test_effective_price_with_slab_and_flash_sale(self, client, db_session, product, variant):
        headers = admin_headers()
        resp = client.post(
            "/api/admin/rules/slabs",
            json={"variant_id": variant.id, "min_qty": 10, "max_qty": 49, "price": "80.00"},
            headers=headers,
        )
        assert resp.status_code == 201

        start, end = live_window()
        resp = client.post(
            "/api/admin/rules/flash-sales",
            json={
                "name": "Weekend",
                "discount_percentage": "20",
                "start_time": start.isoformat() + "Z",
                "end_time": end.isoformat() + "Z",
                "product_ids": [product.id],
            },
            headers=headers,
        )
        assert resp.status_code == 201
        assert resp.get_json()["flash_sale"]["product_ids"] == [product.id]

        body = client.get(f"/api/pricing/variants/{variant.id}/effective-price?quantity=10").get_json()
        assert body["quantity"] == 10
        assert body["unit_price"] == "64.00"
        assert body["source"] == "FLASH_SALE"
        assert body["applied_slab"]["price"] == "80.00"
        assert body["flash_sale"]["original_price"] == "80.00"

    def test_effective_price_at_instant(self, client, db_session, variant):
        resp = client.get(f"/api/pricing/variants/{variant.id}/effective-price?quantity=1&at=2026-01-01T00:00:00Z")
        assert resp.status_code == 200
        assert resp.get_json()["unit_price"] == "100.00"

    def test_effective_price_errors(self, client, db_session, variant):
        assert client.get(f"/api/pricing/variants/{variant.id}/effective-price?quantity=0").status_code == 400
        assert client.get(f"/api/pricing/variants/{variant.id}/effective-price?at=yesterday").status_code == 400
        assert client.get("/api/pricing/variants/999/effective-price").status_code == 404

    def test_moq_admin_and_lookup(self, client, db_session, variant):
        headers = admin_headers()
        assert client.put("/api/admin/rules/moq", json={"scope": "GLOBAL", "min_quantity": 5}, headers=headers).status_code == 200
        resp = client.put(
            "/api/admin/rules/moq", json={"scope": "VARIANT", "variant_id": variant.id, "min_quantity": 12}, headers=headers,
        )
        setting_id = resp.get_json()["setting"]["id"]

        body = client.get(f"/api/pricing/variants/{variant.id}/moq").get_json()
        assert (body["min_quantity"], body["source"]) == (12, "VARIANT")

        client.post(f"/api/admin/rules/moq/{setting_id}/deactivate", headers=headers)
        body = client.get(f"/api/pricing/variants/{variant.id}/moq").get_json()
        assert (body["min_quantity"], body["source"]) == (5, "GLOBAL")

        assert client.put("/api/admin/rules/moq", json={"scope": "PRODUCT"}, headers=headers).status_code == 400

    def test_slab_validation(self, client, db_session, variant):
        resp = client.post(
            "/api/admin/rules/slabs",
            json={"variant_id": variant.id, "min_qty": 10, "max_qty": 5, "price": "80.00"},
            headers=admin_headers(),
        )
        assert resp.status_code == 400


class TestReturnsAndPartners:
    def test_reasons_are_public(self, client, db_session):
        body = client.get("/api/returns/reasons").get_json()
        assert "Other" in body["reasons"]
        assert body["window_days"] == 7

    def test_return_of_undelivered_order(self, client, db_session, variant, address):
        add_cart_line(db_session, variant, 1)
        order = _checkout(client, address).get_json()["order"]

        resp = client.post(
            "/api/returns",
            json={"order_id": order["id"], "order_item_id": order["items"][0]["id"], "reason": "Quality Issues"},
            headers=user_headers(),
        )
        assert resp.status_code == 400

    def test_partner_setup_delivery_and_backfill(self, client, db_session, make_variant, address):
        headers = admin_headers()
        coupon = client.post(
            "/api/admin/coupons",
            json={"code": "fest20", "discount_type": "PERCENTAGE", "discount_value": "20"},
            headers=headers,
        ).get_json()["coupon"]
        assert coupon["code"] == "FEST20"
        partner = client.post(
            "/api/admin/partners", json={"name": "Creator", "email": "Creator@Example.com"}, headers=headers,
        ).get_json()["partner"]
        resp = client.put(
            f"/api/admin/coupons/{coupon['id']}/partners/{partner['id']}", json={"commission": "5"}, headers=headers,
        )
        assert resp.status_code == 200

        v = make_variant(price="250.00", quantity=10)
        add_cart_line(db_session, v, 4)
        order = _checkout(client, address, coupon_code="FEST20").get_json()["order"]
        assert order["discount"] == "200.00"

        for status in ("PROCESSING", "SHIPPED", "DELIVERED"):
            client.post(f"/api/admin/orders/{order['id']}/status", json={"status": status}, headers=headers)

        body = client.get(f"/api/admin/partners/{partner['id']}/earnings", headers=headers).get_json()
        assert [e["amount"] for e in body["earnings"]] == ["40.00"]
        assert body["summary"]["total_pending"] == "40.00"

        assert client.post("/api/admin/commissions/backfill", headers=headers).get_json() == {
            "orders_processed": 0, "commissions_created": 0,
        }
        db_session.expire_all()
        assert db_session.query(PartnerEarning).count() == 1

        resp = client.post(
            f"/api/admin/partners/{partner['id']}/earnings/mark-paid",
            json={"earning_ids": [body["earnings"][0]["id"]]},
            headers=headers,
        )
        assert resp.get_json()["summary"]["total_paid"] == "40.00"

    def test_duplicate_coupon_code(self, client, db_session):
        payload = {"code": "ONCE", "discount_type": "FIXED", "discount_value": "50"}
        assert client.post("/api/admin/coupons", json=payload, headers=admin_headers()).status_code == 201
        assert client.post("/api/admin/coupons", json=payload, headers=admin_headers()).status_code == 409
