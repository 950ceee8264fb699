"""Tests for the order store: create, update, append, item status, delete."""

import pytest

from app.models.order import Order
from app.services.business_day import now_ms


# ============== Create ==============

class TestCreateOrder:

    def test_create_order(self, client, order_payload):
        res = client.post("/api/orders", json=order_payload(customer_name="  Maria  "))
        assert res.status_code == 201
        body = res.json()
        assert body["success"] is True
        order = body["data"]
        assert order["customerName"] == "Maria"
        assert order["orderNumber"] == 1
        assert order["isPaid"] is False
        assert order["branchId"] == "pangabugan"
        assert order["totalAmount"] == 100
        assert order["orderStatus"] == "pending"
        assert order["version"] == 1

    def test_order_numbers_increase(self, client, order_payload):
        first = client.post("/api/orders", json=order_payload()).json()["data"]
        second = client.post("/api/orders", json=order_payload()).json()["data"]
        assert second["orderNumber"] == first["orderNumber"] + 1

    def test_duplicate_id_conflicts(self, client, order_payload):
        payload = order_payload(id="order-dup")
        assert client.post("/api/orders", json=payload).status_code == 201
        res = client.post("/api/orders", json=payload)
        assert res.status_code == 409
        assert res.json() == {"success": False, "error": "Order with this ID already exists"}

    def test_requires_items(self, client, order_payload):
        res = client.post("/api/orders", json=order_payload(items=[]))
        assert res.status_code == 400
        assert res.json()["success"] is False

    def test_requires_customer_name(self, client, order_payload):
        payload = order_payload()
        del payload["customerName"]
        res = client.post("/api/orders", json=payload)
        assert res.status_code == 400
        assert "customerName" in res.json()["error"]

    def test_customer_name_length_limit(self, client, order_payload):
        res = client.post("/api/orders", json=order_payload(customer_name="x" * 101))
        assert res.status_code == 400

    def test_item_price_rounded(self, client, order_payload):
        items = [{"name": "Tea", "price": 45.555, "quantity": 2}]
        order = client.post("/api/orders", json=order_payload(items=items)).json()["data"]
        assert order["items"][0]["price"] == 45.56
        assert order["items"][0]["id"].startswith("item-")

    def test_unknown_branch(self, client, order_payload):
        res = client.post("/api/orders?branchId=nowhere", json=order_payload())
        assert res.status_code == 404

    def test_branch_from_body(self, client, order_payload):
        order = client.post("/api/orders", json=order_payload(branchId="baan")).json()["data"]
        assert order["branchId"] == "baan"

    def test_backdated_order(self, client, order_payload):
        created_at = now_ms() - 3 * 24 * 3600 * 1000
        order = client.post("/api/orders", json=order_payload(createdAt=created_at)).json()["data"]
        assert order["createdAt"] == created_at

    def test_menu_reference_captured(self, client, order_payload, menu_items):
        items = [{"id": "croissant-1736000000000-x1", "name": "Croissant", "price": 50}]
        order = client.post("/api/orders", json=order_payload(items=items)).json()["data"]
        item = order["items"][0]
        assert item["menuItemId"] == "croissant"
        assert item["category"] == "Pastries"
        assert item["owner"] == "elwin"

    def test_duplicate_item_ids_rejected(self, client, order_payload):
        items = [
            {"id": "same", "name": "Tea", "price": 40},
            {"id": "same", "name": "Tea", "price": 40},
        ]
        res = client.post("/api/orders", json=order_payload(items=items))
        assert res.status_code == 400

    def test_split_mismatch_on_create_rejected(self, client, order_payload, db_session):
        payload = order_payload(isPaid=True, paymentMethod="split", cashAmount=50, gcashAmount=40)
        res = client.post("/api/orders", json=payload)
        assert res.status_code == 400
        assert db_session.get(Order, payload["id"]) is None


# ============== Read ==============

class TestListOrders:

    def test_filters(self, client, make_order):
        make_order(customer_name="Ana", isPaid=True, paymentMethod="cash")
        make_order(customer_name="Ben")
        make_order(customer_name="Anabel")

        res = client.get("/api/orders", params={"customerName": "ana"})
        names = sorted(o["customerName"] for o in res.json()["data"])
        assert names == ["Ana", "Anabel"]

        paid = client.get("/api/orders", params={"isPaid": "true"}).json()
        assert paid["count"] == 1
        assert paid["data"][0]["customerName"] == "Ana"

    def test_sort_and_limit(self, client, make_order):
        for name in ("A", "B", "C"):
            make_order(customer_name=name)
        res = client.get("/api/orders", params={"sortBy": "orderNumber", "sortOrder": "asc", "limit": 2})
        assert [o["orderNumber"] for o in res.json()["data"]] == [1, 2]

    def test_invalid_sort_field(self, client):
        res = client.get("/api/orders", params={"sortBy": "price"})
        assert res.status_code == 400

    def test_status_filter_includes_appended_items(self, client, make_order):
        make_order(id="plain")
        order = make_order(id="with-appended")
        client.post(f"/api/orders/{order['id']}/append", json={
            "items": [{"id": "cookie-x", "name": "Choco Cookie", "price": 30}],
        })
        appended = client.get(f"/api/orders/{order['id']}").json()["data"]["appendedOrders"][0]
        client.put(
            f"/api/orders/{order['id']}/appended/{appended['id']}/items/cookie-x/status",
            json={"status": "preparing"},
        )
        res = client.get("/api/orders", params={"status": "preparing"})
        assert [o["id"] for o in res.json()["data"]] == ["with-appended"]

    def test_branch_partition(self, client, make_order):
        make_order(branch_id="baan")
        assert client.get("/api/orders").json()["count"] == 0
        assert client.get("/api/orders", params={"branchId": "baan"}).json()["count"] == 1

    def test_get_unknown_order(self, client):
        res = client.get("/api/orders/missing")
        assert res.status_code == 404
        assert res.json()["error"] == "Order 'missing' not found"

    def test_summary(self, client, make_order):
        make_order(isPaid=True, paymentMethod="cash")
        make_order()
        summary = client.get("/api/orders/stats/summary").json()["data"]
        assert summary["totalOrders"] == 2
        assert summary["paidOrders"] == 1
        assert summary["unpaidOrders"] == 1
        assert summary["todayOrders"] == 2
        assert summary["totalRevenue"] == 100


# ============== Update ==============

class TestUpdateOrder:

    def test_update_fields(self, client, make_order):
        order = make_order()
        res = client.put(f"/api/orders/{order['id']}", json={
            "customerName": "Pedro",
            "notes": [{"content": "extra hot"}],
        })
        assert res.status_code == 200
        updated = res.json()["data"]
        assert updated["customerName"] == "Pedro"
        assert updated["notes"][0]["content"] == "extra hot"
        assert updated["version"] == order["version"] + 1
        assert updated["updatedAt"] > order["updatedAt"]

    def test_unknown_field_rejected(self, client, make_order):
        order = make_order()
        res = client.put(f"/api/orders/{order['id']}", json={"orderNumber": 99})
        assert res.status_code == 400

    def test_mark_unpaid_clears_payment(self, client, make_order):
        order = make_order(isPaid=True, paymentMethod="cash", amountReceived=200)
        updated = client.put(f"/api/orders/{order['id']}", json={"isPaid": False}).json()["data"]
        assert updated["isPaid"] is False
        assert updated["paymentMethod"] is None
        assert updated["paidAmount"] is None
        assert updated["amountReceived"] is None

    def test_update_unknown_order(self, client):
        res = client.put("/api/orders/missing", json={"customerName": "X"})
        assert res.status_code == 404


# ============== Append ==============

class TestAppend:

    def test_append_items(self, client, make_order):
        order = make_order()
        res = client.post(f"/api/orders/{order['id']}/append", json={
            "items": [{"name": "Croissant", "price": 50, "quantity": 2}],
        })
        assert res.status_code == 200
        updated = res.json()["data"]
        assert len(updated["appendedOrders"]) == 1
        appended = updated["appendedOrders"][0]
        assert appended["id"].startswith("appended-")
        assert appended["isPaid"] is False
        assert updated["totalAmount"] == 200
        assert updated["financialTotal"] == 100
        assert updated["pendingAmount"] == 200

    def test_append_paid(self, client, make_order):
        order = make_order()
        updated = client.post(f"/api/orders/{order['id']}/append", json={
            "items": [{"name": "Croissant", "price": 50}],
            "isPaid": True,
            "paymentMethod": "gcash",
        }).json()["data"]
        appended = updated["appendedOrders"][0]
        assert appended["isPaid"] is True
        assert appended["paidAmount"] == 50
        assert updated["totalPaidAmount"] == 50

    def test_delete_appended(self, client, make_order):
        order = make_order()
        client.post(f"/api/orders/{order['id']}/append", json={"id": "app-1", "items": [{"name": "Tea", "price": 40}]})
        res = client.delete(f"/api/orders/{order['id']}/appended/app-1")
        assert res.status_code == 200
        assert res.json()["data"]["appendedOrders"] == []
        assert client.delete(f"/api/orders/{order['id']}/appended/app-1").status_code == 404

    def test_delete_last_unserved_appended_completes_order(self, client, make_order):
        base = now_ms() - 600000
        order = make_order(created_at=base)
        client.post(f"/api/orders/{order['id']}/append", json={"id": "app-1", "items": [{"name": "Tea", "price": 40}]})
        item_id = order["items"][0]["id"]
        served = client.put(
            f"/api/orders/{order['id']}/items/{item_id}/status",
            json={"status": "served", "servedAt": base + 90000},
        ).json()["data"]
        assert served["allItemsServedAt"] is None
        assert client.get("/api/stats").json()["data"]["completedOrdersCount"] == 0

        updated = client.delete(f"/api/orders/{order['id']}/appended/app-1").json()["data"]
        assert updated["allItemsServedAt"] == base + 90000
        assert updated["orderStatus"] == "completed"

        stats = client.get("/api/stats").json()["data"]
        assert stats["completedOrdersCount"] == 1
        assert stats["totalWaitTimeMs"] == 90000

    def test_duplicate_appended_id(self, client, make_order):
        order = make_order()
        body = {"id": "app-1", "items": [{"name": "Tea", "price": 40}]}
        client.post(f"/api/orders/{order['id']}/append", json=body)
        assert client.post(f"/api/orders/{order['id']}/append", json=body).status_code == 409


# ============== Item status ==============

class TestItemStatus:

    def test_status_transition_stamps_once(self, client, make_order):
        order = make_order()
        item_id = order["items"][0]["id"]
        url = f"/api/orders/{order['id']}/items/{item_id}/status"

        first = client.put(url, json={"status": "preparing", "preparedBy": "Lito"}).json()["data"]["items"][0]
        assert first["status"] == "preparing"
        assert first["preparingAt"] is not None
        assert first["preparedBy"] == "Lito"

        second = client.put(url, json={"status": "preparing"}).json()["data"]["items"][0]
        assert second["preparingAt"] == first["preparingAt"]

    def test_explicit_timestamps_override(self, client, make_order):
        order = make_order()
        item_id = order["items"][0]["id"]
        res = client.put(
            f"/api/orders/{order['id']}/items/{item_id}/status",
            json={"status": "ready", "preparingAt": 1000, "readyAt": 2000},
        )
        item = res.json()["data"]["items"][0]
        assert item["preparingAt"] == 1000
        assert item["readyAt"] == 2000

    def test_invalid_status(self, client, make_order):
        order = make_order()
        item_id = order["items"][0]["id"]
        res = client.put(f"/api/orders/{order['id']}/items/{item_id}/status", json={"status": "cooked"})
        assert res.status_code == 400

    def test_unknown_item(self, client, make_order):
        order = make_order()
        res = client.put(f"/api/orders/{order['id']}/items/nope/status", json={"status": "ready"})
        assert res.status_code == 404

    def test_all_served_sets_timestamp_once(self, client, make_order):
        order = make_order(created_at=now_ms() - 60000)
        item_id = order["items"][0]["id"]
        client.post(f"/api/orders/{order['id']}/append", json={"id": "app-1", "items": [{"id": "tea-1", "name": "Tea", "price": 40}]})

        served = client.put(
            f"/api/orders/{order['id']}/items/{item_id}/status", json={"status": "served", "servedBy": "Lito"}
        ).json()["data"]
        assert served["allItemsServedAt"] is None
        assert served["orderStatus"] == "pending"

        done = client.put(
            f"/api/orders/{order['id']}/appended/app-1/items/tea-1/status", json={"status": "served"}
        ).json()["data"]
        assert done["allItemsServedAt"] is not None
        assert done["orderStatus"] == "completed"

        # Moving an item back does not reopen the order
        again = client.put(
            f"/api/orders/{order['id']}/items/{item_id}/status", json={"status": "ready"}
        ).json()["data"]
        assert again["allItemsServedAt"] == done["allItemsServedAt"]

        stats = client.get("/api/stats").json()["data"]
        assert stats["completedOrdersCount"] == 1
        assert stats["averageWaitTimeMs"] > 0

    def test_appended_item_found_without_appended_id(self, client, make_order):
        order = make_order()
        client.post(f"/api/orders/{order['id']}/append", json={"items": [{"id": "tea-1", "name": "Tea", "price": 40}]})
        res = client.put(f"/api/orders/{order['id']}/items/tea-1/status", json={"status": "ready"})
        assert res.status_code == 200
        assert res.json()["data"]["appendedOrders"][0]["items"][0]["status"] == "ready"

    def test_served_at_uses_latest_item_timestamp(self, client, make_order):
        order = make_order()
        item_id = order["items"][0]["id"]
        done = client.put(
            f"/api/orders/{order['id']}/items/{item_id}/status",
            json={"status": "served", "servedAt": order["createdAt"] + 5000},
        ).json()["data"]
        assert done["allItemsServedAt"] == order["createdAt"] + 5000


# ============== Delete ==============

class TestDeleteOrder:

    def test_requires_user(self, client, make_order):
        order = make_order()
        res = client.delete(f"/api/orders/{order['id']}")
        assert res.status_code == 403
        assert res.json()["success"] is False

    def test_crew_cannot_delete(self, client, make_order, crew_headers):
        order = make_order()
        assert client.delete(f"/api/orders/{order['id']}", headers=crew_headers).status_code == 403

    def test_unknown_user_cannot_delete(self, client, make_order):
        order = make_order()
        assert client.delete(f"/api/orders/{order['id']}", headers={"X-User-Id": "ghost"}).status_code == 403

    def test_super_admin_deletes(self, client, make_order, admin_headers):
        order = make_order()
        res = client.delete(f"/api/orders/{order['id']}", headers=admin_headers)
        assert res.status_code == 200
        assert client.get(f"/api/orders/{order['id']}").status_code == 404

    def test_user_id_query_param(self, client, make_order, super_admin):
        order = make_order()
        res = client.delete(f"/api/orders/{order['id']}", params={"userId": super_admin.id})
        assert res.status_code == 200

    def test_delete_unknown(self, client, admin_headers):
        assert client.delete("/api/orders/missing", headers=admin_headers).status_code == 404
