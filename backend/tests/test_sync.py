"""Tests for offline order sync and incremental updates."""

from app.services.business_day import now_ms


def _document(**overrides):
    document = {
        "id": "offline-1",
        "customerName": "Lara",
        "items": [{"id": "latte-1-a", "name": "Cafe Latte", "price": 100}],
        "createdAt": now_ms() - 60000,
    }
    document.update(overrides)
    return document


class TestSync:

    def test_unknown_order_is_created(self, client):
        res = client.post("/api/orders/sync", json=_document())
        assert res.status_code == 201
        order = res.json()["data"]
        assert order["id"] == "offline-1"
        assert order["orderNumber"] == 1
        assert order["version"] == 1

    def test_known_order_is_merged(self, client):
        created = client.post("/api/orders/sync", json=_document()).json()["data"]
        res = client.post("/api/orders/sync", json=_document(
            customerName="Lara M.", isPaid=True, paymentMethod="gcash", paidAmount=100,
        ))
        assert res.status_code == 200
        merged = res.json()["data"]
        assert merged["customerName"] == "Lara M."
        assert merged["isPaid"] is True
        assert merged["paymentMethod"] == "gcash"
        assert merged["orderNumber"] == created["orderNumber"]
        assert merged["version"] == created["version"] + 1

    def test_client_order_number_ignored(self, client, make_order):
        make_order()
        order = client.post("/api/orders/sync", json=_document(orderNumber=500)).json()["data"]
        assert order["orderNumber"] == 2

    def test_served_timestamp_replayed(self, client):
        created_at = now_ms() - 300000
        served_at = created_at + 240000
        document = _document(
            createdAt=created_at,
            allItemsServedAt=served_at,
            items=[{"id": "latte-1-a", "name": "Cafe Latte", "price": 100, "status": "served"}],
        )
        order = client.post("/api/orders/sync", json=document).json()["data"]
        assert order["allItemsServedAt"] == served_at
        assert client.get("/api/stats").json()["data"]["totalWaitTimeMs"] == 240000

    def test_split_mismatch_rejected(self, client):
        client.post("/api/orders/sync", json=_document())
        res = client.post("/api/orders/sync", json=_document(
            isPaid=True, paymentMethod="split", cashAmount=60, gcashAmount=39.99,
        ))
        assert res.status_code == 400
        assert client.get("/api/orders/offline-1").json()["data"]["isPaid"] is False

    def test_sync_into_branch(self, client):
        res = client.post("/api/orders/sync", params={"branchId": "baan"}, json=_document())
        assert res.json()["data"]["branchId"] == "baan"


class TestUpdatesSince:

    def test_returns_changed_orders_oldest_first(self, client, make_order):
        first = make_order()
        second = make_order()
        since = max(first["updatedAt"], second["updatedAt"])

        client.put(f"/api/orders/{second['id']}", json={"customerName": "Later"})
        client.put(f"/api/orders/{first['id']}", json={"customerName": "Latest"})

        res = client.get("/api/orders/updates", params={"since": since})
        assert res.status_code == 200
        assert [o["id"] for o in res.json()["data"]] == [second["id"], first["id"]]

    def test_since_zero_returns_everything(self, client, make_order):
        make_order()
        make_order(branch_id="baan")
        assert client.get("/api/orders/updates").json()["count"] == 1
        assert client.get("/api/orders/updates", params={"branchId": "baan"}).json()["count"] == 1
