"""Tests for the daily sales aggregation and its admin operations."""

from datetime import datetime

import pytest

from app.core.cache import ledger_cache
from app.models.order import Order, PaymentMethod
from app.services.business_day import anchor_ms, business_date_of, to_ms
from app.services.sales_aggregation_service import SalesAggregationService, split_evenly

JAN_1_NOON = to_ms(datetime(2026, 1, 1, 12, 0))
JAN_2_NOON = to_ms(datetime(2026, 1, 2, 12, 0))
JAN_5_NOON = to_ms(datetime(2026, 1, 5, 12, 0))


def _days(client, **params):
    res = client.get("/api/orders/daily-sales", params=params)
    assert res.status_code == 200
    return res.json()


def _day(client, key):
    for report in _days(client, limit=366)["data"]:
        if report["date"] == key:
            return report
    raise AssertionError(f"no report for {key}")


class TestSplitEvenly:

    def test_even(self):
        assert split_evenly(10000, ["john", "elwin"]) == {"john": 5000, "elwin": 5000}

    def test_leftover_centavo_goes_first(self):
        assert split_evenly(10001, ["john", "elwin"]) == {"john": 5001, "elwin": 5000}


class TestDailySales:

    def test_split_payment_routes_by_method(self, client, make_order):
        make_order(created_at=JAN_1_NOON, isPaid=True, paymentMethod="split", cashAmount=60, gcashAmount=40)
        report = _day(client, "2026-01-01")
        assert report["totalSales"] == 100
        assert report["grossCash"] == 60
        assert report["grossGcash"] == 40
        assert report["orderCount"] == 1

    def test_total_sales_comes_from_items(self, client, make_order, db_session):
        order = make_order(created_at=JAN_1_NOON)
        # Legacy row whose recorded split is a centavo short
        row = db_session.get(Order, order["id"])
        row.is_paid = True
        row.payment_method = PaymentMethod.SPLIT
        row.cash_amount = 60
        row.gcash_amount = 39.99
        db_session.commit()
        ledger_cache.clear()

        report = _day(client, "2026-01-01")
        assert report["totalSales"] == 100
        assert report["grossCash"] == 60
        assert report["grossGcash"] == 39.99
        category_total = sum(
            row["total"] for rows in report["itemsByCategory"].values() for row in rows
        )
        assert category_total == report["totalSales"]

    def test_unpaid_appended_excluded(self, client, make_order):
        order = make_order(
            created_at=JAN_1_NOON,
            items=[{"name": "Croissant", "price": 50}],
            isPaid=True,
            paymentMethod="cash",
        )
        client.post(f"/api/orders/{order['id']}/append", json={"items": [{"name": "Choco Cookie", "price": 30}]})
        report = _day(client, "2026-01-01")
        assert report["totalSales"] == 50
        assert report["grossCash"] == 50

    def test_paid_appended_counts_with_unpaid_main(self, client, make_order):
        order = make_order(created_at=JAN_1_NOON)
        client.post(f"/api/orders/{order['id']}/append", json={
            "items": [{"name": "Choco Cookie", "price": 30}],
            "isPaid": True,
            "paymentMethod": "gcash",
        })
        report = _day(client, "2026-01-01")
        assert report["totalSales"] == 30
        assert report["grossGcash"] == 30
        assert report["orderCount"] == 1

    def test_unpaid_orders_excluded(self, client, make_order):
        make_order(created_at=JAN_1_NOON)
        assert _days(client)["data"] == []

    def test_after_midnight_order_joins_previous_day(self, client, make_order):
        created_at = to_ms(datetime(2026, 1, 2, 0, 30))
        make_order(created_at=created_at, isPaid=True, paymentMethod="cash")
        report = _days(client)["data"][0]
        assert report["date"] == "2026-01-01"
        assert report["dateTimestamp"] == anchor_ms(business_date_of(created_at))

    def test_missing_method_counts_as_cash(self, client, make_order, db_session):
        order = make_order(created_at=JAN_1_NOON)
        row = db_session.get(Order, order["id"])
        row.is_paid = True
        db_session.commit()
        ledger_cache.clear()
        report = _day(client, "2026-01-01")
        assert report["grossCash"] == 100
        assert report["grossGcash"] == 0

    def test_category_and_owner_attribution(self, client, make_order, menu_items):
        make_order(
            created_at=JAN_1_NOON,
            isPaid=True,
            paymentMethod="cash",
            items=[
                {"id": "croissant-1767268800000-ab12", "name": "Croissant", "price": 50, "quantity": 2},
                {"name": "cafe latte", "price": 100},
                {"name": "Mystery Special", "price": 80},
            ],
        )
        report = _day(client, "2026-01-01")
        by_category = report["itemsByCategory"]
        assert by_category["Pastries"] == [
            {"name": "Croissant", "price": 50, "quantity": 2, "total": 100, "owner": "elwin"}
        ]
        assert by_category["Coffee"][0]["owner"] == "john"
        assert by_category["Uncategorized"][0]["name"] == "Mystery Special"
        assert report["salesByOwner"] == {"john": 180, "elwin": 100}

    def test_withdrawals_net_out(self, client, make_order):
        make_order(created_at=JAN_1_NOON, isPaid=True, paymentMethod="cash",
                   items=[{"name": "Set Meal", "price": 500}])
        client.post("/api/withdrawals", json={
            "type": "withdrawal", "amount": 100.01, "description": "Owner draw",
            "chargedTo": "all", "paymentMethod": "cash", "createdAt": JAN_1_NOON + 1000,
        })
        client.post("/api/withdrawals", json={
            "type": "purchase", "amount": 40, "description": "Milk",
            "chargedTo": "elwin", "paymentMethod": "gcash", "createdAt": JAN_1_NOON + 2000,
        })

        report = _day(client, "2026-01-01")
        assert report["grossCash"] == 500
        assert report["totalCash"] == 399.99
        assert report["totalGcash"] == -40
        assert report["totalWithdrawals"] == 100.01
        assert report["totalPurchases"] == 40
        assert report["netSales"] == 359.99
        assert report["withdrawalsByOwner"] == {"john": 50.01, "elwin": 50.0, "all": 100.01}
        assert report["purchasesByOwner"] == {"john": 0, "elwin": 40, "all": 0}
        assert report["netTotalsByOwner"] == {"john": 449.99, "elwin": -90.0}
        assert len(report["withdrawals"]) == 1
        assert report["purchases"][0]["description"] == "Milk"

    def test_day_with_only_withdrawals(self, client):
        client.post("/api/withdrawals", json={
            "type": "purchase", "amount": 75, "description": "Ice", "createdAt": JAN_2_NOON,
        })
        report = _day(client, "2026-01-02")
        assert report["totalSales"] == 0
        assert report["netSales"] == -75

    def test_rerun_is_identical(self, client, make_order):
        make_order(created_at=JAN_1_NOON, isPaid=True, paymentMethod="gcash")
        make_order(created_at=JAN_2_NOON, isPaid=True, paymentMethod="split", cashAmount=33.33, gcashAmount=66.67)
        first = client.get("/api/orders/daily-sales").content
        ledger_cache.clear()
        second = client.get("/api/orders/daily-sales").content
        assert first == second

    def test_pagination(self, client, make_order):
        for created_at in (JAN_1_NOON, JAN_2_NOON, JAN_5_NOON):
            make_order(created_at=created_at, isPaid=True, paymentMethod="cash")

        first_page = _days(client, limit=2)
        assert [d["date"] for d in first_page["data"]] == ["2026-01-05", "2026-01-02"]
        assert first_page["pagination"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}

        second_page = _days(client, limit=2, page=2)
        assert [d["date"] for d in second_page["data"]] == ["2026-01-01"]

    def test_date_range(self, client, make_order):
        for created_at in (JAN_1_NOON, JAN_2_NOON, JAN_5_NOON):
            make_order(created_at=created_at, isPaid=True, paymentMethod="cash")
        result = _days(client, startDate="2026-01-02", endDate="2026-01-04")
        assert [d["date"] for d in result["data"]] == ["2026-01-02"]

    def test_bad_date_range(self, client):
        res = client.get("/api/orders/daily-sales", params={"startDate": "2026-01-05", "endDate": "2026-01-01"})
        assert res.status_code == 400
        res = client.get("/api/orders/daily-sales", params={"startDate": "Jan 5"})
        assert res.status_code == 400

    def test_fresh_after_payment(self, client, make_order):
        order = make_order(created_at=JAN_1_NOON)
        assert _days(client)["data"] == []
        client.put(f"/api/orders/{order['id']}/payment", json={"isPaid": True, "paymentMethod": "cash"})
        assert _days(client)["data"][0]["totalSales"] == 100

    def test_fresh_after_withdrawal_delete(self, client, make_order):
        make_order(created_at=JAN_1_NOON, isPaid=True, paymentMethod="cash")
        created = client.post("/api/withdrawals", json={
            "type": "withdrawal", "amount": 20, "description": "Change fund", "createdAt": JAN_1_NOON,
        }).json()["data"]
        assert _day(client, "2026-01-01")["totalCash"] == 80
        client.delete(f"/api/withdrawals/{created['id']}")
        assert _day(client, "2026-01-01")["totalCash"] == 100

    def test_other_branch_not_included(self, client, make_order):
        make_order(branch_id="baan", created_at=JAN_1_NOON, isPaid=True, paymentMethod="cash")
        assert _days(client)["data"] == []
        assert _days(client, branchId="baan")["data"][0]["totalSales"] == 100


class TestDayDetails:

    def test_details_include_unpaid_orders(self, client, make_order):
        make_order(created_at=JAN_1_NOON, isPaid=True, paymentMethod="cash")
        make_order(created_at=JAN_1_NOON + 1000)
        make_order(created_at=JAN_2_NOON)
        res = client.get("/api/orders/daily-sales/2026-01-01/details")
        assert res.status_code == 200
        details = res.json()["data"]
        assert len(details["orders"]) == 2
        assert details["summary"]["totalSales"] == 100

    def test_empty_day(self, client):
        details = client.get("/api/orders/daily-sales/2026-03-01/details").json()["data"]
        assert details["orders"] == []
        assert details["summary"]["totalSales"] == 0

    def test_invalid_day(self, client):
        assert client.get("/api/orders/daily-sales/2026-13-01/details").status_code == 400


class TestMonthlySales:

    def test_month_rollup(self, client, make_order):
        make_order(created_at=JAN_1_NOON, isPaid=True, paymentMethod="cash")
        make_order(created_at=JAN_5_NOON, isPaid=True, paymentMethod="gcash",
                   items=[{"name": "Set Meal", "price": 300}])
        # Belongs to business day 2025-12-31
        make_order(created_at=to_ms(datetime(2026, 1, 1, 0, 30)), isPaid=True, paymentMethod="cash")

        res = client.get("/api/orders/monthly-sales", params={"year": 2026, "month": 1})
        assert res.status_code == 200
        month = res.json()["data"]
        assert month["daysWithActivity"] == 2
        assert month["orderCount"] == 2
        assert month["totalSales"] == 400
        assert month["grossCash"] == 100
        assert month["grossGcash"] == 300
        assert month["averageDailySales"] == 200
        assert [d["date"] for d in month["days"]] == ["2026-01-01", "2026-01-05"]

    def test_invalid_month(self, client):
        res = client.get("/api/orders/monthly-sales", params={"year": 2026, "month": 13})
        assert res.status_code == 400


class TestValidateDay:

    def test_requires_super_admin(self, client, crew_headers):
        assert client.post("/api/orders/daily-sales/2026-01-01/validate").status_code == 403
        res = client.post("/api/orders/daily-sales/2026-01-01/validate", headers=crew_headers)
        assert res.status_code == 403

    def test_validate_and_unvalidate(self, client, make_order, admin_headers):
        make_order(created_at=JAN_1_NOON, isPaid=True, paymentMethod="cash")
        res = client.post("/api/orders/daily-sales/2026-01-01/validate", headers=admin_headers)
        assert res.status_code == 200
        assert res.json()["data"]["isValidated"] is True

        report = _day(client, "2026-01-01")
        assert report["isValidated"] is True
        assert report["validatedBy"]["email"] == "admin-1@cafe.test"

        client.post(
            "/api/orders/daily-sales/2026-01-01/validate", json={"isValidated": False}, headers=admin_headers
        )
        report = _day(client, "2026-01-01")
        assert report["isValidated"] is False
        assert report["validatedBy"] is None


class TestPurgeDay:

    def test_requires_super_admin(self, client, make_order):
        make_order(created_at=JAN_1_NOON)
        assert client.delete("/api/orders/daily-sales/2026-01-01").status_code == 403

    def test_purge(self, client, make_order, admin_headers):
        make_order(created_at=JAN_1_NOON, isPaid=True, paymentMethod="cash")
        make_order(created_at=to_ms(datetime(2026, 1, 2, 0, 30)))
        kept = make_order(created_at=JAN_2_NOON, isPaid=True, paymentMethod="cash")
        client.post("/api/withdrawals", json={
            "type": "withdrawal", "amount": 10, "description": "Tip jar", "createdAt": JAN_1_NOON,
        })

        res = client.delete("/api/orders/daily-sales/2026-01-01", headers=admin_headers)
        assert res.status_code == 200
        result = res.json()["data"]
        assert result["deletedOrders"] == 2
        assert result["deletedWithdrawals"] == 1
        assert "orders" not in result

        remaining = client.get("/api/orders").json()["data"]
        assert [o["id"] for o in remaining] == [kept["id"]]
        assert [d["date"] for d in _days(client)["data"]] == ["2026-01-02"]


class TestAggregateService:

    def test_aggregate_buckets_by_business_day(self, db_session, make_order):
        make_order(created_at=to_ms(datetime(2026, 1, 2, 0, 59, 59)), isPaid=True, paymentMethod="cash")
        make_order(created_at=to_ms(datetime(2026, 1, 2, 1, 0)), isPaid=True, paymentMethod="cash")
        days = SalesAggregationService(db_session).aggregate("pangabugan")
        assert sorted(days) == ["2026-01-01", "2026-01-02"]

    @pytest.mark.parametrize("branch", ["pangabugan", "baan"])
    def test_empty_branch(self, db_session, branch):
        assert SalesAggregationService(db_session).aggregate(branch) == {}
