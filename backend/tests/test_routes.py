"""
HTTP API tests.

Exercise every blueprint through the Flask test client: JSON shapes,
status codes for domain errors and the X-User-Id header.
"""

import pytest

from stockledger.models import Sale


USER = {"X-User-Id": "7"}


class TestSalesApi:
    def test_create_sale(self, client, db_session, product, stock_of):
        response = client.post("/api/sales", json={
            "items": [{"product_id": product.id, "quantity": 3}],
            "payment_method": "card",
            "discount_cents": 200,
        }, headers=USER)

        assert response.status_code == 201
        sale = response.get_json()["sale"]
        assert sale["sale_number"].startswith("VEN")
        assert sale["user_id"] == 7
        assert sale["net_amount_cents"] == 2800
        assert sale["items"][0]["product_name"] == "Claw hammer"
        assert stock_of(product.id) == 7

    def test_insufficient_stock_is_409(self, client, db_session, product, stock_of):
        response = client.post("/api/sales", json={"items": [{"product_id": product.id, "quantity": 11}]})

        assert response.status_code == 409
        body = response.get_json()
        assert body["details"] == {"product_id": product.id, "requested": 11, "available": 10}
        assert db_session.query(Sale).count() == 0
        assert stock_of(product.id) == 10

    def test_unknown_product_is_404(self, client, db_session):
        response = client.post("/api/sales", json={"items": [{"product_id": 999, "quantity": 1}]})
        assert response.status_code == 404

    @pytest.mark.parametrize("payload", [
        {"items": []},
        {},
        {"items": [{"product_id": 1, "quantity": 0}]},
        {"items": [{"product_id": 1, "quantity": 1.5}]},
        {"items": [{"product_id": 1, "quantity": 1}], "payment_method": "iou"},
        {"items": [{"product_id": 1, "quantity": 1}], "unknown_field": True},
    ])
    def test_invalid_payloads_are_400(self, client, db_session, product, payload):
        response = client.post("/api/sales", json=payload)
        assert response.status_code == 400
        assert "error" in response.get_json()

    def test_bad_user_header_is_400(self, client, db_session, product):
        response = client.post(
            "/api/sales",
            json={"items": [{"product_id": product.id, "quantity": 1}]},
            headers={"X-User-Id": "abc"},
        )
        assert response.status_code == 400

    def test_get_and_list(self, client, db_session, product):
        created = client.post("/api/sales", json={"items": [{"product_id": product.id, "quantity": 1}]})
        sale_id = created.get_json()["sale"]["id"]

        assert client.get(f"/api/sales/{sale_id}").status_code == 200
        assert client.get("/api/sales/9999").status_code == 404

        listing = client.get("/api/sales?limit=5").get_json()
        assert [s["id"] for s in listing["sales"]] == [sale_id]
        assert "items" not in listing["sales"][0]

        assert client.get("/api/sales?limit=0").status_code == 400
        assert client.get("/api/sales?start=yesterday").status_code == 400


class TestReturnsApi:
    def _sale(self, client, product_id):
        body = client.post("/api/sales", json={"items": [{"product_id": product_id, "quantity": 4}]}).get_json()
        return body["sale"]

    def test_return_complete_and_cancel_flow(self, client, db_session, product, stock_of):
        sale = self._sale(client, product.id)
        response = client.post("/api/returns", json={
            "sale_id": sale["id"],
            "status": "pending",
            "items": [{"sale_item_id": sale["items"][0]["id"], "quantity": 2}],
        }, headers=USER)
        assert response.status_code == 201
        return_id = response.get_json()["return"]["id"]
        assert stock_of(product.id) == 6

        completed = client.post(f"/api/returns/{return_id}/complete", headers=USER)
        assert completed.status_code == 200
        assert completed.get_json()["return"]["status"] == "completed"
        assert stock_of(product.id) == 8

        cancelled = client.post(f"/api/returns/{return_id}/cancel", json={"reason": "Mistake"}, headers=USER)
        assert cancelled.status_code == 200
        assert cancelled.get_json()["return"]["cancellation_reason"] == "Mistake"
        assert stock_of(product.id) == 6

        again = client.post(f"/api/returns/{return_id}/cancel")
        assert again.status_code == 404
        assert stock_of(product.id) == 6

    def test_over_return_is_400(self, client, db_session, product):
        sale = self._sale(client, product.id)
        response = client.post("/api/returns", json={
            "sale_id": sale["id"],
            "items": [{"sale_item_id": sale["items"][0]["id"], "quantity": 5}],
        })
        assert response.status_code == 400

    def test_product_other_than_sold_is_400(self, client, db_session, product, make_product, stock_of):
        drill = make_product(name="Cordless drill", current_stock=0)
        sale = self._sale(client, product.id)

        response = client.post("/api/returns", json={
            "sale_id": sale["id"],
            "items": [{"sale_item_id": sale["items"][0]["id"], "product_id": drill.id, "quantity": 1}],
        })

        assert response.status_code == 400
        assert response.get_json()["details"]["sold_product_id"] == product.id
        assert stock_of(drill.id) == 0

    def test_list_and_get(self, client, db_session, product):
        created = client.post("/api/returns", json={"items": [{"product_id": product.id, "quantity": 1}]})
        return_id = created.get_json()["return"]["id"]

        assert client.get(f"/api/returns/{return_id}").get_json()["return"]["status"] == "completed"
        assert len(client.get("/api/returns?status=completed").get_json()["returns"]) == 1
        assert client.get("/api/returns?status=lost").status_code == 400


class TestPurchaseOrdersApi:
    def test_order_send_receive(self, client, db_session, product, stock_of):
        created = client.post("/api/purchase-orders", json={
            "supplier_id": 3,
            "items": [{"product_id": product.id, "quantity_ordered": 10}],
        }, headers=USER)
        assert created.status_code == 201
        po = created.get_json()["purchase_order"]
        item_id = po["items"][0]["id"]

        early = client.post(f"/api/purchase-orders/{po['id']}/receive",
                            json={"items": [{"item_id": item_id, "quantity_received": 1}]})
        assert early.status_code == 400

        sent = client.post(f"/api/purchase-orders/{po['id']}/status", json={"status": "sent"})
        assert sent.get_json()["purchase_order"]["status"] == "sent"

        over = client.post(f"/api/purchase-orders/{po['id']}/receive",
                           json={"items": [{"item_id": item_id, "quantity_received": 11}]})
        assert over.status_code == 409

        received = client.post(f"/api/purchase-orders/{po['id']}/receive",
                               json={"items": [{"item_id": item_id, "quantity_received": 10}]}, headers=USER)
        assert received.status_code == 200
        assert received.get_json()["purchase_order"]["status"] == "received"
        assert stock_of(product.id) == 20

        missing = client.post(f"/api/purchase-orders/{po['id']}/receive",
                              json={"items": [{"item_id": 4242, "quantity_received": 1}]})
        assert missing.status_code == 404

    def test_delete_draft_only(self, client, db_session, product):
        first = client.post("/api/purchase-orders", json={"items": [{"product_id": product.id, "quantity": 1}]})
        second = client.post("/api/purchase-orders", json={"items": [{"product_id": product.id, "quantity": 1}]})
        first_id = first.get_json()["purchase_order"]["id"]
        second_id = second.get_json()["purchase_order"]["id"]
        client.post(f"/api/purchase-orders/{second_id}/status", json={"status": "sent"})

        assert client.delete(f"/api/purchase-orders/{first_id}").get_json() == {"deleted": True, "id": first_id}
        assert client.get(f"/api/purchase-orders/{first_id}").status_code == 404
        assert client.delete(f"/api/purchase-orders/{second_id}").status_code == 400
        assert len(client.get("/api/purchase-orders").get_json()["purchase_orders"]) == 1

    def test_invalid_status_value(self, client, db_session, product):
        po = client.post("/api/purchase-orders", json={"items": [{"product_id": product.id, "quantity": 1}]})
        po_id = po.get_json()["purchase_order"]["id"]
        assert client.post(f"/api/purchase-orders/{po_id}/status", json={"status": "shipped"}).status_code == 400
        assert client.post(f"/api/purchase-orders/{po_id}/status", json={}).status_code == 400


class TestQuotationsApi:
    def test_quote_send_convert(self, client, db_session, product, stock_of):
        created = client.post("/api/quotations", json={
            "customer_id": 5,
            "validity_days": 15,
            "items": [{"product_id": product.id, "quantity": 2}],
        }, headers=USER)
        assert created.status_code == 201
        quotation = created.get_json()["quotation"]
        assert quotation["quotation_number"].startswith("DEVIS")
        assert quotation["status"] == "draft"

        early = client.post(f"/api/quotations/{quotation['id']}/convert")
        assert early.status_code == 400

        client.post(f"/api/quotations/{quotation['id']}/status", json={"status": "sent"})
        converted = client.post(f"/api/quotations/{quotation['id']}/convert",
                                json={"payment_method": "check"}, headers=USER)

        assert converted.status_code == 201
        body = converted.get_json()
        assert body["quotation"]["status"] == "converted"
        assert body["quotation"]["converted_to_sale_id"] == body["sale"]["id"]
        assert body["sale"]["payment_method"] == "check"
        assert stock_of(product.id) == 8

    def test_manual_converted_status_is_400(self, client, db_session, product):
        created = client.post("/api/quotations", json={"items": [{"product_id": product.id, "quantity": 1}]})
        quotation_id = created.get_json()["quotation"]["id"]
        response = client.post(f"/api/quotations/{quotation_id}/status", json={"status": "converted"})
        assert response.status_code == 400

    def test_mark_expired_and_delete(self, client, db_session, product):
        created = client.post("/api/quotations", json={
            "quotation_date": "2020-01-01",
            "items": [{"product_id": product.id, "quantity": 1}],
        })
        quotation_id = created.get_json()["quotation"]["id"]

        assert client.post("/api/quotations/mark-expired").get_json() == {"expired": 1}
        assert client.get(f"/api/quotations/{quotation_id}").get_json()["quotation"]["status"] == "expired"
        assert client.delete(f"/api/quotations/{quotation_id}").status_code == 400
        assert client.delete("/api/quotations/9999").status_code == 404


class TestStockMovementsApi:
    def test_manual_movement_and_history(self, client, db_session, product, stock_of):
        response = client.post("/api/stock-movements", json={
            "product_id": product.id,
            "movement_type": "adjustment",
            "quantity": -4,
            "reason": "Inventory count",
        }, headers=USER)

        assert response.status_code == 201
        movement = response.get_json()["movement"]
        assert movement["previous_stock"] == 10
        assert movement["new_stock"] == 6
        assert movement["user_id"] == 7
        assert stock_of(product.id) == 6

        history = client.get(f"/api/stock-movements/product/{product.id}").get_json()
        assert [m["id"] for m in history["movements"]] == [movement["id"]]

        listing = client.get("/api/stock-movements?movement_type=adjustment").get_json()
        assert len(listing["movements"]) == 1
        assert client.get("/api/stock-movements?movement_type=teleport").status_code == 400

    def test_negative_result_is_409(self, client, db_session, product, stock_of):
        response = client.post("/api/stock-movements", json={
            "product_id": product.id, "movement_type": "out", "quantity": 11,
        })
        assert response.status_code == 409
        assert stock_of(product.id) == 10

    @pytest.mark.parametrize("payload", [
        {"movement_type": "in", "quantity": 1},
        {"product_id": 1, "movement_type": "in"},
        {"product_id": 1, "movement_type": "gift", "quantity": 1},
        {"product_id": 1, "movement_type": "adjustment", "quantity": 0},
    ])
    def test_invalid_movement_is_400(self, client, db_session, product, payload):
        assert client.post("/api/stock-movements", json=payload).status_code == 400

    def test_missing_product_is_404(self, client, db_session):
        response = client.post("/api/stock-movements", json={
            "product_id": 31337, "movement_type": "in", "quantity": 1,
        })
        assert response.status_code == 404

    def test_summary_and_value(self, client, db_session, product):
        client.post("/api/stock-movements", json={"product_id": product.id, "movement_type": "in", "quantity": 2})

        summary = client.get("/api/stock-movements/summary").get_json()
        assert summary["rows"] == [{"movement_type": "in", "count": 1, "total_quantity": 2}]

        value = client.get("/api/stock-movements/value").get_json()
        assert value["total_quantity"] == 12
        assert value["selling_value_cents"] == 12000


class TestReportsApi:
    def test_low_stock_and_reconciliation(self, client, db_session, product, make_product):
        make_product(name="Masking tape", current_stock=1, min_stock=4)

        low = client.get("/api/reports/low-stock").get_json()
        assert low["count"] == 1
        assert low["products"][0]["name"] == "Masking tape"

        report = client.get(f"/api/reports/reconciliation/{product.id}").get_json()
        assert report["is_consistent"] is True
        assert client.get("/api/reports/reconciliation/777").status_code == 404

        assert client.get("/api/reports/valuation").get_json()["product_count"] == 2


class TestHealth:
    def test_health(self, client, db_session):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["details"]["negative_stock_products"] == 0


class TestDraftEditsApi:
    def test_update_draft_purchase_order(self, client, db_session, product):
        created = client.post("/api/purchase-orders", json={
            "items": [{"product_id": product.id, "quantity_ordered": 10}],
        }).get_json()["purchase_order"]

        response = client.put(f"/api/purchase-orders/{created['id']}", json={
            "payment_terms": "60 days",
            "items": [{"product_id": product.id, "quantity_ordered": 25, "unit_price_cents": 350}],
        }, headers=USER)

        assert response.status_code == 200
        body = response.get_json()["purchase_order"]
        assert body["payment_terms"] == "60 days"
        assert body["total_cents"] == 25 * 350
        assert [item["quantity_ordered"] for item in body["items"]] == [25]

        client.post(f"/api/purchase-orders/{created['id']}/status", json={"status": "sent"})
        locked = client.put(f"/api/purchase-orders/{created['id']}", json={"notes": "late"})
        assert locked.status_code == 400
        assert client.put("/api/purchase-orders/9999", json={"notes": "x"}).status_code == 404

    def test_update_rejects_unknown_fields(self, client, db_session, product):
        created = client.post("/api/purchase-orders", json={
            "items": [{"product_id": product.id, "quantity_ordered": 1}],
        }).get_json()["purchase_order"]
        response = client.put(f"/api/purchase-orders/{created['id']}", json={"status": "received"})
        assert response.status_code == 400

    def test_update_draft_quotation(self, client, db_session, product):
        created = client.post("/api/quotations", json={
            "quotation_date": "2024-03-15T14:00:00Z",
            "items": [{"product_id": product.id, "quantity": 1}],
        }).get_json()["quotation"]

        response = client.put(f"/api/quotations/{created['id']}", json={"validity_days": 7, "discount_cents": 100})

        assert response.status_code == 200
        body = response.get_json()["quotation"]
        assert body["validity_days"] == 7
        assert body["valid_until"] == "2024-03-22T14:00:00Z"
        assert body["net_amount_cents"] == 900

    def test_oversized_validity_is_400(self, client, db_session, product):
        response = client.post("/api/quotations", json={
            "validity_days": 10**7,
            "items": [{"product_id": product.id, "quantity": 1}],
        })
        assert response.status_code == 400


class TestStatsApi:
    def test_document_stats(self, client, db_session, product):
        client.post("/api/sales", json={"items": [{"product_id": product.id, "quantity": 2}]})
        client.post("/api/returns", json={"items": [{"product_id": product.id, "quantity": 1}]})
        client.post("/api/purchase-orders", json={"items": [{"product_id": product.id, "quantity_ordered": 3}]})
        client.post("/api/quotations", json={"items": [{"product_id": product.id, "quantity": 4}]})

        sales = client.get("/api/sales/stats")
        assert sales.status_code == 200
        assert sales.get_json()["total_revenue_cents"] == 2000

        assert client.get("/api/returns/stats").get_json()["total_refunded_cents"] == 1000
        assert client.get("/api/purchase-orders/stats").get_json()["draft_count"] == 1
        quotations = client.get("/api/quotations/stats").get_json()
        assert quotations["total_quotations"] == 1
        assert quotations["conversion_rate"] == 0.0

    def test_date_filters(self, client, db_session, product):
        client.post("/api/sales", json={"sale_date": "2024-03-14T10:00:00Z",
                                        "items": [{"product_id": product.id, "quantity": 1}]})
        client.post("/api/sales", json={"sale_date": "2024-03-15T10:00:00Z",
                                        "items": [{"product_id": product.id, "quantity": 1}]})

        body = client.get("/api/sales/stats?start=2024-03-15&end=2024-03-15").get_json()
        assert body["total_sales"] == 1
        assert client.get("/api/sales/stats?start=yesterday").status_code == 400
