# Overview: Pytest coverage for the HTTP surface: status codes, payloads and error mapping.

from invoicing.services import outbox_service

from conftest import item


def _create(client, payload, headers=None):
    return client.post("/api/invoices/", json=payload, headers=headers or {})


class TestInvoiceRoutes:
    def test_create_returns_201(self, client, customer):
        response = _create(
            client,
            {
                "customer_id": customer.id,
                "items": [item("Bolt", 2, 300), item("Bracket", 1, 400)],
                "gst_type": "percentage",
                "gst_value": 1000,
                "discount_type": "fixed",
                "discount_value": 50,
            },
            headers={"X-Actor-Id": "clerk-9"},
        )

        assert response.status_code == 201
        invoice = response.get_json()["invoice"]
        assert invoice["total_cents"] == 1050
        assert invoice["status"] == "pending"
        assert invoice["created_by"] == "clerk-9"
        assert len(invoice["items"]) == 2

    def test_actor_from_body(self, client, customer):
        response = _create(client, {"customer_id": customer.id, "items": [item()], "actor_id": "clerk-3"})
        assert response.get_json()["invoice"]["created_by"] == "clerk-3"

    def test_validation_error_is_400(self, client, customer):
        response = _create(client, {"customer_id": customer.id, "items": []})
        assert response.status_code == 400
        assert response.get_json() == {"error": "At least one item is required"}

    def test_unknown_customer_is_404(self, client, db_session):
        response = _create(client, {"customer_id": 777, "items": [item()]})
        assert response.status_code == 404

    def test_missing_invoice_is_404(self, client, db_session):
        assert client.get("/api/invoices/12345").status_code == 404

    def test_list_and_filter(self, client, customer):
        _create(client, {"customer_id": customer.id, "items": [item()]})
        _create(client, {"type": "quotation", "customer_id": customer.id, "items": [item()]})

        quotations = client.get("/api/invoices/?type=quotation").get_json()["invoices"]
        assert [q["type"] for q in quotations] == ["quotation"]
        assert "items" not in quotations[0]

        assert client.get("/api/invoices/?type=receipt").status_code == 400

    def test_next_number_and_stats(self, client, customer):
        preview = client.get("/api/invoices/next-number?type=quotation").get_json()
        assert preview["document_number"].startswith("QT-")

        _create(client, {"customer_id": customer.id, "items": [item(unit_price_cents=700)]})
        stats = client.get("/api/invoices/stats").get_json()
        assert stats["total_invoices"] == 1
        assert stats["outstanding_cents"] == 700

    def test_update_and_delete(self, client, customer):
        invoice_id = _create(client, {"customer_id": customer.id, "status": "draft", "items": [item()]}).get_json()["invoice"]["id"]

        patched = client.patch(f"/api/invoices/{invoice_id}", json={"notes": "Call before delivery"})
        assert patched.status_code == 200
        assert patched.get_json()["invoice"]["notes"] == "Call before delivery"

        assert client.delete(f"/api/invoices/{invoice_id}").get_json() == {"deleted": True, "id": invoice_id}
        assert client.get(f"/api/invoices/{invoice_id}").status_code == 404


class TestWorkflowRoutes:
    def test_cancel_with_payments_is_409(self, client, customer):
        invoice_id = _create(client, {"customer_id": customer.id, "items": [item(unit_price_cents=1000)]}).get_json()["invoice"]["id"]
        client.post(f"/api/invoices/{invoice_id}/payments/", json={"amount_cents": 100})

        response = client.post(f"/api/invoices/{invoice_id}/cancel", json={"reason": "Duplicate"})

        assert response.status_code == 409
        assert client.get(f"/api/invoices/{invoice_id}").get_json()["invoice"]["status"] == "partial"

    def test_cancel(self, client, customer):
        invoice_id = _create(client, {"customer_id": customer.id, "items": [item()]}).get_json()["invoice"]["id"]

        response = client.post(f"/api/invoices/{invoice_id}/cancel", json={"reason": "Duplicate"})

        assert response.status_code == 200
        assert response.get_json()["invoice"]["status"] == "cancelled"

    def test_manual_paid_status_rejected(self, client, customer):
        invoice_id = _create(client, {"customer_id": customer.id, "items": [item()]}).get_json()["invoice"]["id"]

        response = client.post(f"/api/invoices/{invoice_id}/status", json={"status": "paid"})

        assert response.status_code == 400
        assert "automatically calculated" in response.get_json()["error"]
        assert client.post(f"/api/invoices/{invoice_id}/status", json={}).status_code == 400

    def test_convert_twice(self, client, customer):
        quote_id = _create(client, {"type": "quotation", "customer_id": customer.id, "items": [item()]}).get_json()["invoice"]["id"]

        first = client.post(f"/api/invoices/{quote_id}/convert", headers={"X-Actor-Id": "clerk-1"})
        second = client.post(f"/api/invoices/{quote_id}/convert")

        assert first.status_code == 201
        assert first.get_json()["invoice"]["source_quotation_id"] == quote_id
        assert second.status_code == 409
        assert second.get_json()["error"] == "Quotation already converted to invoice"

    def test_issue_draft(self, client, customer):
        invoice_id = _create(client, {"customer_id": customer.id, "status": "draft", "items": [item()]}).get_json()["invoice"]["id"]

        assert client.post(f"/api/invoices/{invoice_id}/issue").get_json()["invoice"]["status"] == "pending"
        assert client.post(f"/api/invoices/{invoice_id}/issue").status_code == 409

    def test_stock_deduct_failure_details(self, client, customer, make_purchase):
        lot = make_purchase(quantity=1)
        invoice_id = _create(client, {
            "customer_id": customer.id,
            "items": [item("Bolt", 2, 100, purchase_id=lot.id)],
        }).get_json()["invoice"]["id"]

        response = client.post(f"/api/invoices/{invoice_id}/stock/deduct")

        assert response.status_code == 400
        body = response.get_json()
        assert body["error"] == "Stock deduction incomplete"
        assert body["details"]["errors"][0].startswith("Bolt:")


class TestPaymentRoutes:
    def test_payment_lifecycle(self, client, customer):
        invoice_id = _create(client, {"customer_id": customer.id, "items": [item(unit_price_cents=1000)]}).get_json()["invoice"]["id"]

        added = client.post(f"/api/invoices/{invoice_id}/payments/", json={"amount_cents": 400, "method": "upi"})
        assert added.status_code == 201
        assert added.get_json()["invoice"]["status"] == "partial"

        updated = client.put(f"/api/invoices/{invoice_id}/payments/0", json={"amount_cents": 1000})
        assert updated.get_json()["invoice"]["status"] == "paid"

        too_much = client.post(f"/api/invoices/{invoice_id}/payments/", json={"amount_cents": 1})
        assert too_much.status_code == 400
        assert too_much.get_json()["error"] == "Payment amount (1) exceeds outstanding balance (0)"

        removed = client.delete(f"/api/invoices/{invoice_id}/payments/0")
        assert removed.get_json()["invoice"]["payments"] == []

        assert client.delete(f"/api/invoices/{invoice_id}/payments/3").status_code == 404


class TestCustomerAndLedgerRoutes:
    def test_customer_ledger(self, client, customer):
        invoice_id = _create(client, {"customer_id": customer.id, "items": [item(unit_price_cents=800)]}).get_json()["invoice"]["id"]
        client.post(f"/api/invoices/{invoice_id}/payments/", json={"amount_cents": 300})

        ledger = client.get(f"/api/customers/{customer.id}/ledger").get_json()
        assert [e["transaction_type"] for e in ledger["entries"]] == ["invoice", "payment"]
        assert ledger["totals"]["balance_cents"] == 500

        balance = client.get(f"/api/customers/{customer.id}/balance").get_json()
        assert balance["balance_cents"] == 500

        profile = client.get(f"/api/customers/{customer.id}").get_json()["customer"]
        assert profile["outstanding_cents"] == 500

        outstanding = client.get("/api/ledger/outstanding").get_json()
        assert outstanding["total_outstanding_cents"] == 500

    def test_create_customer(self, client, db_session):
        response = client.post("/api/customers/", json={"name": "Orbit Supplies"})
        assert response.status_code == 201
        assert response.get_json()["customer"]["total_invoiced_cents"] == 0

        assert client.post("/api/customers/", json={}).status_code == 400

    def test_unknown_customer_ledger(self, client, db_session):
        assert client.get("/api/customers/999/ledger").status_code == 404


class TestSystemRoutes:
    def test_health(self, client, db_session):
        response = client.get("/api/system/health")

        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "healthy"
        assert set(body["checks"]) == {"database", "outbox"}

    def test_health_degraded_by_failed_events(self, app, client, customer, monkeypatch):
        def _boom(data):
            raise RuntimeError("down")

        monkeypatch.setitem(app.config, "SYNC_MAX_ATTEMPTS", 1)
        monkeypatch.setitem(outbox_service.HANDLERS, outbox_service.EVENT_CUSTOMER_INVOICED, _boom)
        _create(client, {"customer_id": customer.id, "items": [item()]})

        response = client.get("/api/system/health")

        assert response.status_code == 200
        assert response.get_json()["status"] == "degraded"
        assert response.get_json()["checks"]["outbox"]["details"]["FAILED"] == 1

    def test_maintenance_endpoints(self, app, client, customer, monkeypatch):
        monkeypatch.setitem(app.config, "SYNC_DISPATCH_INLINE", False)
        _create(client, {"customer_id": customer.id, "items": [item()]})

        verify = client.get("/api/system/verify-ledger").get_json()
        assert verify["total_issues"] > 0

        processed = client.post("/api/system/outbox/process?limit=10").get_json()
        assert processed == {"processed": 2, "applied": 2, "failed": 0}

        assert client.post("/api/system/reconcile/customers").status_code == 200
        assert client.post("/api/system/reconcile/ledger-balances").get_json()["customers_processed"] == 1
        assert client.get("/api/system/verify-ledger").get_json()["total_issues"] == 0


class TestInventoryRoutes:
    def test_purchase_lots(self, client, db_session):
        created = client.post("/api/inventory/purchases", json={
            "product_id": "P1",
            "variant_id": "V1",
            "quantity": 4,
            "unit_price_cents": 150,
            "purchase_date": "2026-01-05T00:00:00Z",
        })
        assert created.status_code == 201
        assert created.get_json()["purchase"]["remaining"] == 4

        listed = client.get("/api/inventory/purchases?product_id=P1&in_stock=true").get_json()["purchases"]
        assert [p["quantity"] for p in listed] == [4]

    def test_ad_hoc_stock_moves(self, client, make_purchase):
        lot = make_purchase(quantity=3)

        deducted = client.post("/api/inventory/stock/deduct", json={"items": [
            {"product_name": "Bolt", "purchase_id": lot.id, "quantity": 2},
        ]}).get_json()
        assert deducted["success"] is True
        allocations = deducted["deductions"][0]["allocations"]

        restored = client.post("/api/inventory/stock/restore", json={"items": [
            {"product_name": "Bolt", "purchase_id": lot.id, "quantity": 2, "allocations": allocations},
        ]}).get_json()
        assert restored == {"success": True, "errors": []}

        assert client.post("/api/inventory/stock/deduct", json={"items": []}).status_code == 400

    def test_virtual_product_previews(self, client, make_purchase, gift_box):
        make_purchase(quantity=10, product_id="P1", variant_id="V1")
        make_purchase(quantity=3, product_id="P2", variant_id="V2")

        box = client.get(f"/api/inventory/virtual-products/{gift_box.id}").get_json()["virtual_product"]
        assert box["sku"] == "BOX-001"
        assert len(box["components"]) == 2

        availability = client.get(f"/api/inventory/virtual-products/{gift_box.id}/availability").get_json()
        assert availability["available"] == 3

        cost = client.get(f"/api/inventory/virtual-products/{gift_box.id}/cost?quantity=4").get_json()
        assert cost["can_fulfill"] is False

        assert client.get("/api/inventory/virtual-products/999/availability").status_code == 404
