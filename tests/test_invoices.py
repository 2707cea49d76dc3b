"""Tests for supplier invoices: pricing, goods receipt and status rules."""

from datetime import datetime

import pytest

from conftest import item_payload
from warehouse import models, schemas
from warehouse.crud import invoices as crud_invoices
from warehouse.errors import ValidationError


@pytest.fixture
def item(client, admin_headers):
    return client.post("/inventory", json=item_payload(current_stock=5, buying_price=2.5), headers=admin_headers).json()


def invoice_payload(supplier_id, item_id, **overrides):
    payload = {
        "invoice_ref": "SUP-001",
        "supplier_id": supplier_id,
        "items": [{"item_id": item_id, "quantity": 10, "buying_price": 3.0, "tax_rate": 5}],
        "vat_rate": 20,
        "additional_taxes": [{"name": "eco", "rate": 2}],
        "invoice_date": "2026-01-10T00:00:00",
        "due_date": "2026-02-10T00:00:00",
    }
    payload.update(overrides)
    return payload


class TestCalculateTotals:
    def test_amounts(self):
        invoice = schemas.SupplierInvoiceCreate(**invoice_payload(1, 1, items=[
            {"item_id": 1, "quantity": 10, "buying_price": 3.0, "tax_rate": 5},
            {"item_id": 2, "quantity": 2, "buying_price": 20.0},
        ]))
        totals = crud_invoices.calculate_totals(invoice)
        assert totals["subtotal"] == pytest.approx(70.0)
        assert totals["items"][0]["total_price"] == pytest.approx(30.0)
        assert totals["items"][0]["tax_amount"] == pytest.approx(1.5)
        assert totals["vat_amount"] == pytest.approx(14.0)
        assert totals["additional_taxes"] == [{"name": "eco", "rate": 2.0, "amount": pytest.approx(1.4)}]
        assert totals["total_amount"] == pytest.approx(85.4)

    @pytest.mark.parametrize(
        "line, field",
        [
            ({"item_id": 1, "quantity": 0, "buying_price": -1, "tax_rate": -1}, "items.quantity"),
            ({"item_id": 1, "quantity": 1, "buying_price": -1, "tax_rate": -1}, "items.buying_price"),
            ({"item_id": 1, "quantity": 1, "buying_price": 1, "tax_rate": -1}, "items.tax_rate"),
        ],
    )
    def test_line_checks_in_order(self, line, field):
        invoice = schemas.SupplierInvoiceCreate(**invoice_payload(1, 1, items=[line]))
        with pytest.raises(ValidationError) as excinfo:
            crud_invoices.calculate_totals(invoice)
        assert excinfo.value.errors[0]["field"] == field

    def test_negative_rates(self):
        with pytest.raises(ValidationError):
            crud_invoices.calculate_totals(schemas.SupplierInvoiceCreate(**invoice_payload(1, 1, vat_rate=-1)))
        with pytest.raises(ValidationError):
            crud_invoices.calculate_totals(
                schemas.SupplierInvoiceCreate(**invoice_payload(1, 1, additional_taxes=[{"name": "x", "rate": -3}]))
            )


class TestCreateInvoice:
    def test_receives_goods(self, client, admin_headers, admin_user, supplier, item):
        response = client.post("/supplier-invoices", json=invoice_payload(supplier.id, item["id"]), headers=admin_headers)
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "pending"
        assert data["is_reconciled"] is False
        assert data["created_by"] == admin_user.id
        assert data["total_amount"] == pytest.approx(36.6)

        stocked = client.get(f"/inventory/{item['id']}", headers=admin_headers).json()
        assert stocked["current_stock"] == 15
        assert stocked["buying_price"] == 3.0

    def test_duplicate_reference(self, client, admin_headers, supplier, item):
        client.post("/supplier-invoices", json=invoice_payload(supplier.id, item["id"]), headers=admin_headers)
        response = client.post("/supplier-invoices", json=invoice_payload(supplier.id, item["id"]), headers=admin_headers)
        assert response.status_code == 409

    def test_unknown_supplier(self, client, admin_headers, item):
        response = client.post("/supplier-invoices", json=invoice_payload(999, item["id"]), headers=admin_headers)
        assert response.status_code == 404

    def test_invalid_line_checked_before_supplier(self, client, admin_headers, item):
        payload = invoice_payload(999, item["id"], items=[{"item_id": item["id"], "quantity": 0, "buying_price": 1}])
        assert client.post("/supplier-invoices", json=payload, headers=admin_headers).status_code == 400

    def test_missing_item_removes_invoice(self, client, admin_headers, supplier, db_session):
        response = client.post("/supplier-invoices", json=invoice_payload(supplier.id, 999), headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["message"].startswith("Failed to update inventory")
        assert db_session.query(models.SupplierInvoice).count() == 0


class TestUpdateInvoice:
    @pytest.fixture
    def invoice(self, client, admin_headers, supplier, item):
        return client.post("/supplier-invoices", json=invoice_payload(supplier.id, item["id"]), headers=admin_headers).json()

    def put(self, client, headers, invoice_id, body):
        return client.put(f"/supplier-invoices/{invoice_id}", json=body, headers=headers)

    def test_cancelled_status_is_final(self, client, admin_headers, invoice):
        assert self.put(client, admin_headers, invoice["id"], {"status": "cancelled"}).status_code == 200
        response = self.put(client, admin_headers, invoice["id"], {"status": "pending"})
        assert response.status_code == 400
        assert response.json()["message"] == "Cannot update a cancelled invoice"
        # notes are still editable
        assert self.put(client, admin_headers, invoice["id"], {"notes": "archived"}).status_code == 200

    def test_paid_can_only_be_cancelled(self, client, admin_headers, invoice):
        self.put(client, admin_headers, invoice["id"], {"status": "paid"})
        assert self.put(client, admin_headers, invoice["id"], {"status": "pending"}).status_code == 400
        assert self.put(client, admin_headers, invoice["id"], {"status": "cancelled"}).status_code == 200

    def test_reconcile_once(self, client, admin_headers, admin_user, invoice):
        data = self.put(client, admin_headers, invoice["id"], {"is_reconciled": True}).json()
        assert data["is_reconciled"] is True
        assert data["reconciled_by"] == admin_user.id
        assert data["reconciled_at"] is not None

        again = self.put(client, admin_headers, invoice["id"], {"is_reconciled": True})
        assert again.json()["message"] == "Invoice is already reconciled"
        undo = self.put(client, admin_headers, invoice["id"], {"is_reconciled": False})
        assert undo.json()["message"] == "Cannot un-reconcile an invoice"

    def test_unknown_status_rejected(self, client, admin_headers, invoice):
        assert self.put(client, admin_headers, invoice["id"], {"status": "lost"}).status_code == 400

    def test_missing(self, client, admin_headers):
        assert self.put(client, admin_headers, 999, {"notes": "x"}).status_code == 404


class TestListInvoices:
    def test_statistics_and_order(self, client, admin_headers, supplier, item):
        client.post("/supplier-invoices", json=invoice_payload(supplier.id, item["id"]), headers=admin_headers)
        later = invoice_payload(supplier.id, item["id"], invoice_ref="SUP-002", invoice_date="2026-03-01T00:00:00")
        created = client.post("/supplier-invoices", json=later, headers=admin_headers).json()
        client.put(f"/supplier-invoices/{created['id']}", json={"status": "paid"}, headers=admin_headers)

        data = client.get("/supplier-invoices", headers=admin_headers).json()
        assert [i["invoice_ref"] for i in data["items"]] == ["SUP-002", "SUP-001"]
        stats = data["statistics"]
        assert stats["total_count"] == 2
        assert stats["total_amount"] == pytest.approx(73.2)
        assert stats["total_vat"] == pytest.approx(12.0)
        assert stats["total_additional_taxes"] == pytest.approx(1.2)
        assert stats["invoices_by_status"] == {"pending": 1, "paid": 1, "cancelled": 0}

    def test_filters(self, client, admin_headers, supplier, item):
        client.post("/supplier-invoices", json=invoice_payload(supplier.id, item["id"]), headers=admin_headers)
        params = {"is_reconciled": True}
        assert client.get("/supplier-invoices", params=params, headers=admin_headers).json()["total"] == 0
        params = {"search": "sup-0", "end_date": datetime(2026, 1, 31).isoformat()}
        assert client.get("/supplier-invoices", params=params, headers=admin_headers).json()["total"] == 1
