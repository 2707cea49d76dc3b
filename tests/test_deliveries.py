"""Tests for the delivery lifecycle: creation, status changes, tracking and proof of delivery."""

import re
from datetime import datetime

import pytest

from conftest import delivery_payload
from warehouse import models, notifications, schemas
from warehouse.crud import deliveries as crud_deliveries
from warehouse.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError


@pytest.fixture
def delivery(client, admin_headers, company):
    response = client.post("/deliveries", json=delivery_payload(company.id), headers=admin_headers)
    assert response.status_code == 201
    return response.json()


def set_status(client, headers, delivery_id, status, **extra):
    return client.put(f"/deliveries/{delivery_id}/status", json={"status": status, **extra}, headers=headers)


class TestCreateDelivery:
    def test_new_delivery_is_pending_with_one_history_entry(self, delivery):
        assert delivery["status"] == "pending"
        assert len(delivery["history"]) == 1
        assert delivery["history"][0]["status"] == "pending"
        assert re.fullmatch(r"INV\d{6}-[A-Z0-9]{4}", delivery["invoice_number"])

    def test_unknown_company(self, client, admin_headers):
        response = client.post("/deliveries", json=delivery_payload(999), headers=admin_headers)
        assert response.status_code == 404
        assert response.json()["message"] == "Delivery company not found"

    def test_empty_items_rejected(self, client, admin_headers, company):
        response = client.post("/deliveries", json=delivery_payload(company.id, items=[]), headers=admin_headers)
        assert response.status_code == 400

    def test_list_ignores_status_all(self, client, admin_headers, delivery):
        data = client.get("/deliveries", params={"status": "all"}, headers=admin_headers).json()
        assert data["total"] == 1
        data = client.get("/deliveries", params={"status": "delivered"}, headers=admin_headers).json()
        assert data["total"] == 0

    def test_search_by_invoice_number(self, client, admin_headers, delivery):
        data = client.get("/deliveries", params={"search": delivery["invoice_number"]}, headers=admin_headers).json()
        assert data["items"][0]["id"] == delivery["id"]


class TestStatusChanges:
    def test_delivered_stamps_actual_delivery_date(self, client, admin_headers, delivery):
        response = client.put(f"/deliveries/{delivery['id']}", json={"status": "delivered"}, headers=admin_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "delivered"
        assert len(data["history"]) == 2
        assert data["actual_delivery_date"] is not None

    def test_void_succeeds(self, client, admin_headers, delivery):
        response = client.put(f"/deliveries/{delivery['id']}/void", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "voided"

    @pytest.mark.parametrize("terminal", ["cancelled", "voided"])
    def test_terminal_states_refuse_every_status_change(self, client, admin_headers, delivery, terminal):
        set_status(client, admin_headers, delivery["id"], terminal)

        assert set_status(client, admin_headers, delivery["id"], "in_transit").status_code == 400
        assert client.put(
            f"/deliveries/{delivery['id']}", json={"status": "pending"}, headers=admin_headers
        ).status_code == 400
        assert client.put(f"/deliveries/{delivery['id']}/void", headers=admin_headers).status_code == 400
        location = client.put(
            f"/deliveries/{delivery['id']}/location", json={"coordinates": [38.7, -9.1]}, headers=admin_headers
        )
        assert location.status_code == 400
        assert location.json()["error"] == "INVALID_TRANSITION"

        data = client.get(f"/deliveries/{delivery['id']}", headers=admin_headers).json()
        assert data["status"] == terminal
        assert len(data["history"]) == 2

    def test_completed_only_moves_to_returned(self, client, admin_headers, delivery):
        set_status(client, admin_headers, delivery["id"], "completed")
        assert set_status(client, admin_headers, delivery["id"], "in_transit").status_code == 400
        assert client.put(f"/deliveries/{delivery['id']}/void", headers=admin_headers).status_code == 400
        assert set_status(client, admin_headers, delivery["id"], "returned").status_code == 200

    def test_unknown_status(self, client, admin_headers, delivery):
        response = set_status(client, admin_headers, delivery["id"], "teleported")
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_status_location_becomes_current_location(self, client, admin_headers, delivery):
        response = set_status(
            client, admin_headers, delivery["id"], "in_transit",
            notes="Left depot", location={"coordinates": [38.0, -9.0], "address": "Depot"},
        )
        data = response.json()
        assert data["current_location"]["coordinates"] == [38.0, -9.0]
        assert data["history"][-1]["notes"] == "Left depot"

    def test_history_only_grows_with_ordered_timestamps(self, client, admin_headers, delivery):
        for status in ("confirmed", "assigned", "picked_up", "in_transit", "delivered"):
            set_status(client, admin_headers, delivery["id"], status)
        history = client.get(f"/deliveries/{delivery['id']}", headers=admin_headers).json()["history"]
        assert [h["status"] for h in history] == [
            "pending", "confirmed", "assigned", "picked_up", "in_transit", "delivered",
        ]
        timestamps = [h["timestamp"] for h in history]
        assert timestamps == sorted(timestamps)

    def test_status_change_notifies_customer(self, client, admin_headers, delivery):
        notifications.mailer.outbox.clear()
        set_status(client, admin_headers, delivery["id"], "picked_up")
        assert notifications.mailer.outbox[-1]["to"] == "jane@example.com"
        assert notifications.mailer.outbox[-1]["template"] == "delivery-status-update"

    def test_void_missing_delivery(self, client, admin_headers):
        assert client.put("/deliveries/999/void", headers=admin_headers).status_code == 404


class TestProofOfDelivery:
    proof = {"received_by": "Jane", "signature": "data:image/png;base64,AAA"}

    def test_only_delivered_accepts_proof(self, client, admin_headers, delivery):
        response = client.put(f"/deliveries/{delivery['id']}/proof-of-delivery", json=self.proof, headers=admin_headers)
        assert response.status_code == 400

        set_status(client, admin_headers, delivery["id"], "delivered")
        response = client.put(f"/deliveries/{delivery['id']}/proof-of-delivery", json=self.proof, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["proof_of_delivery"]["received_by"] == "Jane"
        assert "timestamp" in response.json()["proof_of_delivery"]

    def test_second_proof_conflicts(self, client, admin_headers, delivery):
        set_status(client, admin_headers, delivery["id"], "delivered")
        client.put(f"/deliveries/{delivery['id']}/proof-of-delivery", json=self.proof, headers=admin_headers)
        response = client.put(f"/deliveries/{delivery['id']}/proof-of-delivery", json=self.proof, headers=admin_headers)
        assert response.status_code == 409


class TestTracking:
    def test_location_update_appends_history(self, client, admin_headers, delivery):
        response = client.put(
            f"/deliveries/{delivery['id']}/location", json={"coordinates": [39.0, -9.5]}, headers=admin_headers
        )
        data = response.json()
        assert data["status"] == "pending"
        assert data["current_location"]["coordinates"] == [39.0, -9.5]
        assert len(data["history"]) == 2

    def test_in_transit_near_destination_is_arriving(self, client, admin_headers, delivery):
        set_status(client, admin_headers, delivery["id"], "in_transit")
        response = client.put(
            f"/deliveries/{delivery['id']}/location", json={"coordinates": [38.7224, -9.1393]}, headers=admin_headers
        )
        data = response.json()
        assert data["status"] == "arriving"
        # the position entry is recorded before the switch and keeps the old status
        assert data["history"][-1]["status"] == "in_transit"
        assert "arriving" not in [entry["status"] for entry in data["history"]]

    def test_in_transit_far_away_stays(self, client, admin_headers, delivery):
        set_status(client, admin_headers, delivery["id"], "in_transit")
        response = client.put(
            f"/deliveries/{delivery['id']}/location", json={"coordinates": [41.15, -8.61]}, headers=admin_headers
        )
        assert response.json()["status"] == "in_transit"


class TestBulkDeliveries:
    def test_bulk_create(self, client, admin_headers, company):
        response = client.post(
            "/deliveries/bulk",
            json=[delivery_payload(company.id), delivery_payload(company.id, customer_name="Joe")],
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert len(response.json()) == 2

    def test_duplicate_invoice_number_aborts_batch(self, client, admin_headers, company, db_session, monkeypatch):
        monkeypatch.setattr(crud_deliveries, "generate_invoice_number", lambda now=None: "INV260101-SAME")
        response = client.post(
            "/deliveries/bulk",
            json=[delivery_payload(company.id), delivery_payload(company.id)],
            headers=admin_headers,
        )
        assert response.status_code == 409
        assert db_session.query(models.Delivery).count() == 0

    def test_missing_company_aborts_batch(self, client, admin_headers, company, db_session):
        response = client.post(
            "/deliveries/bulk",
            json=[delivery_payload(company.id), delivery_payload(999)],
            headers=admin_headers,
        )
        assert response.status_code == 404
        assert db_session.query(models.Delivery).count() == 0

    def test_bulk_update_rolls_back_on_refused_transition(self, client, admin_headers, company):
        first = client.post("/deliveries", json=delivery_payload(company.id), headers=admin_headers).json()
        second = client.post("/deliveries", json=delivery_payload(company.id), headers=admin_headers).json()
        set_status(client, admin_headers, second["id"], "cancelled")

        response = client.put(
            "/deliveries/bulk/update",
            json=[{"id": first["id"], "status": "assigned"}, {"id": second["id"], "status": "assigned"}],
            headers=admin_headers,
        )
        assert response.status_code == 400
        assert client.get(f"/deliveries/{first['id']}", headers=admin_headers).json()["status"] == "pending"


class TestDeliveryPermissions:
    def test_reader_can_list_but_not_create(self, client, reader_headers, company):
        assert client.get("/deliveries", headers=reader_headers).status_code == 200
        response = client.post("/deliveries", json=delivery_payload(company.id), headers=reader_headers)
        assert response.status_code == 403


class TestDeliveryCrud:
    def test_generate_invoice_number_format(self):
        number = crud_deliveries.generate_invoice_number(datetime(2024, 3, 9))
        assert number.startswith("INV240309-")
        assert len(number) == len("INV240309-XXXX")

    def test_update_status_missing(self, db_session):
        with pytest.raises(NotFoundError):
            crud_deliveries.update_status(db_session, 1, "assigned")

    def test_update_status_validates_value_first(self, db_session):
        with pytest.raises(ValidationError):
            crud_deliveries.update_status(db_session, 1, "nope")

    def test_voided_delivery_refuses_status(self, db_session, company):
        created = crud_deliveries.create_delivery(
            db_session, schemas.DeliveryCreate(**delivery_payload(company.id))
        )
        crud_deliveries.void_delivery(db_session, created.id)
        with pytest.raises(InvalidTransitionError):
            crud_deliveries.update_status(db_session, created.id, "pending")
        with pytest.raises(InvalidTransitionError):
            crud_deliveries.void_delivery(db_session, created.id)

    def test_proof_twice(self, db_session, company):
        created = crud_deliveries.create_delivery(
            db_session, schemas.DeliveryCreate(**delivery_payload(company.id))
        )
        crud_deliveries.update_status(db_session, created.id, "delivered")
        proof = schemas.ProofOfDelivery(received_by="Jane")
        crud_deliveries.add_proof_of_delivery(db_session, created.id, proof)
        with pytest.raises(ConflictError):
            crud_deliveries.add_proof_of_delivery(db_session, created.id, proof)

    def test_delete(self, client, admin_headers, delivery, db_session):
        assert client.delete(f"/deliveries/{delivery['id']}", headers=admin_headers).status_code == 204
        assert db_session.query(models.DeliveryTrackingEvent).count() == 0
        assert client.delete(f"/deliveries/{delivery['id']}", headers=admin_headers).status_code == 404
