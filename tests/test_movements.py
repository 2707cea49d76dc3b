"""Tests for the stock movement journal."""

import pytest

from conftest import item_payload
from warehouse import models, schemas
from warehouse.crud import movements as crud_movements
from warehouse.errors import InvalidTransitionError, NotFoundError, ValidationError


@pytest.fixture
def item(client, admin_headers):
    return client.post("/inventory", json=item_payload(current_stock=0), headers=admin_headers).json()


def movement_payload(item_id, **overrides):
    payload = {"type": "IN", "item_id": item_id, "quantity": 10, "reason": "Restock"}
    payload.update(overrides)
    return payload


class TestMovementApi:
    def test_create_is_pending_and_stamped(self, client, admin_headers, admin_user, item):
        response = client.post("/movements", json=movement_payload(item["id"], unit_cost=1.5), headers=admin_headers)
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "PENDING"
        assert data["created_by"] == admin_user.id
        assert data["total_cost"] == pytest.approx(15.0)
        assert data["item"]["sku"] == "A1"

    def test_transfer_needs_destination(self, client, admin_headers, item, location):
        response = client.post(
            "/movements",
            json=movement_payload(item["id"], type="TRANSFER", location_id=location.id),
            headers=admin_headers,
        )
        assert response.status_code == 400
        assert response.json()["validationErrors"][0]["field"] == "to_location_id"

    def test_unknown_item(self, client, admin_headers):
        response = client.post("/movements", json=movement_payload(999), headers=admin_headers)
        assert response.status_code == 404

    def test_zero_quantity_rejected(self, client, admin_headers, item):
        response = client.post("/movements", json=movement_payload(item["id"], quantity=0), headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_list_filters(self, client, admin_headers, item):
        client.post("/movements", json=movement_payload(item["id"], reason="Restock pallet"), headers=admin_headers)
        client.post("/movements", json=movement_payload(item["id"], type="OUT", reason="Sale"), headers=admin_headers)
        data = client.get("/movements", params={"type": "OUT"}, headers=admin_headers).json()
        assert data["total"] == 1
        assert data["items"][0]["reason"] == "Sale"
        data = client.get("/movements", params={"search": "pallet"}, headers=admin_headers).json()
        assert data["total"] == 1

    def test_void_and_cancel_stamp_user(self, client, admin_headers, admin_user, item):
        first = client.post("/movements", json=movement_payload(item["id"]), headers=admin_headers).json()
        second = client.post("/movements", json=movement_payload(item["id"]), headers=admin_headers).json()

        voided = client.put(f"/movements/{first['id']}/void", headers=admin_headers).json()
        assert voided["status"] == "VOIDED"
        assert voided["voided_by"] == admin_user.id
        assert voided["voided_at"] is not None

        cancelled = client.put(f"/movements/{second['id']}/cancel", headers=admin_headers).json()
        assert cancelled["status"] == "CANCELLED"
        assert cancelled["cancelled_by"] == admin_user.id

    def test_voided_movement_status_cannot_be_revived(self, client, admin_headers, item):
        movement = client.post("/movements", json=movement_payload(item["id"]), headers=admin_headers).json()
        client.put(f"/movements/{movement['id']}/void", headers=admin_headers)
        response = client.put(f"/movements/{movement['id']}", json={"status": "COMPLETED"}, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_TRANSITION"
        # other fields stay editable
        response = client.put(f"/movements/{movement['id']}", json={"notes": "audited"}, headers=admin_headers)
        assert response.status_code == 200

    def test_null_quantity_is_a_validation_error(self, client, admin_headers, item):
        movement = client.post("/movements", json=movement_payload(item["id"]), headers=admin_headers).json()
        response = client.put(f"/movements/{movement['id']}", json={"quantity": None}, headers=admin_headers)
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "VALIDATION_ERROR"
        assert body["validationErrors"] == [{"field": "quantity", "message": "cannot be null"}]
        assert client.get(f"/movements/{movement['id']}", headers=admin_headers).json()["quantity"] == 10

    def test_null_clears_optional_field(self, client, admin_headers, item):
        movement = client.post(
            "/movements", json=movement_payload(item["id"], notes="check seal"), headers=admin_headers
        ).json()
        response = client.put(f"/movements/{movement['id']}", json={"notes": None}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["notes"] is None

    def test_void_missing(self, client, admin_headers):
        assert client.put("/movements/999/void", headers=admin_headers).status_code == 404


class TestBulkMovements:
    def test_bulk_create(self, client, admin_headers, item):
        response = client.post(
            "/movements/bulk",
            json=[movement_payload(item["id"]), movement_payload(item["id"], type="OUT", quantity=3)],
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert len(response.json()) == 2

    def test_bulk_create_is_all_or_nothing(self, client, admin_headers, item, db_session):
        response = client.post(
            "/movements/bulk",
            json=[movement_payload(item["id"]), movement_payload(999)],
            headers=admin_headers,
        )
        assert response.status_code == 404
        assert db_session.query(models.StockMovement).count() == 0

    def test_bulk_update_with_missing_id_rolls_back(self, client, admin_headers, item, db_session):
        movement = client.post("/movements", json=movement_payload(item["id"]), headers=admin_headers).json()
        response = client.put(
            "/movements/bulk",
            json=[{"id": movement["id"], "notes": "changed"}, {"id": 999, "notes": "missing"}],
            headers=admin_headers,
        )
        assert response.status_code == 404
        db_session.expire_all()
        assert db_session.get(models.StockMovement, movement["id"]).notes is None

    def test_bulk_delete(self, client, admin_headers, item):
        ids = [
            client.post("/movements", json=movement_payload(item["id"]), headers=admin_headers).json()["id"]
            for _ in range(3)
        ]
        response = client.request("DELETE", "/movements/bulk", json={"ids": ids[:2] + [999]}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["deleted_count"] == 2

        response = client.request("DELETE", "/movements/bulk", json={"ids": [999]}, headers=admin_headers)
        assert response.status_code == 404


class TestMovementCrud:
    def test_update_missing_returns_none(self, db_session):
        assert crud_movements.update_movement(db_session, 1, schemas.StockMovementUpdate(notes="x")) is None

    def test_delete_bulk_nothing_found(self, db_session):
        with pytest.raises(NotFoundError):
            crud_movements.delete_movements_bulk(db_session, [1, 2])

    def test_cancelled_cannot_become_pending(self, client, admin_headers, item, db_session):
        movement = client.post("/movements", json=movement_payload(item["id"]), headers=admin_headers).json()
        crud_movements.cancel_movement(db_session, movement["id"], user_id=1)
        with pytest.raises(InvalidTransitionError):
            crud_movements.update_movement(db_session, movement["id"], schemas.StockMovementUpdate(status="PENDING"))

    def test_null_required_field_rejected_before_write(self, client, admin_headers, item, db_session):
        movement = client.post("/movements", json=movement_payload(item["id"]), headers=admin_headers).json()
        with pytest.raises(ValidationError) as exc_info:
            crud_movements.update_movement(
                db_session, movement["id"], schemas.StockMovementUpdate(quantity=None, type=None)
            )
        assert {e["field"] for e in exc_info.value.errors} == {"quantity", "type"}
