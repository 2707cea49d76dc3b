"""Tests for inventory items: status derivation, stock journal, CSV and analytics."""

import io
import re
import threading

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from conftest import item_payload
from warehouse import models, schemas
from warehouse.database import Base
from warehouse.crud import inventory as crud_inventory
from warehouse.errors import ConflictError, NotFoundError


class TestInventoryApi:
    def test_create_item_derives_low_stock(self, client, admin_headers):
        response = client.post("/inventory", json=item_payload(), headers=admin_headers)
        assert response.status_code == 201
        data = response.json()
        assert data["sku"] == "A1"
        assert data["status"] == "low_stock"

    def test_create_item_records_initial_stock_movement(self, client, admin_headers, db_session):
        item_id = client.post("/inventory", json=item_payload(), headers=admin_headers).json()["id"]
        journal = db_session.query(models.StockMovement).filter(models.StockMovement.item_id == item_id).all()
        assert len(journal) == 1
        assert journal[0].type == "IN"
        assert journal[0].quantity == 5
        assert journal[0].reason == "Initial stock"

    def test_create_item_without_stock_is_out_of_stock(self, client, admin_headers, db_session):
        response = client.post("/inventory", json=item_payload(current_stock=0), headers=admin_headers)
        assert response.json()["status"] == "out_of_stock"
        assert db_session.query(models.StockMovement).count() == 0

    def test_duplicate_sku_conflicts(self, client, admin_headers):
        client.post("/inventory", json=item_payload(), headers=admin_headers)
        response = client.post("/inventory", json=item_payload(name="Other"), headers=admin_headers)
        assert response.status_code == 409
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "CONFLICT"

    def test_update_stock_recomputes_status_and_journals_difference(self, client, admin_headers, db_session):
        item_id = client.post("/inventory", json=item_payload(), headers=admin_headers).json()["id"]

        response = client.put(f"/inventory/{item_id}", json={"current_stock": 30}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "in_stock"

        adjustment = (
            db_session.query(models.StockMovement)
            .filter(models.StockMovement.reason == "Manual stock adjustment")
            .one()
        )
        assert adjustment.type == "IN"
        assert adjustment.quantity == 25

    def test_update_uses_patched_minimum(self, client, admin_headers):
        item_id = client.post("/inventory", json=item_payload(current_stock=20), headers=admin_headers).json()["id"]
        response = client.put(
            f"/inventory/{item_id}", json={"current_stock": 20, "min_stock": 25}, headers=admin_headers
        )
        assert response.json()["status"] == "low_stock"

    def test_min_stock_only_patch_recomputes_status(self, client, admin_headers):
        item_id = client.post(
            "/inventory", json=item_payload(current_stock=5, min_stock=2), headers=admin_headers
        ).json()["id"]

        response = client.put(f"/inventory/{item_id}", json={"min_stock": 10}, headers=admin_headers)
        assert response.status_code == 200
        data = response.json()
        assert (data["current_stock"], data["min_stock"], data["status"]) == (5, 10, "low_stock")

        response = client.put(f"/inventory/{item_id}", json={"min_stock": 1}, headers=admin_headers)
        assert response.json()["status"] == "in_stock"

    def test_null_for_required_field_is_a_validation_error(self, client, admin_headers, db_session):
        item_id = client.post("/inventory", json=item_payload(), headers=admin_headers).json()["id"]
        response = client.put(f"/inventory/{item_id}", json={"current_stock": None}, headers=admin_headers)
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "VALIDATION_ERROR"
        assert body["validationErrors"] == [{"field": "current_stock", "message": "cannot be null"}]
        assert db_session.get(models.InventoryItem, item_id).current_stock == 5

    def test_null_for_optional_field_is_accepted(self, client, admin_headers, location):
        item_id = client.post(
            "/inventory", json=item_payload(location_id=location.id), headers=admin_headers
        ).json()["id"]
        response = client.put(f"/inventory/{item_id}", json={"location_id": None}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["location_id"] is None

    def test_get_missing_item_returns_envelope(self, client, admin_headers):
        response = client.get("/inventory/999", headers=admin_headers)
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_list_filters_by_status(self, client, admin_headers):
        client.post("/inventory", json=item_payload(), headers=admin_headers)
        client.post("/inventory", json=item_payload(sku="B2", current_stock=40), headers=admin_headers)
        response = client.get("/inventory", params={"status": "in_stock"}, headers=admin_headers)
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["sku"] == "B2"

    def test_delete_item_removes_its_movements(self, client, admin_headers, db_session):
        item_id = client.post("/inventory", json=item_payload(), headers=admin_headers).json()["id"]
        response = client.delete(f"/inventory/{item_id}", headers=admin_headers)
        assert response.status_code == 204
        assert db_session.query(models.StockMovement).count() == 0

    def test_analytics(self, client, admin_headers):
        client.post("/inventory", json=item_payload(), headers=admin_headers)
        client.post("/inventory", json=item_payload(sku="B2", current_stock=40), headers=admin_headers)
        data = client.get("/inventory/analytics", headers=admin_headers).json()
        assert data["total_items"] == 2
        assert data["total_quantity"] == 45
        assert data["low_stock"] == 1
        assert data["total_value"] == pytest.approx(112.5)
        assert [i["sku"] for i in data["low_stock_items"]] == ["A1"]

    def test_reader_cannot_create(self, client, reader_headers):
        response = client.post("/inventory", json=item_payload(), headers=reader_headers)
        assert response.status_code == 403
        assert response.json()["error"] == "FORBIDDEN"

    def test_requires_authentication(self, client):
        response = client.get("/inventory")
        assert response.status_code == 401


class TestInventoryCsv:
    def test_export(self, client, admin_headers):
        client.post("/inventory", json=item_payload(), headers=admin_headers)
        response = client.get("/inventory/export/csv", headers=admin_headers)
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        lines = response.text.strip().splitlines()
        assert lines[0].startswith("id,sku,name")
        assert ",A1,Widget," in lines[1]

    def test_import_creates_and_updates(self, client, admin_headers):
        client.post("/inventory", json=item_payload(), headers=admin_headers)
        content = "sku,name,current_stock\nA1,,40\nC3,Gear,7\n,Nameless,1\nD4,Bad,-3\n"
        response = client.post(
            "/inventory/import/csv",
            files={"file": ("items.csv", io.BytesIO(content.encode()), "text/csv")},
            headers=admin_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["created_count"] == 1
        assert data["updated_count"] == 1
        assert data["skipped_count"] == 2
        assert len(data["errors"]) == 2

        listing = client.get("/inventory", params={"search": "A1"}, headers=admin_headers).json()
        assert listing["items"][0]["current_stock"] == 40

    def test_import_rejects_non_csv(self, client, admin_headers):
        response = client.post(
            "/inventory/import/csv",
            files={"file": ("items.txt", io.BytesIO(b"sku\n"), "text/plain")},
            headers=admin_headers,
        )
        assert response.status_code == 400


class TestUpdateStock:
    def _item(self, db_session, **overrides):
        return crud_inventory.create_inventory_item(
            db_session, schemas.InventoryItemCreate(**item_payload(**overrides))
        )

    def test_increments_accumulate(self, db_session):
        item = self._item(db_session, current_stock=0, min_stock=0)
        crud_inventory.update_stock(db_session, item.id, 1)
        updated = crud_inventory.update_stock(db_session, item.id, 1)
        assert updated.current_stock == 2
        assert updated.status == "in_stock"

    def test_stock_change_is_a_single_update_statement(self, db_session):
        item_id = self._item(db_session, current_stock=0, min_stock=0).id
        statements = []

        def capture(conn, cursor, statement, parameters, context, executemany):
            statements.append(statement)

        engine = db_session.get_bind()
        event.listen(engine, "before_cursor_execute", capture)
        try:
            crud_inventory.update_stock(db_session, item_id, 1)
        finally:
            event.remove(engine, "before_cursor_execute", capture)

        writes = [s for s in statements if s.lstrip().upper().startswith("UPDATE")]
        assert len(writes) == 1
        assert re.search(r"current_stock\s*=\s*\(?inventory_items\.current_stock \+", writes[0])
        # the increment is computed in SQL, so no read of the row precedes it
        assert statements[0] == writes[0]

    def test_concurrent_increments_are_not_lost(self, tmp_path):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'stock.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        Base.metadata.create_all(bind=engine)
        SessionFactory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

        setup = SessionFactory()
        item_id = self._item(setup, current_stock=0, min_stock=0).id
        setup.close()

        workers, increments = 4, 25
        barrier = threading.Barrier(workers)
        failures = []

        def work():
            session = SessionFactory()
            try:
                barrier.wait()
                for _ in range(increments):
                    crud_inventory.update_stock(session, item_id, 1)
            except Exception as e:
                failures.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=work) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        check = SessionFactory()
        try:
            assert failures == []
            assert check.get(models.InventoryItem, item_id).current_stock == workers * increments
        finally:
            check.close()
            engine.dispose()

    def test_status_follows_new_stock(self, db_session):
        item = self._item(db_session, current_stock=20, min_stock=10)
        assert crud_inventory.update_stock(db_session, item.id, -12).status == "low_stock"
        assert crud_inventory.update_stock(db_session, item.id, -8).status == "out_of_stock"

    def test_missing_item(self, db_session):
        with pytest.raises(NotFoundError):
            crud_inventory.update_stock(db_session, 404, 1)

    def test_update_buying_price(self, db_session):
        item = self._item(db_session)
        assert crud_inventory.update_buying_price(db_session, item.id, 3.75).buying_price == 3.75
        with pytest.raises(NotFoundError):
            crud_inventory.update_buying_price(db_session, 404, 1.0)

    def test_sku_conflict_on_update(self, db_session):
        self._item(db_session)
        other = self._item(db_session, sku="B2")
        with pytest.raises(ConflictError):
            crud_inventory.update_inventory_item(db_session, other.id, schemas.InventoryItemUpdate(sku="A1"))
