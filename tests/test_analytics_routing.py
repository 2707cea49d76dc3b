"""Tests for delivery analytics and the route heuristics."""

from datetime import datetime, timedelta

import pytest

from conftest import delivery_payload
from warehouse import analytics, models, routing, schemas
from warehouse.crud import deliveries as crud_deliveries

LISBON = (38.7223, -9.1393)
LISBON_NEARBY = (38.7300, -9.1400)
PORTO = (41.1579, -8.6291)


def make_delivery(db_session, company, coordinates=LISBON, status=None):
    payload = delivery_payload(company.id)
    payload["delivery_location"]["coordinates"] = list(coordinates)
    created = crud_deliveries.create_delivery(db_session, schemas.DeliveryCreate(**payload))
    if status:
        crud_deliveries.update_status(db_session, created.id, status)
    return created


@pytest.fixture
def window():
    now = datetime.utcnow()
    return now - timedelta(days=1), now + timedelta(days=1)


class TestPerformanceMetrics:
    def test_counts_and_rates(self, db_session, company, window):
        make_delivery(db_session, company, status="delivered")
        make_delivery(db_session, company, status="delivered")
        make_delivery(db_session, company, status="failed")
        make_delivery(db_session, company)

        metrics = analytics.get_performance_metrics(db_session, *window)
        assert metrics["total_deliveries"] == 4
        assert metrics["completed_deliveries"] == 2
        assert metrics["failed_deliveries"] == 1
        assert metrics["on_time_deliveries"] == 2
        assert metrics["completion_rate"] == pytest.approx(0.5)
        assert metrics["on_time_rate"] == pytest.approx(1.0)
        assert metrics["average_delivery_time"] >= 0

    def test_empty_range_reports_zero_rates(self, db_session, company):
        make_delivery(db_session, company, status="delivered")
        start = datetime(2000, 1, 1)
        metrics = analytics.get_performance_metrics(db_session, start, start + timedelta(days=1))
        assert metrics["total_deliveries"] == 0
        assert metrics["completion_rate"] == 0.0
        assert metrics["on_time_rate"] == 0.0

    def test_late_delivery_is_not_on_time(self, db_session, company, window):
        created = make_delivery(db_session, company, status="delivered")
        db_delivery = crud_deliveries.get_delivery(db_session, created.id)
        db_delivery.actual_delivery_date = db_delivery.history[0].timestamp + timedelta(hours=30)
        db_session.commit()

        assert not analytics.is_on_time(db_delivery)
        assert analytics.delivery_minutes(db_delivery) == pytest.approx(30 * 60)
        assert analytics.get_performance_metrics(db_session, *window)["on_time_deliveries"] == 0

    def test_endpoint(self, client, admin_headers, company, db_session):
        make_delivery(db_session, company, status="delivered")
        response = client.get("/deliveries/analytics/performance", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["completed_deliveries"] == 1


class TestTrends:
    def test_daily_and_hourly(self, db_session, company, window):
        make_delivery(db_session, company, status="delivered")
        make_delivery(db_session, company, status="failed")

        trends = analytics.get_delivery_trends(db_session, *window)
        today = datetime.utcnow().date().isoformat()
        assert trends["daily"] == [{"date": today, "deliveries": 2, "on_time": 1, "failed": 1}]
        assert len(trends["hourly"]) == 24
        assert sum(h["deliveries"] for h in trends["hourly"]) == 1

    def test_company_filter(self, db_session, company, window):
        make_delivery(db_session, company)
        assert analytics.get_delivery_trends(db_session, *window, company_id=company.id + 1)["daily"] == []

    def test_daily_stats(self, db_session, company):
        make_delivery(db_session, company)
        make_delivery(db_session, company)
        assert analytics.get_daily_stats(db_session) == {datetime.utcnow().date().isoformat(): 2}

    def test_hotspots(self, db_session, company):
        make_delivery(db_session, company, status="delivered")
        make_delivery(db_session, company, status="delivered")
        make_delivery(db_session, company, coordinates=PORTO, status="delivered")
        make_delivery(db_session, company, coordinates=PORTO)

        hotspots = analytics.get_delivery_hotspots(db_session)
        assert [h["delivery_count"] for h in hotspots] == [2, 1]
        assert hotspots[0]["coordinates"] == list(LISBON)


class TestRouting:
    def test_haversine_known_distance(self):
        # Lisbon to Porto is roughly 274 km
        assert routing.haversine_km(*LISBON, *PORTO) == pytest.approx(274, abs=3)
        assert routing.haversine_km(*LISBON, *LISBON) == 0

    def test_sort_by_proximity_keeps_start_and_picks_nearest(self):
        points = [(1, LISBON), (2, PORTO), (3, LISBON_NEARBY)]
        assert [pid for pid, _ in routing.sort_by_proximity(points)] == [1, 3, 2]

    def test_sort_by_proximity_ties_keep_input_order(self):
        points = [(1, (0.0, 0.0)), (2, (0.0, 1.0)), (3, (0.0, -1.0))]
        assert [pid for pid, _ in routing.sort_by_proximity(points)] == [1, 2, 3]

    def test_sort_trivial_inputs(self):
        assert routing.sort_by_proximity([]) == []
        assert routing.sort_by_proximity([(7, LISBON)]) == [(7, LISBON)]

    def test_optimize_route_skips_unknown_ids(self, db_session, company):
        a = make_delivery(db_session, company, coordinates=LISBON)
        b = make_delivery(db_session, company, coordinates=PORTO)
        c = make_delivery(db_session, company, coordinates=LISBON_NEARBY)
        ordered = routing.optimize_route(db_session, [a.id, 999, b.id, c.id])
        assert [d.id for d in ordered] == [a.id, c.id, b.id]

    def test_optimize_endpoint(self, client, admin_headers, db_session, company):
        a = make_delivery(db_session, company, coordinates=PORTO)
        b = make_delivery(db_session, company, coordinates=LISBON)
        response = client.post("/deliveries/routes/optimize", json={"delivery_ids": [a.id, b.id]}, headers=admin_headers)
        assert response.status_code == 200
        assert [d["id"] for d in response.json()] == [a.id, b.id]

    def test_cluster_routes_breaks_on_distance(self, db_session, company):
        make_delivery(db_session, company, coordinates=LISBON, status="assigned")
        make_delivery(db_session, company, coordinates=LISBON_NEARBY, status="in_transit")
        make_delivery(db_session, company, coordinates=PORTO, status="out_for_delivery")
        make_delivery(db_session, company, coordinates=LISBON, status="delivered")

        routes = routing.cluster_routes(db_session, company.id)
        assert [len(route) for route in routes] == [2, 1]
        assert routes[1][0]["status"] == "out_for_delivery"

    def test_cluster_routes_empty(self, db_session, company):
        assert routing.cluster_routes(db_session, company.id) == []

    def test_routes_endpoint(self, client, admin_headers, db_session, company):
        make_delivery(db_session, company, status="assigned")
        response = client.get("/deliveries/routes", params={"company_id": company.id}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()[0][0]["coordinates"] == list(LISBON)


def test_delivery_model_history_is_ordered(db_session, company):
    created = make_delivery(db_session, company, status="assigned")
    events = db_session.query(models.DeliveryTrackingEvent).filter_by(delivery_id=created.id).all()
    assert [e.status for e in events] == ["pending", "assigned"]
