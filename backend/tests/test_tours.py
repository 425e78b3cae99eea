from __future__ import annotations

from fastapi.testclient import TestClient


def test_tour_start_normalizes_plates(active_tour):
    assert active_tour["truck_license_plate"] == "B-AB 123"
    assert active_tour["trailer_license_plate"] == "B-XY 987"
    assert active_tour["transport_order"] == "TA-1001"
    assert active_tour["maintenance_mode"] is False


def test_tour_requires_all_fields(client: TestClient, driver_headers):
    resp = client.post(
        "/tour-selection",
        json={"truck_license_plate": "B-AB 123", "trailer_license_plate": "", "transport_order": "TA-1"},
        headers=driver_headers,
    )
    assert resp.status_code == 422
    assert "Alle Felder sind für eine Tour erforderlich." in resp.text


def test_second_tour_start_redirects_to_dashboard(client: TestClient, driver_headers, active_tour):
    resp = client.post(
        "/tour-selection",
        json={"truck_license_plate": "M-A 1", "trailer_license_plate": "M-B 2", "transport_order": "TA-2"},
        headers=driver_headers,
        follow_redirects=False,
    )
    assert resp.status_code == 303
    assert resp.headers["location"] == "/"

    tour = client.get("/tour", headers=driver_headers).json()
    assert tour["transport_order"] == "TA-1001"


def test_dashboard_without_tour_redirects_to_selection(client: TestClient, driver_headers):
    resp = client.get("/", headers=driver_headers, follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/tour-selection"


def test_tour_selection_lists_known_plates(client: TestClient, driver_headers, admin_headers):
    client.post(
        "/vehicles",
        json={"type": "truck", "license_plate": "hh-lk 42", "maintenance_number": "W-1"},
        headers=admin_headers,
    )
    client.post(
        "/vehicles",
        json={"type": "truck", "license_plate": "HH-OFF 1", "maintenance_number": "W-2", "active": False},
        headers=admin_headers,
    )
    options = client.get("/tour-selection", headers=driver_headers).json()
    assert options["truck"] == ["HH-LK 42"]
    assert options["trailer"] == []


def test_maintenance_mode_and_end_tour(client: TestClient, driver_headers):
    missing = client.post("/tour-selection", json={"is_maintenance": True}, headers=driver_headers)
    assert missing.status_code == 422

    resp = client.post(
        "/tour-selection",
        json={"is_maintenance": True, "truck_license_plate": "B-WA 1"},
        headers=driver_headers,
    )
    assert resp.status_code == 201
    assert resp.json()["maintenance_mode"] is True
    assert resp.json()["transport_order"] == ""

    dashboard = client.get("/", headers=driver_headers)
    assert dashboard.status_code == 200
    assert dashboard.json()["active_tour"]["maintenance_mode"] is True

    assert client.post("/tour/end", headers=driver_headers).status_code == 204
    assert client.get("/tour", headers=driver_headers).status_code == 404
    me = client.get("/auth/me", headers=driver_headers).json()
    assert me["landing_page"] == "/tour-selection"


def test_active_tour_is_kept_per_user(client: TestClient, active_tour, admin_headers):
    resp = client.get("/tour", headers=admin_headers)
    assert resp.status_code == 404
