from __future__ import annotations

from urllib.parse import quote

from fastapi.testclient import TestClient


def _vehicle_url(vehicle_type: str, plate: str) -> str:
    return f"/vehicles/{vehicle_type}/{quote(plate)}"


def test_vehicle_registry_crud(client: TestClient, admin_headers):
    resp = client.post(
        "/vehicles",
        json={
            "type": "trailer",
            "license_plate": " b-kt  300 ",
            "maintenance_number": "A-300",
            "manufacturer": "Schmitz",
            "next_hu": "2026-05-01",
            "first_registration": "",
        },
        headers=admin_headers,
    )
    assert resp.status_code == 201
    vehicle = resp.json()
    assert vehicle["license_plate"] == "B-KT 300"
    assert vehicle["next_hu"] == "2026-05-01"
    assert vehicle["first_registration"] is None
    assert vehicle["active"] is True

    duplicate = client.post(
        "/vehicles",
        json={"type": "trailer", "license_plate": "B-KT 300", "maintenance_number": "A-301"},
        headers=admin_headers,
    )
    assert duplicate.status_code == 409

    update = client.patch(
        _vehicle_url("trailer", "b-kt 300"),
        json={"license_plate": "B-KT 301", "axles": 3},
        headers=admin_headers,
    )
    assert update.status_code == 200
    assert update.json()["license_plate"] == "B-KT 301"
    assert update.json()["manufacturer"] == "Schmitz"
    assert update.json()["axles"] == 3

    status_resp = client.put(
        _vehicle_url("trailer", "B-KT 301") + "/status", json={"active": False}, headers=admin_headers
    )
    assert status_resp.status_code == 200
    assert status_resp.json()["active"] is False

    registry = client.get("/vehicles", headers=admin_headers).json()
    assert registry["truck"] == []
    assert [v["license_plate"] for v in registry["trailer"]] == ["B-KT 301"]

    assert client.delete(_vehicle_url("trailer", "B-KT 301"), headers=admin_headers).status_code == 204
    assert client.delete(_vehicle_url("trailer", "B-KT 301"), headers=admin_headers).status_code == 404


def test_rename_onto_existing_plate_conflicts(client: TestClient, admin_headers):
    for plate in ("M-AA 1", "M-AA 2"):
        client.post(
            "/vehicles",
            json={"type": "truck", "license_plate": plate, "maintenance_number": "X"},
            headers=admin_headers,
        )
    resp = client.patch(_vehicle_url("truck", "M-AA 1"), json={"license_plate": "m-aa 2"}, headers=admin_headers)
    assert resp.status_code == 409


def test_vehicle_validation(client: TestClient, admin_headers):
    resp = client.post(
        "/vehicles",
        json={"type": "truck", "license_plate": "   ", "maintenance_number": "X"},
        headers=admin_headers,
    )
    assert resp.status_code == 422
    resp = client.post(
        "/vehicles",
        json={"type": "bus", "license_plate": "B-1", "maintenance_number": "X"},
        headers=admin_headers,
    )
    assert resp.status_code == 422


def test_drivers_cannot_manage_vehicles(client: TestClient, driver_headers):
    resp = client.post(
        "/vehicles",
        json={"type": "truck", "license_plate": "B-1", "maintenance_number": "X"},
        headers=driver_headers,
    )
    assert resp.status_code == 403


def test_dispatcher_sees_fleet(client: TestClient, admin_headers, disponent_headers):
    client.post(
        "/vehicles",
        json={"type": "truck", "license_plate": "K-LK 9", "maintenance_number": "X"},
        headers=disponent_headers,
    )
    fleet = client.get("/disponent/fleet", headers=disponent_headers).json()
    assert [v["license_plate"] for v in fleet["truck"]] == ["K-LK 9"]


def test_legacy_plate_lists_are_read(client: TestClient, store, admin_headers):
    from fahrerlogbuch.storage import VEHICLES_KEY, write_json

    write_json(store, VEHICLES_KEY, {"truck": ["b-old 1"], "trailer": []})
    registry = client.get("/vehicles", headers=admin_headers).json()
    assert registry["truck"][0]["license_plate"] == "B-OLD 1"
    assert registry["truck"][0]["maintenance_number"] == ""
