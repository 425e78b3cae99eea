from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import PHOTO
from fahrerlogbuch.config import settings
from fahrerlogbuch.storage import protocols_key, write_json

CLEANING = {
    "type": "cleaning",
    "location": "Depot Berlin",
    "cleaning_type": "Nassreinigung",
    "cleaning_products": "Neutralreiniger",
    "control_type": "Sichtkontrolle",
    "control_result": "i.O.",
    "water_temperature": 60,
    "water_quality": "Trinkwasser",
    "odometer_reading": 120500,
}

LOADING = {
    "type": "loading",
    "location": "Lager Nord",
    "cargo_area_temperature": 4,
    "cargo_area_closed": True,
    "has_seal": True,
    "duration": 45,
    "odometer_reading": 120600,
    "goods_type": "food",
    "articles": "Molkereiprodukte",
    "pallets": 12,
}


def _post(client: TestClient, headers, payload):
    return client.post("/protocols", json=payload, headers=headers)


def test_protocol_without_active_tour_is_rejected(client: TestClient, driver_headers):
    resp = _post(client, driver_headers, CLEANING)
    assert resp.status_code == 409
    assert resp.json()["detail"] == "Keine aktive Tour gefunden. Bitte starten Sie eine neue Tour."


def test_cleaning_protocol_copies_tour_context(client: TestClient, driver_headers, active_tour):
    resp = _post(client, driver_headers, {**CLEANING, "photos": [PHOTO]})
    assert resp.status_code == 201
    record = resp.json()
    assert record["driver_id"] == "demo"
    assert record["transport_order"] == "TA-1001"
    assert record["truck_license_plate"] == "B-AB 123"
    assert record["contamination_details"] is None
    assert record["start_time"] == record["end_time"]
    assert len(record["photos"]) == 1


def test_failed_cleaning_requires_contamination_details(client: TestClient, driver_headers, active_tour):
    resp = _post(client, driver_headers, {**CLEANING, "control_result": "n.i.O."})
    assert resp.status_code == 422
    assert "Mindestens eine Art der Kontamination" in resp.text
    assert "Korrekturmaßnahmen sind ein Pflichtfeld." in resp.text

    resp = _post(
        client,
        driver_headers,
        {
            **CLEANING,
            "control_result": "n.i.O.",
            "contamination_types": ["rust", "dirt"],
            "contamination_description": " Rost an der Ladebordwand ",
            "corrective_actions": "Nachreinigung",
        },
    )
    assert resp.status_code == 201
    details = resp.json()["contamination_details"]
    assert details == {
        "types": ["rust", "dirt"],
        "description": "Rost an der Ladebordwand",
        "corrective_actions": "Nachreinigung",
    }


def test_cargo_temperature_range(client: TestClient, driver_headers, active_tour):
    resp = _post(client, driver_headers, {**LOADING, "cargo_area_temperature": 60})
    assert resp.status_code == 422


def test_loading_numbers_and_delivery_reference(client: TestClient, driver_headers, active_tour):
    first = _post(client, driver_headers, LOADING).json()
    second = _post(client, driver_headers, LOADING).json()
    assert first["loading_protocol_number"] == "TA-1001-01"
    assert second["loading_protocol_number"] == "TA-1001-02"

    delivery = {
        "type": "delivery",
        "location": "Filiale 7",
        "cargo_area_temperature": 5,
        "loading_protocol_number": "TA-1001-99",
        "unloading_duration": 20,
        "odometer_reading": 120700,
    }
    unknown = _post(client, driver_headers, delivery)
    assert unknown.status_code == 400

    ok = _post(client, driver_headers, {**delivery, "loading_protocol_number": "TA-1001-02"})
    assert ok.status_code == 201
    assert ok.json()["message"] == ""


def test_loading_goods_rules(client: TestClient, driver_headers, active_tour):
    resp = _post(client, driver_headers, {**LOADING, "articles": "sonstiges"})
    assert resp.status_code == 422

    resp = _post(client, driver_headers, {**LOADING, "goods_type": "empties", "articles": None, "pallets": 3})
    assert resp.status_code == 422
    assert "Kistenanzahl" in resp.text

    resp = _post(
        client,
        driver_headers,
        {**LOADING, "required_temperature_min": 8, "required_temperature_max": 2},
    )
    assert resp.status_code == 422


def test_emergency_drops_fields_of_other_types(client: TestClient, driver_headers, active_tour):
    payload = {
        "type": "emergency",
        "location": "A2 km 130",
        "emergency_type": "breakdown",
        "description": "Motorschaden auf dem Standstreifen",
        "photos": [PHOTO],
        "reference_number": "POL-1",
        "estimated_duration": 90,
        "vehicle_immobile": True,
    }
    record = _post(client, driver_headers, payload).json()
    assert record["estimated_duration"] == 90
    assert record["vehicle_immobile"] is True
    assert "reference_number" not in record
    assert "help_called" not in record

    no_photo = _post(client, driver_headers, {**payload, "photos": []})
    assert no_photo.status_code == 422


def test_expense_other_needs_description(client: TestClient, driver_headers, active_tour):
    payload = {"type": "expense", "location": "Rastplatz", "expense_type": "other", "amount": 12.5}
    assert _post(client, driver_headers, payload).status_code == 422
    resp = _post(client, driver_headers, {**payload, "description": "Duschmarke"})
    assert resp.status_code == 201


def test_maintenance_protocol_outside_tour(client: TestClient, driver_headers):
    payload = {
        "type": "maintenance",
        "location": "Werkstatt Süd",
        "maintenance_type": "Werkstatt",
        "reason": "Bremsen",
        "description": "Bremsbeläge vorne erneuert",
        "duration": 120,
    }
    assert _post(client, driver_headers, payload).status_code == 400

    resp = _post(client, driver_headers, {**payload, "truck_license_plate": "b-wa 7"})
    assert resp.status_code == 201
    record = resp.json()
    assert record["truck_license_plate"] == "B-WA 7"
    assert record["transport_order"] is None


def test_dashboard_lists_newest_first_for_active_tour(client: TestClient, driver_headers, active_tour):
    first = _post(client, driver_headers, CLEANING).json()
    second = _post(client, driver_headers, {**LOADING}).json()

    dashboard = client.get("/", headers=driver_headers).json()
    ids = [protocol["id"] for protocol in dashboard["protocols"]]
    assert ids == [second["id"], first["id"]]

    detail = client.get(f"/protocols/{first['id']}", headers=driver_headers)
    assert detail.status_code == 200
    assert detail.json()["cleaning_type"] == "Nassreinigung"
    assert client.get("/protocols/unknown", headers=driver_headers).status_code == 404


def test_archive_groups_finished_tours(client: TestClient, driver_headers, active_tour):
    _post(client, driver_headers, CLEANING)
    client.post("/tour/end", headers=driver_headers)
    client.post(
        "/tour-selection",
        json={"truck_license_plate": "B-AB 123", "trailer_license_plate": "B-XY 987", "transport_order": "TA-1002"},
        headers=driver_headers,
    )
    _post(client, driver_headers, CLEANING)

    archive = client.get("/archive", headers=driver_headers).json()
    assert [group["transport_order"] for group in archive] == ["TA-1001"]
    assert len(archive[0]["protocols"]) == 1


def test_share_and_download(client: TestClient, driver_headers, active_tour):
    record = _post(client, driver_headers, CLEANING).json()

    shared = client.get(f"/protocols/{record['id']}/share", headers=driver_headers).json()
    assert shared["title"].startswith("Reinigungsprotokoll - ")
    assert f"id: {record['id']}" in shared["text"]
    assert shared["filename"] == f"protocol-{record['id']}.json"

    download = client.get(f"/protocols/{record['id']}/download", headers=driver_headers)
    assert download.status_code == 200
    assert download.headers["content-disposition"] == f'attachment; filename="protocol-{record["id"]}.json"'
    assert download.json()["id"] == record["id"]


def test_plate_suggestions(client: TestClient, driver_headers, active_tour, admin_headers):
    _post(client, driver_headers, CLEANING)
    client.post(
        "/vehicles",
        json={"type": "truck", "license_plate": "B-AC 5", "maintenance_number": "W-9"},
        headers=admin_headers,
    )
    plates = client.get("/plates/truck", headers=driver_headers).json()["plates"]
    assert plates == ["B-AB 123", "B-AC 5"]

    suggestions = client.get("/plates/truck/suggestions", params={"q": "b-a"}, headers=driver_headers).json()
    assert suggestions["suggestions"] == ["B-AB 123", "B-AC 5"]
    suggestions = client.get("/plates/truck/suggestions", params={"q": "b-ab1"}, headers=driver_headers).json()
    assert suggestions["suggestions"] == ["B-AB 123"]
    empty = client.get("/plates/truck/suggestions", params={"q": ""}, headers=driver_headers).json()
    assert empty["suggestions"] == []


def test_location_from_coordinates(client: TestClient, driver_headers):
    resp = client.post("/location", json={"latitude": 52.52, "longitude": 13.405}, headers=driver_headers)
    assert resp.status_code == 200
    assert resp.json() == {"location": "52.52000, 13.40500"}
    out_of_range = client.post("/location", json={"latitude": 95, "longitude": 13.4}, headers=driver_headers)
    assert out_of_range.status_code == 422


def test_attachment_upload(client: TestClient, driver_headers):
    photo = client.post(
        "/attachments",
        files={"file": ("kamera.jpg", b"\xff\xd8\xff\xe0fake-jpeg", "image/jpeg")},
        headers=driver_headers,
    )
    assert photo.status_code == 201
    assert photo.json()["mime_type"] == "image/jpeg"
    assert photo.json()["data_url"].startswith("data:image/jpeg;base64,")

    guessed = client.post(
        "/attachments",
        files={"file": ("rechnung.pdf", b"%PDF-1.4", "application/octet-stream")},
        headers=driver_headers,
    )
    assert guessed.json()["mime_type"] == "application/pdf"

    text = client.post(
        "/attachments",
        files={"file": ("notiz.txt", b"hallo", "text/plain")},
        headers=driver_headers,
    )
    assert text.status_code == 400


def test_attachment_size_limit(client: TestClient, driver_headers, monkeypatch):
    monkeypatch.setattr(settings, "max_attachment_bytes", 8)
    at_limit = client.post(
        "/attachments",
        files={"file": ("klein.png", b"12345678", "image/png")},
        headers=driver_headers,
    )
    assert at_limit.status_code == 201
    too_big = client.post(
        "/attachments",
        files={"file": ("gross.png", b"123456789", "image/png")},
        headers=driver_headers,
    )
    assert too_big.status_code == 413


def _stored_protocol(protocol_id: str, transport_order, end_time: str) -> dict:
    return {
        "id": protocol_id,
        "driver_id": "demo",
        "type": "pause",
        "location": "Rastplatz",
        "duration": 45,
        "start_time": end_time,
        "end_time": end_time,
        "truck_license_plate": "B-AB 123",
        "trailer_license_plate": "B-XY 987",
        "transport_order": transport_order,
    }


def test_archive_orders_groups_by_newest_protocol(client: TestClient, driver_headers, store):
    write_json(
        store,
        protocols_key("demo"),
        [
            _stored_protocol("c", "TA-3", "2025-03-03T09:00:00+00:00"),
            _stored_protocol("b", "TA-2", "2025-03-05T09:00:00+00:00"),
            _stored_protocol("a2", "TA-1", "2025-03-01T18:00:00+00:00"),
            _stored_protocol("a1", "TA-1", "2025-03-01T08:00:00+00:00"),
            _stored_protocol("w", None, "2025-03-06T08:00:00+00:00"),
        ],
    )
    archive = client.get("/archive", headers=driver_headers).json()
    assert [group["transport_order"] for group in archive] == ["TA-2", "TA-3", "TA-1"]
    assert [p["id"] for p in archive[2]["protocols"]] == ["a2", "a1"]


def test_maintenance_dashboard_shows_only_protocols_without_order(client: TestClient, driver_headers, store):
    write_json(
        store,
        protocols_key("demo"),
        [
            _stored_protocol("tour", "TA-1", "2025-03-05T09:00:00+00:00"),
            _stored_protocol("workshop", None, "2025-03-04T09:00:00+00:00"),
        ],
    )
    client.post(
        "/tour-selection",
        json={"is_maintenance": True, "truck_license_plate": "B-AB 123"},
        headers=driver_headers,
    )
    dashboard = client.get("/", headers=driver_headers).json()
    assert dashboard["active_tour"]["maintenance_mode"] is True
    assert [p["id"] for p in dashboard["protocols"]] == ["workshop"]
