from __future__ import annotations

import io
import logging

from fastapi.testclient import TestClient
from openpyxl import load_workbook

from test_protocols import CLEANING, LOADING


def test_tour_summary_collects_active_tour(client: TestClient, driver_headers, active_tour):
    client.post("/protocols", json=CLEANING, headers=driver_headers)
    client.post("/protocols", json=LOADING, headers=driver_headers)

    summary = client.get("/tour/summary", headers=driver_headers)
    assert summary.status_code == 200
    data = summary.json()
    assert data["driver"] == "demo"
    assert data["tour"]["transport_order"] == "TA-1001"
    assert [p["type"] for p in data["protocols"]] == ["loading", "cleaning"]


def test_tour_summary_without_tour(client: TestClient, driver_headers):
    assert client.get("/tour/summary", headers=driver_headers).status_code == 404


def test_tour_summary_exports(client: TestClient, driver_headers, active_tour, admin_headers):
    client.put("/admin/settings/company", json={"company_name": "Kühltrans GmbH"}, headers=admin_headers)
    client.post("/protocols", json=CLEANING, headers=driver_headers)
    client.post("/protocols", json=LOADING, headers=driver_headers)

    pdf = client.get("/tour/summary/export", params={"format": "pdf"}, headers=driver_headers)
    assert pdf.status_code == 200
    assert pdf.headers["content-type"] == "application/pdf"
    assert pdf.headers["content-disposition"] == 'attachment; filename="tour-summary-TA-1001.pdf"'
    assert pdf.content.startswith(b"%PDF")

    xlsx = client.get("/tour/summary/export", params={"format": "xlsx"}, headers=driver_headers)
    assert xlsx.status_code == 200
    wb = load_workbook(io.BytesIO(xlsx.content))
    assert wb.sheetnames == ["Tour", "Protokolle"]
    rows = list(wb["Protokolle"].iter_rows(values_only=True))
    assert rows[0][1] == "Protokoll"
    assert {row[1] for row in rows[1:]} == {"Reinigungsprotokoll", "Ladeprotokoll"}
    assert wb["Tour"]["B1"].value == "TA-1001"

    exported = client.get("/tour/summary/export", params={"format": "json"}, headers=driver_headers)
    assert exported.json()["tour"]["truck_license_plate"] == "B-AB 123"

    unknown = client.get("/tour/summary/export", params={"format": "csv"}, headers=driver_headers)
    assert unknown.status_code == 400


def test_tour_summary_endpoint_logs_and_acknowledges(client: TestClient, caplog):
    with caplog.at_level(logging.INFO, logger="fahrerlogbuch"):
        resp = client.post("/api/tour-summary", json={"tour": {"transport_order": "TA-7"}, "protocols": []})
    assert resp.status_code == 200
    assert resp.json() == {"message": "Tour summary received successfully."}
    assert "TA-7" in caplog.text


def test_tour_summary_endpoint_rejects_invalid_json(client: TestClient):
    resp = client.post(
        "/api/tour-summary",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 500
    assert resp.json() == {"message": "Error processing request."}


def test_finishing_tour_returns_driver_to_selection(client: TestClient, driver_headers, active_tour):
    client.post("/protocols", json=CLEANING, headers=driver_headers)
    summary = client.get("/tour/summary", headers=driver_headers).json()
    client.post("/api/tour-summary", json=summary)

    assert client.post("/tour/end", headers=driver_headers).status_code == 204
    resp = client.get("/", headers=driver_headers, follow_redirects=False)
    assert resp.headers["location"] == "/tour-selection"
    archive = client.get("/archive", headers=driver_headers).json()
    assert archive[0]["transport_order"] == "TA-1001"
