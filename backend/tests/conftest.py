from __future__ import annotations

import base64
import tempfile
from pathlib import Path
from typing import Dict, Generator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from fahrerlogbuch import models
from fahrerlogbuch.database import get_db
from fahrerlogbuch.main import app
from fahrerlogbuch.storage import SqlStore

PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
PHOTO = {"data_url": "data:image/png;base64,iVBORw0KGgo=", "mime_type": "image/png"}


@pytest.fixture(scope="session")
def temp_db_path() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "test.db"
        yield path


@pytest.fixture(scope="session")
def engine(temp_db_path: Path):
    url = f"sqlite:///{temp_db_path}"
    engine = create_engine(url, connect_args={"check_same_thread": False}, future=True)
    models.Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="function")
def session(engine) -> Generator[Session, None, None]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionTesting = sessionmaker(bind=connection, autoflush=False, autocommit=False, future=True)
    session = SessionTesting()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(scope="function")
def store(session: Session) -> SqlStore:
    return SqlStore(session)


@pytest.fixture(scope="function")
def client(session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        yield session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def login(client: TestClient, username: str, password: str, role: Optional[str] = None) -> Dict[str, str]:
    payload = {"username": username, "password": password}
    if role:
        payload["role"] = role
    resp = client.post("/auth/login", json=payload)
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['token']}"}


@pytest.fixture()
def driver_headers(client: TestClient) -> Dict[str, str]:
    return login(client, "demo", "demo123")


@pytest.fixture()
def admin_headers(client: TestClient) -> Dict[str, str]:
    return login(client, "admin", "admin123")


@pytest.fixture()
def disponent_headers(client: TestClient, admin_headers: Dict[str, str]) -> Dict[str, str]:
    resp = client.post(
        "/admin/users",
        json={"username": "dispo", "password": "dispo123", "roles": ["disponent"]},
        headers=admin_headers,
    )
    assert resp.status_code == 201, resp.text
    return login(client, "dispo", "dispo123")


@pytest.fixture()
def active_tour(client: TestClient, driver_headers: Dict[str, str]) -> dict:
    resp = client.post(
        "/tour-selection",
        json={
            "truck_license_plate": "b-ab 123",
            "trailer_license_plate": "B-XY  987",
            "transport_order": "TA-1001",
        },
        headers=driver_headers,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()
