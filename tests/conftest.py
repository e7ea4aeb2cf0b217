import os
import tempfile

# must be in place before config.py is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ARCHIVE_DIR"] = tempfile.mkdtemp(prefix="shipment-archives-")
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_PASSWORD"] = "admin123"
os.environ.pop("SENDGRID_API_KEY", None)
os.environ.pop("SERVERNAME", None)

import pytest

from app import app as flask_app
from config import Config
from models import Base, engine, model, init_db


@pytest.fixture(autouse=True)
def fresh_db(tmp_path, monkeypatch):
    monkeypatch.setattr(Config, "ARCHIVE_DIR", str(tmp_path / "archives"))
    monkeypatch.setattr(Config, "SENDGRID_API_KEY", None)
    model.remove()
    Base.metadata.drop_all(engine)
    init_db()
    yield
    model.remove()


@pytest.fixture
def app():
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


def _login(client, username, password):
    resp = client.post("/api/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.get_json()
    return {"Authorization": f"Bearer {resp.get_json()['token']}"}


@pytest.fixture
def admin_headers(client):
    return _login(client, "admin", "admin123")


@pytest.fixture
def auth_headers(client, admin_headers):
    resp = client.post("/api/auth/users", headers=admin_headers, json={
        "username": "clerk", "password": "clerk123", "email": "clerk@example.com",
        "fullName": "Warehouse Clerk",
    })
    assert resp.status_code == 201
    return _login(client, "clerk", "clerk123")


@pytest.fixture
def make_shipment(client, auth_headers):
    def _make(**fields):
        payload = {"supplier": "Acme", "orderRef": "PO-1", "finalPod": "Durban"}
        payload.update(fields)
        resp = client.post("/api/shipments", headers=auth_headers, json=payload)
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()
    return _make


def shipment(**fields):
    """Plain API-shaped record for the computation tests."""
    record = {
        "id": fields.pop("id", "ship_1"),
        "supplier": "Acme",
        "orderRef": "PO-1",
        "finalPod": "Durban",
        "latestStatus": "in_transit_seaway",
        "weekNumber": None,
        "productName": None,
        "quantity": None,
        "palletQty": None,
        "cbm": None,
        "receivingWarehouse": None,
        "createdAt": "2024-05-01T08:00:00",
        "updatedAt": "2024-05-01T08:00:00",
    }
    record.update(fields)
    return record
