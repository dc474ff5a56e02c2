import pytest
from fastapi.testclient import TestClient

from geofencing_api.api import create_app

from conftest import ADMIN_PASSWORD, SYSTEM_UUID

ADMIN = {"Authorization": ADMIN_PASSWORD}
ADDRESS = "rower@club.test"
DEVICE = {"Authorization": ADDRESS}


@pytest.fixture
def client(system):
    with TestClient(create_app(system)) as c:
        yield c


def test_state_and_scheduler_lifecycle(client, system):
    assert client.get("/state").json() is True
    assert system.scheduler.running


def test_password_check(client):
    assert client.get("/password", headers=ADMIN).json() is True
    assert client.get("/password", headers={"Authorization": "nope"}).json() is False


def test_unauthorized(client):
    r = client.post("/geofences", json={"description": "shed"})
    assert r.status_code == 401
    assert r.json()["success"] is False


def test_device_enters_geofence(client):
    minor = client.post("/geofences", json={"description": "shed"}, headers=ADMIN).json()
    beacon = client.get(f"/geofences/{minor}/beacons/generate", headers=ADMIN).json()
    assert beacon == {"uuid": str(SYSTEM_UUID), "major": 1, "minor": minor}
    beacon["location"] = "Gate"
    assert client.post("/beacons", json=beacon, headers=ADMIN).json() is True

    event = {"kind": "modify_counter", "minor": minor, "trigger": {"direction": "Enter", "delay": 0}}
    assert client.post("/events", json=event, headers=ADMIN).json() == 1
    counter_id = client.get(f"/geofences/{minor}/events/1", headers=ADMIN).json()["counter_id"]

    device_id = client.post("/devices", json={"address": ADDRESS}).json()
    report = {"beacons": [{"uuid": str(SYSTEM_UUID), "major": 1, "minor": minor}]}
    r = client.put(f"/devices/{device_id}/beacons", json=report, headers=DEVICE)
    assert r.status_code == 200
    assert client.get(f"/counters/{counter_id}", headers=ADMIN).json() == 1

    assert client.get(f"/geofences/{minor}/beacons/1", headers=ADMIN).json()["location"] == "Gate"
    assert client.get("/beacons", headers=ADMIN).json()[0]["major"] == 1


def test_not_found_and_conflict(client):
    assert client.delete("/geofences/9", headers=ADMIN).status_code == 404
    assert client.post("/devices", json={"address": ADDRESS}).status_code == 200
    assert client.post("/devices", json={"address": ADDRESS}).status_code == 409


def test_remove_geofence_with_content(client):
    minor = client.post("/geofences", json={"description": "shed"}, headers=ADMIN).json()
    client.post("/beacons", json={"uuid": str(SYSTEM_UUID), "major": 1, "minor": minor}, headers=ADMIN)
    assert client.delete(f"/geofences/{minor}", headers=ADMIN).json() is False
    assert client.delete(f"/geofences/{minor}/beacons/1", headers=ADMIN).json() is True
    assert client.delete(f"/geofences/{minor}", headers=ADMIN).json() is True


def test_verification_link(client, system):
    system.mail_registry.add_address_on_hold("coach@club.test")
    r = client.get("/verification/coach@club.test")
    assert r.status_code == 200
    assert "verified" in r.text
    assert client.get("/mail/confirmed", headers=ADMIN).json() == ["coach@club.test"]
