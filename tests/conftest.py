import json
import os
import tempfile
import uuid

import pytest

os.environ.setdefault("GEOFENCING_LOG_DIR", tempfile.mkdtemp(prefix="geofencing-logs-"))

from geofencing.config import SystemConfiguration  # noqa: E402
from geofencing.db import Database  # noqa: E402
from geofencing.exceptions import MailError  # noqa: E402
from geofencing.system import GeofencingSystem  # noqa: E402

SYSTEM_UUID = uuid.UUID("f7826da6-4fa2-4e98-8024-bc5b71e0893e")
ADMIN_PASSWORD = "secret"


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakePushGateway:
    def __init__(self):
        self.sent = []
        self.missing_keys = set()

    def has_server_key(self, key):
        return key not in self.missing_keys

    def send_to_admins(self, title, body):
        self.sent.append(("admins", title, body))
        return True

    def send_to_device(self, title, body, token):
        self.sent.append((token, title, body))
        return True


class FakeMailTransport:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, recipient, subject, body):
        if self.fail:
            raise MailError("smtp down")
        self.sent.append((recipient, subject, body))
        return True


def base_values(db_url):
    return {
        "admin_password": ADMIN_PASSWORD,
        "uuid": str(SYSTEM_UUID),
        "database_url": db_url,
        "firebase_url": "https://push.test/send",
        "admin_server_key": "admin-key",
        "device_server_key": "device-key",
        "service_url": "http://geo.test",
        "mail_host": "smtp.test",
        "mail_port": "465",
        "mail_encrypt_method": "SSL",
        "mail_username": "geo",
        "mail_password": "pw",
        "sender_address": "noreply@geo.test",
        "sender_name": "Geofencing",
        "confirmation_timeout": "600",
        "delete_timeout": "3600",
    }


@pytest.fixture
def config(tmp_path):
    path = tmp_path / "configuration.json"
    path.write_text(json.dumps(base_values(f"sqlite:///{tmp_path / 'geofencing.db'}")))
    return SystemConfiguration(str(path), environ={})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monotonic():
    return FakeClock(0.0)


@pytest.fixture
def push():
    return FakePushGateway()


@pytest.fixture
def mail_transport():
    return FakeMailTransport()


@pytest.fixture
def database(config):
    db = Database(config.get_database_url())
    db.init_db()
    yield db
    db.dispose()


@pytest.fixture
def system(config, database, push, mail_transport, clock, monotonic):
    s = GeofencingSystem(config, database=database, push_gateway=push, mail_transport=mail_transport,
                         clock=clock, monotonic=monotonic)
    yield s
    s.stop()


@pytest.fixture
def shed(system):
    """A geofence with two registered beacons: (minor, b1, b2)."""
    minor = system.add_geofence("Boat shed")
    b1 = system.generate_beacon(minor).with_location("Front door")
    assert system.add_beacon(b1)
    b2 = system.generate_beacon(minor).with_location("Back door")
    assert system.add_beacon(b2)
    return minor, b1, b2


@pytest.fixture
def device_id(system):
    return system.add_device("rower@club.test")