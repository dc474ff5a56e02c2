#!/usr/bin/env python3
"""
Service layer
Authorizes each call, runs it against the GeofencingSystem and maps failure
kinds to status codes. Every method returns (status_code, payload).

Authorization is the admin password, or for device-owned resources the mail
address the device registered with.
"""
from __future__ import annotations

import html
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from pydantic import ValidationError

from geofencing.beacons import Beacon
from geofencing.events import Direction, Event, parse_event
from geofencing.exceptions import (
    AlreadyExistingError,
    InvalidAddressError,
    NotFoundError,
    UnauthorizedError,
)
from geofencing.logging_config import get_logger
from geofencing.models import Counter, Device, Geofence
from geofencing.system import GeofencingSystem

logger = get_logger()

Result = Tuple[int, Any]


def _ok(payload: Any) -> Result:
    return 200, payload


def _bad_request(msg: str) -> Result:
    return 400, {"success": False, "error": msg}


def _unauthorized(msg: str) -> Result:
    return 401, {"success": False, "error": msg}


def _not_found(msg: str) -> Result:
    return 404, {"success": False, "error": msg}


def _conflict(msg: str) -> Result:
    return 409, {"success": False, "error": msg}


def device_to_dict(device: Device) -> Dict[str, Any]:
    return {
        "device_id": device.device_id,
        "address": device.address,
        "last_updated": device.last_updated,
        "push_token": device.push_token,
        "beacons": list(device.beacons or []),
    }


def beacon_to_dict(beacon: Beacon) -> Dict[str, Any]:
    return beacon.to_dict()


def event_to_dict(event: Event) -> Dict[str, Any]:
    return event.model_dump(mode="json")


def geofence_to_dict(system: GeofencingSystem, geofence: Geofence) -> Dict[str, Any]:
    return {
        "minor": geofence.minor,
        "description": geofence.description,
        "beacons": [beacon_to_dict(b) for b in system.get_beacons(geofence.minor)],
        "events": [event_to_dict(e) for e in system.get_event_list(geofence.minor)],
    }


def counter_to_dict(counter: Counter) -> Dict[str, Any]:
    return {"counter_id": counter.counter_id, "value": counter.value}


class GeofencingService:
    def __init__(self, system: GeofencingSystem):
        self.system = system

    def _call(self, operation: str, fn: Callable[[], Any]) -> Result:
        try:
            return _ok(fn())
        except UnauthorizedError as e:
            return _unauthorized(str(e))
        except NotFoundError as e:
            return _not_found(str(e))
        except AlreadyExistingError as e:
            return _conflict(str(e))
        except (InvalidAddressError, ValidationError, ValueError) as e:
            return _bad_request(str(e))
        except Exception as e:
            logger.error(f"{operation} failed", "SERVICE", e)
            return 500, {"success": False, "error": str(e)}

    # ---- authorization ----

    def _require_admin(self, auth: Optional[str]):
        self.system.config.check_password(auth)

    def _require_device(self, device_id: int, auth: Optional[str]):
        if not self.system.authenticate_device(device_id, auth):
            raise UnauthorizedError()

    def _require_device_or_admin(self, device_id: int, auth: Optional[str]) -> str:
        """Returns who is calling, for the audit log."""
        if self.system.authenticate_device(device_id, auth):
            return f"device:{device_id}"
        self._require_admin(auth)
        return "admin"

    def _require_registered_or_admin(self, auth: Optional[str]):
        if not self.system.is_registered_address(auth):
            self._require_admin(auth)

    # ---- state ----

    def service_state(self) -> Result:
        return _ok(True)

    def check_password(self, password: Optional[str]) -> Result:
        """200 with True/False; a wrong password is not an error here."""
        def check():
            try:
                self._require_admin(password)
                return True
            except UnauthorizedError:
                return False
        return self._call("check_password", check)

    # ---- devices ----

    def get_devices(self, auth: Optional[str]) -> Result:
        def run():
            self._require_admin(auth)
            return [device_to_dict(d) for d in self.system.get_devices()]
        return self._call("get_devices", run)

    def get_device(self, device_id: int, auth: Optional[str]) -> Result:
        def run():
            self._require_device_or_admin(device_id, auth)
            return device_to_dict(self.system.get_device(device_id))
        return self._call("get_device", run)

    def register_device(self, address: str) -> Result:
        return self._call("register_device", lambda: self.system.add_device(address))

    def update_device(self, device_id: int, beacons: Iterable[Beacon], auth: Optional[str]) -> Result:
        def run():
            self._require_device(device_id, auth)
            self.system.update_device_beacons(device_id, list(beacons))
            return True
        return self._call("update_device", run)

    def update_device_token(self, device_id: int, token: Optional[str], auth: Optional[str]) -> Result:
        def run():
            self._require_device(device_id, auth)
            self.system.update_device_token(device_id, token)
            return True
        return self._call("update_device_token", run)

    def remove_device(self, device_id: int, auth: Optional[str]) -> Result:
        def run():
            operator = self._require_device_or_admin(device_id, auth)
            removed = self.system.remove_device(device_id)
            logger.audit("remove_device", operator, f"device {device_id}")
            return removed
        return self._call("remove_device", run)

    # ---- geofences ----

    def get_geofence_list(self, auth: Optional[str]) -> Result:
        def run():
            self._require_admin(auth)
            return [geofence_to_dict(self.system, g) for g in self.system.get_geofence_list()]
        return self._call("get_geofence_list", run)

    def add_geofence(self, description: str, auth: Optional[str]) -> Result:
        def run():
            self._require_admin(auth)
            minor = self.system.add_geofence(description)
            logger.audit("add_geofence", "admin", f"minor {minor}")
            return minor
        return self._call("add_geofence", run)

    def remove_geofence(self, minor: int, auth: Optional[str]) -> Result:
        def run():
            self._require_admin(auth)
            removed = self.system.remove_geofence(minor)
            logger.audit("remove_geofence", "admin", f"minor {minor} removed={removed}")
            return removed
        return self._call("remove_geofence", run)

    # ---- events ----

    def get_event_list(self, minor: int, auth: Optional[str]) -> Result:
        def run():
            self._require_admin(auth)
            return [event_to_dict(e) for e in self.system.get_event_list(minor)]
        return self._call("get_event_list", run)

    def get_event(self, minor: int, event_id: int, auth: Optional[str]) -> Result:
        def run():
            self._require_admin(auth)
            return event_to_dict(self.system.get_event(minor, event_id))
        return self._call("get_event", run)

    def add_event(self, event_json: Any, auth: Optional[str]) -> Result:
        """Add a serialized event; the payload is the new event id or False if discarded."""
        def run():
            self._require_admin(auth)
            event = parse_event(event_json)
            event_id = self.system.add_event_to_geofence(event)
            logger.audit("add_event", "admin", f"{event.kind} on geofence {event.minor} -> {event_id}")
            return event_id if event_id is not None else False
        return self._call("add_event", run)

    def remove_event(self, minor: int, event_id: int, auth: Optional[str]) -> Result:
        def run():
            self._require_admin(auth)
            removed = self.system.remove_event(minor, event_id)
            logger.audit("remove_event", "admin", f"event {minor}/{event_id}")
            return removed
        return self._call("remove_event", run)

    def trigger_geofence(self, minor: int, direction: str, device_id: int, auth: Optional[str]) -> Result:
        """Manually run the triggers of a geofence for one device."""
        def run():
            self._require_admin(auth)
            return self.system.trigger_geofence(minor, Direction(direction), device_id)
        return self._call("trigger_geofence", run)

    # ---- beacons ----

    def get_beacons(self, minor: Optional[int], auth: Optional[str]) -> Result:
        def run():
            self._require_admin(auth)
            return [beacon_to_dict(b) for b in self.system.get_beacons(minor)]
        return self._call("get_beacons", run)

    def get_beacon(self, minor: int, major: int, auth: Optional[str]) -> Result:
        def run():
            self._require_admin(auth)
            return beacon_to_dict(self.system.get_beacon(minor, major))
        return self._call("get_beacon", run)

    def generate_beacon(self, minor: int, auth: Optional[str]) -> Result:
        def run():
            self._require_admin(auth)
            return beacon_to_dict(self.system.generate_beacon(minor))
        return self._call("generate_beacon", run)

    def add_beacon(self, beacon: Beacon, auth: Optional[str]) -> Result:
        def run():
            self._require_admin(auth)
            added = self.system.add_beacon(beacon)
            logger.audit("add_beacon", "admin", f"{beacon} added={added}")
            return added
        return self._call("add_beacon", run)

    def remove_beacon(self, minor: int, major: int, auth: Optional[str]) -> Result:
        def run():
            self._require_admin(auth)
            removed = self.system.remove_beacon(minor, major)
            logger.audit("remove_beacon", "admin", f"beacon {minor}/{major}")
            return removed
        return self._call("remove_beacon", run)

    def get_beacon_data(self, beacons: Iterable[Beacon], auth: Optional[str]) -> Result:
        def run():
            self._require_registered_or_admin(auth)
            return [beacon_to_dict(b) for b in self.system.get_beacon_data(beacons)]
        return self._call("get_beacon_data", run)

    # ---- counters ----

    def get_counter_list(self, auth: Optional[str]) -> Result:
        def run():
            self._require_admin(auth)
            return [counter_to_dict(c) for c in self.system.counters.find_counter_list()]
        return self._call("get_counter_list", run)

    def get_counter_value(self, counter_id: int, auth: Optional[str]) -> Result:
        def run():
            self._require_admin(auth)
            return self.system.counters.find_counter(counter_id).value
        return self._call("get_counter_value", run)

    def get_geofence_counter_value(self, minor: int, auth: Optional[str]) -> Result:
        def run():
            self._require_admin(auth)
            counter_id = self.system.get_geofence_counter_id(minor)
            return self.system.counters.find_counter(counter_id).value
        return self._call("get_geofence_counter_value", run)

    def add_counter(self, auth: Optional[str]) -> Result:
        def run():
            self._require_admin(auth)
            counter_id = self.system.counters.insert_counter()
            logger.audit("add_counter", "admin", f"counter {counter_id}")
            return counter_id
        return self._call("add_counter", run)

    def remove_counter(self, counter_id: int, auth: Optional[str]) -> Result:
        def run():
            self._require_admin(auth)
            removed = self.system.counters.remove_counter(counter_id)
            logger.audit("remove_counter", "admin", f"counter {counter_id}")
            return removed
        return self._call("remove_counter", run)

    # ---- mail links ----

    def verify_mail(self, address: str) -> str:
        """HTML answer for the verification link of a mail."""
        shown = html.escape(address)
        try:
            if self.system.mail_registry.confirm_mailaddress(address):
                return f"<h2>{shown} verified</h2>"
            return f"<h2>Verification attempt expired for {shown}</h2>"
        except NotFoundError:
            return f"<h2>No verification attempt found or link expired for {shown}</h2>"
        except InvalidAddressError:
            return f"<h2>400 Bad Request<br><br>Address {shown} in wrong format</h2>"
        except Exception as e:
            logger.error(f"Verification of {address} failed", "SERVICE", e)
            return f"<h2>500 Internal Server Error</h2><br><br> Message: {html.escape(str(e))}"

    def unsubscribe_mail(self, address: str) -> str:
        shown = html.escape(address)
        try:
            self.system.mail_registry.unregister_mailaddress(address)
            return f"<h2>Address {shown} unsubscribed</h2>"
        except NotFoundError:
            return f"<h2>Address {shown} not found</h2>"
        except InvalidAddressError:
            return f"<h2>400 Bad Request<br><br>Address {shown} in wrong format</h2>"
        except Exception as e:
            logger.error(f"Unsubscribing {address} failed", "SERVICE", e)
            return f"<h2>500 Internal Server Error</h2><br><br> Message: {html.escape(str(e))}"

    def confirmed_addresses(self, auth: Optional[str]) -> Result:
        def run():
            self._require_admin(auth)
            return self.system.mail_registry.find_confirmed_addresses()
        return self._call("confirmed_addresses", run)
