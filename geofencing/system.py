#!/usr/bin/env python3
"""
GeofencingSystem - wires configuration, store, counters, mail, push and the
delayed-check scheduler together and implements the engine operations.

Flow of a beacon report:
    device posts its full beacon set -> filter to registered beacons
    -> diff against stored snapshot -> for every changed beacon trigger its
    geofence (Enter/Leave) -> each event checks its trigger -> fire now or
    schedule a delayed re-check
"""
from __future__ import annotations

import random
import time
from typing import Callable, Iterable, List, Optional

from .beacons import Beacon, BeaconChange, BeaconSet
from .config import SystemConfiguration
from .counters import CounterStore
from .db import Database
from .events import Direction, Event, GeofenceCounterEvent
from .exceptions import AlreadyExistingError, NotFoundError
from .logging_config import get_logger
from .mail import MailInterface, MailRegistry, validate_address
from .models import Device, Geofence
from .notifications import FirebasePushGateway
from .scheduler import DelayedCheck, DelayedCheckScheduler
from .store import GeofencingStore

logger = get_logger()

MAX_DEVICE_ID = 2 ** 31 - 1


class GeofencingSystem:
    def __init__(self, config: SystemConfiguration, database: Optional[Database] = None,
                 push_gateway=None, mail_transport=None,
                 clock: Callable[[], float] = time.time,
                 monotonic: Callable[[], float] = time.monotonic):
        self.config = config
        self.clock = clock
        self.db = database or Database(config.get_database_url())
        self.db.init_db()
        self.store = GeofencingStore(self.db)
        self.counters = CounterStore(self.db)
        self.mail_registry = MailRegistry(self.db, config, clock=clock)
        self.mail = MailInterface(config, self.mail_registry, transport=mail_transport)
        self.push = push_gateway or FirebasePushGateway(config)
        self.scheduler = DelayedCheckScheduler(self.run_delayed_check, clock=monotonic)

    def start(self):
        self.scheduler.start()

    def stop(self):
        self.scheduler.stop()

    # ---- devices ----

    def add_device(self, address: str) -> int:
        """Register a device under its mail address; returns the new device id."""
        address = validate_address(address)
        if self.store.is_address_registered(address):
            raise AlreadyExistingError(f"Device {address}")
        device_id = random.randint(1, MAX_DEVICE_ID)
        while self.store.is_device_existing(device_id):
            device_id = random.randint(1, MAX_DEVICE_ID)
        self.store.insert_device(device_id, address, self.clock())
        logger.info(f"Device {device_id} registered for {address}", "DEVICE")
        return device_id

    def get_device(self, device_id: int) -> Device:
        return self.store.find_device(device_id)

    def get_devices(self) -> List[Device]:
        return self.store.find_devices()

    def authenticate_device(self, device_id: int, address: Optional[str]) -> bool:
        """True if address is the mail address the device registered with."""
        if not address:
            return False
        try:
            return self.store.find_device(device_id).address == address
        except NotFoundError:
            return False

    def is_registered_address(self, address: Optional[str]) -> bool:
        return bool(address) and self.store.is_address_registered(address)

    def update_device_token(self, device_id: int, token: Optional[str]) -> Device:
        device = self.store.update_device_token(device_id, token, self.clock())
        logger.info(f"Push token of device {device_id} updated", "DEVICE")
        return device

    def remove_device(self, device_id: int) -> bool:
        self.store.remove_device(device_id)
        logger.info(f"Device {device_id} removed", "DEVICE")
        return True

    def update_device_beacons(self, device_id: int, beacons: Iterable[Beacon]) -> Optional[BeaconChange]:
        """Store the reported beacon set and trigger geofences for what changed."""
        registered = self.filter_beacons(beacons)
        change = self.store.update_device_beacons(device_id, registered, self.clock())
        if change is None:
            return None
        logger.info(
            f"Device {device_id}: {len(change.entered)} beacons entered, {len(change.left)} left", "DEVICE"
        )
        for beacon in sorted(change.entered, key=str):
            self._trigger_quietly(beacon.minor, Direction.ENTER, device_id)
        for beacon in sorted(change.left, key=str):
            self._trigger_quietly(beacon.minor, Direction.LEAVE, device_id)
        return change

    def _trigger_quietly(self, minor: int, direction: Direction, device_id: int):
        try:
            self.trigger_geofence(minor, direction, device_id)
        except NotFoundError as e:
            logger.warning(f"Geofence {minor} vanished before it could be triggered: {e}", "EVENTS")

    def is_device_in_geofence(self, device_id: int, minor: int) -> bool:
        return any(b.minor == minor for b in self.store.device_beacons(device_id))

    # ---- geofences ----

    def add_geofence(self, description: str) -> int:
        return self.store.insert_geofence(description)

    def remove_geofence(self, minor: int) -> bool:
        return self.store.remove_geofence(minor)

    def get_geofence(self, minor: int) -> Geofence:
        return self.store.find_geofence(minor)

    def get_geofence_list(self) -> List[Geofence]:
        return self.store.find_geofences()

    def trigger_geofence(self, minor: int, direction: Direction, device_id: int) -> int:
        """Let every event of the geofence check its trigger; returns how many matched."""
        matched = 0
        for event in self.store.find_events(minor):
            if event.check_trigger(direction, device_id, self):
                matched += 1
        return matched

    # ---- events ----

    def add_event_to_geofence(self, event: Event, minor: Optional[int] = None) -> Optional[int]:
        """Attach event to its geofence; returns the event id, or None if it was discarded."""
        if minor is not None:
            event.minor = minor
        if not self.store.is_geofence_existing(event.minor):
            raise NotFoundError(f"Geofence {event.minor}")
        given_counter = getattr(event, "counter_id", None)
        if not event.on_add_to_geofence(self):
            logger.warning(f"Event ({event.kind}) rejected by geofence {event.minor}", "EVENTS")
            return None
        try:
            return self.store.insert_event(event).event_id
        except NotFoundError:
            allocated = getattr(event, "counter_id", None)
            if allocated is not None and allocated != given_counter:
                self.counters.remove_counter(allocated)
            raise

    def get_event(self, minor: int, event_id: int) -> Event:
        return self.store.find_event(minor, event_id)

    def get_event_list(self, minor: int) -> List[Event]:
        return self.store.find_events(minor)

    def remove_event(self, minor: int, event_id: int) -> bool:
        return self.store.remove_event(minor, event_id)

    def run_delayed_check(self, item: DelayedCheck):
        try:
            event = self.store.find_event(item.minor, item.event_id)
            event.check_delayed(item.device_id, Direction(item.direction), self)
        except NotFoundError as e:
            logger.warning(f"Delayed check for device {item.device_id} dropped: {e}", "EVENTS")

    # ---- beacons ----

    def generate_beacon(self, minor: int) -> Beacon:
        """Next free identity in the geofence; the beacon is not added."""
        if not self.store.is_geofence_existing(minor):
            raise NotFoundError(f"Geofence {minor}")
        return Beacon(self.config.get_uuid(), self.store.next_major(minor), minor)

    def add_beacon(self, beacon: Beacon) -> bool:
        if beacon.uuid != self.config.get_uuid():
            logger.warning(f"Beacon {beacon} rejected - foreign uuid", "GEOFENCE")
            return False
        return self.store.insert_beacon(beacon)

    def remove_beacon(self, minor: int, major: int) -> bool:
        return self.store.remove_beacon(minor, major)

    def get_beacon(self, minor: int, major: int) -> Beacon:
        return self.store.find_beacon(minor, major)

    def get_beacons(self, minor: Optional[int] = None) -> List[Beacon]:
        if minor is not None and not self.store.is_geofence_existing(minor):
            raise NotFoundError(f"Geofence {minor}")
        return self.store.find_beacons(minor)

    def filter_beacons(self, beacons: Iterable[Beacon]) -> List[Beacon]:
        """Keep only registered beacons, carrying their stored location."""
        registered = []
        for beacon in beacons:
            stored = self.store.find_registered(beacon)
            if stored is not None:
                registered.append(stored)
        return registered

    def get_beacon_data(self, beacons: Iterable[Beacon]) -> List[Beacon]:
        """Stored record for registered beacons, unknown beacons unchanged."""
        return [self.store.find_registered(b) or b for b in beacons]

    def device_beacons(self, device_id: int) -> BeaconSet:
        return self.store.device_beacons(device_id)

    # ---- counters ----

    def get_geofence_counter_id(self, minor: int) -> int:
        for event in self.store.find_events(minor):
            if isinstance(event, GeofenceCounterEvent) and event.counter_id is not None:
                return event.counter_id
        raise NotFoundError(f"Geofence counter of geofence {minor}")
