#!/usr/bin/env python3
"""
Persistence for devices, geofences, beacons and events.

Identifiers are handed out as max+1 of what exists; a freed minor or major is
not reused while a higher one is still registered.
"""
from __future__ import annotations

import uuid as uuid_lib
from typing import Iterable, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from .beacons import LOCATION_NOT_SET, Beacon, BeaconChange, BeaconSet, beacon_set, diff_beacons
from .db import Database
from .events import Event, parse_event
from .exceptions import AlreadyExistingError, NotFoundError
from .logging_config import get_logger
from .models import BeaconRecord, Device, EventRecord, Geofence

logger = get_logger()


def _to_beacon(record: BeaconRecord) -> Beacon:
    return Beacon(uuid_lib.UUID(record.uuid), record.major, record.minor, record.location or LOCATION_NOT_SET)


def _to_event(record: EventRecord) -> Event:
    event = parse_event(record.payload)
    event.event_id = record.event_id
    event.minor = record.minor
    return event


class GeofencingStore:
    def __init__(self, db: Database):
        self.db = db

    # ---- devices ----

    def insert_device(self, device_id: int, address: str, last_updated: float) -> Device:
        try:
            with self.db.session_scope() as s:
                device = Device(device_id=device_id, address=address, last_updated=last_updated, beacons=[])
                s.add(device)
                s.flush()
                return device
        except IntegrityError as e:
            raise AlreadyExistingError(f"Device {address}") from e

    def find_device(self, device_id: int) -> Device:
        with self.db.session_scope() as s:
            device = s.get(Device, device_id)
            if device is None:
                raise NotFoundError(f"Device {device_id}")
            return device

    def find_device_by_address(self, address: str) -> Device:
        with self.db.session_scope() as s:
            device = s.scalar(select(Device).where(Device.address == address))
            if device is None:
                raise NotFoundError(f"Device {address}")
            return device

    def is_device_existing(self, device_id: int) -> bool:
        with self.db.session_scope() as s:
            return s.get(Device, device_id) is not None

    def is_address_registered(self, address: str) -> bool:
        with self.db.session_scope() as s:
            return s.scalar(select(Device.device_id).where(Device.address == address)) is not None

    def find_devices(self) -> List[Device]:
        with self.db.session_scope() as s:
            return list(s.scalars(select(Device).order_by(Device.device_id)).all())

    def update_device_token(self, device_id: int, token: Optional[str], now: float) -> Device:
        with self.db.session_scope() as s:
            device = s.get(Device, device_id)
            if device is None:
                raise NotFoundError(f"Device {device_id}")
            device.push_token = token
            device.last_updated = now
            return device

    def update_device_beacons(self, device_id: int, beacons: Iterable[Beacon], now: float) -> Optional[BeaconChange]:
        """Replace the stored snapshot with beacons and return what changed.

        Read, diff and write happen in one session. Nothing is written when
        the snapshot is unchanged.
        """
        current = beacon_set(beacons)
        with self.db.session_scope() as s:
            device = s.get(Device, device_id)
            if device is None:
                raise NotFoundError(f"Device {device_id}")
            previous = [Beacon.from_dict(b) for b in device.beacons or []]
            change = diff_beacons(previous, current)
            if change is None:
                return None
            device.beacons = [b.to_dict(include_location=False) for b in sorted(current, key=str)]
            device.last_updated = now
        return change

    def device_beacons(self, device_id: int) -> BeaconSet:
        device = self.find_device(device_id)
        return beacon_set(Beacon.from_dict(b) for b in device.beacons or [])

    def remove_device(self, device_id: int) -> bool:
        with self.db.session_scope() as s:
            removed = s.execute(delete(Device).where(Device.device_id == device_id)).rowcount
        if not removed:
            raise NotFoundError(f"Device {device_id}")
        return True

    # ---- geofences ----

    def next_minor(self) -> int:
        with self.db.session_scope() as s:
            return (s.scalar(select(func.max(Geofence.minor))) or 0) + 1

    def insert_geofence(self, description: str) -> int:
        with self.db.session_scope() as s:
            minor = (s.scalar(select(func.max(Geofence.minor))) or 0) + 1
            s.add(Geofence(minor=minor, description=description or "", last_event_id=0))
        logger.info(f"Geofence {minor} added", "GEOFENCE")
        return minor

    def find_geofence(self, minor: int) -> Geofence:
        with self.db.session_scope() as s:
            geofence = s.get(Geofence, minor)
            if geofence is None:
                raise NotFoundError(f"Geofence {minor}")
            return geofence

    def is_geofence_existing(self, minor: int) -> bool:
        with self.db.session_scope() as s:
            return s.get(Geofence, minor) is not None

    def find_geofences(self) -> List[Geofence]:
        with self.db.session_scope() as s:
            return list(s.scalars(select(Geofence).order_by(Geofence.minor)).all())

    def remove_geofence(self, minor: int) -> bool:
        """False while the geofence still owns beacons or events."""
        with self.db.session_scope() as s:
            geofence = s.get(Geofence, minor)
            if geofence is None:
                raise NotFoundError(f"Geofence {minor}")
            if geofence.beacons or geofence.events:
                return False
            s.delete(geofence)
        logger.info(f"Geofence {minor} removed", "GEOFENCE")
        return True

    # ---- beacons ----

    def next_major(self, minor: int) -> int:
        with self.db.session_scope() as s:
            highest = s.scalar(select(func.max(BeaconRecord.major)).where(BeaconRecord.minor == minor))
            return (highest or 0) + 1

    def insert_beacon(self, beacon: Beacon) -> bool:
        """Persist beacon; False if its identity is already registered."""
        try:
            with self.db.session_scope() as s:
                if s.get(Geofence, beacon.minor) is None:
                    raise NotFoundError(f"Geofence {beacon.minor}")
                s.add(BeaconRecord(
                    uuid=str(beacon.uuid), major=beacon.major, minor=beacon.minor,
                    location=beacon.location or LOCATION_NOT_SET,
                ))
        except IntegrityError:
            logger.warning(f"Beacon {beacon} already registered", "GEOFENCE")
            return False
        logger.info(f"Beacon {beacon} added", "GEOFENCE")
        return True

    def find_beacon(self, minor: int, major: int) -> Beacon:
        with self.db.session_scope() as s:
            record = s.scalar(select(BeaconRecord).where(BeaconRecord.minor == minor, BeaconRecord.major == major))
            if record is None:
                raise NotFoundError(f"Beacon {minor}/{major}")
            return _to_beacon(record)

    def find_registered(self, beacon: Beacon) -> Optional[Beacon]:
        """The stored beacon with the same identity, or None."""
        with self.db.session_scope() as s:
            record = s.scalar(select(BeaconRecord).where(
                BeaconRecord.uuid == str(beacon.uuid),
                BeaconRecord.major == beacon.major,
                BeaconRecord.minor == beacon.minor,
            ))
            return _to_beacon(record) if record is not None else None

    def find_beacons(self, minor: Optional[int] = None) -> List[Beacon]:
        with self.db.session_scope() as s:
            stmt = select(BeaconRecord)
            if minor is not None:
                stmt = stmt.where(BeaconRecord.minor == minor)
            records = s.scalars(stmt.order_by(BeaconRecord.minor, BeaconRecord.major)).all()
            return [_to_beacon(r) for r in records]

    def remove_beacon(self, minor: int, major: int) -> bool:
        with self.db.session_scope() as s:
            removed = s.execute(
                delete(BeaconRecord).where(BeaconRecord.minor == minor, BeaconRecord.major == major)
            ).rowcount
        if not removed:
            raise NotFoundError(f"Beacon {minor}/{major}")
        logger.info(f"Beacon {minor}/{major} removed", "GEOFENCE")
        return True

    # ---- events ----

    def next_event_id(self, minor: int) -> int:
        with self.db.session_scope() as s:
            geofence = s.get(Geofence, minor)
            if geofence is None:
                raise NotFoundError(f"Geofence {minor}")
            return geofence.last_event_id + 1

    def insert_event(self, event: Event) -> Event:
        """Assign the next event id of the event's geofence and persist it.

        Ids of removed events are not handed out again.
        """
        with self.db.session_scope() as s:
            geofence = s.get(Geofence, event.minor)
            if geofence is None:
                raise NotFoundError(f"Geofence {event.minor}")
            geofence.last_event_id += 1
            event.event_id = geofence.last_event_id
            s.add(EventRecord(
                minor=event.minor, event_id=event.event_id, kind=event.kind,
                description=event.description, payload=event.model_dump(mode="json"),
            ))
        logger.info(f"Event {event.minor}/{event.event_id} ({event.kind}) added", "GEOFENCE")
        return event

    def find_event(self, minor: int, event_id: int) -> Event:
        with self.db.session_scope() as s:
            record = s.scalar(select(EventRecord).where(EventRecord.minor == minor, EventRecord.event_id == event_id))
            if record is None:
                raise NotFoundError(f"Event {minor}/{event_id}")
            return _to_event(record)

    def find_events(self, minor: int) -> List[Event]:
        """Events of a geofence in evaluation order."""
        with self.db.session_scope() as s:
            if s.get(Geofence, minor) is None:
                raise NotFoundError(f"Geofence {minor}")
            records = s.scalars(
                select(EventRecord).where(EventRecord.minor == minor).order_by(EventRecord.event_id)
            ).all()
            return [_to_event(r) for r in records]

    def remove_event(self, minor: int, event_id: int) -> bool:
        with self.db.session_scope() as s:
            removed = s.execute(
                delete(EventRecord).where(EventRecord.minor == minor, EventRecord.event_id == event_id)
            ).rowcount
        if not removed:
            raise NotFoundError(f"Event {minor}/{event_id}")
        logger.info(f"Event {minor}/{event_id} removed", "GEOFENCE")
        return True
