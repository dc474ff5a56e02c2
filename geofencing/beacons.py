#!/usr/bin/env python3
"""
Beacon identities and presence diffing.

A beacon is identified by (uuid, major, minor). The minor names the geofence
the beacon belongs to, the major numbers the beacon inside that geofence.
The location label is descriptive only and never part of the identity.
"""
from __future__ import annotations

import uuid as uuid_lib
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Optional

LOCATION_NOT_SET = "-not set-"


@dataclass(frozen=True)
class Beacon:
    uuid: uuid_lib.UUID
    major: int
    minor: int
    location: Optional[str] = field(default=None, compare=False, hash=False)

    @property
    def key(self):
        return (self.uuid, self.major, self.minor)

    def with_location(self, location: Optional[str]) -> "Beacon":
        return Beacon(self.uuid, self.major, self.minor, location)

    def to_dict(self, include_location: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {"uuid": str(self.uuid), "major": self.major, "minor": self.minor}
        if include_location and self.location is not None:
            data["location"] = self.location
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Beacon":
        raw_uuid = data["uuid"]
        return cls(
            uuid=raw_uuid if isinstance(raw_uuid, uuid_lib.UUID) else uuid_lib.UUID(str(raw_uuid)),
            major=int(data["major"]),
            minor=int(data["minor"]),
            location=data.get("location"),
        )

    def __str__(self) -> str:
        return f"{self.uuid}:{self.major}:{self.minor}"


BeaconSet = FrozenSet[Beacon]


def beacon_set(beacons: Iterable[Beacon]) -> BeaconSet:
    """Collapse beacons into a set unique by identity key (first label wins)."""
    seen: Dict[tuple, Beacon] = {}
    for beacon in beacons:
        seen.setdefault(beacon.key, beacon)
    return frozenset(seen.values())


@dataclass(frozen=True)
class BeaconChange:
    """Beacons that came into range (entered) and went out of range (left)."""
    entered: BeaconSet
    left: BeaconSet


def diff_beacons(previous: Iterable[Beacon], current: Iterable[Beacon]) -> Optional[BeaconChange]:
    """Compare two snapshots of a device.

    Returns None when nothing changed, so callers can skip persisting the
    snapshot and evaluating triggers.
    """
    before = beacon_set(previous)
    after = beacon_set(current)
    entered = after - before
    left = before - after
    if not entered and not left:
        return None
    return BeaconChange(entered=frozenset(entered), left=frozenset(left))
