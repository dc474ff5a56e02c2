from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from geofencing.beacons import Beacon
from geofencing.events import Direction


class BeaconIn(BaseModel):
    uuid: UUID
    major: int = Field(ge=0)
    minor: int = Field(ge=0)
    location: Optional[str] = None

    def to_beacon(self) -> Beacon:
        return Beacon(self.uuid, self.major, self.minor, self.location)


class BeaconReport(BaseModel):
    beacons: List[BeaconIn] = Field(default_factory=list)

    def to_beacons(self) -> List[Beacon]:
        return [b.to_beacon() for b in self.beacons]


class DeviceRegister(BaseModel):
    address: str


class DeviceTokenUpdate(BaseModel):
    token: Optional[str] = None


class GeofenceCreate(BaseModel):
    description: str = ""


class TriggerRequest(BaseModel):
    device_id: int
    direction: Direction
