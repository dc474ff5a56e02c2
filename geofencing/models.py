from __future__ import annotations

from typing import List, Optional
from sqlalchemy import Integer, String, Float, JSON, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


class Device(Base):
    __tablename__ = "devices"

    device_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    address: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    last_updated: Mapped[float] = mapped_column(Float, nullable=False)
    push_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # [{"uuid": ..., "major": ..., "minor": ...}, ...] currently in range
    beacons: Mapped[list] = mapped_column(JSON, nullable=False, default=list)


class Geofence(Base):
    __tablename__ = "geofences"

    minor: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # highest event id ever assigned; never reused after removal
    last_event_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    beacons: Mapped[List["BeaconRecord"]] = relationship(
        "BeaconRecord", back_populates="geofence", lazy="selectin", order_by="BeaconRecord.major"
    )
    events: Mapped[List["EventRecord"]] = relationship(
        "EventRecord", back_populates="geofence", lazy="selectin", order_by="EventRecord.event_id"
    )


class BeaconRecord(Base):
    __tablename__ = "beacons"
    __table_args__ = (UniqueConstraint("uuid", "major", "minor", name="uq_beacon_identity"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[str] = mapped_column(String(36), nullable=False)
    major: Mapped[int] = mapped_column(Integer, nullable=False)
    minor: Mapped[int] = mapped_column(ForeignKey("geofences.minor"), nullable=False)
    location: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    geofence: Mapped[Geofence] = relationship("Geofence", back_populates="beacons")


class EventRecord(Base):
    __tablename__ = "events"
    __table_args__ = (UniqueConstraint("minor", "event_id", name="uq_event_id_per_geofence"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    minor: Mapped[int] = mapped_column(ForeignKey("geofences.minor"), nullable=False)
    event_id: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    geofence: Mapped[Geofence] = relationship("Geofence", back_populates="events")


class Counter(Base):
    __tablename__ = "counters"

    counter_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class AddressOnHold(Base):
    __tablename__ = "mail_on_hold"

    address: Mapped[str] = mapped_column(String, primary_key=True)
    requested_at: Mapped[float] = mapped_column(Float, nullable=False)  # epoch seconds


class ConfirmedAddress(Base):
    __tablename__ = "mail_confirmed"

    address: Mapped[str] = mapped_column(String, primary_key=True)
