from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, Header
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse

from geofencing.system import GeofencingSystem

from . import schemas
from .service import GeofencingService


def _respond(result) -> JSONResponse:
    status, payload = result
    return JSONResponse(status_code=status, content=payload)


def create_app(system: GeofencingSystem) -> FastAPI:
    """FastAPI app over one GeofencingSystem; the scheduler runs for the app's lifetime."""
    service = GeofencingService(system)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        system.start()
        try:
            yield
        finally:
            system.stop()

    app = FastAPI(title="Geofencing Service", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"],
    )
    app.state.service = service

    @app.get("/state")
    def service_state():
        return _respond(service.service_state())

    @app.get("/password")
    def check_password(authorization: Optional[str] = Header(None)):
        return _respond(service.check_password(authorization))

    # ---- devices ----

    @app.get("/devices")
    def get_devices(authorization: Optional[str] = Header(None)):
        return _respond(service.get_devices(authorization))

    @app.post("/devices")
    def register_device(payload: schemas.DeviceRegister):
        return _respond(service.register_device(payload.address))

    @app.get("/devices/{device_id}")
    def get_device(device_id: int, authorization: Optional[str] = Header(None)):
        return _respond(service.get_device(device_id, authorization))

    @app.put("/devices/{device_id}/beacons")
    def update_device(device_id: int, payload: schemas.BeaconReport, authorization: Optional[str] = Header(None)):
        return _respond(service.update_device(device_id, payload.to_beacons(), authorization))

    @app.put("/devices/{device_id}/token")
    def update_device_token(device_id: int, payload: schemas.DeviceTokenUpdate,
                            authorization: Optional[str] = Header(None)):
        return _respond(service.update_device_token(device_id, payload.token, authorization))

    @app.delete("/devices/{device_id}")
    def remove_device(device_id: int, authorization: Optional[str] = Header(None)):
        return _respond(service.remove_device(device_id, authorization))

    # ---- geofences & events ----

    @app.get("/geofences")
    def get_geofence_list(authorization: Optional[str] = Header(None)):
        return _respond(service.get_geofence_list(authorization))

    @app.post("/geofences")
    def add_geofence(payload: schemas.GeofenceCreate, authorization: Optional[str] = Header(None)):
        return _respond(service.add_geofence(payload.description, authorization))

    @app.delete("/geofences/{minor}")
    def remove_geofence(minor: int, authorization: Optional[str] = Header(None)):
        return _respond(service.remove_geofence(minor, authorization))

    @app.get("/geofences/{minor}/events")
    def get_event_list(minor: int, authorization: Optional[str] = Header(None)):
        return _respond(service.get_event_list(minor, authorization))

    @app.get("/geofences/{minor}/events/{event_id}")
    def get_event(minor: int, event_id: int, authorization: Optional[str] = Header(None)):
        return _respond(service.get_event(minor, event_id, authorization))

    @app.delete("/geofences/{minor}/events/{event_id}")
    def remove_event(minor: int, event_id: int, authorization: Optional[str] = Header(None)):
        return _respond(service.remove_event(minor, event_id, authorization))

    @app.post("/events")
    def add_event(payload: Dict[str, Any] = Body(...), authorization: Optional[str] = Header(None)):
        return _respond(service.add_event(payload, authorization))

    @app.post("/geofences/{minor}/trigger")
    def trigger_geofence(minor: int, payload: schemas.TriggerRequest, authorization: Optional[str] = Header(None)):
        return _respond(service.trigger_geofence(minor, payload.direction, payload.device_id, authorization))

    # ---- beacons ----

    @app.get("/beacons")
    def get_all_beacons(authorization: Optional[str] = Header(None)):
        return _respond(service.get_beacons(None, authorization))

    @app.post("/beacons")
    def add_beacon(payload: schemas.BeaconIn, authorization: Optional[str] = Header(None)):
        return _respond(service.add_beacon(payload.to_beacon(), authorization))

    @app.post("/beacons/data")
    def get_beacon_data(payload: schemas.BeaconReport, authorization: Optional[str] = Header(None)):
        return _respond(service.get_beacon_data(payload.to_beacons(), authorization))

    @app.get("/geofences/{minor}/beacons")
    def get_beacons(minor: int, authorization: Optional[str] = Header(None)):
        return _respond(service.get_beacons(minor, authorization))

    # declared before /{major} so "generate" is not parsed as a major
    @app.get("/geofences/{minor}/beacons/generate")
    def generate_beacon(minor: int, authorization: Optional[str] = Header(None)):
        return _respond(service.generate_beacon(minor, authorization))

    @app.get("/geofences/{minor}/beacons/{major}")
    def get_beacon(minor: int, major: int, authorization: Optional[str] = Header(None)):
        return _respond(service.get_beacon(minor, major, authorization))

    @app.delete("/geofences/{minor}/beacons/{major}")
    def remove_beacon(minor: int, major: int, authorization: Optional[str] = Header(None)):
        return _respond(service.remove_beacon(minor, major, authorization))

    # ---- counters ----

    @app.get("/counters")
    def get_counter_list(authorization: Optional[str] = Header(None)):
        return _respond(service.get_counter_list(authorization))

    @app.post("/counters")
    def add_counter(authorization: Optional[str] = Header(None)):
        return _respond(service.add_counter(authorization))

    @app.get("/counters/{counter_id}")
    def get_counter_value(counter_id: int, authorization: Optional[str] = Header(None)):
        return _respond(service.get_counter_value(counter_id, authorization))

    @app.delete("/counters/{counter_id}")
    def remove_counter(counter_id: int, authorization: Optional[str] = Header(None)):
        return _respond(service.remove_counter(counter_id, authorization))

    @app.get("/geofences/{minor}/counter")
    def get_geofence_counter_value(minor: int, authorization: Optional[str] = Header(None)):
        return _respond(service.get_geofence_counter_value(minor, authorization))

    # ---- mail links ----

    @app.get("/verification/{address}", response_class=HTMLResponse)
    def verify_mail(address: str):
        return service.verify_mail(address)

    @app.get("/unsubscribe/{address}", response_class=HTMLResponse)
    def unsubscribe_mail(address: str):
        return service.unsubscribe_mail(address)

    @app.get("/mail/confirmed")
    def confirmed_addresses(authorization: Optional[str] = Header(None)):
        return _respond(service.confirmed_addresses(authorization))

    return app
