#!/usr/bin/env python3
"""
Device reporter - client side of the geofencing service.
Registers a device, keeps its push token current and posts the full set of
beacons in range whenever it changes. Every change is posted from its own
short-lived daemon thread; posts are fire-and-forget and never coalesced.
"""

import json
import threading
from dataclasses import dataclass
from typing import Iterable, List, Optional

import requests

from geofencing.beacons import Beacon, beacon_set
from geofencing.logging_config import get_logger

logger = get_logger()


@dataclass
class ReporterConfig:
    server_url: str = "http://localhost:8000"
    address: str = ""
    device_id: Optional[int] = None
    timeout: float = 5.0
    dry_run: bool = False


class BeaconReporter:
    def __init__(self, config: ReporterConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self.lock = threading.Lock()
        self.current: frozenset = frozenset()
        self.threads: List[threading.Thread] = []

    @property
    def headers(self):
        return {"Content-Type": "application/json", "Authorization": self.config.address}

    def register(self) -> int:
        """Register the device address and remember the returned device id."""
        response = self.session.post(
            f"{self.config.server_url}/devices",
            json={"address": self.config.address},
            timeout=self.config.timeout,
        )
        response.raise_for_status()
        self.config.device_id = int(response.json())
        logger.info(f"Registered as device {self.config.device_id}", "REPORTER")
        return self.config.device_id

    def update_token(self, token: Optional[str]) -> bool:
        response = self.session.put(
            f"{self.config.server_url}/devices/{self.config.device_id}/token",
            json={"token": token},
            headers=self.headers,
            timeout=self.config.timeout,
        )
        response.raise_for_status()
        return bool(response.json())

    def post_beacons(self, beacons: Iterable[Beacon]) -> bool:
        payload = {"beacons": [b.to_dict(include_location=False) for b in beacons]}
        if self.config.dry_run:
            logger.info(f"[DRY-RUN] Would PUT beacons:\n{json.dumps(payload, indent=2)}", "REPORTER")
            return True
        try:
            response = self.session.put(
                f"{self.config.server_url}/devices/{self.config.device_id}/beacons",
                json=payload,
                headers=self.headers,
                timeout=self.config.timeout,
            )
            response.raise_for_status()
            logger.debug(f"Posted {len(payload['beacons'])} beacons", "REPORTER")
            return True
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to post beacons to server: {e}", "REPORTER")
            return False

    def on_beacons_changed(self, beacons: Iterable[Beacon]) -> Optional[threading.Thread]:
        """Post the new full set in the background; unchanged sets are not posted."""
        snapshot = beacon_set(beacons)
        with self.lock:
            if snapshot == self.current:
                return None
            self.current = snapshot
        thread = threading.Thread(target=self.post_beacons, args=(sorted(snapshot, key=str),), daemon=True)
        with self.lock:
            self.threads = [t for t in self.threads if t.is_alive()]
            self.threads.append(thread)
        thread.start()
        return thread

    def join(self, timeout: Optional[float] = None):
        for thread in list(self.threads):
            thread.join(timeout)
        self.threads = [t for t in self.threads if t.is_alive()]


def _parse_beacon(text: str) -> Beacon:
    uuid, major, minor = text.split(":")
    return Beacon.from_dict({"uuid": uuid, "major": major, "minor": minor})


def main():
    """Post one snapshot of beacons for a device."""
    import argparse

    parser = argparse.ArgumentParser(description="Report beacons in range to the geofencing service")
    parser.add_argument("--server-url", default="http://localhost:8000", help="Server URL")
    parser.add_argument("--address", required=True, help="Mail address the device is registered with")
    parser.add_argument("--device-id", type=int, help="Device id (registers a new device when omitted)")
    parser.add_argument("--token", help="Push token to store for the device")
    parser.add_argument("--dry-run", action="store_true", help="Print payloads instead of sending them")
    parser.add_argument("beacons", nargs="*", help="Beacons in range as uuid:major:minor")

    args = parser.parse_args()

    reporter = BeaconReporter(ReporterConfig(
        server_url=args.server_url.rstrip("/"),
        address=args.address,
        device_id=args.device_id,
        dry_run=args.dry_run,
    ))
    if reporter.config.device_id is None:
        reporter.register()
    if args.token:
        reporter.update_token(args.token)
    reporter.on_beacons_changed([_parse_beacon(b) for b in args.beacons])
    reporter.join()


if __name__ == "__main__":
    main()
