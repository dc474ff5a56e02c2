#!/usr/bin/env python3
"""Seed a running geofencing server with a demo geofence, beacons and events."""
from __future__ import annotations

import argparse

import requests


BASE = "http://localhost:8000"


def main():
    parser = argparse.ArgumentParser(description="Seed demo data into a geofencing server")
    parser.add_argument("--server-url", default=BASE)
    parser.add_argument("--password", required=True, help="Admin password")
    args = parser.parse_args()

    base = args.server_url.rstrip("/")
    auth = {"Authorization": args.password}

    minor = requests.post(f"{base}/geofences", json={"description": "Boat shed"}, headers=auth, timeout=5).json()
    for location in ("Front door", "Back door"):
        beacon = requests.get(f"{base}/geofences/{minor}/beacons/generate", headers=auth, timeout=5).json()
        beacon["location"] = location
        requests.post(f"{base}/beacons", json=beacon, headers=auth, timeout=5)

    events = [
        {"kind": "geofence_counter", "minor": minor, "description": "People in the shed"},
        {"kind": "modify_counter", "minor": minor, "description": "Visits",
         "trigger": {"direction": "Enter", "delay": 0}, "mode": "increment"},
        {"kind": "admin_notification", "minor": minor, "description": "Still inside",
         "trigger": {"direction": "Enter", "delay": 600},
         "title": "Boat shed", "message": "A device has been inside for 10 minutes"},
    ]
    for e in events:
        requests.post(f"{base}/events", json=e, headers=auth, timeout=5)

    print(f"Seeded geofence {minor} with beacons and events.")


if __name__ == "__main__":
    main()
