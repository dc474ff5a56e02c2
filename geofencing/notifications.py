#!/usr/bin/env python3
"""
Push notifications through Firebase Cloud Messaging (legacy HTTP endpoint).
Admins subscribe to one topic, devices are addressed by their push token.
"""
from __future__ import annotations

from typing import Optional

import requests

from .config import SystemConfiguration
from .exceptions import ConfigurationError, PushError
from .logging_config import get_logger

logger = get_logger()

FIREBASE_URL = "firebase_url"
ADMIN_SERVER_KEY = "admin_server_key"
DEVICE_SERVER_KEY = "device_server_key"

PUSH_KEYS = (FIREBASE_URL, ADMIN_SERVER_KEY, DEVICE_SERVER_KEY)
DEFAULT_FIREBASE_URL = "https://fcm.googleapis.com/fcm/send"
ADMIN_TOPIC = "/topics/geofenceAdministrators"


def generate_push_config(config: SystemConfiguration):
    """Add the push keys to the configuration file as template entries."""
    try:
        config.ensure_keys(PUSH_KEYS, {FIREBASE_URL: DEFAULT_FIREBASE_URL})
        logger.warning("Added push notification configuration template", "PUSH")
    except ConfigurationError as e:
        logger.error("Could not add push notification configuration template", "PUSH", e)


class FirebasePushGateway:
    def __init__(self, config: SystemConfiguration, session: Optional[requests.Session] = None, timeout: float = 5.0):
        self.config = config
        self.session = session or requests.Session()
        self.timeout = timeout

    def server_key_for(self, destination: str) -> str:
        key = ADMIN_SERVER_KEY if destination == ADMIN_TOPIC else DEVICE_SERVER_KEY
        return self.config.get_value(key)

    def has_server_key(self, key: str) -> bool:
        """True when key is configured; a missing key writes the push template."""
        try:
            self.config.get_value(key)
            return True
        except ConfigurationError as e:
            if e.needs_template:
                generate_push_config(self.config)
            logger.error(f"Push notification key '{key}' not configured", "PUSH", e)
            return False

    def send(self, title: str, body: str, destination: str) -> bool:
        try:
            server_key = self.server_key_for(destination)
        except ConfigurationError as e:
            if e.needs_template:
                generate_push_config(self.config)
            raise PushError(str(e)) from e
        url = self.config.get_optional(FIREBASE_URL, DEFAULT_FIREBASE_URL)
        message = {"notification": {"title": title, "body": body}, "to": destination}
        try:
            response = self.session.post(
                url,
                json=message,
                timeout=self.timeout,
                headers={'Content-Type': 'application/json', 'Authorization': f"key={server_key}"},
            )
        except requests.RequestException as e:
            logger.error(f"Push notification to {destination} failed", "PUSH", e)
            raise PushError(str(e)) from e
        if response.status_code != 200:
            raise PushError(f"Push gateway answered {response.status_code}: {response.text}")
        logger.info(f"Push notification '{title}' sent to {destination}", "PUSH")
        return True

    def send_to_admins(self, title: str, body: str) -> bool:
        return self.send(title, body, ADMIN_TOPIC)

    def send_to_device(self, title: str, body: str, token: str) -> bool:
        return self.send(title, body, token)
