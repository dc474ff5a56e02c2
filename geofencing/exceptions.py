#!/usr/bin/env python3
"""
Failure kinds raised by the geofencing engine.
The service layer maps each kind onto an HTTP status code.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional


class GeofencingError(Exception):
    """Base class for all engine failures."""


class NotFoundError(GeofencingError):
    def __init__(self, what: str):
        super().__init__(f"Not found: {what}")
        self.what = what


class AlreadyExistingError(GeofencingError):
    def __init__(self, what: str):
        super().__init__(f"Already existing: {what}")
        self.what = what


class UnauthorizedError(GeofencingError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class InvalidAddressError(GeofencingError):
    def __init__(self, address: str):
        super().__init__(f"Mail address in wrong format: {address}")
        self.address = address


class MailError(GeofencingError):
    """Mail could not be handed to the SMTP server."""


class PushError(GeofencingError):
    """Push gateway rejected or never received a notification."""


class ConfigError(Enum):
    VALUE_NOT_FOUND = "ValueNotFound"
    VALUE_NOT_SET = "ValueNotSet"
    FILE_NOT_EXISTING = "FileNotExisting"
    COULDNT_WRITE_FILE = "CouldntWriteFile"
    OTHER = "Other"


class ConfigurationError(GeofencingError):
    """Configuration file missing or a required value not set."""

    def __init__(self, error: ConfigError, key: Optional[str] = None):
        detail = f" ({key})" if key else ""
        super().__init__(f"Error with settings: {error.value}{detail}")
        self.error = error
        self.key = key

    @property
    def needs_template(self) -> bool:
        """True when the file or key is absent, so a template should be written."""
        return self.error in (ConfigError.FILE_NOT_EXISTING, ConfigError.VALUE_NOT_FOUND)
