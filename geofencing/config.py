#!/usr/bin/env python3
"""
System configuration: a JSON key/value file with environment overrides.

Every value can be overridden with an environment variable named
GEOFENCING_<KEY> (upper case), e.g. GEOFENCING_ADMIN_PASSWORD.
Missing files and missing keys lead to an empty template being written so
the operator knows which values to fill in.
"""
from __future__ import annotations

import json
import os
import threading
import uuid as uuid_lib
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional

from .exceptions import ConfigError, ConfigurationError, UnauthorizedError
from .logging_config import get_logger

logger = get_logger()

ADMIN_PASSWORD = "admin_password"
UUID = "uuid"
DATABASE_URL = "database_url"

BASE_KEYS = (ADMIN_PASSWORD, DATABASE_URL)
DEFAULT_DATABASE_URL = "sqlite:///geofencing.db"
ENV_PREFIX = "GEOFENCING_"


class SystemConfiguration:
    """Reads and writes deployment parameters.

    One instance is created at startup and handed to every collaborator that
    needs deployment values (database, mail, push gateway, service layer).
    """

    def __init__(self, path: str = "configuration.json", environ: Optional[Mapping[str, str]] = None):
        self.path = Path(path)
        self.environ = os.environ if environ is None else environ
        self._lock = threading.RLock()

    def load(self) -> Dict[str, str]:
        """Load configuration file; a missing file is generated empty and reported."""
        with self._lock:
            if not self.path.exists():
                self.generate_configuration()
                raise ConfigurationError(ConfigError.FILE_NOT_EXISTING)
            try:
                with open(self.path, "r") as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                logger.error(f"Could not read configuration {self.path}", "CONFIG", e)
                raise ConfigurationError(ConfigError.OTHER) from e
            if not isinstance(data, dict):
                raise ConfigurationError(ConfigError.OTHER)
            return {str(k): "" if v is None else str(v) for k, v in data.items()}

    def save(self, values: Dict[str, str]) -> bool:
        with self._lock:
            try:
                if self.path.parent and not self.path.parent.exists():
                    self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "w") as f:
                    json.dump(values, f, indent=2, sort_keys=True)
                return True
            except OSError as e:
                raise ConfigurationError(ConfigError.COULDNT_WRITE_FILE) from e

    def generate_configuration(self):
        """Write a configuration template with all base keys left empty."""
        with self._lock:
            try:
                self.save({key: "" for key in BASE_KEYS})
                logger.warning(f"Configuration file not found - generated empty file in {self.path.resolve()}", "CONFIG")
            except ConfigurationError as e:
                logger.error("Could not generate configuration file", "CONFIG", e)

    def get_value(self, key: str) -> str:
        """Return a non-empty value for key, env override first."""
        env_value = self.environ.get(ENV_PREFIX + key.upper())
        if env_value:
            return env_value
        value = self.load().get(key)
        if value is None:
            raise ConfigurationError(ConfigError.VALUE_NOT_FOUND, key)
        if value == "":
            raise ConfigurationError(ConfigError.VALUE_NOT_SET, key)
        return value

    def get_int(self, key: str) -> int:
        value = self.get_value(key)
        try:
            return int(value)
        except ValueError as e:
            raise ConfigurationError(ConfigError.OTHER, key) from e

    def get_optional(self, key: str, default: Optional[str] = None) -> Optional[str]:
        try:
            return self.get_value(key)
        except ConfigurationError:
            return default

    def set_value(self, key: str, value: str) -> bool:
        """Set key to value, creating the file when needed."""
        with self._lock:
            try:
                values = self.load()
            except ConfigurationError:
                values = {}
            values[key] = value
            try:
                return self.save(values)
            except ConfigurationError:
                return False

    def ensure_keys(self, keys: Iterable[str], defaults: Optional[Mapping[str, str]] = None) -> None:
        """Add every missing key as a template entry; existing values are kept."""
        defaults = defaults or {}
        with self._lock:
            try:
                values = self.load()
            except ConfigurationError:
                values = {}
            for key in keys:
                values.setdefault(key, defaults.get(key, ""))
            self.save(values)

    def check_password(self, password: Optional[str]) -> bool:
        """Raise UnauthorizedError unless password matches the admin password."""
        try:
            expected = self.get_value(ADMIN_PASSWORD)
        except ConfigurationError:
            logger.error("Configuration error: admin password not set in configuration", "CONFIG")
            raise ConfigurationError(ConfigError.VALUE_NOT_SET, ADMIN_PASSWORD)
        if password is None or password != expected:
            raise UnauthorizedError()
        return True

    def get_uuid(self) -> uuid_lib.UUID:
        """System beacon UUID; generated and persisted on first use."""
        with self._lock:
            try:
                return uuid_lib.UUID(self.get_value(UUID))
            except (ConfigurationError, ValueError):
                generated = uuid_lib.uuid4()
                self.set_value(UUID, str(generated))
                logger.info(f"Generated system UUID {generated}", "CONFIG")
                return generated

    def get_database_url(self) -> str:
        return self.get_optional(DATABASE_URL, DEFAULT_DATABASE_URL)
