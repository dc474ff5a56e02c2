#!/usr/bin/env python3
"""
Logging configuration for the geofencing server
Provides centralized logging with file output, error log and audit trail
"""

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class GeofencingLogger:
    """Centralized logging system for the geofencing engine."""

    def __init__(self, log_dir: str = "logs", max_log_size: int = 10 * 1024 * 1024, backup_count: int = 5):
        """
        Initialize logging system.

        Args:
            log_dir: Directory to store log files
            max_log_size: Maximum size of each log file in bytes (default: 10MB)
            backup_count: Number of backup log files to keep
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.detailed_formatter = logging.Formatter(
            '%(asctime)s | %(levelname)-8s | %(name)-20s | %(funcName)-15s:%(lineno)-4d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        self.simple_formatter = logging.Formatter(
            '%(asctime)s | %(levelname)s | %(message)s',
            datefmt='%H:%M:%S'
        )

        self._setup_main_logger(max_log_size, backup_count)
        self._setup_error_logger(max_log_size, backup_count)
        self._setup_audit_logger(max_log_size, backup_count)

        self.status = {
            'system_started': datetime.now(timezone.utc),
            'last_error': None,
            'error_count': 0,
        }

    @staticmethod
    def _reset_handlers(logger: logging.Logger):
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

    def _setup_main_logger(self, max_log_size: int, backup_count: int):
        """Setup main application logger."""
        self.main_logger = logging.getLogger('geofencing')
        self.main_logger.setLevel(logging.INFO)
        self._reset_handlers(self.main_logger)

        file_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / 'geofencing.log', maxBytes=max_log_size, backupCount=backup_count
        )
        file_handler.setFormatter(self.detailed_formatter)
        file_handler.setLevel(logging.INFO)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(self.simple_formatter)
        console_handler.setLevel(logging.INFO)

        self.main_logger.addHandler(file_handler)
        self.main_logger.addHandler(console_handler)

    def _setup_error_logger(self, max_log_size: int, backup_count: int):
        """Setup error-specific logger."""
        self.error_logger = logging.getLogger('geofencing.errors')
        self.error_logger.setLevel(logging.ERROR)
        self.error_logger.propagate = False
        self._reset_handlers(self.error_logger)

        error_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / 'errors.log', maxBytes=max_log_size, backupCount=backup_count
        )
        error_handler.setFormatter(self.detailed_formatter)
        error_handler.setLevel(logging.ERROR)

        self.error_logger.addHandler(error_handler)

    def _setup_audit_logger(self, max_log_size: int, backup_count: int):
        """Setup audit trail logger for operator actions."""
        self.audit_logger = logging.getLogger('geofencing.audit')
        self.audit_logger.setLevel(logging.INFO)
        self.audit_logger.propagate = False
        self._reset_handlers(self.audit_logger)

        audit_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / 'audit.log', maxBytes=max_log_size, backupCount=backup_count
        )
        audit_handler.setFormatter(self.detailed_formatter)
        audit_handler.setLevel(logging.INFO)

        self.audit_logger.addHandler(audit_handler)

    def info(self, message: str, component: str = "SYSTEM"):
        self.main_logger.info(f"[{component}] {message}")

    def warning(self, message: str, component: str = "SYSTEM"):
        self.main_logger.warning(f"[{component}] {message}")

    def error(self, message: str, component: str = "SYSTEM", exception: Optional[Exception] = None):
        """Log error message with optional exception details."""
        error_msg = f"[{component}] {message}"
        if exception:
            error_msg += f" | Exception: {type(exception).__name__}: {str(exception)}"

        self.main_logger.error(error_msg)
        self.error_logger.error(error_msg)

        self.status['last_error'] = {
            'timestamp': datetime.now(timezone.utc),
            'message': message,
            'component': component,
            'exception': str(exception) if exception else None
        }
        self.status['error_count'] += 1

    def debug(self, message: str, component: str = "SYSTEM"):
        self.main_logger.debug(f"[{component}] {message}")

    def audit(self, action: str, user: str = "SYSTEM", details: str = ""):
        """Log audit trail entry."""
        audit_msg = f"USER:{user} | ACTION:{action}"
        if details:
            audit_msg += f" | DETAILS:{details}"

        self.audit_logger.info(audit_msg)
        self.main_logger.info(f"[AUDIT] {audit_msg}")

    def get_status(self) -> dict:
        return self.status.copy()


# Global logger instance
logger_instance = None


def get_logger() -> GeofencingLogger:
    """Get the global logger instance."""
    global logger_instance
    if logger_instance is None:
        logger_instance = GeofencingLogger(os.getenv('GEOFENCING_LOG_DIR', 'logs'))
    return logger_instance


def setup_logging(log_dir: str = "logs") -> GeofencingLogger:
    """Setup and return logger instance."""
    global logger_instance
    logger_instance = GeofencingLogger(log_dir)
    return logger_instance
