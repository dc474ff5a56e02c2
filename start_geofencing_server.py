#!/usr/bin/env python3
"""
Startup script for the geofencing server.
Loads the configuration file, builds the system and serves the HTTP API.
"""

import argparse
import sys

import uvicorn

from geofencing.config import SystemConfiguration
from geofencing.exceptions import ConfigurationError
from geofencing.logging_config import setup_logging
from geofencing.system import GeofencingSystem
from geofencing_api.api import create_app


def main():
    parser = argparse.ArgumentParser(description="Geofencing Server")
    parser.add_argument("--config", default="configuration.json", help="Configuration file path")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--log-dir", default="logs", help="Directory for log files")

    args = parser.parse_args()
    logger = setup_logging(args.log_dir)

    config = SystemConfiguration(args.config)
    try:
        config.load()
        config.get_value("admin_password")
    except ConfigurationError as e:
        logger.error(f"Fill in {args.config} before starting the server", "STARTUP", e)
        sys.exit(1)

    system = GeofencingSystem(config)
    logger.info(f"System uuid {config.get_uuid()}", "STARTUP")
    logger.info(f"Starting geofencing server on {args.host}:{args.port}", "STARTUP")
    try:
        uvicorn.run(create_app(system), host=args.host, port=args.port)
    except KeyboardInterrupt:
        logger.info("Shutting down geofencing server...", "STARTUP")
    finally:
        system.db.dispose()


if __name__ == "__main__":
    main()
