"""Application configuration."""

import os
from pathlib import Path

# Base directory of the db-pulse project
BASE_DIR = Path(__file__).resolve().parent.parent.parent


class Config:
    SECRET_KEY = os.environ.get(
        "SECRET_KEY",
        "change-me-in-production-" + os.urandom(8).hex(),
    )

    # Directory where the encrypted server store + secret key are kept.
    # Override via the  DB_PULSE_DATA_DIR  env var.
    DATA_DIR = os.environ.get("DB_PULSE_DATA_DIR", str(BASE_DIR / "data"))

    # Live refresh defaults (milliseconds)
    REFRESH_INTERVAL_MS = int(os.environ.get("REFRESH_INTERVAL_MS", 5000))
    STATUS_INTERVAL_MS = int(os.environ.get("STATUS_INTERVAL_MS", 5000))

    # Default row limit for the "top N" metric collectors
    TOP_QUERY_LIMIT = int(os.environ.get("TOP_QUERY_LIMIT", 10))

    # Seconds a socket handler waits for the refresh loop to accept a command
    HUB_CALL_TIMEOUT = float(os.environ.get("HUB_CALL_TIMEOUT", 10))

    # Seconds before a connection attempt to a monitored server gives up
    CONNECT_TIMEOUT = int(os.environ.get("CONNECT_TIMEOUT", 10))

    # -----------------------------------------------------------------------
    # Secrets & network security
    # -----------------------------------------------------------------------

    ENCRYPTION_KEY = os.environ.get("ENCRYPTION_KEY")
    SSL_CA_BUNDLE = os.environ.get("SSL_CA_BUNDLE")  # Path to custom internal CA certificate
    ENFORCE_DB_SSL = os.environ.get("ENFORCE_DB_SSL", "false").lower() == "true"
