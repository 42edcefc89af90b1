"""Daemon provenance and time helpers."""

import os
import socket
from datetime import datetime, timezone


def daemon_identity() -> str:
    """Identifier stamped on every record this process produces."""
    return f"daemon-{socket.gethostname()}-{os.getpid()}"


def utc_now() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
