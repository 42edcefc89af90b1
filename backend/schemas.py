"""
Pydantic v2 schemas with strict input validation and lenient output serialization.

Architecture:
  - *Fields classes: pure field definitions, no validators.  Shared by both
    input (Create/Submission) and output (Response) schemas.
  - *Create / *Update / *Submission classes: inherit from *Fields and ADD
    strict validators so bad data is rejected early with clear messages.
  - *Response classes: inherit from *Fields directly (no validators) so any
    row already in the database serializes without crashing.

The *Submission schemas double as the canonical measurement records: the
daemon builds them from tool output and hands them to a submission sink, which
either stores them directly or POSTs them to this API.
"""

from datetime import datetime
from ipaddress import ip_address as parse_ip
from typing import Optional, List
import re

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ── Allowed value sets ───────────────────────────────────────────────

VALID_HOST_CATEGORIES = frozenset({"lan", "vpn", "remote"})

VALID_PROTOCOLS = frozenset({"TCP", "UDP"})

HOSTNAME_RE = re.compile(r"^[a-zA-Z0-9._\-]+$")


# ── Reusable validators ──────────────────────────────────────────────

def _validate_target(value: str) -> str:
    """Validate a hostname or IP address used as an iperf3 target."""
    try:
        parse_ip(value)
        return value
    except ValueError:
        pass
    if len(value) > 255:
        raise ValueError("Hostname too long. Maximum 255 characters allowed")
    if not HOSTNAME_RE.match(value):
        raise ValueError(
            f"Invalid hostname '{value}'. "
            "Use an IP address or only alphanumeric characters, hyphens, dots, and underscores"
        )
    return value


def _validate_category(value: str) -> str:
    lower = value.lower()
    if lower not in VALID_HOST_CATEGORIES:
        raise ValueError(
            f"Invalid host category '{value}'. "
            f"Allowed values: {', '.join(sorted(VALID_HOST_CATEGORIES))}"
        )
    return lower


def _validate_protocol(value: str) -> str:
    upper = value.upper()
    if upper not in VALID_PROTOCOLS:
        raise ValueError(
            f"Invalid protocol '{value}'. "
            f"Allowed values: {', '.join(sorted(VALID_PROTOCOLS))}"
        )
    return upper


# ═══════════════════════════════════════════════════════════════════════
# HOST SCHEMAS
# ═══════════════════════════════════════════════════════════════════════

class HostFields(BaseModel):
    """Pure field definitions for hosts.  No validators."""

    name: str = Field(..., min_length=1, max_length=255)
    hostname: str
    port: int = Field(5201, ge=1, le=65535)
    category: str
    active: bool = True
    description: Optional[str] = Field(None, max_length=5000)


class _HostValidators:
    """Mixin-style validators reused by HostCreate and HostUpdate."""

    @field_validator("hostname")
    @classmethod
    def validate_hostname(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _validate_target(v)

    @field_validator("category")
    @classmethod
    def validate_category(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _validate_category(v)


class HostCreate(HostFields, _HostValidators):
    """Schema for creating a host: fields plus strict validation."""
    pass


class HostUpdate(BaseModel, _HostValidators):
    """Schema for updating a host (all fields optional, with validation)."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    hostname: Optional[str] = None
    port: Optional[int] = Field(None, ge=1, le=65535)
    category: Optional[str] = None
    active: Optional[bool] = None
    description: Optional[str] = Field(None, max_length=5000)


class HostResponse(HostFields):
    """Schema for host responses.  No validators, just serialization."""

    id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ═══════════════════════════════════════════════════════════════════════
# SPEED TEST SCHEMAS
# ═══════════════════════════════════════════════════════════════════════

class SpeedTestFields(BaseModel):
    """Pure field definitions for speed test results.  No validators."""

    timestamp: datetime
    download_mbps: float
    upload_mbps: float
    ping_ms: float
    jitter_ms: Optional[float] = None
    server_name: Optional[str] = None
    server_id: Optional[str] = None
    isp: Optional[str] = None
    external_ip: Optional[str] = None
    result_url: Optional[str] = None
    daemon_id: Optional[str] = None


class SpeedTestSubmission(SpeedTestFields):
    """Canonical speed test record, as produced by a daemon."""

    download_mbps: float = Field(..., ge=0)
    upload_mbps: float = Field(..., ge=0)
    ping_ms: float = Field(..., ge=0)
    jitter_ms: Optional[float] = Field(None, ge=0)
    daemon_id: str = Field(..., min_length=1, max_length=255)


class SpeedTestResponse(SpeedTestFields):
    """Schema for speed test responses."""

    id: int
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ═══════════════════════════════════════════════════════════════════════
# IPERF TEST SCHEMAS
# ═══════════════════════════════════════════════════════════════════════

class IperfTestFields(BaseModel):
    """Pure field definitions for iperf test results.  No validators."""

    timestamp: datetime
    host_id: int
    sent_mbps: float = 0.0
    received_mbps: float = 0.0
    retransmits: Optional[float] = None
    mean_rtt_ms: Optional[float] = None
    duration_seconds: int = 10
    protocol: str = "TCP"
    error_message: Optional[str] = None
    daemon_id: Optional[str] = None


class IperfTestSubmission(IperfTestFields):
    """Canonical iperf test record, as produced by a daemon.

    ``success`` is explicit for tests the daemon ran itself.  When an external
    submitter leaves it out, it is derived from the throughput on save.
    """

    sent_mbps: float = Field(0.0, ge=0)
    received_mbps: float = Field(0.0, ge=0)
    retransmits: Optional[float] = Field(None, ge=0)
    mean_rtt_ms: Optional[float] = Field(None, ge=0)
    duration_seconds: int = Field(10, ge=1)
    success: Optional[bool] = None
    daemon_id: str = Field(..., min_length=1, max_length=255)

    @field_validator("protocol")
    @classmethod
    def validate_protocol(cls, v: str) -> str:
        return _validate_protocol(v)


class IperfTestResponse(IperfTestFields):
    """Schema for iperf test responses.  ``host`` is None once the host is deleted."""

    id: int
    success: bool
    created_at: Optional[datetime] = None
    host: Optional[HostResponse] = None

    model_config = ConfigDict(from_attributes=True)


# ═══════════════════════════════════════════════════════════════════════
# GENERIC
# ═══════════════════════════════════════════════════════════════════════

class PaginatedResponse(BaseModel):
    """Generic paginated response."""

    total: int
    skip: int
    limit: int
    items: List
