"""Base classes and data structures for measurement tool output parsing."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError

from errors import NormalizationFailed

logger = logging.getLogger(__name__)

# How much raw output to include in diagnostic logs
RAW_LOG_LIMIT = 2000


@dataclass
class ParsedSpeedTest:
    """Normalized result of one speedtest CLI run."""

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


@dataclass
class ParsedIperfTest:
    """Normalized result of one iperf3 client run."""

    timestamp: datetime
    sent_mbps: float
    received_mbps: float
    duration_seconds: int
    protocol: str = "TCP"
    retransmits: Optional[float] = None
    mean_rtt_ms: Optional[float] = None  # None means "no data", 0.0 is a measurement


class BaseParser(ABC):
    """Abstract base class for tool output parsers."""

    source_type: str = "unknown"

    @abstractmethod
    def parse(self, data: bytes, **kwargs) -> Any:
        """Parse raw tool output.  Raises NormalizationFailed."""
        pass

    def _validate(self, model, data: bytes):
        """Validate raw JSON bytes against a pydantic model of the tool's output."""
        if not data or not data.strip():
            raise self._fail("empty output", data)
        try:
            return model.model_validate_json(data)
        except ValidationError as e:
            reason = e.errors()[0].get("msg", str(e)) if e.errors() else str(e)
            raise self._fail(reason, data) from e

    def _fail(self, reason: str, data: bytes) -> NormalizationFailed:
        text = data.decode("utf-8", errors="replace") if data else ""
        logger.warning(f"Failed to parse {self.source_type} JSON: {reason}")
        logger.debug(f"Raw {self.source_type} output: {text[:RAW_LOG_LIMIT]}")
        return NormalizationFailed(self.source_type, reason, raw=data or b"")
