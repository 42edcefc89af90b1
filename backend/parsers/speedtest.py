"""Parser for Ookla speedtest CLI output (``speedtest --format=json``)."""

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel

from utils.identity import utc_now, to_naive_utc
from .base import BaseParser, ParsedSpeedTest

BANDWIDTH_UNITS = ("bits", "bytes")


class _Ping(BaseModel):
    jitter: float = 0.0
    latency: float = 0.0


class _Transfer(BaseModel):
    bandwidth: float = 0.0


class _Server(BaseModel):
    id: Union[int, str, None] = None
    name: str = ""


class _Interface(BaseModel):
    externalIp: str = ""


class _Result(BaseModel):
    url: str = ""


class OoklaResult(BaseModel):
    """The subset of the speedtest JSON document we read."""

    type: Optional[str] = None
    message: Optional[str] = None
    timestamp: Optional[datetime] = None
    ping: Optional[_Ping] = None
    download: Optional[_Transfer] = None
    upload: Optional[_Transfer] = None
    isp: str = ""
    interface: _Interface = _Interface()
    server: _Server = _Server()
    result: _Result = _Result()


class SpeedtestParser(BaseParser):
    """Normalizes speedtest JSON into a ParsedSpeedTest.

    ``bandwidth_unit`` selects how the ``bandwidth`` field is read:
    ``"bits"`` divides by 1,000,000, ``"bytes"`` multiplies by 8 first.
    """

    source_type: str = "speedtest"

    def __init__(self, bandwidth_unit: str = "bits"):
        if bandwidth_unit not in BANDWIDTH_UNITS:
            raise ValueError(
                f"Unknown bandwidth unit: {bandwidth_unit}. Available: {', '.join(BANDWIDTH_UNITS)}"
            )
        self.bandwidth_unit = bandwidth_unit

    def parse(self, data: bytes, **kwargs) -> ParsedSpeedTest:
        result = self._validate(OoklaResult, data)

        # The CLI reports failures as {"type": "log", "level": "error", ...}
        if result.type is not None and result.type != "result":
            raise self._fail(result.message or f"unexpected document type '{result.type}'", data)

        missing = [
            name for name in ("ping", "download", "upload")
            if getattr(result, name) is None
        ]
        if missing:
            raise self._fail(f"missing {', '.join(missing)}", data)

        if result.download.bandwidth < 0 or result.upload.bandwidth < 0:
            raise self._fail("negative bandwidth", data)

        parsed = ParsedSpeedTest(
            timestamp=to_naive_utc(result.timestamp) if result.timestamp else utc_now(),
            download_mbps=self._to_mbps(result.download.bandwidth),
            upload_mbps=self._to_mbps(result.upload.bandwidth),
            ping_ms=result.ping.latency,
        )

        # Optional fields are only set when the tool reported something
        if result.ping.jitter > 0:
            parsed.jitter_ms = result.ping.jitter
        if result.server.name:
            parsed.server_name = result.server.name
        if result.server.id not in (None, "", 0, "0"):
            parsed.server_id = str(result.server.id)
        if result.isp:
            parsed.isp = result.isp
        if result.interface.externalIp:
            parsed.external_ip = result.interface.externalIp
        if result.result.url:
            parsed.result_url = result.result.url

        return parsed

    def _to_mbps(self, bandwidth: float) -> float:
        if self.bandwidth_unit == "bytes":
            return bandwidth * 8 / 1_000_000
        return bandwidth / 1_000_000
