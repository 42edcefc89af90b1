"""Parser for iperf3 client output (``iperf3 -J``)."""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel

from schemas import VALID_PROTOCOLS
from utils.identity import utc_now
from .base import BaseParser, ParsedIperfTest


class _Timestamp(BaseModel):
    timesecs: Optional[int] = None


class _TestStart(BaseModel):
    protocol: Optional[str] = None
    duration: Optional[int] = None


class _Start(BaseModel):
    timestamp: Optional[_Timestamp] = None
    test_start: Optional[_TestStart] = None


class _Sender(BaseModel):
    mean_rtt: Optional[float] = None  # microseconds


class _Stream(BaseModel):
    sender: Optional[_Sender] = None


class _Sum(BaseModel):
    bits_per_second: float = 0.0
    retransmits: Optional[float] = None


class _End(BaseModel):
    streams: List[_Stream] = []
    sum_sent: Optional[_Sum] = None
    sum_received: Optional[_Sum] = None
    sum: Optional[_Sum] = None  # UDP runs only report a combined sum


class IperfResult(BaseModel):
    """The subset of the iperf3 JSON document we read."""

    start: Optional[_Start] = None
    end: Optional[_End] = None
    error: Optional[str] = None


class IperfParser(BaseParser):
    """Normalizes iperf3 JSON into a ParsedIperfTest."""

    source_type: str = "iperf3"

    def parse(self, data: bytes, duration: Optional[int] = None, **kwargs) -> ParsedIperfTest:
        result = self._validate(IperfResult, data)

        if result.error:
            raise self._fail(result.error, data)
        if result.end is None:
            raise self._fail("missing end section", data)

        end = result.end
        sent = end.sum_sent or end.sum
        received = end.sum_received or end.sum
        if sent is None or received is None:
            raise self._fail("missing sum_sent/sum_received", data)
        if sent.bits_per_second < 0 or received.bits_per_second < 0:
            raise self._fail("negative throughput", data)

        test_start = result.start.test_start if result.start else None
        if duration is None:
            duration = test_start.duration if test_start and test_start.duration else 10
        protocol = (test_start.protocol if test_start and test_start.protocol else "TCP").upper()
        if protocol not in VALID_PROTOCOLS:
            raise self._fail(f"unsupported protocol {protocol}", data)

        parsed = ParsedIperfTest(
            timestamp=self._timestamp(result),
            sent_mbps=sent.bits_per_second / 1_000_000,
            received_mbps=received.bits_per_second / 1_000_000,
            duration_seconds=duration,
            protocol=protocol,
        )

        if sent.retransmits is not None:
            parsed.retransmits = float(sent.retransmits)

        # No stream means no RTT data; a reported 0 is kept as 0.0
        if end.streams and end.streams[0].sender and end.streams[0].sender.mean_rtt is not None:
            parsed.mean_rtt_ms = end.streams[0].sender.mean_rtt / 1000

        return parsed

    @staticmethod
    def _timestamp(result: IperfResult) -> datetime:
        if result.start and result.start.timestamp and result.start.timestamp.timesecs:
            return datetime.fromtimestamp(
                result.start.timestamp.timesecs, tz=timezone.utc
            ).replace(tzinfo=None)
        return utc_now()
