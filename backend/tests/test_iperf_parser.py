"""Tests for the iperf3 JSON parser."""

import json
from datetime import datetime

import pytest

from errors import NormalizationFailed
from parsers import IperfParser, get_parser


def encode(doc) -> bytes:
    return json.dumps(doc).encode("utf-8")


class TestIperfParserParse:
    """Normalization of iperf3 -J output."""

    def test_minimal_document(self):
        data = (
            b'{"end":{"sum_sent":{"bits_per_second":100000000,"retransmits":3},'
            b'"sum_received":{"bits_per_second":95000000},'
            b'"streams":[{"sender":{"mean_rtt":15000}}]}}'
        )
        parsed = IperfParser().parse(data)
        assert parsed.sent_mbps == pytest.approx(100.0)
        assert parsed.received_mbps == pytest.approx(95.0)
        assert parsed.retransmits == 3.0
        assert isinstance(parsed.retransmits, float)
        assert parsed.mean_rtt_ms == pytest.approx(15.0)
        assert parsed.protocol == "TCP"
        assert parsed.duration_seconds == 10

    def test_full_document(self, iperf_output):
        parsed = IperfParser().parse(iperf_output)
        assert parsed.timestamp == datetime(2024, 5, 1, 12, 0, 0)
        assert parsed.sent_mbps == pytest.approx(941.0)
        assert parsed.received_mbps == pytest.approx(938.0)
        assert parsed.mean_rtt_ms == pytest.approx(1.25)
        assert parsed.duration_seconds == 10

    def test_empty_streams_leaves_rtt_absent(self, iperf_doc):
        iperf_doc["end"]["streams"] = []
        parsed = IperfParser().parse(encode(iperf_doc))
        assert parsed.mean_rtt_ms is None

    def test_zero_rtt_is_a_measurement(self, iperf_doc):
        iperf_doc["end"]["streams"][0]["sender"]["mean_rtt"] = 0
        parsed = IperfParser().parse(encode(iperf_doc))
        assert parsed.mean_rtt_ms == 0.0

    def test_missing_retransmits(self, iperf_doc):
        del iperf_doc["end"]["sum_sent"]["retransmits"]
        parsed = IperfParser().parse(encode(iperf_doc))
        assert parsed.retransmits is None

    def test_requested_duration_wins(self, iperf_output):
        parsed = IperfParser().parse(iperf_output, duration=30)
        assert parsed.duration_seconds == 30

    def test_udp_uses_combined_sum(self):
        doc = {
            "start": {"test_start": {"protocol": "udp", "duration": 5}},
            "end": {"streams": [], "sum": {"bits_per_second": 1000000}},
        }
        parsed = IperfParser().parse(encode(doc))
        assert parsed.protocol == "UDP"
        assert parsed.sent_mbps == pytest.approx(1.0)
        assert parsed.received_mbps == pytest.approx(1.0)
        assert parsed.duration_seconds == 5

    def test_registry_alias(self):
        assert isinstance(get_parser("iperf"), IperfParser)
        assert isinstance(get_parser("IPERF3"), IperfParser)

    def test_unknown_tool(self):
        with pytest.raises(ValueError, match="Unknown parser"):
            get_parser("ping")


class TestIperfParserFailures:
    """Unusable output raises NormalizationFailed."""

    def test_error_document(self):
        doc = {"start": {}, "end": {}, "error": "unable to connect to server: Connection refused"}
        with pytest.raises(NormalizationFailed, match="Connection refused"):
            IperfParser().parse(encode(doc))

    def test_missing_end(self):
        with pytest.raises(NormalizationFailed, match="missing end"):
            IperfParser().parse(b'{"start": {}}')

    def test_missing_sums(self):
        with pytest.raises(NormalizationFailed, match="sum_sent"):
            IperfParser().parse(b'{"end": {"streams": []}}')

    def test_unsupported_protocol(self, iperf_doc):
        iperf_doc["start"]["test_start"]["protocol"] = "SCTP"
        with pytest.raises(NormalizationFailed, match="unsupported protocol SCTP"):
            IperfParser().parse(encode(iperf_doc))

    def test_truncated_json(self, iperf_output):
        with pytest.raises(NormalizationFailed):
            IperfParser().parse(iperf_output[: len(iperf_output) // 2])

    def test_whitespace_only(self):
        with pytest.raises(NormalizationFailed, match="empty output"):
            IperfParser().parse(b"  \n")
