"""
Tests for the submission sinks.

Covers:
- Direct storage writes through the service layer
- Remote API submission against the real app over ASGITransport
- Both paths storing identical records
- Transport failures and rejected submissions
"""

from datetime import datetime

import httpx
import pytest
from httpx import AsyncClient

from errors import HostNotFound, SubmissionRejected, SubmissionUnreachable
from schemas import HostCreate, IperfTestSubmission, SpeedTestSubmission
from services import hosts as host_service
from services import measurements
from services.sinks import DirectStorageSink, RemoteAPISink, build_sink


def speed_record(**overrides) -> SpeedTestSubmission:
    data = dict(
        timestamp=datetime(2024, 5, 1, 12, 0, 0),
        download_mbps=123.45,
        upload_mbps=21.5,
        ping_ms=9.8,
        jitter_ms=0.7,
        server_name="Example Networks",
        server_id="12345",
        isp="Example ISP",
        daemon_id="daemon-testbox-4242",
    )
    data.update(overrides)
    return SpeedTestSubmission(**data)


def iperf_record(host_id: int, **overrides) -> IperfTestSubmission:
    data = dict(
        timestamp=datetime(2024, 5, 1, 12, 5, 0),
        host_id=host_id,
        sent_mbps=100.0,
        received_mbps=95.0,
        retransmits=3.0,
        mean_rtt_ms=15.0,
        success=True,
        daemon_id="daemon-testbox-4242",
    )
    data.update(overrides)
    return IperfTestSubmission(**data)


async def add_host(session_factory, name="nas", category="lan", active=True) -> int:
    async with session_factory() as db:
        host = await host_service.create_host(
            db,
            HostCreate(name=name, hostname="192.168.1.10", category=category, active=active),
        )
        return host.id


class TestDirectStorageSink:

    @pytest.mark.asyncio
    async def test_lists_only_active_hosts(self, session_factory):
        await add_host(session_factory, "nas", "lan")
        await add_host(session_factory, "old", "vpn", active=False)

        sink = DirectStorageSink(session_factory)
        hosts = await sink.list_active_hosts()
        assert [h.name for h in hosts] == ["nas"]

    @pytest.mark.asyncio
    async def test_submit_speed_test(self, session_factory):
        sink = DirectStorageSink(session_factory)
        record_id = await sink.submit_speed_test(speed_record())

        async with session_factory() as db:
            stored = await measurements.get_speed_test(db, record_id)
        assert stored.download_mbps == pytest.approx(123.45)
        assert stored.daemon_id == "daemon-testbox-4242"

    @pytest.mark.asyncio
    async def test_submit_iperf_test_unknown_host(self, session_factory):
        sink = DirectStorageSink(session_factory)
        with pytest.raises(HostNotFound):
            await sink.submit_iperf_test(iperf_record(host_id=999))

    @pytest.mark.asyncio
    async def test_submit_failed_iperf_test(self, session_factory):
        host_id = await add_host(session_factory)
        sink = DirectStorageSink(session_factory)
        record_id = await sink.submit_iperf_test(
            iperf_record(host_id, success=False, error_message="iperf3 timed out after 40s")
        )

        async with session_factory() as db:
            stored, _ = await measurements.get_iperf_test(db, record_id)
        assert stored.success is False
        assert stored.error_message == "iperf3 timed out after 40s"
        assert stored.sent_mbps == 0.0
        assert stored.received_mbps == 0.0


class TestRemoteAPISink:

    @pytest.mark.asyncio
    async def test_lists_active_hosts(self, async_client: AsyncClient, session_factory):
        await add_host(session_factory, "nas", "lan")
        await add_host(session_factory, "old", "vpn", active=False)

        sink = RemoteAPISink("http://test", client=async_client)
        hosts = await sink.list_active_hosts()
        assert [h.name for h in hosts] == ["nas"]
        assert hosts[0].port == 5201

    @pytest.mark.asyncio
    async def test_unknown_host_is_host_not_found(self, async_client: AsyncClient):
        sink = RemoteAPISink("http://test", client=async_client)
        with pytest.raises(HostNotFound):
            await sink.submit_iperf_test(iperf_record(host_id=999))

    @pytest.mark.asyncio
    async def test_connection_error_is_unreachable(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
        async with RemoteAPISink("http://api.invalid", client=client) as sink:
            with pytest.raises(SubmissionUnreachable):
                await sink.submit_speed_test(speed_record())
        await client.aclose()

    @pytest.mark.asyncio
    async def test_server_error_is_rejected(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="database locked"))
        )
        sink = RemoteAPISink("http://api.invalid/", client=client)
        with pytest.raises(SubmissionRejected) as exc_info:
            await sink.submit_speed_test(speed_record())
        assert exc_info.value.status_code == 500
        assert "database locked" in str(exc_info.value)
        await client.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        {"text": "created"},
        {"json": {"status": "ok"}},
        {"json": [1, 2]},
    ])
    async def test_success_without_id_is_rejected(self, body):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(201, **body))
        )
        sink = RemoteAPISink("http://api.invalid", client=client)
        with pytest.raises(SubmissionRejected, match="no record id"):
            await sink.submit_speed_test(speed_record())
        with pytest.raises(SubmissionRejected, match="no record id"):
            await sink.submit_iperf_test(iperf_record(host_id=1))
        await client.aclose()

    @pytest.mark.asyncio
    async def test_posts_to_versioned_paths(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            return httpx.Response(201, json={"id": 7})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        sink = RemoteAPISink("http://api.invalid", client=client)
        assert await sink.submit_speed_test(speed_record()) == 7
        assert await sink.submit_iperf_test(iperf_record(host_id=1)) == 7
        assert seen == [
            ("POST", "/api/v1/speedtest/results"),
            ("POST", "/api/v1/iperf/results"),
        ]
        await client.aclose()


class TestSinkEquivalence:
    """A record stored through either sink has the same content."""

    SPEED_FIELDS = (
        "timestamp", "download_mbps", "upload_mbps", "ping_ms", "jitter_ms",
        "server_name", "server_id", "isp", "daemon_id",
    )
    IPERF_FIELDS = (
        "timestamp", "host_id", "sent_mbps", "received_mbps", "retransmits",
        "mean_rtt_ms", "duration_seconds", "protocol", "success", "error_message", "daemon_id",
    )

    @pytest.mark.asyncio
    async def test_speed_test_round_trip(self, async_client: AsyncClient, session_factory):
        remote = RemoteAPISink("http://test", client=async_client)
        direct = DirectStorageSink(session_factory)

        remote_id = await remote.submit_speed_test(speed_record())
        direct_id = await direct.submit_speed_test(speed_record())

        response = await async_client.get(f"/api/v1/speedtest/results/{remote_id}")
        assert response.status_code == 200
        assert response.json()["download_mbps"] == pytest.approx(123.45)
        assert response.json()["daemon_id"] == "daemon-testbox-4242"

        async with session_factory() as db:
            via_remote = await measurements.get_speed_test(db, remote_id)
            via_direct = await measurements.get_speed_test(db, direct_id)
        for field in self.SPEED_FIELDS:
            assert getattr(via_remote, field) == getattr(via_direct, field), field

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides", [
        {},
        {"success": False, "error_message": "iperf3 failed: exit status 1: unable to connect"},
        {"mean_rtt_ms": None, "retransmits": None},
    ])
    async def test_iperf_test_round_trip(self, async_client: AsyncClient, session_factory, overrides):
        host_id = await add_host(session_factory)
        remote = RemoteAPISink("http://test", client=async_client)
        direct = DirectStorageSink(session_factory)

        remote_id = await remote.submit_iperf_test(iperf_record(host_id, **overrides))
        direct_id = await direct.submit_iperf_test(iperf_record(host_id, **overrides))

        async with session_factory() as db:
            via_remote, _ = await measurements.get_iperf_test(db, remote_id)
            via_direct, _ = await measurements.get_iperf_test(db, direct_id)
        for field in self.IPERF_FIELDS:
            assert getattr(via_remote, field) == getattr(via_direct, field), field


class TestBuildSink:

    def test_direct(self):
        assert isinstance(build_sink("direct"), DirectStorageSink)

    def test_api(self):
        sink = build_sink("API", api_endpoint="http://localhost:8080/")
        assert isinstance(sink, RemoteAPISink)
        assert sink.base_url == "http://localhost:8080/api/v1"

    def test_api_requires_endpoint(self):
        with pytest.raises(ValueError, match="endpoint"):
            build_sink("api", api_endpoint="")

    def test_unknown_mode(self):
        with pytest.raises(ValueError, match="Unknown daemon mode"):
            build_sink("carrier-pigeon")
