"""
Tests for tests started over the HTTP API.

The orchestrator dependency is replaced by one that writes to the test
database and answers tool invocations with canned output.
"""

import json
import random

import pytest
from httpx import AsyncClient

from errors import ProcessExecutionFailed, ProcessTimeout
from main import app
from services.orchestrator import (
    MeasurementOrchestrator,
    OrchestratorConfig,
    get_orchestrator,
    use_orchestrator,
)
from services.sinks import DirectStorageSink


class CannedRunner:
    """Returns fixed output (or raises) per command and records the calls."""

    def __init__(self, outputs):
        self.outputs = outputs
        self.calls = []

    async def __call__(self, command, args, timeout, cancel_event=None):
        self.calls.append((command, [str(a) for a in args]))
        result = self.outputs[command]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def runner(speedtest_output, iperf_output):
    return CannedRunner({"speedtest": speedtest_output, "iperf3": iperf_output})


@pytest.fixture
def orchestrator(async_client, session_factory, runner):
    orchestrator = MeasurementOrchestrator(
        DirectStorageSink(session_factory),
        "daemon-api-1",
        OrchestratorConfig(iperf_duration=10),
        runner=runner,
        rng=random.Random(0),
    )
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    return orchestrator


async def create_host(client: AsyncClient, name: str, category: str, active: bool = True) -> dict:
    response = await client.post(
        "/api/v1/hosts",
        json={"name": name, "hostname": f"{name}.example.net", "category": category, "active": active},
    )
    assert response.status_code == 201
    return response.json()


class TestRunSpeedTest:

    @pytest.mark.asyncio
    async def test_runs_and_stores(self, async_client: AsyncClient, orchestrator, runner):
        response = await async_client.post("/api/v1/speedtest/run")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["download_mbps"] == pytest.approx(12.5)
        assert data["daemon_id"] == "daemon-api-1"
        assert [c[0] for c in runner.calls] == ["speedtest"]

        listing = (await async_client.get("/api/v1/speedtest/results")).json()
        assert listing["total"] == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error, status", [
        (ProcessTimeout("speedtest", 120), 504),
        (ProcessExecutionFailed("speedtest", "exit status 2: license not accepted"), 500),
    ])
    async def test_failure_is_reported_not_stored(
        self, async_client: AsyncClient, orchestrator, runner, error, status
    ):
        runner.outputs["speedtest"] = error

        response = await async_client.post("/api/v1/speedtest/run")

        assert response.status_code == status
        assert response.json()["detail"] == str(error)
        listing = (await async_client.get("/api/v1/speedtest/results")).json()
        assert listing["total"] == 0


class TestRunIperfTests:

    @pytest.mark.asyncio
    async def test_one_result_per_category(self, async_client: AsyncClient, orchestrator, runner):
        await create_host(async_client, "nas", "lan")
        await create_host(async_client, "gw", "vpn", active=False)
        await create_host(async_client, "far", "remote")

        response = await async_client.post("/api/v1/iperf/run", params={"duration": 3})

        assert response.status_code == 200
        results = response.json()["results"]
        assert results["vpn"] is None
        assert results["lan"]["host"]["name"] == "nas"
        assert results["remote"]["host"]["name"] == "far"
        assert results["lan"]["success"] is True
        assert results["lan"]["duration_seconds"] == 3
        assert all(args[args.index("-t") + 1] == "3" for _, args in runner.calls)

    @pytest.mark.asyncio
    async def test_failed_attempt_is_returned(self, async_client: AsyncClient, orchestrator, runner):
        await create_host(async_client, "nas", "lan")
        runner.outputs["iperf3"] = json.dumps({"error": "the server is busy running a test"}).encode()

        response = await async_client.post("/api/v1/iperf/run")

        assert response.status_code == 200
        lan = response.json()["results"]["lan"]
        assert lan["success"] is False
        assert "server is busy" in lan["error_message"]
        assert lan["duration_seconds"] == 10

    @pytest.mark.asyncio
    async def test_invalid_duration(self, async_client: AsyncClient, orchestrator):
        response = await async_client.post("/api/v1/iperf/run", params={"duration": 0})
        assert response.status_code == 422


class TestOrchestratorDependency:

    def test_installed_orchestrator_is_served(self):
        installed = MeasurementOrchestrator(DirectStorageSink(), "daemon-all-1")
        use_orchestrator(installed)
        try:
            assert get_orchestrator() is installed
        finally:
            use_orchestrator(None)

    def test_default_writes_to_the_database(self):
        use_orchestrator(None)
        try:
            orchestrator = get_orchestrator()
            assert orchestrator.sink.mode == "direct"
            assert get_orchestrator() is orchestrator
        finally:
            use_orchestrator(None)
