"""
Pytest configuration and fixtures for Speed Checker tests.

Provides:
- Async SQLite in-memory database and session factory
- FastAPI app with dependency overrides
- AsyncClient for testing async endpoints
- Sample tool output (speedtest and iperf3 JSON)
"""

import copy
import json

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

import models  # noqa: F401
from database import Base, get_db
from main import app


@pytest_asyncio.fixture
async def session_factory():
    """
    Session factory bound to a fresh in-memory SQLite database.

    The database is created for each test and disposed afterwards.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        future=True,
    )
    factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield factory

    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def async_client(session_factory):
    """
    AsyncClient pointing to the FastAPI app, backed by the test database.

    Yields:
        httpx.AsyncClient: Async HTTP client for making requests to the app.
    """

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Sample tool output ───────────────────────────────────────────────

SPEEDTEST_RESULT = {
    "type": "result",
    "timestamp": "2024-05-01T12:00:00Z",
    "ping": {"jitter": 1.2, "latency": 14.5, "low": 12.0, "high": 18.1},
    "download": {"bandwidth": 12500000, "bytes": 150000000, "elapsed": 12000},
    "upload": {"bandwidth": 2500000, "bytes": 30000000, "elapsed": 12000},
    "packetLoss": 0,
    "isp": "Example ISP",
    "interface": {
        "internalIp": "192.168.1.50",
        "name": "eth0",
        "isVpn": False,
        "externalIp": "203.0.113.7",
    },
    "server": {
        "id": 12345,
        "host": "speedtest.example.net",
        "port": 8080,
        "name": "Example Networks",
        "location": "Springfield",
        "country": "United States",
        "ip": "198.51.100.10",
    },
    "result": {
        "id": "abcd-1234",
        "url": "https://www.speedtest.net/result/c/abcd-1234",
        "persisted": True,
    },
}

IPERF_RESULT = {
    "start": {
        "connected": [{"socket": 5, "remote_host": "192.168.1.10", "remote_port": 5201}],
        "timestamp": {"time": "Wed, 01 May 2024 12:00:00 GMT", "timesecs": 1714564800},
        "test_start": {"protocol": "TCP", "num_streams": 1, "duration": 10},
    },
    "intervals": [],
    "end": {
        "streams": [
            {
                "sender": {
                    "socket": 5,
                    "bits_per_second": 941000000.0,
                    "retransmits": 3,
                    "max_rtt": 2100,
                    "min_rtt": 450,
                    "mean_rtt": 1250,
                },
                "receiver": {"socket": 5, "bits_per_second": 938000000.0},
            }
        ],
        "sum_sent": {"seconds": 10.0, "bytes": 1176250000, "bits_per_second": 941000000.0, "retransmits": 3},
        "sum_received": {"seconds": 10.0, "bytes": 1172500000, "bits_per_second": 938000000.0},
    },
}


def as_bytes(doc) -> bytes:
    return json.dumps(doc).encode("utf-8")


@pytest.fixture
def speedtest_doc() -> dict:
    """A speedtest result document tests may modify."""
    return copy.deepcopy(SPEEDTEST_RESULT)


@pytest.fixture
def iperf_doc() -> dict:
    """An iperf3 -J document tests may modify."""
    return copy.deepcopy(IPERF_RESULT)


@pytest.fixture
def speedtest_output() -> bytes:
    return as_bytes(SPEEDTEST_RESULT)


@pytest.fixture
def iperf_output() -> bytes:
    return as_bytes(IPERF_RESULT)
