"""
Submission sinks: where the daemon sends its canonical records.

Two interchangeable implementations, picked once at start-up:

- DirectStorageSink writes into the database through the same service
  functions the HTTP API uses.
- RemoteAPISink POSTs the records to a running API server.

The orchestrator only sees the SubmissionSink interface, so its behavior is
identical in both modes.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from errors import (
    HostNotFound,
    PersistenceWriteFailed,
    SubmissionRejected,
    SubmissionUnreachable,
)
from schemas import HostResponse, IperfTestSubmission, SpeedTestSubmission
from services.hosts import list_hosts
from services.measurements import create_iperf_test, create_speed_test

logger = logging.getLogger(__name__)

SINK_MODES = ("api", "direct")


class SubmissionSink(ABC):
    """Durably records canonical measurement records."""

    mode: str = "unknown"

    @abstractmethod
    async def list_active_hosts(self) -> List[HostResponse]:
        """All hosts with active=True."""

    @abstractmethod
    async def submit_speed_test(self, record: SpeedTestSubmission) -> int:
        """Store a speed test and return its id."""

    @abstractmethod
    async def submit_iperf_test(self, record: IperfTestSubmission) -> int:
        """Store an iperf test and return its id.  Raises HostNotFound."""

    async def close(self) -> None:
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False


class DirectStorageSink(SubmissionSink):
    """Writes records straight into the database."""

    mode = "direct"

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        if session_factory is None:
            from database import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self._session_factory = session_factory

    async def list_active_hosts(self) -> List[HostResponse]:
        async with self._session_factory() as db:
            hosts = await list_hosts(db, active=True)
            return [HostResponse.model_validate(h) for h in hosts]

    async def submit_speed_test(self, record: SpeedTestSubmission) -> int:
        async with self._session_factory() as db:
            try:
                speed_test = await create_speed_test(db, record)
            except SQLAlchemyError as e:
                await db.rollback()
                raise PersistenceWriteFailed(f"failed to save speed test: {e}") from e
            return speed_test.id

    async def submit_iperf_test(self, record: IperfTestSubmission) -> int:
        async with self._session_factory() as db:
            try:
                iperf_test = await create_iperf_test(db, record)
            except SQLAlchemyError as e:
                await db.rollback()
                raise PersistenceWriteFailed(f"failed to save iperf test: {e}") from e
            return iperf_test.id


class RemoteAPISink(SubmissionSink):
    """Submits records to the HTTP API of a Speed Checker server."""

    mode = "api"

    def __init__(
        self,
        endpoint: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = f"{endpoint.rstrip('/')}/api/v1"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def list_active_hosts(self) -> List[HostResponse]:
        response = await self._request("GET", "/hosts", params={"active": "true"})
        if response.status_code != 200:
            raise SubmissionRejected(response.status_code, response.text)
        return [HostResponse.model_validate(h) for h in response.json()]

    async def submit_speed_test(self, record: SpeedTestSubmission) -> int:
        response = await self._request(
            "POST", "/speedtest/results", json=record.model_dump(mode="json")
        )
        if not response.is_success:
            raise SubmissionRejected(response.status_code, response.text)
        return _record_id(response)

    async def submit_iperf_test(self, record: IperfTestSubmission) -> int:
        response = await self._request(
            "POST", "/iperf/results", json=record.model_dump(mode="json")
        )
        if response.status_code == 404:
            raise HostNotFound(record.host_id)
        if not response.is_success:
            raise SubmissionRejected(response.status_code, response.text)
        return _record_id(response)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            raise SubmissionUnreachable(f"{method} {url} failed: {e}") from e
        logger.debug(f"{method} {url} -> {response.status_code}")
        return response


def _record_id(response: httpx.Response) -> int:
    """Id of the stored record from a 2xx submission response."""
    try:
        return int(response.json()["id"])
    except (ValueError, KeyError, TypeError) as e:
        raise SubmissionRejected(
            response.status_code, f"response has no record id: {response.text}"
        ) from e


def build_sink(
    mode: str,
    api_endpoint: Optional[str] = None,
    api_timeout: float = 30.0,
    session_factory: Optional[async_sessionmaker] = None,
) -> SubmissionSink:
    """
    Create the sink for a daemon mode.

    Raises:
        ValueError: unknown mode, or api mode without an endpoint
    """
    mode = mode.lower()
    if mode == "direct":
        return DirectStorageSink(session_factory)
    if mode == "api":
        if not api_endpoint:
            raise ValueError("API mode requires an API endpoint")
        return RemoteAPISink(api_endpoint, timeout=api_timeout)
    raise ValueError(f"Unknown daemon mode: {mode}. Available: {', '.join(SINK_MODES)}")
