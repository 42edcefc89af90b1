"""
Storage of speed and iperf test results.

The API handlers and the direct-storage sink both write through these
functions, so a record stored by either path has the same content.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from errors import HostNotFound
from models import Host, SpeedMeasurement, ThroughputMeasurement
from schemas import (
    HostResponse,
    IperfTestResponse,
    IperfTestSubmission,
    SpeedTestSubmission,
)
from utils.identity import to_naive_utc

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "no throughput measured"


# ── Speed tests ──────────────────────────────────────────────────────

async def create_speed_test(db: AsyncSession, submission: SpeedTestSubmission) -> SpeedMeasurement:
    """Store a speed test submission."""
    data = submission.model_dump()
    data["timestamp"] = to_naive_utc(submission.timestamp)

    speed_test = SpeedMeasurement(**data)
    db.add(speed_test)
    await db.commit()
    await db.refresh(speed_test)

    logger.info(
        f"Speed test saved - ID: {speed_test.id}, Daemon: {submission.daemon_id}, "
        f"Download: {submission.download_mbps:.2f} Mbps, Upload: {submission.upload_mbps:.2f} Mbps"
    )
    return speed_test


async def list_speed_tests(
    db: AsyncSession, limit: int = 50, offset: int = 0
) -> Tuple[int, List[SpeedMeasurement]]:
    total = await db.scalar(select(func.count(SpeedMeasurement.id)))
    result = await db.execute(
        select(SpeedMeasurement)
        .order_by(SpeedMeasurement.timestamp.desc(), SpeedMeasurement.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return total or 0, list(result.scalars().all())


async def list_speed_tests_in_range(
    db: AsyncSession, start: datetime, end: datetime
) -> List[SpeedMeasurement]:
    """Speed tests with start <= timestamp <= end, newest first."""
    result = await db.execute(
        select(SpeedMeasurement)
        .where(SpeedMeasurement.timestamp >= to_naive_utc(start))
        .where(SpeedMeasurement.timestamp <= to_naive_utc(end))
        .order_by(SpeedMeasurement.timestamp.desc(), SpeedMeasurement.id.desc())
    )
    return list(result.scalars().all())


async def get_speed_test(db: AsyncSession, test_id: int) -> Optional[SpeedMeasurement]:
    return await db.get(SpeedMeasurement, test_id)


async def delete_speed_test(db: AsyncSession, test_id: int) -> bool:
    speed_test = await db.get(SpeedMeasurement, test_id)
    if speed_test is None:
        return False
    await db.delete(speed_test)
    await db.commit()
    logger.info(f"Speed test deleted - ID: {test_id}")
    return True


# ── Iperf tests ──────────────────────────────────────────────────────

async def create_iperf_test(db: AsyncSession, submission: IperfTestSubmission) -> ThroughputMeasurement:
    """
    Store an iperf test submission against an existing host.

    ``submission.success`` is used as given when set (tests the daemon ran);
    otherwise the test counts as successful if any throughput was measured.
    A failed record always has zero throughput and an error message.

    Raises:
        HostNotFound: the referenced host does not exist
    """
    host = await db.get(Host, submission.host_id)
    if host is None:
        raise HostNotFound(submission.host_id)

    data = submission.model_dump(exclude={"success"})
    data["timestamp"] = to_naive_utc(submission.timestamp)

    success = submission.success
    if success is None:
        success = submission.sent_mbps > 0 or submission.received_mbps > 0

    if success:
        data["error_message"] = None
    else:
        data["sent_mbps"] = 0.0
        data["received_mbps"] = 0.0
        data["error_message"] = submission.error_message or DEFAULT_FAILURE_MESSAGE

    iperf_test = ThroughputMeasurement(success=success, **data)
    db.add(iperf_test)
    await db.commit()
    await db.refresh(iperf_test)

    logger.info(
        f"Iperf test saved - ID: {iperf_test.id}, Daemon: {submission.daemon_id}, Host: {host.name}, "
        f"Sent: {iperf_test.sent_mbps:.2f} Mbps, Received: {iperf_test.received_mbps:.2f} Mbps, "
        f"Success: {success}"
    )
    return iperf_test


async def list_iperf_tests(
    db: AsyncSession,
    limit: int = 50,
    offset: int = 0,
    category: Optional[str] = None,
) -> Tuple[int, List[Tuple[ThroughputMeasurement, Optional[Host]]]]:
    """Recent iperf tests with their host (None if the host was deleted)."""
    count_query = select(func.count(ThroughputMeasurement.id))
    query = (
        select(ThroughputMeasurement, Host)
        .outerjoin(Host, ThroughputMeasurement.host_id == Host.id)
        .order_by(ThroughputMeasurement.timestamp.desc(), ThroughputMeasurement.id.desc())
    )
    if category is not None:
        count_query = count_query.join(Host, ThroughputMeasurement.host_id == Host.id).where(
            Host.category == category
        )
        query = query.where(Host.category == category)

    total = await db.scalar(count_query)
    result = await db.execute(query.offset(offset).limit(limit))
    return total or 0, [(row[0], row[1]) for row in result.all()]


async def get_iperf_test(
    db: AsyncSession, test_id: int
) -> Optional[Tuple[ThroughputMeasurement, Optional[Host]]]:
    iperf_test = await db.get(ThroughputMeasurement, test_id)
    if iperf_test is None:
        return None
    return iperf_test, await db.get(Host, iperf_test.host_id)


async def delete_iperf_test(db: AsyncSession, test_id: int) -> bool:
    iperf_test = await db.get(ThroughputMeasurement, test_id)
    if iperf_test is None:
        return False
    await db.delete(iperf_test)
    await db.commit()
    logger.info(f"Iperf test deleted - ID: {test_id}")
    return True


def iperf_test_response(
    iperf_test: ThroughputMeasurement, host: Optional[Host]
) -> IperfTestResponse:
    response = IperfTestResponse.model_validate(iperf_test)
    if host is not None:
        response.host = HostResponse.model_validate(host)
    return response
