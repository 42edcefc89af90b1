"""
Dashboard API endpoint.

One call with what a status page needs: the latest results of both kinds,
the active hosts and record counts.
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from schemas import HostResponse, SpeedTestResponse
from services import hosts as host_service
from services import measurements

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["dashboard"])


@router.get("/dashboard")
async def get_dashboard(
    limit: int = Query(10, ge=1, le=100, description="Recent results of each kind"),
    db: AsyncSession = Depends(get_db),
):
    """
    Recent speed and iperf tests, active hosts and totals.

    ``summary`` counts every stored record, not only the ones returned.
    """
    speed_total, speed_tests = await measurements.list_speed_tests(db, limit=limit)
    iperf_total, iperf_rows = await measurements.list_iperf_tests(db, limit=limit)
    hosts = await host_service.list_hosts(db, active=True)

    return {
        "speed_tests": [SpeedTestResponse.model_validate(t) for t in speed_tests],
        "iperf_tests": [measurements.iperf_test_response(t, h) for t, h in iperf_rows],
        "hosts": [HostResponse.model_validate(h) for h in hosts],
        "summary": {
            "total_speed_tests": speed_total,
            "total_iperf_tests": iperf_total,
            "active_hosts": len(hosts),
        },
    }
