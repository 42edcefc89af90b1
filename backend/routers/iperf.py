import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from errors import HostNotFound, SpeedCheckerError, http_status_for
from models import Host
from schemas import IperfTestSubmission, IperfTestResponse, PaginatedResponse
from services import measurements
from services.orchestrator import MeasurementOrchestrator, get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/iperf", tags=["iperf"])


@router.get("/results", response_model=PaginatedResponse)
async def list_iperf_tests(
    limit: int = Query(50, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    category: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """
    List iperf test results with their host, newest first.

    Query parameters:
    - limit: Number of results to return (default 50, max 1000)
    - offset: Number of results to skip (default 0)
    - category: only results against hosts of this category
    """
    total, rows = await measurements.list_iperf_tests(
        db,
        limit=limit,
        offset=offset,
        category=category.lower() if category else None,
    )
    return {
        "total": total,
        "skip": offset,
        "limit": limit,
        "items": [measurements.iperf_test_response(test, host) for test, host in rows],
    }


@router.get("/results/{test_id}", response_model=IperfTestResponse)
async def get_iperf_test(test_id: int, db: AsyncSession = Depends(get_db)):
    row = await measurements.get_iperf_test(db, test_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Iperf test not found")
    return measurements.iperf_test_response(*row)


@router.post("/results", response_model=IperfTestResponse, status_code=201)
async def submit_iperf_test(
    submission: IperfTestSubmission,
    db: AsyncSession = Depends(get_db),
):
    """
    Store an iperf test result submitted by a daemon.

    When ``success`` is omitted the test counts as successful if any
    throughput was measured.  Returns 404 if ``host_id`` is unknown.
    """
    try:
        iperf_test = await measurements.create_iperf_test(db, submission)
    except HostNotFound:
        raise HTTPException(status_code=404, detail="Host not found")
    host = await db.get(Host, iperf_test.host_id)
    return measurements.iperf_test_response(iperf_test, host)


@router.post("/run")
async def run_iperf_tests(
    duration: Optional[int] = Query(None, ge=1, le=300, description="Seconds per test"),
    orchestrator: MeasurementOrchestrator = Depends(get_orchestrator),
    db: AsyncSession = Depends(get_db),
):
    """
    Run iperf3 now against one random active host per category.

    Failed attempts are stored and returned with ``success=false``.  A
    category without active hosts maps to null.
    """
    logger.info(f"Iperf tests requested over the API (duration={duration or 'default'})")
    try:
        record_ids = await orchestrator.run_iperf_tests(duration)
    except SpeedCheckerError as e:
        logger.error(f"Requested iperf tests failed: {e}")
        raise HTTPException(status_code=http_status_for(e), detail=str(e))

    results = {}
    for category, record_id in record_ids.items():
        row = await measurements.get_iperf_test(db, record_id) if record_id is not None else None
        results[category] = measurements.iperf_test_response(*row) if row else None
    return {
        "message": "Iperf tests completed successfully",
        "results": results,
    }


@router.delete("/results/{test_id}", status_code=204)
async def delete_iperf_test(test_id: int, db: AsyncSession = Depends(get_db)):
    if not await measurements.delete_iperf_test(db, test_id):
        raise HTTPException(status_code=404, detail="Iperf test not found")
