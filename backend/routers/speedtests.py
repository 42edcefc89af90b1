import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import AwareDatetime, TypeAdapter, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from errors import SpeedCheckerError, http_status_for
from schemas import SpeedTestSubmission, SpeedTestResponse, PaginatedResponse
from services import measurements
from services.orchestrator import MeasurementOrchestrator, get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/speedtest", tags=["speedtest"])

_rfc3339 = TypeAdapter(AwareDatetime)


def parse_rfc3339(value: Optional[str], name: str):
    """Parse an RFC 3339 timestamp (with offset) from a query parameter."""
    try:
        return _rfc3339.validate_python(value)
    except ValidationError:
        raise HTTPException(status_code=400, detail=f"invalid {name} time format")


@router.get("/results", response_model=PaginatedResponse)
async def list_speed_tests(
    limit: int = Query(50, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """
    List speed test results, newest first.

    Query parameters:
    - limit: Number of results to return (default 50, max 1000)
    - offset: Number of results to skip (default 0)
    """
    total, tests = await measurements.list_speed_tests(db, limit=limit, offset=offset)
    return {
        "total": total,
        "skip": offset,
        "limit": limit,
        "items": [SpeedTestResponse.model_validate(t) for t in tests],
    }


@router.get("/range")
async def list_speed_tests_in_range(
    start: Optional[str] = Query(None, description="RFC 3339 start, inclusive"),
    end: Optional[str] = Query(None, description="RFC 3339 end, inclusive"),
    db: AsyncSession = Depends(get_db),
):
    """
    Speed tests taken between ``start`` and ``end``, newest first.

    Both bounds are required and must carry a UTC offset,
    e.g. ``2024-05-01T00:00:00Z``.
    """
    if not start or not end:
        raise HTTPException(status_code=400, detail="start and end parameters are required")
    start_at = parse_rfc3339(start, "start")
    end_at = parse_rfc3339(end, "end")
    if start_at > end_at:
        raise HTTPException(status_code=400, detail="start must not be after end")

    tests = await measurements.list_speed_tests_in_range(db, start_at, end_at)
    return {
        "count": len(tests),
        "range": {"start": start_at.isoformat(), "end": end_at.isoformat()},
        "items": [SpeedTestResponse.model_validate(t) for t in tests],
    }


@router.get("/results/{test_id}", response_model=SpeedTestResponse)
async def get_speed_test(test_id: int, db: AsyncSession = Depends(get_db)):
    speed_test = await measurements.get_speed_test(db, test_id)
    if speed_test is None:
        raise HTTPException(status_code=404, detail="Speed test not found")
    return SpeedTestResponse.model_validate(speed_test)


@router.post("/results", response_model=SpeedTestResponse, status_code=201)
async def submit_speed_test(
    submission: SpeedTestSubmission,
    db: AsyncSession = Depends(get_db),
):
    """Store a speed test result submitted by a daemon."""
    speed_test = await measurements.create_speed_test(db, submission)
    return SpeedTestResponse.model_validate(speed_test)


@router.post("/run")
async def run_speed_test(
    orchestrator: MeasurementOrchestrator = Depends(get_orchestrator),
    db: AsyncSession = Depends(get_db),
):
    """
    Run the speedtest CLI now and store the result.

    Blocks until the test finishes (up to the speedtest timeout).
    """
    logger.info("Speed test requested over the API")
    try:
        record_id = await orchestrator.run_speed_test()
    except SpeedCheckerError as e:
        logger.error(f"Requested speed test failed: {e}")
        raise HTTPException(status_code=http_status_for(e), detail=str(e))

    speed_test = await measurements.get_speed_test(db, record_id)
    return {
        "message": "Speed test completed successfully",
        "data": SpeedTestResponse.model_validate(speed_test),
    }


@router.delete("/results/{test_id}", status_code=204)
async def delete_speed_test(test_id: int, db: AsyncSession = Depends(get_db)):
    if not await measurements.delete_speed_test(db, test_id):
        raise HTTPException(status_code=404, detail="Speed test not found")
