from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from errors import HostNotFound
from schemas import HostCreate, HostUpdate, HostResponse
from services import hosts as host_service

router = APIRouter(prefix="/api/v1/hosts", tags=["hosts"])


@router.get("", response_model=List[HostResponse])
async def list_hosts(
    active: Optional[bool] = Query(None),
    category: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """
    List iperf3 target hosts ordered by name.

    Query parameters:
    - active: only active (true) or inactive (false) hosts; all when omitted
    - category: only hosts of this category (lan, vpn, remote)
    """
    hosts = await host_service.list_hosts(
        db, active=active, category=category.lower() if category else None
    )
    return [HostResponse.model_validate(host) for host in hosts]


@router.get("/{host_id}", response_model=HostResponse)
async def get_host(host_id: int, db: AsyncSession = Depends(get_db)):
    try:
        host = await host_service.get_host(db, host_id)
    except HostNotFound:
        raise HTTPException(status_code=404, detail="Host not found")
    return HostResponse.model_validate(host)


@router.post("", response_model=HostResponse, status_code=201)
async def create_host(host: HostCreate, db: AsyncSession = Depends(get_db)):
    db_host = await host_service.create_host(db, host)
    return HostResponse.model_validate(db_host)


@router.put("/{host_id}", response_model=HostResponse)
async def update_host(
    host_id: int,
    host_update: HostUpdate,
    db: AsyncSession = Depends(get_db),
):
    """
    Update a host by ID.  Only the fields present in the body change.
    """
    try:
        db_host = await host_service.update_host(db, host_id, host_update)
    except HostNotFound:
        raise HTTPException(status_code=404, detail="Host not found")
    return HostResponse.model_validate(db_host)


@router.delete("/{host_id}", status_code=204)
async def delete_host(host_id: int, db: AsyncSession = Depends(get_db)):
    """
    Delete a host by ID.  Iperf results recorded against it are kept and
    reported with ``host: null``.
    """
    try:
        await host_service.delete_host(db, host_id)
    except HostNotFound:
        raise HTTPException(status_code=404, detail="Host not found")
