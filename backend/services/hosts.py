"""Host administration: create, update, delete and query iperf3 targets."""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from errors import HostNotFound
from models import Host
from schemas import HostCreate, HostUpdate

logger = logging.getLogger(__name__)


async def list_hosts(
    db: AsyncSession,
    active: Optional[bool] = None,
    category: Optional[str] = None,
) -> List[Host]:
    """Hosts ordered by name, optionally filtered by active flag and category."""
    query = select(Host).order_by(Host.name)
    if active is not None:
        query = query.where(Host.active.is_(active))
    if category is not None:
        query = query.where(Host.category == category)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_host(db: AsyncSession, host_id: int) -> Host:
    host = await db.get(Host, host_id)
    if host is None:
        raise HostNotFound(host_id)
    return host


async def create_host(db: AsyncSession, host: HostCreate) -> Host:
    db_host = Host(**host.model_dump())
    db.add(db_host)
    await db.commit()
    await db.refresh(db_host)
    logger.info(f"Host created: {db_host.name} ({db_host.hostname}:{db_host.port}, {db_host.category})")
    return db_host


async def update_host(db: AsyncSession, host_id: int, host_update: HostUpdate) -> Host:
    db_host = await get_host(db, host_id)

    # Update only provided fields
    for field, value in host_update.model_dump(exclude_unset=True).items():
        setattr(db_host, field, value)

    await db.commit()
    await db.refresh(db_host)
    logger.info(f"Host updated: id={host_id}")
    return db_host


async def delete_host(db: AsyncSession, host_id: int) -> None:
    """Delete a host.  Its historical iperf results are left in place."""
    db_host = await get_host(db, host_id)
    await db.delete(db_host)
    await db.commit()
    logger.info(f"Host deleted: id={host_id}")
