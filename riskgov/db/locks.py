"""
Per-organization serialization.

Two guards, both keyed by organization id so tenants never contend:

- organization_lock: waiting lock around any evaluation that may create
  or transition breaches. Process-local asyncio.Lock, plus a
  transaction-scoped pg_advisory_xact_lock on PostgreSQL so several API
  workers serialize on the same key.
- recalculation_guard: single-flight guard for bulk recalculation. A second
  request for the same organization is rejected immediately instead of
  queueing behind the first.

Neither lock is re-entrant in-process; callers holding organization_lock
must use the *_locked service variants.
"""

import asyncio
import hashlib
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.exceptions import RecalculationInProgressError

logger = structlog.get_logger(__name__)

_org_locks: dict[str, asyncio.Lock] = {}
_recalculations_in_flight: set[str] = set()


def advisory_key(namespace: str, organization_id: uuid.UUID | str) -> int:
    """Stable signed 64-bit key for pg advisory locks."""
    digest = hashlib.blake2b(f"{namespace}:{organization_id}".encode(), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


async def _is_postgres(session: AsyncSession) -> bool:
    conn = await session.connection()
    return conn.dialect.name == "postgresql"


@asynccontextmanager
async def organization_lock(session: AsyncSession, organization_id: uuid.UUID) -> AsyncIterator[None]:
    """Serialize breach-affecting evaluations for one organization."""
    key = str(organization_id)
    lock = _org_locks.setdefault(key, asyncio.Lock())
    async with lock:
        if await _is_postgres(session):
            # Released automatically at commit/rollback
            await session.execute(
                text("SELECT pg_advisory_xact_lock(:key)"),
                {"key": advisory_key("evaluation", key)},
            )
        yield


@asynccontextmanager
async def recalculation_guard(session: AsyncSession, organization_id: uuid.UUID) -> AsyncIterator[None]:
    """Reject a bulk recalculation while another one runs for the organization."""
    key = str(organization_id)
    if key in _recalculations_in_flight:
        logger.warning("recalculation_rejected", organization_id=key, reason="in_flight_local")
        raise RecalculationInProgressError(key)
    _recalculations_in_flight.add(key)
    try:
        if await _is_postgres(session):
            result = await session.execute(
                text("SELECT pg_try_advisory_xact_lock(:key)"),
                {"key": advisory_key("recalculation", key)},
            )
            if not result.scalar():
                logger.warning("recalculation_rejected", organization_id=key, reason="in_flight_cluster")
                raise RecalculationInProgressError(key)
        yield
    finally:
        _recalculations_in_flight.discard(key)


def is_recalculating(organization_id: uuid.UUID) -> bool:
    return str(organization_id) in _recalculations_in_flight
