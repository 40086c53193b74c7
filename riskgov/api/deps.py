"""
FastAPI dependencies for API routes.

Tenant and actor come from request.state (set by TenantMiddleware).
"""

import uuid
from typing import AsyncGenerator, Optional

from fastapi import HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.appetite.service import GovernanceService
from riskgov.db.engine import get_session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """One session per request: commit on success, roll back on error."""
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_organization_id(request: Request) -> uuid.UUID:
    organization_id = getattr(request.state, "organization_id", None)
    if not organization_id:
        raise HTTPException(status_code=401, detail="Missing tenant context")
    try:
        return uuid.UUID(str(organization_id))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid tenant context")


def get_actor(request: Request) -> Optional[str]:
    """Who is acting: the token's email, else its user id."""
    return getattr(request.state, "user_email", None) or getattr(request.state, "user_id", None)


_service = GovernanceService()


def get_governance_service() -> GovernanceService:
    return _service


__all__ = ["get_db", "get_organization_id", "get_actor", "get_governance_service"]
