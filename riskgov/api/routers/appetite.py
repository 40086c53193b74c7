"""
Appetite Status API Endpoints.

GET  /api/v1/appetite/status                         — enterprise rollup
GET  /api/v1/appetite/categories/{category_id}/status — one category
POST /api/v1/appetite/recalculate                    — bulk recalculation (409 if running)
"""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.api.deps import get_db, get_governance_service, get_organization_id
from riskgov.appetite.schemas import (
    CategoryStatusResponse,
    EnterpriseStatusResponse,
    RecalculationResponse,
)
from riskgov.appetite.service import GovernanceService

router = APIRouter(prefix="/api/v1/appetite", tags=["appetite"])


@router.get("/status", response_model=EnterpriseStatusResponse)
async def enterprise_status(
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
    service: GovernanceService = Depends(get_governance_service),
):
    return await service.enterprise_status(db, organization_id)


@router.get("/categories/{category_id}/status", response_model=CategoryStatusResponse)
async def category_status(
    category_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
    service: GovernanceService = Depends(get_governance_service),
):
    return await service.category_status(db, organization_id, category_id)


@router.post("/recalculate", response_model=RecalculationResponse)
async def recalculate(
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
    service: GovernanceService = Depends(get_governance_service),
):
    summary = await service.recalculate_organization(db, organization_id)
    return RecalculationResponse(
        organization_id=str(summary.organization_id),
        metrics_evaluated=summary.metrics_evaluated,
        breaches_opened=summary.breaches_opened,
        breaches_updated=summary.breaches_updated,
        exceptions_expired=summary.exceptions_expired,
        risks_recalculated=summary.risks_recalculated,
        risks_out_of_appetite=summary.risks_out_of_appetite,
    )
