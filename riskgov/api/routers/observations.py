"""
KRI Observation API Endpoints.

POST /api/v1/kris/{kri_id}/observations — append an observation and evaluate
                                          every active metric fed by the KRI
"""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.api.deps import get_actor, get_db, get_governance_service, get_organization_id
from riskgov.appetite.schemas import EvaluationResponse, ObservationCreate, ObservationResponse
from riskgov.appetite.service import GovernanceService, MetricEvaluation

router = APIRouter(prefix="/api/v1/kris", tags=["observations"])


def _evaluation_response(result: MetricEvaluation) -> EvaluationResponse:
    ev = result.evaluation
    return EvaluationResponse(
        metric_id=str(result.metric_id),
        zone=ev.zone,
        measured_value=ev.measured_value,
        breached=ev.breached,
        severity=ev.severity,
        threshold_value=ev.threshold_value,
        explanation=ev.explanation,
        breach_id=str(result.breach.breach_id) if result.breach else None,
        breach_created=bool(result.breach and result.breach.created),
    )


@router.post("/{kri_id}/observations", response_model=ObservationResponse, status_code=201)
async def record_observation(
    kri_id: uuid.UUID,
    body: ObservationCreate,
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
    actor: str | None = Depends(get_actor),
    service: GovernanceService = Depends(get_governance_service),
):
    row, results = await service.record_observation(
        db,
        organization_id,
        kri_id,
        body.value,
        observed_at=body.observed_at,
        data_quality_ok=body.data_quality_ok,
        notes=body.notes,
        recorded_by=actor,
    )
    return ObservationResponse(
        observation_id=str(row.id),
        kri_id=str(kri_id),
        data_quality_ok=row.data_quality_ok,
        evaluations=[_evaluation_response(r) for r in results],
    )
