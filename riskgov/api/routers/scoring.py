"""
Scoring API Endpoints.

POST /api/v1/scoring/effectiveness          — effectiveness of a DIME assessment
POST /api/v1/scoring/residual               — residual for ad-hoc inherent + controls
POST /api/v1/risks/{risk_id}/residual       — recalculate and store a risk's residual
PUT  /api/v1/controls/{control_id}/assessment — new DIME scores, propagate to linked risks
POST /api/v1/risks/{risk_id}/appetite       — decide and store whether a risk is within appetite
"""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.api.deps import get_db, get_governance_service, get_organization_id
from riskgov.appetite.schemas import (
    ControlAssessmentRequest,
    ControlAssessmentResponse,
    DimeScores,
    EffectivenessResponse,
    ImpactedMetric,
    ResidualRequest,
    ResidualResponse,
    RiskAppetiteResponse,
)
from riskgov.appetite.service import GovernanceService
from riskgov.scoring.appetite import RiskAppetiteResult
from riskgov.scoring.effectiveness import calculate_effectiveness
from riskgov.scoring.residual import ControlEffect, ControlTarget, ResidualResult, calculate_residual
from riskgov.scoring.service import control_effect, recalculate_risk, update_control_assessment

router = APIRouter(prefix="/api/v1", tags=["scoring"])


def _residual_response(result: ResidualResult, risk_id: uuid.UUID | None = None) -> ResidualResponse:
    return ResidualResponse(
        inherent_likelihood=result.inherent_likelihood,
        inherent_impact=result.inherent_impact,
        inherent_score=result.inherent_score,
        residual_likelihood=result.likelihood,
        residual_impact=result.impact,
        residual_score=result.score,
        likelihood_effectiveness=result.likelihood_effectiveness,
        impact_effectiveness=result.impact_effectiveness,
        risk_id=str(risk_id) if risk_id else None,
    )


@router.post("/scoring/effectiveness", response_model=EffectivenessResponse)
async def score_effectiveness(body: DimeScores):
    return EffectivenessResponse(
        effectiveness=calculate_effectiveness(body.design, body.implementation, body.monitoring, body.evaluation)
    )


@router.post("/scoring/residual", response_model=ResidualResponse)
async def score_residual(body: ResidualRequest):
    """Residual for an inherent rating and a candidate set of controls. Nothing is stored."""
    effects = [
        ControlEffect(
            effectiveness=calculate_effectiveness(c.design, c.implementation, c.monitoring, c.evaluation),
            target=ControlTarget(c.target),
        )
        for c in body.controls
    ]
    return _residual_response(calculate_residual(body.inherent_likelihood, body.inherent_impact, effects))


@router.post("/risks/{risk_id}/residual", response_model=ResidualResponse)
async def recalculate_risk_residual(
    risk_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
):
    result = await recalculate_risk(db, organization_id, risk_id)
    return _residual_response(result, risk_id)


@router.put("/controls/{control_id}/assessment", response_model=ControlAssessmentResponse)
async def assess_control(
    control_id: uuid.UUID,
    body: ControlAssessmentRequest,
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
):
    control, touched = await update_control_assessment(
        db,
        organization_id,
        control_id,
        body.design,
        body.implementation,
        body.monitoring,
        body.evaluation,
        ControlTarget(body.target) if body.target else None,
    )
    return ControlAssessmentResponse(
        control_id=str(control.id),
        effectiveness=control_effect(control).effectiveness,
        recalculated_risks=[str(r) for r in touched],
    )


def _appetite_response(risk_id: uuid.UUID, result: RiskAppetiteResult) -> RiskAppetiteResponse:
    decision = result.decision
    return RiskAppetiteResponse(
        risk_id=str(risk_id),
        appetite_level=result.appetite_level,
        residual_score=result.residual_score,
        multiplier=result.multiplier,
        adjusted_score=result.adjusted_score,
        material=result.material,
        out_of_appetite=decision.out_of_appetite,
        escalation_required=decision.escalation_required,
        severity=decision.severity.value,
        reason=decision.reason.value,
        impacted_metrics=[ImpactedMetric(metric_id=s.metric_id, name=s.name) for s in decision.impacted],
        evidence=decision.evidence,
        explanation=result.explanation,
    )


@router.post("/risks/{risk_id}/appetite", response_model=RiskAppetiteResponse)
async def evaluate_risk_appetite(
    risk_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
    service: GovernanceService = Depends(get_governance_service),
):
    result = await service.evaluate_risk_appetite(db, organization_id, risk_id)
    return _appetite_response(risk_id, result)
