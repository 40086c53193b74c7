"""
Residual risk persistence.

Recomputes residual scores from the current DIME assessments of linked
controls and writes them to the risk's derived columns. Triggered when a
control assessment changes, on demand per risk, and during bulk
recalculation.
"""

import uuid
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.db.models import Control, Risk, RiskControl
from riskgov.exceptions import DataNotFoundError
from riskgov.scoring.effectiveness import calculate_effectiveness, validate_dime_scores
from riskgov.scoring.residual import (
    ControlEffect,
    ControlTarget,
    ResidualResult,
    calculate_residual,
)

logger = structlog.get_logger(__name__)


def control_effect(control: Control) -> ControlEffect:
    return ControlEffect(
        effectiveness=calculate_effectiveness(
            control.design_score,
            control.implementation_score,
            control.monitoring_score,
            control.evaluation_score,
        ),
        target=ControlTarget(control.target),
    )


async def get_risk(db: AsyncSession, organization_id: uuid.UUID, risk_id: uuid.UUID) -> Risk:
    risk = (
        await db.execute(
            select(Risk).where(Risk.id == risk_id, Risk.organization_id == organization_id)
        )
    ).scalar_one_or_none()
    if risk is None:
        raise DataNotFoundError("Risk", risk_id)
    return risk


async def linked_control_effects(
    db: AsyncSession, organization_id: uuid.UUID, risk_id: uuid.UUID
) -> list[ControlEffect]:
    result = await db.execute(
        select(Control)
        .join(RiskControl, RiskControl.control_id == Control.id)
        .where(
            RiskControl.risk_id == risk_id,
            RiskControl.organization_id == organization_id,
            Control.organization_id == organization_id,
        )
    )
    return [control_effect(c) for c in result.scalars().all()]


async def recalculate_risk(
    db: AsyncSession, organization_id: uuid.UUID, risk_id: uuid.UUID
) -> ResidualResult:
    """Recompute and store one risk's residual scores."""
    risk = await get_risk(db, organization_id, risk_id)
    effects = await linked_control_effects(db, organization_id, risk_id)
    result = calculate_residual(risk.inherent_likelihood, risk.inherent_impact, effects)

    risk.residual_likelihood = result.likelihood
    risk.residual_impact = result.impact
    risk.residual_score = result.score
    risk.residual_calculated_at = datetime.utcnow()
    await db.flush()

    logger.info(
        "residual_recalculated",
        risk_id=str(risk_id),
        inherent=result.inherent_score,
        residual=result.score,
        controls=len(effects),
    )
    return result


async def recalculate_risks_for_control(
    db: AsyncSession, organization_id: uuid.UUID, control_id: uuid.UUID
) -> list[uuid.UUID]:
    """Recompute every risk linked to a control. Returns the risk ids touched."""
    rows = await db.execute(
        select(RiskControl.risk_id).where(
            RiskControl.control_id == control_id,
            RiskControl.organization_id == organization_id,
        )
    )
    risk_ids = list(rows.scalars().all())
    for risk_id in risk_ids:
        await recalculate_risk(db, organization_id, risk_id)
    return risk_ids


async def recalculate_organization_risks(db: AsyncSession, organization_id: uuid.UUID) -> int:
    """Batch job: recompute residuals for every risk of the organization."""
    rows = await db.execute(select(Risk.id).where(Risk.organization_id == organization_id))
    risk_ids = list(rows.scalars().all())
    for risk_id in risk_ids:
        await recalculate_risk(db, organization_id, risk_id)
    logger.info("organization_residuals_recalculated", organization_id=str(organization_id), risks=len(risk_ids))
    return len(risk_ids)


async def update_control_assessment(
    db: AsyncSession,
    organization_id: uuid.UUID,
    control_id: uuid.UUID,
    design: int,
    implementation: int,
    monitoring: int,
    evaluation: int,
    target: ControlTarget | None = None,
) -> tuple[Control, list[uuid.UUID]]:
    """Store a new DIME assessment and propagate it to linked risks."""
    validate_dime_scores(
        design=design, implementation=implementation, monitoring=monitoring, evaluation=evaluation
    )
    control = (
        await db.execute(
            select(Control).where(Control.id == control_id, Control.organization_id == organization_id)
        )
    ).scalar_one_or_none()
    if control is None:
        raise DataNotFoundError("Control", control_id)

    control.design_score = design
    control.implementation_score = implementation
    control.monitoring_score = monitoring
    control.evaluation_score = evaluation
    if target is not None:
        control.target = target.value
    control.assessed_at = datetime.utcnow()
    await db.flush()

    touched = await recalculate_risks_for_control(db, organization_id, control_id)
    return control, touched
