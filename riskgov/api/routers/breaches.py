"""
Breach API Endpoints.

GET  /api/v1/breaches                                   — list breaches (filters)
GET  /api/v1/breaches/stats                             — breach statistics
GET  /api/v1/breaches/{breach_id}                       — breach with its event trail
POST /api/v1/breaches/{breach_id}/acknowledge           — OPEN → ACKNOWLEDGED
POST /api/v1/breaches/{breach_id}/remediation           — → IN_PROGRESS with a plan
POST /api/v1/breaches/{breach_id}/resolve               — → RESOLVED (notes required)
POST /api/v1/breaches/{breach_id}/exceptions            — request a board exception
POST /api/v1/breaches/exceptions/{exception_id}/approve — → breach BOARD_ACCEPTED
POST /api/v1/breaches/exceptions/{exception_id}/reject  — breach unchanged
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.api.deps import get_actor, get_db, get_governance_service, get_organization_id
from riskgov.appetite.schemas import (
    BoardExceptionDecision,
    BoardExceptionRequest,
    BoardExceptionResponse,
    BreachDetailResponse,
    BreachEventResponse,
    BreachResponse,
    BreachStatsResponse,
    BreachStatus,
    ExceptionStatus,
    RemediationRequest,
    ResolveRequest,
    Severity,
)
from riskgov.appetite.service import GovernanceService
from riskgov.db.models import BoardException, Breach

router = APIRouter(prefix="/api/v1/breaches", tags=["breaches"])


def _iso(dt):
    return dt.isoformat() if dt else None


def _breach_response(b: Breach) -> BreachResponse:
    return BreachResponse(
        id=str(b.id),
        metric_id=str(b.metric_id),
        severity=Severity(b.severity),
        status=BreachStatus(b.status),
        breach_value=b.breach_value,
        threshold_value=b.threshold_value,
        variance_amount=b.variance_amount,
        variance_pct=b.variance_pct,
        occurrence_count=b.occurrence_count,
        detected_at=b.detected_at.isoformat(),
        last_seen_at=b.last_seen_at.isoformat(),
        acknowledged_at=_iso(b.acknowledged_at),
        acknowledged_by=b.acknowledged_by,
        remediation_plan=b.remediation_plan,
        remediation_owner=b.remediation_owner,
        remediation_due_date=_iso(b.remediation_due_date),
        resolved_at=_iso(b.resolved_at),
        resolved_by=b.resolved_by,
        resolution_notes=b.resolution_notes,
        board_accepted_at=_iso(b.board_accepted_at),
        exception_valid_until=_iso(b.exception_valid_until),
    )


def _exception_response(e: BoardException) -> BoardExceptionResponse:
    return BoardExceptionResponse(
        id=str(e.id),
        breach_id=str(e.breach_id),
        metric_id=str(e.metric_id),
        status=ExceptionStatus(e.status),
        temporary_thresholds=e.temporary_thresholds or {},
        valid_until=e.valid_until.isoformat(),
        rationale=e.rationale,
        requested_by=e.requested_by,
        decided_by=e.decided_by,
        decided_at=_iso(e.decided_at),
    )


@router.get("", response_model=list[BreachResponse])
async def list_breaches(
    status: Optional[BreachStatus] = Query(None),
    severity: Optional[Severity] = Query(None),
    metric_id: Optional[uuid.UUID] = Query(None),
    active_only: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
    service: GovernanceService = Depends(get_governance_service),
):
    rows = await service.breaches.list_breaches(
        db, organization_id, status, severity, metric_id, active_only, limit, offset
    )
    return [_breach_response(b) for b in rows]


@router.get("/stats", response_model=BreachStatsResponse)
async def breach_stats(
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
    service: GovernanceService = Depends(get_governance_service),
):
    return BreachStatsResponse(**await service.breaches.statistics(db, organization_id))


@router.get("/{breach_id}", response_model=BreachDetailResponse)
async def get_breach(
    breach_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
    service: GovernanceService = Depends(get_governance_service),
):
    breach = await service.breaches.get_breach(db, organization_id, breach_id)
    events = await service.breaches.events(db, organization_id, breach_id)
    return BreachDetailResponse(
        **_breach_response(breach).model_dump(),
        events=[
            BreachEventResponse(
                event_type=e.event_type,
                from_status=e.from_status,
                to_status=e.to_status,
                severity=e.severity,
                actor=e.actor,
                details=e.details or {},
                created_at=e.created_at.isoformat(),
            )
            for e in events
        ],
    )


@router.post("/{breach_id}/acknowledge", response_model=BreachResponse)
async def acknowledge_breach(
    breach_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
    actor: Optional[str] = Depends(get_actor),
    service: GovernanceService = Depends(get_governance_service),
):
    return _breach_response(await service.breaches.acknowledge(db, organization_id, breach_id, actor))


@router.post("/{breach_id}/remediation", response_model=BreachResponse)
async def add_remediation_plan(
    breach_id: uuid.UUID,
    body: RemediationRequest,
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
    actor: Optional[str] = Depends(get_actor),
    service: GovernanceService = Depends(get_governance_service),
):
    breach = await service.breaches.start_remediation(
        db, organization_id, breach_id, body.plan, body.owner, body.due_date, actor
    )
    return _breach_response(breach)


@router.post("/{breach_id}/resolve", response_model=BreachResponse)
async def resolve_breach(
    breach_id: uuid.UUID,
    body: ResolveRequest,
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
    actor: Optional[str] = Depends(get_actor),
    service: GovernanceService = Depends(get_governance_service),
):
    return _breach_response(await service.breaches.resolve(db, organization_id, breach_id, body.notes, actor))


@router.post("/{breach_id}/exceptions", response_model=BoardExceptionResponse, status_code=201)
async def request_board_exception(
    breach_id: uuid.UUID,
    body: BoardExceptionRequest,
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
    actor: Optional[str] = Depends(get_actor),
    service: GovernanceService = Depends(get_governance_service),
):
    exc = await service.breaches.request_exception(
        db,
        organization_id,
        breach_id,
        body.model_dump(include={"green_min", "green_max", "amber_min", "amber_max"}),
        body.valid_until,
        body.rationale,
        actor,
    )
    return _exception_response(exc)


@router.post("/exceptions/{exception_id}/approve", response_model=BoardExceptionResponse)
async def approve_board_exception(
    exception_id: uuid.UUID,
    body: BoardExceptionDecision = BoardExceptionDecision(),
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
    actor: Optional[str] = Depends(get_actor),
    service: GovernanceService = Depends(get_governance_service),
):
    exc = await service.breaches.approve_exception(db, organization_id, exception_id, actor, body.notes)
    return _exception_response(exc)


@router.post("/exceptions/{exception_id}/reject", response_model=BoardExceptionResponse)
async def reject_board_exception(
    exception_id: uuid.UUID,
    body: BoardExceptionDecision = BoardExceptionDecision(),
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
    actor: Optional[str] = Depends(get_actor),
    service: GovernanceService = Depends(get_governance_service),
):
    exc = await service.breaches.reject_exception(db, organization_id, exception_id, actor, body.notes)
    return _exception_response(exc)
