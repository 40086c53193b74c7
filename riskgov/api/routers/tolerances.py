"""
Tolerance Metric & Coverage API Endpoints.

POST   /api/v1/tolerances                       — create a tolerance metric
GET    /api/v1/tolerances                       — list metrics
GET    /api/v1/tolerances/coverage/report       — coverage classification of every active metric
DELETE /api/v1/tolerances/coverage/{link_id}    — remove a coverage link
GET    /api/v1/tolerances/{metric_id}           — one metric
PATCH  /api/v1/tolerances/{metric_id}           — edit (thresholds locked once KRI-linked)
POST   /api/v1/tolerances/{metric_id}/kri       — link a live KRI feed
POST   /api/v1/tolerances/{metric_id}/coverage  — add a coverage link
GET    /api/v1/tolerances/{metric_id}/coverage  — coverage classification
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.api.deps import get_db, get_organization_id
from riskgov.appetite import metrics as metric_admin
from riskgov.appetite.coverage import CoverageResult, coverage_counts
from riskgov.appetite.schemas import (
    BreachRuleType,
    CoverageClass,
    CoverageLinkCreate,
    CoverageLinkResponse,
    CoverageReportResponse,
    CoverageResponse,
    CoverageStrength,
    LinkKRIRequest,
    MetricType,
    SignalType,
    ToleranceMetricCreate,
    ToleranceMetricResponse,
    ToleranceMetricUpdate,
)
from riskgov.db.models import ToleranceCoverage, ToleranceMetric
from riskgov.exceptions import ValidationError

router = APIRouter(prefix="/api/v1/tolerances", tags=["tolerances"])


def _metric_response(m: ToleranceMetric) -> ToleranceMetricResponse:
    return ToleranceMetricResponse(
        id=str(m.id),
        category_id=str(m.category_id),
        name=m.name,
        description=m.description,
        unit=m.unit,
        is_active=m.is_active,
        metric_type=MetricType(m.metric_type),
        green_min=m.green_min,
        green_max=m.green_max,
        amber_min=m.amber_min,
        amber_max=m.amber_max,
        directional_config=m.directional_config,
        breach_rule=BreachRuleType(m.breach_rule),
        breach_periods=m.breach_periods,
        breach_window_days=m.breach_window_days,
        escalation_rules=m.escalation_rules or {},
        owner_email=m.owner_email,
        kri_id=str(m.kri_id) if m.kri_id else None,
        thresholds_locked=metric_admin.is_locked(m),
    )


def _coverage_response(metric_id: uuid.UUID, r: CoverageResult) -> CoverageResponse:
    return CoverageResponse(
        metric_id=str(metric_id),
        classification=r.classification,
        label=r.label,
        reason=r.reason,
        link_count=r.link_count,
        primary_count=r.primary_count,
        leading_count=r.leading_count,
    )


def _link_response(link: ToleranceCoverage) -> CoverageLinkResponse:
    return CoverageLinkResponse(
        id=str(link.id),
        metric_id=str(link.metric_id),
        kri_id=str(link.kri_id),
        coverage_strength=CoverageStrength(link.coverage_strength),
        signal_type=SignalType(link.signal_type),
        rationale=link.rationale,
    )


@router.post("", response_model=ToleranceMetricResponse, status_code=201)
async def create_tolerance_metric(
    body: ToleranceMetricCreate,
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
):
    return _metric_response(await metric_admin.create_metric(db, organization_id, body))


@router.get("", response_model=list[ToleranceMetricResponse])
async def list_tolerance_metrics(
    category_id: Optional[uuid.UUID] = Query(None),
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
):
    rows = await metric_admin.list_metrics(db, organization_id, category_id, active_only)
    return [_metric_response(m) for m in rows]


@router.get("/coverage/report", response_model=CoverageReportResponse)
async def get_coverage_report(
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
):
    report = await metric_admin.coverage_report(db, organization_id)
    counts = coverage_counts(r for _, r in report)
    return CoverageReportResponse(
        total_metrics=len(report),
        gap_count=counts[CoverageClass.GAP],
        fragile_count=counts[CoverageClass.FRAGILE],
        good_count=counts[CoverageClass.GOOD],
        metrics=[_coverage_response(m.id, r) for m, r in report],
    )


@router.delete("/coverage/{link_id}", status_code=204)
async def delete_coverage_link(
    link_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
):
    await metric_admin.remove_coverage_link(db, organization_id, link_id)


@router.get("/{metric_id}", response_model=ToleranceMetricResponse)
async def get_tolerance_metric(
    metric_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
):
    return _metric_response(await metric_admin.get_metric(db, organization_id, metric_id))


@router.patch("/{metric_id}", response_model=ToleranceMetricResponse)
async def update_tolerance_metric(
    metric_id: uuid.UUID,
    body: ToleranceMetricUpdate,
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
):
    return _metric_response(await metric_admin.update_metric(db, organization_id, metric_id, body))


@router.post("/{metric_id}/kri", response_model=ToleranceMetricResponse)
async def link_tolerance_kri(
    metric_id: uuid.UUID,
    body: LinkKRIRequest,
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
):
    try:
        kri_id = uuid.UUID(body.kri_id)
    except ValueError as e:
        raise ValidationError("kri_id is not a valid id", field="kri_id", value=body.kri_id) from e
    return _metric_response(await metric_admin.link_kri(db, organization_id, metric_id, kri_id))


@router.post("/{metric_id}/coverage", response_model=CoverageLinkResponse, status_code=201)
async def add_coverage_link(
    metric_id: uuid.UUID,
    body: CoverageLinkCreate,
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
):
    return _link_response(await metric_admin.add_coverage_link(db, organization_id, metric_id, body))


@router.get("/{metric_id}/coverage", response_model=CoverageResponse)
async def get_metric_coverage(
    metric_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: uuid.UUID = Depends(get_organization_id),
):
    return _coverage_response(metric_id, await metric_admin.metric_coverage(db, organization_id, metric_id))
