"""
Tolerance metric administration.

Metrics are editable until linked to a live KRI feed. Linking copies the
KRI's thresholds (when it defines any) and from then on threshold edits are
rejected with ThresholdsLockedError.
"""

import uuid
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.appetite.coverage import CoverageLink, CoverageResult, analyze_coverage
from riskgov.appetite.evaluator import apply_override, validate_breach_rule, validate_thresholds
from riskgov.appetite.schemas import (
    BreachRule,
    BreachRuleType,
    CoverageLinkCreate,
    CoverageStrength,
    DirectionalConfig,
    MetricType,
    SignalType,
    Thresholds,
    ToleranceDefinition,
    ToleranceMetricCreate,
    ToleranceMetricUpdate,
    Trend,
)
from riskgov.config import settings
from riskgov.db.models import AppetiteCategory, KRIDefinition, ToleranceCoverage, ToleranceMetric
from riskgov.exceptions import DataNotFoundError, ThresholdsLockedError, ValidationError

logger = structlog.get_logger(__name__)

THRESHOLD_FIELDS = ("green_min", "green_max", "amber_min", "amber_max")
# Fields that change how a value is classified; locked together with the boundaries
_LOCKED_FIELDS = THRESHOLD_FIELDS + ("directional_config",)
_REQUIRED_FIELDS = ("name", "is_active", "breach_rule", "escalation_rules")


# ── ORM → evaluator ────────────────────────────────────────────────────


def metric_thresholds(metric) -> Thresholds:
    return Thresholds(**{f: getattr(metric, f) for f in THRESHOLD_FIELDS})


def breach_rule(metric) -> BreachRule:
    kind = BreachRuleType(metric.breach_rule)
    default_periods = (
        settings.default_breach_count if kind == BreachRuleType.N_BREACHES else settings.default_sustained_periods
    )
    return BreachRule(
        kind=kind,
        periods=metric.breach_periods or default_periods,
        window_days=metric.breach_window_days or settings.default_breach_window_days,
    )


def directional_config(metric) -> Optional[DirectionalConfig]:
    if MetricType(metric.metric_type) != MetricType.DIRECTIONAL:
        return None
    raw = metric.directional_config or {}
    return DirectionalConfig(
        lookback_days=int(raw.get("lookback_days") or settings.default_lookback_days),
        trend=Trend(raw.get("trend") or Trend.INCREASING_IS_BAD),
    )


def metric_definition(metric, override: Optional[dict] = None) -> ToleranceDefinition:
    """Evaluator definition for a metric, with any board-exception override layered on."""
    return ToleranceDefinition(
        metric_type=MetricType(metric.metric_type),
        thresholds=apply_override(metric_thresholds(metric), override),
        breach_rule=breach_rule(metric),
        directional=directional_config(metric),
    )


def is_locked(metric: ToleranceMetric) -> bool:
    return metric.kri_id is not None


# ── CRUD ───────────────────────────────────────────────────────────────


def _parse_id(value: str, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise ValidationError(f"{field} is not a valid id", field=field, value=value) from e


async def get_metric(db: AsyncSession, organization_id: uuid.UUID, metric_id: uuid.UUID) -> ToleranceMetric:
    metric = (
        await db.execute(
            select(ToleranceMetric).where(
                ToleranceMetric.id == metric_id,
                ToleranceMetric.organization_id == organization_id,
            )
        )
    ).scalar_one_or_none()
    if metric is None:
        raise DataNotFoundError("Tolerance metric", metric_id)
    return metric


async def list_metrics(
    db: AsyncSession,
    organization_id: uuid.UUID,
    category_id: Optional[uuid.UUID] = None,
    active_only: bool = False,
) -> list[ToleranceMetric]:
    query = select(ToleranceMetric).where(ToleranceMetric.organization_id == organization_id)
    if category_id:
        query = query.where(ToleranceMetric.category_id == category_id)
    if active_only:
        query = query.where(ToleranceMetric.is_active.is_(True))
    return list((await db.execute(query.order_by(ToleranceMetric.created_at))).scalars().all())


async def get_kri(db: AsyncSession, organization_id: uuid.UUID, kri_id: uuid.UUID) -> KRIDefinition:
    kri = (
        await db.execute(
            select(KRIDefinition).where(
                KRIDefinition.id == kri_id,
                KRIDefinition.organization_id == organization_id,
            )
        )
    ).scalar_one_or_none()
    if kri is None:
        raise DataNotFoundError("KRI", kri_id)
    return kri


async def create_metric(
    db: AsyncSession, organization_id: uuid.UUID, body: ToleranceMetricCreate
) -> ToleranceMetric:
    category_id = _parse_id(body.category_id, "category_id")
    category = (
        await db.execute(
            select(AppetiteCategory.id).where(
                AppetiteCategory.id == category_id,
                AppetiteCategory.organization_id == organization_id,
            )
        )
    ).scalar_one_or_none()
    if category is None:
        raise DataNotFoundError("Appetite category", category_id)

    metric = ToleranceMetric(
        id=uuid.uuid4(),
        organization_id=organization_id,
        category_id=category_id,
        name=body.name,
        description=body.description,
        unit=body.unit,
        metric_type=body.metric_type.value,
        green_min=body.green_min,
        green_max=body.green_max,
        amber_min=body.amber_min,
        amber_max=body.amber_max,
        directional_config=body.directional_config.model_dump(mode="json") if body.directional_config else None,
        breach_rule=body.breach_rule.value,
        breach_periods=body.breach_periods,
        breach_window_days=body.breach_window_days,
        escalation_rules=body.escalation_rules.model_dump(mode="json"),
        owner_email=body.owner_email,
        is_active=True,
    )
    validate_thresholds(MetricType(metric.metric_type), metric_thresholds(metric))
    validate_breach_rule(breach_rule(metric))

    db.add(metric)
    await db.flush()
    logger.info("tolerance_metric_created", metric_id=str(metric.id), metric_type=metric.metric_type)
    return metric


async def update_metric(
    db: AsyncSession,
    organization_id: uuid.UUID,
    metric_id: uuid.UUID,
    body: ToleranceMetricUpdate,
) -> ToleranceMetric:
    metric = await get_metric(db, organization_id, metric_id)
    changes = body.model_dump(exclude_unset=True)

    if is_locked(metric) and any(f in changes for f in _LOCKED_FIELDS):
        raise ThresholdsLockedError(metric_id)

    for key, value in changes.items():
        if value is None and key in _REQUIRED_FIELDS:
            continue
        if key in ("directional_config", "escalation_rules") and value is not None:
            value = getattr(body, key).model_dump(mode="json")
        setattr(metric, key, value)

    validate_thresholds(MetricType(metric.metric_type), metric_thresholds(metric))
    validate_breach_rule(breach_rule(metric))
    await db.flush()
    logger.info("tolerance_metric_updated", metric_id=str(metric_id), fields=sorted(changes))
    return metric


async def link_kri(
    db: AsyncSession,
    organization_id: uuid.UUID,
    metric_id: uuid.UUID,
    kri_id: uuid.UUID,
) -> ToleranceMetric:
    """Attach a live KRI feed; thresholds become read-only."""
    metric = await get_metric(db, organization_id, metric_id)
    kri = await get_kri(db, organization_id, kri_id)

    if metric.kri_id is not None:
        if metric.kri_id == kri_id:
            return metric
        raise ThresholdsLockedError(metric_id)

    inherited = {f: getattr(kri, f) for f in THRESHOLD_FIELDS if getattr(kri, f) is not None}
    if inherited:
        candidate = apply_override(metric_thresholds(metric), inherited)
        validate_thresholds(MetricType(metric.metric_type), candidate)
        for key, value in candidate.as_dict().items():
            setattr(metric, key, value)

    metric.kri_id = kri_id
    metric.linked_at = datetime.utcnow()

    existing = (
        await db.execute(
            select(ToleranceCoverage.id).where(
                ToleranceCoverage.organization_id == organization_id,
                ToleranceCoverage.metric_id == metric_id,
                ToleranceCoverage.kri_id == kri_id,
            )
        )
    ).scalar_one_or_none()
    if existing is None:
        # The live feed is the metric's own measurement
        db.add(
            ToleranceCoverage(
                id=uuid.uuid4(),
                organization_id=organization_id,
                metric_id=metric_id,
                kri_id=kri_id,
                coverage_strength=CoverageStrength.PRIMARY.value,
                signal_type=SignalType.CONCURRENT.value,
                rationale="Live measurement feed",
            )
        )

    await db.flush()
    logger.info("tolerance_metric_linked", metric_id=str(metric_id), kri_id=str(kri_id), inherited=sorted(inherited))
    return metric


async def linked_metrics(db: AsyncSession, organization_id: uuid.UUID, kri_id: uuid.UUID) -> list[ToleranceMetric]:
    rows = await db.execute(
        select(ToleranceMetric).where(
            ToleranceMetric.organization_id == organization_id,
            ToleranceMetric.kri_id == kri_id,
            ToleranceMetric.is_active.is_(True),
        )
    )
    return list(rows.scalars().all())


# ── Coverage ───────────────────────────────────────────────────────────


async def add_coverage_link(
    db: AsyncSession,
    organization_id: uuid.UUID,
    metric_id: uuid.UUID,
    body: CoverageLinkCreate,
) -> ToleranceCoverage:
    await get_metric(db, organization_id, metric_id)
    kri_id = _parse_id(body.kri_id, "kri_id")
    await get_kri(db, organization_id, kri_id)

    link = ToleranceCoverage(
        id=uuid.uuid4(),
        organization_id=organization_id,
        metric_id=metric_id,
        kri_id=kri_id,
        coverage_strength=body.coverage_strength.value,
        signal_type=body.signal_type.value,
        rationale=body.rationale,
    )
    db.add(link)
    try:
        await db.flush()
    except IntegrityError as e:
        raise ValidationError("KRI is already linked to this metric", field="kri_id", value=body.kri_id) from e
    return link


async def remove_coverage_link(db: AsyncSession, organization_id: uuid.UUID, link_id: uuid.UUID) -> None:
    link = (
        await db.execute(
            select(ToleranceCoverage).where(
                ToleranceCoverage.id == link_id,
                ToleranceCoverage.organization_id == organization_id,
            )
        )
    ).scalar_one_or_none()
    if link is None:
        raise DataNotFoundError("Coverage link", link_id)
    await db.delete(link)
    await db.flush()


async def coverage_links(
    db: AsyncSession, organization_id: uuid.UUID, metric_id: Optional[uuid.UUID] = None
) -> list[ToleranceCoverage]:
    query = select(ToleranceCoverage).where(ToleranceCoverage.organization_id == organization_id)
    if metric_id:
        query = query.where(ToleranceCoverage.metric_id == metric_id)
    return list((await db.execute(query)).scalars().all())


def _as_link(row: ToleranceCoverage) -> CoverageLink:
    return CoverageLink(
        kri_id=str(row.kri_id),
        strength=CoverageStrength(row.coverage_strength),
        signal_type=SignalType(row.signal_type),
    )


async def metric_coverage(db: AsyncSession, organization_id: uuid.UUID, metric_id: uuid.UUID) -> CoverageResult:
    await get_metric(db, organization_id, metric_id)
    rows = await coverage_links(db, organization_id, metric_id)
    return analyze_coverage([_as_link(r) for r in rows])


async def coverage_report(
    db: AsyncSession, organization_id: uuid.UUID
) -> list[tuple[ToleranceMetric, CoverageResult]]:
    metrics = await list_metrics(db, organization_id, active_only=True)
    by_metric: dict[uuid.UUID, list[CoverageLink]] = {m.id: [] for m in metrics}
    for row in await coverage_links(db, organization_id):
        if row.metric_id in by_metric:
            by_metric[row.metric_id].append(_as_link(row))
    return [(m, analyze_coverage(by_metric[m.id])) for m in metrics]
