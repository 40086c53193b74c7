"""
Appetite Governance Service.

Pipeline for one organization:
  record observation → evaluate every metric fed by the KRI
  → record violation (breach upsert + escalation claim)
  → commit → deliver claimed escalations

plus the single-flight bulk recalculation, the read-time status rollups and
the per-risk appetite decision. Evaluations that can touch breaches run
under the organization lock; notifications go out only after it is released
and the breach rows are committed.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.appetite import aggregation
from riskgov.appetite.breaches import BreachLifecycleManager, BreachOutcome
from riskgov.appetite.evaluator import evaluate
from riskgov.appetite.metrics import get_kri, get_metric, linked_metrics, list_metrics, metric_definition
from riskgov.appetite.schemas import (
    AppetiteLevel,
    CategoryStatusResponse,
    EnterpriseStatusResponse,
    MetricStatus,
    Observation,
    Severity,
    StatusSummary,
    ToleranceEvaluation,
    Zone,
    utc_naive,
)
from riskgov.config import settings
from riskgov.db.locks import is_recalculating, organization_lock, recalculation_guard
from riskgov.db.models import AppetiteCategory, Breach, KRIObservation, Risk, ToleranceMetric
from riskgov.exceptions import DataNotFoundError
from riskgov.scoring.appetite import AppetiteSeverity, RiskAppetiteResult, ToleranceState, decide_risk_appetite
from riskgov.scoring.service import get_risk, recalculate_organization_risks, recalculate_risk

logger = structlog.get_logger(__name__)


@dataclass
class MetricEvaluation:
    metric_id: uuid.UUID
    evaluation: ToleranceEvaluation
    breach: Optional[BreachOutcome] = None


@dataclass
class RecalculationSummary:
    organization_id: uuid.UUID
    metrics_evaluated: int = 0
    breaches_opened: int = 0
    breaches_updated: int = 0
    exceptions_expired: int = 0
    risks_recalculated: int = 0
    risks_out_of_appetite: int = 0


class GovernanceService:
    """Observation intake, metric evaluation, bulk recalculation, status rollups."""

    def __init__(self, breaches: Optional[BreachLifecycleManager] = None):
        self.breaches = breaches or BreachLifecycleManager()

    # ── History ────────────────────────────────────────────────────────

    async def load_history(
        self,
        db: AsyncSession,
        organization_id: uuid.UUID,
        kri_id: uuid.UUID,
        until: Optional[datetime] = None,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> list[tuple[uuid.UUID, Observation]]:
        """Quality-approved observations, oldest first, bounded by EVALUATION_HISTORY_LIMIT."""
        query = select(KRIObservation).where(
            KRIObservation.organization_id == organization_id,
            KRIObservation.kri_id == kri_id,
            KRIObservation.data_quality_ok.is_(True),
        )
        if until is not None:
            query = query.where(KRIObservation.observed_at <= until)
        if exclude_id is not None:
            query = query.where(KRIObservation.id != exclude_id)
        query = query.order_by(KRIObservation.observed_at.desc()).limit(settings.evaluation_history_limit)
        rows = (await db.execute(query)).scalars().all()
        return [(r.id, Observation(value=r.observed_value, observed_at=r.observed_at)) for r in reversed(rows)]

    # ── Evaluation ─────────────────────────────────────────────────────

    async def _evaluate_locked(
        self,
        db: AsyncSession,
        organization_id: uuid.UUID,
        metric: ToleranceMetric,
        current: Optional[Observation] = None,
        current_id: Optional[uuid.UUID] = None,
    ) -> Optional[MetricEvaluation]:
        """Evaluate one metric. Caller holds the organization lock."""
        if metric.kri_id is None:
            return None

        if current is None:
            rows = await self.load_history(db, organization_id, metric.kri_id)
            if not rows:
                return None
            current_id, current = rows[-1]
            history = [obs for _, obs in rows[:-1]]
        else:
            rows = await self.load_history(
                db, organization_id, metric.kri_id, until=current.observed_at, exclude_id=current_id
            )
            history = [obs for _, obs in rows]

        override = await self.breaches.load_override(db, organization_id, metric.id)
        evaluation = evaluate(metric_definition(metric, override), current, history)

        outcome = None
        if evaluation.breached:
            outcome = await self.breaches.record_violation(db, organization_id, metric, evaluation)

        logger.info(
            "metric_evaluated",
            metric_id=str(metric.id),
            zone=evaluation.zone.value,
            breached=evaluation.breached,
            severity=evaluation.severity.value if evaluation.severity else None,
            override=override is not None,
        )
        return MetricEvaluation(metric_id=metric.id, evaluation=evaluation, breach=outcome)

    async def evaluate_metric(
        self, db: AsyncSession, organization_id: uuid.UUID, metric_id: uuid.UUID
    ) -> Optional[MetricEvaluation]:
        """Re-evaluate a metric against its latest approved observation."""
        metric = await get_metric(db, organization_id, metric_id)
        async with organization_lock(db, organization_id):
            result = await self._evaluate_locked(db, organization_id, metric)
        if result is not None:
            await self._deliver_after_commit(db, [result.breach])
        return result

    async def record_observation(
        self,
        db: AsyncSession,
        organization_id: uuid.UUID,
        kri_id: uuid.UUID,
        value: float,
        observed_at: Optional[datetime] = None,
        data_quality_ok: bool = True,
        notes: Optional[str] = None,
        recorded_by: Optional[str] = None,
    ) -> tuple[KRIObservation, list[MetricEvaluation]]:
        """Append an observation and evaluate the metrics it feeds."""
        await get_kri(db, organization_id, kri_id)
        row = KRIObservation(
            id=uuid.uuid4(),
            organization_id=organization_id,
            kri_id=kri_id,
            observed_value=value,
            observed_at=utc_naive(observed_at) or datetime.utcnow(),
            data_quality_ok=data_quality_ok,
            notes=notes,
            recorded_by=recorded_by,
        )
        db.add(row)
        await db.flush()

        if not data_quality_ok:
            logger.info("observation_excluded", kri_id=str(kri_id), observation_id=str(row.id), reason="data_quality")
            return row, []

        current = Observation(value=row.observed_value, observed_at=row.observed_at)
        results: list[MetricEvaluation] = []
        async with organization_lock(db, organization_id):
            for metric in await linked_metrics(db, organization_id, kri_id):
                result = await self._evaluate_locked(db, organization_id, metric, current, row.id)
                if result is not None:
                    results.append(result)
        await self._deliver_after_commit(db, [r.breach for r in results])
        return row, results

    async def recalculate_organization(
        self, db: AsyncSession, organization_id: uuid.UUID
    ) -> RecalculationSummary:
        """
        Bulk recalculation: expire lapsed board exceptions, re-evaluate every
        active KRI-fed metric, recompute residual risk and re-decide each
        risk's appetite.

        Raises RecalculationInProgressError if one is already running.
        """
        summary = RecalculationSummary(organization_id=organization_id)
        outcomes: list[Optional[BreachOutcome]] = []
        async with recalculation_guard(db, organization_id):
            async with organization_lock(db, organization_id):
                logger.info("recalculation_started", organization_id=str(organization_id))
                summary.exceptions_expired = await self.breaches.expire_exceptions(db, organization_id)
                for metric in await list_metrics(db, organization_id, active_only=True):
                    result = await self._evaluate_locked(db, organization_id, metric)
                    if result is None:
                        continue
                    summary.metrics_evaluated += 1
                    outcomes.append(result.breach)
                    if result.breach is not None:
                        if result.breach.created:
                            summary.breaches_opened += 1
                        else:
                            summary.breaches_updated += 1
                summary.risks_recalculated = await recalculate_organization_risks(db, organization_id)
                summary.risks_out_of_appetite = await self._decide_organization_appetite(db, organization_id)
        await self._deliver_after_commit(db, outcomes)
        logger.info(
            "recalculation_completed",
            organization_id=str(organization_id),
            metrics=summary.metrics_evaluated,
            opened=summary.breaches_opened,
            updated=summary.breaches_updated,
            out_of_appetite=summary.risks_out_of_appetite,
        )
        return summary

    async def _deliver_after_commit(
        self, db: AsyncSession, outcomes: Iterable[Optional[BreachOutcome]]
    ) -> None:
        """Commit the claimed escalations, then send them. No-op when nothing was claimed."""
        pending = [o for o in outcomes if o is not None and o.pending is not None]
        if not pending:
            return
        await db.commit()
        await self.breaches.deliver_escalations(db, pending)

    # ── Risk appetite ──────────────────────────────────────────────────

    async def _governed_metrics(
        self, db: AsyncSession, organization_id: uuid.UUID, active: dict[uuid.UUID, Breach]
    ) -> list[ToleranceMetric]:
        """Active metrics, plus deactivated ones that still hold an active breach."""
        return [m for m in await list_metrics(db, organization_id) if m.is_active or m.id in active]

    async def _tolerance_state(
        self,
        db: AsyncSession,
        organization_id: uuid.UUID,
        metric: ToleranceMetric,
        breach: Optional[Breach],
        now: datetime,
    ) -> ToleranceState:
        metric_id, name = str(metric.id), metric.name
        if breach is not None:
            if breach.severity == Severity.RED.value:
                return ToleranceState(metric_id, name, hard_breached=True, soft_breached=True, rule_met=True,
                                      severity=AppetiteSeverity.CRITICAL)
            return ToleranceState(metric_id, name, soft_breached=True, rule_met=True, severity=AppetiteSeverity.WARN)

        missing = ToleranceState(metric_id, name, data_missing=True, severity=AppetiteSeverity.WARN)
        if metric.kri_id is None:
            return missing
        rows = await self.load_history(db, organization_id, metric.kri_id)
        if not rows or rows[-1][1].observed_at < now - timedelta(days=settings.appetite_data_window_days):
            return missing

        override = await self.breaches.load_override(db, organization_id, metric.id)
        evaluation = evaluate(metric_definition(metric, override), rows[-1][1], [obs for _, obs in rows[:-1]])
        if evaluation.zone == Zone.UNKNOWN:
            return missing
        if evaluation.zone == Zone.GREEN:
            return ToleranceState(metric_id, name)
        if evaluation.breached:
            # Due but not yet recorded as a breach
            if evaluation.severity == Severity.RED:
                return ToleranceState(metric_id, name, hard_breached=True, soft_breached=True, rule_met=True,
                                      severity=AppetiteSeverity.CRITICAL)
            return ToleranceState(metric_id, name, soft_breached=True, rule_met=True, severity=AppetiteSeverity.WARN)
        return ToleranceState(metric_id, name, soft_breached=True, severity=AppetiteSeverity.WARN)

    async def _category_states(
        self,
        db: AsyncSession,
        organization_id: uuid.UUID,
        category: AppetiteCategory,
        active: dict[uuid.UUID, Breach],
        now: datetime,
    ) -> list[ToleranceState]:
        return [
            await self._tolerance_state(db, organization_id, m, active.get(m.id), now)
            for m in await self._governed_metrics(db, organization_id, active)
            if m.category_id == category.id
        ]

    def _store_appetite(
        self, risk: Risk, category: Optional[AppetiteCategory], states: list[ToleranceState]
    ) -> RiskAppetiteResult:
        # Risks without a declared category are judged at MODERATE
        level = AppetiteLevel(category.appetite_level) if category else AppetiteLevel.MODERATE
        score = risk.residual_score if risk.residual_score is not None else risk.inherent_likelihood * risk.inherent_impact
        result = decide_risk_appetite(score, level, states, category.materiality_threshold if category else None)

        risk.appetite_multiplier = result.multiplier
        risk.appetite_adjusted_score = result.adjusted_score
        risk.out_of_appetite = result.decision.out_of_appetite
        risk.appetite_reason = result.decision.reason.value
        risk.appetite_evaluated_at = datetime.utcnow()

        logger.info(
            "risk_appetite_evaluated",
            risk_id=str(risk.id),
            level=level.value,
            reason=result.decision.reason.value,
            out_of_appetite=result.decision.out_of_appetite,
            adjusted_score=result.adjusted_score,
        )
        return result

    async def _categories_by_name(self, db: AsyncSession, organization_id: uuid.UUID) -> dict[str, AppetiteCategory]:
        rows = await db.execute(select(AppetiteCategory).where(AppetiteCategory.organization_id == organization_id))
        return {c.risk_category: c for c in rows.scalars().all()}

    async def evaluate_risk_appetite(
        self, db: AsyncSession, organization_id: uuid.UUID, risk_id: uuid.UUID
    ) -> RiskAppetiteResult:
        """
        Recompute the risk's residual score, then decide whether it sits
        within its category's appetite and store the decision on the risk.
        """
        await recalculate_risk(db, organization_id, risk_id)
        risk = await get_risk(db, organization_id, risk_id)
        category = (await self._categories_by_name(db, organization_id)).get(risk.category)
        states: list[ToleranceState] = []
        if category is not None:
            active = await self.breaches.active_breaches(db, organization_id)
            states = await self._category_states(db, organization_id, category, active, datetime.utcnow())
        result = self._store_appetite(risk, category, states)
        await db.flush()
        return result

    async def _decide_organization_appetite(self, db: AsyncSession, organization_id: uuid.UUID) -> int:
        """Appetite decision for every risk from the current residuals. Returns how many are out of appetite."""
        now = datetime.utcnow()
        active = await self.breaches.active_breaches(db, organization_id)
        categories = await self._categories_by_name(db, organization_id)
        states = {
            c.id: await self._category_states(db, organization_id, c, active, now) for c in categories.values()
        }
        risks = (await db.execute(select(Risk).where(Risk.organization_id == organization_id))).scalars().all()
        out_of_appetite = 0
        for risk in risks:
            category = categories.get(risk.category)
            result = self._store_appetite(risk, category, states[category.id] if category else [])
            if result.decision.out_of_appetite:
                out_of_appetite += 1
        await db.flush()
        return out_of_appetite

    # ── Status rollups ─────────────────────────────────────────────────

    async def _category_statuses(
        self,
        db: AsyncSession,
        organization_id: uuid.UUID,
        categories: list[AppetiteCategory],
    ) -> list[CategoryStatusResponse]:
        active = await self.breaches.active_breaches(db, organization_id)
        # An active breach counts even after its metric is deactivated
        metrics = await self._governed_metrics(db, organization_id, active)

        responses = []
        for category in categories:
            statuses = []
            for m in [m for m in metrics if m.category_id == category.id]:
                breach = active.get(m.id)
                statuses.append(
                    MetricStatus(
                        metric_id=str(m.id),
                        name=m.name,
                        status=aggregation.metric_status(breach.severity if breach else None),
                        breach_id=str(breach.id) if breach else None,
                    )
                )
            responses.append(
                CategoryStatusResponse(
                    category_id=str(category.id),
                    risk_category=category.risk_category,
                    appetite_level=AppetiteLevel(category.appetite_level),
                    status=aggregation.category_status(s.status for s in statuses),
                    metrics=statuses,
                )
            )
        return responses

    async def category_status(
        self, db: AsyncSession, organization_id: uuid.UUID, category_id: uuid.UUID
    ) -> CategoryStatusResponse:
        category = (
            await db.execute(
                select(AppetiteCategory).where(
                    AppetiteCategory.id == category_id,
                    AppetiteCategory.organization_id == organization_id,
                )
            )
        ).scalar_one_or_none()
        if category is None:
            raise DataNotFoundError("Appetite category", category_id)
        return (await self._category_statuses(db, organization_id, [category]))[0]

    async def enterprise_status(self, db: AsyncSession, organization_id: uuid.UUID) -> EnterpriseStatusResponse:
        categories = list(
            (
                await db.execute(
                    select(AppetiteCategory)
                    .where(AppetiteCategory.organization_id == organization_id)
                    .order_by(AppetiteCategory.risk_category)
                )
            ).scalars().all()
        )
        rows = await self._category_statuses(db, organization_id, categories)
        statuses = [c.status for c in rows]
        return EnterpriseStatusResponse(
            overall_status=aggregation.enterprise_status(statuses),
            categories=rows,
            summary=StatusSummary(**aggregation.summarize(statuses)),
            recalculating=is_recalculating(organization_id),
        )
