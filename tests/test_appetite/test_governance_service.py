"""
Tests for the Appetite Governance Service.

Covers:
- Observation intake → evaluation → breach, per linked metric
- Data-quality exclusion from evaluation history
- Threshold lock once a KRI feed is linked; coverage links
- Bulk recalculation and its single-flight guard
- Board-exception overrides in the pipeline, and re-breach on expiry
- Category / enterprise status rollups, including deactivated metrics with open breaches
- Escalations are sent only after the breach is committed
- Per-risk appetite decisions, stored on the risk
- Concurrent observations converge on one breach
- Tenant isolation
"""

import asyncio
import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select, update

from riskgov.appetite import metrics as metric_admin
from riskgov.appetite.schemas import (
    BreachStatus,
    CoverageClass,
    CoverageLinkCreate,
    CoverageStrength,
    SignalType,
    ToleranceMetricUpdate,
    Zone,
)
from riskgov.appetite.breaches import BreachLifecycleManager
from riskgov.appetite.escalation import EscalationNotifier
from riskgov.appetite.service import GovernanceService
from riskgov.db.locks import is_recalculating, recalculation_guard
from riskgov.db.models import AppetiteCategory, BoardException, Breach, BreachEvent, KRIObservation, Risk
from riskgov.exceptions import (
    DataNotFoundError,
    RecalculationInProgressError,
    ThresholdsLockedError,
    ValidationError,
)
from riskgov.scoring.appetite import AppetiteReason


async def _active_breaches(db, metric) -> list[Breach]:
    rows = await db.execute(
        select(Breach).where(Breach.metric_id == metric.id, Breach.active_metric_id.is_not(None))
    )
    return list(rows.scalars().all())


# ── Observation pipeline ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_green_observation_creates_no_breach(db, org_a, kri_a, metric_a, service):
    row, results = await service.record_observation(db, org_a.id, kri_a.id, 3.0)
    await db.commit()

    assert row.data_quality_ok is True
    assert len(results) == 1
    assert results[0].evaluation.zone == Zone.GREEN
    assert results[0].breach is None
    assert await _active_breaches(db, metric_a) == []


@pytest.mark.asyncio
async def test_red_observation_opens_breach(db, org_a, kri_a, metric_a, service, recording_router):
    _, results = await service.record_observation(db, org_a.id, kri_a.id, 12.0, recorded_by="feed")
    await db.commit()

    result = results[0]
    assert result.metric_id == metric_a.id
    assert result.evaluation.severity.value == "RED"
    assert result.breach.created is True
    assert len(recording_router.calls) == 1

    [breach] = await _active_breaches(db, metric_a)
    assert breach.id == result.breach.breach_id
    assert breach.status == BreachStatus.OPEN


@pytest.mark.asyncio
async def test_observation_feeds_every_active_linked_metric(
    db, org_a, category_a, kri_a, create_metric, service
):
    strict = await create_metric(org_a, category_a, kri_a, name="Strict", green_max=1.0, amber_max=2.0)
    loose = await create_metric(org_a, category_a, kri_a, name="Loose", green_max=50.0, amber_max=100.0)
    await create_metric(org_a, category_a, kri_a, name="Retired", is_active=False)

    _, results = await service.record_observation(db, org_a.id, kri_a.id, 3.0)
    zones = {r.metric_id: r.evaluation.zone for r in results}
    assert zones == {strict.id: Zone.RED, loose.id: Zone.GREEN}


@pytest.mark.asyncio
async def test_bad_quality_observation_is_stored_but_not_evaluated(
    db, org_a, category_a, kri_a, create_metric, service
):
    metric = await create_metric(org_a, category_a, kri_a, breach_rule="SUSTAINED", breach_periods=2)
    now = datetime.utcnow()

    row, results = await service.record_observation(
        db, org_a.id, kri_a.id, 12.0, observed_at=now - timedelta(hours=2), data_quality_ok=False
    )
    assert results == []
    assert row.data_quality_ok is False

    # The excluded reading does not count toward the consecutive run
    _, results = await service.record_observation(db, org_a.id, kri_a.id, 12.0, observed_at=now - timedelta(hours=1))
    assert results[0].evaluation.consecutive_count == 1
    assert results[0].evaluation.breached is False

    _, results = await service.record_observation(db, org_a.id, kri_a.id, 12.0, observed_at=now)
    assert results[0].evaluation.breached is True
    await db.commit()

    stored = (
        await db.execute(select(func.count()).select_from(KRIObservation).where(KRIObservation.kri_id == kri_a.id))
    ).scalar()
    assert stored == 3
    assert len(await _active_breaches(db, metric)) == 1


@pytest.mark.asyncio
async def test_observation_for_other_tenants_kri_is_not_found(db, org_b, kri_a, metric_a, service):
    with pytest.raises(DataNotFoundError):
        await service.record_observation(db, org_b.id, kri_a.id, 12.0)


@pytest.mark.asyncio
async def test_metric_without_feed_is_not_evaluated(db, org_a, category_a, create_metric, service):
    metric = await create_metric(org_a, category_a)
    assert await service.evaluate_metric(db, org_a.id, metric.id) is None


# ── Threshold lock & coverage ──────────────────────────────────────────


@pytest.mark.asyncio
async def test_linking_kri_inherits_thresholds_and_locks_them(
    db, org_a, category_a, create_kri, create_metric
):
    kri = await create_kri(org_a, "KRI-LOCK", green_max=4.0, amber_max=8.0)
    metric = await create_metric(org_a, category_a)

    linked = await metric_admin.link_kri(db, org_a.id, metric.id, kri.id)
    assert (linked.green_max, linked.amber_max) == (4.0, 8.0)
    assert metric_admin.is_locked(linked)

    with pytest.raises(ThresholdsLockedError):
        await metric_admin.update_metric(db, org_a.id, metric.id, ToleranceMetricUpdate(green_max=6.0))

    renamed = await metric_admin.update_metric(db, org_a.id, metric.id, ToleranceMetricUpdate(name="Renamed"))
    assert renamed.name == "Renamed"
    assert renamed.green_max == 4.0


@pytest.mark.asyncio
async def test_relinking_a_locked_metric(db, org_a, category_a, create_kri, create_metric):
    first = await create_kri(org_a, "KRI-A")
    second = await create_kri(org_a, "KRI-B")
    metric = await create_metric(org_a, category_a)

    await metric_admin.link_kri(db, org_a.id, metric.id, first.id)
    again = await metric_admin.link_kri(db, org_a.id, metric.id, first.id)
    assert again.kri_id == first.id
    with pytest.raises(ThresholdsLockedError):
        await metric_admin.link_kri(db, org_a.id, metric.id, second.id)


@pytest.mark.asyncio
async def test_unlinked_metric_thresholds_are_editable_and_validated(db, org_a, category_a, create_metric):
    metric = await create_metric(org_a, category_a)
    updated = await metric_admin.update_metric(db, org_a.id, metric.id, ToleranceMetricUpdate(green_max=7.0))
    assert updated.green_max == 7.0
    with pytest.raises(ValidationError):
        await metric_admin.update_metric(db, org_a.id, metric.id, ToleranceMetricUpdate(green_max=11.0))


@pytest.mark.asyncio
async def test_coverage_follows_links(db, org_a, category_a, create_kri, create_metric):
    feed = await create_kri(org_a, "KRI-FEED")
    leading = await create_kri(org_a, "KRI-LEAD")
    metric = await create_metric(org_a, category_a)

    assert (await metric_admin.metric_coverage(db, org_a.id, metric.id)).classification == CoverageClass.GAP

    await metric_admin.link_kri(db, org_a.id, metric.id, feed.id)
    fragile = await metric_admin.metric_coverage(db, org_a.id, metric.id)
    assert fragile.classification == CoverageClass.FRAGILE
    assert fragile.primary_count == 1

    link = await metric_admin.add_coverage_link(
        db, org_a.id, metric.id,
        CoverageLinkCreate(kri_id=str(leading.id), signal_type=SignalType.LEADING),
    )
    assert link.coverage_strength == CoverageStrength.SECONDARY
    good = await metric_admin.metric_coverage(db, org_a.id, metric.id)
    assert good.classification == CoverageClass.GOOD
    assert good.leading_count == 1

    await metric_admin.remove_coverage_link(db, org_a.id, link.id)
    assert (await metric_admin.metric_coverage(db, org_a.id, metric.id)).classification == CoverageClass.FRAGILE


@pytest.mark.asyncio
async def test_coverage_report_lists_active_metrics(db, org_a, category_a, kri_a, create_metric):
    await create_metric(org_a, category_a, name="Unwatched")
    await create_metric(org_a, category_a, name="Retired", is_active=False)
    report = await metric_admin.coverage_report(db, org_a.id)
    assert [(m.name, r.classification) for m, r in report] == [("Unwatched", CoverageClass.GAP)]


# ── Recalculation ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_recalculation_evaluates_latest_observation(db, org_a, kri_a, metric_a, service):
    now = datetime.utcnow()
    db.add_all([
        KRIObservation(id=uuid.uuid4(), organization_id=org_a.id, kri_id=kri_a.id,
                       observed_value=3.0, observed_at=now - timedelta(days=1)),
        KRIObservation(id=uuid.uuid4(), organization_id=org_a.id, kri_id=kri_a.id,
                       observed_value=12.0, observed_at=now),
    ])
    await db.commit()

    summary = await service.recalculate_organization(db, org_a.id)
    await db.commit()
    assert summary.metrics_evaluated == 1
    assert summary.breaches_opened == 1
    assert summary.risks_recalculated == 0
    assert len(await _active_breaches(db, metric_a)) == 1
    assert not is_recalculating(org_a.id)


@pytest.mark.asyncio
async def test_recalculation_is_single_flight_per_organization(
    db, session_factory, org_a, org_b, metric_a, service
):
    async with recalculation_guard(db, org_a.id):
        assert is_recalculating(org_a.id)
        status = await service.enterprise_status(db, org_a.id)
        assert status.recalculating is True

        async with session_factory() as other:
            with pytest.raises(RecalculationInProgressError):
                await service.recalculate_organization(other, org_a.id)

        # Another organization is not blocked
        async with session_factory() as other:
            summary = await service.recalculate_organization(other, org_b.id)
            assert summary.organization_id == org_b.id

    assert not is_recalculating(org_a.id)


# ── Board exceptions in the pipeline ───────────────────────────────────


@pytest.mark.asyncio
async def test_approved_exception_suppresses_then_expiry_rebreaches(
    db, org_a, kri_a, metric_a, service, breach_manager
):
    _, results = await service.record_observation(db, org_a.id, kri_a.id, 12.0)
    first_id = results[0].breach.breach_id
    exc = await breach_manager.request_exception(
        db, org_a.id, first_id, {"green_max": 13.0, "amber_max": 20.0},
        datetime.utcnow() + timedelta(days=30), "Planned migration",
    )
    await breach_manager.approve_exception(db, org_a.id, exc.id, actor="board@alpha.test")
    await db.commit()

    _, results = await service.record_observation(db, org_a.id, kri_a.id, 12.0)
    assert results[0].evaluation.zone == Zone.GREEN
    assert results[0].breach is None
    await db.commit()

    await db.execute(
        update(BoardException)
        .where(BoardException.id == exc.id)
        .values(valid_until=datetime.utcnow() - timedelta(minutes=1))
    )
    await db.commit()

    summary = await service.recalculate_organization(db, org_a.id)
    await db.commit()
    assert summary.exceptions_expired == 1
    assert summary.breaches_opened == 1

    [reopened] = await _active_breaches(db, metric_a)
    assert reopened.id != first_id
    assert reopened.prior_breach_id == first_id


# ── Status rollups ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_status_rolls_up_worst_case(db, session_factory, org_a, category_a, kri_a, metric_a, service):
    async with session_factory() as session:
        session.add(AppetiteCategory(id=uuid.uuid4(), organization_id=org_a.id, risk_category="Strategic"))
        await session.commit()

    status = await service.enterprise_status(db, org_a.id)
    assert status.overall_status == Zone.GREEN
    assert status.summary.total_categories == 2

    _, results = await service.record_observation(db, org_a.id, kri_a.id, 12.0)
    await db.commit()

    status = await service.enterprise_status(db, org_a.id)
    assert status.overall_status == Zone.RED
    assert status.summary.red_count == 1
    assert status.summary.green_count == 1

    category = await service.category_status(db, org_a.id, category_a.id)
    assert category.status == Zone.RED
    assert category.metrics[0].breach_id == str(results[0].breach.breach_id)

    await service.breaches.resolve(db, org_a.id, results[0].breach.breach_id, "Fixed upstream")
    await db.commit()
    assert (await service.category_status(db, org_a.id, category_a.id)).status == Zone.GREEN


@pytest.mark.asyncio
async def test_deactivated_metric_with_open_breach_stays_in_status(db, org_a, category_a, kri_a, metric_a, service):
    _, results = await service.record_observation(db, org_a.id, kri_a.id, 12.0)
    await db.commit()
    await metric_admin.update_metric(db, org_a.id, metric_a.id, ToleranceMetricUpdate(is_active=False))
    await db.commit()

    category = await service.category_status(db, org_a.id, category_a.id)
    assert category.status == Zone.RED
    assert [m.metric_id for m in category.metrics] == [str(metric_a.id)]
    assert (await service.enterprise_status(db, org_a.id)).overall_status == Zone.RED

    # Once the breach is closed the retired metric drops out
    await service.breaches.resolve(db, org_a.id, results[0].breach.breach_id, "Metric retired")
    await db.commit()
    category = await service.category_status(db, org_a.id, category_a.id)
    assert category.status == Zone.GREEN
    assert category.metrics == []


@pytest.mark.asyncio
async def test_status_is_tenant_scoped(db, org_a, org_b, category_a, category_b, kri_a, metric_a, service):
    await service.record_observation(db, org_a.id, kri_a.id, 12.0)
    await db.commit()

    status_b = await service.enterprise_status(db, org_b.id)
    assert status_b.overall_status == Zone.GREEN
    assert [c.category_id for c in status_b.categories] == [str(category_b.id)]

    with pytest.raises(DataNotFoundError):
        await service.category_status(db, org_b.id, category_a.id)


# ── Concurrency ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_concurrent_observations_share_one_breach(
    session_factory, org_a, kri_a, metric_a, service, recording_router
):
    now = datetime.utcnow()

    async def _observe(value: float, at: datetime):
        async with session_factory() as session:
            _, results = await service.record_observation(session, org_a.id, kri_a.id, value, observed_at=at)
            await session.commit()
            return results[0].breach

    outcomes = await asyncio.gather(
        _observe(12.0, now - timedelta(seconds=1)),
        _observe(12.0, now),
    )

    assert outcomes[0].breach_id == outcomes[1].breach_id
    assert sorted(o.created for o in outcomes) == [False, True]
    assert len(recording_router.calls) == 1

    async with session_factory() as session:
        [breach] = await _active_breaches(session, metric_a)
        assert breach.occurrence_count == 2


# ── Escalation delivery ────────────────────────────────────────────────


class CommitCheckingRouter:
    """Records, for each dispatch, whether another session can already see the breach."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self.visible: list[bool] = []

    async def dispatch(self, notification, channel_configs):
        async with self.session_factory() as session:
            breach = await session.get(Breach, uuid.UUID(notification.breach_id))
            self.visible.append(breach is not None)
        return {channel.value: {"success": True, "detail": "checked"} for channel in channel_configs}


@pytest.mark.asyncio
async def test_escalation_is_sent_after_breach_is_committed(db, session_factory, org_a, kri_a, metric_a):
    router = CommitCheckingRouter(session_factory)
    service = GovernanceService(BreachLifecycleManager(EscalationNotifier(router=router, timeout_seconds=2.0)))

    _, results = await service.record_observation(db, org_a.id, kri_a.id, 12.0)
    await db.commit()

    assert router.visible == [True]
    assert results[0].breach.escalation_result["delivered"] is True
    events = (
        await db.execute(
            select(BreachEvent.event_type).where(BreachEvent.breach_id == results[0].breach.breach_id)
        )
    ).scalars().all()
    assert "ESCALATED" in events


@pytest.mark.asyncio
async def test_recalculation_delivers_after_commit(db, session_factory, org_a, kri_a, metric_a):
    router = CommitCheckingRouter(session_factory)
    service = GovernanceService(BreachLifecycleManager(EscalationNotifier(router=router, timeout_seconds=2.0)))
    db.add(KRIObservation(id=uuid.uuid4(), organization_id=org_a.id, kri_id=kri_a.id,
                          observed_value=12.0, observed_at=datetime.utcnow()))
    await db.commit()

    summary = await service.recalculate_organization(db, org_a.id)
    await db.commit()
    assert summary.breaches_opened == 1
    assert router.visible == [True]


# ── Risk appetite ──────────────────────────────────────────────────────


async def _create_risk(session_factory, org, category: str = "Operational", likelihood: int = 4, impact: int = 5):
    async with session_factory() as session:
        risk = Risk(
            id=uuid.uuid4(),
            organization_id=org.id,
            title="Payment processor outage",
            category=category,
            inherent_likelihood=likelihood,
            inherent_impact=impact,
        )
        session.add(risk)
        await session.commit()
        return risk


@pytest.mark.asyncio
async def test_red_breach_puts_risk_out_of_appetite(db, session_factory, org_a, kri_a, metric_a, service):
    risk = await _create_risk(session_factory, org_a)
    await service.record_observation(db, org_a.id, kri_a.id, 12.0)
    await db.commit()

    result = await service.evaluate_risk_appetite(db, org_a.id, risk.id)
    await db.commit()

    assert result.decision.reason == AppetiteReason.HARD_LIMIT_BREACH
    assert result.decision.out_of_appetite is True
    assert [s.metric_id for s in result.decision.impacted] == [str(metric_a.id)]
    assert result.residual_score == 20
    assert result.multiplier == 1.5
    assert result.adjusted_score == 30.0

    stored = await db.get(Risk, risk.id)
    assert stored.out_of_appetite is True
    assert stored.appetite_reason == "HARD_LIMIT_BREACH"
    assert stored.appetite_adjusted_score == 30.0
    assert stored.appetite_evaluated_at is not None


@pytest.mark.asyncio
async def test_amber_breach_is_soft_escalation(db, session_factory, org_a, kri_a, metric_a, service):
    risk = await _create_risk(session_factory, org_a)
    await service.record_observation(db, org_a.id, kri_a.id, 7.0)
    await db.commit()

    result = await service.evaluate_risk_appetite(db, org_a.id, risk.id)
    assert result.decision.reason == AppetiteReason.SOFT_LIMIT_ESCALATION
    assert result.decision.out_of_appetite is True


@pytest.mark.asyncio
async def test_green_reading_is_within_appetite(db, session_factory, org_a, kri_a, metric_a, service):
    risk = await _create_risk(session_factory, org_a)
    await service.record_observation(db, org_a.id, kri_a.id, 3.0)
    await db.commit()

    result = await service.evaluate_risk_appetite(db, org_a.id, risk.id)
    assert result.decision.reason == AppetiteReason.WITHIN_APPETITE
    assert result.explanation == "Within appetite (LOW)"
    assert (await db.get(Risk, risk.id)).out_of_appetite is False


@pytest.mark.asyncio
async def test_unfed_or_stale_tolerance_is_missing_data(
    db, session_factory, org_a, category_a, kri_a, metric_a, create_metric, service
):
    risk = await _create_risk(session_factory, org_a)
    await create_metric(org_a, category_a, name="Manual metric")
    db.add(KRIObservation(id=uuid.uuid4(), organization_id=org_a.id, kri_id=kri_a.id,
                          observed_value=3.0, observed_at=datetime.utcnow() - timedelta(days=120)))
    await db.commit()

    result = await service.evaluate_risk_appetite(db, org_a.id, risk.id)
    assert result.decision.reason == AppetiteReason.DATA_MISSING_FOR_TOLERANCE
    assert result.decision.out_of_appetite is False
    assert result.decision.escalation_required is True
    assert sorted(s.name for s in result.decision.impacted) == ["Failed payments", "Manual metric"]


@pytest.mark.asyncio
async def test_rule_not_yet_met_is_pending(db, session_factory, org_a, category_a, kri_a, create_metric, service):
    risk = await _create_risk(session_factory, org_a)
    await create_metric(org_a, category_a, kri_a, breach_rule="SUSTAINED", breach_periods=3)
    await service.record_observation(db, org_a.id, kri_a.id, 12.0)
    await db.commit()

    result = await service.evaluate_risk_appetite(db, org_a.id, risk.id)
    assert result.decision.reason == AppetiteReason.SOFT_BREACH_PENDING_ESCALATION
    assert result.decision.escalation_required is False


@pytest.mark.asyncio
async def test_material_zero_appetite_risk(db, session_factory, org_a, service):
    async with session_factory() as session:
        session.add(AppetiteCategory(id=uuid.uuid4(), organization_id=org_a.id, risk_category="Conduct",
                                     appetite_level="ZERO", materiality_threshold=12))
        await session.commit()
    material = await _create_risk(session_factory, org_a, category="Conduct")
    minor = await _create_risk(session_factory, org_a, category="Conduct", likelihood=2, impact=3)

    result = await service.evaluate_risk_appetite(db, org_a.id, material.id)
    assert result.material is True
    assert result.decision.reason == AppetiteReason.ZERO_APPETITE_MATERIAL
    assert result.adjusted_score == 40.0

    result = await service.evaluate_risk_appetite(db, org_a.id, minor.id)
    assert result.decision.reason == AppetiteReason.WITHIN_APPETITE


@pytest.mark.asyncio
async def test_uncategorized_risk_is_judged_at_moderate(db, session_factory, org_a, service):
    risk = await _create_risk(session_factory, org_a, category="Unmapped")
    result = await service.evaluate_risk_appetite(db, org_a.id, risk.id)
    assert result.appetite_level.value == "MODERATE"
    assert result.multiplier == 1.0
    assert result.decision.reason == AppetiteReason.WITHIN_APPETITE


@pytest.mark.asyncio
async def test_recalculation_counts_risks_out_of_appetite(db, session_factory, org_a, kri_a, metric_a, service):
    await _create_risk(session_factory, org_a)
    await _create_risk(session_factory, org_a, category="Unmapped")
    await service.record_observation(db, org_a.id, kri_a.id, 12.0)
    await db.commit()

    summary = await service.recalculate_organization(db, org_a.id)
    await db.commit()
    assert summary.risks_recalculated == 2
    assert summary.risks_out_of_appetite == 1


@pytest.mark.asyncio
async def test_risk_appetite_is_tenant_scoped(db, session_factory, org_a, org_b, service):
    risk = await _create_risk(session_factory, org_a)
    with pytest.raises(DataNotFoundError):
        await service.evaluate_risk_appetite(db, org_b.id, risk.id)
