"""
Breach Lifecycle Manager.

    (none) → DETECTED → OPEN → {ACKNOWLEDGED | IN_PROGRESS} → {RESOLVED | BOARD_ACCEPTED}

Guarantees:
- At most one active breach per (organization, metric). Detection is a single
  INSERT ... ON CONFLICT DO UPDATE against uq_breaches_active_metric, never
  check-then-insert, so racing evaluators converge on one row.
- Severity only worsens in place (AMBER → RED). Each severity is escalated
  at most once per breach: the escalation is claimed with a conditional
  UPDATE on escalated_severity and only the writer that wins the claim
  sends notifications. Delivery happens after the claim commits
  (deliver_escalations), never inside the locked transaction.
- Every transition is a conditional UPDATE on the current status; a lost
  race or illegal move raises InvalidTransitionError.
- Every transition and escalation appends a breach_events row.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import case, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from riskgov.appetite.channels import BreachNotification
from riskgov.appetite.escalation import EscalationNotifier
from riskgov.appetite.evaluator import active_override, apply_override, validate_thresholds
from riskgov.appetite.metrics import metric_thresholds
from riskgov.appetite.schemas import (
    ACTIVE_BREACH_STATUSES,
    BreachStatus,
    EscalationRules,
    ExceptionStatus,
    MetricType,
    Severity,
    ToleranceEvaluation,
    utc_naive,
)
from riskgov.db.models import BoardException, Breach, BreachEvent, ToleranceMetric
from riskgov.exceptions import DataNotFoundError, InvalidTransitionError, ValidationError

logger = structlog.get_logger(__name__)

_ACTIVE = [s.value for s in ACTIVE_BREACH_STATUSES]
_WORKABLE = [BreachStatus.OPEN.value, BreachStatus.ACKNOWLEDGED.value, BreachStatus.IN_PROGRESS.value]


@dataclass
class PendingEscalation:
    """An escalation claimed inside the transaction, delivered after commit."""
    organization_id: uuid.UUID
    breach_id: uuid.UUID
    severity: Severity
    notification: BreachNotification
    rules: EscalationRules
    owner_email: Optional[str] = None


@dataclass
class BreachOutcome:
    """What record_violation did."""
    breach_id: uuid.UUID
    created: bool
    severity: Severity
    occurrence_count: int
    escalated: Optional[Severity] = None
    pending: Optional[PendingEscalation] = None
    escalation_result: Optional[dict] = None


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


class BreachLifecycleManager:
    """Creates, transitions and closes breach records for one organization at a time."""

    def __init__(self, notifier: Optional[EscalationNotifier] = None):
        self.notifier = notifier or EscalationNotifier()

    # ── Reads ──────────────────────────────────────────────────────────

    async def get_breach(self, db: AsyncSession, organization_id: uuid.UUID, breach_id: uuid.UUID) -> Breach:
        breach = (
            await db.execute(
                select(Breach)
                .where(Breach.id == breach_id, Breach.organization_id == organization_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if breach is None:
            raise DataNotFoundError("Breach", breach_id)
        return breach

    async def get_active_breach(
        self, db: AsyncSession, organization_id: uuid.UUID, metric_id: uuid.UUID
    ) -> Optional[Breach]:
        return (
            await db.execute(
                select(Breach)
                .where(Breach.organization_id == organization_id, Breach.active_metric_id == metric_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

    async def active_breaches(self, db: AsyncSession, organization_id: uuid.UUID) -> dict[uuid.UUID, Breach]:
        """metric_id → active breach."""
        rows = await db.execute(
            select(Breach).where(
                Breach.organization_id == organization_id,
                Breach.active_metric_id.is_not(None),
            )
        )
        return {b.metric_id: b for b in rows.scalars().all()}

    async def list_breaches(
        self,
        db: AsyncSession,
        organization_id: uuid.UUID,
        status: Optional[BreachStatus] = None,
        severity: Optional[Severity] = None,
        metric_id: Optional[uuid.UUID] = None,
        active_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Breach]:
        query = select(Breach).where(Breach.organization_id == organization_id)
        if status:
            query = query.where(Breach.status == status.value)
        if severity:
            query = query.where(Breach.severity == severity.value)
        if metric_id:
            query = query.where(Breach.metric_id == metric_id)
        if active_only:
            query = query.where(Breach.active_metric_id.is_not(None))
        query = query.order_by(Breach.detected_at.desc()).offset(offset).limit(limit)
        return list((await db.execute(query)).scalars().all())

    async def events(self, db: AsyncSession, organization_id: uuid.UUID, breach_id: uuid.UUID) -> list[BreachEvent]:
        rows = await db.execute(
            select(BreachEvent)
            .where(BreachEvent.organization_id == organization_id, BreachEvent.breach_id == breach_id)
            .order_by(BreachEvent.created_at, BreachEvent.id)
        )
        return list(rows.scalars().all())

    async def statistics(self, db: AsyncSession, organization_id: uuid.UUID) -> dict:
        """Totals by status and severity, plus mean days from detection to resolution."""
        rows = (
            await db.execute(
                select(Breach.status, Breach.severity, func.count())
                .where(Breach.organization_id == organization_id)
                .group_by(Breach.status, Breach.severity)
            )
        ).all()
        by_status: dict[str, int] = {s.value: 0 for s in BreachStatus}
        by_severity: dict[str, int] = {s.value: 0 for s in Severity}
        for status, severity, count in rows:
            by_status[status] = by_status.get(status, 0) + count
            by_severity[severity] = by_severity.get(severity, 0) + count

        resolved = (
            await db.execute(
                select(Breach.detected_at, Breach.resolved_at).where(
                    Breach.organization_id == organization_id,
                    Breach.status == BreachStatus.RESOLVED.value,
                    Breach.resolved_at.is_not(None),
                )
            )
        ).all()
        avg_days = None
        if resolved:
            total_seconds = sum((r.resolved_at - r.detected_at).total_seconds() for r in resolved)
            avg_days = round(total_seconds / len(resolved) / 86400, 1)

        return {
            "total": sum(by_status.values()),
            "active": sum(by_status[s] for s in _ACTIVE),
            "by_status": by_status,
            "by_severity": by_severity,
            "avg_resolution_days": avg_days,
        }

    # ── Detection ──────────────────────────────────────────────────────

    async def record_violation(
        self,
        db: AsyncSession,
        organization_id: uuid.UUID,
        metric: ToleranceMetric,
        evaluation: ToleranceEvaluation,
    ) -> BreachOutcome:
        """
        Create the metric's active breach or fold this violation into it.

        Caller must hold the organization lock (riskgov.db.locks).
        """
        if not evaluation.breached or evaluation.severity is None:
            raise ValueError("record_violation requires a breaching evaluation")

        now = datetime.utcnow()
        severity = evaluation.severity
        prior_id = await self._latest_closed_breach_id(db, organization_id, metric.id)

        dialect = (await db.connection()).dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        table = Breach.__table__

        stmt = insert(Breach).values(
            id=uuid.uuid4(),
            organization_id=organization_id,
            metric_id=metric.id,
            active_metric_id=metric.id,
            prior_breach_id=prior_id,
            severity=severity.value,
            status=BreachStatus.DETECTED.value,
            breach_value=evaluation.measured_value,
            threshold_value=evaluation.threshold_value,
            variance_amount=evaluation.variance_amount,
            variance_pct=evaluation.variance_pct,
            occurrence_count=1,
            detected_at=evaluation.observed_at,
            last_seen_at=evaluation.observed_at,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["organization_id", "active_metric_id"],
            set_={
                "severity": case(
                    (stmt.excluded.severity == Severity.RED.value, Severity.RED.value),
                    else_=table.c.severity,
                ),
                "breach_value": stmt.excluded.breach_value,
                "threshold_value": stmt.excluded.threshold_value,
                "variance_amount": stmt.excluded.variance_amount,
                "variance_pct": stmt.excluded.variance_pct,
                "last_seen_at": stmt.excluded.last_seen_at,
                "occurrence_count": table.c.occurrence_count + 1,
                "updated_at": now,
            },
        ).returning(table.c.id, table.c.occurrence_count, table.c.severity, table.c.escalated_severity)

        row = (await db.execute(stmt)).one()
        breach_id, count = row.id, row.occurrence_count
        current_severity = Severity(row.severity)
        created = count == 1

        if created:
            self._event(db, organization_id, breach_id, "DETECTED", None, BreachStatus.DETECTED,
                        current_severity, details=self._evaluation_details(evaluation, prior_id))
            await db.execute(
                update(Breach)
                .where(
                    Breach.id == breach_id,
                    Breach.organization_id == organization_id,
                    Breach.status == BreachStatus.DETECTED.value,
                )
                .values(status=BreachStatus.OPEN.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            self._event(db, organization_id, breach_id, "OPENED", BreachStatus.DETECTED, BreachStatus.OPEN,
                        current_severity)
            logger.info(
                "breach_opened",
                breach_id=str(breach_id),
                metric_id=str(metric.id),
                severity=current_severity.value,
                value=evaluation.measured_value,
            )
        else:
            logger.info(
                "breach_repeated",
                breach_id=str(breach_id),
                metric_id=str(metric.id),
                severity=current_severity.value,
                occurrences=count,
            )

        outcome = BreachOutcome(
            breach_id=breach_id,
            created=created,
            severity=current_severity,
            occurrence_count=count,
        )

        previous = Severity(row.escalated_severity) if row.escalated_severity else None
        if await self._claim_escalation(db, organization_id, breach_id, current_severity):
            if previous is not None:
                self._event(db, organization_id, breach_id, "SEVERITY_INCREASED", None, None,
                            current_severity, details={"from": previous.value, "to": current_severity.value})
            outcome.escalated = current_severity
            outcome.pending = self._pending_escalation(
                organization_id, breach_id, metric, evaluation, current_severity
            )

        await db.flush()
        return outcome

    async def _latest_closed_breach_id(
        self, db: AsyncSession, organization_id: uuid.UUID, metric_id: uuid.UUID
    ) -> Optional[uuid.UUID]:
        return (
            await db.execute(
                select(Breach.id)
                .where(
                    Breach.organization_id == organization_id,
                    Breach.metric_id == metric_id,
                    Breach.active_metric_id.is_(None),
                )
                .order_by(Breach.detected_at.desc())
                .limit(1)
            )
        ).scalar_one_or_none()

    async def _claim_escalation(
        self, db: AsyncSession, organization_id: uuid.UUID, breach_id: uuid.UUID, severity: Severity
    ) -> bool:
        """Atomically mark `severity` as escalated; True only for the writer that did it."""
        if severity == Severity.RED:
            not_yet = or_(Breach.escalated_severity.is_(None), Breach.escalated_severity == Severity.AMBER.value)
        else:
            not_yet = Breach.escalated_severity.is_(None)
        result = await db.execute(
            update(Breach)
            .where(Breach.id == breach_id, Breach.organization_id == organization_id, not_yet)
            .values(escalated_severity=severity.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def _pending_escalation(
        organization_id: uuid.UUID,
        breach_id: uuid.UUID,
        metric: ToleranceMetric,
        evaluation: ToleranceEvaluation,
        severity: Severity,
    ) -> PendingEscalation:
        notification = BreachNotification(
            breach_id=str(breach_id),
            organization_id=str(organization_id),
            metric_id=str(metric.id),
            metric_name=metric.name,
            severity=severity.value,
            status=BreachStatus.OPEN.value,
            breach_value=evaluation.measured_value,
            threshold_value=evaluation.threshold_value,
            title=f"[{severity.value}] Tolerance breach: {metric.name}",
            message=evaluation.explanation,
            triggered_at=evaluation.observed_at.isoformat(),
        )
        return PendingEscalation(
            organization_id=organization_id,
            breach_id=breach_id,
            severity=severity,
            notification=notification,
            rules=EscalationRules.model_validate(metric.escalation_rules or {}),
            owner_email=metric.owner_email,
        )

    async def deliver_escalations(self, db: AsyncSession, outcomes: list[BreachOutcome]) -> int:
        """
        Send the escalations claimed by record_violation and log them as
        ESCALATED events. Call after the claiming transaction has committed
        and outside the organization lock. Delivery never raises.
        """
        delivered = 0
        for outcome in outcomes:
            pending = outcome.pending
            if pending is None:
                continue
            outcome.pending = None
            result = await self.notifier.escalate(pending.notification, pending.rules, owner_email=pending.owner_email)
            outcome.escalation_result = result
            self._event(db, pending.organization_id, pending.breach_id, "ESCALATED", None, None,
                        pending.severity, details=result)
            delivered += 1
        if delivered:
            await db.flush()
        return delivered

    # ── User transitions ───────────────────────────────────────────────

    async def _transition(
        self,
        db: AsyncSession,
        organization_id: uuid.UUID,
        breach_id: uuid.UUID,
        allowed: list[str],
        target: BreachStatus,
        actor: Optional[str],
        values: dict,
        details: Optional[dict] = None,
    ) -> Breach:
        breach = await self.get_breach(db, organization_id, breach_id)
        from_status = breach.status
        result = await db.execute(
            update(Breach)
            .where(
                Breach.id == breach_id,
                Breach.organization_id == organization_id,
                Breach.status.in_(allowed),
            )
            .values(status=target.value, updated_at=datetime.utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError("breach", from_status, target.value)

        self._event(db, organization_id, breach_id, target.value, BreachStatus(from_status), target,
                    Severity(breach.severity), actor=actor, details=details)
        await db.flush()
        logger.info("breach_transitioned", breach_id=str(breach_id), from_status=from_status, to_status=target.value)
        return await self.get_breach(db, organization_id, breach_id)

    async def acknowledge(
        self, db: AsyncSession, organization_id: uuid.UUID, breach_id: uuid.UUID, actor: Optional[str] = None
    ) -> Breach:
        return await self._transition(
            db, organization_id, breach_id,
            [BreachStatus.OPEN.value], BreachStatus.ACKNOWLEDGED, actor,
            {"acknowledged_at": datetime.utcnow(), "acknowledged_by": actor},
        )

    async def start_remediation(
        self,
        db: AsyncSession,
        organization_id: uuid.UUID,
        breach_id: uuid.UUID,
        plan: str,
        owner: Optional[str] = None,
        due_date: Optional[datetime] = None,
        actor: Optional[str] = None,
    ) -> Breach:
        if not plan or not plan.strip():
            raise ValidationError("Remediation plan must not be empty", field="plan")
        return await self._transition(
            db, organization_id, breach_id,
            _WORKABLE, BreachStatus.IN_PROGRESS, actor,
            {"remediation_plan": plan, "remediation_owner": owner, "remediation_due_date": utc_naive(due_date)},
            details={"owner": owner, "due_date": _iso(due_date)},
        )

    async def resolve(
        self,
        db: AsyncSession,
        organization_id: uuid.UUID,
        breach_id: uuid.UUID,
        notes: str,
        actor: Optional[str] = None,
    ) -> Breach:
        """Close the breach. The current value need not be back in GREEN."""
        if not notes or not notes.strip():
            raise ValidationError("Resolution notes are required", field="notes")
        return await self._transition(
            db, organization_id, breach_id,
            _WORKABLE, BreachStatus.RESOLVED, actor,
            {
                "resolved_at": datetime.utcnow(),
                "resolved_by": actor,
                "resolution_notes": notes,
                "active_metric_id": None,
            },
        )

    # ── Board exceptions ───────────────────────────────────────────────

    async def get_exception(
        self, db: AsyncSession, organization_id: uuid.UUID, exception_id: uuid.UUID
    ) -> BoardException:
        exc = (
            await db.execute(
                select(BoardException)
                .where(BoardException.id == exception_id, BoardException.organization_id == organization_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if exc is None:
            raise DataNotFoundError("Board exception", exception_id)
        return exc

    async def request_exception(
        self,
        db: AsyncSession,
        organization_id: uuid.UUID,
        breach_id: uuid.UUID,
        temporary_thresholds: dict,
        valid_until: datetime,
        rationale: str,
        actor: Optional[str] = None,
    ) -> BoardException:
        """Ask the board to accept an active breach under temporary thresholds."""
        valid_until = utc_naive(valid_until)
        breach = await self.get_breach(db, organization_id, breach_id)
        if breach.status not in _WORKABLE:
            raise InvalidTransitionError("breach", breach.status, BreachStatus.BOARD_ACCEPTED.value)
        if valid_until <= datetime.utcnow():
            raise ValidationError("valid_until must be in the future", field="valid_until")
        if not rationale or not rationale.strip():
            raise ValidationError("Rationale is required", field="rationale")

        metric = (
            await db.execute(
                select(ToleranceMetric).where(
                    ToleranceMetric.id == breach.metric_id,
                    ToleranceMetric.organization_id == organization_id,
                )
            )
        ).scalar_one()
        overrides = {k: v for k, v in temporary_thresholds.items() if v is not None}
        validate_thresholds(MetricType(metric.metric_type), apply_override(metric_thresholds(metric), overrides))

        exc = BoardException(
            id=uuid.uuid4(),
            organization_id=organization_id,
            breach_id=breach_id,
            metric_id=breach.metric_id,
            pending_breach_id=breach_id,
            status=ExceptionStatus.PENDING.value,
            temporary_thresholds=overrides,
            valid_until=valid_until,
            rationale=rationale,
            requested_by=actor,
            requested_at=datetime.utcnow(),
        )
        pending = (
            await db.execute(
                select(BoardException.id).where(
                    BoardException.organization_id == organization_id,
                    BoardException.pending_breach_id == breach_id,
                )
            )
        ).scalar_one_or_none()
        if pending is not None:
            raise InvalidTransitionError(
                "board exception", ExceptionStatus.PENDING.value, ExceptionStatus.PENDING.value,
                message=f"Breach {breach_id} already has a pending board exception",
            )

        db.add(exc)
        try:
            await db.flush()
        except IntegrityError as e:
            raise InvalidTransitionError(
                "board exception", ExceptionStatus.PENDING.value, ExceptionStatus.PENDING.value,
                message=f"Breach {breach_id} already has a pending board exception",
            ) from e

        self._event(db, organization_id, breach_id, "EXCEPTION_REQUESTED", None, None, Severity(breach.severity),
                    actor=actor, details={"exception_id": str(exc.id), "valid_until": valid_until.isoformat(),
                                          "temporary_thresholds": overrides})
        await db.flush()
        logger.info("board_exception_requested", breach_id=str(breach_id), exception_id=str(exc.id))
        return exc

    async def _decide(
        self,
        db: AsyncSession,
        organization_id: uuid.UUID,
        exception_id: uuid.UUID,
        target: ExceptionStatus,
        actor: Optional[str],
        notes: Optional[str],
    ) -> BoardException:
        exc = await self.get_exception(db, organization_id, exception_id)
        now = datetime.utcnow()
        conditions = [
            BoardException.id == exception_id,
            BoardException.organization_id == organization_id,
            BoardException.status == ExceptionStatus.PENDING.value,
        ]
        if target == ExceptionStatus.APPROVED:
            # An undecided exception whose window has passed cannot take effect.
            conditions.append(BoardException.valid_until > now)
        result = await db.execute(
            update(BoardException)
            .where(*conditions)
            .values(
                status=target.value,
                pending_breach_id=None,
                decided_by=actor,
                decided_at=now,
                decision_notes=notes,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            if exc.status == ExceptionStatus.PENDING.value and exc.valid_until <= now:
                raise InvalidTransitionError(
                    "board exception", ExceptionStatus.EXPIRED.value, target.value,
                    message=f"Board exception {exception_id} lapsed on {exc.valid_until.isoformat()} "
                            "before it was decided",
                )
            raise InvalidTransitionError("board exception", exc.status, target.value)
        return exc

    async def approve_exception(
        self,
        db: AsyncSession,
        organization_id: uuid.UUID,
        exception_id: uuid.UUID,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> BoardException:
        """Approve: the exception takes effect and the breach becomes BOARD_ACCEPTED."""
        exc = await self._decide(db, organization_id, exception_id, ExceptionStatus.APPROVED, actor, notes)
        await self._transition(
            db, organization_id, exc.breach_id,
            _WORKABLE, BreachStatus.BOARD_ACCEPTED, actor,
            {
                "board_accepted_at": datetime.utcnow(),
                "board_accepted_by": actor,
                "board_acceptance_rationale": exc.rationale,
                "exception_valid_until": exc.valid_until,
                "active_metric_id": None,
            },
            details={"exception_id": str(exception_id), "valid_until": exc.valid_until.isoformat()},
        )
        logger.info("board_exception_approved", exception_id=str(exception_id), breach_id=str(exc.breach_id))
        return await self.get_exception(db, organization_id, exception_id)

    async def reject_exception(
        self,
        db: AsyncSession,
        organization_id: uuid.UUID,
        exception_id: uuid.UUID,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> BoardException:
        """Reject: the breach keeps its current status."""
        exc = await self._decide(db, organization_id, exception_id, ExceptionStatus.REJECTED, actor, notes)
        self._event(db, organization_id, exc.breach_id, "EXCEPTION_REJECTED", None, None, None,
                    actor=actor, details={"exception_id": str(exception_id), "notes": notes})
        await db.flush()
        logger.info("board_exception_rejected", exception_id=str(exception_id), breach_id=str(exc.breach_id))
        return await self.get_exception(db, organization_id, exception_id)

    async def load_override(
        self,
        db: AsyncSession,
        organization_id: uuid.UUID,
        metric_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> Optional[dict]:
        """Temporary thresholds in force for the metric, if any."""
        now = now or datetime.utcnow()
        rows = await db.execute(
            select(BoardException).where(
                BoardException.organization_id == organization_id,
                BoardException.metric_id == metric_id,
                BoardException.status == ExceptionStatus.APPROVED.value,
                BoardException.valid_until > now,
            )
        )
        return active_override(rows.scalars().all(), now)

    async def expire_exceptions(
        self, db: AsyncSession, organization_id: uuid.UUID, now: Optional[datetime] = None
    ) -> int:
        """Mark lapsed approved and undecided exceptions EXPIRED."""
        now = now or datetime.utcnow()
        result = await db.execute(
            update(BoardException)
            .where(
                BoardException.organization_id == organization_id,
                BoardException.status.in_([ExceptionStatus.APPROVED.value, ExceptionStatus.PENDING.value]),
                BoardException.valid_until <= now,
            )
            .values(status=ExceptionStatus.EXPIRED.value, pending_breach_id=None)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info("board_exceptions_expired", organization_id=str(organization_id), count=result.rowcount)
        return result.rowcount

    # ── Audit ──────────────────────────────────────────────────────────

    @staticmethod
    def _evaluation_details(evaluation: ToleranceEvaluation, prior_id: Optional[uuid.UUID]) -> dict:
        return {
            "zone": evaluation.zone.value,
            "value": evaluation.measured_value,
            "observed_value": evaluation.observed_value,
            "threshold": evaluation.threshold_value,
            "variance_pct": evaluation.variance_pct,
            "explanation": evaluation.explanation,
            "prior_breach_id": str(prior_id) if prior_id else None,
        }

    @staticmethod
    def _event(
        db: AsyncSession,
        organization_id: uuid.UUID,
        breach_id: uuid.UUID,
        event_type: str,
        from_status: Optional[BreachStatus],
        to_status: Optional[BreachStatus],
        severity: Optional[Severity],
        actor: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        db.add(
            BreachEvent(
                id=uuid.uuid4(),
                organization_id=organization_id,
                breach_id=breach_id,
                event_type=event_type,
                from_status=from_status.value if from_status else None,
                to_status=to_status.value if to_status else None,
                severity=severity.value if severity else None,
                actor=actor,
                details=details or {},
                created_at=datetime.utcnow(),
            )
        )
