"""
RiskGov SQLAlchemy Models.

Every table carries organization_id and every engine query filters by it.
Compatibility types keep SQLite (dev/tests) and PostgreSQL (prod) in step.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from riskgov.db.compat import GUID, JSONType
from riskgov.db.engine import Base


def _genuuid():
    return uuid.uuid4()


# ──────────────────────────────────────────────────────────────────────────────
# 1. Tenant & Appetite
# ──────────────────────────────────────────────────────────────────────────────


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class AppetiteCategory(Base):
    """Declared risk appetite (ZERO/LOW/MODERATE/HIGH) for one risk category."""

    __tablename__ = "appetite_categories"
    __table_args__ = (
        UniqueConstraint("organization_id", "risk_category", name="uq_appetite_category"),
        Index("ix_appetite_categories_org", "organization_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    organization_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("organizations.id"), nullable=False)
    risk_category: Mapped[str] = mapped_column(String(100), nullable=False)
    appetite_level: Mapped[str] = mapped_column(String(20), nullable=False, default="MODERATE")
    # ZERO appetite: residual score at or above this is material
    materiality_threshold: Mapped[Optional[int]] = mapped_column(Integer)
    rationale: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# ──────────────────────────────────────────────────────────────────────────────
# 2. Risks & Controls
# ──────────────────────────────────────────────────────────────────────────────


class Risk(Base):
    """
    A rated risk.

    Residual columns are derived: only the residual calculator writes them.
    """

    __tablename__ = "risks"
    __table_args__ = (
        Index("ix_risks_org", "organization_id"),
        Index("ix_risks_org_category", "organization_id", "category"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    organization_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("organizations.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="OPEN")
    inherent_likelihood: Mapped[int] = mapped_column(Integer, nullable=False)
    inherent_impact: Mapped[int] = mapped_column(Integer, nullable=False)

    # Derived by riskgov.scoring.service
    residual_likelihood: Mapped[Optional[int]] = mapped_column(Integer)
    residual_impact: Mapped[Optional[int]] = mapped_column(Integer)
    residual_score: Mapped[Optional[int]] = mapped_column(Integer)
    residual_calculated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Derived by GovernanceService.evaluate_risk_appetite
    appetite_multiplier: Mapped[Optional[float]] = mapped_column(Float)
    appetite_adjusted_score: Mapped[Optional[float]] = mapped_column(Float)
    out_of_appetite: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    appetite_reason: Mapped[Optional[str]] = mapped_column(String(40))
    appetite_evaluated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Control(Base):
    """Control with its DIME assessment (each score 0-3)."""

    __tablename__ = "controls"
    __table_args__ = (Index("ix_controls_org", "organization_id"),)

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    organization_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("organizations.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    design_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    implementation_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    monitoring_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    evaluation_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    target: Mapped[str] = mapped_column(String(20), nullable=False, default="both")
    assessed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class RiskControl(Base):
    __tablename__ = "risk_controls"
    __table_args__ = (
        UniqueConstraint("risk_id", "control_id", name="uq_risk_control"),
        Index("ix_risk_controls_control", "control_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    organization_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("organizations.id"), nullable=False)
    risk_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("risks.id", ondelete="CASCADE"), nullable=False)
    control_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("controls.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


# ──────────────────────────────────────────────────────────────────────────────
# 3. Indicators
# ──────────────────────────────────────────────────────────────────────────────


class KRIDefinition(Base):
    """Key risk indicator; optional thresholds are inherited by linked metrics."""

    __tablename__ = "kri_definitions"
    __table_args__ = (
        UniqueConstraint("organization_id", "code", name="uq_kri_code"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    organization_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("organizations.id"), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[Optional[str]] = mapped_column(String(50))
    green_min: Mapped[Optional[float]] = mapped_column(Float)
    green_max: Mapped[Optional[float]] = mapped_column(Float)
    amber_min: Mapped[Optional[float]] = mapped_column(Float)
    amber_max: Mapped[Optional[float]] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class KRIObservation(Base):
    """Append-only measurement log. Rows are never updated."""

    __tablename__ = "kri_observations"
    __table_args__ = (
        Index("ix_kri_observations_kri_time", "organization_id", "kri_id", "observed_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    organization_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("organizations.id"), nullable=False)
    kri_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("kri_definitions.id"), nullable=False)
    observed_value: Mapped[float] = mapped_column(Float, nullable=False)
    observed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    data_quality_ok: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    recorded_by: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


# ──────────────────────────────────────────────────────────────────────────────
# 4. Tolerances
# ──────────────────────────────────────────────────────────────────────────────


class ToleranceMetric(Base):
    """
    Quantitative tolerance limit implementing a category's appetite.

    Once kri_id is set the threshold columns are read-only.
    """

    __tablename__ = "tolerance_metrics"
    __table_args__ = (
        Index("ix_tolerance_metrics_org", "organization_id"),
        Index("ix_tolerance_metrics_category", "category_id"),
        Index("ix_tolerance_metrics_kri", "organization_id", "kri_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    organization_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("organizations.id"), nullable=False)
    category_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("appetite_categories.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    unit: Mapped[Optional[str]] = mapped_column(String(50))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Thresholds
    metric_type: Mapped[str] = mapped_column(String(20), nullable=False)
    green_min: Mapped[Optional[float]] = mapped_column(Float)
    green_max: Mapped[Optional[float]] = mapped_column(Float)
    amber_min: Mapped[Optional[float]] = mapped_column(Float)
    amber_max: Mapped[Optional[float]] = mapped_column(Float)
    directional_config: Mapped[Optional[dict]] = mapped_column(JSONType())

    # Breach rule
    breach_rule: Mapped[str] = mapped_column(String(30), nullable=False, default="POINT_IN_TIME")
    breach_periods: Mapped[Optional[int]] = mapped_column(Integer)
    breach_window_days: Mapped[Optional[int]] = mapped_column(Integer)

    # Escalation: {"amber": {...}, "red": {...}}
    escalation_rules: Mapped[dict] = mapped_column(JSONType(), nullable=False, default=dict)
    owner_email: Mapped[Optional[str]] = mapped_column(String(255))

    # Live feed
    kri_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("kri_definitions.id"))
    linked_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ToleranceCoverage(Base):
    """Indicator → tolerance metric early-warning link."""

    __tablename__ = "tolerance_coverage"
    __table_args__ = (
        UniqueConstraint("metric_id", "kri_id", name="uq_tolerance_coverage"),
        Index("ix_tolerance_coverage_org_metric", "organization_id", "metric_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    organization_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("organizations.id"), nullable=False)
    metric_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("tolerance_metrics.id", ondelete="CASCADE"), nullable=False)
    kri_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("kri_definitions.id", ondelete="CASCADE"), nullable=False)
    coverage_strength: Mapped[str] = mapped_column(String(20), nullable=False, default="secondary")
    signal_type: Mapped[str] = mapped_column(String(20), nullable=False, default="concurrent")
    rationale: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


# ──────────────────────────────────────────────────────────────────────────────
# 5. Breaches
# ──────────────────────────────────────────────────────────────────────────────


class Breach(Base):
    """
    Recorded violation of a tolerance metric.

    active_metric_id mirrors metric_id while the breach is active and is NULL
    once it is RESOLVED or BOARD_ACCEPTED. The unique constraint on
    (organization_id, active_metric_id) is the single-active-breach guarantee
    and the conflict target of the detection upsert.
    """

    __tablename__ = "breaches"
    __table_args__ = (
        UniqueConstraint("organization_id", "active_metric_id", name="uq_breaches_active_metric"),
        Index("ix_breaches_org_status", "organization_id", "status"),
        Index("ix_breaches_metric", "metric_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    organization_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("organizations.id"), nullable=False)
    metric_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("tolerance_metrics.id"), nullable=False)
    active_metric_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    prior_breach_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())

    severity: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DETECTED")

    # What triggered it
    breach_value: Mapped[float] = mapped_column(Float, nullable=False)
    threshold_value: Mapped[Optional[float]] = mapped_column(Float)
    variance_amount: Mapped[Optional[float]] = mapped_column(Float)
    variance_pct: Mapped[Optional[float]] = mapped_column(Float)
    occurrence_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    escalated_severity: Mapped[Optional[str]] = mapped_column(String(10))

    detected_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Workflow
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    acknowledged_by: Mapped[Optional[str]] = mapped_column(String(255))
    remediation_plan: Mapped[Optional[str]] = mapped_column(Text)
    remediation_owner: Mapped[Optional[str]] = mapped_column(String(255))
    remediation_due_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(255))
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text)
    board_accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    board_accepted_by: Mapped[Optional[str]] = mapped_column(String(255))
    board_acceptance_rationale: Mapped[Optional[str]] = mapped_column(Text)
    exception_valid_until: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class BreachEvent(Base):
    """Immutable audit trail of breach transitions and escalations."""

    __tablename__ = "breach_events"
    __table_args__ = (
        Index("ix_breach_events_breach", "organization_id", "breach_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    organization_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("organizations.id"), nullable=False)
    breach_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("breaches.id", ondelete="CASCADE"), nullable=False)
    event_type: Mapped[str] = mapped_column(String(30), nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(String(20))
    to_status: Mapped[Optional[str]] = mapped_column(String(20))
    severity: Mapped[Optional[str]] = mapped_column(String(10))
    actor: Mapped[Optional[str]] = mapped_column(String(255))
    details: Mapped[dict] = mapped_column(JSONType(), nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class BoardException(Base):
    """
    Time-bounded threshold override layered over a tolerance metric.

    pending_breach_id holds the breach id while the request is PENDING so
    that only one request per breach can await a decision.
    """

    __tablename__ = "board_exceptions"
    __table_args__ = (
        UniqueConstraint("organization_id", "pending_breach_id", name="uq_board_exceptions_pending"),
        Index("ix_board_exceptions_metric", "organization_id", "metric_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    organization_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("organizations.id"), nullable=False)
    breach_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("breaches.id"), nullable=False)
    metric_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("tolerance_metrics.id"), nullable=False)
    pending_breach_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    temporary_thresholds: Mapped[dict] = mapped_column(JSONType(), nullable=False, default=dict)
    valid_until: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    rationale: Mapped[str] = mapped_column(Text, nullable=False)
    requested_by: Mapped[Optional[str]] = mapped_column(String(255))
    requested_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    decided_by: Mapped[Optional[str]] = mapped_column(String(255))
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    decision_notes: Mapped[Optional[str]] = mapped_column(Text)
