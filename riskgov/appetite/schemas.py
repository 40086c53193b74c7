"""
Appetite Governance Schemas.

Enums, engine dataclasses (evaluator inputs/outputs) and the pydantic
request/response models used by the API routers.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field


# ── Enums ──────────────────────────────────────────────────────────────


class Zone(StrEnum):
    GREEN = "GREEN"
    AMBER = "AMBER"
    RED = "RED"
    UNKNOWN = "UNKNOWN"         # No usable baseline (DIRECTIONAL)


class Severity(StrEnum):
    AMBER = "AMBER"
    RED = "RED"


class MetricType(StrEnum):
    MAXIMUM = "MAXIMUM"         # Lower is better
    MINIMUM = "MINIMUM"         # Higher is better
    RANGE = "RANGE"             # Must stay inside a band
    DIRECTIONAL = "DIRECTIONAL" # Rate of change against a lookback baseline


class BreachRuleType(StrEnum):
    POINT_IN_TIME = "POINT_IN_TIME"
    SUSTAINED = "SUSTAINED"     # n consecutive violating observations
    N_BREACHES = "N_BREACHES"   # n violating observations within a time window


class Trend(StrEnum):
    INCREASING_IS_BAD = "INCREASING_IS_BAD"
    DECREASING_IS_BAD = "DECREASING_IS_BAD"


class BreachStatus(StrEnum):
    DETECTED = "DETECTED"
    OPEN = "OPEN"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    BOARD_ACCEPTED = "BOARD_ACCEPTED"


ACTIVE_BREACH_STATUSES = (
    BreachStatus.DETECTED,
    BreachStatus.OPEN,
    BreachStatus.ACKNOWLEDGED,
    BreachStatus.IN_PROGRESS,
)


class ExceptionStatus(StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class AppetiteLevel(StrEnum):
    ZERO = "ZERO"
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"


class CoverageStrength(StrEnum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    SUPPLEMENTARY = "supplementary"


class SignalType(StrEnum):
    LEADING = "leading"
    CONCURRENT = "concurrent"
    LAGGING = "lagging"


class CoverageClass(StrEnum):
    GAP = "gap"
    FRAGILE = "fragile"
    GOOD = "good"


def utc_naive(dt: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC; convert aware inputs."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


# ── Engine inputs / outputs ────────────────────────────────────────────


@dataclass(frozen=True)
class Thresholds:
    green_min: Optional[float] = None
    green_max: Optional[float] = None
    amber_min: Optional[float] = None
    amber_max: Optional[float] = None

    def as_dict(self) -> dict:
        return {
            "green_min": self.green_min,
            "green_max": self.green_max,
            "amber_min": self.amber_min,
            "amber_max": self.amber_max,
        }


@dataclass(frozen=True)
class DirectionalConfig:
    lookback_days: int = 30
    trend: Trend = Trend.INCREASING_IS_BAD


@dataclass(frozen=True)
class BreachRule:
    kind: BreachRuleType = BreachRuleType.POINT_IN_TIME
    periods: int = 3            # SUSTAINED(n) / N_BREACHES(n)
    window_days: int = 90       # N_BREACHES window


@dataclass(frozen=True)
class ToleranceDefinition:
    """Everything the evaluator needs about one tolerance metric."""
    metric_type: MetricType
    thresholds: Thresholds
    breach_rule: BreachRule = field(default_factory=BreachRule)
    directional: Optional[DirectionalConfig] = None


@dataclass(frozen=True)
class Observation:
    value: float
    observed_at: datetime


@dataclass
class ToleranceEvaluation:
    """Result of evaluating one observation against a tolerance metric."""
    zone: Zone
    measured_value: Optional[float]     # Raw value, or adverse % change for DIRECTIONAL
    observed_value: float
    observed_at: datetime
    breached: bool = False
    severity: Optional[Severity] = None
    threshold_value: Optional[float] = None
    variance_amount: Optional[float] = None
    variance_pct: Optional[float] = None
    consecutive_count: int = 0
    window_count: int = 0
    baseline_value: Optional[float] = None
    explanation: str = ""


# ── Escalation contacts ────────────────────────────────────────────────


class ZoneEscalation(BaseModel):
    """Who is told, and what is expected, when a metric enters a zone."""
    notify: list[str] = Field(default_factory=list)     # Email recipients
    webhook_url: Optional[str] = None
    sla_days: Optional[int] = Field(default=None, ge=0)
    action_required: Optional[str] = None


class EscalationRules(BaseModel):
    amber: ZoneEscalation = Field(default_factory=ZoneEscalation)
    red: ZoneEscalation = Field(default_factory=ZoneEscalation)


# ── API: Scoring ───────────────────────────────────────────────────────


class DimeScores(BaseModel):
    design: int = Field(ge=0, le=3)
    implementation: int = Field(ge=0, le=3)
    monitoring: int = Field(ge=0, le=3)
    evaluation: int = Field(ge=0, le=3)


class EffectivenessResponse(BaseModel):
    effectiveness: float


class ControlInput(DimeScores):
    target: str = Field(default="both", pattern="^(likelihood|impact|both)$")


class ResidualRequest(BaseModel):
    inherent_likelihood: int = Field(ge=1, le=5)
    inherent_impact: int = Field(ge=1, le=5)
    controls: list[ControlInput] = Field(default_factory=list)


class ResidualResponse(BaseModel):
    inherent_likelihood: int
    inherent_impact: int
    inherent_score: int
    residual_likelihood: int
    residual_impact: int
    residual_score: int
    likelihood_effectiveness: float
    impact_effectiveness: float
    risk_id: Optional[str] = None


class ControlAssessmentRequest(DimeScores):
    target: Optional[str] = Field(default=None, pattern="^(likelihood|impact|both)$")


class ControlAssessmentResponse(BaseModel):
    control_id: str
    effectiveness: float
    recalculated_risks: list[str]


class ImpactedMetric(BaseModel):
    metric_id: str
    name: str


class RiskAppetiteResponse(BaseModel):
    risk_id: str
    appetite_level: AppetiteLevel
    residual_score: int
    multiplier: float
    adjusted_score: float
    material: bool
    out_of_appetite: bool
    escalation_required: bool
    severity: str                   # INFO / WARN / CRITICAL
    reason: str
    impacted_metrics: list[ImpactedMetric] = Field(default_factory=list)
    evidence: dict = Field(default_factory=dict)
    explanation: str


# ── API: Tolerances ────────────────────────────────────────────────────


class DirectionalConfigIn(BaseModel):
    lookback_days: int = Field(default=30, ge=1)
    trend: Trend = Trend.INCREASING_IS_BAD


class ToleranceMetricCreate(BaseModel):
    category_id: str
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    unit: Optional[str] = None
    metric_type: MetricType
    green_min: Optional[float] = None
    green_max: Optional[float] = None
    amber_min: Optional[float] = None
    amber_max: Optional[float] = None
    directional_config: Optional[DirectionalConfigIn] = None
    breach_rule: BreachRuleType = BreachRuleType.POINT_IN_TIME
    breach_periods: Optional[int] = Field(default=None, ge=1)
    breach_window_days: Optional[int] = Field(default=None, ge=1)
    escalation_rules: EscalationRules = Field(default_factory=EscalationRules)
    owner_email: Optional[str] = None


class ToleranceMetricUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    green_min: Optional[float] = None
    green_max: Optional[float] = None
    amber_min: Optional[float] = None
    amber_max: Optional[float] = None
    directional_config: Optional[DirectionalConfigIn] = None
    breach_rule: Optional[BreachRuleType] = None
    breach_periods: Optional[int] = Field(default=None, ge=1)
    breach_window_days: Optional[int] = Field(default=None, ge=1)
    escalation_rules: Optional[EscalationRules] = None
    owner_email: Optional[str] = None


class ToleranceMetricResponse(BaseModel):
    id: str
    category_id: str
    name: str
    description: Optional[str] = None
    unit: Optional[str] = None
    is_active: bool
    metric_type: MetricType
    green_min: Optional[float] = None
    green_max: Optional[float] = None
    amber_min: Optional[float] = None
    amber_max: Optional[float] = None
    directional_config: Optional[dict] = None
    breach_rule: BreachRuleType
    breach_periods: Optional[int] = None
    breach_window_days: Optional[int] = None
    escalation_rules: dict = Field(default_factory=dict)
    owner_email: Optional[str] = None
    kri_id: Optional[str] = None
    thresholds_locked: bool = False


class LinkKRIRequest(BaseModel):
    kri_id: str


class CoverageLinkCreate(BaseModel):
    kri_id: str
    coverage_strength: CoverageStrength = CoverageStrength.SECONDARY
    signal_type: SignalType = SignalType.CONCURRENT
    rationale: Optional[str] = None


class CoverageLinkResponse(BaseModel):
    id: str
    metric_id: str
    kri_id: str
    coverage_strength: CoverageStrength
    signal_type: SignalType
    rationale: Optional[str] = None


class CoverageResponse(BaseModel):
    metric_id: str
    classification: CoverageClass
    label: str
    reason: str
    link_count: int
    primary_count: int
    leading_count: int


class CoverageReportResponse(BaseModel):
    total_metrics: int
    gap_count: int
    fragile_count: int
    good_count: int
    metrics: list[CoverageResponse]


# ── API: Observations ──────────────────────────────────────────────────


class ObservationCreate(BaseModel):
    value: float
    observed_at: Optional[datetime] = None
    data_quality_ok: bool = True
    notes: Optional[str] = None


class EvaluationResponse(BaseModel):
    metric_id: str
    zone: Zone
    measured_value: Optional[float] = None
    breached: bool
    severity: Optional[Severity] = None
    threshold_value: Optional[float] = None
    explanation: str
    breach_id: Optional[str] = None
    breach_created: bool = False


class ObservationResponse(BaseModel):
    observation_id: str
    kri_id: str
    data_quality_ok: bool
    evaluations: list[EvaluationResponse]


# ── API: Breaches ──────────────────────────────────────────────────────


class BreachResponse(BaseModel):
    id: str
    metric_id: str
    severity: Severity
    status: BreachStatus
    breach_value: float
    threshold_value: Optional[float] = None
    variance_amount: Optional[float] = None
    variance_pct: Optional[float] = None
    occurrence_count: int
    detected_at: str
    last_seen_at: str
    acknowledged_at: Optional[str] = None
    acknowledged_by: Optional[str] = None
    remediation_plan: Optional[str] = None
    remediation_owner: Optional[str] = None
    remediation_due_date: Optional[str] = None
    resolved_at: Optional[str] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None
    board_accepted_at: Optional[str] = None
    exception_valid_until: Optional[str] = None


class BreachEventResponse(BaseModel):
    event_type: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    severity: Optional[str] = None
    actor: Optional[str] = None
    details: dict = Field(default_factory=dict)
    created_at: str


class BreachDetailResponse(BreachResponse):
    events: list[BreachEventResponse] = Field(default_factory=list)


class RemediationRequest(BaseModel):
    plan: str = Field(min_length=1)
    owner: Optional[str] = None
    due_date: Optional[datetime] = None


class ResolveRequest(BaseModel):
    notes: str


class BoardExceptionRequest(BaseModel):
    rationale: str = Field(min_length=1)
    valid_until: datetime
    green_min: Optional[float] = None
    green_max: Optional[float] = None
    amber_min: Optional[float] = None
    amber_max: Optional[float] = None


class BoardExceptionDecision(BaseModel):
    notes: Optional[str] = None


class BoardExceptionResponse(BaseModel):
    id: str
    breach_id: str
    metric_id: str
    status: ExceptionStatus
    temporary_thresholds: dict
    valid_until: str
    rationale: str
    requested_by: Optional[str] = None
    decided_by: Optional[str] = None
    decided_at: Optional[str] = None


class BreachStatsResponse(BaseModel):
    total: int
    active: int
    by_status: dict[str, int]
    by_severity: dict[str, int]
    avg_resolution_days: Optional[float] = None


# ── API: Status ────────────────────────────────────────────────────────


class MetricStatus(BaseModel):
    metric_id: str
    name: str
    status: Zone
    breach_id: Optional[str] = None


class CategoryStatusResponse(BaseModel):
    category_id: str
    risk_category: str
    appetite_level: AppetiteLevel
    status: Zone
    metrics: list[MetricStatus] = Field(default_factory=list)


class StatusSummary(BaseModel):
    total_categories: int
    red_count: int
    amber_count: int
    green_count: int


class EnterpriseStatusResponse(BaseModel):
    overall_status: Zone
    categories: list[CategoryStatusResponse]
    summary: StatusSummary
    recalculating: bool = False


class RecalculationResponse(BaseModel):
    organization_id: str
    metrics_evaluated: int
    breaches_opened: int
    breaches_updated: int
    exceptions_expired: int
    risks_recalculated: int
    risks_out_of_appetite: int = 0
