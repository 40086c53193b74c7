"""
Risk Appetite Decision.

Folds the state of a category's tolerance metrics into one decision for a
risk in that category. The first matching reason wins:

    HARD_LIMIT_BREACH > ZERO_APPETITE_MATERIAL > SOFT_LIMIT_ESCALATION
        > DATA_MISSING_FOR_TOLERANCE > SOFT_BREACH_PENDING_ESCALATION
        > WITHIN_APPETITE

A ZERO-appetite risk whose residual score reaches the category's
materiality threshold is out of appetite even when every tolerance is in
range. The appetite multiplier only scales the reported score; the decision
comes from the tolerances alone.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Iterable, Optional

from riskgov.appetite.schemas import AppetiteLevel


class AppetiteReason(StrEnum):
    HARD_LIMIT_BREACH = "HARD_LIMIT_BREACH"
    ZERO_APPETITE_MATERIAL = "ZERO_APPETITE_MATERIAL"
    SOFT_LIMIT_ESCALATION = "SOFT_LIMIT_ESCALATION"
    DATA_MISSING_FOR_TOLERANCE = "DATA_MISSING_FOR_TOLERANCE"
    SOFT_BREACH_PENDING_ESCALATION = "SOFT_BREACH_PENDING_ESCALATION"
    WITHIN_APPETITE = "WITHIN_APPETITE"


class AppetiteSeverity(StrEnum):
    INFO = "INFO"
    WARN = "WARN"
    CRITICAL = "CRITICAL"


_SEVERITY_RANK = {AppetiteSeverity.INFO: 1, AppetiteSeverity.WARN: 2, AppetiteSeverity.CRITICAL: 3}

APPETITE_MULTIPLIERS: dict[AppetiteLevel, float] = {
    AppetiteLevel.ZERO: 2.0,
    AppetiteLevel.LOW: 1.5,
    AppetiteLevel.MODERATE: 1.0,
    AppetiteLevel.HIGH: 0.8,
}


@dataclass(frozen=True)
class ToleranceState:
    """Where one tolerance metric stands right now."""
    metric_id: str
    name: str
    hard_breached: bool = False     # Active RED breach
    soft_breached: bool = False     # In AMBER or RED
    rule_met: bool = False          # Breach rule satisfied (a breach exists or is due)
    data_missing: bool = False      # No feed, no approved observation, or stale
    severity: AppetiteSeverity = AppetiteSeverity.INFO


@dataclass
class AppetiteDecision:
    out_of_appetite: bool
    escalation_required: bool
    severity: AppetiteSeverity
    reason: AppetiteReason
    impacted: list[ToleranceState] = field(default_factory=list)
    evidence: dict = field(default_factory=dict)


@dataclass
class RiskAppetiteResult:
    appetite_level: AppetiteLevel
    residual_score: int
    multiplier: float
    adjusted_score: float
    material: bool
    decision: AppetiteDecision
    explanation: str


def appetite_multiplier(level: AppetiteLevel) -> float:
    return APPETITE_MULTIPLIERS.get(level, 1.0)


def adjusted_score(score: float, level: AppetiteLevel) -> float:
    return round(score * appetite_multiplier(level), 2)


def is_material(level: AppetiteLevel, residual_score: Optional[int], threshold: Optional[int]) -> bool:
    """ZERO appetite only: residual score at or above the category's threshold."""
    if level != AppetiteLevel.ZERO or threshold is None or residual_score is None:
        return False
    return residual_score >= threshold


def _names(states: Iterable[ToleranceState]) -> list[str]:
    return [s.name for s in states]


def aggregate_tolerance_states(
    states: Iterable[ToleranceState],
    level: AppetiteLevel,
    material: bool = False,
) -> AppetiteDecision:
    """Risk-level appetite decision from its category's tolerance states."""
    states = list(states)
    hard = [s for s in states if s.hard_breached]

    if level == AppetiteLevel.ZERO and material:
        if hard:
            return AppetiteDecision(
                out_of_appetite=True,
                escalation_required=True,
                severity=AppetiteSeverity.CRITICAL,
                reason=AppetiteReason.HARD_LIMIT_BREACH,
                impacted=hard,
                evidence={"breached_limits": _names(hard), "also_zero_appetite_material": True},
            )
        return AppetiteDecision(
            out_of_appetite=True,
            escalation_required=True,
            severity=AppetiteSeverity.CRITICAL,
            reason=AppetiteReason.ZERO_APPETITE_MATERIAL,
        )

    if hard:
        return AppetiteDecision(
            out_of_appetite=True,
            escalation_required=True,
            severity=AppetiteSeverity.CRITICAL,
            reason=AppetiteReason.HARD_LIMIT_BREACH,
            impacted=hard,
            evidence={"breached_limits": _names(hard)},
        )

    escalations = [s for s in states if s.soft_breached and s.rule_met]
    if escalations:
        # At least WARN
        severity = max([AppetiteSeverity.WARN, *(s.severity for s in escalations)], key=_SEVERITY_RANK.get)
        return AppetiteDecision(
            out_of_appetite=True,
            escalation_required=True,
            severity=severity,
            reason=AppetiteReason.SOFT_LIMIT_ESCALATION,
            impacted=escalations,
            evidence={"breach_rule": "ESCALATION_TRIGGERED"},
        )

    missing = [s for s in states if s.data_missing]
    if missing:
        return AppetiteDecision(
            out_of_appetite=False,
            escalation_required=True,
            severity=AppetiteSeverity.WARN,
            reason=AppetiteReason.DATA_MISSING_FOR_TOLERANCE,
            impacted=missing,
            evidence={"missing_count": len(missing)},
        )

    pending = [s for s in states if s.soft_breached and not s.rule_met]
    if pending:
        return AppetiteDecision(
            out_of_appetite=False,
            escalation_required=False,
            severity=AppetiteSeverity.INFO,
            reason=AppetiteReason.SOFT_BREACH_PENDING_ESCALATION,
            impacted=pending,
            evidence={"pending_count": len(pending)},
        )

    return AppetiteDecision(
        out_of_appetite=False,
        escalation_required=False,
        severity=AppetiteSeverity.INFO,
        reason=AppetiteReason.WITHIN_APPETITE,
    )


def explain(level: AppetiteLevel, decision: AppetiteDecision) -> str:
    if decision.out_of_appetite:
        return f"OUT OF APPETITE: {decision.reason.value} - {', '.join(_names(decision.impacted))}"
    if decision.escalation_required:
        return f"ATTENTION REQUIRED: {decision.reason.value} - escalation to 2nd line recommended"
    return f"Within appetite ({level.value})"


def decide_risk_appetite(
    residual_score: int,
    level: AppetiteLevel,
    states: Iterable[ToleranceState] = (),
    materiality_threshold: Optional[int] = None,
) -> RiskAppetiteResult:
    """Decision, multiplier and adjusted score for one risk."""
    material = is_material(level, residual_score, materiality_threshold)
    decision = aggregate_tolerance_states(states, level, material)
    if decision.reason == AppetiteReason.ZERO_APPETITE_MATERIAL:
        decision.evidence = {"residual_score": residual_score, "materiality_threshold": materiality_threshold}
    return RiskAppetiteResult(
        appetite_level=level,
        residual_score=residual_score,
        multiplier=appetite_multiplier(level),
        adjusted_score=adjusted_score(residual_score, level),
        material=material,
        decision=decision,
        explanation=explain(level, decision),
    )
