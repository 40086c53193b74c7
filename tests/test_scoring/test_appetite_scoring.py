"""
Tests for the Risk Appetite Decision.

Covers:
- Reason precedence across tolerance states
- ZERO appetite materiality, alone and with hard breaches
- Severity of soft escalations
- Multiplier and adjusted score per appetite level
- Explanations
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from riskgov.appetite.schemas import AppetiteLevel
from riskgov.scoring.appetite import (
    AppetiteReason,
    AppetiteSeverity,
    ToleranceState,
    adjusted_score,
    aggregate_tolerance_states,
    appetite_multiplier,
    decide_risk_appetite,
    explain,
    is_material,
)

HARD = ToleranceState("m-hard", "Outage minutes", hard_breached=True, soft_breached=True, rule_met=True,
                      severity=AppetiteSeverity.CRITICAL)
SOFT = ToleranceState("m-soft", "Failed payments", soft_breached=True, rule_met=True, severity=AppetiteSeverity.WARN)
PENDING = ToleranceState("m-pending", "Complaints", soft_breached=True, severity=AppetiteSeverity.WARN)
MISSING = ToleranceState("m-missing", "Phishing clicks", data_missing=True, severity=AppetiteSeverity.WARN)
GREEN = ToleranceState("m-green", "Backlog")


# ── Precedence ─────────────────────────────────────────────────────────


def test_no_states_is_within_appetite():
    decision = aggregate_tolerance_states([], AppetiteLevel.MODERATE)
    assert decision.reason == AppetiteReason.WITHIN_APPETITE
    assert decision.out_of_appetite is False
    assert decision.escalation_required is False
    assert decision.severity == AppetiteSeverity.INFO


def test_hard_breach_wins_over_everything():
    decision = aggregate_tolerance_states([GREEN, PENDING, MISSING, SOFT, HARD], AppetiteLevel.HIGH)
    assert decision.reason == AppetiteReason.HARD_LIMIT_BREACH
    assert decision.out_of_appetite is True
    assert decision.severity == AppetiteSeverity.CRITICAL
    assert [s.metric_id for s in decision.impacted] == ["m-hard"]
    assert decision.evidence == {"breached_limits": ["Outage minutes"]}


def test_soft_escalation_beats_missing_data():
    decision = aggregate_tolerance_states([MISSING, SOFT, PENDING], AppetiteLevel.LOW)
    assert decision.reason == AppetiteReason.SOFT_LIMIT_ESCALATION
    assert decision.out_of_appetite is True
    assert decision.severity == AppetiteSeverity.WARN
    assert decision.impacted == [SOFT]


def test_missing_data_needs_attention_but_is_not_out_of_appetite():
    decision = aggregate_tolerance_states([PENDING, MISSING, GREEN], AppetiteLevel.LOW)
    assert decision.reason == AppetiteReason.DATA_MISSING_FOR_TOLERANCE
    assert decision.out_of_appetite is False
    assert decision.escalation_required is True
    assert decision.severity == AppetiteSeverity.WARN
    assert decision.evidence == {"missing_count": 1}


def test_pending_soft_breach_is_informational():
    decision = aggregate_tolerance_states([GREEN, PENDING], AppetiteLevel.MODERATE)
    assert decision.reason == AppetiteReason.SOFT_BREACH_PENDING_ESCALATION
    assert decision.out_of_appetite is False
    assert decision.escalation_required is False
    assert decision.severity == AppetiteSeverity.INFO


def test_soft_escalation_takes_worst_severity_and_never_below_warn():
    info_soft = ToleranceState("m-1", "One", soft_breached=True, rule_met=True, severity=AppetiteSeverity.INFO)
    critical_soft = ToleranceState("m-2", "Two", soft_breached=True, rule_met=True,
                                   severity=AppetiteSeverity.CRITICAL)
    assert aggregate_tolerance_states([info_soft], AppetiteLevel.LOW).severity == AppetiteSeverity.WARN
    assert aggregate_tolerance_states([info_soft, critical_soft], AppetiteLevel.LOW).severity == (
        AppetiteSeverity.CRITICAL
    )


# ── ZERO appetite materiality ──────────────────────────────────────────


def test_material_zero_appetite_is_out_even_when_all_green():
    decision = aggregate_tolerance_states([GREEN], AppetiteLevel.ZERO, material=True)
    assert decision.reason == AppetiteReason.ZERO_APPETITE_MATERIAL
    assert decision.out_of_appetite is True
    assert decision.severity == AppetiteSeverity.CRITICAL


def test_hard_breach_reported_over_zero_materiality():
    decision = aggregate_tolerance_states([HARD], AppetiteLevel.ZERO, material=True)
    assert decision.reason == AppetiteReason.HARD_LIMIT_BREACH
    assert decision.evidence["also_zero_appetite_material"] is True


def test_materiality_only_applies_to_zero_appetite():
    decision = aggregate_tolerance_states([GREEN], AppetiteLevel.LOW, material=True)
    assert decision.reason == AppetiteReason.WITHIN_APPETITE


@pytest.mark.parametrize(
    "level,score,threshold,expected",
    [
        (AppetiteLevel.ZERO, 12, 10, True),
        (AppetiteLevel.ZERO, 10, 10, True),
        (AppetiteLevel.ZERO, 9, 10, False),
        (AppetiteLevel.ZERO, 25, None, False),
        (AppetiteLevel.LOW, 25, 10, False),
    ],
)
def test_is_material(level, score, threshold, expected):
    assert is_material(level, score, threshold) is expected


# ── Score & explanation ────────────────────────────────────────────────


@pytest.mark.parametrize(
    "level,multiplier",
    [
        (AppetiteLevel.ZERO, 2.0),
        (AppetiteLevel.LOW, 1.5),
        (AppetiteLevel.MODERATE, 1.0),
        (AppetiteLevel.HIGH, 0.8),
    ],
)
def test_appetite_multiplier(level, multiplier):
    assert appetite_multiplier(level) == multiplier


def test_adjusted_score_is_rounded_to_cents():
    assert adjusted_score(7, AppetiteLevel.HIGH) == 5.6
    assert adjusted_score(12, AppetiteLevel.LOW) == 18.0


@given(st.integers(min_value=1, max_value=25), st.sampled_from(list(AppetiteLevel)))
def test_multiplier_never_changes_the_decision(score, level):
    result = decide_risk_appetite(score, level, [PENDING])
    assert result.decision.reason == AppetiteReason.SOFT_BREACH_PENDING_ESCALATION
    assert result.adjusted_score == round(score * appetite_multiplier(level), 2)


def test_explanations():
    out = aggregate_tolerance_states([HARD], AppetiteLevel.LOW)
    attention = aggregate_tolerance_states([MISSING], AppetiteLevel.LOW)
    within = aggregate_tolerance_states([GREEN], AppetiteLevel.LOW)
    assert explain(AppetiteLevel.LOW, out) == "OUT OF APPETITE: HARD_LIMIT_BREACH - Outage minutes"
    assert explain(AppetiteLevel.LOW, attention) == (
        "ATTENTION REQUIRED: DATA_MISSING_FOR_TOLERANCE - escalation to 2nd line recommended"
    )
    assert explain(AppetiteLevel.LOW, within) == "Within appetite (LOW)"


def test_decide_risk_appetite_records_materiality_evidence():
    result = decide_risk_appetite(16, AppetiteLevel.ZERO, [GREEN], materiality_threshold=12)
    assert result.material is True
    assert result.multiplier == 2.0
    assert result.adjusted_score == 32.0
    assert result.decision.reason == AppetiteReason.ZERO_APPETITE_MATERIAL
    assert result.decision.evidence == {"residual_score": 16, "materiality_threshold": 12}
    assert result.explanation.startswith("OUT OF APPETITE: ZERO_APPETITE_MATERIAL")
