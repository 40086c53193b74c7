"""
Tolerance Evaluator.

Pure function of (definition, current observation, ordered history).
No I/O: the service layer loads history from the append-only observation
log and decides what to do with the result.

Zone classification:
- MAXIMUM:     value <= green_max → GREEN, <= amber_max → AMBER, else RED
- MINIMUM:     value >= green_min → GREEN, >= amber_min → AMBER, else RED
- RANGE:       inside [green_min, green_max] → GREEN,
               inside [amber_min, amber_max] → AMBER, else RED
- DIRECTIONAL: adverse % change against the latest observation at or before
               (observed_at - lookback) classified MAXIMUM-style; no baseline
               or a zero baseline → UNKNOWN

Breach decision:
- POINT_IN_TIME: the current zone is AMBER or RED
- SUSTAINED(n):  the last n observations (current included) are all AMBER+;
                 all RED → RED, otherwise AMBER. GREEN/UNKNOWN breaks the run
- N_BREACHES(n, window): at least n AMBER+ observations inside
                 (observed_at - window, observed_at]; RED if the RED count
                 alone reaches n, otherwise AMBER. Only evaluated when the
                 current observation is itself AMBER+
"""

from datetime import datetime, timedelta
from typing import Optional, Sequence

from riskgov.appetite.schemas import (
    BreachRule,
    BreachRuleType,
    DirectionalConfig,
    MetricType,
    Observation,
    Severity,
    Thresholds,
    ToleranceDefinition,
    ToleranceEvaluation,
    Trend,
    Zone,
)
from riskgov.exceptions import ValidationError

_VIOLATING = (Zone.AMBER, Zone.RED)


# ── Threshold validation ───────────────────────────────────────────────


def _require(t: Thresholds, *names: str) -> None:
    missing = [n for n in names if getattr(t, n) is None]
    if missing:
        raise ValidationError(
            f"Missing threshold(s): {', '.join(missing)}",
            field=missing[0],
        )


def validate_thresholds(metric_type: MetricType, t: Thresholds) -> None:
    """Reject incomplete or non-monotonic zone boundaries."""
    if metric_type in (MetricType.MAXIMUM, MetricType.DIRECTIONAL):
        _require(t, "green_max", "amber_max")
        if t.green_max > t.amber_max:
            raise ValidationError(
                f"green_max ({t.green_max}) must not exceed amber_max ({t.amber_max})",
                field="green_max",
            )
    elif metric_type == MetricType.MINIMUM:
        _require(t, "green_min", "amber_min")
        if t.amber_min > t.green_min:
            raise ValidationError(
                f"amber_min ({t.amber_min}) must not exceed green_min ({t.green_min})",
                field="amber_min",
            )
    elif metric_type == MetricType.RANGE:
        _require(t, "green_min", "green_max", "amber_min", "amber_max")
        if not (t.amber_min <= t.green_min <= t.green_max <= t.amber_max):
            raise ValidationError(
                "RANGE thresholds must satisfy amber_min <= green_min <= green_max <= amber_max",
                field="green_min",
            )


def validate_breach_rule(rule: BreachRule) -> None:
    if rule.kind != BreachRuleType.POINT_IN_TIME and rule.periods < 1:
        raise ValidationError("breach_periods must be at least 1", field="breach_periods")
    if rule.kind == BreachRuleType.N_BREACHES and rule.window_days < 1:
        raise ValidationError("breach_window_days must be at least 1", field="breach_window_days")


# ── Board-exception overrides ──────────────────────────────────────────


def apply_override(base: Thresholds, override: Optional[dict]) -> Thresholds:
    """Layer non-null override boundaries over the permanent thresholds."""
    if not override:
        return base
    merged = base.as_dict()
    for key in merged:
        if override.get(key) is not None:
            merged[key] = float(override[key])
    return Thresholds(**merged)


def active_override(exceptions: Sequence, now: datetime) -> Optional[dict]:
    """
    Pick the override in force at `now`.

    `exceptions` are objects with status, valid_until, decided_at and
    temporary_thresholds (BoardException rows). Latest approval wins.
    """
    live = [
        e for e in exceptions
        if e.status == "APPROVED" and e.valid_until > now
    ]
    if not live:
        return None
    live.sort(key=lambda e: e.decided_at or e.valid_until)
    return live[-1].temporary_thresholds


# ── Zone classification ────────────────────────────────────────────────


def _classify_maximum(value: float, t: Thresholds) -> Zone:
    if value <= t.green_max:
        return Zone.GREEN
    if value <= t.amber_max:
        return Zone.AMBER
    return Zone.RED


def _classify_minimum(value: float, t: Thresholds) -> Zone:
    if value >= t.green_min:
        return Zone.GREEN
    if value >= t.amber_min:
        return Zone.AMBER
    return Zone.RED


def _classify_range(value: float, t: Thresholds) -> Zone:
    if t.green_min <= value <= t.green_max:
        return Zone.GREEN
    if t.amber_min <= value <= t.amber_max:
        return Zone.AMBER
    return Zone.RED


def classify(metric_type: MetricType, value: float, t: Thresholds) -> Zone:
    """Zone of a (measured) value. DIRECTIONAL values are adverse % changes."""
    if metric_type == MetricType.MINIMUM:
        return _classify_minimum(value, t)
    if metric_type == MetricType.RANGE:
        return _classify_range(value, t)
    return _classify_maximum(value, t)


def find_baseline(
    series: Sequence[Observation], at: datetime, lookback_days: int
) -> Optional[Observation]:
    """Latest observation at or before `at - lookback_days`."""
    cutoff = at - timedelta(days=lookback_days)
    baseline = None
    for obs in series:
        if obs.observed_at <= cutoff and (baseline is None or obs.observed_at >= baseline.observed_at):
            baseline = obs
    return baseline


def adverse_change_pct(current: float, baseline: float, trend: Trend) -> float:
    change = (current - baseline) / abs(baseline) * 100.0
    return change if trend == Trend.INCREASING_IS_BAD else -change


def _measure(
    definition: ToleranceDefinition,
    obs: Observation,
    earlier: Sequence[Observation],
) -> tuple[Zone, Optional[float], Optional[float]]:
    """(zone, measured value, baseline value) for one observation."""
    if definition.metric_type != MetricType.DIRECTIONAL:
        return classify(definition.metric_type, obs.value, definition.thresholds), obs.value, None

    config = definition.directional or DirectionalConfig()
    baseline = find_baseline(earlier, obs.observed_at, config.lookback_days)
    if baseline is None or baseline.value == 0:
        return Zone.UNKNOWN, None, baseline.value if baseline else None
    rate = adverse_change_pct(obs.value, baseline.value, config.trend)
    return classify(MetricType.MAXIMUM, rate, definition.thresholds), rate, baseline.value


# ── Breach boundaries & variance ───────────────────────────────────────


def crossed_threshold(
    metric_type: MetricType, value: float, t: Thresholds, severity: Severity
) -> Optional[float]:
    """The boundary whose crossing produces `severity` for this value."""
    if metric_type == MetricType.MINIMUM:
        return t.green_min if severity == Severity.AMBER else t.amber_min
    if metric_type == MetricType.RANGE:
        above = value > t.green_max
        if severity == Severity.AMBER:
            return t.green_max if above else t.green_min
        return t.amber_max if above else t.amber_min
    return t.green_max if severity == Severity.AMBER else t.amber_max


def variance(value: float, threshold: Optional[float]) -> tuple[Optional[float], Optional[float]]:
    """(|value - threshold|, percentage of |threshold|; 0 when threshold is 0)."""
    if threshold is None:
        return None, None
    amount = abs(value - threshold)
    pct = amount / abs(threshold) * 100.0 if threshold != 0 else 0.0
    return amount, pct


# ── Evaluation ─────────────────────────────────────────────────────────


def _series(current: Observation, history: Sequence[Observation]) -> list[Observation]:
    """History up to the current observation, oldest first, current last."""
    prior = [h for h in history if h.observed_at <= current.observed_at and h is not current]
    prior.sort(key=lambda o: o.observed_at)
    return prior + [current]


def evaluate(
    definition: ToleranceDefinition,
    current: Observation,
    history: Sequence[Observation] = (),
) -> ToleranceEvaluation:
    """Evaluate one observation; see module docstring for the rules."""
    series = _series(current, history)
    zones: list[Zone] = []
    for idx, obs in enumerate(series):
        zone, measured, baseline = _measure(definition, obs, series[:idx])
        zones.append(zone)

    result = ToleranceEvaluation(
        zone=zone,
        measured_value=measured,
        observed_value=current.value,
        observed_at=current.observed_at,
        baseline_value=baseline,
    )

    if zone == Zone.UNKNOWN:
        result.explanation = "No usable baseline for directional comparison"
        return result
    if zone == Zone.GREEN:
        result.explanation = "Within tolerance"
        return result

    rule = definition.breach_rule
    severity: Optional[Severity] = None

    if rule.kind == BreachRuleType.POINT_IN_TIME:
        severity = Severity(zone.value)
        result.explanation = f"{zone.value} on current observation"

    elif rule.kind == BreachRuleType.SUSTAINED:
        run = 0
        for z in reversed(zones):
            if z not in _VIOLATING:
                break
            run += 1
        result.consecutive_count = run
        if run >= rule.periods:
            tail = zones[-rule.periods:]
            severity = Severity.RED if all(z == Zone.RED for z in tail) else Severity.AMBER
            result.explanation = f"{run} consecutive violating observations (rule: {rule.periods})"
        else:
            result.explanation = f"{run} of {rule.periods} consecutive violating observations"

    elif rule.kind == BreachRuleType.N_BREACHES:
        window_start = current.observed_at - timedelta(days=rule.window_days)
        in_window = [
            z for obs, z in zip(series, zones)
            if window_start < obs.observed_at <= current.observed_at
        ]
        violating = sum(1 for z in in_window if z in _VIOLATING)
        reds = sum(1 for z in in_window if z == Zone.RED)
        result.window_count = violating
        if violating >= rule.periods:
            severity = Severity.RED if reds >= rule.periods else Severity.AMBER
            result.explanation = (
                f"{violating} violating observations in {rule.window_days} days (rule: {rule.periods})"
            )
        else:
            result.explanation = (
                f"{violating} of {rule.periods} violating observations in {rule.window_days} days"
            )

    if severity is not None:
        result.breached = True
        result.severity = severity
        result.threshold_value = crossed_threshold(
            MetricType.MAXIMUM if definition.metric_type == MetricType.DIRECTIONAL else definition.metric_type,
            measured,
            definition.thresholds,
            severity,
        )
        result.variance_amount, result.variance_pct = variance(measured, result.threshold_value)

    return result
