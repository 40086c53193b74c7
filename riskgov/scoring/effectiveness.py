"""
Control Effectiveness Calculator.

DIME assessment: Design, Implementation, Monitoring, Evaluation, each 0-3.

A control that is not designed or not implemented does nothing, however
well it is monitored: D == 0 or I == 0 → 0. Otherwise the four scores are
averaged against the maximum possible total of 12.
"""

from dataclasses import dataclass

from riskgov.exceptions import ValidationError

# ── Configuration ─────────────────────────────────────────────────────────

MIN_SCORE: int = 0
MAX_SCORE: int = 3
MAX_TOTAL: int = 4 * MAX_SCORE


@dataclass(frozen=True)
class DimeAssessment:
    """One control's DIME scores."""
    design: int
    implementation: int
    monitoring: int
    evaluation: int

    @property
    def effectiveness(self) -> float:
        return calculate_effectiveness(
            self.design, self.implementation, self.monitoring, self.evaluation
        )


def calculate_effectiveness(design: int, implementation: int, monitoring: int, evaluation: int) -> float:
    """
    Effectiveness ratio in [0, 1].

    Assumes validated input; see validate_dime_scores.
    """
    if design == 0 or implementation == 0:
        return 0.0
    return (design + implementation + monitoring + evaluation) / MAX_TOTAL


def validate_dime_scores(**scores: int) -> None:
    """Raise ValidationError unless every score is an integer in [0, 3]."""
    for name, value in scores.items():
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{name} must be an integer", field=name, value=value)
        if not MIN_SCORE <= value <= MAX_SCORE:
            raise ValidationError(
                f"{name} must be between {MIN_SCORE} and {MAX_SCORE}, got {value}",
                field=name,
                value=value,
            )
