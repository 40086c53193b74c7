"""
Residual Risk Calculator.

For each dimension (likelihood, impact) only the single strongest applicable
control counts:

    residual = max(1, L - round_half_up((L - 1) * max_effectiveness))

Controls targeting "both" apply to both dimensions. No applicable control
leaves the dimension at its inherent value. Residual never drops below 1 and
never exceeds inherent.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import StrEnum
from typing import Iterable

from riskgov.exceptions import ValidationError

MIN_RATING: int = 1
MAX_RATING: int = 5


class ControlTarget(StrEnum):
    LIKELIHOOD = "likelihood"
    IMPACT = "impact"
    BOTH = "both"


@dataclass(frozen=True)
class ControlEffect:
    """Effectiveness of one linked control and the dimension it reduces."""
    effectiveness: float
    target: ControlTarget = ControlTarget.BOTH


@dataclass(frozen=True)
class ResidualResult:
    inherent_likelihood: int
    inherent_impact: int
    likelihood: int
    impact: int
    likelihood_effectiveness: float     # Strongest control applied to likelihood
    impact_effectiveness: float         # Strongest control applied to impact

    @property
    def inherent_score(self) -> int:
        return self.inherent_likelihood * self.inherent_impact

    @property
    def score(self) -> int:
        return self.likelihood * self.impact


def round_half_up(value: float) -> int:
    """Round .5 away from zero (Python's round() is banker's rounding).

    The value is first normalized to 9 decimal places so that float noise
    such as 1.4999999999999998 from (L-1)*eff is treated as 1.5.
    """
    normalized = Decimal(repr(value)).quantize(Decimal("0.000000001"))
    return int(normalized.to_integral_value(rounding=ROUND_HALF_UP))


def reduce_rating(inherent: int, max_effectiveness: float) -> int:
    """Apply the strongest control's effectiveness to one 1-5 rating."""
    reduction = round_half_up((inherent - 1) * max_effectiveness)
    return max(MIN_RATING, inherent - reduction)


def strongest(controls: Iterable[ControlEffect], dimension: ControlTarget) -> float:
    """Highest effectiveness among controls applicable to the dimension (0 if none)."""
    return max(
        (c.effectiveness for c in controls if c.target in (dimension, ControlTarget.BOTH)),
        default=0.0,
    )


def calculate_residual(
    inherent_likelihood: int,
    inherent_impact: int,
    controls: Iterable[ControlEffect] = (),
) -> ResidualResult:
    """Compute residual likelihood, impact and score for a risk."""
    controls = list(controls)
    l_eff = strongest(controls, ControlTarget.LIKELIHOOD)
    i_eff = strongest(controls, ControlTarget.IMPACT)
    return ResidualResult(
        inherent_likelihood=inherent_likelihood,
        inherent_impact=inherent_impact,
        likelihood=reduce_rating(inherent_likelihood, l_eff),
        impact=reduce_rating(inherent_impact, i_eff),
        likelihood_effectiveness=l_eff,
        impact_effectiveness=i_eff,
    )


def validate_rating(name: str, value: int) -> None:
    """Raise ValidationError unless value is an integer rating in [1, 5]."""
    if isinstance(value, bool) or not isinstance(value, int) or not MIN_RATING <= value <= MAX_RATING:
        raise ValidationError(
            f"{name} must be an integer between {MIN_RATING} and {MAX_RATING}, got {value!r}",
            field=name,
            value=value,
        )
