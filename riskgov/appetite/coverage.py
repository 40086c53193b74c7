"""
Coverage Analyzer.

Classifies how well a tolerance metric is watched by indicators:
- 0 links                         → gap      ("Monitoring Gap")
- 1 link                          → fragile  (single point of failure)
- 2+ links, none primary          → fragile  (no primary link)
- 2+ links, at least one primary  → good
"""

from dataclasses import dataclass
from typing import Iterable, Sequence

from riskgov.appetite.schemas import CoverageClass, CoverageStrength, SignalType


@dataclass(frozen=True)
class CoverageLink:
    kri_id: str
    strength: CoverageStrength = CoverageStrength.SECONDARY
    signal_type: SignalType = SignalType.CONCURRENT


@dataclass(frozen=True)
class CoverageResult:
    classification: CoverageClass
    label: str
    reason: str
    link_count: int
    primary_count: int
    leading_count: int


def analyze_coverage(links: Sequence[CoverageLink]) -> CoverageResult:
    primary = sum(1 for link in links if link.strength == CoverageStrength.PRIMARY)
    leading = sum(1 for link in links if link.signal_type == SignalType.LEADING)
    n = len(links)

    if n == 0:
        classification, label, reason = CoverageClass.GAP, "Monitoring Gap", "No indicators linked"
    elif n == 1:
        classification, label, reason = (
            CoverageClass.FRAGILE, "Fragile Coverage", "Single indicator link"
        )
    elif primary == 0:
        classification, label, reason = (
            CoverageClass.FRAGILE, "Fragile Coverage", "No primary link"
        )
    else:
        classification, label, reason = (
            CoverageClass.GOOD, "Good Coverage", f"{n} links, {primary} primary"
        )

    return CoverageResult(
        classification=classification,
        label=label,
        reason=reason,
        link_count=n,
        primary_count=primary,
        leading_count=leading,
    )


def coverage_counts(results: Iterable[CoverageResult]) -> dict[CoverageClass, int]:
    counts = {c: 0 for c in CoverageClass}
    for r in results:
        counts[r.classification] += 1
    return counts
