"""
Status Aggregator.

Worst-case rollups, ordered GREEN < AMBER < RED:
- metric status:     severity of its active breach, GREEN if none
- category status:   worst metric status, GREEN for a category with no metrics
- enterprise status: worst category status

These are read-time projections over breach records and are never stored.
"""

from typing import Iterable, Optional

from riskgov.appetite.schemas import Severity, Zone

_RANK: dict[Zone, int] = {Zone.GREEN: 0, Zone.AMBER: 1, Zone.RED: 2}


def metric_status(active_severity: Optional[str]) -> Zone:
    if active_severity is None:
        return Zone.GREEN
    return Zone(Severity(active_severity).value)


def worst(statuses: Iterable[Zone]) -> Zone:
    """Worst of the given statuses; GREEN for an empty input."""
    result = Zone.GREEN
    for status in statuses:
        # UNKNOWN never contributes; it is not a breach
        if _RANK.get(status, 0) > _RANK[result]:
            result = status
    return result


def category_status(metric_statuses: Iterable[Zone]) -> Zone:
    return worst(metric_statuses)


def enterprise_status(category_statuses: Iterable[Zone]) -> Zone:
    return worst(category_statuses)


def summarize(category_statuses: Iterable[Zone]) -> dict[str, int]:
    statuses = list(category_statuses)
    return {
        "total_categories": len(statuses),
        "red_count": sum(1 for s in statuses if s == Zone.RED),
        "amber_count": sum(1 for s in statuses if s == Zone.AMBER),
        "green_count": sum(1 for s in statuses if s == Zone.GREEN),
    }
