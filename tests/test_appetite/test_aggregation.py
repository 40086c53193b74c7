"""
Tests for the Status Aggregator.

Covers:
- metric status from the active breach severity
- worst-case rollup for categories and the enterprise
- summary counts
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from riskgov.appetite import aggregation
from riskgov.appetite.schemas import Zone


def test_metric_without_breach_is_green():
    assert aggregation.metric_status(None) == Zone.GREEN


@pytest.mark.parametrize("severity,zone", [("AMBER", Zone.AMBER), ("RED", Zone.RED)])
def test_metric_status_follows_breach_severity(severity, zone):
    assert aggregation.metric_status(severity) == zone


def test_empty_category_is_green():
    assert aggregation.category_status([]) == Zone.GREEN


def test_worst_metric_wins():
    assert aggregation.category_status([Zone.GREEN, Zone.AMBER, Zone.GREEN]) == Zone.AMBER
    assert aggregation.category_status([Zone.AMBER, Zone.RED]) == Zone.RED


def test_unknown_does_not_raise_status():
    assert aggregation.worst([Zone.UNKNOWN, Zone.GREEN]) == Zone.GREEN


def test_enterprise_is_worst_category():
    assert aggregation.enterprise_status([Zone.GREEN, Zone.RED, Zone.AMBER]) == Zone.RED
    assert aggregation.enterprise_status([]) == Zone.GREEN


def test_summarize():
    assert aggregation.summarize([Zone.RED, Zone.GREEN, Zone.GREEN, Zone.AMBER]) == {
        "total_categories": 4,
        "red_count": 1,
        "amber_count": 1,
        "green_count": 2,
    }


class TestRollupProperties:
    @given(statuses=st.lists(st.sampled_from([Zone.GREEN, Zone.AMBER, Zone.RED])))
    @settings(max_examples=50)
    def test_rollup_is_order_independent(self, statuses):
        assert aggregation.worst(statuses) == aggregation.worst(list(reversed(statuses)))

    @given(statuses=st.lists(st.sampled_from([Zone.GREEN, Zone.AMBER, Zone.RED]), min_size=1))
    @settings(max_examples=50)
    def test_red_dominates(self, statuses):
        assert aggregation.worst(statuses + [Zone.RED]) == Zone.RED
