"""Tests for holding change computation and activity tiers."""

from types import SimpleNamespace

import pytest

from valuewatch.services.classifier import (
    EXTREME,
    HIGH,
    SIGNIFICANT,
    VERY_HIGH,
    activity_tier,
    compute_changes,
    percentage_change,
)


def holding(fii=None, dii=None, total=None):
    return SimpleNamespace(fii_holding=fii, dii_holding=dii, total_institutional=total)


class TestPercentageChange:
    """Tests for percentage_change function."""

    def test_relative_change(self):
        assert percentage_change(23.0, 20.0) == 15.0

    def test_decrease(self):
        assert percentage_change(18.0, 20.0) == -10.0

    def test_rounded(self):
        assert percentage_change(10.0, 3.0) == 233.33

    @pytest.mark.parametrize("current,prior", [(None, 20.0), (20.0, None), (5.0, 0.0), (None, None)])
    def test_undefined_is_none(self, current, prior):
        assert percentage_change(current, prior) is None


class TestComputeChanges:
    """Tests for compute_changes function."""

    def test_fii_increase_is_significant(self):
        """FII 20 -> 23 is a 15% change."""
        changes = compute_changes(holding(fii=23.0), holding(fii=20.0))
        assert changes.fii_change == 15.0
        assert changes.dii_change is None
        assert changes.total_change is None
        assert changes.is_significant is True
        assert activity_tier(changes.fii_change, changes.dii_change, changes.total_change) is VERY_HIGH

    def test_no_prior(self):
        changes = compute_changes(holding(fii=23.0), None)
        assert (changes.fii_change, changes.dii_change, changes.total_change) == (None, None, None)
        assert changes.is_significant is False

    def test_small_changes_not_significant(self):
        changes = compute_changes(holding(20.4, 10.2, 30.6), holding(20.0, 10.0, 30.0))
        assert changes.is_significant is False

    def test_decrease_counts_as_significant(self):
        changes = compute_changes(holding(dii=9.0), holding(dii=10.0))
        assert changes.dii_change == -10.0
        assert changes.is_significant is True

    def test_zero_prior_never_inf(self):
        changes = compute_changes(holding(5.0, 5.0, 10.0), holding(0.0, 5.0, 5.0))
        assert changes.fii_change is None
        assert changes.total_change == 100.0


class TestActivityTier:
    """Tests for activity_tier function."""

    @pytest.mark.parametrize("change,tier", [
        (50.0, EXTREME),
        (120.0, EXTREME),
        (15.0, VERY_HIGH),
        (49.99, VERY_HIGH),
        (10.0, HIGH),
        (14.99, HIGH),
        (5.0, SIGNIFICANT),
        (-7.5, SIGNIFICANT),
    ])
    def test_tiers(self, change, tier):
        assert activity_tier(change, None, None) is tier

    def test_below_threshold(self):
        assert activity_tier(4.99, -3.0, None) is None
        assert activity_tier(None, None, None) is None

    def test_largest_change_wins(self):
        assert activity_tier(6.0, -16.0, 2.0) is VERY_HIGH

    def test_five_and_ten_share_level(self):
        assert HIGH.level == SIGNIFICANT.level == "high"
        assert HIGH.message != SIGNIFICANT.message
