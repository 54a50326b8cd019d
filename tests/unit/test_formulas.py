"""
Unit tests for the level formulas.

Level L needs `100 * L^2` total XP; level 0 covers everything below 100.
"""

import math

import pytest

from studyquest.modules.shared.exceptions import ValidationError
from studyquest.modules.shared.formulas import (
    calculate_level,
    check_level_up,
    get_current_xp,
    xp_for_level,
    xp_for_next_level,
    xp_to_next_level,
)


class TestXPForLevel:
    @pytest.mark.parametrize("level, expected", [(1, 100), (2, 400), (3, 900), (10, 10000)])
    def test_quadratic_thresholds(self, level, expected):
        assert xp_for_level(level) == expected

    @pytest.mark.parametrize("level", [0, -1])
    def test_rejects_levels_below_one(self, level):
        with pytest.raises(ValidationError):
            xp_for_level(level)

    def test_rejects_non_finite(self):
        with pytest.raises(ValidationError):
            xp_for_level(math.inf)


class TestCalculateLevel:
    @pytest.mark.parametrize(
        "total_xp, expected",
        [(0, 0), (99, 0), (100, 1), (399, 1), (400, 2), (899, 2), (900, 3), (10000, 10)],
    )
    def test_level_boundaries(self, total_xp, expected):
        assert calculate_level(total_xp) == expected

    def test_level_is_inverse_of_threshold(self):
        for level in range(1, 50):
            threshold = xp_for_level(level)
            assert calculate_level(threshold) == level
            assert calculate_level(threshold - 1) == level - 1

    @pytest.mark.parametrize("bad", [-1, math.nan, math.inf, True, "100"])
    def test_rejects_invalid_totals(self, bad):
        with pytest.raises(ValidationError):
            calculate_level(bad)


class TestCurrentXP:
    def test_level_zero_keeps_whole_total(self):
        assert get_current_xp(50, 0) == 50

    def test_progress_within_level(self):
        assert get_current_xp(399, 1) == 299
        assert get_current_xp(400, 2) == 0

    def test_next_level_helpers(self):
        assert xp_for_next_level(1) == 400
        assert xp_to_next_level(150, 1) == 250
        assert xp_to_next_level(500, 1) == 0


class TestCheckLevelUp:
    def test_multiple_levels_gained(self):
        result = check_level_up(90, 410)

        assert result.leveled_up is True
        assert result.old_level == 0
        assert result.new_level == 2
        assert result.levels_gained == 2

    def test_no_level_change(self):
        result = check_level_up(100, 150)

        assert result.leveled_up is False
        assert result.levels_gained == 0

    def test_decrease_is_rejected(self):
        with pytest.raises(ValidationError):
            check_level_up(10, 5)

    def test_negative_totals_are_rejected(self):
        with pytest.raises(ValidationError):
            check_level_up(-5, 10)
