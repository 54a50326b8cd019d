"""
Level Formulas

Purpose
-------
Pure XP <-> level arithmetic. Level L requires a cumulative total of
`100 * L^2` XP; level 0 is everything below 100 XP.

Design Notes
------------
- Pure functions only: no config, no I/O, deterministic
- Invalid input raises ValidationError immediately
- Accept `float` input so NaN/inf from upstream arithmetic is rejected
  instead of silently truncated

Usage
-----
    from studyquest.modules.shared.formulas import calculate_level, xp_for_level

    xp_for_level(3)         # 900
    calculate_level(399)    # 1
    get_current_xp(399, 1)  # 299
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Union

from .exceptions import ValidationError

Number = Union[int, float]

XP_PER_LEVEL_SQUARED = 100


@dataclass(frozen=True)
class LevelUpResult:
    leveled_up: bool
    old_level: int
    new_level: int
    levels_gained: int


def _require_finite(value: Number, field: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(field, f"must be a finite number, got {value!r}")


def xp_for_level(level: Number) -> int:
    """
    Total XP required to reach `level`.

    Example:
        >>> xp_for_level(1)
        100
        >>> xp_for_level(10)
        10000
    """
    _require_finite(level, "level")
    if level < 1:
        raise ValidationError("level", f"must be >= 1, got {level}")
    return int(XP_PER_LEVEL_SQUARED * level * level)


def calculate_level(total_xp: Number) -> int:
    """
    Largest level L >= 0 with `xp_for_level(L) <= total_xp`.

    Example:
        >>> calculate_level(0)
        0
        >>> calculate_level(100)
        1
        >>> calculate_level(399)
        1
    """
    _require_finite(total_xp, "total_xp")
    if total_xp < 0:
        raise ValidationError("total_xp", f"must be non-negative, got {total_xp}")

    return math.isqrt(int(total_xp) // XP_PER_LEVEL_SQUARED)


def get_current_xp(total_xp: Number, level: int) -> int:
    """XP earned inside the current level; the whole total at level 0."""
    _require_finite(total_xp, "total_xp")
    if level <= 0:
        return int(total_xp)
    return max(0, int(total_xp) - xp_for_level(level))


def xp_for_next_level(current_level: int) -> int:
    """Total XP at which `current_level + 1` is reached."""
    return xp_for_level(current_level + 1)


def xp_to_next_level(total_xp: Number, current_level: int) -> int:
    """XP still missing before the next level."""
    _require_finite(total_xp, "total_xp")
    return max(0, xp_for_next_level(current_level) - int(total_xp))


def check_level_up(old_total_xp: Number, new_total_xp: Number) -> LevelUpResult:
    """
    Compare levels before and after an XP change.

    Raises ValidationError when either total is negative or when XP decreased.

    Example:
        >>> check_level_up(90, 410)
        LevelUpResult(leveled_up=True, old_level=0, new_level=2, levels_gained=2)
    """
    _require_finite(old_total_xp, "old_total_xp")
    _require_finite(new_total_xp, "new_total_xp")
    if old_total_xp < 0 or new_total_xp < 0:
        raise ValidationError("total_xp", "XP totals must be non-negative")
    if new_total_xp < old_total_xp:
        raise ValidationError(
            "new_total_xp",
            f"must not be lower than old_total_xp ({new_total_xp} < {old_total_xp})",
        )

    old_level = calculate_level(old_total_xp)
    new_level = calculate_level(new_total_xp)
    return LevelUpResult(
        leveled_up=new_level > old_level,
        old_level=old_level,
        new_level=new_level,
        levels_gained=new_level - old_level,
    )
