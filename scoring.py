"""Deterministic scoring of evaluation rubrics.

Rubrics are the dicts returned by the vision oracle. They may be partial or
None; none of these functions raise on bad rubric content.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Mapping, Optional, Tuple

from catalog import AwningType, PatternType

Rubric = Mapping[str, Any]

# field -> (weight per rating point, max contribution)
_RATING_WEIGHTS = (
    ("placement_quality", 3.0, 30.0),
    ("visual_realism", 2.5, 25.0),
    ("technical_quality", 2.0, 20.0),
)
RED_LINE_POINTS = 25.0

# Fixed canopy correctness: flag -> adjustment when the flag is True
_CANOPY_ADJUSTMENTS = (
    ("has_knikarm_arms", -50),
    ("has_front_roller_or_cassette", -40),
    ("has_black_metal_front_bar", -30),
    ("is_fixed_canopy_shape", 20),
    ("has_side_cheeks", 10),
    ("has_fabric_valance", 10),
)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_placement_score(rubric: Optional[Rubric], awning_type: AwningType) -> int:
    """Weighted 0-100 placement score, renormalised over the fields present."""
    if not rubric:
        return 0

    raw = 0.0
    max_score = 0.0
    for name, weight, ceiling in _RATING_WEIGHTS:
        value = rubric.get(name)
        if _is_number(value):
            raw += value * weight
            max_score += ceiling

    red_line = rubric.get("red_line_removed")
    if isinstance(red_line, bool):
        max_score += RED_LINE_POINTS
        if red_line:
            raw += RED_LINE_POINTS

    if awning_type is AwningType.FIXED_CANOPY:
        for flag, delta in _CANOPY_ADJUSTMENTS:
            if rubric.get(flag) is True:
                raw += delta

    raw = max(0.0, raw)
    if max_score <= 0:
        return 0
    return min(100, _round_half_up(raw / max_score * 100))


@dataclass(frozen=True)
class ColorScore:
    score: int
    issues: Tuple[str, ...] = ()


def _stripe_accuracy(rubric: Rubric) -> float:
    value = rubric.get("stripe_accuracy")
    return float(value) if _is_number(value) else 0.0


def _score_solid(rubric: Rubric, issues: List[str]) -> int:
    score = 0
    checks = (
        (rubric.get("is_uniform_base_color") is True, 50, "Non-uniform base color detected"),
        (rubric.get("has_decorative_stripes") is False, 40, "Decorative stripes present"),
        (rubric.get("slats_uniform_color") is True, 30, "Non-uniform slats"),
        (rubric.get("matches_swatch_color") is True, 20, "Color mismatch"),
        (rubric.get("fabric_only_edited") is True, 10, "Hardware was edited"),
    )
    for passed, points, issue in checks:
        if passed:
            score += points
        else:
            issues.append(issue)

    penalties = (
        ("has_visible_ribs", 50, "Visible ribs present (critical penalty)"),
        ("has_visible_slats", 50, "Visible slats present (critical penalty)"),
        ("has_structural_lines", 40, "Structural lines present"),
    )
    for flag, points, issue in penalties:
        if rubric.get(flag) is True:
            score -= points
            issues.append(issue)

    if rubric.get("goal_met") is True:
        score += 100
    return score


def _score_striped(rubric: Rubric, issues: List[str]) -> int:
    accuracy = _stripe_accuracy(rubric)
    if accuracy >= 0.8:
        score = 60
    elif accuracy >= 0.6:
        score = 40
    else:
        score = 20
        issues.append("Low stripe accuracy")

    if rubric.get("pattern_consistency") is True:
        score += 30
    else:
        issues.append("Inconsistent pattern")
    if rubric.get("matches_swatch_color") is True:
        score += 25
    else:
        issues.append("Color mismatch")

    if rubric.get("has_structural_lines") is True:
        score -= 40
        issues.append("Structural lines present")
    if rubric.get("fabric_only_edited") is False:
        score -= 30
        issues.append("Hardware was edited")

    if rubric.get("goal_met") is True:
        score += 50
    return score


def calculate_color_iteration_score(rubric: Optional[Rubric], pattern: PatternType) -> ColorScore:
    """Additive fabric score, floored at 0. Goal bonuses may push it past 100."""
    if not rubric:
        return ColorScore(0, ("Evaluation response could not be parsed",))
    issues: List[str] = []
    if pattern is PatternType.SOLID:
        score = _score_solid(rubric, issues)
    else:
        score = _score_striped(rubric, issues)
    return ColorScore(max(0, score), tuple(issues))


# ---------------------------------------------------------------------------
# Overall goal
# ---------------------------------------------------------------------------

class GoalPolicy(str, Enum):
    COMBINED = "combined"        # placement >= 60 and (no color or color >= 50)
    COLOR_GATED = "color_gated"  # placement >= 30 and (no color or color >= 75)


@dataclass(frozen=True)
class GoalOutcome:
    achieved: bool
    overall_score: int


def determine_goal(
    placement_score: int,
    color_score: int,
    color_requested: bool,
    policy: GoalPolicy = GoalPolicy.COMBINED,
) -> GoalOutcome:
    if policy is GoalPolicy.COMBINED:
        achieved = placement_score >= 60 and (not color_requested or color_score >= 50)
    else:
        achieved = placement_score >= 30 and (not color_requested or color_score >= 75)
    overall = min(placement_score, color_score) if color_requested else placement_score
    return GoalOutcome(achieved, overall)
