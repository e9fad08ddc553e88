from catalog import AwningType, PatternType
from prompts import (
    build_color_edit_prompt,
    build_color_evaluation_prompt,
    build_placement_evaluation_prompt,
    build_placement_prompt,
    build_refinement_prompt,
)


def test_placement_prompt_names_type_and_excludes_others():
    prompt = build_placement_prompt(AwningType.DROP_ARM, "A")
    assert "UITVALARM" in prompt
    assert "Do NOT draw a retractable folding arm awning (knikarm)" in prompt
    assert "Variation A: conservative scaling" in prompt


def test_variations_differ():
    a = build_placement_prompt(AwningType.FOLDING_ARM, "A")
    c = build_placement_prompt(AwningType.FOLDING_ARM, "C")
    assert a != c
    assert a == build_placement_prompt(AwningType.FOLDING_ARM, "A")


def test_color_clauses():
    plain = build_placement_prompt(AwningType.FOLDING_ARM, "A", "default")
    assert "awning fabric must be" not in plain

    solid = build_placement_prompt(AwningType.FOLDING_ARM, "A", "oranje")
    assert "must be oranje, one solid color" in solid

    equal = build_placement_prompt(AwningType.FOLDING_ARM, "B", "blauw-wit", PatternType.STRIPED, "1:1")
    assert "EQUAL WIDTH STRIPES" in equal
    assert "NO two adjacent stripes share the same color" in equal

    ratio = build_placement_prompt(AwningType.FOLDING_ARM, "B", "blauw-wit", PatternType.STRIPED, "2:1")
    assert "2:1 stripe ratio" in ratio
    assert "EQUAL WIDTH" not in ratio


def test_refinement_prompt_extends_base():
    base = build_placement_prompt(AwningType.FIXED_CANOPY, "C")
    refined = build_refinement_prompt(base, 2)
    assert refined.startswith(base)
    assert "refinement round 2" in refined


def test_canopy_fields_only_for_fixed_canopy():
    assert '"has_side_cheeks"' in build_placement_evaluation_prompt(AwningType.FIXED_CANOPY)
    assert '"has_side_cheeks"' not in build_placement_evaluation_prompt(AwningType.FOLDING_ARM)


def test_color_edit_prompt_roles():
    with_swatch = build_color_edit_prompt(1, "oranje", PatternType.SOLID, has_swatch=True)
    without = build_color_edit_prompt(1, "oranje", PatternType.SOLID)
    assert "reference swatch" in with_swatch
    assert "swatch" not in without
    assert "apply oranje" in without
    assert "original house photo" in without


def test_color_evaluation_prompt_lists_rubric():
    prompt = build_color_evaluation_prompt("oranje", PatternType.SOLID)
    for field in ("awning_frame_preserved", "has_visible_ribs", "stripe_accuracy", "goal_met"):
        assert f'"{field}"' in prompt
