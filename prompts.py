"""Prompt builders for the image and evaluation oracles.

All functions here are pure: same arguments, same string.
"""

from __future__ import annotations

from typing import Optional

from catalog import AwningType, PatternType

# ---------------------------------------------------------------------------
# Placement
# ---------------------------------------------------------------------------

# One strategy per attempt letter so repeated attempts ask different questions.
VARIATION_STRATEGIES = {
    "A": "conservative scaling, exact horizontal alignment, minimal vertical offset",
    "B": "slightly larger scaling, subtle vertical offset correction, refine bracket spacing",
    "C": "medium scaling, focus on perfect bracket alignment with window frames",
    "D": "precise scaling to window width, emphasize natural draping",
    "E": "balanced approach with moderate scaling, enhanced perspective matching",
}

_TYPE_DESCRIPTIONS = {
    AwningType.FOLDING_ARM: (
        "MANDATORY KNIKARM RETRACTABLE FOLDING ARM AWNING. Required features: "
        "1) a horizontal rectangular cassette mounted on the wall above the window, holding the fabric roller; "
        "2) exactly TWO articulated folding arms with visible joints that extend straight out horizontally from the wall; "
        "3) the fabric stretched flat between the two arms, projecting outward from the building; "
        "4) sleek metal arms and cassette (white, grey or black); "
        "5) arms that could visibly fold back against the wall when retracted."
    ),
    AwningType.DROP_ARM: (
        "MANDATORY UITVALARM VERTICAL DROP ARM AWNING. Required features: "
        "1) fabric that hangs DOWN vertically over the window like an outdoor window blind; "
        "2) a compact wall-mounted cassette above the window containing the roller; "
        "3) fabric dropping roughly 1-2 meters from the cassette; "
        "4) two SHORT diagonal support arms (50-80 cm) at the bottom edge of the fabric, angled about 45 degrees, "
        "holding the fabric away from the window and never reaching toward the ground."
    ),
    AwningType.FIXED_CANOPY: (
        "MANDATORY MARKIEZEN TRADITIONAL FIXED CANOPY AWNING. Required features: "
        "1) a curved or wedge-shaped canopy, never a flat horizontal top; "
        "2) fabric side cheeks along both sides; "
        "3) a front fabric valance at the leading edge (scalloped or straight); "
        "4) a concealed frame or one painted to match; "
        "5) not retractable."
    ),
}

_HARDWARE_NOTES = {
    AwningType.FOLDING_ARM: (
        "Use modern metal folding arms and a slim cassette; arms and frame may be dark grey or black. "
        "Keep the hardware consistent with a retractable arm awning."
    ),
    AwningType.DROP_ARM: (
        "Use a compact wall-mounted cassette and two SHORT angled support arms (50-80 cm). "
        "Hardware should be minimal and light-coloured (white/grey); avoid heavy black bars."
    ),
    AwningType.FIXED_CANOPY: (
        "Frame is concealed or painted to match; NO folding arms, NO front roller or cassette, "
        "and NO black metal front bar."
    ),
}

# Each entry names the features of the other two models that must not appear.
_NEGATIVE_PROMPTS = {
    AwningType.FOLDING_ARM: (
        "CRITICAL REJECTION RULES: do NOT draw a traditional fixed canopy (markiezen) with a curved top, "
        "side cheeks or fabric valance. Do NOT draw a vertical drop arm awning (uitvalarm) that hangs down "
        "like a window shade. Do NOT draw a cassette awning without visible folding arms."
    ),
    AwningType.DROP_ARM: (
        "CRITICAL REJECTION RULES: do NOT draw any horizontal, outward-projecting canopy. Do NOT draw a "
        "retractable folding arm awning (knikarm) with horizontal arms. Do NOT draw a traditional fixed "
        "canopy (markiezen). Do NOT draw long arms or poles reaching toward the ground."
    ),
    AwningType.FIXED_CANOPY: (
        "CRITICAL REJECTION RULES: do NOT add retractable folding arms (knikarm), a front roller, a cassette "
        "or a black metal front bar. Do NOT draw a vertical drop arm shade (uitvalarm). This must be a fixed "
        "canopy with a curved or wedge shape, side cheeks and a fabric valance."
    ),
}

_EQUAL_STRIPES = (
    "EQUAL WIDTH STRIPES: every stripe exactly as wide as its neighbours. "
    "NO two adjacent stripes share the same color; alternate distinct colors."
)


def _has_color(fabric_color: Optional[str]) -> bool:
    return bool(fabric_color) and fabric_color.strip().lower() != "default"


def _fabric_clause(
    fabric_color: Optional[str],
    pattern: PatternType,
    stripe_ratio: Optional[str],
) -> str:
    if not _has_color(fabric_color):
        return ""
    if pattern is PatternType.SOLID:
        return (
            f"The awning fabric must be {fabric_color}, one solid color applied uniformly "
            "across the entire fabric surface."
        )
    ratio = stripe_ratio or "1:1"
    if ratio == "1:1":
        return f"The awning fabric must be {fabric_color} striped. {_EQUAL_STRIPES}"
    return (
        f"The awning fabric must be {fabric_color} striped in a {ratio} stripe ratio, "
        "applied evenly across the fabric surface."
    )


def build_placement_prompt(
    awning_type: AwningType,
    variation: str,
    fabric_color: Optional[str] = None,
    pattern: PatternType = PatternType.SOLID,
    stripe_ratio: Optional[str] = None,
) -> str:
    strategy = VARIATION_STRATEGIES.get(variation, VARIATION_STRATEGIES["A"])
    parts = [
        f"Using the provided image, add a {_TYPE_DESCRIPTIONS[awning_type]}",
        "Follow the red line exactly for placement, then remove the red line completely.",
        "Keep everything else in the image exactly the same, preserving the original style, "
        "lighting and composition.",
        _HARDWARE_NOTES[awning_type],
        _fabric_clause(fabric_color, pattern, stripe_ratio),
        "The awning should look realistic and professionally installed.",
        _NEGATIVE_PROMPTS[awning_type],
        "Do NOT crop, resize, stretch or change the aspect ratio; the output must have the same "
        "width and height as the input.",
        f"Variation {variation}: {strategy}.",
    ]
    return " ".join(p for p in parts if p)


def build_refinement_prompt(base_prompt: str, round_number: int) -> str:
    """Placement prompt for a hill-climbing round on the current best image."""
    return (
        f"{base_prompt}\n\n"
        f"IMPORTANT: This is refinement round {round_number}. The image already contains an awning "
        "that needs improvement. Focus on:\n"
        "- the awning's positioning and proportions\n"
        "- structural realism and mounting details\n"
        "- integration with the building architecture\n"
        "- correcting placement or scaling issues from the previous attempt"
    )


def build_placement_evaluation_prompt(awning_type: AwningType) -> str:
    fields = [
        '"placement_quality": number (1-10)',
        '"visual_realism": number (1-10)',
        '"red_line_removed": boolean',
        '"technical_quality": number (1-10)',
        '"overall_score": number (1-10)',
    ]
    if awning_type is AwningType.FIXED_CANOPY:
        fields += [
            '"has_knikarm_arms": boolean',
            '"has_front_roller_or_cassette": boolean',
            '"has_black_metal_front_bar": boolean',
            '"is_fixed_canopy_shape": boolean',
            '"has_side_cheeks": boolean',
            '"has_fabric_valance": boolean',
        ]
    fields.append('"issues": "short description"')
    body = ",\n  ".join(fields)
    return (
        f"Evaluate this house photo with a newly placed {awning_type.value} awning. "
        "Rate placement quality, visual realism and technical quality from 1 to 10 and say whether "
        "the red guide line has been removed. Respond ONLY with JSON:\n"
        f"{{\n  {body}\n}}"
    )


# ---------------------------------------------------------------------------
# Color refinement
# ---------------------------------------------------------------------------

_PRESERVE = (
    "Edit the awning fabric only. Preserve every structural element (frame, arms, cassette) "
    "and every building feature exactly."
)


def _first_color_prompt(
    fabric_color: str, pattern: PatternType, stripe_ratio: str, has_swatch: bool
) -> str:
    if pattern is PatternType.SOLID:
        if has_swatch:
            return (
                "Color correction to match swatch: apply the exact color from the reference swatch "
                f"to the awning fabric. {_PRESERVE} Match the exact color shown in the swatch image."
            )
        return (
            f"Color application: apply {fabric_color} to the awning fabric. {_PRESERVE} "
            "Create a uniform, smooth fabric appearance."
        )
    if has_swatch:
        return (
            "Pattern application to match swatch: apply the exact pattern from the reference swatch "
            f"to the awning fabric, consistently across all panels. {_PRESERVE}"
        )
    if stripe_ratio == "1:1":
        return f"Stripe application: apply {fabric_color} stripes to the awning fabric. {_EQUAL_STRIPES} {_PRESERVE}"
    return (
        f"Stripe application: apply {fabric_color} stripes in a {stripe_ratio} ratio to the awning "
        f"fabric, keeping the proportions consistent across the whole surface. {_PRESERVE}"
    )


def _refinement_color_prompts(
    fabric_color: str, pattern: PatternType, stripe_ratio: str, has_swatch: bool
) -> tuple:
    if pattern is PatternType.SOLID:
        if has_swatch:
            return (
                "Swatch color correction: make the fabric color follow the reference swatch exactly, "
                "consistently across all fabric panels and seams.",
                "Final swatch color pass: perfect the fabric so it matches the reference swatch with "
                "complete visual consistency.",
            )
        return (
            f"Color refinement: perfect the {fabric_color} application with uniform coverage and "
            "smooth fabric texture throughout.",
            f"Final color correction: achieve perfect {fabric_color} uniformity across the entire "
            "awning fabric surface.",
        )
    if has_swatch:
        return (
            "Stripe alignment to match swatch: apply the swatch pattern with proper spacing and "
            "continuity across fabric joints.",
            "Pattern optimization to match swatch: keep the exact appearance of the reference swatch "
            "throughout the fabric.",
        )
    if stripe_ratio == "1:1":
        return (
            f"Stripe correction: {fabric_color} stripes must be EQUAL WIDTH, each exactly as wide as "
            "its neighbours, with NO duplicate colors side by side.",
            f"Final stripe optimization: verify every {fabric_color} stripe is identical in width and "
            "no two adjacent stripes share a color.",
        )
    return (
        f"Stripe correction: keep the {fabric_color} stripes at a {stripe_ratio} ratio consistently "
        "across all fabric panels and seams.",
        f"Final stripe optimization: perfect the {fabric_color} stripe pattern for consistent "
        "proportions.",
    )


def build_color_edit_prompt(
    iteration: int,
    fabric_color: str,
    pattern: PatternType,
    stripe_ratio: Optional[str] = None,
    has_swatch: bool = False,
) -> str:
    """Iteration 1 applies the fabric; later iterations alternate two refinements."""
    ratio = stripe_ratio or "1:1"
    if iteration <= 1:
        prompt = _first_color_prompt(fabric_color, pattern, ratio, has_swatch)
    else:
        variants = _refinement_color_prompts(fabric_color, pattern, ratio, has_swatch)
        prompt = variants[(iteration - 2) % len(variants)]
    return (
        f"{prompt} The first image is the original house photo: keep its framing and aspect ratio. "
        "Edit the second image."
        + (" The last image is the fabric swatch reference." if has_swatch else "")
    )


COLOR_RUBRIC_FIELDS = (
    "is_uniform_base_color",
    "has_decorative_stripes",
    "slats_uniform_color",
    "matches_swatch_color",
    "fabric_only_edited",
    "awning_frame_preserved",
    "awning_cassette_preserved",
    "awning_arms_preserved",
    "building_walls_preserved",
    "windows_preserved",
    "doors_preserved",
    "roof_preserved",
    "brick_color_unchanged",
    "fabric_texture_smooth",
    "has_visible_ribs",
    "has_visible_slats",
    "has_structural_lines",
    "pattern_consistency",
    "goal_met",
)


def build_color_evaluation_prompt(fabric_color: str, pattern: PatternType) -> str:
    booleans = ",\n  ".join(f'"{name}": boolean' for name in COLOR_RUBRIC_FIELDS if name != "goal_met")
    return (
        f"Evaluate the awning fabric for {fabric_color} ({pattern.value}). Check that ONLY the fabric "
        "textile was changed and that all structural and building elements were preserved. "
        "stripe_accuracy is a number from 0 to 1. Respond ONLY with JSON:\n"
        f"{{\n  {booleans},\n  \"stripe_accuracy\": number,\n  \"goal_met\": boolean\n}}"
    )
