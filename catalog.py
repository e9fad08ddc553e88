"""Awning models and fabric patterns offered in the configurator."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from errors import RequestValidationError


class AwningType(str, Enum):
    FOLDING_ARM = "knikarm"
    DROP_ARM = "uitvalarm"
    FIXED_CANOPY = "markiezen"

    @classmethod
    def parse(cls, value: Optional[str]) -> "AwningType":
        if value is not None and not isinstance(value, str):
            raise RequestValidationError(f"new_awning_type must be a string, got {value!r}")
        key = (value or "").strip().lower()
        if not key:
            raise RequestValidationError("Missing new_awning_type")
        try:
            return _AWNING_ALIASES[key]
        except KeyError:
            allowed = ", ".join(sorted(_AWNING_ALIASES))
            raise RequestValidationError(
                f"Unknown awning type {value!r}; expected one of: {allowed}"
            ) from None

    @property
    def display_name(self) -> str:
        return _AWNING_DISPLAY[self]


_AWNING_ALIASES = {
    "knikarm": AwningType.FOLDING_ARM,
    "knikarmscherm": AwningType.FOLDING_ARM,
    "folding-arm": AwningType.FOLDING_ARM,
    "uitvalarm": AwningType.DROP_ARM,
    "uitvalscherm": AwningType.DROP_ARM,
    "drop-arm": AwningType.DROP_ARM,
    "markiezen": AwningType.FIXED_CANOPY,
    "fixed-canopy": AwningType.FIXED_CANOPY,
}

_AWNING_DISPLAY = {
    AwningType.FOLDING_ARM: "Knikarm Zonnescherm",
    AwningType.DROP_ARM: "Uitvalarm Zonnescherm",
    AwningType.FIXED_CANOPY: "Markiezen",
}


class PatternType(str, Enum):
    SOLID = "solid"
    STRIPED = "striped"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["PatternType"]:
        if value is not None and not isinstance(value, str):
            raise RequestValidationError(f"pattern_type must be a string, got {value!r}")
        key = (value or "").strip().lower()
        if not key:
            return None
        if key in ("solid", "effen"):
            return cls.SOLID
        if key in ("striped", "gestreept"):
            return cls.STRIPED
        raise RequestValidationError(f"pattern_type must be 'solid' or 'striped', got {value!r}")


STRIPE_MARKERS = ("stripe", "gestreept")


def resolve_pattern(explicit: Optional[PatternType], fabric_color: Optional[str]) -> PatternType:
    """Explicit pattern wins; otherwise a striped colour name implies stripes."""
    if explicit is not None:
        return explicit
    color = (fabric_color or "").lower()
    if any(marker in color for marker in STRIPE_MARKERS):
        return PatternType.STRIPED
    return PatternType.SOLID
