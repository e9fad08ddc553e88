import pytest

from catalog import AwningType, PatternType, resolve_pattern
from errors import RequestValidationError


@pytest.mark.parametrize("value, expected", [
    ("knikarm", AwningType.FOLDING_ARM),
    ("Knikarmscherm", AwningType.FOLDING_ARM),
    ("folding-arm", AwningType.FOLDING_ARM),
    ("uitvalscherm", AwningType.DROP_ARM),
    ("drop-arm", AwningType.DROP_ARM),
    (" markiezen ", AwningType.FIXED_CANOPY),
    ("fixed-canopy", AwningType.FIXED_CANOPY),
])
def test_awning_aliases(value, expected):
    assert AwningType.parse(value) is expected


@pytest.mark.parametrize("value", ["", None, "parasol", 5, True, ["knikarm"]])
def test_bad_awning_type(value):
    with pytest.raises(RequestValidationError):
        AwningType.parse(value)


def test_pattern_parse():
    assert PatternType.parse("effen") is PatternType.SOLID
    assert PatternType.parse("Striped") is PatternType.STRIPED
    assert PatternType.parse(None) is None
    with pytest.raises(RequestValidationError):
        PatternType.parse(True)
    with pytest.raises(RequestValidationError):
        PatternType.parse("checkered")


def test_resolve_pattern():
    assert resolve_pattern(None, "lichtgrijs-wit-gestreept") is PatternType.STRIPED
    assert resolve_pattern(None, "Red stripes") is PatternType.STRIPED
    assert resolve_pattern(None, "oranje") is PatternType.SOLID
    assert resolve_pattern(PatternType.SOLID, "blauw gestreept") is PatternType.SOLID
    assert resolve_pattern(None, None) is PatternType.SOLID
