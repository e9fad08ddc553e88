"""Indicative price calculation for an awning quote.

Pure arithmetic over flat lookup tables. Unknown keys fall back to a
baseline value instead of failing.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Dict, Optional, Union

from catalog import AwningType

VAT_RATE = 0.21

# € per m² of fabric
BASE_PRICES: Dict[str, float] = {
    "knikarm": 85,
    "uitvalarm": 75,
    "markiezen": 95,
}

# flat installation cost by floor level
INSTALLATION_COSTS: Dict[str, float] = {
    "begane-grond": 150,
    "eerste-verdieping": 200,
    "tweede-verdieping": 275,
    "derde-verdieping": 350,
    "hoger": 450,
}

# € per m² on top of the base price
COLOR_SURCHARGES: Dict[str, float] = {
    "lichtgrijs-wit-gestreept": 15,
    "gebroken-wit-creme-gestreept": 15,
    "loodgrijs-effen": 0,
    "oranje": 25,
    "default": 0,
}

FLOOR_NAMES: Dict[str, str] = {
    "begane-grond": "Begane grond",
    "eerste-verdieping": "Eerste verdieping",
    "tweede-verdieping": "Tweede verdieping",
    "derde-verdieping": "Derde verdieping",
    "hoger": "Hoger dan 3e verdieping",
}

_DEFAULT_TYPE = "knikarm"
_DEFAULT_FLOOR = "begane-grond"


def floor_display_name(floor: str) -> str:
    return FLOOR_NAMES.get(floor, floor)


@dataclass(frozen=True)
class PriceBreakdown:
    awning_type: str
    width: float
    projection: float
    floor: str
    fabric_color: Optional[str]
    area: float
    base_price: float
    installation_cost: float
    color_surcharge: float
    subtotal: float
    vat_amount: float
    total_price: float
    calculated_at: str

    def to_dict(self) -> Dict:
        return asdict(self)


class PriceCalculator:

    def __init__(self, vat_rate: float = VAT_RATE) -> None:
        self.vat_rate = vat_rate

    def calculate(
        self,
        awning_type: Union[AwningType, str],
        width: float,
        projection: float,
        floor: str,
        fabric_color: Optional[str] = "default",
    ) -> PriceBreakdown:
        """Price for ``width`` x ``projection`` cm; amounts rounded to cents."""
        type_key = awning_type.value if isinstance(awning_type, AwningType) else str(awning_type)
        area = (width / 100) * (projection / 100)

        base_price = area * BASE_PRICES.get(type_key, BASE_PRICES[_DEFAULT_TYPE])
        installation = INSTALLATION_COSTS.get(floor, INSTALLATION_COSTS[_DEFAULT_FLOOR])
        surcharge = area * COLOR_SURCHARGES.get(fabric_color or "default", 0)

        subtotal = round(base_price + installation + surcharge, 2)
        total = round(subtotal * (1 + self.vat_rate), 2)

        display_type = (
            awning_type.display_name if isinstance(awning_type, AwningType) else type_key
        )
        return PriceBreakdown(
            awning_type=display_type,
            width=width,
            projection=projection,
            floor=floor_display_name(floor),
            fabric_color=fabric_color,
            area=round(area, 2),
            base_price=round(base_price, 2),
            installation_cost=round(installation, 2),
            color_surcharge=round(surcharge, 2),
            subtotal=subtotal,
            vat_amount=round(total - subtotal, 2),
            total_price=total,
            calculated_at=datetime.now(timezone.utc).isoformat(),
        )
