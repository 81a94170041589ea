"""
Price snapshots

Orders carry the unit price read from the product when the order was
assembled. Amounts are held as integer cents so totals add up exactly.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

from errors import ValidationError

CENT = Decimal("0.01")


def to_cents(amount: Union[float, int, str, Decimal]) -> int:
    # str() first so binary floats like 0.1 round the way they print
    value = Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)
    if value < 0:
        raise ValidationError(f"Negative price: {amount}", field="price")
    return int(value * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


@dataclass(frozen=True)
class PriceSnapshot:
    product_id: str
    unit_price_cents: int

    @classmethod
    def capture(cls, product: dict) -> "PriceSnapshot":
        return cls(product_id=str(product["_id"]), unit_price_cents=to_cents(product.get("price", 0)))

    def line_total(self, quantity: int) -> int:
        return self.unit_price_cents * quantity
