# pricing.py
"""Shipping classification and order totals for physical books."""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

CENT = Decimal("0.01")


@dataclass(frozen=True)
class ShippingRates:
    home_region: str = "tamil nadu"
    in_region: Decimal = Decimal("50.00")
    out_of_region: Decimal = Decimal("100.00")

    @classmethod
    def from_config(cls, config):
        return cls(
            home_region=config["HOME_REGION"],
            in_region=Decimal(str(config["SHIPPING_IN_REGION"])),
            out_of_region=Decimal(str(config["SHIPPING_OUT_OF_REGION"])),
        )


@dataclass(frozen=True)
class Quote:
    unit_price: Decimal
    shipping_cost: Decimal
    total_amount: Decimal
    in_region: bool

    @property
    def region_label(self):
        return "In-state" if self.in_region else "Other states"

    def as_dict(self):
        return {
            "unit_price": f"{self.unit_price:.2f}",
            "shipping_cost": f"{self.shipping_cost:.2f}",
            "total_amount": f"{self.total_amount:.2f}",
            "in_region": self.in_region,
        }


def to_money(value):
    """Coerce a stored/posted amount to a 2-place Decimal; raises ValueError."""
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, TypeError):
        raise ValueError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return amount.quantize(CENT)


def to_price(value):
    """Like to_money, but a price may not be negative."""
    amount = to_money(value)
    if amount < 0:
        raise ValueError(f"Negative price: {value!r}")
    return amount


def is_in_region(region, home_region):
    # Empty or missing text is never in-region.
    if not region or not home_region:
        return False
    return home_region.strip().lower() in region.lower()


def shipping_cost(region, rates):
    if is_in_region(region, rates.home_region):
        return rates.in_region
    return rates.out_of_region


def quote(unit_price, region, rates):
    price = to_price(unit_price)
    in_region = is_in_region(region, rates.home_region)
    ship = rates.in_region if in_region else rates.out_of_region
    return Quote(unit_price=price, shipping_cost=ship, total_amount=price + ship, in_region=in_region)
