import os
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from fastapi import HTTPException

DELIVERY_CHARGE = float(os.getenv("DELIVERY_CHARGE", "5.00"))


@dataclass(frozen=True)
class Coupon:
    percentage: float
    free_delivery: bool = False


# keyed by lower-cased code
COUPONS: Dict[str, Coupon] = {
    "save10": Coupon(percentage=10),
    "freeship": Coupon(percentage=5, free_delivery=True),
}


def effective_price(price: float, discount_percentage: Optional[float] = 0) -> float:
    if discount_percentage and discount_percentage > 0:
        return price * (1 - discount_percentage / 100)
    return price


def unit_price(price: float, discount_percentage: Optional[float] = 0) -> float:
    """Effective price rounded to cents; every line total is built from this."""
    return round(effective_price(price, discount_percentage), 2)


def line_total(price: float, discount_percentage: Optional[float], quantity: int) -> float:
    return round(unit_price(price, discount_percentage) * quantity, 2)


def cart_subtotal(lines: Iterable[Tuple[float, Optional[float], int]]) -> float:
    """Sum of line totals for (price, discount_percentage, quantity) tuples."""
    return round(sum(line_total(p, d, q) for p, d, q in lines), 2)


def find_coupon(code: Optional[str]) -> Optional[Coupon]:
    if not code:
        return None
    coupon = COUPONS.get(code.strip().lower())
    if coupon is None:
        raise HTTPException(status_code=400, detail="Invalid coupon code.")
    return coupon


def checkout_totals(subtotal: float, coupon_code: Optional[str] = None) -> Dict[str, float]:
    coupon = find_coupon(coupon_code)
    percentage = coupon.percentage if coupon else 0
    discount_amount = round(subtotal * percentage / 100, 2)
    delivery_charge = 0.0 if coupon and coupon.free_delivery else DELIVERY_CHARGE
    return {
        "subtotal": round(subtotal, 2),
        "discount_percentage": percentage,
        "discount_amount": discount_amount,
        "delivery_charge": delivery_charge,
        "total": round(subtotal - discount_amount + delivery_charge, 2),
    }
