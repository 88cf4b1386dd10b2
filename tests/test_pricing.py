import pytest
from fastapi import HTTPException

from pricing import DELIVERY_CHARGE, cart_subtotal, checkout_totals, effective_price, line_total, unit_price


def test_effective_price_applies_discount():
    assert effective_price(100, 25) == 75.00
    assert effective_price(100, 0) == 100
    assert effective_price(100, None) == 100


def test_line_total_and_subtotal():
    assert line_total(10, 50, 3) == 15
    assert cart_subtotal([(100, 25, 1), (10, 0, 2)]) == 95.00
    assert cart_subtotal([]) == 0


def test_lines_are_priced_from_the_rounded_unit_price():
    assert unit_price(9.99, 15) == 8.49
    assert line_total(9.99, 15, 10) == 84.9
    assert cart_subtotal([(9.99, 15, 10)]) == 84.9


def test_checkout_totals_without_coupon():
    totals = checkout_totals(40.0)
    assert totals == {
        "subtotal": 40.0,
        "discount_percentage": 0,
        "discount_amount": 0,
        "delivery_charge": DELIVERY_CHARGE,
        "total": round(40.0 + DELIVERY_CHARGE, 2),
    }


def test_save10_coupon_is_case_insensitive():
    totals = checkout_totals(50.0, "SaVe10")
    assert totals["discount_percentage"] == 10
    assert totals["discount_amount"] == 5.0
    assert totals["total"] == round(45.0 + DELIVERY_CHARGE, 2)


def test_freeship_waives_delivery():
    totals = checkout_totals(100.0, "freeship")
    assert totals["discount_amount"] == 5.0
    assert totals["delivery_charge"] == 0
    assert totals["total"] == 95.0


def test_unknown_coupon_is_rejected():
    with pytest.raises(HTTPException) as exc:
        checkout_totals(10.0, "nope")
    assert exc.value.status_code == 400
