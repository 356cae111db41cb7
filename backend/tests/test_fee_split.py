"""
Platform fee split tests.

Verifies:
- 10% default split, floored in the platform's disfavour
- platform_fee + seller_amount always equals the subtotal
- Invalid inputs are rejected
"""

import pytest

from symbiotic.services.order_service import fee_split


@pytest.mark.parametrize(
    "subtotal,fee,seller_amount",
    [
        (2000, 200, 1800),
        (1500, 150, 1350),
        (1111, 111, 1000),
        (1110, 111, 999),
        (9, 0, 9),
        (0, 0, 0),
    ],
)
def test_default_ten_percent_split(subtotal, fee, seller_amount):
    assert fee_split(subtotal, 1000) == (fee, seller_amount)


def test_split_conserves_subtotal():
    for subtotal in (1, 7, 99, 101, 12345, 999_999_999):
        for bps in (0, 1, 250, 1000, 3333, 10_000):
            platform_fee, seller_amount = fee_split(subtotal, bps)
            assert platform_fee + seller_amount == subtotal
            assert 0 <= platform_fee <= subtotal


def test_zero_and_full_rates():
    assert fee_split(5000, 0) == (0, 5000)
    assert fee_split(5000, 10_000) == (5000, 0)


@pytest.mark.parametrize("subtotal,bps", [(-1, 1000), (100, -1), (100, 10_001)])
def test_invalid_inputs_rejected(subtotal, bps):
    with pytest.raises(ValueError):
        fee_split(subtotal, bps)
