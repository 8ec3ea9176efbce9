"""
Tests for buyer.config
"""

import pytest
from pydantic import ValidationError

from buyer.config import BuyerConfig


def test_defaults():
    config = BuyerConfig()
    assert config.fee_rate is None
    assert config.item_output_value == 546
    assert 3 <= config.revalidation_batch_size <= 5


@pytest.mark.parametrize(
    "overrides",
    [
        {"revalidation_batch_size": 2},
        {"revalidation_batch_size": 6},
        {"fee_rate": 0},
        {"item_output_value": 545},
        {"padding_unit_value": 100},
        {"max_offers_per_order": 0},
    ],
)
def test_rejects_out_of_range(overrides):
    with pytest.raises(ValidationError):
        BuyerConfig(**overrides)
