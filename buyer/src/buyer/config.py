"""
Buyer configuration.
"""

from __future__ import annotations

from pydantic import BaseModel, Field
from runecore.constants import (
    DUST_LIMIT,
    PADDING_UNIT_VALUE,
    REVALIDATION_BATCH_DELAY,
    REVALIDATION_BATCH_SIZE,
)
from runecore.models import NetworkType


class BuyerConfig(BaseModel):
    network: NetworkType = NetworkType.MAINNET

    # Fee rate in sat/vB; None means use the backend's half-hour recommendation
    fee_rate: float | None = Field(default=None, gt=0)

    # Offers checked concurrently against the indexer, and the pause between batches
    revalidation_batch_size: int = Field(default=REVALIDATION_BATCH_SIZE, ge=3, le=5)
    revalidation_batch_delay: float = Field(default=REVALIDATION_BATCH_DELAY, ge=0.0)

    max_offers_per_order: int = Field(default=20, ge=1, le=100)

    padding_unit_value: int = Field(default=PADDING_UNIT_VALUE, ge=DUST_LIMIT)
    item_output_value: int = Field(default=DUST_LIMIT, ge=DUST_LIMIT)

    model_config = {"frozen": False}
