"""
Lister configuration.
"""

from __future__ import annotations

from pydantic import BaseModel, Field
from runecore.constants import DUST_LIMIT
from runecore.models import NetworkType


class ListerConfig(BaseModel):
    network: NetworkType = NetworkType.MAINNET

    # Address paid by the funding outputs; defaults to the lister's own address
    funding_receiver: str | None = None

    dust_limit: int = Field(default=DUST_LIMIT, ge=0)
    # Upper bound on offers accepted from a single listing PSBT
    max_offers_per_listing: int = Field(default=50, ge=1, le=500)

    model_config = {"frozen": False}
