"""
Mempool.space (Esplora-compatible) chain backend.

Used for broadcasting, fee recommendations and unconfirmed activity of an
address. No confirmation polling is done here.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger
from runecore.errors import BroadcastRejected, ExternalServiceFailure

from runewallet.backends.base import UTXO, ChainBackend, MempoolActivity, RecommendedFees

DEFAULT_TIMEOUT = 20.0


class MempoolBackend(ChainBackend):
    """Chain backend using the mempool.space REST API."""

    def __init__(
        self,
        api_url: str = "https://mempool.space/api",
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def _get(self, endpoint: str) -> Any:
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        try:
            response = await self.client.get(url)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.error(f"Mempool API call failed: {endpoint} - {e}")
            raise ExternalServiceFailure(f"Mempool request failed: {e}") from e
        except ValueError as e:
            raise ExternalServiceFailure(f"Mempool returned invalid JSON: {e}") from e

    async def broadcast_transaction(self, tx_hex: str) -> str:
        """
        Push a raw transaction.

        Raises:
            BroadcastRejected: The node refused the transaction (HTTP 400)
            ExternalServiceFailure: The service could not be reached
        """
        try:
            response = await self.client.post(f"{self.api_url}/tx", content=tx_hex)
        except httpx.HTTPError as e:
            logger.error(f"Failed to broadcast transaction: {e}")
            raise ExternalServiceFailure(f"Broadcast failed: {e}") from e

        if response.status_code == 400:
            logger.warning(f"Transaction rejected by node: {response.text}")
            raise BroadcastRejected(f"Transaction rejected: {response.text}")
        if response.status_code >= 300:
            logger.error(f"Broadcast failed with HTTP {response.status_code}: {response.text}")
            raise ExternalServiceFailure(
                f"Broadcast failed with HTTP {response.status_code}: {response.text}"
            )

        txid = response.text.strip()
        logger.info(f"Broadcast transaction: {txid}")
        return txid

    async def get_recommended_fees(self) -> RecommendedFees:
        data = await self._get("v1/fees/recommended")
        return RecommendedFees(
            fastest=data["fastestFee"],
            half_hour=data["halfHourFee"],
            hour=data["hourFee"],
            economy=data.get("economyFee", data["hourFee"]),
            minimum=data.get("minimumFee", 1),
        )

    async def get_mempool_activity(self, address: str) -> MempoolActivity:
        data = await self._get(f"address/{address}/txs/mempool")
        activity = MempoolActivity()
        for tx in data:
            if tx.get("status", {}).get("confirmed"):
                continue
            for vin in tx.get("vin", []):
                prevout = vin.get("prevout") or {}
                if prevout.get("scriptpubkey_address") == address:
                    activity.spent.append(
                        UTXO(
                            txid=vin["txid"],
                            vout=vin["vout"],
                            value=prevout.get("value", 0),
                            address=address,
                            scriptpubkey=prevout.get("scriptpubkey", ""),
                        )
                    )
            for index, vout in enumerate(tx.get("vout", [])):
                if vout.get("scriptpubkey_address") == address:
                    activity.received.append(
                        UTXO(
                            txid=tx["txid"],
                            vout=index,
                            value=vout["value"],
                            address=address,
                            scriptpubkey=vout.get("scriptpubkey", ""),
                        )
                    )
        return activity

    async def get_block_height(self) -> int:
        return int(await self._get("blocks/tip/height"))

    async def close(self) -> None:
        await self.client.aclose()
