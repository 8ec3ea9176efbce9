"""
Unisat open-api indexer backend.

Provides BTC, rune and inscription UTXO lookups. Responses are wrapped as
``{"code": int, "msg"|"message": str, "data": ...}``; a non-zero code is an
indexer error.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger
from runecore.errors import ExternalServiceFailure
from runecore.models import InscriptionLocation, RuneBalance, RuneInfo

from runewallet.backends.base import UTXO, IndexerBackend, RuneUTXO

DEFAULT_TIMEOUT = 20.0

# Pagination used for address listings
RUNE_UTXO_PAGE_LIMIT = 500
UTXO_PAGE_SIZE = 1000


def _rune_balance(item: dict[str, Any]) -> RuneBalance:
    return RuneBalance(
        rune_id=item["runeid"],
        rune=item.get("rune", ""),
        spaced_rune=item.get("spacedRune", ""),
        symbol=item.get("symbol", ""),
        amount=int(item["amount"]),
        divisibility=int(item.get("divisibility", 0)),
    )


class UnisatBackend(IndexerBackend):
    """Indexer backend using the Unisat open API."""

    def __init__(
        self,
        api_url: str = "https://open-api.unisat.io",
        api_key: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.client = client or httpx.AsyncClient(timeout=timeout, headers=headers)

    async def _api_call(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """
        GET an indexer endpoint and unwrap its ``data`` field.

        Raises:
            ExternalServiceFailure: On transport errors, HTTP errors or a non-zero code
        """
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        try:
            response = await self.client.get(url, params=params)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Indexer call failed: {endpoint} - {e}")
            raise ExternalServiceFailure(f"Indexer request failed: {e}") from e
        except ValueError as e:
            logger.error(f"Indexer returned invalid JSON: {endpoint} - {e}")
            raise ExternalServiceFailure(f"Indexer returned invalid JSON: {e}") from e

        code = payload.get("code", 0)
        if code != 0:
            message = payload.get("msg") or payload.get("message") or "unknown error"
            logger.error(f"Indexer error {code} for {endpoint}: {message}")
            raise ExternalServiceFailure(f"Indexer error {code}: {message}")
        return payload.get("data")

    async def get_btc_utxos(self, address: str) -> list[UTXO]:
        data = await self._api_call(
            f"v1/indexer/address/{address}/utxo-data",
            params={"cursor": 0, "size": UTXO_PAGE_SIZE},
        )
        utxos = []
        for item in (data or {}).get("utxo", []):
            if item.get("isSpent"):
                continue
            utxos.append(
                UTXO(
                    txid=item["txid"],
                    vout=item["vout"],
                    value=item["satoshi"],
                    address=item.get("address", address),
                    scriptpubkey=item.get("scriptPk", ""),
                    height=item.get("height"),
                )
            )
        logger.debug(f"Found {len(utxos)} UTXOs for {address}")
        return utxos

    async def get_address_rune_utxos(self, address: str, rune_id: str) -> list[RuneUTXO]:
        data = await self._api_call(
            f"v1/indexer/address/{address}/runes/{rune_id}/utxo",
            params={"start": 0, "limit": RUNE_UTXO_PAGE_LIMIT},
        )
        return [
            RuneUTXO(
                txid=item["txid"],
                vout=item["vout"],
                value=item["satoshi"],
                address=item.get("address", address),
                scriptpubkey=item.get("scriptPk", ""),
                runes=[_rune_balance(rune) for rune in item.get("runes", [])],
            )
            for item in (data or {}).get("utxo", [])
        ]

    async def get_utxo_rune_balance(self, txid: str, vout: int) -> list[RuneBalance]:
        data = await self._api_call(f"v1/indexer/runes/utxo/{txid}/{vout}/balance")
        return [_rune_balance(item) for item in data or []]

    async def get_rune_info(self, rune_id: str) -> RuneInfo | None:
        data = await self._api_call(f"v1/indexer/runes/{rune_id}/info")
        if not data:
            return None
        return RuneInfo(
            rune_id=data["runeid"],
            rune=data["rune"],
            spaced_rune=data.get("spacedRune", data["rune"]),
            symbol=data.get("symbol", ""),
            divisibility=int(data.get("divisibility", 0)),
        )

    async def get_address_inscriptions(self, address: str) -> list[InscriptionLocation]:
        data = await self._api_call(
            f"v1/indexer/address/{address}/inscription-data",
            params={"cursor": 0, "size": UTXO_PAGE_SIZE},
        )
        inscriptions = []
        for item in (data or {}).get("inscription", []):
            utxo = item["utxo"]
            if utxo.get("isSpent"):
                continue
            inscriptions.append(
                InscriptionLocation(
                    inscription_id=item["inscriptionId"],
                    txid=utxo["txid"],
                    vout=utxo["vout"],
                    value=utxo.get("satoshi", 0),
                    address=address,
                )
            )
        return inscriptions

    async def get_inscription_info(self, inscription_id: str) -> InscriptionLocation | None:
        data = await self._api_call(f"v1/indexer/inscription/info/{inscription_id}")
        if not data:
            return None
        utxo = data["utxo"]
        return InscriptionLocation(
            inscription_id=inscription_id,
            txid=utxo["txid"],
            vout=utxo["vout"],
            value=utxo.get("satoshi", 0),
            address=data.get("address", ""),
        )

    async def close(self) -> None:
        await self.client.aclose()
