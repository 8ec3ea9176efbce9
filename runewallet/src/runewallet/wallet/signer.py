"""
External signer interface.

Key custody lives outside the marketplace: a browser wallet, a hardware device
or a local key for tests. The marketplace always names the sighash explicitly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from coincurve import PrivateKey

from runewallet.wallet.psbt import Psbt
from runewallet.wallet.signing import sign_psbt_input


class Signer(ABC):
    @abstractmethod
    async def sign_psbt(
        self,
        psbt_hex: str,
        input_indexes: Sequence[int],
        sighash_type: int | None = None,
        finalize: bool = False,
    ) -> str:
        """
        Sign the given inputs and return the PSBT hex.

        Args:
            psbt_hex: Hex encoded PSBT
            input_indexes: Inputs to sign, all others are left untouched
            sighash_type: Sighash to use; None means the wallet default
                (SIGHASH_ALL, or SIGHASH_DEFAULT for taproot)
            finalize: Whether to finalize the signed inputs
        """


class KeySigner(Signer):
    """Signs with a single in-memory key. Intended for tests and tooling."""

    def __init__(self, private_key: PrivateKey):
        self.private_key = private_key

    async def sign_psbt(
        self,
        psbt_hex: str,
        input_indexes: Sequence[int],
        sighash_type: int | None = None,
        finalize: bool = False,
    ) -> str:
        psbt = Psbt.from_hex(psbt_hex)
        for index in input_indexes:
            sign_psbt_input(psbt, index, self.private_key, sighash_type)
            if finalize:
                psbt.finalize_input(index)
        return psbt.to_hex()
