"""
Bitcoin address and script utilities.

Supports:
- P2PKH (1..., m..., n...)
- P2SH (3..., 2...), spent as P2SH-P2WPKH
- P2WPKH / P2WSH (bc1q..., tb1q..., bcrt1q...)
- P2TR (bc1p..., tb1p..., bcrt1p...)
"""

from __future__ import annotations

import hashlib

import base58
import bech32
from coincurve import PublicKey
from runecore.models import AddressType, NetworkType

BECH32_HRP = {
    NetworkType.MAINNET: "bc",
    NetworkType.TESTNET: "tb",
    NetworkType.SIGNET: "tb",
    NetworkType.REGTEST: "bcrt",
}

P2PKH_VERSION = {True: 0x00, False: 0x6F}
P2SH_VERSION = {True: 0x05, False: 0xC4}


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


def tagged_hash(tag: str, data: bytes) -> bytes:
    tag_hash = hashlib.sha256(tag.encode()).digest()
    return hashlib.sha256(tag_hash + tag_hash + data).digest()


def _bech32_hrp(address: str) -> str | None:
    lowered = address.lower()
    for hrp in ("bcrt", "bc", "tb"):
        if lowered.startswith(hrp + "1"):
            return hrp
    return None


def address_to_scriptpubkey(address: str) -> bytes:
    """Convert a Bitcoin address to its scriptPubKey."""
    hrp = _bech32_hrp(address)
    if hrp is not None:
        witver, witprog = bech32.decode(hrp, address)
        if witver is None or witprog is None:
            raise ValueError(f"Invalid bech32 address: {address}")
        program = bytes(witprog)

        if witver == 0:
            if len(program) == 20:
                # P2WPKH: OP_0 <20-byte-pubkeyhash>
                return bytes([0x00, 0x14]) + program
            if len(program) == 32:
                # P2WSH: OP_0 <32-byte-scripthash>
                return bytes([0x00, 0x20]) + program
        elif witver == 1 and len(program) == 32:
            # P2TR: OP_1 <32-byte-xonly-pubkey>
            return bytes([0x51, 0x20]) + program

        raise ValueError(f"Unsupported witness program in {address}")

    try:
        decoded = base58.b58decode_check(address)
    except ValueError as e:
        raise ValueError(f"Invalid address: {address}") from e
    version = decoded[0]
    payload = decoded[1:]
    if len(payload) != 20:
        raise ValueError(f"Invalid address payload length: {address}")

    if version in P2PKH_VERSION.values():
        # OP_DUP OP_HASH160 <20-byte-pubkeyhash> OP_EQUALVERIFY OP_CHECKSIG
        return bytes([0x76, 0xA9, 0x14]) + payload + bytes([0x88, 0xAC])
    if version in P2SH_VERSION.values():
        # OP_HASH160 <20-byte-scripthash> OP_EQUAL
        return bytes([0xA9, 0x14]) + payload + bytes([0x87])

    raise ValueError(f"Unknown address version: {version}")


def script_type(script: bytes) -> AddressType:
    """Classify a scriptPubKey."""
    if len(script) == 22 and script[0] == 0x00 and script[1] == 0x14:
        return AddressType.P2WPKH
    if len(script) == 34 and script[0] == 0x00 and script[1] == 0x20:
        return AddressType.P2WSH
    if len(script) == 34 and script[0] == 0x51 and script[1] == 0x20:
        return AddressType.P2TR
    if len(script) == 23 and script[0] == 0xA9 and script[1] == 0x14 and script[22] == 0x87:
        return AddressType.P2SH
    if (
        len(script) == 25
        and script[:3] == bytes([0x76, 0xA9, 0x14])
        and script[23:] == bytes([0x88, 0xAC])
    ):
        return AddressType.P2PKH
    return AddressType.UNKNOWN


def get_address_type(address: str) -> AddressType:
    try:
        return script_type(address_to_scriptpubkey(address))
    except ValueError:
        return AddressType.UNKNOWN


def is_testnet_address(address: str) -> bool:
    hrp = _bech32_hrp(address)
    if hrp is not None:
        return hrp != "bc"
    return address[:1] in ("m", "n", "2")


def scriptpubkey_to_address(script: bytes, network: NetworkType = NetworkType.MAINNET) -> str:
    """Convert a scriptPubKey back to an address."""
    kind = script_type(script)
    mainnet = network == NetworkType.MAINNET

    if kind in (AddressType.P2WPKH, AddressType.P2WSH, AddressType.P2TR):
        witver = 1 if kind == AddressType.P2TR else 0
        result = bech32.encode(BECH32_HRP[network], witver, script[2:])
        if result is None:
            raise ValueError(f"Failed to encode address for {script.hex()}")
        return result
    if kind == AddressType.P2PKH:
        return base58.b58encode_check(bytes([P2PKH_VERSION[mainnet]]) + script[3:23]).decode()
    if kind == AddressType.P2SH:
        return base58.b58encode_check(bytes([P2SH_VERSION[mainnet]]) + script[2:22]).decode()

    raise ValueError(f"Unsupported scriptPubKey: {script.hex()}")


def x_only(pubkey: bytes) -> bytes:
    """Strip the parity byte from a compressed key (no-op for x-only keys)."""
    if len(pubkey) == 33:
        return pubkey[1:]
    if len(pubkey) == 32:
        return pubkey
    raise ValueError(f"Invalid pubkey length: {len(pubkey)}")


def taproot_output_key(internal_key: bytes) -> bytes:
    """BIP86 key-path output key for an x-only internal key (no script tree)."""
    internal = x_only(internal_key)
    tweak = tagged_hash("TapTweak", internal)
    point = PublicKey(b"\x02" + internal).add(tweak)
    return point.format()[1:]


def p2wpkh_script(pubkey: bytes) -> bytes:
    return bytes([0x00, 0x14]) + hash160(pubkey)


def p2pkh_script(pubkey_hash: bytes) -> bytes:
    return bytes([0x76, 0xA9, 0x14]) + pubkey_hash + bytes([0x88, 0xAC])


def p2sh_script(redeem_script: bytes) -> bytes:
    return bytes([0xA9, 0x14]) + hash160(redeem_script) + bytes([0x87])


def p2tr_script(output_key: bytes) -> bytes:
    return bytes([0x51, 0x20]) + x_only(output_key)


def p2sh_p2wpkh_redeem_script(pubkey: bytes) -> bytes:
    """Redeem script of a nested segwit account: the P2WPKH program."""
    return p2wpkh_script(pubkey)


def pubkey_to_address(
    pubkey: bytes,
    address_type: AddressType,
    network: NetworkType = NetworkType.MAINNET,
) -> str:
    """Derive the single-key address of the given type."""
    if address_type == AddressType.P2WPKH:
        script = p2wpkh_script(pubkey)
    elif address_type == AddressType.P2SH:
        script = p2sh_script(p2sh_p2wpkh_redeem_script(pubkey))
    elif address_type == AddressType.P2PKH:
        script = p2pkh_script(hash160(pubkey))
    elif address_type == AddressType.P2TR:
        script = p2tr_script(taproot_output_key(pubkey))
    else:
        raise ValueError(f"Cannot derive {address_type.value} address from a pubkey")
    return scriptpubkey_to_address(script, network)
