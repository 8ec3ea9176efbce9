"""
Tests for runewallet.wallet.address
"""

import pytest
from runecore.models import AddressType, NetworkType

from runewallet.wallet.address import (
    address_to_scriptpubkey,
    get_address_type,
    hash160,
    is_testnet_address,
    pubkey_to_address,
    script_type,
    scriptpubkey_to_address,
    taproot_output_key,
    x_only,
)

# secp256k1 generator, i.e. the public key of private key 1
G = bytes.fromhex("0279be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798")


def test_hash160_of_generator():
    assert hash160(G).hex() == "751e76e8199196d454941c45d1b3a323f1433bd6"


def test_p2wpkh_addresses():
    assert pubkey_to_address(G, AddressType.P2WPKH) == (
        "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"
    )
    assert pubkey_to_address(G, AddressType.P2WPKH, NetworkType.TESTNET) == (
        "tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx"
    )


def test_p2pkh_address():
    address = pubkey_to_address(G, AddressType.P2PKH)
    assert address == "1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH"
    script = address_to_scriptpubkey(address)
    assert script_type(script) == AddressType.P2PKH
    assert script[3:23] == hash160(G)


def test_p2sh_round_trip():
    address = pubkey_to_address(G, AddressType.P2SH)
    assert address.startswith("3")
    assert get_address_type(address) == AddressType.P2SH
    assert scriptpubkey_to_address(address_to_scriptpubkey(address)) == address


def test_p2tr_round_trip():
    address = pubkey_to_address(G, AddressType.P2TR)
    assert address.startswith("bc1p")
    script = address_to_scriptpubkey(address)
    assert script[:2] == bytes([0x51, 0x20])
    assert script[2:] == taproot_output_key(G)
    assert scriptpubkey_to_address(script) == address


def test_scriptpubkey_to_address_network():
    script = address_to_scriptpubkey("bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4")
    assert scriptpubkey_to_address(script, NetworkType.REGTEST).startswith("bcrt1q")


def test_invalid_addresses():
    with pytest.raises(ValueError):
        address_to_scriptpubkey("bc1qinvalid")
    with pytest.raises(ValueError):
        address_to_scriptpubkey("1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMX")
    assert get_address_type("not an address") == AddressType.UNKNOWN


def test_unknown_script():
    assert script_type(bytes([0x6A, 0x5D])) == AddressType.UNKNOWN
    with pytest.raises(ValueError):
        scriptpubkey_to_address(bytes([0x6A, 0x5D]))


def test_is_testnet_address():
    assert not is_testnet_address("bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4")
    assert is_testnet_address("tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx")
    assert is_testnet_address(pubkey_to_address(G, AddressType.P2PKH, NetworkType.TESTNET))


def test_x_only():
    assert x_only(G) == G[1:]
    assert x_only(G[1:]) == G[1:]
    with pytest.raises(ValueError):
        x_only(b"\x02" * 10)
