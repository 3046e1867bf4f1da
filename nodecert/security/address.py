"""
Account address derivation from ed25519 public keys.
"""
import base64
import hashlib
from typing import Tuple

from Crypto.Hash import RIPEMD160

from .errors import KeyIntegrityError

MAINNET = 0x68
TESTNET = 0x98

NETWORKS = {
    'mainnet': MAINNET,
    'testnet': TESTNET,
}


def public_key_to_address(public_key_hex: str, network: int = MAINNET) -> str:
    """
    Derive the base32 account address of a public key.

    Args:
        public_key_hex: 32-byte public key as 64 hex characters
        network: network identifier byte

    Returns:
        39 character address string
    """
    try:
        public_key = bytes.fromhex(public_key_hex)
    except ValueError:
        raise KeyIntegrityError(f"Public key is not hex: {public_key_hex!r}")
    if len(public_key) != 32:
        raise KeyIntegrityError(f"Public key must be 32 bytes, got {len(public_key)}")

    part_one = hashlib.sha3_256(public_key).digest()
    part_two = RIPEMD160.new(part_one).digest()

    versioned = bytes([network]) + part_two
    checksum = hashlib.sha3_256(versioned).digest()[:3]

    return base64.b32encode(versioned + checksum).decode('ascii').rstrip('=')


def derive_addresses(public_key_hex: str) -> Tuple[str, str]:
    """Return the (mainnet, testnet) addresses of a public key."""
    return (
        public_key_to_address(public_key_hex, MAINNET),
        public_key_to_address(public_key_hex, TESTNET),
    )
