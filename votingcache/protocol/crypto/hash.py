# MIT License
# Copyright (c) 2025 Hashborn

import hashlib
from Crypto.Hash import keccak

UINT256_BYTES = 32

def sha384(data: bytes) -> bytes:
    """Returns SHA384 hash of bytes."""
    return hashlib.sha384(data).digest()

def sha384_hex(data: bytes) -> str:
    """Returns SHA384 hash of bytes as hex string."""
    return sha384(data).hex()

def keccak256(*chunks: bytes) -> bytes:
    """Returns Keccak-256 (Ethereum flavour, not SHA3) of the concatenated chunks."""
    h = keccak.new(digest_bits=256)
    for chunk in chunks:
        h.update(chunk)
    return h.digest()

def uint256_bytes(value: int) -> bytes:
    """Big-endian, zero-padded 32 byte encoding of an unsigned integer."""
    if value < 0:
        raise ValueError(f"Cannot encode negative value {value} as uint256")
    return value.to_bytes(UINT256_BYTES, "big")

def hash_for_balance(balance: int) -> str:
    """Hash of a leaf balance as a 0x-prefixed hex string."""
    return "0x" + keccak256(uint256_bytes(balance)).hex()
