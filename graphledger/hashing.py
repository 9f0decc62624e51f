"""Hashing helpers shared by transactions, blocks and the ledger state."""

import hashlib
import json
import string

HASH_HEX_LENGTH = 64


def canonical_json(data: dict) -> str:
    """Serialize data with sorted keys and compact separators."""
    return json.dumps(data, sort_keys=True, separators=(',', ':'))


def sha256_hex(data: bytes | str) -> str:
    if isinstance(data, str):
        data = data.encode()
    return hashlib.sha256(data).hexdigest()


def is_hash_hex(value: str) -> bool:
    """Check that value is a 64-character hex digest."""
    return (
        isinstance(value, str)
        and len(value) == HASH_HEX_LENGTH
        and all(c in string.hexdigits for c in value)
    )


def merkle_root(leaves: list[str]) -> str:
    """Compute the Merkle root of hex-encoded leaf hashes.

    Pairs are hashed as sha256(left || right) over the raw digests; an odd
    node at any level is paired with itself. No leaves hash to sha256(b"").
    """
    if not leaves:
        return sha256_hex(b"")

    level = [bytes.fromhex(leaf) for leaf in leaves]
    while len(level) > 1:
        if len(level) % 2:
            level.append(level[-1])
        level = [
            hashlib.sha256(level[i] + level[i + 1]).digest()
            for i in range(0, len(level), 2)
        ]
    return level[0].hex()
