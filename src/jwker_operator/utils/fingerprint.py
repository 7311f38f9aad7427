"""
Synchronization fingerprint for Jwker specifications.

The fingerprint decides whether a reconcile has work to do: a resource whose
status carries the fingerprint of its current spec together with the
RolloutComplete state is left alone.

The value is compatible with fingerprints written by earlier releases of the
controller: the compact JSON serialization of the spec is walked byte by byte,
each byte hashed with 64-bit FNV-1 and folded into the running value by
hashing the little-endian pair (running, byte-hash) again.
"""

import json
import struct
from typing import Any

from ..constants import STATE_ROLLOUT_COMPLETE
from ..models.jwker import JwkerSpec

FNV64_OFFSET_BASIS = 0xCBF29CE484222325
FNV64_PRIME = 0x100000001B3
_MASK64 = 0xFFFFFFFFFFFFFFFF


def fnv1_64(data: bytes) -> int:
    """64-bit FNV-1 (multiply, then xor)."""
    h = FNV64_OFFSET_BASIS
    for byte in data:
        h = (h * FNV64_PRIME) & _MASK64
        h ^= byte
    return h


def _fold_ordered(acc: int, current: int) -> int:
    return fnv1_64(struct.pack("<QQ", acc, current))


def hash_bytes(data: bytes) -> int:
    acc = 0
    for byte in data:
        acc = _fold_ordered(acc, fnv1_64(bytes([byte])))
    return acc


def canonical_json(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )


def fingerprint(spec: JwkerSpec) -> str:
    """
    Compute the deterministic fingerprint of a spec.

    Args:
        spec: Parsed Jwker specification

    Returns:
        Lower-case hex string without zero padding
    """
    return format(hash_bytes(canonical_json(spec.canonical())), "x")


def is_synchronized(spec: JwkerSpec, status: dict[str, Any]) -> bool:
    """True when the status already reflects a completed rollout of this spec."""
    return (
        status.get("synchronizationState") == STATE_ROLLOUT_COMPLETE
        and status.get("synchronizationHash") == fingerprint(spec)
    )
