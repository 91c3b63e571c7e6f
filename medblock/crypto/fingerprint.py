"""
Fingerprint functions used for proof-of-work mining and content addressing.

A fingerprint maps any sequence of parts to a fixed-width lowercase hex digest.
It must be pure and deterministic; nothing else is assumed of it.
"""

import datetime
import hashlib
import json
from typing import Any

from pydantic import BaseModel

# Separates canonicalised parts so that ("1", "23") and ("12", "3") differ
PART_SEPARATOR = b"\x1f"


def canonical_bytes(part: Any) -> bytes:
    """Encode one fingerprint part deterministically"""
    if part is None:
        return b""
    if isinstance(part, bytes):
        return part
    if isinstance(part, str):
        return part.encode("utf-8")
    if isinstance(part, bool):
        return b"true" if part else b"false"
    if isinstance(part, int):
        return str(part).encode("utf-8")
    if isinstance(part, datetime.datetime):
        return part.isoformat().encode("utf-8")
    if isinstance(part, BaseModel):
        part = part.model_dump(mode="json")
    if isinstance(part, (dict, list, tuple)):
        return json.dumps(part, sort_keys=True, separators=(",", ":")).encode("utf-8")
    raise TypeError(f"Cannot fingerprint value of type {type(part).__name__}")


class Fingerprint:
    """Interface for fingerprint schemes"""

    name = "abstract"
    width = 0

    def digest(self, *parts: Any) -> str:
        return self._digest_bytes(PART_SEPARATOR.join(canonical_bytes(p) for p in parts))

    def _digest_bytes(self, data: bytes) -> str:
        raise NotImplementedError


class Sha256Fingerprint(Fingerprint):
    name = "sha256"
    width = 64

    def _digest_bytes(self, data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()


class RollingFingerprint(Fingerprint):
    """32-bit rolling hash (h = h * 31 + c), weak and only kept for compatibility"""

    name = "rolling"
    width = 8

    def _digest_bytes(self, data: bytes) -> str:
        h = 0
        for byte in data:
            h = (h * 31 + byte) & 0xFFFFFFFF
        # Interpret as signed 32-bit, then take the magnitude
        if h & 0x80000000:
            h -= 0x100000000
        return format(abs(h), "x").zfill(self.width)


FINGERPRINTS = {
    Sha256Fingerprint.name: Sha256Fingerprint,
    RollingFingerprint.name: RollingFingerprint
}


def get_fingerprint(name: str = "sha256") -> Fingerprint:
    """
    Resolve a fingerprint scheme by name.

    Args:
        name: Scheme name ("sha256" or "rolling")

    Returns:
        Fingerprint: A new instance of the scheme

    Raises:
        ValueError: If the scheme is unknown
    """
    try:
        return FINGERPRINTS[name.lower()]()
    except KeyError:
        raise ValueError(f"Unknown fingerprint scheme: {name}")


def leading_zeros(digest: str) -> int:
    """Length of the run of '0' hex digits at the start of a digest"""
    return len(digest) - len(digest.lstrip("0"))
