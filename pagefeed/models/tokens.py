from __future__ import annotations

from dataclasses import dataclass

FINGERPRINT_SIZE = 32


@dataclass(frozen=True)
class ETag:
    """Opaque validator supplied by the origin server."""

    value: str

    def __post_init__(self):
        if not self.value:
            raise ValueError("empty ETag")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Fingerprint:
    """Locally computed digest of (stripped) page content."""

    digest: bytes

    def __post_init__(self):
        if len(self.digest) != FINGERPRINT_SIZE:
            raise ValueError(f"fingerprint must be {FINGERPRINT_SIZE} bytes, got {len(self.digest)}")

    def hex(self) -> str:
        return self.digest.hex()
