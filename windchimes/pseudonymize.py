"""Period-scoped pseudonymization of submitter identities.

Raw identities (client addresses) never leave this module. Each period
draws a fresh random salt; the pseudonym of an identity is a keyed
SHA-256 digest of that identity under the salt, reduced to 32 bits. Once
the salt is discarded at rotation nothing links pseudonyms across periods.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import struct

SALT_SIZE_BYTES = 256
ID_SPACE = 2**32


class Pseudonymizer:
    """Derives opaque 32-bit user ids under a single period's salt."""

    __slots__ = ("_salt",)

    def __init__(self, salt: bytes) -> None:
        if not salt:
            raise ValueError("salt must not be empty")
        self._salt = salt

    @classmethod
    def generate(cls, size: int = SALT_SIZE_BYTES) -> Pseudonymizer:
        """Build a pseudonymizer keyed with *size* bytes from the OS CSPRNG."""
        return cls(secrets.token_bytes(size))

    def anonymize(self, raw_id: str) -> int:
        digest = hmac.new(self._salt, raw_id.encode("utf-8"), hashlib.sha256).digest()
        return int.from_bytes(digest[:4], "little")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(<{len(self._salt)} byte salt>)"


def in_sample(user_id: int, probability: float) -> bool:
    """True if *user_id*, read as a fraction of the id space, falls below *probability*."""
    return user_id < probability * ID_SPACE


def event_id(user_id: int, event: str, resource: str) -> bytes:
    """Digest identifying one (user, event, resource) triple within a period."""
    event_bytes = event.encode("utf-8")
    payload = struct.pack("<IH", user_id, len(event_bytes)) + event_bytes + resource.encode("utf-8")
    return hashlib.blake2b(payload, digest_size=16).digest()
