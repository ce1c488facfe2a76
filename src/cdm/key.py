"""Recovered keys, key-id normalization and the canonical text rendering."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List

from .constants import KID_SIZE
from .exceptions import DecodeError


class KeyRole(str, Enum):
    CONTENT = "CONTENT"
    SIGNING = "SIGNING"
    KEY_CONTROL = "KEY_CONTROL"
    OPERATOR_SESSION = "OPERATOR_SESSION"
    ENTITLEMENT = "ENTITLEMENT"
    OEM_CONTENT = "OEM_CONTENT"
    UNKNOWN = "UNKNOWN"


def normalize_kid(kid: bytes) -> bytes:
    """Map any key id the servers send onto 16 bytes.

    - empty: sixteen zero bytes
    - exactly 16 bytes: unchanged, even if every byte is a digit
    - ASCII decimal digits: the number as a 16-byte big-endian integer
    - shorter than 16 bytes: right-padded with zeros
    - longer than 16 bytes: the first 16 bytes
    """
    kid = bytes(kid or b"")
    if not kid:
        return bytes(KID_SIZE)
    if len(kid) == KID_SIZE:
        return kid
    if kid.isdigit():
        value = int(kid.decode("ascii"))
        if value < 1 << (8 * KID_SIZE):
            return value.to_bytes(KID_SIZE, "big")
    if len(kid) < KID_SIZE:
        return kid + bytes(KID_SIZE - len(kid))
    return kid[:KID_SIZE]


@dataclass(frozen=True)
class ContentKey:
    kid: bytes
    key: bytes
    role: KeyRole = KeyRole.CONTENT
    type_name: str = ""

    @property
    def kid_uuid(self) -> uuid.UUID:
        return uuid.UUID(bytes=self.kid)

    def __str__(self) -> str:
        return f"[{self.role.value}] {self.kid.hex()}:{self.key.hex()}"

    def __repr__(self) -> str:
        return f"ContentKey(kid={self.kid.hex()}, role={self.role.value})"

    @classmethod
    def from_str(cls, text: str, role: KeyRole = KeyRole.CONTENT) -> "ContentKey":
        """Parse the ``kid_hex:key_hex`` form written by ``render_keys``.

        Raises:
            DecodeError: If the separator is missing, either side is not hex,
                the key id is not 16 bytes or the key is empty
        """
        kid_hex, sep, key_hex = text.partition(":")
        if not sep:
            raise DecodeError(f"expected kid:key, got {text!r}")
        try:
            kid = bytes.fromhex(kid_hex.strip())
            key = bytes.fromhex(key_hex.strip())
        except ValueError as e:
            raise DecodeError(f"invalid hex in {text!r}") from e
        if len(kid) != KID_SIZE:
            raise DecodeError(f"key id must be {KID_SIZE} bytes, got {len(kid)}", field="kid")
        if not key:
            raise DecodeError("key is empty", field="key")
        return cls(kid=kid, key=key, role=role)


def content_keys(keys: Iterable[ContentKey]) -> List[ContentKey]:
    return [k for k in keys if k.role == KeyRole.CONTENT]


def render_keys(keys: Iterable[ContentKey]) -> str:
    """``kid:key`` in lowercase hex, one content key per line."""
    return "\n".join(f"{k.kid.hex()}:{k.key.hex()}" for k in content_keys(keys))


def parse_keys(text: str) -> List[ContentKey]:
    """Read back the output of ``render_keys``; blank lines are ignored."""
    return [ContentKey.from_str(line) for line in text.splitlines() if line.strip()]
