"""
Counter-mode key derivation built on AES-CMAC.

Block ``i`` of the output is ``CMAC(key, i || context)`` for ``i = 1, 2, ...``.
The Widevine contexts embed the exact serialized license request, so the
derived keys are bound to that one request.
"""

from __future__ import annotations

from dataclasses import dataclass

from .symmetric import aes_cmac

ENCRYPTION_LABEL = b"ENCRYPTION"
AUTHENTICATION_LABEL = b"AUTHENTICATION"
ENCRYPTION_KEY_BITS = 128
AUTHENTICATION_KEY_BITS = 512


def derive(key: bytes, context: bytes, blocks: int = 1, first_counter: int = 1) -> bytes:
    """Concatenate ``blocks`` CMAC outputs with an incrementing leading counter."""
    if blocks < 1 or first_counter < 1 or first_counter + blocks - 1 > 0xFF:
        raise ValueError(f"invalid counter range {first_counter}..{first_counter + blocks - 1}")
    return b"".join(
        aes_cmac(key, bytes([counter]) + context)
        for counter in range(first_counter, first_counter + blocks)
    )


def encryption_context(request: bytes) -> bytes:
    return ENCRYPTION_LABEL + b"\x00" + request + ENCRYPTION_KEY_BITS.to_bytes(4, "big")


def authentication_context(request: bytes) -> bytes:
    return AUTHENTICATION_LABEL + b"\x00" + request + AUTHENTICATION_KEY_BITS.to_bytes(4, "big")


@dataclass(frozen=True)
class DerivedKeySet:
    enc_key: bytes
    mac_key_server: bytes
    mac_key_client: bytes

    def __repr__(self) -> str:
        return "DerivedKeySet(<redacted>)"


def derive_keys(session_key: bytes, enc_context: bytes, mac_context: bytes) -> DerivedKeySet:
    """Derive the content-key decryption key and the two MAC keys."""
    return DerivedKeySet(
        enc_key=derive(session_key, enc_context, 1),
        mac_key_server=derive(session_key, mac_context, 2, first_counter=1),
        mac_key_client=derive(session_key, mac_context, 2, first_counter=3),
    )
