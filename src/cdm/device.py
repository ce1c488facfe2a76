"""
Device credentials handed to the engine by a loader.

The engine never parses a device file format; a loader extracts the key
material and the opaque identity blob and builds a ``DeviceCredential``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

from cryptography.hazmat.primitives.asymmetric import ec, rsa

from .crypto import asymmetric, ecc


@dataclass(frozen=True)
class DeviceCredential:
    """Private keys plus the identity blob sent to the license service.

    For Widevine the signing and encryption keys are the same RSA key and
    ``client_id`` is the serialized client identification. For PlayReady
    the keys are distinct P-256 keys and the identity is the BCert chain.
    """

    signing_key: Any
    encryption_key: Any
    client_id: bytes
    certificate_chain: Optional[bytes] = None
    device_type: str = "ANDROID"
    system_id: int = 0
    security_level: int = 3

    @classmethod
    def widevine(
        cls,
        private_key: Union[bytes, rsa.RSAPrivateKey],
        client_id: bytes,
        device_type: str = "ANDROID",
        system_id: int = 0,
        security_level: int = 3,
    ) -> "DeviceCredential":
        if isinstance(private_key, (bytes, bytearray)):
            private_key = asymmetric.deserialize_private_key(bytes(private_key))
        device_type = device_type.upper()
        if device_type not in ("ANDROID", "CHROME"):
            raise ValueError(f"unknown device type: {device_type}")
        return cls(
            signing_key=private_key,
            encryption_key=private_key,
            client_id=bytes(client_id),
            device_type=device_type,
            system_id=system_id,
            security_level=security_level,
        )

    @classmethod
    def playready(
        cls,
        signing_key: Union[bytes, ec.EllipticCurvePrivateKey],
        encryption_key: Union[bytes, ec.EllipticCurvePrivateKey],
        certificate_chain: bytes,
        security_level: int = 2000,
    ) -> "DeviceCredential":
        if isinstance(signing_key, (bytes, bytearray)):
            signing_key = ecc.private_key_from_bytes(bytes(signing_key))
        if isinstance(encryption_key, (bytes, bytearray)):
            encryption_key = ecc.private_key_from_bytes(bytes(encryption_key))
        return cls(
            signing_key=signing_key,
            encryption_key=encryption_key,
            client_id=bytes(certificate_chain),
            certificate_chain=bytes(certificate_chain),
            device_type="PLAYREADY",
            security_level=security_level,
        )

    @property
    def encryption_public_key(self) -> bytes:
        """Raw ``X || Y`` of the PlayReady encryption key."""
        return ecc.public_key_bytes(self.encryption_key)

    @property
    def signing_public_key(self) -> bytes:
        return ecc.public_key_bytes(self.signing_key)

    def __repr__(self) -> str:
        return f"DeviceCredential(device_type={self.device_type}, security_level={self.security_level})"
