"""
Certificate verification for both license protocols.

- Widevine: ``SignedDrmCertificate`` signatures (RSA-PSS-SHA1) walked up
  the signer chain to the embedded root key; service certificates for
  privacy mode are loaded through here.
- PlayReady: BCert chains (ECDSA-SHA256) verified leaf first, each link
  checked against its parent and the last against the embedded root key.

Verification fails closed: the first problem raises and nothing is
returned for a partially trusted chain.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from cryptography.hazmat.primitives.asymmetric import rsa

from .codec.messages import DrmCertificate, MessageType, SignedDrmCertificate, SignedMessage
from .constants import (
    BCERT_MAX_CHAIN_LENGTH,
    PLAYREADY_ROOT_ISSUER_KEY,
    WIDEVINE_ROOT_EXPONENT,
    WIDEVINE_ROOT_MODULUS,
)
from .crypto import asymmetric, ecc
from .exceptions import CertificateChainError, DecodeError, SignatureError
from .formats.bcert import BCertChain, CertType

LOGGER = logging.getLogger(__name__)

_MAX_SIGNER_DEPTH = 4


def _assert(cond: bool, msg: str) -> None:
    """Raise ``CertificateChainError`` with ``msg`` unless ``cond`` holds."""
    if not cond:
        raise CertificateChainError(msg)


def widevine_root_key() -> rsa.RSAPublicKey:
    return asymmetric.rsa_public_key_from_numbers(WIDEVINE_ROOT_MODULUS, WIDEVINE_ROOT_EXPONENT)


# ---------- Widevine ----------

@dataclass(frozen=True)
class ServiceCertificate:
    """A verified license-service certificate used for privacy mode."""

    provider_id: str
    serial_number: bytes
    public_key: rsa.RSAPublicKey
    signed_certificate: SignedDrmCertificate

    def __repr__(self) -> str:
        return f"ServiceCertificate(provider_id={self.provider_id!r}, serial={self.serial_number.hex()})"


def verify_signed_drm_certificate(
    signed: SignedDrmCertificate,
    root_key: Optional[rsa.RSAPublicKey] = None,
    _depth: int = 0,
) -> DrmCertificate:
    """Verify a certificate against its signer chain, ending at the root key.

    Args:
        signed: Certificate with its signature and optional signer
        root_key: Trust anchor; defaults to the embedded Widevine root

    Returns:
        The verified, decoded ``DrmCertificate``

    Raises:
        SignatureError: If any signature in the chain fails
        DecodeError: If a certificate is malformed
    """
    if _depth > _MAX_SIGNER_DEPTH:
        raise SignatureError("signer chain too deep")
    if not signed.drm_certificate or not signed.signature:
        raise DecodeError("signed certificate is missing its body or signature")
    if root_key is None:
        root_key = widevine_root_key()

    if signed.signer is not None:
        issuer = verify_signed_drm_certificate(signed.signer, root_key, _depth + 1)
        if not issuer.public_key:
            raise DecodeError("signer certificate has no public key")
        issuer_key = asymmetric.deserialize_public_key(issuer.public_key)
    else:
        issuer_key = root_key

    if not asymmetric.rsa_pss_verify(signed.drm_certificate, signed.signature, issuer_key):
        raise SignatureError("DRM certificate signature verification failed")
    return DrmCertificate.decode(signed.drm_certificate)


def load_service_certificate(
    blob: bytes,
    root_key: Optional[rsa.RSAPublicKey] = None,
) -> ServiceCertificate:
    """Parse and verify a service certificate.

    Accepts either a ``SignedMessage`` of type SERVICE_CERTIFICATE (the reply
    to a service-certificate request) or a bare ``SignedDrmCertificate``.
    """
    signed = None
    try:
        message = SignedMessage.decode(blob)
        if message.type == MessageType.SERVICE_CERTIFICATE and message.msg:
            signed = SignedDrmCertificate.decode(message.msg)
    except DecodeError:
        LOGGER.debug("Service certificate is not wrapped in a SignedMessage")
    if signed is None:
        signed = SignedDrmCertificate.decode(blob)

    certificate = verify_signed_drm_certificate(signed, root_key)
    if not certificate.public_key:
        raise DecodeError("service certificate has no public key")
    service = ServiceCertificate(
        provider_id=certificate.provider_id or "",
        serial_number=certificate.serial_number or b"",
        public_key=asymmetric.deserialize_public_key(certificate.public_key),
        signed_certificate=signed,
    )
    LOGGER.info("Verified service certificate for %s", service.provider_id or "<unknown provider>")
    return service


# ---------- PlayReady ----------

def verify_bcert_chain(chain: BCertChain, root_key: bytes = PLAYREADY_ROOT_ISSUER_KEY) -> bool:
    """Verify a BCert chain leaf first.

    Args:
        chain: Parsed chain, leaf at index 0
        root_key: ``X || Y`` key that must have signed the last certificate

    Returns:
        True when every check passes

    Raises:
        CertificateChainError: On the first failing check
    """
    count = len(chain.certificates)
    _assert(1 <= count <= BCERT_MAX_CHAIN_LENGTH, f"chain must have 1-{BCERT_MAX_CHAIN_LENGTH} certificates, got {count}")

    for i, cert in enumerate(chain.certificates):
        sig = cert.signature_info
        _assert(sig is not None, f"certificate {i} has no signature attribute")
        _assert(len(sig.signing_key) == ecc.PUBLIC_KEY_SIZE,
                f"certificate {i} signing key is {len(sig.signing_key)} bytes")
        try:
            valid = ecc.ecdsa_verify(cert.signed_bytes(), sig.signature, sig.signing_key)
        except DecodeError as e:
            raise CertificateChainError(f"certificate {i} signing key is invalid: {e}") from e
        _assert(valid, f"certificate {i} signature verification failed")

        if i + 1 < count:
            parent = chain.certificates[i + 1]
            parent_info = parent.basic_info
            if parent_info is not None and i + 1 < count - 1:
                _assert(parent_info.cert_type == CertType.ISSUER, f"certificate {i + 1} is not an issuer")
            _assert(parent.key_info is not None, f"certificate {i + 1} has no key attribute")
            _assert(any(k.key == sig.signing_key for k in parent.key_info.keys),
                    f"certificate {i} issuer key not found in certificate {i + 1}")
            child_info = cert.basic_info
            if child_info is not None and parent_info is not None:
                # REVIEW: some clients compare this against the parent's expiration_date;
                # confirm the ordering against protocol documentation.
                _assert(child_info.security_level <= parent_info.security_level,
                        f"certificate {i} security level exceeds its issuer's")
        else:
            _assert(sig.signing_key == root_key, "root certificate was not signed by the trusted root key")

    LOGGER.debug("BCert chain of %d certificates verified", count)
    return True
