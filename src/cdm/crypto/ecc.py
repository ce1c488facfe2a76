"""
Elliptic-curve primitives (NIST P-256) for the PlayReady license protocol.

- ECDSA-SHA256 with raw 64-byte ``r || s`` signatures (cryptography)
- ElGamal point encryption with 128-byte ciphertexts
  ``C1.x || C1.y || C2.x || C2.y`` (pycryptodome point arithmetic)

Public keys travel as 64 raw bytes ``X || Y``; private keys as 32 raw bytes.
"""

from __future__ import annotations

import secrets

from Crypto.PublicKey import ECC
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature, encode_dss_signature

from ..constants import P256_PRIME
from ..exceptions import CryptoError, DecodeError

CURVE = "p256"
COORDINATE_SIZE = 32
PUBLIC_KEY_SIZE = 64
ELGAMAL_CIPHERTEXT_SIZE = 128

P256_ORDER = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551
P256_GX = 0x6B17D1F2E12C4247F8BCE6E563A440F277037D812DEB33A0F4A13945D898C296
P256_GY = 0x4FE342E2FE1A7F9B8EE7EB4A7C0F9E162BCE33576B315ECECBB6406837BF51F5


# ---------- keys ----------

def generate_private_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1(), default_backend())


def private_key_from_bytes(raw: bytes) -> ec.EllipticCurvePrivateKey:
    """Load a 32-byte big-endian private scalar."""
    if len(raw) != COORDINATE_SIZE:
        raise DecodeError(f"ECC private key must be {COORDINATE_SIZE} bytes, got {len(raw)}")
    try:
        return ec.derive_private_key(int.from_bytes(raw, "big"), ec.SECP256R1(), default_backend())
    except ValueError as e:
        raise DecodeError("invalid ECC private scalar") from e


def private_key_to_bytes(key: ec.EllipticCurvePrivateKey) -> bytes:
    return key.private_numbers().private_value.to_bytes(COORDINATE_SIZE, "big")


def public_key_bytes(key) -> bytes:
    """Raw ``X || Y`` of a private or public key."""
    if isinstance(key, ec.EllipticCurvePrivateKey):
        key = key.public_key()
    numbers = key.public_numbers()
    return numbers.x.to_bytes(COORDINATE_SIZE, "big") + numbers.y.to_bytes(COORDINATE_SIZE, "big")


def public_key_from_bytes(raw: bytes) -> ec.EllipticCurvePublicKey:
    """Load a raw ``X || Y`` public key.

    Raises:
        DecodeError: If the point is malformed or off the curve
    """
    if len(raw) != PUBLIC_KEY_SIZE:
        raise DecodeError(f"ECC public key must be {PUBLIC_KEY_SIZE} bytes, got {len(raw)}")
    x = int.from_bytes(raw[:32], "big")
    y = int.from_bytes(raw[32:], "big")
    try:
        return ec.EllipticCurvePublicNumbers(x, y, ec.SECP256R1()).public_key(default_backend())
    except ValueError as e:
        raise DecodeError("ECC public key is not on P-256") from e


# ---------- ECDSA ----------

def ecdsa_sign(message: bytes, private_key: ec.EllipticCurvePrivateKey) -> bytes:
    """Sign with ECDSA-SHA256 and return the raw 64-byte ``r || s``."""
    der = private_key.sign(message, ec.ECDSA(hashes.SHA256()))
    r, s = decode_dss_signature(der)
    return r.to_bytes(COORDINATE_SIZE, "big") + s.to_bytes(COORDINATE_SIZE, "big")


def ecdsa_verify(message: bytes, signature: bytes, public_key: bytes) -> bool:
    """Verify a raw ``r || s`` ECDSA-SHA256 signature against an ``X || Y`` key.

    Returns:
        True if signature is valid, False otherwise
    """
    if len(signature) != 2 * COORDINATE_SIZE:
        return False
    key = public_key_from_bytes(public_key)
    der = encode_dss_signature(
        int.from_bytes(signature[:32], "big"),
        int.from_bytes(signature[32:], "big"),
    )
    try:
        key.verify(der, message, ec.ECDSA(hashes.SHA256()))
        return True
    except InvalidSignature:
        return False


# ---------- points and ElGamal ----------

def point_from_bytes(raw: bytes) -> ECC.EccPoint:
    if len(raw) != PUBLIC_KEY_SIZE:
        raise DecodeError(f"ECC point must be {PUBLIC_KEY_SIZE} bytes, got {len(raw)}")
    try:
        return ECC.EccPoint(int.from_bytes(raw[:32], "big"), int.from_bytes(raw[32:], "big"), curve=CURVE)
    except ValueError as e:
        raise DecodeError("point is not on P-256") from e


def point_to_bytes(point: ECC.EccPoint) -> bytes:
    return int(point.x).to_bytes(COORDINATE_SIZE, "big") + int(point.y).to_bytes(COORDINATE_SIZE, "big")


def point_x_bytes(point: ECC.EccPoint) -> bytes:
    return int(point.x).to_bytes(COORDINATE_SIZE, "big")


def random_point() -> ECC.EccPoint:
    """A fresh random curve point (the public half of a throwaway key)."""
    return ECC.generate(curve="P-256").pointQ


def _generator() -> ECC.EccPoint:
    return ECC.EccPoint(P256_GX, P256_GY, curve=CURVE)


def _negate(point: ECC.EccPoint) -> ECC.EccPoint:
    return ECC.EccPoint(int(point.x), (P256_PRIME - int(point.y)) % P256_PRIME, curve=CURVE)


def elgamal_encrypt(message: ECC.EccPoint, public_key: bytes) -> bytes:
    """Encrypt a curve point to an ``X || Y`` public key.

    Returns:
        128-byte ciphertext ``C1 || C2``
    """
    recipient = point_from_bytes(public_key)
    k = secrets.randbelow(P256_ORDER - 1) + 1
    c1 = _generator() * k
    c2 = message + recipient * k
    return point_to_bytes(c1) + point_to_bytes(c2)


def elgamal_decrypt(ciphertext: bytes, private_key: ec.EllipticCurvePrivateKey) -> ECC.EccPoint:
    """Recover the message point from a 128-byte ElGamal ciphertext.

    Raises:
        CryptoError: If the ciphertext is malformed or decrypts to infinity
    """
    if len(ciphertext) != ELGAMAL_CIPHERTEXT_SIZE:
        raise CryptoError(f"ElGamal ciphertext must be {ELGAMAL_CIPHERTEXT_SIZE} bytes, got {len(ciphertext)}")
    try:
        c1 = point_from_bytes(ciphertext[:64])
        c2 = point_from_bytes(ciphertext[64:])
    except DecodeError as e:
        raise CryptoError("ElGamal ciphertext holds an invalid point") from e
    d = private_key.private_numbers().private_value
    shared = c1 * d
    message = c2 + _negate(shared)
    if message.is_point_at_infinity():
        raise CryptoError("ElGamal decryption produced the point at infinity")
    return message
