"""
Symmetric primitives for license processing.

Wraps the cryptography library to offer the block-cipher, MAC and padding
operations both license protocols are built from.

Supported algorithms:
- AES-128-CBC with an explicit IV (optionally PKCS7 padded)
- AES-128-ECB single-pass block encryption
- AES-CMAC
- HMAC-SHA256
"""

from typing import Optional
import os
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import cmac, constant_time, hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.backends import default_backend

from ..exceptions import CryptoError, PaddingError

BLOCK_SIZE = 16


def generate_symmetric_key(key_size: int = 128) -> bytes:
    """Generate a random symmetric key.

    Args:
        key_size: Key size in bits (128, 192, or 256). Default 128.

    Returns:
        Random bytes of requested length
    """
    return os.urandom(key_size // 8)


def pkcs7_pad(data: bytes, block_size: int = BLOCK_SIZE) -> bytes:
    padder = padding.PKCS7(block_size * 8).padder()
    return padder.update(data) + padder.finalize()


def pkcs7_unpad(data: bytes, block_size: int = BLOCK_SIZE) -> bytes:
    """Remove PKCS7 padding.

    Raises:
        PaddingError: If the padding bytes are invalid
    """
    unpadder = padding.PKCS7(block_size * 8).unpadder()
    try:
        return unpadder.update(data) + unpadder.finalize()
    except ValueError as e:
        raise PaddingError("invalid PKCS7 padding") from e


def _cbc_cipher(key: bytes, iv: Optional[bytes]) -> Cipher:
    if iv is None or len(iv) != BLOCK_SIZE:
        raise CryptoError(f"CBC IV must be {BLOCK_SIZE} bytes, got {0 if iv is None else len(iv)}")
    try:
        return Cipher(algorithms.AES(key), modes.CBC(iv), backend=default_backend())
    except ValueError as e:
        raise CryptoError(f"invalid AES key: {e}") from e


def aes_cbc_encrypt(plaintext: bytes, key: bytes, iv: bytes, pad: bool = True) -> bytes:
    """Encrypt with AES-CBC using the given IV.

    Args:
        plaintext: Data to encrypt
        key: AES key
        iv: 16-byte initialization vector
        pad: Apply PKCS7 padding first. When False the plaintext must be
            block aligned.

    Returns:
        Ciphertext (without the IV)
    """
    if pad:
        plaintext = pkcs7_pad(plaintext)
    elif len(plaintext) % BLOCK_SIZE:
        raise CryptoError("plaintext is not block aligned")
    cipher = _cbc_cipher(key, iv)
    encryptor = cipher.encryptor()
    return encryptor.update(plaintext) + encryptor.finalize()


def aes_cbc_decrypt(ciphertext: bytes, key: bytes, iv: bytes, unpad: bool = True) -> bytes:
    """Decrypt AES-CBC data, removing PKCS7 padding by default.

    Raises:
        CryptoError: If the ciphertext is not block aligned or the IV or key has the wrong size
        PaddingError: If unpadding fails
    """
    if not ciphertext or len(ciphertext) % BLOCK_SIZE:
        raise CryptoError(f"ciphertext length {len(ciphertext)} is not a positive multiple of {BLOCK_SIZE}")
    cipher = _cbc_cipher(key, iv)
    decryptor = cipher.decryptor()
    plaintext = decryptor.update(ciphertext) + decryptor.finalize()
    return pkcs7_unpad(plaintext) if unpad else plaintext


def aes_ecb_encrypt(data: bytes, key: bytes) -> bytes:
    """Encrypt block-aligned data with AES-ECB (no padding)."""
    if len(data) % BLOCK_SIZE:
        raise CryptoError("ECB input is not block aligned")
    cipher = Cipher(algorithms.AES(key), modes.ECB(), backend=default_backend())
    encryptor = cipher.encryptor()
    return encryptor.update(data) + encryptor.finalize()


def aes_cmac(key: bytes, data: bytes) -> bytes:
    """Compute AES-CMAC of ``data``."""
    c = cmac.CMAC(algorithms.AES(key), backend=default_backend())
    c.update(data)
    return c.finalize()


def hmac_sha256(key: bytes, data: bytes) -> bytes:
    h = hmac.HMAC(key, hashes.SHA256(), backend=default_backend())
    h.update(data)
    return h.finalize()


def hmac_sha256_verify(key: bytes, data: bytes, tag: Optional[bytes]) -> bool:
    """Check an HMAC-SHA256 tag in constant time."""
    if not tag:
        return False
    h = hmac.HMAC(key, hashes.SHA256(), backend=default_backend())
    h.update(data)
    try:
        h.verify(tag)
        return True
    except InvalidSignature:
        return False


def bytes_equal(a: bytes, b: bytes) -> bool:
    return constant_time.bytes_eq(a, b)


def xor_bytes(a: bytes, b: bytes) -> bytes:
    if len(a) != len(b):
        raise CryptoError("xor operands differ in length")
    return bytes(x ^ y for x, y in zip(a, b))
