"""
RSA primitives for the Widevine license protocol.

Provides the key transport and signature operations the protocol uses.
This module wraps the cryptography library.

Supported algorithms:
- RSA-OAEP with SHA-1 (session key and privacy key transport)
- RSA-PSS with SHA-1 and a 20-byte salt (request and certificate signatures)
"""

from typing import Tuple, Optional
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric import rsa, padding
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.backends import default_backend

from ..exceptions import CryptoError, DecodeError

PSS_SALT_LENGTH = 20


def generate_rsa_keypair(key_size: int = 2048) -> Tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]:
    """Generate an RSA public/private key pair.

    Args:
        key_size: RSA key size in bits (2048, 3072, 4096). Default 2048.

    Returns:
        Tuple of (private_key, public_key)
    """
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
        backend=default_backend()
    )
    return private_key, private_key.public_key()


def rsa_oaep_encrypt(plaintext: bytes, public_key: rsa.RSAPublicKey,
                     hash_algorithm: Optional[str] = "sha1") -> bytes:
    """Encrypt using RSA with OAEP padding.

    Args:
        plaintext: Data to encrypt (must be smaller than key size - hash overhead)
        public_key: RSA public key for encryption
        hash_algorithm: Hash algorithm for OAEP and MGF1

    Returns:
        Encrypted ciphertext
    """
    hash_alg = _get_hash_algorithm(hash_algorithm)
    return public_key.encrypt(
        plaintext,
        padding.OAEP(mgf=padding.MGF1(algorithm=hash_alg), algorithm=hash_alg, label=None)
    )


def rsa_oaep_decrypt(ciphertext: bytes, private_key: rsa.RSAPrivateKey,
                     hash_algorithm: Optional[str] = "sha1") -> bytes:
    """Decrypt RSA-OAEP encrypted data.

    Raises:
        CryptoError: If the ciphertext does not decrypt under this key
    """
    hash_alg = _get_hash_algorithm(hash_algorithm)
    try:
        return private_key.decrypt(
            ciphertext,
            padding.OAEP(mgf=padding.MGF1(algorithm=hash_alg), algorithm=hash_alg, label=None)
        )
    except ValueError as e:
        raise CryptoError("RSA-OAEP decryption failed") from e


def rsa_pss_sign(message: bytes, private_key: rsa.RSAPrivateKey,
                 hash_algorithm: Optional[str] = "sha1") -> bytes:
    """Sign a message using RSA-PSS.

    The message is passed as-is; the library hashes it once.

    Args:
        message: Data to sign
        private_key: RSA private key for signing
        hash_algorithm: Hash algorithm for the digest and MGF1

    Returns:
        Digital signature bytes
    """
    hash_alg = _get_hash_algorithm(hash_algorithm)
    sig_padding = padding.PSS(mgf=padding.MGF1(hash_alg), salt_length=PSS_SALT_LENGTH)
    return private_key.sign(message, sig_padding, hash_alg)


def rsa_pss_verify(message: bytes, signature: bytes, public_key: rsa.RSAPublicKey,
                   hash_algorithm: Optional[str] = "sha1") -> bool:
    """Verify an RSA-PSS signature.

    Returns:
        True if signature is valid, False otherwise
    """
    hash_alg = _get_hash_algorithm(hash_algorithm)
    sig_padding = padding.PSS(mgf=padding.MGF1(hash_alg), salt_length=PSS_SALT_LENGTH)
    try:
        public_key.verify(signature, message, sig_padding, hash_alg)
        return True
    except InvalidSignature:
        return False


def rsa_public_key_from_numbers(modulus: bytes, exponent: int = 65537) -> rsa.RSAPublicKey:
    """Build a public key from a big-endian modulus."""
    return rsa.RSAPublicNumbers(exponent, int.from_bytes(modulus, "big")).public_key(default_backend())


def serialize_public_key(public_key: rsa.RSAPublicKey) -> bytes:
    """Serialize a public key as PKCS#1 DER (the form DRM certificates embed)."""
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.PKCS1
    )


def deserialize_public_key(key_bytes: bytes) -> rsa.RSAPublicKey:
    """Load a PKCS#1 or SubjectPublicKeyInfo public key (DER or PEM).

    Raises:
        DecodeError: If the bytes are not an RSA public key
    """
    try:
        if key_bytes.lstrip().startswith(b"-----"):
            key = serialization.load_pem_public_key(key_bytes, backend=default_backend())
        else:
            key = serialization.load_der_public_key(key_bytes, backend=default_backend())
    except (ValueError, TypeError) as e:
        raise DecodeError("invalid RSA public key") from e
    if not isinstance(key, rsa.RSAPublicKey):
        raise DecodeError("public key is not RSA")
    return key


def serialize_private_key(private_key: rsa.RSAPrivateKey, format: str = "pem") -> bytes:
    """Serialize a private key as unencrypted PKCS#8 PEM or DER."""
    enc_format = serialization.Encoding.PEM if format == "pem" else serialization.Encoding.DER
    return private_key.private_bytes(
        encoding=enc_format,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )


def deserialize_private_key(key_bytes: bytes,
                            password: Optional[bytes] = None) -> rsa.RSAPrivateKey:
    """Load an RSA private key from PEM or DER (PKCS#1 or PKCS#8).

    Raises:
        DecodeError: If the bytes are not an RSA private key
    """
    try:
        if key_bytes.lstrip().startswith(b"-----"):
            key = serialization.load_pem_private_key(key_bytes, password=password, backend=default_backend())
        else:
            key = serialization.load_der_private_key(key_bytes, password=password, backend=default_backend())
    except (ValueError, TypeError) as e:
        raise DecodeError("invalid RSA private key") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise DecodeError("private key is not RSA")
    return key


def _get_hash_algorithm(name: Optional[str] = "sha1"):
    if name == "sha1":
        return hashes.SHA1()
    elif name == "sha256":
        return hashes.SHA256()
    elif name == "sha384":
        return hashes.SHA384()
    raise ValueError(f"unsupported hash algorithm: {name}")
