"""
Error types raised by the license engine.

All errors derive from ``CdmError``, which is itself a ``ValueError`` so
callers that treat malformed input as a value error keep working.

- Malformed input: ``DecodeError``
- Signature and integrity failures: ``SignatureError``, ``IntegrityError``,
  ``CertificateChainError``
- Session and context lifecycle: ``TooManySessions``, ``InvalidSession``,
  ``ContextNotFound``, ``DuplicateContextError``
- Cryptographic failures: ``CryptoError``, ``PaddingError``
- Key recovery: ``UnsupportedKeyError``, ``NoContentKeys``
- Server replies: ``InvalidLicenseMessage``, ``LicenseServerError``
"""

from __future__ import annotations

from typing import List, Optional


class CdmError(ValueError):
    """Base class for every error raised by this package."""


class DecodeError(CdmError):
    """Truncated or structurally invalid binary/XML input."""

    def __init__(self, message: str, offset: Optional[int] = None, field: Optional[str] = None):
        self.offset = offset
        self.field = field
        where = []
        if field is not None:
            where.append(f"field {field}")
        if offset is not None:
            where.append(f"offset {offset}")
        if where:
            message = f"{message} ({', '.join(where)})"
        super().__init__(message)


class SignatureError(CdmError):
    """A signature did not verify."""


class CertificateChainError(SignatureError):
    """A certificate chain is malformed or untrusted."""


class IntegrityError(CdmError):
    """A response integrity tag did not match."""


class SessionError(CdmError):
    """Base class for session and context lifecycle errors."""


class TooManySessions(SessionError):
    """The open-session ceiling has been reached."""


class InvalidSession(SessionError):
    """The session id is unknown or already closed."""


class ContextNotFound(SessionError):
    """No pending derivation context for a request id."""


class DuplicateContextError(SessionError):
    """A derivation context is already pending for a request id."""


class CryptoError(CdmError):
    """Decryption produced an unexpected result."""


class PaddingError(CryptoError):
    """Block padding could not be removed."""


class UnsupportedKeyError(CdmError):
    """A key container uses a cipher or key type this engine cannot handle."""

    def __init__(self, message: str, key_ids: Optional[List[bytes]] = None):
        self.key_ids = list(key_ids or [])
        super().__init__(message)


class NoContentKeys(CdmError):
    """A license did not yield any usable key."""


class InvalidLicenseMessage(CdmError):
    """The response is well formed but is not a license."""


class LicenseServerError(CdmError):
    """The license service replied with a fault."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(message if code is None else f"{message} (code {code})")
