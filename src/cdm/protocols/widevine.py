"""
Widevine license exchange.

Challenge: a ``LicenseRequest`` carrying the PSSH payload and the client
identity (plain, or encrypted to a service certificate in privacy mode),
signed with RSA-PSS-SHA1 and wrapped in a ``SignedMessage``.

Response: the RSA-OAEP session key is recovered, the working keys are
derived from the contexts stored for the request, the HMAC over the
license is checked, and only then are the key containers decrypted.
"""

from __future__ import annotations

import logging
import os
import secrets
import time
from typing import List, Optional

from cryptography.hazmat.primitives.asymmetric import rsa

from ..codec.messages import (
    ContentIdentification,
    EncryptedClientIdentification,
    KeyType,
    License,
    LicenseRequest,
    LicenseType,
    MessageType,
    PsshContent,
    RequestType,
    SignedMessage,
)
from ..constants import WIDEVINE_PROTOCOL_VERSION, WIDEVINE_SYSTEM_ID
from ..crypto import asymmetric, kdf, symmetric
from ..device import DeviceCredential
from ..exceptions import (
    CdmError,
    ContextNotFound,
    CryptoError,
    DecodeError,
    IntegrityError,
    InvalidLicenseMessage,
    LicenseServerError,
    NoContentKeys,
)
from ..formats.pssh import ContentIdentifier
from ..key import ContentKey, KeyRole, normalize_kid
from ..session import DerivationContext, Session
from ..verify import ServiceCertificate, load_service_certificate
from .base import Protocol

LOGGER = logging.getLogger(__name__)

SESSION_KEY_SIZE = 16
NONCE_LIMIT = 2 ** 31

_ROLES = {
    KeyType.SIGNING: KeyRole.SIGNING,
    KeyType.CONTENT: KeyRole.CONTENT,
    KeyType.KEY_CONTROL: KeyRole.KEY_CONTROL,
    KeyType.OPERATOR_SESSION: KeyRole.OPERATOR_SESSION,
    KeyType.ENTITLEMENT: KeyRole.ENTITLEMENT,
    KeyType.OEM_CONTENT: KeyRole.OEM_CONTENT,
}


def make_request_id(device_type: str, counter: int) -> bytes:
    """Request id in the form each client type sends.

    Chrome sends 16 random bytes. Android sends upper-case hex of
    4 random bytes, 4 zero bytes and the little-endian request counter.
    """
    if device_type == "CHROME":
        return os.urandom(16)
    raw = os.urandom(4) + b"\x00" * 4 + counter.to_bytes(8, "little")
    return raw.hex().upper().encode("ascii")


def make_key_control_nonce() -> int:
    return secrets.randbelow(NONCE_LIMIT - 1) + 1


def encrypt_client_id(client_id: bytes, certificate: ServiceCertificate) -> EncryptedClientIdentification:
    """Hide the client identity from everyone but the certificate holder."""
    privacy_key = symmetric.generate_symmetric_key(128)
    privacy_iv = os.urandom(16)
    return EncryptedClientIdentification(
        provider_id=certificate.provider_id,
        service_certificate_serial_number=certificate.serial_number,
        encrypted_client_id=symmetric.aes_cbc_encrypt(client_id, privacy_key, privacy_iv),
        encrypted_client_id_iv=privacy_iv,
        encrypted_privacy_key=asymmetric.rsa_oaep_encrypt(privacy_key, certificate.public_key),
    )


class WidevineProtocol(Protocol):
    name = "widevine"
    system_id = WIDEVINE_SYSTEM_ID

    def __init__(self, license_type: str = "STREAMING", root_key: Optional[rsa.RSAPublicKey] = None):
        self.license_type = LicenseType[license_type.upper()]
        self.root_key = root_key

    # ---------- service certificates ----------

    def service_certificate_challenge(self) -> bytes:
        return SignedMessage(type=MessageType.SERVICE_CERTIFICATE_REQUEST).encode()

    def load_service_certificate(self, blob: Optional[bytes]) -> Optional[ServiceCertificate]:
        if blob is None:
            return None
        return load_service_certificate(blob, self.root_key)

    # ---------- challenge ----------

    def build_challenge(
        self,
        credential: DeviceCredential,
        content_id: ContentIdentifier,
        session: Session,
        privacy_mode: bool = False,
    ) -> bytes:
        if content_id.system_id != WIDEVINE_SYSTEM_ID:
            raise DecodeError(f"init data system id {content_id.system_id.hex()} is not Widevine", field="system_id")

        request_id = make_request_id(credential.device_type, session.next_request_number())
        request = LicenseRequest(
            content_id=ContentIdentification(
                widevine_pssh_data=PsshContent(
                    pssh_data=[content_id.init_data],
                    license_type=self.license_type,
                    request_id=request_id,
                )
            ),
            type=RequestType.NEW,
            request_time=int(time.time()),
            protocol_version=WIDEVINE_PROTOCOL_VERSION,
            key_control_nonce=make_key_control_nonce(),
        )
        if privacy_mode and session.service_certificate is not None:
            request.encrypted_client_id = encrypt_client_id(credential.client_id, session.service_certificate)
        else:
            if privacy_mode:
                LOGGER.warning("Privacy mode requested but no service certificate is set; sending client id in the clear")
            request.client_id = credential.client_id

        request_bytes = request.encode()
        session.register_context(
            request_id,
            DerivationContext(
                request_id=request_id,
                encryption_context=kdf.encryption_context(request_bytes),
                authentication_context=kdf.authentication_context(request_bytes),
            ),
        )
        signature = asymmetric.rsa_pss_sign(request_bytes, credential.signing_key)
        LOGGER.info("Built Widevine license challenge (request %s, %d bytes)", request_id.hex(), len(request_bytes))
        return SignedMessage(
            type=MessageType.LICENSE_REQUEST,
            msg=request_bytes,
            signature=signature,
        ).encode()

    # ---------- response ----------

    def process_response(
        self,
        credential: DeviceCredential,
        session: Session,
        response: bytes,
    ) -> List[ContentKey]:
        signed = SignedMessage.decode(response)
        if signed.type == MessageType.ERROR_RESPONSE:
            raise LicenseServerError("license service returned an error response")
        if signed.type != MessageType.LICENSE:
            raise InvalidLicenseMessage(f"expected a LICENSE message, got type {signed.type}")
        if not signed.msg or not signed.session_key or not signed.signature:
            raise InvalidLicenseMessage("license message is missing its body, session key or signature")

        license_ = License.decode(signed.msg)
        request_id = license_.id.request_id if license_.id is not None else None
        if not request_id:
            raise ContextNotFound("license does not name the request it answers")

        context = session.take_context(request_id)
        unsupported: List[bytes] = []
        try:
            keys = self._recover_keys(credential, signed, license_, context, unsupported)
        except CdmError:
            session.register_context(request_id, context)
            raise
        session.record_keys(request_id, keys, unsupported)
        LOGGER.info("Recovered %d keys for request %s", len(keys), request_id.hex())
        return keys

    def _recover_keys(
        self,
        credential: DeviceCredential,
        signed: SignedMessage,
        license_: License,
        context: DerivationContext,
        unsupported: List[bytes],
    ) -> List[ContentKey]:
        session_key = asymmetric.rsa_oaep_decrypt(signed.session_key, credential.encryption_key)
        if len(session_key) != SESSION_KEY_SIZE:
            raise CryptoError(f"session key is {len(session_key)} bytes, expected {SESSION_KEY_SIZE}")

        derived = kdf.derive_keys(session_key, context.encryption_context, context.authentication_context)
        signed_data = (signed.oemcrypto_core_message or b"") + signed.msg
        if not symmetric.hmac_sha256_verify(derived.mac_key_server, signed_data, signed.signature):
            raise IntegrityError("license signature does not match")

        keys = []
        for container in license_.key:
            if not container.iv or not container.key:
                LOGGER.warning("Skipping key container %s without key or IV", (container.id or b"").hex())
                unsupported.append(normalize_kid(container.id))
                continue
            key = symmetric.aes_cbc_decrypt(container.key, derived.enc_key, container.iv)
            try:
                key_type = KeyType(container.type)
                role, type_name = _ROLES[key_type], key_type.name
            except ValueError:
                role, type_name = KeyRole.UNKNOWN, str(container.type)
            keys.append(ContentKey(kid=normalize_kid(container.id), key=key, role=role, type_name=type_name))
        if not keys:
            raise NoContentKeys("license carried no decryptable keys")
        return keys
