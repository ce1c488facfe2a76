"""
PlayReady license exchange.

Challenge:
- a random curve point is the session XmlKey; its x coordinate holds the
  AES key and IV that encrypt the client data (the device certificate chain)
- the point is ElGamal-encrypted to the license-service key
- the ``<LA>`` element is digested with SHA-256 and the ``<SignedInfo>``
  referencing it is signed with the device's ECDSA signing key

Response:
- every XMR license must be bound to this device's encryption key
- each content key is ElGamal-decrypted (or unwrapped through the
  scalable AES-ECB chain), then the license CMAC is checked with the
  recovered integrity key before the key is accepted
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
import time
import uuid
from typing import List, Tuple

from ..constants import MAGIC_CONSTANT_ZERO, PLAYREADY_CLIENT_VERSION, PLAYREADY_SYSTEM_ID, WMRM_SERVER_KEY
from ..crypto import ecc, symmetric
from ..device import DeviceCredential
from ..exceptions import (
    CdmError,
    DecodeError,
    IntegrityError,
    InvalidLicenseMessage,
    NoContentKeys,
    UnsupportedKeyError,
)
from ..formats.pssh import ContentIdentifier, wrm_headers
from ..formats.xmr import CipherType, KeyType, XmrLicense
from ..key import ContentKey, KeyRole, normalize_kid
from ..session import DerivationContext, Session
from . import soap
from .base import Protocol

LOGGER = logging.getLogger(__name__)

NONCE_SIZE = 16
ROOT_LICENSE_SIZE = 144

_ELGAMAL_CIPHERS = (CipherType.ECC_256, CipherType.ECC_256_WITH_KZ)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class PlayReadyProtocol(Protocol):
    name = "playready"
    system_id = PLAYREADY_SYSTEM_ID

    def __init__(self, client_version: str = PLAYREADY_CLIENT_VERSION, server_key: bytes = WMRM_SERVER_KEY):
        self.client_version = client_version
        self.server_key = server_key

    # ---------- challenge ----------

    def _client_data(self, credential: DeviceCredential) -> Tuple[str, str]:
        """Returns the ElGamal-wrapped XmlKey and the encrypted client data, both base64."""
        xml_key = ecc.random_point()
        x = ecc.point_x_bytes(xml_key)
        iv, key = x[:16], x[16:]
        data = soap.build_client_data(_b64(credential.certificate_chain)).encode("utf-8")
        encrypted = symmetric.aes_cbc_encrypt(data, key, iv)
        return _b64(ecc.elgamal_encrypt(xml_key, self.server_key)), _b64(iv + encrypted)

    def build_challenge(
        self,
        credential: DeviceCredential,
        content_id: ContentIdentifier,
        session: Session,
        privacy_mode: bool = False,
    ) -> bytes:
        if content_id.system_id != PLAYREADY_SYSTEM_ID:
            raise DecodeError(f"init data system id {content_id.system_id.hex()} is not PlayReady", field="system_id")
        if not credential.certificate_chain:
            raise CdmError("PlayReady credential has no certificate chain")
        headers = wrm_headers(content_id.init_data)
        if not headers:
            raise DecodeError("init data carries no WRM header", field="wrm_header")
        if privacy_mode:
            LOGGER.debug("Privacy mode has no effect on PlayReady challenges")

        nonce = os.urandom(NONCE_SIZE)
        key_data, cipher_data = self._client_data(credential)
        la = soap.build_la(
            wrm_header=headers[0].xml,
            client_version=self.client_version,
            nonce_b64=_b64(nonce),
            client_time=int(time.time()),
            key_data_b64=key_data,
            cipher_data_b64=cipher_data,
        )
        la_bytes = la.encode("utf-8")
        signed_info = soap.build_signed_info(_b64(hashlib.sha256(la_bytes).digest()))
        signature = ecc.ecdsa_sign(signed_info.encode("utf-8"), credential.signing_key)

        session.register_context(
            nonce,
            DerivationContext(
                request_id=nonce,
                encryption_context=credential.encryption_public_key,
                authentication_context=la_bytes,
            ),
        )
        envelope = soap.build_challenge_envelope(
            la, signed_info, _b64(signature), _b64(credential.signing_public_key)
        )
        LOGGER.info("Built PlayReady license challenge (nonce %s)", nonce.hex())
        return envelope.encode("utf-8")

    # ---------- response ----------

    def process_response(
        self,
        credential: DeviceCredential,
        session: Session,
        response: bytes,
    ) -> List[ContentKey]:
        parsed = soap.parse_license_response(response)
        if not parsed.licenses:
            raise InvalidLicenseMessage("license response carries no licenses")
        licenses = [XmrLicense.from_bytes(blob) for blob in parsed.licenses]

        if parsed.nonce is not None:
            request_id = parsed.nonce
            context = session.take_context(request_id)
        else:
            context = session.take_only_context()
            request_id = context.request_id

        unsupported: List[bytes] = []
        try:
            keys = self._recover_keys(credential, licenses, context, unsupported)
        except CdmError:
            session.register_context(request_id, context)
            raise
        session.record_keys(request_id, keys, unsupported)
        LOGGER.info("Recovered %d keys from %d licenses", len(keys), len(licenses))
        return keys

    def _recover_keys(
        self,
        credential: DeviceCredential,
        licenses: List[XmrLicense],
        context: DerivationContext,
        unsupported: List[bytes],
    ) -> List[ContentKey]:
        keys = []
        for license_ in licenses:
            ecc_key = license_.ecc_key
            if ecc_key is None or not symmetric.bytes_equal(ecc_key.key, context.encryption_context):
                raise IntegrityError("license is not bound to this device's encryption key")

            for content_key in license_.content_keys:
                kid = normalize_kid(uuid.UUID(bytes_le=content_key.key_id).bytes)
                try:
                    cipher = CipherType(content_key.cipher_type)
                except ValueError:
                    cipher = None
                if cipher in _ELGAMAL_CIPHERS:
                    ci, ck = self._decrypt_elgamal(content_key.encrypted_key, credential)
                elif cipher == CipherType.ECC_256_VIA_SYMMETRIC:
                    ci, ck = self._decrypt_scalable(content_key.encrypted_key, license_, credential)
                else:
                    LOGGER.warning("Skipping key %s with unsupported cipher type %d",
                                   kid.hex(), content_key.cipher_type)
                    unsupported.append(kid)
                    continue

                signature = license_.signature
                if signature is None:
                    raise InvalidLicenseMessage("license has no signature object")
                if not symmetric.bytes_equal(symmetric.aes_cmac(ci, license_.signed_bytes()), signature.signature_data):
                    raise IntegrityError(f"license signature does not match for key {kid.hex()}")

                try:
                    type_name = KeyType(content_key.key_type).name
                except ValueError:
                    type_name = str(content_key.key_type)
                keys.append(ContentKey(kid=kid, key=ck, role=KeyRole.CONTENT, type_name=type_name))

        if not keys:
            if unsupported:
                raise UnsupportedKeyError(f"all {len(unsupported)} keys use unsupported cipher types",
                                          key_ids=unsupported)
            raise NoContentKeys("licenses carried no content keys")
        return keys

    @staticmethod
    def _decrypt_elgamal(encrypted_key: bytes, credential: DeviceCredential) -> Tuple[bytes, bytes]:
        point = ecc.elgamal_decrypt(encrypted_key[:ecc.ELGAMAL_CIPHERTEXT_SIZE], credential.encryption_key)
        x = ecc.point_x_bytes(point)
        return x[:16], x[16:]

    def _decrypt_scalable(
        self,
        encrypted_key: bytes,
        license_: XmrLicense,
        credential: DeviceCredential,
    ) -> Tuple[bytes, bytes]:
        if len(encrypted_key) < ROOT_LICENSE_SIZE + 32:
            raise InvalidLicenseMessage(f"scalable key blob is {len(encrypted_key)} bytes")
        aux_keys = license_.auxiliary_keys
        if aux_keys is None or not aux_keys.keys:
            raise InvalidLicenseMessage("scalable license has no auxiliary keys")

        root = encrypted_key[:ROOT_LICENSE_SIZE]
        leaf = encrypted_key[ROOT_LICENSE_SIZE:ROOT_LICENSE_SIZE + 32]
        _, ck = self._decrypt_elgamal(root[:ecc.ELGAMAL_CIPHERTEXT_SIZE], credential)

        ck_prime = symmetric.aes_ecb_encrypt(symmetric.xor_bytes(ck, MAGIC_CONSTANT_ZERO), ck)
        uplink_key = symmetric.aes_ecb_encrypt(aux_keys.keys[0].key, ck_prime)
        secondary_key = symmetric.aes_ecb_encrypt(root[ecc.ELGAMAL_CIPHERTEXT_SIZE:], ck)
        leaf = symmetric.aes_ecb_encrypt(symmetric.aes_ecb_encrypt(leaf, uplink_key), secondary_key)
        return leaf[:16], leaf[16:]
