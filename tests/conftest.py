"""Shared fixtures: synthetic devices, certificate chains and license servers."""

import base64
import hashlib
import os
import re
import struct
import uuid
import xml.etree.ElementTree as ET

import pytest
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from cdm.codec.messages import (
    DrmCertificate,
    KeyContainer,
    License,
    LicenseIdentification,
    LicenseRequest,
    MessageType,
    SignedDrmCertificate,
    SignedMessage,
    WidevinePsshData,
)
from cdm.constants import MAGIC_CONSTANT_ZERO, PLAYREADY_SYSTEM_ID, WIDEVINE_SYSTEM_ID
from cdm.crypto import asymmetric, ecc, kdf, symmetric
from cdm.device import DeviceCredential
from cdm.formats.bcert import AttributeTag, CertType, KeyUsage
from cdm.formats.pssh import PSSH, build_playready_header
from cdm.formats.xmr import CipherType, ObjectType
from cdm.formats.xmr import KeyType as XmrKeyType

KID_1 = bytes.fromhex("0123456789abcdef0123456789abcdef")
KID_2 = bytes.fromhex("fedcba9876543210fedcba9876543210")
CONTENT_KEY_1 = bytes.fromhex("00112233445566778899aabbccddeeff")
CONTENT_KEY_2 = bytes.fromhex("ffeeddccbbaa99887766554433221100")

WRM_HEADER = (
    '<WRMHEADER xmlns="http://schemas.microsoft.com/DRM/2007/03/PlayReadyHeader" version="4.0.0.0">'
    "<DATA><PROTECTINFO><KEYLEN>16</KEYLEN><ALGID>AESCTR</ALGID></PROTECTINFO>"
    "<KID>{kid}</KID>"
    "<LA_URL>https://license.example.com/rightsmanager.asmx</LA_URL>"
    "</DATA></WRMHEADER>"
)


def ecb_decrypt(data, key):
    decryptor = Cipher(algorithms.AES(key), modes.ECB(), backend=default_backend()).decryptor()
    return decryptor.update(data) + decryptor.finalize()


def kid_to_guid(kid):
    """Big-endian key id to the little-endian GUID bytes PlayReady carries."""
    return uuid.UUID(bytes=kid).bytes_le


# ---------- Widevine ----------

def make_service_certificate(root_private_key, service_public_key, provider_id="license.example.com",
                             serial=b"\x01" * 16):
    certificate = DrmCertificate(
        type=3,
        serial_number=serial,
        creation_time_seconds=1700000000,
        public_key=asymmetric.serialize_public_key(service_public_key),
        provider_id=provider_id,
    ).encode()
    return SignedDrmCertificate(
        drm_certificate=certificate,
        signature=asymmetric.rsa_pss_sign(certificate, root_private_key),
    ).encode()


class WidevineLicenseServer:
    """Answers license requests the way a Widevine license service would."""

    def __init__(self, device_public_key, service_private_key=None):
        self.device_public_key = device_public_key
        self.service_private_key = service_private_key
        self.last_request = None

    def read_request(self, challenge):
        signed = SignedMessage.decode(challenge)
        assert signed.type == MessageType.LICENSE_REQUEST
        assert asymmetric.rsa_pss_verify(signed.msg, signed.signature, self.device_public_key)
        request = LicenseRequest.decode(signed.msg)
        self.last_request = request
        return signed.msg, request

    def decrypt_client_id(self, request):
        encrypted = request.encrypted_client_id
        privacy_key = asymmetric.rsa_oaep_decrypt(encrypted.encrypted_privacy_key, self.service_private_key)
        return symmetric.aes_cbc_decrypt(encrypted.encrypted_client_id, privacy_key, encrypted.encrypted_client_id_iv)

    def respond(self, challenge, keys, request_id=None, tamper=False, core_message=None, session_key_size=16, iv_size=16):
        """Build a signed license for ``keys`` (a list of ``(kid, key, type)``)."""
        request_bytes, request = self.read_request(challenge)
        if request_id is None:
            request_id = request.content_id.widevine_pssh_data.request_id

        session_key = os.urandom(session_key_size)
        derived = kdf.derive_keys(
            session_key,
            kdf.encryption_context(request_bytes),
            kdf.authentication_context(request_bytes),
        )
        containers = []
        for kid, key, key_type in keys:
            iv = os.urandom(16)
            containers.append(KeyContainer(
                id=kid,
                iv=iv[:iv_size],
                key=symmetric.aes_cbc_encrypt(key, derived.enc_key, iv),
                type=key_type,
            ))
        msg = License(
            id=LicenseIdentification(request_id=request_id, session_id=b"server-session"),
            key=containers,
            license_start_time=1700000000,
        ).encode()
        signature = symmetric.hmac_sha256(derived.mac_key_server, (core_message or b"") + msg)
        if tamper:
            signature = bytes([signature[0] ^ 0xFF]) + signature[1:]
        return SignedMessage(
            type=MessageType.LICENSE,
            msg=msg,
            signature=signature,
            session_key=asymmetric.rsa_oaep_encrypt(session_key, self.device_public_key),
            oemcrypto_core_message=core_message,
        ).encode()


@pytest.fixture(scope="session")
def rsa_device_key():
    private_key, _ = asymmetric.generate_rsa_keypair(2048)
    return private_key


@pytest.fixture(scope="session")
def rsa_root_key():
    private_key, _ = asymmetric.generate_rsa_keypair(2048)
    return private_key


@pytest.fixture(scope="session")
def rsa_service_key():
    private_key, _ = asymmetric.generate_rsa_keypair(2048)
    return private_key


@pytest.fixture
def widevine_credential(rsa_device_key):
    return DeviceCredential.widevine(rsa_device_key, client_id=b"synthetic client identification")


@pytest.fixture
def widevine_pssh():
    payload = WidevinePsshData(key_ids=[KID_1, KID_2], provider="example", content_id=b"movie-1").encode()
    return PSSH(system_id=WIDEVINE_SYSTEM_ID, data=payload)


@pytest.fixture
def widevine_server(rsa_device_key, rsa_service_key):
    return WidevineLicenseServer(rsa_device_key.public_key(), rsa_service_key)


@pytest.fixture
def service_certificate(rsa_root_key, rsa_service_key):
    return make_service_certificate(rsa_root_key, rsa_service_key.public_key())


# ---------- PlayReady certificates ----------

def bcert_attribute(tag, body, flags=1):
    return struct.pack(">HHI", flags, tag, len(body) + 8) + body


def bcert_key(key, usages, key_type=1):
    return struct.pack(">HHI", key_type, 512, 0) + key + struct.pack(">I", len(usages)) + b"".join(
        struct.pack(">I", u) for u in usages
    )


def build_bcert(cert_type, security_level, keys, signer_private_key, manufacturer=None):
    """One certificate signed by ``signer_private_key``; ``keys`` is ``[(xy, usages)]``."""
    basic = (
        os.urandom(16)
        + struct.pack(">III", security_level, 0, cert_type)
        + hashlib.sha256(keys[0][0]).digest()
        + struct.pack(">I", 0xFFFFFFFF)
        + os.urandom(16)
    )
    attributes = bcert_attribute(AttributeTag.BASIC, basic)
    body = struct.pack(">I", len(keys)) + b"".join(bcert_key(k, u) for k, u in keys)
    attributes += bcert_attribute(AttributeTag.KEY, body)
    if manufacturer is not None:
        strings = b""
        for value in manufacturer:
            raw = value.encode()
            strings += struct.pack(">I", len(raw)) + raw + b"\x00" * ((4 - len(raw) % 4) % 4)
        attributes += bcert_attribute(AttributeTag.MANUFACTURER, struct.pack(">I", 0) + strings)

    certificate_length = 16 + len(attributes)
    signature_length = 8 + 4 + 64 + 4 + 64
    header = b"CERT" + struct.pack(">III", 1, certificate_length + signature_length, certificate_length)
    signed = header + attributes
    signature = ecc.ecdsa_sign(signed, signer_private_key)
    sig_body = struct.pack(">HH", 1, len(signature)) + signature + struct.pack(">I", 512)
    sig_body += ecc.public_key_bytes(signer_private_key)
    return signed + bcert_attribute(AttributeTag.SIGNATURE, sig_body)


def build_chain(certificates):
    body = b"".join(certificates)
    return b"CHAI" + struct.pack(">IIII", 1, 20 + len(body), 0, len(certificates)) + body


class PlayReadyDevice:
    """A synthetic device: leaf certificate under one issuer under a test root."""

    def __init__(self):
        self.root_key = ecc.generate_private_key()
        self.issuer_key = ecc.generate_private_key()
        self.signing_key = ecc.generate_private_key()
        self.encryption_key = ecc.generate_private_key()
        self.leaf = build_bcert(
            CertType.DEVICE,
            2000,
            [
                (ecc.public_key_bytes(self.signing_key), [KeyUsage.SIGN]),
                (ecc.public_key_bytes(self.encryption_key), [KeyUsage.ENCRYPT_KEY]),
            ],
            self.issuer_key,
            manufacturer=("Example Corp", "Player", "1"),
        )
        self.issuer = build_bcert(
            CertType.ISSUER,
            3000,
            [(ecc.public_key_bytes(self.issuer_key), [KeyUsage.ISSUER_DEVICE])],
            self.root_key,
        )
        self.chain = build_chain([self.leaf, self.issuer])

    @property
    def root_public_key(self):
        return ecc.public_key_bytes(self.root_key)

    def credential(self):
        return DeviceCredential.playready(self.signing_key, self.encryption_key, self.chain)


# ---------- PlayReady licenses ----------

def xmr_object(object_type, body, flags=1):
    return struct.pack(">HHI", flags, object_type, len(body) + 8) + body


def xmr_container(object_type, children):
    return xmr_object(object_type, b"".join(children), flags=2)


def build_xmr(kid, encrypted_key, cipher_type, device_key, integrity_key, aux_keys=None, key_type=XmrKeyType.AES_128_CTR):
    """An XMR license signed with ``integrity_key``; the signature object is last."""
    content_key = kid_to_guid(kid) + struct.pack(">HHH", key_type, cipher_type, len(encrypted_key)) + encrypted_key
    materials = [
        xmr_object(ObjectType.CONTENT_KEY, content_key),
        xmr_object(ObjectType.ECC_DEVICE_KEY, struct.pack(">HH", 1, len(device_key)) + device_key),
    ]
    if aux_keys:
        body = struct.pack(">H", len(aux_keys)) + b"".join(struct.pack(">I", i) + k for i, k in enumerate(aux_keys))
        materials.append(xmr_object(ObjectType.AUX_KEY, body))
    policy = xmr_container(ObjectType.GLOBAL_POLICY_CONTAINER, [
        xmr_object(ObjectType.SECURITY_LEVEL, struct.pack(">H", 150)),
        xmr_object(ObjectType.ISSUEDATE, struct.pack(">I", 1700000000)),
    ])
    placeholder = xmr_object(ObjectType.SIGNATURE, struct.pack(">HH", 1, 16) + bytes(16))
    outer = xmr_container(ObjectType.OUTER_CONTAINER, [
        policy,
        xmr_container(ObjectType.KEY_MATERIAL_CONTAINER, materials),
        placeholder,
    ])
    unsigned = b"XMR\x00" + struct.pack(">I", 3) + os.urandom(16) + outer
    return unsigned[:-16] + symmetric.aes_cmac(integrity_key, unsigned[:-28])


def random_key_point():
    """A curve point and the ``(integrity key, content key)`` its x coordinate holds."""
    point = ecc.random_point()
    x = ecc.point_x_bytes(point)
    return point, x[:16], x[16:]


def soap_license_response(licenses, nonce=None):
    body = "".join(f"<License>{base64.b64encode(lic).decode()}</License>" for lic in licenses)
    acquisition = ""
    if nonce is not None:
        acquisition = f"<Acquisition><LicenseNonce>{base64.b64encode(nonce).decode()}</LicenseNonce></Acquisition>"
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/"><soap:Body>'
        '<AcquireLicenseResponse xmlns="http://schemas.microsoft.com/DRM/2007/03/protocols">'
        "<AcquireLicenseResult><Response xmlns=\"http://schemas.microsoft.com/DRM/2007/03/protocols/messages\">"
        '<LicenseResponse xmlns="http://schemas.microsoft.com/DRM/2007/03/protocols">'
        f"<Version>1</Version><Licenses>{body}</Licenses>{acquisition}"
        "</LicenseResponse></Response></AcquireLicenseResult></AcquireLicenseResponse>"
        "</soap:Body></soap:Envelope>"
    ).encode()


def soap_fault(message, code="0x8004c600"):
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/"><soap:Body><soap:Fault>'
        "<faultcode>soap:Server</faultcode>"
        f"<faultstring>{message}</faultstring>"
        f"<detail><Exception><StatusCode>{code}</StatusCode></Exception></detail>"
        "</soap:Fault></soap:Body></soap:Envelope>"
    ).encode()


class PlayReadyLicenseServer:
    """Reads challenges with its own service key and issues XMR licenses."""

    def __init__(self):
        self.private_key = ecc.generate_private_key()

    @property
    def public_key(self):
        return ecc.public_key_bytes(self.private_key)

    def read_challenge(self, challenge):
        """Check the challenge signature and digest; return ``(nonce, certificate chain)``."""
        text = challenge.decode("utf-8")
        la = re.search(r"<LA .*?</LA>", text).group(0)
        signed_info = re.search(r"<SignedInfo .*?</SignedInfo>", text).group(0)

        root = ET.fromstring(challenge)
        values = {}
        cipher_values = []
        for el in root.iter():
            name = el.tag.rsplit("}", 1)[-1]
            if name == "CipherValue":
                cipher_values.append(el.text)
            elif name in ("DigestValue", "SignatureValue", "PublicKey", "LicenseNonce"):
                values[name] = el.text

        assert base64.b64decode(values["DigestValue"]) == hashlib.sha256(la.encode()).digest()
        assert ecc.ecdsa_verify(
            signed_info.encode(),
            base64.b64decode(values["SignatureValue"]),
            base64.b64decode(values["PublicKey"]),
        )

        point = ecc.elgamal_decrypt(base64.b64decode(cipher_values[0]), self.private_key)
        x = ecc.point_x_bytes(point)
        iv, key = x[:16], x[16:]
        blob = base64.b64decode(cipher_values[1])
        assert blob[:16] == iv
        data = symmetric.aes_cbc_decrypt(blob[16:], key, iv).decode()
        chain = base64.b64decode(re.search(r"<CertificateChain>(.*?)</CertificateChain>", data).group(1))
        return base64.b64decode(values["LicenseNonce"]), chain

    def simple_license(self, kid, device_key, cipher_type=CipherType.ECC_256):
        """License whose key is carried directly by an ElGamal ciphertext."""
        point, ci, ck = random_key_point()
        encrypted = ecc.elgamal_encrypt(point, device_key)
        return build_xmr(kid, encrypted, cipher_type, device_key, ci), ck

    def scalable_license(self, kid, device_key, leaf_key):
        """License using the multi-layer path; ``leaf_key`` is the content key delivered."""
        point, _, root_ck = random_key_point()
        aux_key = os.urandom(16)
        root_tail = os.urandom(16)
        leaf_ci = os.urandom(16)

        ck_prime = symmetric.aes_ecb_encrypt(symmetric.xor_bytes(root_ck, MAGIC_CONSTANT_ZERO), root_ck)
        uplink_key = symmetric.aes_ecb_encrypt(aux_key, ck_prime)
        secondary_key = symmetric.aes_ecb_encrypt(root_tail, root_ck)
        leaf_in = ecb_decrypt(ecb_decrypt(leaf_ci + leaf_key, secondary_key), uplink_key)

        encrypted = ecc.elgamal_encrypt(point, device_key) + root_tail + leaf_in
        return build_xmr(kid, encrypted, CipherType.ECC_256_VIA_SYMMETRIC, device_key, leaf_ci, aux_keys=[aux_key])


@pytest.fixture(scope="session")
def playready_device():
    return PlayReadyDevice()


@pytest.fixture
def playready_server():
    return PlayReadyLicenseServer()


@pytest.fixture
def playready_pssh():
    header = WRM_HEADER.format(kid=base64.b64encode(kid_to_guid(KID_1)).decode())
    return PSSH(system_id=PLAYREADY_SYSTEM_ID, data=build_playready_header(header))

