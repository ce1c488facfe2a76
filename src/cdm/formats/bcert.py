"""
PlayReady binary certificate (BCert) chain parsing.

Layout, big-endian throughout:
- chain: ``"CHAI"``, version, total length, flags, certificate count
- certificate: ``"CERT"``, version, total length, signed length, attributes
- attribute: flags u16, tag u16, length u32 (length includes the 8-byte header)

Only the attributes needed for verification and key lookup are decoded;
everything else is kept as raw bytes of its declared length.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional, Union

from ..exceptions import DecodeError
from .reader import Reader

LOGGER = logging.getLogger(__name__)

CHAIN_MAGIC = b"CHAI"
CERT_MAGIC = b"CERT"


class AttributeTag(IntEnum):
    BASIC = 0x0001
    DOMAIN = 0x0002
    PC = 0x0003
    DEVICE = 0x0004
    FEATURE = 0x0005
    KEY = 0x0006
    MANUFACTURER = 0x0007
    SIGNATURE = 0x0008
    SILVERLIGHT = 0x0009
    METERING = 0x000A
    EXT_DATA_SIGN_KEY = 0x000B
    EXT_DATA_CONTAINER = 0x000C
    EXT_DATA_SIGNATURE = 0x000D
    EXT_DATA_HWID = 0x000E
    SERVER = 0x000F
    SECURITY_VERSION = 0x0010
    SECURITY_VERSION_2 = 0x0011


class CertType(IntEnum):
    UNKNOWN = 0
    PC = 1
    DEVICE = 2
    DOMAIN = 3
    ISSUER = 4
    CRL_SIGNER = 5
    SERVICE = 6
    SILVERLIGHT = 7
    APPLICATION = 8
    METERING = 9
    KEY_FILE_SIGNER = 10
    SERVER = 11
    LICENSE_SIGNER = 12
    SECURE_TIME_SERVER = 13
    RPROV_MODEL_AUTH = 14


class KeyUsage(IntEnum):
    UNKNOWN = 0
    SIGN = 1
    ENCRYPT_KEY = 2
    SIGN_CRL = 3
    ISSUER_ALL = 4
    ISSUER_INDIV = 5
    ISSUER_DEVICE = 6
    ISSUER_LINK = 7
    ISSUER_DOMAIN = 8
    ISSUER_SILVERLIGHT = 9
    ISSUER_APPLICATION = 10
    ISSUER_CRL = 11
    ISSUER_METERING = 12
    ISSUER_SIGN_KEYFILE = 13
    SIGN_KEYFILE = 14
    ISSUER_SERVER = 15
    ENCRYPT_KEY_SAMPLE_PROTECTION_RC4 = 16
    RESERVED_2 = 17
    ISSUER_SIGN_LICENSE = 18
    SIGN_LICENSE = 19
    SIGN_RESPONSE = 20
    PRND_ENCRYPT_KEY_DEPRECATED = 21
    ENCRYPT_KEY_SAMPLE_PROTECTION_AES128CTR = 22
    ISSUER_SECURE_TIME_SERVER = 23
    ISSUER_RPROV_MODEL_AUTH = 24


@dataclass
class BasicInfo:
    cert_id: bytes
    security_level: int
    flags: int
    cert_type: int
    public_key_digest: bytes
    expiration_date: int
    client_id: bytes


@dataclass
class CertKey:
    key_type: int
    key: bytes
    flags: int
    usages: List[int]


@dataclass
class KeyInfo:
    keys: List[CertKey]


@dataclass
class ManufacturerInfo:
    flags: int
    name: str
    model_name: str
    model_number: str


@dataclass
class SignatureInfo:
    signature_type: int
    signature: bytes
    signing_key: bytes


AttributeData = Union[BasicInfo, KeyInfo, ManufacturerInfo, SignatureInfo, bytes]


@dataclass
class Attribute:
    flags: int
    tag: int
    data: AttributeData


@dataclass
class BCert:
    version: int
    total_length: int
    certificate_length: int
    attributes: List[Attribute]
    raw: bytes = field(repr=False)

    def _find(self, kind):
        for attr in self.attributes:
            if isinstance(attr.data, kind):
                return attr.data
        return None

    @property
    def basic_info(self) -> Optional[BasicInfo]:
        return self._find(BasicInfo)

    @property
    def key_info(self) -> Optional[KeyInfo]:
        return self._find(KeyInfo)

    @property
    def signature_info(self) -> Optional[SignatureInfo]:
        return self._find(SignatureInfo)

    @property
    def manufacturer_info(self) -> Optional[ManufacturerInfo]:
        return self._find(ManufacturerInfo)

    def key_by_usage(self, usage: int) -> Optional[bytes]:
        info = self.key_info
        if info is None:
            return None
        for key in info.keys:
            if usage in key.usages:
                return key.key
        return None

    @property
    def signing_key(self) -> Optional[bytes]:
        return self.key_by_usage(KeyUsage.SIGN)

    @property
    def encryption_key(self) -> Optional[bytes]:
        return self.key_by_usage(KeyUsage.ENCRYPT_KEY)

    def signed_bytes(self) -> bytes:
        """Bytes covered by the certificate's signature."""
        return self.raw[:self.certificate_length]


@dataclass
class BCertChain:
    version: int
    flags: int
    certificates: List[BCert]

    @classmethod
    def from_bytes(cls, data: bytes) -> "BCertChain":
        """Parse a chain.

        Raises:
            DecodeError: On bad magic, truncated records or malformed attributes
        """
        r = Reader(data)
        r.expect(CHAIN_MAGIC, "chain_magic")
        version = r.u32be("chain_version")
        total_length = r.u32be("chain_total_length")
        if total_length > len(data):
            raise DecodeError(f"chain length {total_length} exceeds {len(data)} bytes", offset=8)
        flags = r.u32be("chain_flags")
        count = r.u32be("certificate_count")
        certificates = [_parse_cert(r) for _ in range(count)]
        LOGGER.debug("Parsed BCert chain v%d with %d certificates", version, len(certificates))
        return cls(version=version, flags=flags, certificates=certificates)

    def to_bytes(self) -> bytes:
        body = b"".join(cert.raw for cert in self.certificates)
        header = CHAIN_MAGIC + struct.pack(">IIII", self.version, 20 + len(body), self.flags, len(self.certificates))
        return header + body

    @property
    def leaf(self) -> Optional[BCert]:
        return self.certificates[0] if self.certificates else None

    @property
    def root(self) -> Optional[BCert]:
        return self.certificates[-1] if self.certificates else None

    def __len__(self) -> int:
        return len(self.certificates)


def _parse_cert(r: Reader) -> BCert:
    start = r.offset
    r.expect(CERT_MAGIC, "cert_magic")
    version = r.u32be("cert_version")
    total_length = r.u32be("cert_total_length")
    certificate_length = r.u32be("cert_signed_length")
    if total_length < 16 or certificate_length > total_length:
        raise DecodeError(f"bad certificate lengths {total_length}/{certificate_length}", offset=start)
    body = Reader(r.data, r.offset, start + total_length) if start + total_length <= r.end else None
    if body is None:
        raise DecodeError(f"certificate of {total_length} bytes truncated", offset=start)
    attributes = []
    while not body.at_end():
        attributes.append(_parse_attribute(body))
    r.offset = start + total_length
    return BCert(
        version=version,
        total_length=total_length,
        certificate_length=certificate_length,
        attributes=attributes,
        raw=r.data[start:start + total_length],
    )


def _parse_attribute(r: Reader) -> Attribute:
    start = r.offset
    flags = r.u16be("attr_flags")
    tag = r.u16be("attr_tag")
    length = r.u32be("attr_length")
    if length < 8:
        raise DecodeError(f"attribute length {length} shorter than its header", offset=start)
    body = r.sub(length - 8, f"attribute 0x{tag:04x}")
    if tag == AttributeTag.BASIC:
        data = _parse_basic(body)
    elif tag == AttributeTag.KEY:
        data = _parse_key(body)
    elif tag == AttributeTag.MANUFACTURER:
        data = _parse_manufacturer(body)
    elif tag == AttributeTag.SIGNATURE:
        data = _parse_signature(body)
    else:
        data = body.rest()
    return Attribute(flags=flags, tag=tag, data=data)


def _parse_basic(r: Reader) -> BasicInfo:
    return BasicInfo(
        cert_id=r.bytes(16, "cert_id"),
        security_level=r.u32be("security_level"),
        flags=r.u32be("basic_flags"),
        cert_type=r.u32be("cert_type"),
        public_key_digest=r.bytes(32, "public_key_digest"),
        expiration_date=r.u32be("expiration_date"),
        client_id=r.bytes(16, "client_id"),
    )


def _parse_key(r: Reader) -> KeyInfo:
    keys = []
    for _ in range(r.u32be("key_count")):
        key_type = r.u16be("key_type")
        bits = r.u16be("key_length")
        flags = r.u32be("key_flags")
        key = r.bytes(bits // 8, "key")
        usages = [r.u32be("usage") for _ in range(r.u32be("usage_count"))]
        keys.append(CertKey(key_type=key_type, key=key, flags=flags, usages=usages))
    return KeyInfo(keys=keys)


def _padded_string(r: Reader, field_name: str) -> str:
    length = r.u32be(f"{field_name}_length")
    raw = r.bytes(length, field_name)
    r.bytes((4 - length % 4) % 4, f"{field_name}_padding")
    return raw.rstrip(b"\x00").decode("utf-8", errors="replace")


def _parse_manufacturer(r: Reader) -> ManufacturerInfo:
    return ManufacturerInfo(
        flags=r.u32be("manufacturer_flags"),
        name=_padded_string(r, "manufacturer_name"),
        model_name=_padded_string(r, "model_name"),
        model_number=_padded_string(r, "model_number"),
    )


def _parse_signature(r: Reader) -> SignatureInfo:
    signature_type = r.u16be("signature_type")
    signature = r.bytes(r.u16be("signature_size"), "signature")
    key_bits = r.u32be("signing_key_length")
    return SignatureInfo(
        signature_type=signature_type,
        signature=signature,
        signing_key=r.bytes(key_bits // 8, "signing_key"),
    )
