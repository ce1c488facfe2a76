"""
PlayReady XMR license parsing.

An XMR license is ``"XMR\\0"``, a version, a 16-byte rights id and a run of
objects. Each object is ``flags u16, type u16, length u32`` (length
includes the 8-byte header, big-endian). Objects flagged as containers
hold further objects; leaves hold a typed payload. Leaves this module
does not know are kept as raw bytes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterator, List, Optional, Union

from ..exceptions import DecodeError
from .reader import Reader

LOGGER = logging.getLogger(__name__)

XMR_MAGIC = b"XMR\x00"
CONTAINER_FLAG = 0x0002


class ObjectType(IntEnum):
    OUTER_CONTAINER = 0x0001
    GLOBAL_POLICY_CONTAINER = 0x0002
    MINIMUM_ENVIRONMENT = 0x0003
    PLAYBACK_POLICY_CONTAINER = 0x0004
    OUTPUT_PROTECTION = 0x0005
    UPLINK_KID = 0x0006
    EXPLICIT_ANALOG_VIDEO_CONTAINER = 0x0007
    ANALOG_VIDEO_OUTPUT_CONFIG = 0x0008
    KEY_MATERIAL_CONTAINER = 0x0009
    CONTENT_KEY = 0x000A
    SIGNATURE = 0x000B
    SERIAL_NUMBER = 0x000C
    SETTINGS = 0x000D
    COPY_POLICY_CONTAINER = 0x000E
    ALLOW_PLAYLISTBURN_CONTAINER = 0x000F
    INCLUSION_LIST = 0x0010
    PRIORITY = 0x0011
    EXPIRATION = 0x0012
    ISSUEDATE = 0x0013
    EXPIRATION_AFTER_FIRSTUSE = 0x0014
    EXPIRATION_AFTER_FIRSTSTORE = 0x0015
    METERING = 0x0016
    PLAYCOUNT = 0x0017
    GRACE_PERIOD = 0x001A
    COPYCOUNT = 0x001B
    COPY_PROTECTION = 0x001C
    REVOCATION_INFO_VERSION = 0x0020
    RSA_DEVICE_KEY = 0x0021
    SOURCEID = 0x0022
    REVOCATION_CONTAINER = 0x0025
    RSA_LICENSE_GRANTER_KEY = 0x0026
    USERID = 0x0027
    RESTRICTED_SOURCEID = 0x0028
    DOMAIN_ID = 0x0029
    ECC_DEVICE_KEY = 0x002A
    GENERATION_NUMBER = 0x002B
    POLICY_METADATA = 0x002C
    OPTIMIZED_CONTENT_KEY = 0x002D
    EXPLICIT_DIGITAL_AUDIO_CONTAINER = 0x002E
    RINGTONE_POLICY_CONTAINER = 0x002F
    EXPIRATION_AFTER_FIRSTPLAY = 0x0030
    DIGITAL_AUDIO_OUTPUT_CONFIG = 0x0031
    REVOCATION_INFO_VERSION_2 = 0x0032
    EMBEDDING_BEHAVIOR = 0x0033
    SECURITY_LEVEL = 0x0034
    COPY_TO_PC_CONTAINER = 0x0035
    PLAY_ENABLER_CONTAINER = 0x0036
    MOVE_ENABLER = 0x0037
    COPY_ENABLER_CONTAINER = 0x0038
    PLAY_ENABLER = 0x0039
    COPY_ENABLER = 0x003A
    UPLINK_KID_2 = 0x003B
    COPY_POLICY_2_CONTAINER = 0x003C
    COPYCOUNT_2 = 0x003D
    REMOVAL_DATE = 0x0050
    AUX_KEY = 0x0051
    UPLINKX = 0x0052
    DIGITAL_VIDEO_OUTPUT_CONFIG = 0x0059
    SECURESTOP = 0x005A
    SECURESTOP2 = 0x005C
    OPTIMIZED_CONTENT_KEY_2 = 0x005D


class CipherType(IntEnum):
    INVALID = 0
    RSA_1024 = 1
    CHAINED_LICENSE = 2
    ECC_256 = 3
    ECC_256_WITH_KZ = 4
    TEE_TRANSIENT = 5
    ECC_256_VIA_SYMMETRIC = 6


class KeyType(IntEnum):
    INVALID = 0
    AES_128_CTR = 1
    RC4 = 2
    AES_128_ECB = 3
    COCKTAIL = 4
    AES_128_CBC = 5
    KEY_EXCHANGE = 6


@dataclass
class ContentKeyObject:
    key_id: bytes
    key_type: int
    cipher_type: int
    encrypted_key: bytes


@dataclass
class SignatureObject:
    signature_type: int
    signature_data: bytes


@dataclass
class EccKeyObject:
    curve_type: int
    key: bytes


@dataclass
class AuxiliaryKey:
    location: int
    key: bytes


@dataclass
class AuxiliaryKeysObject:
    keys: List[AuxiliaryKey]


@dataclass
class ExpirationObject:
    begin_date: int
    end_date: int


@dataclass
class IssueDateObject:
    issue_date: int


@dataclass
class SecurityLevelObject:
    minimum_security_level: int


@dataclass
class XmrObject:
    flags: int
    type: int
    data: Union["List[XmrObject]", ContentKeyObject, SignatureObject, EccKeyObject,
                AuxiliaryKeysObject, ExpirationObject, IssueDateObject, SecurityLevelObject, bytes]

    @property
    def is_container(self) -> bool:
        return bool(self.flags & CONTAINER_FLAG)


@dataclass
class XmrLicense:
    version: int
    rights_id: bytes
    objects: List[XmrObject]
    raw: bytes = field(repr=False)

    @classmethod
    def from_bytes(cls, data: bytes) -> "XmrLicense":
        r = Reader(data)
        r.expect(XMR_MAGIC, "xmr_magic")
        version = r.u32be("xmr_version")
        rights_id = r.bytes(16, "rights_id")
        objects = _parse_objects(r)
        LOGGER.debug("Parsed XMR v%d license with %d top-level objects", version, len(objects))
        return cls(version=version, rights_id=rights_id, objects=objects, raw=bytes(data))

    def find(self, object_type: int) -> Iterator[XmrObject]:
        """Yield every object of ``object_type``, descending into containers."""
        yield from _walk(self.objects, object_type)

    def _first(self, object_type: int):
        for obj in self.find(object_type):
            return obj.data
        return None

    @property
    def content_keys(self) -> List[ContentKeyObject]:
        return [obj.data for obj in self.find(ObjectType.CONTENT_KEY)]

    @property
    def signature(self) -> Optional[SignatureObject]:
        return self._first(ObjectType.SIGNATURE)

    @property
    def ecc_key(self) -> Optional[EccKeyObject]:
        return self._first(ObjectType.ECC_DEVICE_KEY)

    @property
    def auxiliary_keys(self) -> Optional[AuxiliaryKeysObject]:
        return self._first(ObjectType.AUX_KEY)

    @property
    def expiration(self) -> Optional[ExpirationObject]:
        return self._first(ObjectType.EXPIRATION)

    @property
    def issue_date(self) -> Optional[IssueDateObject]:
        return self._first(ObjectType.ISSUEDATE)

    @property
    def security_level(self) -> Optional[SecurityLevelObject]:
        return self._first(ObjectType.SECURITY_LEVEL)

    def signed_bytes(self) -> bytes:
        """The license minus its trailing signature object.

        Raises:
            DecodeError: If the license carries no signature
        """
        sig = self.signature
        if sig is None:
            raise DecodeError("license has no signature object")
        tail = len(sig.signature_data) + 12
        if tail > len(self.raw):
            raise DecodeError("signature object larger than license")
        return self.raw[:-tail]


def _walk(objects: List[XmrObject], object_type: int) -> Iterator[XmrObject]:
    for obj in objects:
        if obj.type == object_type:
            yield obj
        if obj.is_container:
            yield from _walk(obj.data, object_type)


def _parse_objects(r: Reader) -> List[XmrObject]:
    objects = []
    while not r.at_end():
        objects.append(_parse_object(r))
    return objects


def _parse_object(r: Reader) -> XmrObject:
    start = r.offset
    flags = r.u16be("object_flags")
    object_type = r.u16be("object_type")
    length = r.u32be("object_length")
    if length < 8:
        raise DecodeError(f"object length {length} shorter than its header", offset=start)
    body = r.sub(length - 8, f"object 0x{object_type:04x}")
    if flags & CONTAINER_FLAG:
        return XmrObject(flags, object_type, _parse_objects(body))
    return XmrObject(flags, object_type, _parse_leaf(object_type, body))


def _parse_leaf(object_type: int, r: Reader):
    if object_type == ObjectType.CONTENT_KEY:
        key_id = r.bytes(16, "key_id")
        key_type = r.u16be("key_type")
        cipher_type = r.u16be("cipher_type")
        encrypted_key = r.bytes(r.u16be("key_length"), "encrypted_key")
        return ContentKeyObject(key_id, key_type, cipher_type, encrypted_key)
    if object_type == ObjectType.SIGNATURE:
        signature_type = r.u16be("signature_type")
        return SignatureObject(signature_type, r.bytes(r.u16be("signature_length"), "signature_data"))
    if object_type == ObjectType.ECC_DEVICE_KEY:
        curve_type = r.u16be("curve_type")
        return EccKeyObject(curve_type, r.bytes(r.u16be("key_length"), "ecc_key"))
    if object_type == ObjectType.AUX_KEY:
        keys = []
        for _ in range(r.u16be("aux_key_count")):
            location = r.u32be("aux_key_location")
            keys.append(AuxiliaryKey(location, r.bytes(16, "aux_key")))
        return AuxiliaryKeysObject(keys)
    if object_type == ObjectType.EXPIRATION:
        return ExpirationObject(r.u32be("begin_date"), r.u32be("end_date"))
    if object_type == ObjectType.ISSUEDATE:
        return IssueDateObject(r.u32be("issue_date"))
    if object_type == ObjectType.SECURITY_LEVEL:
        return SecurityLevelObject(r.u16be("minimum_security_level"))
    return r.rest()
