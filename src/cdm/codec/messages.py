"""
Declarative message schema for the Widevine license protocol.

Each message class lists its fields as ``Field`` tuples. Encoding walks the
fields in ascending field-number order and omits unset values, so two equal
messages always serialize to identical bytes. Decoding keeps the fields it
knows and skips everything else through ``skip_unknown_field``.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Dict, NamedTuple, Optional, Tuple

from ..exceptions import DecodeError
from .wire import (
    WIRE_FIXED32,
    WIRE_FIXED64,
    WIRE_LENGTH_DELIMITED,
    WIRE_VARINT,
    decode_fixed32,
    decode_fixed64,
    decode_length_delimited,
    decode_tag,
    decode_varint,
    encode_fixed32,
    encode_fixed64,
    encode_length_delimited,
    encode_tag,
    encode_varint,
    skip_unknown_field,
)

VARINT = "varint"
BOOL = "bool"
BYTES = "bytes"
STRING = "string"
MESSAGE = "message"
FIXED32 = "fixed32"
FIXED64 = "fixed64"

_WIRE_FOR_KIND = {
    VARINT: WIRE_VARINT,
    BOOL: WIRE_VARINT,
    BYTES: WIRE_LENGTH_DELIMITED,
    STRING: WIRE_LENGTH_DELIMITED,
    MESSAGE: WIRE_LENGTH_DELIMITED,
    FIXED32: WIRE_FIXED32,
    FIXED64: WIRE_FIXED64,
}


class Field(NamedTuple):
    number: int
    name: str
    kind: str
    repeated: bool = False
    message: Optional[type] = None


class Message:
    """Base class for schema-driven messages."""

    FIELDS: Tuple[Field, ...] = ()

    def __init__(self, **values: Any):
        for field in self.FIELDS:
            setattr(self, field.name, [] if field.repeated else None)
        for name, value in values.items():
            if name not in self._by_name():
                raise TypeError(f"{type(self).__name__} has no field {name!r}")
            setattr(self, name, list(value) if self._by_name()[name].repeated else value)

    @classmethod
    def _by_name(cls) -> Dict[str, Field]:
        return {f.name: f for f in cls.FIELDS}

    @classmethod
    def _by_number(cls) -> Dict[int, Field]:
        return {f.number: f for f in cls.FIELDS}

    def encode(self) -> bytes:
        out = bytearray()
        for field in sorted(self.FIELDS, key=lambda f: f.number):
            value = getattr(self, field.name)
            if field.repeated:
                for item in value:
                    out += _encode_value(field, item)
            elif value is not None:
                out += _encode_value(field, value)
        return bytes(out)

    @classmethod
    def decode(cls, data: bytes) -> "Message":
        msg = cls()
        fields = cls._by_number()
        offset = 0
        while offset < len(data):
            number, wire_type, offset = decode_tag(data, offset)
            field = fields.get(number)
            if field is None:
                offset = skip_unknown_field(wire_type, data, offset)
                continue
            if wire_type != _WIRE_FOR_KIND[field.kind]:
                raise DecodeError(
                    f"{cls.__name__}: wire type {wire_type} does not match {field.kind}",
                    offset=offset,
                    field=field.name,
                )
            value, offset = _decode_value(field, data, offset)
            if field.repeated:
                getattr(msg, field.name).append(value)
            else:
                setattr(msg, field.name, value)
        return msg

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return all(getattr(self, f.name) == getattr(other, f.name) for f in self.FIELDS)

    def __repr__(self) -> str:
        parts = []
        for field in self.FIELDS:
            value = getattr(self, field.name)
            if value is None or (field.repeated and not value):
                continue
            parts.append(f"{field.name}={value!r}")
        return f"{type(self).__name__}({', '.join(parts)})"


def _encode_value(field: Field, value: Any) -> bytes:
    if field.kind in (VARINT, BOOL):
        return encode_tag(field.number, WIRE_VARINT) + encode_varint(int(value))
    if field.kind == FIXED32:
        return encode_tag(field.number, WIRE_FIXED32) + encode_fixed32(value)
    if field.kind == FIXED64:
        return encode_tag(field.number, WIRE_FIXED64) + encode_fixed64(value)
    if field.kind == STRING:
        return encode_length_delimited(field.number, value.encode("utf-8"))
    if field.kind == MESSAGE and isinstance(value, Message):
        return encode_length_delimited(field.number, value.encode())
    # BYTES, or a pre-serialized MESSAGE passed through verbatim
    return encode_length_delimited(field.number, bytes(value))


def _decode_value(field: Field, data: bytes, offset: int) -> Tuple[Any, int]:
    if field.kind == VARINT:
        return decode_varint(data, offset)
    if field.kind == BOOL:
        value, offset = decode_varint(data, offset)
        return bool(value), offset
    if field.kind == FIXED32:
        return decode_fixed32(data, offset)
    if field.kind == FIXED64:
        return decode_fixed64(data, offset)
    raw, offset = decode_length_delimited(data, offset)
    if field.kind == STRING:
        try:
            return raw.decode("utf-8"), offset
        except UnicodeDecodeError as e:
            raise DecodeError("invalid UTF-8 string", offset=offset, field=field.name) from e
    if field.kind == MESSAGE:
        return field.message.decode(raw), offset
    return raw, offset


# ---------- enums ----------

class MessageType(IntEnum):
    LICENSE_REQUEST = 1
    LICENSE = 2
    ERROR_RESPONSE = 3
    SERVICE_CERTIFICATE_REQUEST = 4
    SERVICE_CERTIFICATE = 5


class LicenseType(IntEnum):
    STREAMING = 1
    OFFLINE = 2
    AUTOMATIC = 3


class RequestType(IntEnum):
    NEW = 1
    RENEWAL = 2
    RELEASE = 3


class KeyType(IntEnum):
    SIGNING = 1
    CONTENT = 2
    KEY_CONTROL = 3
    OPERATOR_SESSION = 4
    ENTITLEMENT = 5
    OEM_CONTENT = 6


# ---------- content identification ----------

class WidevinePsshData(Message):
    """Payload of a Widevine PSSH box."""

    FIELDS = (
        Field(1, "algorithm", VARINT),
        Field(2, "key_ids", BYTES, repeated=True),
        Field(3, "provider", STRING),
        Field(4, "content_id", BYTES),
        Field(6, "policy", STRING),
        Field(7, "crypto_period_index", VARINT),
        Field(8, "grouped_license", BYTES),
        Field(9, "protection_scheme", VARINT),
    )


class PsshContent(Message):
    FIELDS = (
        Field(1, "pssh_data", BYTES, repeated=True),
        Field(2, "license_type", VARINT),
        Field(3, "request_id", BYTES),
    )


class ContentIdentification(Message):
    FIELDS = (
        Field(1, "widevine_pssh_data", MESSAGE, message=PsshContent),
    )


# ---------- request ----------

class EncryptedClientIdentification(Message):
    """Client identity encrypted to a service certificate (privacy mode)."""

    FIELDS = (
        Field(1, "provider_id", STRING),
        Field(2, "service_certificate_serial_number", BYTES),
        Field(3, "encrypted_client_id", BYTES),
        Field(4, "encrypted_client_id_iv", BYTES),
        Field(5, "encrypted_privacy_key", BYTES),
    )


class LicenseRequest(Message):
    # client_id is the device's opaque identity blob, embedded as-is
    FIELDS = (
        Field(1, "client_id", BYTES),
        Field(2, "content_id", MESSAGE, message=ContentIdentification),
        Field(3, "type", VARINT),
        Field(4, "request_time", VARINT),
        Field(5, "key_control_nonce_deprecated", BYTES),
        Field(6, "protocol_version", VARINT),
        Field(7, "key_control_nonce", VARINT),
        Field(8, "encrypted_client_id", MESSAGE, message=EncryptedClientIdentification),
    )


class SignedMessage(Message):
    """Outer envelope for every request and response."""

    FIELDS = (
        Field(1, "type", VARINT),
        Field(2, "msg", BYTES),
        Field(3, "signature", BYTES),
        Field(4, "session_key", BYTES),
        Field(5, "remote_attestation", BYTES),
        Field(8, "session_key_type", VARINT),
        Field(9, "oemcrypto_core_message", BYTES),
    )


# ---------- license ----------

class LicenseIdentification(Message):
    FIELDS = (
        Field(1, "request_id", BYTES),
        Field(2, "session_id", BYTES),
        Field(3, "purchase_id", BYTES),
        Field(4, "type", VARINT),
        Field(5, "version", VARINT),
        Field(6, "provider_session_token", BYTES),
    )


class KeyContainer(Message):
    FIELDS = (
        Field(1, "id", BYTES),
        Field(2, "iv", BYTES),
        Field(3, "key", BYTES),
        Field(4, "type", VARINT),
        Field(5, "level", VARINT),
        Field(12, "track_label", STRING),
    )


class License(Message):
    FIELDS = (
        Field(1, "id", MESSAGE, message=LicenseIdentification),
        Field(2, "policy", BYTES),
        Field(3, "key", MESSAGE, repeated=True, message=KeyContainer),
        Field(4, "license_start_time", VARINT),
    )


# ---------- certificates ----------

class DrmCertificate(Message):
    FIELDS = (
        Field(1, "type", VARINT),
        Field(2, "serial_number", BYTES),
        Field(3, "creation_time_seconds", VARINT),
        Field(4, "public_key", BYTES),
        Field(5, "system_id", VARINT),
        Field(7, "provider_id", STRING),
    )


class SignedDrmCertificate(Message):
    FIELDS = (
        Field(1, "drm_certificate", BYTES),
        Field(2, "signature", BYTES),
        Field(4, "hash_algorithm", VARINT),
    )


# signer nests another SignedDrmCertificate
SignedDrmCertificate.FIELDS = SignedDrmCertificate.FIELDS + (
    Field(3, "signer", MESSAGE, message=SignedDrmCertificate),
)
