"""
Content-identifier (PSSH box) parsing.

- ISOBMFF ``pssh`` box framing, versions 0 and 1 (big-endian)
- Widevine payloads (``WidevinePsshData``)
- PlayReady Header records and the UTF-16LE WRM header XML they carry
  (little-endian framing, GUID key ids in little-endian byte order)
"""

from __future__ import annotations

import base64
import binascii
import logging
import struct
import uuid
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import List, Optional

from ..codec.messages import WidevinePsshData
from ..constants import KID_SIZE, PLAYREADY_SYSTEM_ID, WIDEVINE_SYSTEM_ID
from ..exceptions import DecodeError
from .reader import Reader

LOGGER = logging.getLogger(__name__)

PLAYREADY_RECORD_WRM_HEADER = 1
PLAYREADY_RECORD_LICENSE_STORE = 3


@dataclass(frozen=True)
class ContentIdentifier:
    """Init data handed to a challenge builder.

    ``init_data`` is the PSSH payload, copied verbatim into the request.
    """

    init_data: bytes
    key_ids: List[bytes] = field(default_factory=list)
    system_id: bytes = WIDEVINE_SYSTEM_ID


@dataclass
class PSSH:
    system_id: bytes
    data: bytes
    version: int = 0
    flags: bytes = b"\x00\x00\x00"
    key_ids: List[bytes] = field(default_factory=list)

    @classmethod
    def from_bytes(cls, raw: bytes, system_id: Optional[bytes] = None) -> "PSSH":
        """Parse a full PSSH box, or a bare payload when ``system_id`` is given.

        Args:
            raw: Box bytes (or bare init data)
            system_id: Expected system id for bare payloads

        Raises:
            DecodeError: If the box is malformed
        """
        if len(raw) < 8 or raw[4:8] != b"pssh":
            if system_id is None:
                raise DecodeError("not a pssh box and no system id given for bare init data")
            return cls(system_id=bytes(system_id), data=bytes(raw))

        r = Reader(raw)
        box_size = r.u32be("box_size")
        if box_size < 32 or box_size > len(raw):
            raise DecodeError(f"box size {box_size} does not fit input of {len(raw)} bytes", offset=0, field="box_size")
        r = Reader(raw, 4, box_size)
        r.expect(b"pssh", "box_type")
        version = r.u8("version")
        if version > 1:
            raise DecodeError(f"unsupported pssh version {version}", offset=8, field="version")
        flags = r.bytes(3, "flags")
        sid = r.bytes(16, "system_id")
        key_ids = []
        if version == 1:
            count = r.u32be("key_id_count")
            for _ in range(count):
                key_ids.append(r.bytes(KID_SIZE, "key_id"))
        data_size = r.u32be("data_size")
        data = r.bytes(data_size, "data")
        if not r.at_end():
            raise DecodeError(f"{r.remaining} trailing bytes in pssh box", offset=r.offset)

        LOGGER.debug("Parsed pssh v%d system_id=%s kids=%d data=%d bytes", version, sid.hex(), len(key_ids), len(data))
        return cls(system_id=sid, data=data, version=version, flags=flags, key_ids=key_ids)

    @classmethod
    def from_base64(cls, value: str, system_id: Optional[bytes] = None) -> "PSSH":
        try:
            raw = base64.b64decode(value, validate=True)
        except binascii.Error as e:
            raise DecodeError(f"invalid base64 pssh: {e}") from e
        return cls.from_bytes(raw, system_id)

    def to_bytes(self) -> bytes:
        body = bytes([self.version]) + self.flags + self.system_id
        if self.version == 1:
            body += struct.pack(">I", len(self.key_ids)) + b"".join(self.key_ids)
        body += struct.pack(">I", len(self.data)) + self.data
        return struct.pack(">I", len(body) + 8) + b"pssh" + body

    def to_base64(self) -> str:
        return base64.b64encode(self.to_bytes()).decode("ascii")

    @property
    def is_widevine(self) -> bool:
        return self.system_id == WIDEVINE_SYSTEM_ID

    @property
    def is_playready(self) -> bool:
        return self.system_id == PLAYREADY_SYSTEM_ID

    def _widevine_data(self) -> Optional[WidevinePsshData]:
        try:
            return WidevinePsshData.decode(self.data)
        except DecodeError:
            LOGGER.debug("Widevine pssh payload is not a WidevinePsshData message")
            return None

    def content_id(self) -> Optional[bytes]:
        """The Widevine payload's content id, if it carries one."""
        if not self.is_widevine:
            return None
        data = self._widevine_data()
        if data is None or not data.content_id:
            return None
        return bytes(data.content_id)

    def payload_key_ids(self) -> List[bytes]:
        """Key ids carried inside the system-specific payload."""
        if self.is_widevine:
            data = self._widevine_data()
            return [bytes(k) for k in data.key_ids] if data is not None else []
        if self.is_playready:
            kids = []
            for header in wrm_headers(self.data):
                kids.extend(header.key_ids)
            return kids
        return []

    def get_key_ids(self) -> List[bytes]:
        """Header key ids if the box has any, otherwise the payload's."""
        if self.key_ids:
            return list(self.key_ids)
        return self.payload_key_ids()

    def to_content_identifier(self) -> ContentIdentifier:
        return ContentIdentifier(init_data=self.data, key_ids=self.get_key_ids(), system_id=self.system_id)


def parse_content_identifier(raw: bytes, system_id: bytes) -> ContentIdentifier:
    """Validate init data against ``system_id`` and pull out its key ids.

    Raises:
        DecodeError: If the box is malformed or carries another system id
    """
    pssh = PSSH.from_bytes(raw, system_id)
    if pssh.system_id != system_id:
        raise DecodeError(f"pssh system id {pssh.system_id.hex()} does not match {system_id.hex()}", field="system_id")
    return pssh.to_content_identifier()


# ---------- PlayReady header ----------

class WrmHeader:
    """A ``<WRMHEADER>`` document (versions 4.0 to 4.3)."""

    def __init__(self, xml: str):
        self.xml = xml
        try:
            self._root = ET.fromstring(xml)
        except ET.ParseError as e:
            raise DecodeError(f"invalid WRM header XML: {e}") from e
        if _local(self._root.tag) != "WRMHEADER":
            raise DecodeError(f"unexpected root element {_local(self._root.tag)}")

    @property
    def version(self) -> Optional[str]:
        return self._root.get("version")

    @property
    def key_ids(self) -> List[bytes]:
        kids = []
        for el in self._root.iter():
            if _local(el.tag) != "KID":
                continue
            value = el.get("VALUE") or (el.text or "").strip()
            if not value:
                continue
            try:
                guid = base64.b64decode(value)
            except binascii.Error as e:
                raise DecodeError(f"invalid KID value {value!r}") from e
            if len(guid) != KID_SIZE:
                raise DecodeError(f"KID must be 16 bytes, got {len(guid)}")
            kids.append(uuid.UUID(bytes_le=guid).bytes)
        return kids

    @property
    def la_url(self) -> Optional[str]:
        for el in self._root.iter():
            if _local(el.tag) == "LA_URL":
                return (el.text or "").strip() or None
        return None


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def parse_playready_header(data: bytes) -> List[tuple]:
    """Split a PlayReady Header into ``(record_type, record_data)`` pairs."""
    r = Reader(data)
    length = r.u32le("prh_length")
    if length != len(data):
        raise DecodeError(f"PlayReady header length {length} != {len(data)}", offset=0, field="prh_length")
    count = r.u16le("record_count")
    records = []
    for _ in range(count):
        record_type = r.u16le("record_type")
        size = r.u16le("record_length")
        records.append((record_type, r.bytes(size, "record_data")))
    if not r.at_end():
        raise DecodeError(f"{r.remaining} trailing bytes in PlayReady header", offset=r.offset)
    return records


def build_playready_header(wrm_header: str) -> bytes:
    record = wrm_header.encode("utf-16-le")
    body = struct.pack("<HHH", 1, PLAYREADY_RECORD_WRM_HEADER, len(record)) + record
    return struct.pack("<I", len(body) + 4) + body


def wrm_headers(data: bytes) -> List[WrmHeader]:
    """WRM headers found in PlayReady init data (PRH-framed or bare UTF-16LE)."""
    if data[:2] == b"<\x00":
        return [WrmHeader(_decode_utf16(data))]
    return [
        WrmHeader(_decode_utf16(record))
        for record_type, record in parse_playready_header(data)
        if record_type == PLAYREADY_RECORD_WRM_HEADER
    ]


def _decode_utf16(raw: bytes) -> str:
    try:
        return raw.decode("utf-16-le")
    except UnicodeDecodeError as e:
        raise DecodeError(f"WRM header is not UTF-16LE: {e}") from e
