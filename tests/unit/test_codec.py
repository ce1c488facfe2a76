"""Tests for the wire codec and the message schema."""

import pytest

from cdm.codec.messages import (
    ContentIdentification,
    LicenseRequest,
    MessageType,
    PsshContent,
    SignedDrmCertificate,
    SignedMessage,
    DrmCertificate,
    WidevinePsshData,
)
from cdm.codec.wire import (
    WIRE_FIXED32,
    WIRE_FIXED64,
    WIRE_LENGTH_DELIMITED,
    WIRE_VARINT,
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
from cdm.exceptions import DecodeError


class TestVarint:
    """Test varint encoding and decoding."""

    @pytest.mark.parametrize("value", [0, 1, 127, 128, 300, 16383, 16384, 2 ** 31, 2 ** 63, 2 ** 64 - 1])
    def test_roundtrip(self, value):
        """Test values across every byte-length boundary."""
        encoded = encode_varint(value)
        assert decode_varint(encoded) == (value, len(encoded))

    def test_known_encodings(self):
        """Test encodings against hand-computed bytes."""
        assert encode_varint(0) == b"\x00"
        assert encode_varint(1) == b"\x01"
        assert encode_varint(300) == b"\xac\x02"
        assert len(encode_varint(2 ** 64 - 1)) == 10

    def test_out_of_range(self):
        """Test that negative and oversized values are rejected."""
        with pytest.raises(ValueError):
            encode_varint(-1)
        with pytest.raises(ValueError):
            encode_varint(2 ** 64)

    def test_truncated(self):
        """Test that a continuation bit at end of buffer fails."""
        with pytest.raises(DecodeError) as exc:
            decode_varint(b"\x01\x80\x80", 1)
        assert exc.value.offset == 1

    def test_too_long(self):
        """Test that an 11-byte varint fails."""
        with pytest.raises(DecodeError):
            decode_varint(b"\xff" * 10 + b"\x01")

    def test_overflow(self):
        """Test that a 10-byte varint above 64 bits fails."""
        with pytest.raises(DecodeError):
            decode_varint(b"\xff" * 9 + b"\x7f")

    def test_decode_at_offset(self):
        """Test decoding in the middle of a buffer."""
        data = b"\x00\x00" + encode_varint(150) + b"\xff"
        assert decode_varint(data, 2) == (150, 4)


class TestTags:
    """Test tag packing."""

    def test_tag_roundtrip(self):
        """Test field number and wire type survive packing."""
        for wire_type in (WIRE_VARINT, WIRE_FIXED64, WIRE_LENGTH_DELIMITED, WIRE_FIXED32):
            assert decode_tag(encode_tag(17, wire_type)) == (17, wire_type, 2)

    def test_field_zero_rejected(self):
        """Test field number 0 is invalid both ways."""
        with pytest.raises(ValueError):
            encode_tag(0, WIRE_VARINT)
        with pytest.raises(DecodeError):
            decode_tag(b"\x02")

    def test_group_wire_types_rejected(self):
        """Test the deprecated group wire types cannot be encoded."""
        with pytest.raises(ValueError):
            encode_tag(1, 3)

    def test_length_delimited(self):
        """Test a length-delimited payload is read back exactly."""
        encoded = encode_length_delimited(2, b"hello")
        field, wire_type, offset = decode_tag(encoded)
        assert (field, wire_type) == (2, WIRE_LENGTH_DELIMITED)
        assert decode_length_delimited(encoded, offset) == (b"hello", len(encoded))

    def test_length_past_end(self):
        """Test a declared length longer than the buffer fails."""
        with pytest.raises(DecodeError):
            decode_length_delimited(b"\x05abc")


class TestSkipUnknownField:
    """Test skipping fields of every wire type."""

    @pytest.mark.parametrize("wire_type,value", [
        (WIRE_VARINT, encode_varint(123456)),
        (WIRE_FIXED64, encode_fixed64(2 ** 40)),
        (WIRE_LENGTH_DELIMITED, encode_varint(3) + b"xyz"),
        (WIRE_FIXED32, encode_fixed32(7)),
    ])
    def test_skip(self, wire_type, value):
        """Test the returned offset lands on the next tag."""
        data = value + b"\x08\x01"
        assert skip_unknown_field(wire_type, data, 0) == len(value)

    @pytest.mark.parametrize("wire_type", [3, 4, 6, 7])
    def test_unknown_wire_type(self, wire_type):
        """Test unsupported wire types raise."""
        with pytest.raises(DecodeError):
            skip_unknown_field(wire_type, b"\x00\x00\x00\x00", 0)

    def test_truncated_fixed(self):
        """Test a truncated fixed-width value raises."""
        with pytest.raises(DecodeError):
            skip_unknown_field(WIRE_FIXED64, b"\x00\x00\x00", 0)


class TestMessages:
    """Test schema-driven message encoding."""

    def test_roundtrip_nested(self):
        """Test a nested request survives encode/decode."""
        request = LicenseRequest(
            client_id=b"client",
            content_id=ContentIdentification(
                widevine_pssh_data=PsshContent(pssh_data=[b"init"], license_type=1, request_id=b"rid")
            ),
            type=1,
            request_time=1700000000,
            protocol_version=21,
            key_control_nonce=42,
        )
        decoded = LicenseRequest.decode(request.encode())
        assert decoded == request
        assert decoded.content_id.widevine_pssh_data.request_id == b"rid"

    def test_deterministic(self):
        """Test field order in the constructor does not change the bytes."""
        a = SignedMessage(type=1, msg=b"m", signature=b"s")
        b = SignedMessage(signature=b"s", msg=b"m", type=1)
        assert a.encode() == b.encode()
        assert a.encode() == b"\x08\x01\x12\x01m\x1a\x01s"

    def test_unset_fields_omitted(self):
        """Test None and empty repeated fields produce no bytes."""
        assert SignedMessage().encode() == b""
        assert WidevinePsshData(key_ids=[]).encode() == b""

    def test_unknown_fields_skipped(self):
        """Test extra fields of every wire type are ignored on decode."""
        base = SignedMessage(type=MessageType.LICENSE, msg=b"body").encode()
        extras = (
            encode_tag(20, WIRE_VARINT) + encode_varint(99)
            + encode_tag(21, WIRE_FIXED64) + encode_fixed64(1)
            + encode_length_delimited(22, b"ignored")
            + encode_tag(23, WIRE_FIXED32) + encode_fixed32(5)
        )
        assert SignedMessage.decode(base + extras) == SignedMessage.decode(base)

    def test_wire_type_mismatch(self):
        """Test a known field with the wrong wire type fails."""
        data = encode_length_delimited(1, b"x")
        with pytest.raises(DecodeError) as exc:
            SignedMessage.decode(data)
        assert exc.value.field == "type"

    def test_unknown_constructor_field(self):
        """Test that misspelled fields are caught."""
        with pytest.raises(TypeError):
            SignedMessage(typ=1)

    def test_repeated_field(self):
        """Test repeated bytes keep their order."""
        pssh = WidevinePsshData(key_ids=[b"a" * 16, b"b" * 16], provider="p")
        assert WidevinePsshData.decode(pssh.encode()).key_ids == [b"a" * 16, b"b" * 16]

    def test_recursive_signer(self):
        """Test the self-referencing signer field decodes."""
        inner = SignedDrmCertificate(drm_certificate=b"root", signature=b"sig0")
        outer = SignedDrmCertificate(drm_certificate=DrmCertificate(serial_number=b"1").encode(),
                                     signature=b"sig1", signer=inner)
        decoded = SignedDrmCertificate.decode(outer.encode())
        assert decoded.signer.drm_certificate == b"root"
