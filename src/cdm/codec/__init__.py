from .wire import (
    decode_length_delimited,
    decode_tag,
    decode_varint,
    encode_length_delimited,
    encode_tag,
    encode_varint,
    skip_unknown_field,
)

__all__ = [
    "decode_length_delimited",
    "decode_tag",
    "decode_varint",
    "encode_length_delimited",
    "encode_tag",
    "encode_varint",
    "skip_unknown_field",
]
