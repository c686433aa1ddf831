"""Canonical record encoding and content addressing.

Records are encoded as DAG-CBOR and addressed by CIDv1 with the ``dag-cbor``
codec. Multihashes are kept as plain ``bytes`` (``varint code || varint length
|| digest``) so they can be sorted and compared byte-wise.
"""

from __future__ import annotations

from typing import Any

import dag_cbor
from dag_cbor.decoding import CBORDecodingError
from dag_cbor.encoding import CBOREncodingError
from multiformats import CID, multihash, varint

from .errors import EncodingError

DAG_CBOR = "dag-cbor"
DEFAULT_HASH_FUNCTION = "sha2-256"
IDENTITY_CODE = 0x00

_MAX_VARINT_BYTES = 9


def encode(value: Any) -> bytes:
    """Return the canonical DAG-CBOR encoding of ``value``."""
    try:
        return dag_cbor.encode(value)
    except (CBOREncodingError, TypeError, ValueError) as exc:
        raise EncodingError("Failed to encode record", details={"reason": str(exc)}) from exc


def decode(data: bytes) -> Any:
    try:
        return dag_cbor.decode(data)
    except (CBORDecodingError, TypeError, ValueError) as exc:
        raise EncodingError(
            "Failed to decode record",
            details={"reason": str(exc), "size": len(data)},
        ) from exc


def link_for(data: bytes, *, hash_function: str = DEFAULT_HASH_FUNCTION) -> CID:
    """Content identifier of an already encoded DAG-CBOR block."""
    try:
        digest = multihash.digest(data, hash_function)
    except (KeyError, NotImplementedError, ValueError) as exc:
        raise EncodingError(
            "Unsupported hash function", details={"hash_function": hash_function}
        ) from exc
    return CID("base32", 1, DAG_CBOR, digest)


def encode_multihash(code: int, digest: bytes) -> bytes:
    return varint.encode(code) + varint.encode(len(digest)) + bytes(digest)


def decode_multihash(value: bytes) -> tuple[int, bytes]:
    """Split a multihash into ``(code, digest)``, validating the declared length."""
    code, code_len = read_varint(value, 0)
    size, size_len = read_varint(value, code_len)
    start = code_len + size_len
    digest = bytes(value[start:])
    if len(digest) != size:
        raise EncodingError(
            "Multihash digest length mismatch",
            details={"declared": size, "actual": len(digest)},
        )
    return code, digest


def read_varint(data: bytes, offset: int = 0) -> tuple[int, int]:
    """Decode an unsigned varint at ``offset``; return ``(value, bytes_consumed)``."""
    end = offset
    while True:
        if end >= len(data):
            raise EncodingError("Truncated varint", details={"offset": offset})
        if end - offset >= _MAX_VARINT_BYTES:
            raise EncodingError("Varint too long", details={"offset": offset})
        if not data[end] & 0x80:
            break
        end += 1
    raw = bytes(data[offset : end + 1])
    return varint.decode(raw), len(raw)


def identity_cid(payload: bytes, *, codec: str = "raw") -> CID:
    return CID("base32", 1, codec, encode_multihash(IDENTITY_CODE, payload))


__all__ = [
    "DAG_CBOR",
    "DEFAULT_HASH_FUNCTION",
    "decode",
    "decode_multihash",
    "encode",
    "encode_multihash",
    "identity_cid",
    "link_for",
    "read_varint",
]
