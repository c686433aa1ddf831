"""Sorted CAR index codecs.

Two codecs are understood:

* ``car-index-sorted`` (0x0400): digests only, bucketed by width. It cannot
  reproduce full multihashes, so it does not support iteration.
* ``car-multihash-index-sorted`` (0x0401): the same layout grouped by multihash
  code, which makes full iteration possible.

Layout (little endian): ``int32 count`` of code groups, then per group
``uint64 code``, ``int32 count`` of width buckets, then per bucket
``uint32 width``, ``int64 byte length`` and ``width``-sized records of
``digest || uint64 offset`` sorted by digest.
"""

from __future__ import annotations

import struct
from typing import Iterable, Iterator, Protocol, runtime_checkable

from multiformats import varint

from ..codec import decode_multihash, encode_multihash, read_varint
from ..errors import EncodingError, IndexUnavailable

CAR_INDEX_SORTED = 0x0400
CAR_MULTIHASH_INDEX_SORTED = 0x0401

CODEC_NAMES = {
    CAR_INDEX_SORTED: "car-index-sorted",
    CAR_MULTIHASH_INDEX_SORTED: "car-multihash-index-sorted",
}

_OFFSET = struct.Struct("<Q")
_INT32 = struct.Struct("<i")
_UINT32 = struct.Struct("<I")
_UINT64 = struct.Struct("<Q")
_INT64 = struct.Struct("<q")


@runtime_checkable
class IterableIndex(Protocol):
    """An index able to enumerate every ``(multihash, offset)`` it holds."""

    codec: int

    def for_each(self) -> Iterator[tuple[bytes, int]]:
        """Yield ``(multihash, offset)`` pairs in index order."""


class _WidthBuckets:
    """Digest records grouped by record width (digest length + 8)."""

    def __init__(self) -> None:
        self._packed: dict[int, bytes] = {}
        self._staged: dict[int, dict[bytes, int]] = {}

    def insert(self, digest: bytes, offset: int) -> None:
        width = len(digest) + _OFFSET.size
        staged = self._staged.get(width)
        if staged is None:
            staged = dict(_unpack_bucket(width, self._packed.pop(width, b"")))
            self._staged[width] = staged
        # first occurrence wins for repeated blocks
        staged.setdefault(bytes(digest), offset)

    def __len__(self) -> int:
        return sum(len(data) // width for width, data in self.packed().items())

    def packed(self) -> dict[int, bytes]:
        for width, staged in self._staged.items():
            self._packed[width] = b"".join(
                digest + _OFFSET.pack(offset) for digest, offset in sorted(staged.items())
            )
        self._staged.clear()
        return dict(sorted(self._packed.items()))

    def set_packed(self, width: int, data: bytes) -> None:
        self._staged.pop(width, None)
        self._packed[width] = data

    def records(self) -> Iterator[tuple[bytes, int]]:
        for width, data in self.packed().items():
            yield from _unpack_bucket(width, data)

    def marshal(self) -> bytes:
        packed = self.packed()
        parts = [_INT32.pack(len(packed))]
        for width, data in packed.items():
            parts.append(_UINT32.pack(width))
            parts.append(_INT64.pack(len(data)))
            parts.append(data)
        return b"".join(parts)

    @classmethod
    def unmarshal(cls, data: memoryview, pos: int) -> tuple["_WidthBuckets", int]:
        buckets = cls()
        (count,) = _read(_INT32, data, pos)
        pos += _INT32.size
        if count < 0:
            raise EncodingError("Negative bucket count in index", details={"count": count})
        for _ in range(count):
            (width,) = _read(_UINT32, data, pos)
            pos += _UINT32.size
            (size,) = _read(_INT64, data, pos)
            pos += _INT64.size
            if width <= _OFFSET.size or size < 0 or size % width:
                raise EncodingError(
                    "Malformed index bucket", details={"width": width, "size": size}
                )
            if pos + size > len(data):
                raise EncodingError("Truncated index bucket", details={"width": width})
            buckets.set_packed(width, bytes(data[pos : pos + size]))
            pos += size
        return buckets, pos


def _read(fmt: struct.Struct, data: memoryview, pos: int) -> tuple:
    if pos + fmt.size > len(data):
        raise EncodingError("Truncated index", details={"offset": pos})
    return fmt.unpack_from(data, pos)


def _unpack_bucket(width: int, data: bytes) -> Iterator[tuple[bytes, int]]:
    digest_len = width - _OFFSET.size
    for pos in range(0, len(data), width):
        digest = data[pos : pos + digest_len]
        (offset,) = _OFFSET.unpack_from(data, pos + digest_len)
        yield digest, offset


class IndexSorted:
    """``car-index-sorted``: digests without their hash function code."""

    codec = CAR_INDEX_SORTED

    def __init__(self) -> None:
        self._buckets = _WidthBuckets()

    def insert(self, mh: bytes, offset: int) -> None:
        _, digest = decode_multihash(mh)
        self._buckets.insert(digest, offset)

    def load(self, records: Iterable[tuple[bytes, int]]) -> "IndexSorted":
        for mh, offset in records:
            self.insert(mh, offset)
        return self

    def __len__(self) -> int:
        return len(self._buckets)

    def marshal(self) -> bytes:
        return self._buckets.marshal()

    @classmethod
    def unmarshal(cls, data: bytes) -> "IndexSorted":
        index = cls()
        index._buckets, _ = _WidthBuckets.unmarshal(memoryview(data), 0)
        return index


class MultihashIndexSorted:
    """``car-multihash-index-sorted``: sorted digests grouped by hash code."""

    codec = CAR_MULTIHASH_INDEX_SORTED

    def __init__(self) -> None:
        self._groups: dict[int, _WidthBuckets] = {}

    def insert(self, mh: bytes, offset: int) -> None:
        code, digest = decode_multihash(mh)
        self._groups.setdefault(code, _WidthBuckets()).insert(digest, offset)

    def load(self, records: Iterable[tuple[bytes, int]]) -> "MultihashIndexSorted":
        for mh, offset in records:
            self.insert(mh, offset)
        return self

    def for_each(self) -> Iterator[tuple[bytes, int]]:
        for code in sorted(self._groups):
            for digest, offset in self._groups[code].records():
                yield encode_multihash(code, digest), offset

    def __len__(self) -> int:
        return sum(len(group) for group in self._groups.values())

    def marshal(self) -> bytes:
        parts = [_INT32.pack(len(self._groups))]
        for code in sorted(self._groups):
            parts.append(_UINT64.pack(code))
            parts.append(self._groups[code].marshal())
        return b"".join(parts)

    @classmethod
    def unmarshal(cls, data: bytes) -> "MultihashIndexSorted":
        view = memoryview(data)
        index = cls()
        (count,) = _read(_INT32, view, 0)
        pos = _INT32.size
        if count < 0:
            raise EncodingError("Negative code group count in index", details={"count": count})
        for _ in range(count):
            (code,) = _read(_UINT64, view, pos)
            pos += _UINT64.size
            index._groups[code], pos = _WidthBuckets.unmarshal(view, pos)
        return index


class UnknownIndex:
    """Placeholder for an index whose codec this package does not decode."""

    def __init__(self, codec: int) -> None:
        self.codec = codec


CarIndex = IndexSorted | MultihashIndexSorted | UnknownIndex


def read_index(data: bytes) -> CarIndex:
    """Decode a codec-prefixed index as stored after a CARv2 data payload."""
    try:
        codec, consumed = read_varint(data, 0)
        body = bytes(data[consumed:])
        if codec == CAR_MULTIHASH_INDEX_SORTED:
            return MultihashIndexSorted.unmarshal(body)
        if codec == CAR_INDEX_SORTED:
            return IndexSorted.unmarshal(body)
    except EncodingError as exc:
        raise IndexUnavailable("Embedded index is corrupt", details=exc.details) from exc
    return UnknownIndex(codec)


def write_index(index: IndexSorted | MultihashIndexSorted) -> bytes:
    return varint.encode(index.codec) + index.marshal()


def codec_name(codec: int) -> str:
    return CODEC_NAMES.get(codec, hex(codec))


__all__ = [
    "CAR_INDEX_SORTED",
    "CAR_MULTIHASH_INDEX_SORTED",
    "CarIndex",
    "IndexSorted",
    "IterableIndex",
    "MultihashIndexSorted",
    "UnknownIndex",
    "codec_name",
    "read_index",
    "write_index",
]
