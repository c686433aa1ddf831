"""Minimal CARv1/CARv2 reader and writer."""

from __future__ import annotations

import os
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator, Sequence

from multiformats import CID, varint

from .. import codec
from ..errors import EncodingError, IndexUnavailable
from ..utils.logging import get_logger
from .index import IndexSorted, MultihashIndexSorted, write_index

LOGGER = get_logger(__name__)

# varint(10) || dag-cbor {"version": 2}
CARV2_PRAGMA = bytes.fromhex("0aa16776657273696f6e02")
_CARV2_HEADER = struct.Struct("<16sQQQ")
_MAX_HEADER_SIZE = 32 << 20
_CID_PEEK = 128
_CIDV0_SIZE = 34


@dataclass(slots=True, frozen=True)
class CarSection:
    """One block section of a CARv1 payload; ``offset`` is payload-relative."""

    cid: CID
    offset: int
    length: int

    @property
    def multihash(self) -> bytes:
        return bytes(self.cid.digest)


class CarReader:
    """Reads headers, sections and the embedded index of a CAR file."""

    def __init__(self, fp: BinaryIO, *, name: str = "<stream>") -> None:
        self._fp = fp
        self.name = name
        self.version = 1
        self.data_offset = 0
        self.data_size: int | None = None
        self.index_offset = 0
        self.roots: list[CID] = []
        self._sections_start = 0
        self._size = fp.seek(0, os.SEEK_END)
        self._read_headers()

    @classmethod
    def open(cls, path: str | os.PathLike[str]) -> "CarReader":
        try:
            fp = open(path, "rb")
        except OSError as exc:
            raise IndexUnavailable(
                "Cannot open archive", details={"path": str(path), "reason": str(exc)}
            ) from exc
        try:
            return cls(fp, name=str(path))
        except BaseException:
            fp.close()
            raise

    def close(self) -> None:
        self._fp.close()

    def __enter__(self) -> "CarReader":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def has_index(self) -> bool:
        return self.version == 2 and self.index_offset > 0

    def index_bytes(self) -> bytes | None:
        """Raw codec-prefixed index, or ``None`` when the archive carries none."""
        if not self.has_index:
            return None
        self._fp.seek(self.index_offset)
        data = self._fp.read()
        if not data:
            raise IndexUnavailable(
                "Embedded index offset points past end of archive",
                details={"path": self.name, "index_offset": self.index_offset},
            )
        return data

    def sections(self) -> Iterator[CarSection]:
        """Iterate block sections of the data payload in file order."""
        pos = self._sections_start
        end = self.data_size
        while end is None or pos < end:
            self._fp.seek(self.data_offset + pos)
            length, prefix = self._read_varint()
            if length is None:
                if end is not None:
                    raise self._corrupt("Data payload truncated", offset=pos)
                return
            if length == 0:
                raise self._corrupt("Zero-length section", offset=pos)
            peek = self._fp.read(min(length, _CID_PEEK))
            try:
                cid = self._parse_cid(peek)
            except EncodingError as exc:
                raise self._corrupt("Malformed section CID", offset=pos) from exc
            if end is not None and pos + prefix + length > end:
                raise self._corrupt("Section overruns data payload", offset=pos)
            if self.data_offset + pos + prefix + length > self._size:
                raise self._corrupt("Section truncated", offset=pos)
            yield CarSection(cid=cid, offset=pos, length=prefix + length)
            pos += prefix + length

    def _read_headers(self) -> None:
        try:
            header = self._read_v1_header(0)
            version = header.get("version")
            if version == 2:
                self._fp.seek(0)
                if self._fp.read(len(CARV2_PRAGMA)) != CARV2_PRAGMA:
                    raise self._corrupt("Invalid CARv2 pragma")
                raw = self._fp.read(_CARV2_HEADER.size)
                if len(raw) != _CARV2_HEADER.size:
                    raise self._corrupt("Truncated CARv2 header")
                _, self.data_offset, self.data_size, self.index_offset = _CARV2_HEADER.unpack(raw)
                self.version = 2
                header = self._read_v1_header(self.data_offset)
                version = header.get("version")
            if version != 1:
                raise self._corrupt("Unsupported CAR version", version=version)
            self.roots = list(header.get("roots") or [])
        except OSError as exc:
            raise IndexUnavailable(
                "Cannot read archive", details={"path": self.name, "reason": str(exc)}
            ) from exc

    def _read_v1_header(self, base: int) -> dict:
        self._fp.seek(base)
        length, prefix = self._read_varint()
        if length is None or length == 0 or length > _MAX_HEADER_SIZE:
            raise self._corrupt("Invalid CAR header length", length=length)
        raw = self._fp.read(length)
        if len(raw) != length:
            raise self._corrupt("Truncated CAR header")
        try:
            header = codec.decode(raw)
        except EncodingError as exc:
            raise self._corrupt("Undecodable CAR header") from exc
        if not isinstance(header, dict):
            raise self._corrupt("CAR header is not a map")
        self._sections_start = prefix + length
        return header

    def _read_varint(self) -> tuple[int | None, int]:
        buf = bytearray()
        while True:
            byte = self._fp.read(1)
            if not byte:
                if buf:
                    raise self._corrupt("Truncated varint")
                return None, 0
            buf += byte
            if not byte[0] & 0x80:
                break
            if len(buf) >= 9:
                raise self._corrupt("Varint too long")
        return varint.decode(bytes(buf)), len(buf)

    @staticmethod
    def _parse_cid(data: bytes) -> CID:
        if len(data) >= _CIDV0_SIZE and data[0] == 0x12 and data[1] == 0x20:
            pos = _CIDV0_SIZE
        else:
            pos = 0
            for _ in range(3):  # version, codec, multihash code
                _, consumed = codec.read_varint(data, pos)
                pos += consumed
            size, consumed = codec.read_varint(data, pos)
            pos += consumed + size
            if pos > len(data):
                raise EncodingError("CID digest truncated", details={"size": size})
        try:
            return CID.decode(bytes(data[:pos]))
        except (KeyError, ValueError) as exc:
            raise EncodingError("Invalid CID", details={"reason": str(exc)}) from exc

    def _corrupt(self, message: str, **details: object) -> IndexUnavailable:
        return IndexUnavailable(message, details={"path": self.name, **details})


def write_car(
    path: str | os.PathLike[str],
    blocks: Iterable[tuple[CID, bytes]],
    *,
    roots: Sequence[CID] = (),
    version: int = 2,
    index_codec: int | None = None,
) -> Path:
    """Write ``blocks`` into a CAR archive, optionally embedding a sorted index.

    ``index_codec`` is only honoured for version 2 archives and must name one
    of the sorted index codecs.
    """

    if version not in (1, 2):
        raise ValueError(f"Unsupported CAR version: {version}")
    header = codec.encode({"roots": list(roots), "version": 1})
    payload = bytearray(varint.encode(len(header)) + header)
    sections: list[tuple[bytes, int]] = []
    for cid, data in blocks:
        body = bytes(cid) + bytes(data)
        sections.append((bytes(cid.digest), len(payload)))
        payload += varint.encode(len(body)) + body

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("wb") as fp:
        if version == 1:
            fp.write(payload)
        else:
            index_data = _build_index(sections, index_codec)
            data_offset = len(CARV2_PRAGMA) + _CARV2_HEADER.size
            index_offset = data_offset + len(payload) if index_data else 0
            fp.write(CARV2_PRAGMA)
            fp.write(_CARV2_HEADER.pack(b"\x00" * 16, data_offset, len(payload), index_offset))
            fp.write(payload)
            fp.write(index_data)
    LOGGER.debug(
        "Wrote CAR archive",
        extra={"event": "car.write", "path": str(target), "blocks": len(sections)},
    )
    return target


def _build_index(sections: list[tuple[bytes, int]], index_codec: int | None) -> bytes:
    if index_codec is None:
        return b""
    index: IndexSorted | MultihashIndexSorted
    if index_codec == IndexSorted.codec:
        index = IndexSorted()
    elif index_codec == MultihashIndexSorted.codec:
        index = MultihashIndexSorted()
    else:
        raise ValueError(f"Unsupported index codec: {index_codec:#x}")
    return write_index(index.load(sections))


__all__ = ["CARV2_PRAGMA", "CarReader", "CarSection", "write_car"]
