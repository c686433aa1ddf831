"""Ordered, de-duplicated multihash view over a CAR archive's index."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Iterator

from ..errors import EncodingError, IndexUnavailable
from ..utils.logging import get_logger
from .car import CarReader
from .index import IterableIndex, MultihashIndexSorted, codec_name, read_index

LOGGER = get_logger(__name__)


@dataclass(slots=True)
class IndexSource:
    """Iterable ``(multihash, offset)`` pairs in the index's native order."""

    index: IterableIndex
    regenerated: bool
    origin: str = "<stream>"

    def __iter__(self) -> Iterator[tuple[bytes, int]]:
        previous: bytes | None = None
        for mh, offset in self.index.for_each():
            if mh == previous:
                continue
            previous = mh
            yield mh, offset

    def multihashes(self) -> Iterator[bytes]:
        for mh, _ in self:
            yield mh


def iterable_index(reader: CarReader) -> IndexSource:
    """Use the embedded index when it is iterable, otherwise rebuild it."""
    raw = reader.index_bytes()
    if raw is None:
        LOGGER.info(
            "Archive has no embedded index; generating one",
            extra={"event": "index.generate", "path": reader.name, "reason": "missing"},
        )
        return IndexSource(generate_iterable_index(reader), regenerated=True, origin=reader.name)

    index = read_index(raw)
    if index.codec != MultihashIndexSorted.codec or not isinstance(index, IterableIndex):
        LOGGER.info(
            "Embedded index is not iterable; generating one",
            extra={
                "event": "index.generate",
                "path": reader.name,
                "reason": "codec",
                "codec": codec_name(index.codec),
            },
        )
        return IndexSource(generate_iterable_index(reader), regenerated=True, origin=reader.name)

    return IndexSource(index, regenerated=False, origin=reader.name)


def generate_iterable_index(reader: CarReader) -> MultihashIndexSorted:
    """Scan the data payload and build a multihash-sorted index from scratch."""
    index = MultihashIndexSorted()
    try:
        for section in reader.sections():
            index.insert(section.multihash, section.offset)
    except EncodingError as exc:
        raise IndexUnavailable(
            "Failed to generate index", details={"path": reader.name, **exc.details}
        ) from exc
    LOGGER.debug(
        "Generated index",
        extra={"event": "index.generated", "path": reader.name, "entries": len(index)},
    )
    return index


def open_index(path: str | os.PathLike[str]) -> IndexSource:
    """Open ``path`` and return its index; the archive is closed afterwards."""
    with CarReader.open(path) as reader:
        return iterable_index(reader)


__all__ = ["IndexSource", "generate_iterable_index", "iterable_index", "open_index"]
