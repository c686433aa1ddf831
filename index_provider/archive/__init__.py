"""CAR archive access: container parsing, sorted indexes and index sources."""

from __future__ import annotations

from .car import CarReader, CarSection, write_car
from .index import (
    CAR_INDEX_SORTED,
    CAR_MULTIHASH_INDEX_SORTED,
    IndexSorted,
    IterableIndex,
    MultihashIndexSorted,
    read_index,
)
from .source import IndexSource, generate_iterable_index, iterable_index, open_index

__all__ = [
    "CAR_INDEX_SORTED",
    "CAR_MULTIHASH_INDEX_SORTED",
    "CarReader",
    "CarSection",
    "IndexSorted",
    "IndexSource",
    "IterableIndex",
    "MultihashIndexSorted",
    "generate_iterable_index",
    "iterable_index",
    "open_index",
    "read_index",
    "write_car",
]
