"""Content-addressed linked list of entry chunks.

Chunks are linked head to tail: each node's ``Next`` names the CID of the
chunk that follows it. Because a CID is only known once the node it names has
been encoded, the chain is built in two passes over spooled storage:

1. batches are spooled in arrival order,
2. nodes are built tail first, each one pointing at its encoded successor.

Only per-chunk offsets and CIDs stay in memory; the hashes themselves live in
the spool files.
"""

from __future__ import annotations

import tempfile
from dataclasses import dataclass, field
from typing import IO, Iterable, Iterator, Sequence

from multiformats import CID

from .. import codec
from ..codec import DEFAULT_HASH_FUNCTION
from ..errors import EncodingError
from ..utils.logging import get_logger

LOGGER = get_logger(__name__)

NO_ENTRIES: CID = codec.identity_cid(b"no-entries")
DEFAULT_SPOOL_MAX_MEMORY = 1 << 20


@dataclass(slots=True, frozen=True)
class EntryChunk:
    """One node of the entries list."""

    entries: tuple[bytes, ...]
    next: CID | None = None

    def __post_init__(self) -> None:
        if not self.entries:
            raise EncodingError("Entry chunk must hold at least one multihash")

    def to_node(self) -> dict:
        node: dict = {"Entries": [bytes(mh) for mh in self.entries]}
        if self.next is not None:
            node["Next"] = self.next
        return node

    def encode(self) -> bytes:
        return codec.encode(self.to_node())

    @classmethod
    def from_node(cls, node: object) -> "EntryChunk":
        if not isinstance(node, dict):
            raise EncodingError("Entry chunk must be a map", details={"type": type(node).__name__})
        entries = node.get("Entries")
        if not isinstance(entries, list) or not all(isinstance(mh, bytes) for mh in entries):
            raise EncodingError("Entry chunk 'Entries' must be a list of bytes")
        next_link = node.get("Next")
        if next_link is not None and not isinstance(next_link, CID):
            raise EncodingError("Entry chunk 'Next' must be a link")
        unknown = set(node) - {"Entries", "Next"}
        if unknown:
            raise EncodingError(
                "Unexpected entry chunk fields", details={"fields": sorted(unknown)}
            )
        return cls(entries=tuple(entries), next=next_link)

    @classmethod
    def from_bytes(cls, data: bytes) -> "EntryChunk":
        return cls.from_node(codec.decode(data))


@dataclass(slots=True, frozen=True)
class EncodedChunk:
    """An entry chunk together with its canonical bytes and identifier."""

    cid: CID
    data: bytes
    size: int

    def decode(self) -> EntryChunk:
        return EntryChunk.from_bytes(self.data)


class _Spool:
    """Append-only record store with random access by record number."""

    def __init__(self, max_memory: int) -> None:
        self._file: IO[bytes] = tempfile.SpooledTemporaryFile(max_size=max_memory)
        self._offsets: list[int] = []
        self._end = 0

    def __len__(self) -> int:
        return len(self._offsets)

    def append(self, data: bytes) -> int:
        self._file.seek(self._end)
        self._file.write(data)
        self._offsets.append(self._end)
        self._end += len(data)
        return len(self._offsets) - 1

    def read(self, number: int) -> bytes:
        start = self._offsets[number]
        stop = self._offsets[number + 1] if number + 1 < len(self._offsets) else self._end
        self._file.seek(start)
        return self._file.read(stop - start)

    def close(self) -> None:
        self._file.close()


@dataclass(slots=True)
class EntryChain:
    """A fully linked entries list ready to be sent head to tail."""

    root: CID = NO_ENTRIES
    entry_count: int = 0
    _spool: _Spool | None = None
    _links: list[tuple[CID, int]] = field(default_factory=list)

    @property
    def chunk_count(self) -> int:
        return len(self._links)

    @property
    def is_empty(self) -> bool:
        return not self._links

    def __iter__(self) -> Iterator[EncodedChunk]:
        if self._spool is None and self._links:
            raise RuntimeError("Entry chain has been closed")
        # nodes were spooled tail first
        for position in range(len(self._links) - 1, -1, -1):
            cid, size = self._links[position]
            yield EncodedChunk(cid=cid, data=self._spool.read(position), size=size)

    def close(self) -> None:
        if self._spool is not None:
            self._spool.close()
            self._spool = None

    def __enter__(self) -> "EntryChain":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class EntryChainBuilder:
    """Turns ordered batches of multihashes into one linked entries list."""

    def __init__(
        self,
        *,
        hash_function: str = DEFAULT_HASH_FUNCTION,
        spool_max_memory: int = DEFAULT_SPOOL_MAX_MEMORY,
    ) -> None:
        self._hash_function = hash_function
        self._spool_max_memory = spool_max_memory

    def link(self, entries: Sequence[bytes], next_link: CID | None) -> EncodedChunk:
        """Encode one node pointing at ``next_link`` and address it."""
        chunk = EntryChunk(entries=tuple(entries), next=next_link)
        data = chunk.encode()
        return EncodedChunk(
            cid=codec.link_for(data, hash_function=self._hash_function),
            data=data,
            size=len(chunk.entries),
        )

    def build(self, batches: Iterable[Sequence[bytes]]) -> EntryChain:
        batch_spool = _Spool(self._spool_max_memory)
        node_spool = _Spool(self._spool_max_memory)
        try:
            entry_count = 0
            for batch in batches:
                if not batch:
                    continue
                batch_spool.append(codec.encode([bytes(mh) for mh in batch]))
                entry_count += len(batch)

            links: list[tuple[CID, int]] = []
            next_link: CID | None = None
            for number in range(len(batch_spool) - 1, -1, -1):
                encoded = self.link(codec.decode(batch_spool.read(number)), next_link)
                node_spool.append(encoded.data)
                links.append((encoded.cid, encoded.size))
                next_link = encoded.cid
        except BaseException:
            node_spool.close()
            raise
        finally:
            batch_spool.close()

        chain = EntryChain(
            root=next_link if next_link is not None else NO_ENTRIES,
            entry_count=entry_count,
            _spool=node_spool,
            _links=links,
        )
        LOGGER.debug(
            "Built entries chain",
            extra={
                "event": "chain.built",
                "root": str(chain.root),
                "chunks": chain.chunk_count,
                "entries": entry_count,
            },
        )
        return chain


__all__ = [
    "DEFAULT_SPOOL_MAX_MEMORY",
    "EncodedChunk",
    "EntryChain",
    "EntryChainBuilder",
    "EntryChunk",
    "NO_ENTRIES",
]
