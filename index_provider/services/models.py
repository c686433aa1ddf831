"""Data models for the advertisement publishing workflow."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

from multiformats import CID

from ..chain import Metadata
from ..ingest.memory import MAX_CONTEXT_ID_LEN


def context_id_for(value: str) -> bytes:
    """UTF-8 bytes of ``value``, or their sha2-256 digest when too long for the service."""
    encoded = value.encode("utf-8")
    if len(encoded) <= MAX_CONTEXT_ID_LEN:
        return encoded
    return hashlib.sha256(encoded).digest()


@dataclass(slots=True)
class PublishRequest:
    """Everything about an advertisement except its entries."""

    provider: str
    addresses: list[str]
    context_id: bytes
    metadata: Metadata = field(default_factory=Metadata)
    previous_id: CID | None = None
    is_rm: bool = False


@dataclass(slots=True)
class PublishResult:
    """Outcome of a completed publish run."""

    advertisement_id: CID
    handle: str
    entries_root: CID
    entry_count: int
    chunk_count: int
    acks: list[str] = field(default_factory=list)
    index_regenerated: bool | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "advertisement_id": str(self.advertisement_id),
            "handle": self.handle,
            "entries_root": str(self.entries_root),
            "entry_count": self.entry_count,
            "chunk_count": self.chunk_count,
            "index_regenerated": self.index_regenerated,
        }
