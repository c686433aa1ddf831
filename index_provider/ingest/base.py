"""Contracts for talking to an ingest service."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from multiformats import CID

from ..chain import Advertisement, EncodedChunk


@dataclass(slots=True, frozen=True)
class EphemeralHandle:
    """Server-assigned identifier of an advertisement under construction."""

    value: str

    def __str__(self) -> str:
        return self.value


class PublishClient(Protocol):
    """The three calls of the advertisement publish protocol.

    Implementations raise ``CreateRejected``, ``AppendRejected`` and
    ``PublishRejected`` respectively; policy wrappers (timeouts, retries) can
    be layered around any implementation without touching chain building.
    """

    def create(self, draft: Advertisement) -> EphemeralHandle:
        """Allocate a handle for ``draft``; its entries and signature are ignored."""

    def append_chunk(self, handle: EphemeralHandle, chunk: EncodedChunk) -> str:
        """Append one encoded entry chunk and return the service's acknowledgement."""

    def publish(self, handle: EphemeralHandle) -> CID:
        """Finalize the advertisement and return its permanent identifier."""
