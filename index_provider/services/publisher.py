"""Drives the create / entryChunk / publish protocol for one advertisement."""

from __future__ import annotations

import os
from dataclasses import replace
from typing import Iterable

from ..archive import open_index
from ..chain import (
    DEFAULT_CHUNK_SIZE,
    AdState,
    Advertisement,
    EntryChain,
    EntryChainBuilder,
    iter_batches,
    new_advertisement,
)
from ..chain.entries import DEFAULT_SPOOL_MAX_MEMORY
from ..codec import DEFAULT_HASH_FUNCTION
from ..ingest import PublishClient
from ..utils.logging import get_logger
from .models import PublishRequest, PublishResult

LOGGER = get_logger(__name__)


class AdvertisementPublisher:
    """Builds the entries chain locally, then replays it against a client.

    The whole chain is linked before ``create`` is called, so a broken archive
    never leaves a handle behind on the service. Any protocol error aborts the
    run; the service keeps the unfinished handle unreferenced.
    """

    def __init__(
        self,
        client: PublishClient,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        hash_function: str = DEFAULT_HASH_FUNCTION,
        spool_max_memory: int = DEFAULT_SPOOL_MAX_MEMORY,
    ) -> None:
        if chunk_size < 1:
            raise ValueError(f"Chunk size must be positive, got {chunk_size}")
        self._client = client
        self._chunk_size = chunk_size
        self._chain_builder = EntryChainBuilder(
            hash_function=hash_function, spool_max_memory=spool_max_memory
        )
        self.state: AdState | None = None

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    def build_chain(self, hashes: Iterable[bytes]) -> EntryChain:
        return self._chain_builder.build(iter_batches(hashes, self._chunk_size))

    def publish(self, request: PublishRequest, hashes: Iterable[bytes]) -> PublishResult:
        with self.build_chain(hashes) as chain:
            return self._send(request, chain)

    def publish_archive(
        self, path: str | os.PathLike[str], request: PublishRequest
    ) -> PublishResult:
        source = open_index(path)
        LOGGER.info(
            "Publishing archive",
            extra={
                "event": "publish.archive",
                "path": str(path),
                "regenerated": source.regenerated,
            },
        )
        result = self.publish(request, source.multihashes())
        result.index_regenerated = source.regenerated
        return result

    def publish_removal(self, request: PublishRequest) -> PublishResult:
        return self.publish(replace(request, is_rm=True), ())

    def _draft(self, request: PublishRequest) -> Advertisement:
        return new_advertisement(
            provider=request.provider,
            addresses=request.addresses,
            context_id=request.context_id,
            metadata=request.metadata,
            previous_id=request.previous_id,
            is_rm=request.is_rm,
        )

    def _send(self, request: PublishRequest, chain: EntryChain) -> PublishResult:
        self.state = AdState.DRAFT
        handle = self._client.create(self._draft(request))
        self.state = AdState.ACCUMULATING
        LOGGER.info(
            "Advertisement opened",
            extra={
                "event": "publish.create",
                "handle": handle.value,
                "chunks": chain.chunk_count,
                "is_rm": request.is_rm,
            },
        )

        acks: list[str] = []
        try:
            for number, chunk in enumerate(chain, start=1):
                acks.append(self._client.append_chunk(handle, chunk))
                LOGGER.debug(
                    "Entry chunk sent",
                    extra={
                        "event": "publish.chunk",
                        "handle": handle.value,
                        "number": number,
                        "cid": str(chunk.cid),
                        "size": chunk.size,
                    },
                )
            advertisement_id = self._client.publish(handle)
        except Exception:
            LOGGER.error(
                "Publish aborted; handle left unfinished",
                extra={"event": "publish.aborted", "handle": handle.value, "sent": len(acks)},
            )
            raise

        self.state = AdState.PUBLISHED
        LOGGER.info(
            "Advertisement published",
            extra={
                "event": "publish.done",
                "cid": str(advertisement_id),
                "entries": str(chain.root),
                "entry_count": chain.entry_count,
            },
        )
        return PublishResult(
            advertisement_id=advertisement_id,
            handle=handle.value,
            entries_root=chain.root,
            entry_count=chain.entry_count,
            chunk_count=chain.chunk_count,
            acks=acks,
        )


__all__ = ["AdvertisementPublisher"]
