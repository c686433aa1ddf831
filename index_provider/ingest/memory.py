"""In-process ingest service.

Implements the service side of the publish protocol against an in-memory
block store: handles are allocated on ``create``, chunks are validated and
stored under their CIDs, and ``publish`` signs the advertisement, stores it
and moves the head. Used for dry runs and as the reference peer in tests.
"""

from __future__ import annotations

import random
import re
from typing import Iterator

from multiformats import CID

from ..chain import (
    NO_ENTRIES,
    UNSIGNED,
    Advertisement,
    AdvertisementBuilder,
    EncodedChunk,
    EntryChunk,
    Signer,
    UnsignedSigner,
)
from ..codec import DEFAULT_HASH_FUNCTION, link_for
from ..errors import AppendRejected, CreateRejected, EncodingError, PublishRejected
from ..utils.logging import get_logger
from .base import EphemeralHandle

LOGGER = get_logger(__name__)

MAX_CONTEXT_ID_LEN = 64
_PEER_ID = re.compile(r"^[1-9A-HJ-NP-Za-km-z]+$")


class InMemoryIngestService:
    """``PublishClient`` whose remote side lives in this process."""

    def __init__(
        self,
        *,
        signer: Signer | None = None,
        hash_function: str = DEFAULT_HASH_FUNCTION,
        rng: random.Random | None = None,
    ) -> None:
        self._signer = signer or UnsignedSigner()
        self._hash_function = hash_function
        self._rng = rng or random.Random()
        self._blocks: dict[CID, bytes] = {}
        self._pending: dict[str, AdvertisementBuilder] = {}
        self._head: CID | None = None

    def create(self, draft: Advertisement) -> EphemeralHandle:
        try:
            ad = Advertisement.from_bytes(draft.encode())
        except EncodingError as exc:
            raise CreateRejected("Malformed advertisement", details=exc.details) from exc
        self._validate(ad)
        builder = AdvertisementBuilder(
            Advertisement(
                provider=ad.provider,
                addresses=ad.addresses,
                context_id=ad.context_id,
                metadata=ad.metadata,
                entries=NO_ENTRIES,
                previous_id=ad.previous_id,
                is_rm=ad.is_rm,
                signature=UNSIGNED,
            ),
            hash_function=self._hash_function,
        )
        builder.open()
        handle = str(self._rng.getrandbits(63))
        while handle in self._pending:
            handle = str(self._rng.getrandbits(63))
        self._pending[handle] = builder
        LOGGER.debug(
            "Allocated advertisement handle",
            extra={"event": "ingest.create", "handle": handle},
        )
        return EphemeralHandle(handle)

    def append_chunk(self, handle: EphemeralHandle, chunk: EncodedChunk) -> str:
        builder = self._pending.get(handle.value)
        if builder is None:
            raise AppendRejected("Unknown advertisement handle", details={"handle": handle.value})
        stored = builder.append(chunk.data)
        self._blocks[stored.cid] = stored.data
        return str(stored.cid)

    def publish(self, handle: EphemeralHandle) -> CID:
        builder = self._pending.get(handle.value)
        if builder is None:
            raise PublishRejected("Unknown advertisement handle", details={"handle": handle.value})
        if builder.draft.previous_id != self._head:
            raise PublishRejected(
                "Previous advertisement does not match the current head",
                details={
                    "previous": str(builder.draft.previous_id),
                    "head": str(self._head),
                },
            )
        ad = builder.build(self._signer)
        del self._pending[handle.value]
        data = ad.encode()
        cid = link_for(data, hash_function=self._hash_function)
        self._blocks[cid] = data
        self._head = cid
        LOGGER.info(
            "Advertisement published",
            extra={"event": "ingest.publish", "cid": str(cid), "entries": str(ad.entries)},
        )
        return cid

    def head(self) -> CID | None:
        return self._head

    def get(self, cid: CID) -> bytes | None:
        return self._blocks.get(cid)

    def advertisement(self, cid: CID) -> Advertisement:
        data = self._blocks.get(cid)
        if data is None:
            raise KeyError(str(cid))
        return Advertisement.from_bytes(data)

    def advertisements(self, start: CID | None = None) -> Iterator[tuple[CID, Advertisement]]:
        """Walk the advertisement chain from ``start`` (default: head) backwards."""
        cursor = start if start is not None else self._head
        while cursor is not None:
            ad = self.advertisement(cursor)
            yield cursor, ad
            cursor = ad.previous_id

    def entries(self, root: CID) -> Iterator[bytes]:
        """Yield every multihash reachable from an entries root, head to tail."""
        cursor: CID | None = None if root == NO_ENTRIES else root
        while cursor is not None:
            data = self._blocks.get(cursor)
            if data is None:
                raise KeyError(str(cursor))
            chunk = EntryChunk.from_bytes(data)
            yield from chunk.entries
            cursor = chunk.next

    @property
    def pending_handles(self) -> list[str]:
        return list(self._pending)

    def _validate(self, ad: Advertisement) -> None:
        if not ad.provider or not _PEER_ID.match(ad.provider):
            raise CreateRejected("Malformed provider identifier", details={"provider": ad.provider})
        bad = [address for address in ad.addresses if not address.startswith("/")]
        if bad:
            raise CreateRejected("Malformed provider addresses", details={"addresses": bad})
        if len(ad.context_id) > MAX_CONTEXT_ID_LEN:
            raise CreateRejected(
                "Context ID too long",
                details={"length": len(ad.context_id), "max": MAX_CONTEXT_ID_LEN},
            )


__all__ = ["InMemoryIngestService", "MAX_CONTEXT_ID_LEN"]
