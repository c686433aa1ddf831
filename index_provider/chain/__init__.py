"""Entry chunking, chain linking and advertisement records."""

from __future__ import annotations

from .advertisement import (
    AdState,
    Advertisement,
    AdvertisementBuilder,
    DEFAULT_PROTOCOL_ID,
    Metadata,
    Signed,
    Signer,
    UNSIGNED,
    Unsigned,
    UnsignedSigner,
    new_advertisement,
)
from .chunker import ChunkAccumulator, DEFAULT_CHUNK_SIZE, iter_batches
from .entries import NO_ENTRIES, EncodedChunk, EntryChain, EntryChainBuilder, EntryChunk

__all__ = [
    "AdState",
    "Advertisement",
    "AdvertisementBuilder",
    "ChunkAccumulator",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_PROTOCOL_ID",
    "EncodedChunk",
    "EntryChain",
    "EntryChainBuilder",
    "EntryChunk",
    "Metadata",
    "NO_ENTRIES",
    "Signed",
    "Signer",
    "UNSIGNED",
    "Unsigned",
    "UnsignedSigner",
    "iter_batches",
    "new_advertisement",
]
