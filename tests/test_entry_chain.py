from __future__ import annotations

from typing import Callable

import pytest

from index_provider import codec
from index_provider.chain import (
    NO_ENTRIES,
    EntryChainBuilder,
    EntryChunk,
    iter_batches,
)
from index_provider.errors import EncodingError


def test_entry_chunk_encoding_is_reversible(hashes: Callable[[int], list[bytes]]) -> None:
    builder = EntryChainBuilder()
    tail = builder.link(hashes(2), None)
    chunk = EntryChunk(entries=tuple(hashes(5)), next=tail.cid)

    decoded = EntryChunk.from_bytes(chunk.encode())

    assert decoded == chunk
    assert decoded.entries == tuple(hashes(5))


def test_tail_chunk_omits_next() -> None:
    node = EntryChunk(entries=(b"\x00\x01a",)).to_node()

    assert node == {"Entries": [b"\x00\x01a"]}


def test_empty_chunk_is_rejected() -> None:
    with pytest.raises(EncodingError):
        EntryChunk(entries=())


@pytest.mark.parametrize(
    "node",
    [
        [],
        {"Entries": "nope"},
        {"Entries": [b"a"], "Next": "bafy"},
        {"Entries": [b"a"], "Extra": 1},
    ],
)
def test_malformed_chunk_nodes_are_rejected(node: object) -> None:
    with pytest.raises(EncodingError):
        EntryChunk.from_bytes(codec.encode(node))


def test_chain_is_linked_head_to_tail(hashes: Callable[[int], list[bytes]]) -> None:
    items = hashes(25)

    with EntryChainBuilder().build(iter_batches(items, 10)) as chain:
        chunks = list(chain)

    assert chain.entry_count == 25
    assert chain.chunk_count == 3
    assert [chunk.size for chunk in chunks] == [10, 10, 5]
    assert chain.root == chunks[0].cid
    decoded = [chunk.decode() for chunk in chunks]
    assert [d.next for d in decoded] == [chunks[1].cid, chunks[2].cid, None]
    assert [mh for d in decoded for mh in d.entries] == items
    for chunk in chunks:
        assert codec.link_for(chunk.data) == chunk.cid


def test_chain_has_no_repeated_nodes(hashes: Callable[[int], list[bytes]]) -> None:
    with EntryChainBuilder().build(iter_batches(hashes(40), 3)) as chain:
        cids = [chunk.cid for chunk in chain]

    assert len(cids) == len(set(cids)) == 14


def test_spilled_chain_matches_in_memory_chain(hashes: Callable[[int], list[bytes]]) -> None:
    items = hashes(60)

    with EntryChainBuilder(spool_max_memory=64).build(iter_batches(items, 7)) as spilled:
        spilled_chunks = [(c.cid, c.data) for c in spilled]
    with EntryChainBuilder().build(iter_batches(items, 7)) as in_memory:
        memory_chunks = [(c.cid, c.data) for c in in_memory]

    assert spilled_chunks == memory_chunks
    assert spilled.root == in_memory.root


def test_empty_input_resolves_to_no_entries() -> None:
    with EntryChainBuilder().build(iter_batches([], 10)) as chain:
        assert chain.is_empty
        assert chain.root == NO_ENTRIES
        assert list(chain) == []


def test_closed_chain_cannot_be_replayed(hashes: Callable[[int], list[bytes]]) -> None:
    chain = EntryChainBuilder().build(iter_batches(hashes(3), 2))
    chain.close()

    with pytest.raises(RuntimeError):
        list(chain)


def test_no_entries_sentinel_is_identity_cid() -> None:
    assert NO_ENTRIES.version == 1
    assert NO_ENTRIES.codec.name == "raw"
    assert NO_ENTRIES.hashfun.name == "identity"
    assert NO_ENTRIES.raw_digest == b"no-entries"


def test_unknown_hash_function_is_an_encoding_error() -> None:
    with pytest.raises(EncodingError):
        EntryChainBuilder(hash_function="not-a-hash").link([b"\x00\x01a"], None)
