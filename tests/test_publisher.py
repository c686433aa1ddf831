from __future__ import annotations

import random
from pathlib import Path
from typing import Callable

import pytest
from multiformats import CID

from index_provider.archive import CAR_INDEX_SORTED, open_index, write_car
from index_provider.chain import NO_ENTRIES, AdState, Advertisement, EncodedChunk
from index_provider.errors import AppendRejected, CreateRejected, IndexUnavailable
from index_provider.ingest import EphemeralHandle, InMemoryIngestService
from index_provider.services import AdvertisementPublisher, PublishRequest

from conftest import ADDRESSES, PROVIDER, make_blocks


class RecordingClient:
    """Forwards to an in-memory service and records every protocol call."""

    def __init__(self, service: InMemoryIngestService | None = None) -> None:
        self.service = service or InMemoryIngestService(rng=random.Random(1))
        self.calls: list[str] = []
        self.chunks: list[EncodedChunk] = []

    def create(self, draft: Advertisement) -> EphemeralHandle:
        self.calls.append("create")
        return self.service.create(draft)

    def append_chunk(self, handle: EphemeralHandle, chunk: EncodedChunk) -> str:
        self.calls.append("entryChunk")
        self.chunks.append(chunk)
        return self.service.append_chunk(handle, chunk)

    def publish(self, handle: EphemeralHandle) -> CID:
        self.calls.append("publish")
        return self.service.publish(handle)


class FailingAppendClient(RecordingClient):
    def append_chunk(self, handle: EphemeralHandle, chunk: EncodedChunk) -> str:
        if len(self.chunks) == 1:
            self.calls.append("entryChunk")
            raise AppendRejected("connection reset")
        return super().append_chunk(handle, chunk)


def _request(**overrides: object) -> PublishRequest:
    fields: dict[str, object] = {
        "provider": PROVIDER,
        "addresses": list(ADDRESSES),
        "context_id": b"archive.car",
    }
    fields.update(overrides)
    return PublishRequest(**fields)  # type: ignore[arg-type]


def test_twenty_five_hashes_send_three_chunks(hashes: Callable[[int], list[bytes]]) -> None:
    client = RecordingClient()
    publisher = AdvertisementPublisher(client, chunk_size=10)

    result = publisher.publish(_request(), hashes(25))

    assert client.calls == ["create", "entryChunk", "entryChunk", "entryChunk", "publish"]
    assert [chunk.size for chunk in client.chunks] == [10, 10, 5]
    assert result.chunk_count == 3
    assert result.entry_count == 25
    assert result.entries_root == client.chunks[0].cid
    assert publisher.state is AdState.PUBLISHED
    assert list(client.service.entries(result.entries_root)) == hashes(25)


def test_archive_publish_is_deterministic(tmp_path: Path) -> None:
    car = write_car(tmp_path / "legacy.car", make_blocks(25), index_codec=CAR_INDEX_SORTED)

    first = AdvertisementPublisher(RecordingClient()).publish_archive(car, _request())
    second_client = RecordingClient()
    second = AdvertisementPublisher(second_client).publish_archive(car, _request())

    assert first.index_regenerated and second.index_regenerated
    assert first.advertisement_id == second.advertisement_id
    assert first.entries_root == second.entries_root
    sent = [mh for chunk in second_client.chunks for mh in chunk.decode().entries]
    assert sent == list(open_index(car).multihashes())


def test_create_failure_stops_the_run(hashes: Callable[[int], list[bytes]]) -> None:
    client = RecordingClient()
    publisher = AdvertisementPublisher(client)

    with pytest.raises(CreateRejected):
        publisher.publish(_request(provider="not a peer id"), hashes(25))

    assert client.calls == ["create"]
    assert publisher.state is AdState.DRAFT
    assert client.service.head() is None


def test_second_advertisement_links_to_first(hashes: Callable[[int], list[bytes]]) -> None:
    client = RecordingClient()
    publisher = AdvertisementPublisher(client)

    first = publisher.publish(_request(context_id=b"one"), hashes(5))
    second = publisher.publish(
        _request(context_id=b"two", previous_id=first.advertisement_id), hashes(12)
    )

    chain = list(client.service.advertisements())
    assert [cid for cid, _ in chain] == [second.advertisement_id, first.advertisement_id]
    assert [ad.context_id for _, ad in chain] == [b"two", b"one"]
    assert chain[-1][1].previous_id is None


def test_append_failure_aborts_without_publish(hashes: Callable[[int], list[bytes]]) -> None:
    client = FailingAppendClient()
    publisher = AdvertisementPublisher(client, chunk_size=4)

    with pytest.raises(AppendRejected):
        publisher.publish(_request(), hashes(12))

    assert client.calls == ["create", "entryChunk", "entryChunk"]
    assert publisher.state is AdState.ACCUMULATING
    assert client.service.head() is None


def test_removal_carries_no_entries() -> None:
    client = RecordingClient()

    result = AdvertisementPublisher(client).publish_removal(_request())

    assert client.calls == ["create", "publish"]
    assert result.entries_root == NO_ENTRIES
    assert result.entry_count == 0
    assert client.service.advertisement(result.advertisement_id).is_rm


def test_empty_input_publishes_no_entries() -> None:
    client = RecordingClient()

    result = AdvertisementPublisher(client).publish(_request(), [])

    assert client.calls == ["create", "publish"]
    assert client.service.advertisement(result.advertisement_id).entries == NO_ENTRIES
    assert result.entries_root == NO_ENTRIES


def test_unreadable_archive_never_calls_create(tmp_path: Path) -> None:
    client = RecordingClient()

    with pytest.raises(IndexUnavailable):
        AdvertisementPublisher(client).publish_archive(tmp_path / "missing.car", _request())

    assert client.calls == []


def test_chunk_size_must_be_positive() -> None:
    with pytest.raises(ValueError):
        AdvertisementPublisher(RecordingClient(), chunk_size=0)
