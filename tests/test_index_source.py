from __future__ import annotations

import logging
from pathlib import Path

import pytest
from multiformats import varint

from index_provider import codec
from index_provider.archive import (
    CAR_INDEX_SORTED,
    CAR_MULTIHASH_INDEX_SORTED,
    CarReader,
    generate_iterable_index,
    iterable_index,
    open_index,
    write_car,
)
from index_provider.errors import IndexUnavailable

from conftest import make_blocks, raw_block


def test_embedded_multihash_index_is_used(car_path: Path) -> None:
    write_car(car_path, make_blocks(5), index_codec=CAR_MULTIHASH_INDEX_SORTED)

    source = open_index(car_path)

    assert not source.regenerated
    assert source.origin == str(car_path)
    assert len(list(source.multihashes())) == 5


@pytest.mark.parametrize(
    ("version", "index_codec", "reason"),
    [(1, None, "missing"), (2, None, "missing"), (2, CAR_INDEX_SORTED, "codec")],
)
def test_index_is_regenerated_when_not_iterable(
    car_path: Path,
    caplog: pytest.LogCaptureFixture,
    version: int,
    index_codec: int | None,
    reason: str,
) -> None:
    write_car(car_path, make_blocks(5), version=version, index_codec=index_codec)

    with caplog.at_level(logging.INFO):
        source = open_index(car_path)

    assert source.regenerated
    events = [r for r in caplog.records if getattr(r, "event", None) == "index.generate"]
    assert events and events[0].reason == reason


def test_regenerated_order_matches_embedded_order(tmp_path: Path) -> None:
    blocks = make_blocks(12)
    embedded = write_car(tmp_path / "a.car", blocks, index_codec=CAR_MULTIHASH_INDEX_SORTED)
    legacy = write_car(tmp_path / "b.car", blocks, index_codec=CAR_INDEX_SORTED)

    assert list(open_index(embedded)) == list(open_index(legacy))


def test_regeneration_is_deterministic(car_path: Path) -> None:
    write_car(car_path, make_blocks(20), version=1)

    assert list(open_index(car_path)) == list(open_index(car_path))


def test_duplicate_blocks_are_yielded_once(car_path: Path) -> None:
    blocks = make_blocks(3)
    write_car(car_path, [*blocks, blocks[1], raw_block(b"block-0")], version=1)

    hashes = list(open_index(car_path).multihashes())

    assert len(hashes) == 3
    assert sorted(hashes) == sorted(bytes(cid.digest) for cid, _ in blocks)


def test_generate_from_reader(car_path: Path) -> None:
    write_car(car_path, make_blocks(4), version=2)

    with CarReader.open(car_path) as reader:
        index = generate_iterable_index(reader)
        source = iterable_index(reader)

    assert len(index) == 4
    assert list(source) == list(index.for_each())


def test_unopenable_archive_raises(tmp_path: Path) -> None:
    with pytest.raises(IndexUnavailable):
        open_index(tmp_path / "nope.car")


def test_corrupt_payload_fails_regeneration(car_path: Path) -> None:
    write_car(car_path, make_blocks(3), version=1)
    data = bytearray(car_path.read_bytes())
    # clobber the length prefix of the first section
    header_len = data[0] + 1
    data[header_len] = 0
    car_path.write_bytes(bytes(data))

    with pytest.raises(IndexUnavailable):
        open_index(car_path)


def test_corrupt_embedded_index_raises(car_path: Path) -> None:
    write_car(car_path, make_blocks(3), index_codec=CAR_MULTIHASH_INDEX_SORTED)
    car_path.write_bytes(car_path.read_bytes()[:-3])

    with pytest.raises(IndexUnavailable):
        open_index(car_path)


def test_short_section_with_cidv0_prefix_is_unavailable(car_path: Path) -> None:
    header = codec.encode({"roots": [], "version": 1})
    body = b"\x12\x20abc"
    car_path.write_bytes(
        varint.encode(len(header)) + header + varint.encode(len(body)) + body
    )

    with pytest.raises(IndexUnavailable):
        open_index(car_path)
