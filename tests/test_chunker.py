from __future__ import annotations

import math

import pytest

from index_provider.chain import ChunkAccumulator, iter_batches


@pytest.mark.parametrize(
    ("total", "size"),
    [(0, 10), (1, 10), (9, 10), (10, 10), (11, 10), (25, 10), (30, 10), (7, 1), (5, 3)],
)
def test_batch_count_and_sizes(total: int, size: int) -> None:
    items = list(range(total))
    batches = list(iter_batches(items, size))

    assert len(batches) == math.ceil(total / size)
    assert all(len(batch) == size for batch in batches[:-1])
    if total:
        expected_last = total % size or size
        assert len(batches[-1]) == expected_last
    assert [item for batch in batches for item in batch] == items


def test_scenario_sizes_for_twenty_five_items() -> None:
    assert [len(b) for b in iter_batches(range(25), 10)] == [10, 10, 5]


def test_accumulator_keeps_one_open_batch() -> None:
    accumulator: ChunkAccumulator[int] = ChunkAccumulator(3)

    assert accumulator.add(1) is None
    assert accumulator.add(2) is None
    assert accumulator.pending == 2
    assert accumulator.add(3) == [1, 2, 3]
    assert accumulator.pending == 0
    assert accumulator.add(4) is None
    assert accumulator.flush() == [4]
    assert accumulator.flush() is None


def test_flush_never_emits_empty_batch() -> None:
    assert ChunkAccumulator(4).flush() is None
    assert list(iter_batches([], 4)) == []


@pytest.mark.parametrize("size", [0, -1])
def test_non_positive_size_rejected(size: int) -> None:
    with pytest.raises(ValueError):
        ChunkAccumulator(size)
