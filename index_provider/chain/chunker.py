"""Fixed-size batching of index entries."""

from __future__ import annotations

from typing import Generic, Iterable, Iterator, TypeVar

DEFAULT_CHUNK_SIZE = 10

T = TypeVar("T")


class ChunkAccumulator(Generic[T]):
    """Buffers items and hands out batches of exactly ``size`` items.

    At most one batch is open at a time; ``flush`` returns the remainder and
    never produces an empty batch.
    """

    def __init__(self, size: int = DEFAULT_CHUNK_SIZE) -> None:
        if size < 1:
            raise ValueError(f"Chunk size must be positive, got {size}")
        self._size = size
        self._buffer: list[T] = []

    @property
    def size(self) -> int:
        return self._size

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def add(self, item: T) -> list[T] | None:
        self._buffer.append(item)
        if len(self._buffer) < self._size:
            return None
        batch, self._buffer = self._buffer, []
        return batch

    def flush(self) -> list[T] | None:
        if not self._buffer:
            return None
        batch, self._buffer = self._buffer, []
        return batch

    def batches(self, items: Iterable[T]) -> Iterator[list[T]]:
        for item in items:
            batch = self.add(item)
            if batch is not None:
                yield batch
        tail = self.flush()
        if tail is not None:
            yield tail


def iter_batches(items: Iterable[T], size: int = DEFAULT_CHUNK_SIZE) -> Iterator[list[T]]:
    return ChunkAccumulator[T](size).batches(items)


__all__ = ["ChunkAccumulator", "DEFAULT_CHUNK_SIZE", "iter_batches"]
