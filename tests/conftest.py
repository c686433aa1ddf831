from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest
from multiformats import CID, multihash

PROVIDER = "12D3KooWTestProviderPeer"
ADDRESSES = ["/ip4/127.0.0.1/tcp/9999"]

Block = tuple[CID, bytes]


def raw_block(payload: bytes) -> Block:
    return CID("base32", 1, "raw", multihash.digest(payload, "sha2-256")), payload


def make_blocks(count: int, *, prefix: str = "block") -> list[Block]:
    return [raw_block(f"{prefix}-{number}".encode()) for number in range(count)]


@pytest.fixture
def blocks() -> Callable[..., list[Block]]:
    return make_blocks


@pytest.fixture
def hashes() -> Callable[[int], list[bytes]]:
    def _hashes(count: int) -> list[bytes]:
        return [bytes(cid.digest) for cid, _ in make_blocks(count)]

    return _hashes


@pytest.fixture
def car_path(tmp_path: Path) -> Path:
    return tmp_path / "archive.car"
