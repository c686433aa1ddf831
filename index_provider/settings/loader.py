"""Helpers for loading configuration."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..chain import DEFAULT_CHUNK_SIZE, DEFAULT_PROTOCOL_ID, Metadata
from ..chain.entries import DEFAULT_SPOOL_MAX_MEMORY
from ..codec import DEFAULT_HASH_FUNCTION

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_NAME = "config.toml"
CONFIG_ENV_VAR = "INDEX_PROVIDER_CONFIG"
DEFAULT_ENDPOINT = "http://localhost:8071"


@dataclass(slots=True)
class ProviderSettings:
    id: str = ""
    addresses: list[str] = field(default_factory=list)
    protocol_id: int = DEFAULT_PROTOCOL_ID
    metadata: bytes = b""

    def metadata_record(self) -> Metadata:
        return Metadata(protocol_id=self.protocol_id, data=self.metadata)


@dataclass(slots=True)
class IngestSettings:
    endpoint: str = DEFAULT_ENDPOINT
    chunk_size: int = DEFAULT_CHUNK_SIZE
    hash_function: str = DEFAULT_HASH_FUNCTION
    spool_max_memory: int = DEFAULT_SPOOL_MAX_MEMORY


@dataclass(slots=True)
class HttpSettings:
    timeout: float = 30.0


@dataclass(slots=True)
class PathSettings:
    state_dir: Path

    @property
    def history_dir(self) -> Path:
        return self.state_dir / "history"


@dataclass(slots=True)
class AppConfig:
    provider: ProviderSettings
    ingest: IngestSettings
    http: HttpSettings
    paths: PathSettings
    source: Path | None = None


def _to_path(value: str | None, *, fallback: Path) -> Path:
    if not value:
        return fallback
    candidate = Path(value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def _config_path(explicit: str | os.PathLike[str] | None = None) -> tuple[Path, bool]:
    """Return the config location and whether the caller asked for it explicitly."""
    if explicit:
        candidate, required = Path(explicit), True
    else:
        env_value = os.environ.get(CONFIG_ENV_VAR)
        if env_value:
            candidate, required = Path(env_value), True
        else:
            candidate, required = PROJECT_ROOT / DEFAULT_CONFIG_NAME, False
    path = candidate if candidate.is_absolute() else PROJECT_ROOT / candidate
    return path, required


def _load_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise FileNotFoundError(f"Config file not found: {path}")
        return {}
    with path.open("rb") as fp:
        return tomllib.load(fp)


def _parse_hex(value: Any, *, name: str) -> bytes:
    text = str(value or "").strip()
    if text.startswith(("0x", "0X")):
        text = text[2:]
    try:
        return bytes.fromhex(text)
    except ValueError as exc:
        raise ValueError(f"Invalid hex value for '{name}': {value!r}") from exc


def _parse_int(value: Any, *, name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Invalid integer for '{name}': {value!r}")
    if isinstance(value, int):
        return value
    try:
        return int(str(value), 0)
    except ValueError as exc:
        raise ValueError(f"Invalid integer for '{name}': {value!r}") from exc


def load_config(config_path: str | os.PathLike[str] | None = None) -> AppConfig:
    path, required = _config_path(config_path)
    data = _load_toml(path, required=required)

    provider_section = data.get("provider", {})
    ingest_section = data.get("ingest", {})
    http_section = data.get("http", {})
    paths_section = data.get("paths", {})

    addresses = provider_section.get("addresses", [])
    if isinstance(addresses, str):
        addresses = [addresses]

    provider = ProviderSettings(
        id=str(provider_section.get("id", "")),
        addresses=[str(address) for address in addresses],
        protocol_id=_parse_int(
            provider_section.get("protocol_id", DEFAULT_PROTOCOL_ID), name="provider.protocol_id"
        ),
        metadata=_parse_hex(provider_section.get("metadata", ""), name="provider.metadata"),
    )

    chunk_size = _parse_int(
        ingest_section.get("chunk_size", DEFAULT_CHUNK_SIZE), name="ingest.chunk_size"
    )
    if chunk_size < 1:
        raise ValueError(f"'ingest.chunk_size' must be positive, got {chunk_size}")
    ingest = IngestSettings(
        endpoint=str(ingest_section.get("endpoint", DEFAULT_ENDPOINT)),
        chunk_size=chunk_size,
        hash_function=str(ingest_section.get("hash_function", DEFAULT_HASH_FUNCTION)),
        spool_max_memory=_parse_int(
            ingest_section.get("spool_max_memory", DEFAULT_SPOOL_MAX_MEMORY),
            name="ingest.spool_max_memory",
        ),
    )

    return AppConfig(
        provider=provider,
        ingest=ingest,
        http=HttpSettings(timeout=float(http_section.get("timeout", 30))),
        paths=PathSettings(
            state_dir=_to_path(
                paths_section.get("state_dir"), fallback=PROJECT_ROOT / "data" / "state"
            )
        ),
        source=path if data else None,
    )
