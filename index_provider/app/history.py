"""Persistence helpers for published advertisement history."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from ..utils.file_helper import write_text_atomic


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _slugify(value: str) -> str:
    safe = [ch if ch.isalnum() or ch in {"-", "_"} else "-" for ch in value]
    slug = "".join(safe).strip("-")
    return slug or "default"


@dataclass(slots=True)
class PublishRecord:
    """One advertisement as it was accepted by the ingest service."""

    advertisement_id: str
    previous_id: str | None
    context_id: str
    is_rm: bool
    entry_count: int
    chunk_count: int
    endpoint: str | None = None
    published_at: str = field(default_factory=_now)

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "PublishRecord":
        previous = data.get("previous_id")
        endpoint = data.get("endpoint")
        return cls(
            advertisement_id=str(data["advertisement_id"]),
            previous_id=str(previous) if previous else None,
            context_id=str(data.get("context_id", "")),
            is_rm=bool(data.get("is_rm", False)),
            entry_count=int(data.get("entry_count", 0)),
            chunk_count=int(data.get("chunk_count", 0)),
            endpoint=str(endpoint) if endpoint else None,
            published_at=str(data.get("published_at", _now())),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "advertisement_id": self.advertisement_id,
            "previous_id": self.previous_id,
            "context_id": self.context_id,
            "is_rm": self.is_rm,
            "entry_count": self.entry_count,
            "chunk_count": self.chunk_count,
            "endpoint": self.endpoint,
            "published_at": self.published_at,
        }


@dataclass(slots=True)
class PublishHistory:
    """Advertisements published by one provider, oldest first."""

    provider: str
    records: list[PublishRecord] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "PublishHistory":
        raw_records = data.get("records", [])
        if not isinstance(raw_records, list):
            raise ValueError("Invalid publish history: 'records' must be a list")
        return cls(
            provider=str(data.get("provider", "")),
            records=[PublishRecord.from_dict(item) for item in raw_records],
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "provider": self.provider,
            "records": [record.to_dict() for record in self.records],
        }

    @property
    def head(self) -> str | None:
        return self.records[-1].advertisement_id if self.records else None

    def append(self, record: PublishRecord) -> None:
        self.records.append(record)


class PublishHistoryStore:
    """Stores publish history on disk under the configured state directory."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, provider: str) -> Path:
        return self._root / f"{_slugify(provider)}.json"

    def load(self, provider: str) -> PublishHistory:
        path = self.path_for(provider)
        if not path.exists():
            return PublishHistory(provider=provider)
        data = json.loads(path.read_text(encoding="utf-8"))
        return PublishHistory.from_dict(data)

    def save(self, history: PublishHistory) -> Path:
        path = self.path_for(history.provider)
        write_text_atomic(path, json.dumps(history.to_dict(), ensure_ascii=False, indent=2))
        return path

    def record(self, provider: str, record: PublishRecord) -> PublishHistory:
        history = self.load(provider)
        history.append(record)
        self.save(history)
        return history

    def providers(self) -> list[PublishHistory]:
        histories: list[PublishHistory] = []
        for path in sorted(self._root.glob("*.json")):
            data = json.loads(path.read_text(encoding="utf-8"))
            histories.append(PublishHistory.from_dict(data))
        return histories


__all__ = ["PublishHistory", "PublishHistoryStore", "PublishRecord"]
