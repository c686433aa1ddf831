"""Error taxonomy for index publishing runs."""

from __future__ import annotations

import json
from typing import Any, Mapping


class IndexProviderError(RuntimeError):
    """Base class for failures that abort a publish run."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = dict(details or {})

    def __str__(self) -> str:
        base = super().__str__()
        if not self.details:
            return base
        try:
            detail_repr = json.dumps(self.details, ensure_ascii=False, default=str)
        except TypeError:
            detail_repr = str(self.details)
        return f"{base} | details: {detail_repr}"


class IndexUnavailable(IndexProviderError):
    """Raised when an archive index can neither be read nor regenerated."""


class EncodingError(IndexProviderError):
    """Raised when a record cannot be canonically encoded or decoded."""


class ProtocolError(IndexProviderError):
    """Raised when the ingest service rejects a call."""


class CreateRejected(ProtocolError):
    """The service could not allocate a handle for a new advertisement."""


class AppendRejected(ProtocolError):
    """The service refused an entry chunk."""


class PublishRejected(ProtocolError):
    """The service refused to finalize an advertisement."""


__all__ = [
    "AppendRejected",
    "CreateRejected",
    "EncodingError",
    "IndexProviderError",
    "IndexUnavailable",
    "ProtocolError",
    "PublishRejected",
]
