"""Clients for the advertisement ingest protocol."""

from __future__ import annotations

from .base import EphemeralHandle, PublishClient
from .http import HttpPublishClient, IngestRoutes
from .memory import InMemoryIngestService

__all__ = [
    "EphemeralHandle",
    "HttpPublishClient",
    "InMemoryIngestService",
    "IngestRoutes",
    "PublishClient",
]
