"""HTTP client for the ingest service's admin endpoints."""

from __future__ import annotations

from dataclasses import dataclass, replace
from urllib.parse import quote

import requests
from multiformats import CID

from ..chain import NO_ENTRIES, UNSIGNED, Advertisement, EncodedChunk
from ..errors import AppendRejected, CreateRejected, ProtocolError, PublishRejected
from ..utils.logging import get_logger
from .base import EphemeralHandle

LOGGER = get_logger(__name__)

_OCTET_STREAM = {"Content-Type": "application/octet-stream"}


@dataclass(slots=True, frozen=True)
class IngestRoutes:
    """URL layout of the admin API; per-advertisement routes take a handle."""

    base_url: str

    def _join(self, *parts: str) -> str:
        return "/".join([self.base_url.rstrip("/"), *parts])

    def create(self) -> str:
        return self._join("create")

    def entry_chunk(self, handle: EphemeralHandle) -> str:
        return self._join("adv", quote(handle.value, safe=""), "entryChunk")

    def publish(self, handle: EphemeralHandle) -> str:
        return self._join("adv", quote(handle.value, safe=""), "publish")


class HttpPublishClient:
    """``PublishClient`` speaking DAG-CBOR over HTTP via ``requests``."""

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self._routes = IngestRoutes(endpoint)
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def routes(self) -> IngestRoutes:
        return self._routes

    def create(self, draft: Advertisement) -> EphemeralHandle:
        body = replace(draft, entries=NO_ENTRIES, signature=UNSIGNED).encode()
        text = self._post(self._routes.create(), body, error=CreateRejected, action="create")
        value = text.strip()
        if not value:
            raise CreateRejected("Ingest service returned an empty handle")
        LOGGER.debug(
            "Advertisement handle allocated",
            extra={"event": "ingest.create", "handle": value},
        )
        return EphemeralHandle(value)

    def append_chunk(self, handle: EphemeralHandle, chunk: EncodedChunk) -> str:
        url = self._routes.entry_chunk(handle)
        return self._post(url, chunk.data, error=AppendRejected, action="entryChunk").strip()

    def publish(self, handle: EphemeralHandle) -> CID:
        url = self._routes.publish(handle)
        text = self._post(url, b"", error=PublishRejected, action="publish").strip()
        try:
            return CID.decode(text)
        except (KeyError, ValueError) as exc:
            raise PublishRejected(
                "Ingest service returned an invalid identifier",
                details={"body": text[:200], "reason": str(exc)},
            ) from exc

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "HttpPublishClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _post(
        self,
        url: str,
        data: bytes,
        *,
        error: type[ProtocolError],
        action: str,
    ) -> str:
        try:
            response = self._session.post(
                url, data=data, headers=_OCTET_STREAM, timeout=self._timeout
            )
            response.raise_for_status()
        except requests.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else None
            body = exc.response.text[:200] if exc.response is not None else ""
            raise error(
                f"Ingest service rejected {action}",
                details={"url": url, "status": status, "body": body},
            ) from exc
        except requests.RequestException as exc:
            raise error(
                f"Ingest {action} call failed",
                details={"url": url, "reason": str(exc)},
            ) from exc
        return response.text


__all__ = ["HttpPublishClient", "IngestRoutes"]
