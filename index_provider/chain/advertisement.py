"""Advertisement records and the builder that finalizes them."""

from __future__ import annotations

import enum
import hashlib
from dataclasses import dataclass, field, replace
from typing import Protocol, Sequence

from multiformats import CID, varint

from .. import codec
from ..codec import DEFAULT_HASH_FUNCTION
from ..errors import AppendRejected, EncodingError, PublishRejected
from .entries import NO_ENTRIES, EncodedChunk, EntryChunk

DEFAULT_PROTOCOL_ID = 0x300010
_SHA2_256 = 0x12


@dataclass(slots=True, frozen=True)
class Metadata:
    """Retrieval protocol identifier plus its opaque payload."""

    protocol_id: int = DEFAULT_PROTOCOL_ID
    data: bytes = b""

    def to_bytes(self) -> bytes:
        return varint.encode(self.protocol_id) + self.data

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Metadata":
        if not raw:
            raise EncodingError("Metadata must carry a protocol identifier")
        protocol_id, consumed = codec.read_varint(raw, 0)
        return cls(protocol_id=protocol_id, data=bytes(raw[consumed:]))


@dataclass(slots=True, frozen=True)
class Unsigned:
    """Signature slot left empty."""

    def to_bytes(self) -> bytes:
        return b""


@dataclass(slots=True, frozen=True)
class Signed:
    value: bytes

    def to_bytes(self) -> bytes:
        return self.value


Signature = Unsigned | Signed
UNSIGNED = Unsigned()


class Signer(Protocol):
    """Produces a signature over an advertisement's signing payload."""

    def sign(self, payload: bytes) -> Signature:
        ...


class UnsignedSigner:
    def sign(self, payload: bytes) -> Signature:
        return UNSIGNED


def _signature_from_bytes(raw: bytes) -> Signature:
    return Signed(raw) if raw else UNSIGNED


@dataclass(slots=True, frozen=True)
class Advertisement:
    """Immutable announcement (or retraction) of a provider's content."""

    provider: str
    addresses: tuple[str, ...]
    context_id: bytes
    metadata: Metadata = field(default_factory=Metadata)
    entries: CID = NO_ENTRIES
    previous_id: CID | None = None
    is_rm: bool = False
    signature: Signature = UNSIGNED

    @property
    def has_entries(self) -> bool:
        return self.entries != NO_ENTRIES

    def to_node(self) -> dict:
        node: dict = {
            "Provider": self.provider,
            "Addresses": list(self.addresses),
            "Signature": self.signature.to_bytes(),
            "Entries": self.entries,
            "ContextID": self.context_id,
            "Metadata": self.metadata.to_bytes(),
            "IsRm": self.is_rm,
        }
        if self.previous_id is not None:
            node["PreviousID"] = self.previous_id
        return node

    def encode(self) -> bytes:
        return codec.encode(self.to_node())

    def cid(self, *, hash_function: str = DEFAULT_HASH_FUNCTION) -> CID:
        return codec.link_for(self.encode(), hash_function=hash_function)

    def signature_payload(self) -> bytes:
        """sha2-256 multihash over the signed fields, in wire order."""
        parts = [
            bytes(self.previous_id) if self.previous_id is not None else b"",
            bytes(self.entries),
            self.provider.encode("utf-8"),
            *(address.encode("utf-8") for address in self.addresses),
            self.metadata.to_bytes(),
            b"\x01" if self.is_rm else b"\x00",
        ]
        return codec.encode_multihash(_SHA2_256, hashlib.sha256(b"".join(parts)).digest())

    def signed_by(self, signer: Signer) -> "Advertisement":
        return replace(self, signature=signer.sign(self.signature_payload()))

    @classmethod
    def from_node(cls, node: object) -> "Advertisement":
        if not isinstance(node, dict):
            raise EncodingError(
                "Advertisement must be a map", details={"type": type(node).__name__}
            )
        try:
            provider = node["Provider"]
            addresses = node["Addresses"]
            context_id = node["ContextID"]
            metadata = node["Metadata"]
            is_rm = node["IsRm"]
            entries = node["Entries"]
        except KeyError as exc:
            raise EncodingError(
                "Advertisement is missing a field", details={"field": exc.args[0]}
            ) from exc
        signature = node.get("Signature", b"")
        previous_id = node.get("PreviousID")
        if not isinstance(provider, str):
            raise EncodingError("Advertisement 'Provider' must be a string")
        if not isinstance(addresses, list) or not all(isinstance(a, str) for a in addresses):
            raise EncodingError("Advertisement 'Addresses' must be a list of strings")
        if not isinstance(context_id, bytes) or not isinstance(metadata, bytes):
            raise EncodingError("Advertisement 'ContextID' and 'Metadata' must be bytes")
        if not isinstance(signature, bytes):
            raise EncodingError("Advertisement 'Signature' must be bytes")
        if not isinstance(is_rm, bool):
            raise EncodingError("Advertisement 'IsRm' must be a boolean")
        if not isinstance(entries, CID):
            raise EncodingError("Advertisement 'Entries' must be a link")
        if previous_id is not None and not isinstance(previous_id, CID):
            raise EncodingError("Advertisement 'PreviousID' must be a link")
        return cls(
            provider=provider,
            addresses=tuple(addresses),
            context_id=context_id,
            metadata=Metadata.from_bytes(metadata),
            entries=entries,
            previous_id=previous_id,
            is_rm=is_rm,
            signature=_signature_from_bytes(signature),
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "Advertisement":
        return cls.from_node(codec.decode(data))


class AdState(str, enum.Enum):
    DRAFT = "draft"
    ACCUMULATING = "accumulating"
    PUBLISHED = "published"


class AdvertisementBuilder:
    """Collects the entries chain of one advertisement until it is published.

    The first chunk appended becomes the entries root. Every later chunk must
    be the one announced by its predecessor's ``Next`` link, and publishing is
    refused while an announced successor is still missing.
    """

    def __init__(self, draft: Advertisement, *, hash_function: str = DEFAULT_HASH_FUNCTION) -> None:
        self._draft = draft
        self._hash_function = hash_function
        self._root: CID | None = None
        self._expected_next: CID | None = None
        self._chunks = 0
        self.state = AdState.DRAFT

    @property
    def draft(self) -> Advertisement:
        return self._draft

    @property
    def chunk_count(self) -> int:
        return self._chunks

    def open(self) -> None:
        if self.state is not AdState.DRAFT:
            raise AppendRejected(
                "Advertisement is already open", details={"state": self.state.value}
            )
        self.state = AdState.ACCUMULATING

    def append(self, data: bytes) -> EncodedChunk:
        """Validate an encoded chunk and thread it onto the chain."""
        if self.state is not AdState.ACCUMULATING:
            raise AppendRejected(
                "Advertisement is not accepting entries", details={"state": self.state.value}
            )
        if self._draft.is_rm:
            raise AppendRejected("Removal advertisements carry no entries")
        try:
            chunk = EntryChunk.from_bytes(data)
        except EncodingError as exc:
            raise AppendRejected("Malformed entry chunk", details=exc.details) from exc
        cid = codec.link_for(data, hash_function=self._hash_function)
        if self._root is None:
            self._root = cid
        elif self._expected_next is None:
            raise AppendRejected("Entries chain is already terminated", details={"chunk": str(cid)})
        elif cid != self._expected_next:
            raise AppendRejected(
                "Chunk does not match the announced next link",
                details={"expected": str(self._expected_next), "received": str(cid)},
            )
        self._expected_next = chunk.next
        self._chunks += 1
        return EncodedChunk(cid=cid, data=data, size=len(chunk.entries))

    def build(self, signer: Signer) -> Advertisement:
        if self.state is not AdState.ACCUMULATING:
            raise PublishRejected(
                "Advertisement cannot be published", details={"state": self.state.value}
            )
        if self._expected_next is not None:
            raise PublishRejected(
                "Entries chain is incomplete", details={"missing": str(self._expected_next)}
            )
        ad = replace(self._draft, entries=self._root if self._root is not None else NO_ENTRIES)
        self.state = AdState.PUBLISHED
        return ad.signed_by(signer)


def new_advertisement(
    *,
    provider: str,
    addresses: Sequence[str],
    context_id: bytes,
    metadata: Metadata | None = None,
    previous_id: CID | None = None,
    is_rm: bool = False,
) -> Advertisement:
    return Advertisement(
        provider=provider,
        addresses=tuple(addresses),
        context_id=context_id,
        metadata=metadata or Metadata(),
        previous_id=previous_id,
        is_rm=is_rm,
    )


__all__ = [
    "AdState",
    "Advertisement",
    "AdvertisementBuilder",
    "DEFAULT_PROTOCOL_ID",
    "Metadata",
    "Signature",
    "Signed",
    "Signer",
    "UNSIGNED",
    "Unsigned",
    "UnsignedSigner",
    "new_advertisement",
]
