# echoledger/core/types.py
import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Tuple, Union

from echoledger.core.encoding import DEFAULT_MAX_DEPTH, decode_wire, encode_wire
from echoledger.core.errors import MalformedWire

logger = logging.getLogger(__name__)


class HashingMode(str, Enum):
    """How content and revision hashes are computed. Fixed once per chain."""
    SCALAR = "scalar"   # one SHA-256 over the whole input
    TREE = "tree"       # Merkle root over leaves

    @classmethod
    def parse(cls, value: Any) -> "HashingMode":
        try:
            return cls(value)
        except ValueError:
            raise MalformedWire(f"Unknown hashing mode: {value!r}") from None


@dataclass(frozen=True)
class GenesisRevision:
    """First revision of a chain. Carries the chain's hashing mode."""
    file_hash: str
    hashing_mode: HashingMode
    timestamp: str
    content: Optional[bytes] = None

    revision_type = "genesis"
    previous_hash = ""

    def hash_fields(self) -> dict:
        return {
            "revision_type": self.revision_type,
            "previous_verification_hash": "",
            "local_timestamp": self.timestamp,
            "file_hash": self.file_hash,
            "hashing_mode": self.hashing_mode.value,
        }

    def to_dict(self) -> dict:
        d = self.hash_fields()
        if self.content is not None:
            d["content"] = encode_wire(self.content)
        return d


@dataclass(frozen=True)
class ContentRevision:
    """One chunk of audio (or the whole-file revision written at finalize)."""
    previous_hash: str
    file_hash: str
    timestamp: str
    content: Optional[bytes] = None

    revision_type = "content"

    def hash_fields(self) -> dict:
        return {
            "revision_type": self.revision_type,
            "previous_verification_hash": self.previous_hash,
            "local_timestamp": self.timestamp,
            "file_hash": self.file_hash,
        }

    def to_dict(self) -> dict:
        d = self.hash_fields()
        if self.content is not None:
            d["content"] = encode_wire(self.content)
        return d


@dataclass(frozen=True)
class SignatureRevision:
    """Attestation of previous_hash by signer_address."""
    previous_hash: str
    signature: str
    signer_address: str
    timestamp: str

    revision_type = "signature"
    content = None

    def hash_fields(self) -> dict:
        return {
            "revision_type": self.revision_type,
            "previous_verification_hash": self.previous_hash,
            "local_timestamp": self.timestamp,
            "signature": self.signature,
            "signature_wallet_address": self.signer_address,
        }

    def to_dict(self) -> dict:
        return self.hash_fields()


Revision = Union[GenesisRevision, ContentRevision, SignatureRevision]


def _require(d: dict, key: str, kind=str) -> Any:
    if key not in d:
        raise MalformedWire(f"Revision is missing '{key}'")
    value = d[key]
    if not isinstance(value, kind):
        raise MalformedWire(f"Revision field '{key}' has type {type(value).__name__}")
    return value


def revision_from_dict(d: Any) -> Revision:
    """Build a revision from its (already wire-decoded) dict form."""
    if not isinstance(d, dict):
        raise MalformedWire(f"Revision must be an object, got {type(d).__name__}")

    rtype = _require(d, "revision_type")
    content = d.get("content")
    if content is not None and not isinstance(content, bytes):
        raise MalformedWire("Revision content must be a tagged byte buffer")

    if rtype == "genesis":
        return GenesisRevision(
            file_hash=_require(d, "file_hash"),
            hashing_mode=HashingMode.parse(_require(d, "hashing_mode")),
            timestamp=_require(d, "local_timestamp"),
            content=content,
        )
    if rtype == "content":
        return ContentRevision(
            previous_hash=_require(d, "previous_verification_hash"),
            file_hash=_require(d, "file_hash"),
            timestamp=_require(d, "local_timestamp"),
            content=content,
        )
    if rtype == "signature":
        return SignatureRevision(
            previous_hash=_require(d, "previous_verification_hash"),
            signature=_require(d, "signature"),
            signer_address=_require(d, "signature_wallet_address"),
            timestamp=_require(d, "local_timestamp"),
        )
    raise MalformedWire(f"Unknown revision_type: {rtype!r}")


@dataclass(frozen=True)
class RevisionChain:
    """
    Ordered revision hash → revision map plus a file index.
    Never mutated: every builder operation returns a new chain.
    """
    revisions: Dict[str, Revision] = field(default_factory=dict)
    file_index: Dict[str, str] = field(default_factory=dict)
    mode: Optional[HashingMode] = None
    final_hash: Optional[str] = None

    @property
    def length(self) -> int:
        return len(self.revisions)

    @property
    def is_empty(self) -> bool:
        return not self.revisions

    @property
    def is_finalized(self) -> bool:
        return self.final_hash is not None

    @property
    def tip(self) -> Optional[str]:
        """Hash of the most recently added revision."""
        if not self.revisions:
            return None
        return next(reversed(self.revisions))

    @property
    def last_file_hash(self) -> Optional[str]:
        """Newest revision that has a file name (the whole-file revision once finalized)."""
        for revision_hash in reversed(self.revisions):
            if revision_hash in self.file_index:
                return revision_hash
        return None

    def __contains__(self, revision_hash: str) -> bool:
        return revision_hash in self.revisions

    def __iter__(self) -> Iterator[Tuple[str, Revision]]:
        return iter(self.revisions.items())

    def get(self, revision_hash: str) -> Optional[Revision]:
        return self.revisions.get(revision_hash)

    def appended(
        self,
        revision_hash: str,
        revision: Revision,
        file_name: Optional[str] = None,
        final: bool = False,
    ) -> "RevisionChain":
        revisions = dict(self.revisions)
        revisions[revision_hash] = revision
        file_index = dict(self.file_index)
        if file_name is not None:
            file_index[revision_hash] = file_name
        mode = self.mode
        if isinstance(revision, GenesisRevision):
            mode = revision.hashing_mode
        return replace(
            self,
            revisions=revisions,
            file_index=file_index,
            mode=mode,
            final_hash=revision_hash if final else self.final_hash,
        )

    def to_dict(self) -> dict:
        return {
            "revisions": {h: r.to_dict() for h, r in self.revisions.items()},
            "file_index": dict(self.file_index),
        }

    @classmethod
    def from_dict(cls, d: Any) -> "RevisionChain":
        """Build from a wire-decoded {"revisions": ..., "file_index": ...} dict."""
        if not isinstance(d, dict):
            raise MalformedWire("aquaTree must be an object")
        raw_revisions = d.get("revisions")
        raw_index = d.get("file_index", {})
        if not isinstance(raw_revisions, dict) or not isinstance(raw_index, dict):
            raise MalformedWire("aquaTree needs 'revisions' and 'file_index' objects")

        revisions = {}
        mode = None
        for revision_hash, raw in raw_revisions.items():
            revision = revision_from_dict(raw)
            if isinstance(revision, GenesisRevision) and mode is None:
                mode = revision.hashing_mode
            revisions[revision_hash] = revision

        for name in raw_index.values():
            if not isinstance(name, str):
                raise MalformedWire("file_index values must be file names")

        return cls(revisions=revisions, file_index=dict(raw_index), mode=mode)


@dataclass(frozen=True)
class WitnessCheckpoint:
    """Public broadcast anchoring a chain hash. Lives beside the chain, never in it."""
    chunk_index: int                # zero-based
    verification_hash: str
    event_id: str
    endpoints: Tuple[str, ...] = ()
    timestamp: int = 0              # epoch millis

    @property
    def chunk_number(self) -> int:
        return self.chunk_index + 1

    def to_dict(self) -> dict:
        return {
            "chunkIndex": self.chunk_index,
            "verificationHash": self.verification_hash,
            "eventId": self.event_id,
            "endpoints": list(self.endpoints),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, d: Any) -> "WitnessCheckpoint":
        if not isinstance(d, dict):
            raise MalformedWire("Witness entry must be an object")
        try:
            return cls(
                chunk_index=int(d["chunkIndex"]),
                verification_hash=str(d.get("verificationHash", "")),
                event_id=str(d["eventId"]),
                endpoints=tuple(d.get("endpoints", d.get("relays", ()))),
                timestamp=int(d.get("timestamp", 0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedWire(f"Malformed witness entry: {e}") from e


def _meta_number(meta: dict, key: str, cast, default):
    value = meta.get(key)
    if value is None or isinstance(value, bool):
        return default
    try:
        return cast(value)
    except (TypeError, ValueError, OverflowError):
        logger.warning("Ignoring metadata %s=%r", key, value)
        return default


def _meta_text(meta: dict, key: str) -> Optional[str]:
    value = meta.get(key)
    return value if isinstance(value, str) else None


@dataclass(frozen=True)
class ProofBundle:
    """Export unit: finished chain plus recording metadata and witnesses."""
    chain: RevisionChain
    chunk_count: int = 0
    chunk_duration: float = 0.0
    total_duration: float = 0.0
    signer_identity: Optional[str] = None
    anchor_identity: Optional[str] = None
    witnesses: Tuple[WitnessCheckpoint, ...] = ()

    def to_dict(self) -> dict:
        return {
            "aquaTree": self.chain.to_dict(),
            "metadata": {
                "totalChunks": self.chunk_count,
                "duration": self.total_duration,
                "chunkDuration": self.chunk_duration,
                "signer": self.signer_identity,
                "anchorIdentity": self.anchor_identity,
                "witnesses": [w.to_dict() for w in self.witnesses],
            },
        }

    def dumps(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> "ProofBundle":
        """Import an exported bundle. Raises MalformedWire when the chain or its wire encoding is unusable."""
        if not isinstance(data, dict) or "aquaTree" not in data:
            raise MalformedWire("Proof bundle must be an object with an 'aquaTree'")
        decoded = decode_wire(data, max_depth=max_depth)
        chain = RevisionChain.from_dict(decoded["aquaTree"])

        # Metadata rides beside the chain and proves nothing; bad values fall back to defaults
        meta = decoded.get("metadata")
        if not isinstance(meta, dict):
            if meta is not None:
                logger.warning("Ignoring non-object metadata (%s)", type(meta).__name__)
            meta = {}
        raw_witnesses = meta.get("witnesses")
        if not isinstance(raw_witnesses, list):
            raw_witnesses = []
        witnesses = []
        for raw in raw_witnesses:
            try:
                witnesses.append(WitnessCheckpoint.from_dict(raw))
            except MalformedWire as e:
                logger.warning("Skipping witness entry: %s", e)

        return cls(
            chain=chain,
            chunk_count=_meta_number(meta, "totalChunks", int, 0),
            chunk_duration=_meta_number(meta, "chunkDuration", float, 0.0),
            total_duration=_meta_number(meta, "duration", float, 0.0),
            signer_identity=_meta_text(meta, "signer"),
            anchor_identity=_meta_text(meta, "anchorIdentity") or _meta_text(meta, "nostrPubkey"),
            witnesses=tuple(witnesses),
        )

    @classmethod
    def loads(cls, text: str, max_depth: int = DEFAULT_MAX_DEPTH) -> "ProofBundle":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedWire(f"Proof bundle is not valid JSON: {e}") from e
        return cls.from_dict(data, max_depth=max_depth)
