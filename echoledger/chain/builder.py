# echoledger/chain/builder.py
"""
Revision chain builder.

Pure functions: each takes a RevisionChain and returns a new one with exactly
one more revision. On any error the input chain is untouched, so a failed call
can simply be retried with the right arguments.

Callers always pass previous_hash explicitly. The builder checks it against
the chain tip but never fills it in, so a stale hash shows up as an error
instead of a silently re-linked revision.
"""
import logging
from typing import Iterable, Optional

from echoledger.core.clock import utc_timestamp
from echoledger.core.errors import (
    AlreadyFinalized,
    AlreadyStarted,
    ChainDiscontinuity,
    DuplicateFileName,
    InconsistentHashingMode,
    UnknownRevision,
)
from echoledger.core.types import (
    ContentRevision,
    GenesisRevision,
    HashingMode,
    RevisionChain,
    SignatureRevision,
)
from echoledger.crypto.hashing import content_hash, revision_hash

logger = logging.getLogger(__name__)

SIGNING_TEMPLATE = "I sign this revision: [{}]"


def signing_message(revision_hash: str) -> str:
    """The exact message an external signer must sign to attest revision_hash."""
    return SIGNING_TEMPLATE.format(revision_hash)


def _check_mode(chain: RevisionChain, mode: Optional[HashingMode]) -> HashingMode:
    if mode is not None and HashingMode(mode) is not chain.mode:
        raise InconsistentHashingMode(chain.mode, HashingMode(mode))
    return chain.mode


def _check_link(chain: RevisionChain, previous_hash: str) -> None:
    """previous_hash must exist and be the tip; anything else would branch the path."""
    if previous_hash not in chain:
        raise UnknownRevision(previous_hash)
    if previous_hash != chain.tip:
        raise ChainDiscontinuity(expected=chain.tip, got=previous_hash)


def _check_open(chain: RevisionChain, previous_hash: str) -> None:
    if chain.is_empty:
        raise UnknownRevision(previous_hash)
    if chain.is_finalized:
        raise AlreadyFinalized(f"Chain was finalized at {chain.final_hash}")


def _check_name(chain: RevisionChain, name: str) -> None:
    """File names key the content check, so each may be indexed once."""
    for revision_hash, indexed in chain.file_index.items():
        if indexed == name:
            raise DuplicateFileName(name, revision_hash)


def begin_chain(
    first_chunk: bytes,
    name: str,
    mode: HashingMode = HashingMode.SCALAR,
    chain: Optional[RevisionChain] = None,
    embed_content: bool = True,
    timestamp: Optional[str] = None,
) -> RevisionChain:
    """Create the Genesis revision for the first chunk. The mode chosen here is final."""
    if chain is not None and not chain.is_empty:
        raise AlreadyStarted(f"Chain already has {chain.length} revisions")
    mode = HashingMode(mode)

    data = bytes(first_chunk)
    genesis = GenesisRevision(
        file_hash=content_hash(data, mode),
        hashing_mode=mode,
        timestamp=timestamp or utc_timestamp(),
        content=data if embed_content else None,
    )
    genesis_hash = revision_hash(genesis, mode)
    logger.info("Chain started (%s mode) with %s -> %s", mode.value, name, genesis_hash[:18])
    return (chain or RevisionChain()).appended(genesis_hash, genesis, file_name=name)


def append_chunk(
    chain: RevisionChain,
    chunk: bytes,
    name: str,
    previous_hash: str,
    mode: Optional[HashingMode] = None,
    embed_content: bool = True,
    timestamp: Optional[str] = None,
) -> RevisionChain:
    """Append a Content revision for one chunk, linked to the current tip."""
    _check_open(chain, previous_hash)
    mode = _check_mode(chain, mode)
    _check_name(chain, name)
    if previous_hash != chain.tip:
        raise ChainDiscontinuity(expected=chain.tip, got=previous_hash)

    data = bytes(chunk)
    revision = ContentRevision(
        previous_hash=previous_hash,
        file_hash=content_hash(data, mode),
        timestamp=timestamp or utc_timestamp(),
        content=data if embed_content else None,
    )
    new_hash = revision_hash(revision, mode)
    logger.debug("Chunk %s appended -> %s", name, new_hash[:18])
    return chain.appended(new_hash, revision, file_name=name)


def sign(
    chain: RevisionChain,
    previous_hash: str,
    signature: str,
    signer_address: str,
    timestamp: Optional[str] = None,
) -> RevisionChain:
    """
    Record an external signature over signing_message(previous_hash).
    Signature and address are stored verbatim; checking them is the verifier's job.
    Allowed after finalize (the whole-file revision gets signed too).
    """
    if chain.is_empty:
        raise UnknownRevision(previous_hash)
    _check_link(chain, previous_hash)

    revision = SignatureRevision(
        previous_hash=previous_hash,
        signature=signature,
        signer_address=signer_address,
        timestamp=timestamp or utc_timestamp(),
    )
    new_hash = revision_hash(revision, chain.mode)
    logger.debug("Signature by %s over %s -> %s", signer_address[:12], previous_hash[:18], new_hash[:18])
    return chain.appended(new_hash, revision)


def finalize(
    chain: RevisionChain,
    all_chunks: Iterable[bytes],
    name: str,
    previous_hash: str,
    mode: Optional[HashingMode] = None,
    embed_content: bool = True,
    timestamp: Optional[str] = None,
) -> RevisionChain:
    """
    Append the whole-file revision: content is the ordered concatenation of
    every chunk. Its file_hash is what content-phase verification checks the
    delivered audio against.
    """
    _check_open(chain, previous_hash)
    mode = _check_mode(chain, mode)
    _check_name(chain, name)
    _check_link(chain, previous_hash)

    combined = b"".join(bytes(c) for c in all_chunks)
    revision = ContentRevision(
        previous_hash=previous_hash,
        file_hash=content_hash(combined, mode),
        timestamp=timestamp or utc_timestamp(),
        content=combined if embed_content else None,
    )
    new_hash = revision_hash(revision, mode)
    logger.info("Chain finalized: %s (%d bytes) -> %s", name, len(combined), new_hash[:18])
    return chain.appended(new_hash, revision, file_name=name, final=True)
