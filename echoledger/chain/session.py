# echoledger/chain/session.py
import logging
import threading
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from echoledger.chain import builder
from echoledger.config import Settings
from echoledger.core.clock import utc_timestamp
from echoledger.core.errors import SessionStateError
from echoledger.core.types import HashingMode, ProofBundle, RevisionChain
from echoledger.crypto.keys import SignerKeyPair
from echoledger.witness.identity import anchor_from_signer
from echoledger.witness.publisher import BroadcastFn, WitnessLedger, WitnessPublisher

logger = logging.getLogger(__name__)

# message -> (signature, signer address)
SignFn = Callable[[str], Tuple[str, str]]

FINAL_FILE_NAME = "recording_combined.webm"


class SessionState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    FINALIZING = "finalizing"
    CLOSED = "closed"


class RecordingSession:
    """
    Owns one recording's chain and witness ledger.

    Every chunk runs the full pipeline (hash → append → sign → maybe witness)
    under one lock, so the next chunk always links to a committed tip.
    stop() takes the same lock, which drains any chunk still in flight before
    the bookend checkpoint and the whole-file revision are written.
    """

    def __init__(
        self,
        signer: SignFn,
        broadcast: Optional[BroadcastFn] = None,
        broadcast_key: Any = None,
        anchor_identity: Optional[str] = None,
        witness_interval: int = 10,
        mode: HashingMode = HashingMode.SCALAR,
        chunk_duration: float = 2.0,
        final_name: str = FINAL_FILE_NAME,
        embed_content: bool = True,
        clock: Callable[[], str] = utc_timestamp,
    ):
        self.signer = signer
        self.mode = HashingMode(mode)
        self.chunk_duration = chunk_duration
        self.final_name = final_name
        self.embed_content = embed_content
        self.clock = clock
        self.anchor_identity = anchor_identity

        self.state = SessionState.IDLE
        self.chain = RevisionChain()
        self.chunks: List[bytes] = []
        self.chunk_hashes: List[str] = []
        self.signer_identity: Optional[str] = None
        self.witnesses = WitnessLedger()
        self.anchor_keys: Optional[SignerKeyPair] = None

        self.publisher: Optional[WitnessPublisher] = None
        if broadcast is not None:
            self.publisher = WitnessPublisher(
                broadcast=broadcast,
                private_key=broadcast_key,
                anchor_identity=anchor_identity,
                interval=witness_interval,
                ledger=self.witnesses,
            )

        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings: Settings, signer: SignFn, **kwargs) -> "RecordingSession":
        kwargs.setdefault("witness_interval", settings.witness_interval)
        kwargs.setdefault("chunk_duration", settings.chunk_duration)
        return cls(signer, **kwargs)

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)

    def _require(self, *states: SessionState) -> None:
        if self.state not in states:
            allowed = "/".join(s.value for s in states)
            raise SessionStateError(f"Session is {self.state.value}, expected {allowed}")

    def start(self) -> None:
        with self._lock:
            self._require(SessionState.IDLE)
            if self.publisher is not None and self.publisher.private_key is None:
                self._derive_anchor()
            self.state = SessionState.ACTIVE
            logger.info("Recording session started (%s hashing)", self.mode.value)

    def _derive_anchor(self) -> None:
        """No broadcast key given: derive one from the signer so the anchor follows the signer."""
        try:
            keys = anchor_from_signer(self.signer)
        except Exception as e:
            logger.warning("Anchor derivation failed, recording without witnesses: %s", e)
            self.publisher = None
            return
        self.anchor_keys = keys
        self.publisher.private_key = keys.private_bytes()
        if self.anchor_identity is None:
            self.anchor_identity = keys.address
        self.publisher.anchor_identity = self.anchor_identity

    def process_chunk(self, chunk: bytes, file_name: Optional[str] = None) -> str:
        """
        Commit one chunk. Returns the chunk's verification hash (its content
        revision, not the signature that follows it).
        """
        with self._lock:
            self._require(SessionState.ACTIVE)
            index = len(self.chunks)
            name = file_name or f"chunk_{index:04d}.webm"
            data = bytes(chunk)

            if index == 0:
                chain = builder.begin_chain(
                    data, name, mode=self.mode, embed_content=self.embed_content, timestamp=self.clock()
                )
            else:
                chain = builder.append_chunk(
                    self.chain, data, name, previous_hash=self.chain.tip,
                    mode=self.mode, embed_content=self.embed_content, timestamp=self.clock(),
                )
            verification_hash = chain.tip
            self.chain = chain
            self.chunks.append(data)
            self.chunk_hashes.append(verification_hash)

            self._sign_tip()

            if self.publisher is not None:
                self.publisher.signer_identity = self.signer_identity
                self.publisher.observe(index, verification_hash)

            logger.debug("Chunk %d processed (%d bytes)", index + 1, len(data))
            return verification_hash

    def _sign_tip(self, timestamp: Optional[str] = None) -> None:
        target = self.chain.tip
        try:
            signature, address = self.signer(builder.signing_message(target))
        except Exception as e:
            # Unsigned revisions keep the chain valid, just less attested
            logger.warning("Signing callback failed for %s: %s", target[:18], e)
            return
        self.chain = builder.sign(self.chain, target, signature, address, timestamp=timestamp or self.clock())
        if self.signer_identity is None:
            self.signer_identity = address

    def stop(self, timestamp: Optional[str] = None) -> RevisionChain:
        """
        Drain, witness the last chunk, write and sign the whole-file revision.
        Returns the finished chain.
        """
        with self._lock:
            self._require(SessionState.ACTIVE)
            self.state = SessionState.FINALIZING

            if self.chunks:
                if self.publisher is not None:
                    self.publisher.signer_identity = self.signer_identity
                    self.publisher.close_session(len(self.chunks) - 1, self.chunk_hashes[-1])

                self.chain = builder.finalize(
                    self.chain, self.chunks, self.final_name, previous_hash=self.chain.tip,
                    mode=self.mode, embed_content=self.embed_content, timestamp=timestamp or self.clock(),
                )
                self._sign_tip(timestamp)

            self.state = SessionState.CLOSED
            logger.info(
                "Recording session closed: %d chunks, %d revisions, %d witnesses",
                len(self.chunks), self.chain.length, len(self.witnesses),
            )
            return self.chain

    def export(self) -> ProofBundle:
        """Proof bundle for the finished recording. Only available once closed."""
        with self._lock:
            self._require(SessionState.CLOSED)
            return ProofBundle(
                chain=self.chain,
                chunk_count=len(self.chunks),
                chunk_duration=self.chunk_duration,
                total_duration=len(self.chunks) * self.chunk_duration,
                signer_identity=self.signer_identity,
                anchor_identity=self.anchor_identity,
                witnesses=self.witnesses.checkpoints,
            )

    def combined_audio(self) -> bytes:
        return b"".join(self.chunks)
