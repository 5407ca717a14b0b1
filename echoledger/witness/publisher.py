# echoledger/witness/publisher.py
"""
Witness checkpoints: periodic public broadcasts of the chain tip.

Checkpoints are informational. A failed broadcast is logged and skipped; it
never blocks chunk processing or touches the chain.
"""
import logging
import threading
from typing import Any, Callable, List, Optional, Sequence, Tuple

from echoledger.core.clock import epoch_millis
from echoledger.core.errors import WitnessPublishFailure
from echoledger.core.types import WitnessCheckpoint

logger = logging.getLogger(__name__)

DEFAULT_WITNESS_INTERVAL = 10

# (content, tags, private_key) -> {"event_id": ..., "endpoints": [...]}
BroadcastFn = Callable[[str, List[List[str]], Any], Any]


def should_witness(chunk_index: int, interval: int) -> bool:
    return (chunk_index + 1) % interval == 0


def witness_content(chunk_index: int, verification_hash: str, signer: Optional[str], anchor: Optional[str]) -> str:
    return (
        "ECHO Audio Recording Witness\n"
        f"Chunk: {chunk_index + 1}\n"
        f"Hash: {verification_hash}\n"
        f"Signer: {signer or ''}\n"
        f"Anchor: {anchor or ''}"
    )


def witness_tags(chunk_index: int, verification_hash: str) -> List[List[str]]:
    return [["chunk", str(chunk_index + 1)], ["hash", verification_hash]]


def _read_receipt(receipt: Any) -> Tuple[str, Tuple[str, ...]]:
    """Accept a mapping (event_id/eventId, endpoints/relays) or an object with those attributes."""
    if isinstance(receipt, dict):
        event_id = receipt.get("event_id", receipt.get("eventId"))
        endpoints = receipt.get("endpoints", receipt.get("relays", ()))
    else:
        event_id = getattr(receipt, "event_id", None)
        endpoints = getattr(receipt, "endpoints", ())
    if not event_id:
        raise ValueError("Broadcast returned no event id")
    return str(event_id), tuple(str(e) for e in endpoints or ())


class WitnessLedger:
    """Ordered, append-only record of checkpoints for one session."""

    def __init__(self, checkpoints: Sequence[WitnessCheckpoint] = ()):
        self._checkpoints: List[WitnessCheckpoint] = list(checkpoints)

    def __len__(self) -> int:
        return len(self._checkpoints)

    def has(self, chunk_index: int) -> bool:
        return any(c.chunk_index == chunk_index for c in self._checkpoints)

    def record(self, checkpoint: WitnessCheckpoint) -> None:
        if self.has(checkpoint.chunk_index):
            raise ValueError(f"Chunk {checkpoint.chunk_number} already has a checkpoint")
        self._checkpoints.append(checkpoint)

    @property
    def checkpoints(self) -> Tuple[WitnessCheckpoint, ...]:
        return tuple(self._checkpoints)

    def to_list(self) -> List[dict]:
        return [c.to_dict() for c in self._checkpoints]


class WitnessPublisher:
    """
    Decides when to witness and records what the broadcast network accepted.
    One checkpoint every `interval` chunks, plus a bookend for the last chunk.
    """

    def __init__(
        self,
        broadcast: BroadcastFn,
        private_key: Any,
        signer_identity: Optional[str] = None,
        anchor_identity: Optional[str] = None,
        interval: int = DEFAULT_WITNESS_INTERVAL,
        ledger: Optional[WitnessLedger] = None,
        clock: Callable[[], int] = epoch_millis,
    ):
        if interval < 1:
            raise ValueError("Witness interval must be at least 1")
        self.broadcast = broadcast
        self.private_key = private_key
        self.signer_identity = signer_identity
        self.anchor_identity = anchor_identity
        self.interval = interval
        self.ledger = ledger if ledger is not None else WitnessLedger()
        self.clock = clock
        self._lock = threading.Lock()

    def observe(self, chunk_index: int, verification_hash: str) -> Optional[WitnessCheckpoint]:
        """Called after every committed chunk; publishes when the interval rule fires."""
        if not should_witness(chunk_index, self.interval):
            return None
        return self.publish(chunk_index, verification_hash)

    def close_session(self, last_chunk_index: int, verification_hash: str) -> Optional[WitnessCheckpoint]:
        """Bookend: make sure the last chunk is witnessed exactly once."""
        return self.publish(last_chunk_index, verification_hash)

    def publish(self, chunk_index: int, verification_hash: str) -> Optional[WitnessCheckpoint]:
        with self._lock:
            if self.ledger.has(chunk_index):
                logger.debug("Chunk %d already witnessed, skipping", chunk_index + 1)
                return None

            content = witness_content(chunk_index, verification_hash, self.signer_identity, self.anchor_identity)
            try:
                receipt = self.broadcast(content, witness_tags(chunk_index, verification_hash), self.private_key)
                event_id, endpoints = _read_receipt(receipt)
            except Exception as e:
                failure = WitnessPublishFailure(chunk_index, e)
                logger.warning("%s", failure)
                return None

            checkpoint = WitnessCheckpoint(
                chunk_index=chunk_index,
                verification_hash=verification_hash,
                event_id=event_id,
                endpoints=endpoints,
                timestamp=self.clock(),
            )
            self.ledger.record(checkpoint)
            logger.info(
                "Chunk %d witnessed: event %s on %d endpoint(s)",
                chunk_index + 1, event_id[:16], len(endpoints),
            )
            return checkpoint
