# echoledger/verify/report.py
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from echoledger.core.clock import parse_timestamp
from echoledger.core.types import (
    ContentRevision,
    GenesisRevision,
    ProofBundle,
    SignatureRevision,
    WitnessCheckpoint,
)


@dataclass(frozen=True)
class RecordingReport:
    """What a structurally valid proof asserts about the recording."""
    signer_address: Optional[str]
    timestamps: Tuple[datetime, ...]
    content_revisions: int
    signature_revisions: int
    final_revision: Optional[str]
    chunk_count: int
    chunk_duration: float
    total_duration: float
    anchor_identity: Optional[str]
    witnesses: Tuple[WitnessCheckpoint, ...]

    @property
    def started_at(self) -> Optional[datetime]:
        return self.timestamps[0] if self.timestamps else None

    @property
    def ended_at(self) -> Optional[datetime]:
        return self.timestamps[-1] if self.timestamps else None

    @property
    def estimated_capture_start(self) -> Optional[datetime]:
        """
        First revision time minus one chunk duration. A heuristic: the first
        revision is written when chunk 1 is complete, not when capture began.
        Only corroborated by witness checkpoints, never by the chain itself.
        """
        if self.started_at is None:
            return None
        return self.started_at - timedelta(seconds=self.chunk_duration)

    def witness_lines(self) -> List[str]:
        return [
            f"Chunk {w.chunk_number}: event {w.event_id} via {', '.join(w.endpoints) or 'no endpoints'}"
            for w in self.witnesses
        ]


def extract_report(bundle: ProofBundle) -> RecordingReport:
    """Build a report from a bundle. Call only after the structure phase passed."""
    chain = bundle.chain
    signer = None
    content_count = 0
    signature_count = 0
    final_revision = None
    timestamps = []

    for revision_hash, revision in chain:
        if isinstance(revision, SignatureRevision):
            signature_count += 1
            if signer is None:
                signer = revision.signer_address
        elif isinstance(revision, (GenesisRevision, ContentRevision)):
            content_count += 1
            final_revision = revision_hash

        parsed = parse_timestamp(revision.timestamp)
        if parsed is not None:
            timestamps.append(parsed)

    return RecordingReport(
        signer_address=signer,
        timestamps=tuple(sorted(timestamps)),
        content_revisions=content_count,
        signature_revisions=signature_count,
        final_revision=chain.final_hash or final_revision,
        chunk_count=bundle.chunk_count,
        chunk_duration=bundle.chunk_duration,
        total_duration=bundle.total_duration,
        anchor_identity=bundle.anchor_identity,
        witnesses=bundle.witnesses,
    )
