# echoledger/__init__.py
"""
Echo Ledger: verifiable, progressively-recorded audio.
Hash-chained revisions per audio chunk, signed per revision, with optional
public witness checkpoints and an offline verifier.

Think flight data recorder for a microphone: every chunk is committed before
the next one exists, so the finished file carries proof of how it was made.
"""

from echoledger.core.types import (
    HashingMode,
    RevisionChain,
    GenesisRevision,
    ContentRevision,
    SignatureRevision,
    WitnessCheckpoint,
    ProofBundle,
)
from echoledger.chain.builder import begin_chain, append_chunk, sign, finalize, signing_message
from echoledger.chain.session import RecordingSession, SessionState
from echoledger.crypto.keys import SignerKeyPair
from echoledger.witness.publisher import WitnessPublisher, WitnessLedger
from echoledger.verify.verifier import ChainVerifier, VerificationResult, FileStatus

__version__ = "0.1.0-dev"

__all__ = [
    "HashingMode",
    "RevisionChain",
    "GenesisRevision",
    "ContentRevision",
    "SignatureRevision",
    "WitnessCheckpoint",
    "ProofBundle",
    "begin_chain",
    "append_chunk",
    "sign",
    "finalize",
    "signing_message",
    "RecordingSession",
    "SessionState",
    "SignerKeyPair",
    "WitnessPublisher",
    "WitnessLedger",
    "ChainVerifier",
    "VerificationResult",
    "FileStatus",
]
