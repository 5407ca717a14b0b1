# echoledger/verify/verifier.py
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from echoledger.chain.builder import signing_message
from echoledger.core.encoding import DEFAULT_MAX_DEPTH
from echoledger.core.errors import MalformedWire, NotFound, NotYetAvailable, RetrievalError
from echoledger.core.types import GenesisRevision, ProofBundle, Revision, RevisionChain, SignatureRevision
from echoledger.crypto.hashing import content_hash, revision_hash
from echoledger.crypto.keys import verify_message
from echoledger.verify.report import RecordingReport, extract_report

logger = logging.getLogger(__name__)

FilesArg = Union[Mapping[str, bytes], Iterable[Tuple[str, bytes]], None]


class FileStatus(str, Enum):
    UNALTERED = "unaltered"
    TAMPERED = "tampered"
    METADATA_ONLY = "metadata_only"     # no bytes supplied, authenticity unproven
    NOT_INDEXED = "not_indexed"         # supplied, but the proof knows no such file


@dataclass
class FileCheck:
    file_name: str
    status: FileStatus
    revision_hash: Optional[str] = None
    expected_hash: Optional[str] = None
    actual_hash: Optional[str] = None


@dataclass
class VerificationFailure:
    index: int
    message: str
    category: str = "general"  # chain_discontinuity, revision_hash, content_hash_mismatch, invalid_signature, malformed_wire
    revision_hash: Optional[str] = None


@dataclass
class VerificationResult:
    structure_valid: bool
    content_valid: bool = True
    content_checked: bool = False
    message: str = ""
    failures: List[VerificationFailure] = field(default_factory=list)
    files: Dict[str, FileCheck] = field(default_factory=dict)
    report: Optional[RecordingReport] = None

    @property
    def is_valid(self) -> bool:
        return self.structure_valid and self.content_valid

    @property
    def first_failure(self) -> Optional[VerificationFailure]:
        return self.failures[0] if self.failures else None

    @property
    def tampered_files(self) -> List[str]:
        return [name for name, check in self.files.items() if check.status is FileStatus.TAMPERED]

    def __bool__(self):
        return self.is_valid

    def __str__(self):
        lines = []
        if self.structure_valid:
            lines.append("Proof structure is valid ✓")
        else:
            lines.append(f"Proof structure FAILED ({len(self.failures)} issues):")
            for f in self.failures:
                lines.append(f"  • [{f.index}] {f.category}: {f.message}")
        if self.content_checked:
            for name, check in self.files.items():
                if check.status is not FileStatus.METADATA_ONLY:
                    lines.append(f"  {name}: {check.status.value}")
        return "\n".join(lines)


def _normalize_files(files: FilesArg) -> Dict[str, bytes]:
    if files is None:
        return {}
    items = files.items() if isinstance(files, Mapping) else files
    return {str(name): bytes(data) for name, data in items}


def _indexed_files(chain: RevisionChain) -> Iterator[Tuple[str, str, Revision]]:
    """(hash, name, revision) for file_index entries that point at content-bearing revisions."""
    for h, name in chain.file_index.items():
        revision = chain.get(h)
        if revision is None or isinstance(revision, SignatureRevision):
            continue
        yield h, name, revision


class ChainVerifier:
    """
    Offline verifier for exported recording proofs.

    Structure phase always runs: chain linkage, revision hashes, embedded
    content hashes, signatures. Content phase runs when original files are
    supplied and compares them against the file index. verify() never raises.
    """

    def __init__(self, max_wire_depth: int = DEFAULT_MAX_DEPTH):
        self.max_wire_depth = max_wire_depth

    def verify(self, bundle: Any, files: FilesArg = None) -> VerificationResult:
        try:
            return self._verify(bundle, _normalize_files(files))
        except Exception as e:
            logger.exception("Unexpected error during verification")
            return VerificationResult(
                structure_valid=False,
                content_valid=False,
                message=f"Verification error: {e}",
                failures=[VerificationFailure(-1, str(e), "internal")],
            )

    def _load(self, bundle: Any) -> ProofBundle:
        if isinstance(bundle, ProofBundle):
            return bundle
        if isinstance(bundle, (str, bytes, bytearray)):
            text = bundle.decode("utf-8") if isinstance(bundle, (bytes, bytearray)) else bundle
            return ProofBundle.loads(text, max_depth=self.max_wire_depth)
        return ProofBundle.from_dict(bundle, max_depth=self.max_wire_depth)

    def _verify(self, bundle: Any, files: Dict[str, bytes]) -> VerificationResult:
        try:
            proof = self._load(bundle)
        except (MalformedWire, UnicodeDecodeError) as e:
            return VerificationResult(
                structure_valid=False,
                content_valid=not files,
                content_checked=bool(files),
                message="Proof could not be decoded",
                failures=[VerificationFailure(-1, str(e), "malformed_wire")],
                files={name: FileCheck(name, FileStatus.NOT_INDEXED) for name in files},
            )

        failures = self.check_structure(proof.chain)
        result = VerificationResult(structure_valid=not failures, failures=failures)

        if files:
            result.files = self.check_content(proof.chain, files)
            result.content_checked = True
            result.content_valid = all(
                c.status in (FileStatus.UNALTERED, FileStatus.METADATA_ONLY) for c in result.files.values()
            )
        else:
            result.files = {
                name: FileCheck(name, FileStatus.METADATA_ONLY, h, revision.file_hash)
                for h, name, revision in _indexed_files(proof.chain)
            }

        if result.structure_valid:
            result.report = extract_report(proof)

        if result.is_valid:
            result.message = "Valid proof"
        elif not result.structure_valid:
            result.message = f"Structure failed with {len(result.failures)} issues"
        else:
            result.message = f"Content check failed: {', '.join(self._bad_files(result))}"
        return result

    @staticmethod
    def _bad_files(result: VerificationResult) -> List[str]:
        return [f"{n} {c.status.value}" for n, c in result.files.items()
                if c.status in (FileStatus.TAMPERED, FileStatus.NOT_INDEXED)]

    # ── structure phase ────────────────────────────────────────────

    def check_structure(self, chain: RevisionChain) -> List[VerificationFailure]:
        failures = self._check_links(chain)
        if chain.mode is None:
            return failures

        mode = chain.mode
        for i, (h, revision) in enumerate(chain):
            if revision_hash(revision, mode) != h:
                failures.append(VerificationFailure(
                    i, "Revision fields do not hash to their key", "revision_hash", h))

            if revision.content is not None:
                actual = content_hash(revision.content, mode)
                if actual != revision.file_hash:
                    failures.append(VerificationFailure(
                        i, f"Embedded content hashes to {actual}, revision declares {revision.file_hash}",
                        "content_hash_mismatch", h))

            if isinstance(revision, SignatureRevision):
                message = signing_message(revision.previous_hash)
                if not verify_message(revision.signer_address, message, revision.signature):
                    failures.append(VerificationFailure(
                        i, f"Invalid signature by {revision.signer_address}", "invalid_signature", h))
        return failures

    def _check_links(self, chain: RevisionChain) -> List[VerificationFailure]:
        failures = []
        if chain.is_empty:
            return [VerificationFailure(-1, "Chain has no revisions", "chain_discontinuity")]

        hashes = list(chain.revisions)
        position = {h: i for i, h in enumerate(hashes)}
        geneses = [h for h, r in chain if isinstance(r, GenesisRevision)]
        if len(geneses) != 1:
            failures.append(VerificationFailure(
                -1, f"Expected exactly one genesis revision, found {len(geneses)}", "chain_discontinuity"))
        elif geneses[0] != hashes[0]:
            failures.append(VerificationFailure(
                position[geneses[0]], "Genesis is not the first revision", "chain_discontinuity", geneses[0]))

        successor: Dict[str, str] = {}
        for i, (h, revision) in enumerate(chain):
            if isinstance(revision, GenesisRevision):
                continue
            prev = revision.previous_hash
            if prev not in position:
                failures.append(VerificationFailure(
                    i, f"previous_hash {prev!r} is not in the chain", "chain_discontinuity", h))
            elif position[prev] >= i:
                failures.append(VerificationFailure(
                    i, "previous_hash points at a later revision", "chain_discontinuity", h))
            elif prev in successor:
                failures.append(VerificationFailure(
                    i, f"Branch: {prev[:18]} already continues with {successor[prev][:18]}",
                    "chain_discontinuity", h))
            else:
                successor[prev] = h

        if not failures:
            walk = [hashes[0]]
            while walk[-1] in successor:
                walk.append(successor[walk[-1]])
            if walk != hashes:
                failures.append(VerificationFailure(
                    len(walk), "Revisions do not form a single path from genesis", "chain_discontinuity"))

        for h, name in chain.file_index.items():
            if h not in position:
                failures.append(VerificationFailure(
                    -1, f"file_index entry {name!r} references unknown revision", "chain_discontinuity", h))
            elif isinstance(chain.get(h), SignatureRevision):
                failures.append(VerificationFailure(
                    position[h], f"file_index entry {name!r} points at a signature revision",
                    "chain_discontinuity", h))
        return failures

    # ── content phase ──────────────────────────────────────────────

    def check_content(self, chain: RevisionChain, files: Dict[str, bytes]) -> Dict[str, FileCheck]:
        checks: Dict[str, FileCheck] = {}
        for h, name, revision in _indexed_files(chain):
            prior = checks.get(name)
            if prior is not None and prior.status is FileStatus.UNALTERED:
                # Imported proofs may index a name twice; any matching revision vouches for it
                continue
            expected = revision.file_hash
            if name not in files:
                checks[name] = FileCheck(name, FileStatus.METADATA_ONLY, h, expected)
                continue
            actual = content_hash(files[name], chain.mode) if chain.mode else None
            status = FileStatus.UNALTERED if actual == expected else FileStatus.TAMPERED
            checks[name] = FileCheck(name, status, h, expected, actual)

        for name, check in checks.items():
            if check.status is FileStatus.TAMPERED:
                logger.warning("File %s does not match its proof (expected %s, got %s)",
                               name, check.expected_hash, check.actual_hash)
        for name in files:
            if name not in checks:
                checks[name] = FileCheck(name, FileStatus.NOT_INDEXED)
        return checks

    # ── retrieval ──────────────────────────────────────────────────

    def verify_from_store(
        self,
        fetcher,
        proof_key: str,
        media_key: Optional[str] = None,
        media_name: Optional[str] = None,
    ) -> VerificationResult:
        """
        Fetch a proof (and optionally its audio) through a ResilientFetcher and verify.
        Audio is checked against media_name, or the chain's final revision if omitted.
        """
        try:
            if media_key is not None:
                media, proof = fetcher.fetch_recording(media_key, proof_key)
            else:
                media, proof = None, fetcher.fetch_proof(proof_key)
        except RetrievalError as e:
            category = {
                NotFound: "retrieval_not_found",
                NotYetAvailable: "retrieval_pending",
            }.get(type(e), "retrieval")
            return VerificationResult(
                structure_valid=False,
                content_valid=False,
                message=f"Failed to fetch proof: {e}",
                failures=[VerificationFailure(-1, str(e), category)],
            )

        files = {}
        if media is not None:
            name = media_name
            if name is None:
                try:
                    chain = ProofBundle.from_dict(proof, max_depth=self.max_wire_depth).chain
                    name = chain.file_index.get(chain.final_hash or chain.last_file_hash or "")
                except MalformedWire:
                    name = None
            if name is not None:
                files[name] = media
        return self.verify(proof, files)
