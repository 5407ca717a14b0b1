# echoledger/core/errors.py
"""
Exception hierarchy. Library code raises these; the CLI maps them to exit codes.
Verification never raises them past ChainVerifier.verify; failures become records.
"""


class EchoLedgerError(Exception):
    """Base for every error raised by echoledger."""


class ConfigError(EchoLedgerError, ValueError):
    pass


# ── chain construction ─────────────────────────────────────────────

class ChainError(EchoLedgerError):
    """Misuse of the revision chain builder. The chain passed in is left unchanged."""


class ChainDiscontinuity(ChainError):
    def __init__(self, expected: str, got: str):
        super().__init__(f"previous_hash {got!r} does not match chain tip {expected!r}")
        self.expected = expected
        self.got = got


class UnknownRevision(ChainError):
    def __init__(self, revision_hash: str):
        super().__init__(f"Revision {revision_hash!r} is not in the chain")
        self.revision_hash = revision_hash


class InconsistentHashingMode(ChainError):
    def __init__(self, chain_mode, requested_mode):
        super().__init__(
            f"Chain uses {chain_mode.value!r} hashing, refusing {requested_mode.value!r}"
        )
        self.chain_mode = chain_mode
        self.requested_mode = requested_mode


class AlreadyStarted(ChainError):
    pass


class AlreadyFinalized(ChainError):
    pass


class DuplicateFileName(ChainError):
    def __init__(self, name: str, revision_hash: str):
        super().__init__(f"File name {name!r} is already indexed at {revision_hash!r}")
        self.name = name
        self.revision_hash = revision_hash


class SessionStateError(EchoLedgerError):
    """Illegal recording session transition (e.g. export before stop)."""


# ── witnessing ─────────────────────────────────────────────────────

class WitnessPublishFailure(EchoLedgerError):
    def __init__(self, chunk_index: int, cause: BaseException):
        super().__init__(f"Witness publish failed for chunk {chunk_index + 1}: {cause}")
        self.chunk_index = chunk_index
        self.cause = cause


# ── wire format ────────────────────────────────────────────────────

class MalformedWire(EchoLedgerError, ValueError):
    """Serialized proof data has an invalid shape, tag or nesting depth."""


# ── retrieval ──────────────────────────────────────────────────────

class RetrievalError(EchoLedgerError):
    retryable = False

    def __init__(self, key: str, message: str):
        super().__init__(message)
        self.key = key


class NotFound(RetrievalError):
    def __init__(self, key: str, detail: str = ""):
        msg = f"Blob {key} does not exist"
        if detail:
            msg += f": {detail}"
        super().__init__(key, msg)


class NotYetAvailable(RetrievalError):
    """Blob is probably still propagating. Callers should offer a retry."""
    retryable = True

    def __init__(self, key: str, attempts: int, detail: str = ""):
        msg = f"Blob {key} not available after {attempts} attempts, try again shortly"
        if detail:
            msg += f" ({detail})"
        super().__init__(key, msg)
        self.attempts = attempts


class UnexpectedPayload(RetrievalError):
    pass
