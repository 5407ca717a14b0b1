# echoledger/retrieval/retry.py
import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Tuple

import httpx

from echoledger.core.errors import NotFound, NotYetAvailable, UnexpectedPayload
from . import BlobNotFound, BlobStore, BlobUnavailable

logger = logging.getLogger(__name__)

# Failures worth another attempt: the blob may still be propagating
TRANSIENT_ERRORS = (BlobUnavailable, httpx.TransportError, TimeoutError, OSError)


class ResilientFetcher:
    """
    Wraps single store fetches with retry and exponential backoff.

    Delay before retry k is base_delay * 2**(k-1): 1s, 2s, 4s with the defaults.
    A missing blob fails at once with NotFound; transient misses that outlast
    every attempt surface as NotYetAvailable so callers can say "try again shortly".
    """

    def __init__(
        self,
        store: BlobStore,
        attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.store = store
        self.attempts = attempts
        self.base_delay = base_delay
        self.sleep = sleep

    @classmethod
    def from_settings(cls, store: BlobStore, settings, **kwargs) -> "ResilientFetcher":
        return cls(store, attempts=settings.fetch_attempts, base_delay=settings.fetch_base_delay, **kwargs)

    def fetch(self, key: str) -> Any:
        """Raw payload for key, in whatever shape the store returned it."""
        last_error = ""
        for attempt in range(1, self.attempts + 1):
            logger.debug("Fetching %s (attempt %d/%d)", key, attempt, self.attempts)
            try:
                payload = self.store.get(key)
            except BlobNotFound as e:
                raise NotFound(key, str(e)) from e
            except TRANSIENT_ERRORS as e:
                last_error = str(e) or type(e).__name__
                logger.warning("Attempt %d for %s failed: %s", attempt, key, last_error)
            else:
                if payload is None or (isinstance(payload, (bytes, bytearray, str)) and len(payload) == 0):
                    last_error = "empty response"
                    logger.warning("Attempt %d for %s returned no data", attempt, key)
                else:
                    logger.info("Fetched %s on attempt %d", key, attempt)
                    return payload

            if attempt < self.attempts:
                delay = self.base_delay * 2 ** (attempt - 1)
                logger.debug("Retrying %s in %.1fs", key, delay)
                self.sleep(delay)

        raise NotYetAvailable(key, self.attempts, last_error)

    def fetch_media(self, key: str) -> bytes:
        payload = self.fetch(key)
        if isinstance(payload, (bytes, bytearray, memoryview)):
            return bytes(payload)
        raise UnexpectedPayload(key, f"Expected binary media for {key}, got {type(payload).__name__}")

    def fetch_proof(self, key: str) -> dict:
        payload = self.fetch(key)
        if isinstance(payload, (bytes, bytearray, memoryview)):
            try:
                payload = bytes(payload).decode("utf-8")
            except UnicodeDecodeError as e:
                raise UnexpectedPayload(key, f"Proof {key} is not UTF-8 text: {e}") from e
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as e:
                raise UnexpectedPayload(key, f"Proof {key} is not valid JSON: {e}") from e
        if isinstance(payload, dict):
            return payload
        raise UnexpectedPayload(key, f"Expected a JSON object for proof {key}, got {type(payload).__name__}")

    def fetch_recording(self, media_key: str, proof_key: str) -> Tuple[bytes, dict]:
        """Fetch audio and proof concurrently, each with its own retry budget."""
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="echo-fetch") as pool:
            media = pool.submit(self.fetch_media, media_key)
            proof = pool.submit(self.fetch_proof, proof_key)
            return media.result(), proof.result()
