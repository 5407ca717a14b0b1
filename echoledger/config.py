# echoledger/config.py
"""
Settings resolved from environment variables. CLI flags take precedence.

    ECHO_WITNESS_INTERVAL   checkpoint every N chunks            (10)
    ECHO_CHUNK_DURATION     seconds of audio per chunk           (2.0)
    ECHO_MAX_WIRE_DEPTH     nesting limit when decoding proofs   (64)
    ECHO_FETCH_ATTEMPTS     retrieval attempts per blob          (3)
    ECHO_FETCH_BASE_DELAY   first backoff delay in seconds       (1.0)
    ECHO_GATEWAY_URL        blob gateway base URL                (unset)
    ECHO_GATEWAY_TOKEN      bearer token for the gateway         (unset)
"""
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from echoledger.core.errors import ConfigError

# Deepest container in an exported bundle: metadata.witnesses[i].endpoints (depth 4)
MIN_WIRE_DEPTH = 6


@dataclass(frozen=True)
class Settings:
    witness_interval: int = 10
    chunk_duration: float = 2.0
    max_wire_depth: int = 64
    fetch_attempts: int = 3
    fetch_base_delay: float = 1.0
    gateway_url: Optional[str] = None
    gateway_token: Optional[str] = None


def _read(env: Mapping[str, str], name: str, cast, default, minimum=None):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        raise ConfigError(f"{name}={raw!r} is not a valid {cast.__name__}") from None
    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env
    return Settings(
        witness_interval=_read(env, "ECHO_WITNESS_INTERVAL", int, 10, minimum=1),
        chunk_duration=_read(env, "ECHO_CHUNK_DURATION", float, 2.0, minimum=0.0),
        max_wire_depth=_read(env, "ECHO_MAX_WIRE_DEPTH", int, 64, minimum=MIN_WIRE_DEPTH),
        fetch_attempts=_read(env, "ECHO_FETCH_ATTEMPTS", int, 3, minimum=1),
        fetch_base_delay=_read(env, "ECHO_FETCH_BASE_DELAY", float, 1.0, minimum=0.0),
        gateway_url=env.get("ECHO_GATEWAY_URL") or None,
        gateway_token=env.get("ECHO_GATEWAY_TOKEN") or None,
    )
