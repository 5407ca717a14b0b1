# echoledger/core/encoding.py
"""
Byte Buffer Codec.

JSON can't carry raw bytes, so every binary payload inside an exported proof is
wrapped in an explicit tag:

    {"__bytes__": "<standard base64>"}

Decoding replaces tagged nodes only. Nothing is inferred from shape, so an
object like {"0": 12, "1": 200} stays an object.
"""
import base64
import binascii
from typing import Any

from echoledger.core.errors import MalformedWire

BYTES_TAG = "__bytes__"
DEFAULT_MAX_DEPTH = 64

_BYTES_LIKE = (bytes, bytearray, memoryview)


def b64url_encode(data: bytes) -> str:
    """Encode bytes to base64url (no padding, URL-safe)."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    """Decode base64url string back to bytes."""
    padding = len(s) % 4
    if padding:
        s += "=" * (4 - padding)
    return base64.urlsafe_b64decode(s)


def encode_bytes(data: bytes) -> dict:
    return {BYTES_TAG: base64.b64encode(bytes(data)).decode("ascii")}


def is_tagged(value: Any) -> bool:
    return isinstance(value, dict) and BYTES_TAG in value


def decode_bytes(node: Any) -> bytes:
    """Decode a single tagged node. Raises MalformedWire if it isn't exactly one."""
    if not isinstance(node, dict) or set(node) != {BYTES_TAG}:
        raise MalformedWire(f"Expected a {{{BYTES_TAG!r}: ...}} node, got {type(node).__name__}")
    payload = node[BYTES_TAG]
    if not isinstance(payload, str):
        raise MalformedWire(f"{BYTES_TAG} payload must be a base64 string, got {type(payload).__name__}")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedWire(f"Invalid base64 in {BYTES_TAG} node: {e}") from e


def encode_wire(value: Any) -> Any:
    """Return a JSON-safe copy of value with every byte buffer tagged."""
    if isinstance(value, _BYTES_LIKE):
        return encode_bytes(value)
    if isinstance(value, dict):
        return {k: encode_wire(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_wire(v) for v in value]
    return value


def decode_wire(value: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> Any:
    """
    Walk a decoded JSON tree and replace every tagged node with bytes.
    Pure: the input is never modified. Nesting deeper than max_depth
    containers raises MalformedWire; tagged byte nodes are leaves and do not count.
    """
    return _decode(value, 0, max_depth)


def _decode(value: Any, depth: int, max_depth: int) -> Any:
    if is_tagged(value):
        # A tagged node is a leaf; a tag with siblings is ambiguous and refused
        return decode_bytes(value)
    if not isinstance(value, (dict, list)):
        return value
    if depth >= max_depth:
        raise MalformedWire(f"Wire value nested deeper than {max_depth} levels")

    if isinstance(value, dict):
        return {k: _decode(v, depth + 1, max_depth) for k, v in value.items()}
    return [_decode(v, depth + 1, max_depth) for v in value]
