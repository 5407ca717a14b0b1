# echoledger/core/canon.py
from typing import Any, Iterator, Mapping, Tuple

import jcs


def canonical_json(obj: Any) -> bytes:
    """
    Deterministic UTF-8 bytes per RFC 8785 (JSON Canonicalization Scheme).
    Used for every revision hash, so two implementations hashing the same
    revision fields always agree.

    Binary values are not JSON; run them through encoding.encode_wire first.
    """
    try:
        return jcs.canonicalize(obj)
    except TypeError as e:
        raise TypeError(f"Value is not JSON-canonicalizable (bytes must be wire-encoded): {e}") from e


def canonical_fields(fields: Mapping[str, Any]) -> Iterator[Tuple[str, bytes]]:
    """
    Yield (key, canonical_json({key: value})) in key order.
    These are the per-field leaves of a tree-mode revision hash.
    """
    for key in sorted(fields):
        yield key, canonical_json({key: fields[key]})
