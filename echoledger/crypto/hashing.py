# echoledger/crypto/hashing.py
"""
Content and revision hashing. Every function takes the HashingMode explicitly;
there is no default, so a chain can never silently mix modes.
"""
import hashlib
from typing import List

from echoledger.core.canon import canonical_fields, canonical_json
from echoledger.core.types import HashingMode, Revision

# Domain separation tags (leaf/node confusion, CVE-2012-2459)
DOMAIN_LEAF = b"\x00"
DOMAIN_NODE = b"\x01"

TREE_LEAF_SIZE = 64 * 1024


def _sha256(data: bytes, domain: bytes = b"") -> bytes:
    return hashlib.sha256(domain + data).digest()


def merkle_root(leaves: List[bytes]) -> bytes:
    """
    Ordered Merkle root. Leaves are hashed with the LEAF tag, parents with the
    NODE tag, and the last node is duplicated on odd levels.
    """
    if not leaves:
        return _sha256(b"", DOMAIN_LEAF)

    nodes = [_sha256(leaf, DOMAIN_LEAF) for leaf in leaves]
    while len(nodes) > 1:
        if len(nodes) % 2 == 1:
            nodes.append(nodes[-1])
        nodes = [_sha256(nodes[i] + nodes[i + 1], DOMAIN_NODE) for i in range(0, len(nodes), 2)]
    return nodes[0]


def content_hash(data: bytes, mode: HashingMode) -> str:
    """file_hash of a byte buffer: lowercase hex, no 0x prefix."""
    data = bytes(data)
    if mode is HashingMode.SCALAR:
        return hashlib.sha256(data).hexdigest()
    if mode is HashingMode.TREE:
        leaves = [data[i:i + TREE_LEAF_SIZE] for i in range(0, len(data), TREE_LEAF_SIZE)]
        return merkle_root(leaves).hex()
    raise ValueError(f"Unsupported hashing mode: {mode!r}")


def revision_hash(revision: Revision, mode: HashingMode) -> str:
    """
    Verification hash of a revision (its key in the chain).
    Embedded content is excluded; it is bound through file_hash.
    """
    fields = revision.hash_fields()
    if mode is HashingMode.SCALAR:
        return "0x" + hashlib.sha256(canonical_json(fields)).hexdigest()
    if mode is HashingMode.TREE:
        return "0x" + merkle_root([leaf for _, leaf in canonical_fields(fields)]).hex()
    raise ValueError(f"Unsupported hashing mode: {mode!r}")
