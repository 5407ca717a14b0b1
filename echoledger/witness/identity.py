# echoledger/witness/identity.py
"""
Anchor identity derived from the recording signer.

The signer signs one fixed message; SHA-256 of that signature seeds an
Ed25519 key used for witness broadcasts. The same signer always lands on the
same anchor, and the anchor private key never has to be stored.
"""
import hashlib
import logging
from typing import Callable, Tuple

from echoledger.core.encoding import b64url_decode
from echoledger.crypto.keys import SignerKeyPair

logger = logging.getLogger(__name__)

# Never change this text: every existing anchor identity depends on it.
DERIVATION_MESSAGE = (
    "ECHO - Derive Anchor Identity\n"
    "\n"
    "This signature deterministically generates the key that witnesses your audio recordings.\n"
    "\n"
    "By signing this message, you authorize ECHO to derive an anchor identity from your signature."
)


def _signature_bytes(signature: str) -> bytes:
    """Accept 0x-hex (wallet style) or base64url (SignerKeyPair) signatures."""
    if signature.startswith("0x"):
        return bytes.fromhex(signature[2:])
    return b64url_decode(signature)


def derive_anchor_keys(signature: str) -> SignerKeyPair:
    """Anchor key pair from a signature over DERIVATION_MESSAGE. Raises ValueError if undecodable."""
    raw = _signature_bytes(signature)
    if not raw:
        raise ValueError("Cannot derive an anchor identity from an empty signature")
    seed = hashlib.sha256(raw).digest()
    return SignerKeyPair.from_private_bytes(seed)


def anchor_from_signer(signer: Callable[[str], Tuple[str, str]]) -> SignerKeyPair:
    """Ask the signer for the derivation signature and derive the anchor key pair from it."""
    signature, address = signer(DERIVATION_MESSAGE)
    keys = derive_anchor_keys(signature)
    logger.info("Anchor identity %s derived for signer %s", keys.address[:16], address[:16])
    return keys
