# echoledger/crypto/keys.py
from typing import Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from echoledger.core.encoding import b64url_decode, b64url_encode


class SignerKeyPair:
    """
    Ed25519 identity for signing revisions.

    The signer address is the base64url public key, so a verifier needs nothing
    but the chain to check who signed. sign_message() matches the signing
    callback shape the recording session expects: message -> (signature, address).
    """

    def __init__(self, private_key: Ed25519PrivateKey = None, public_key: Ed25519PublicKey = None):
        if private_key is None and public_key is None:
            raise ValueError("A private or public key is required")
        self._private = private_key
        self._public = public_key or private_key.public_key()

    @classmethod
    def generate(cls) -> "SignerKeyPair":
        return cls(private_key=Ed25519PrivateKey.generate())

    @classmethod
    def from_private_bytes(cls, raw: bytes) -> "SignerKeyPair":
        return cls(private_key=Ed25519PrivateKey.from_private_bytes(raw))

    @classmethod
    def from_address(cls, address: str) -> "SignerKeyPair":
        """Verification-only key pair from a signer address. Raises ValueError if malformed."""
        raw = b64url_decode(address)
        if len(raw) != 32:
            raise ValueError(f"Signer address must encode 32 bytes, got {len(raw)}")
        return cls(public_key=Ed25519PublicKey.from_public_bytes(raw))

    @property
    def can_sign(self) -> bool:
        return self._private is not None

    @property
    def address(self) -> str:
        return self.public_key_b64url()

    def public_key_b64url(self) -> str:
        raw = self._public.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return b64url_encode(raw)

    def private_bytes(self) -> bytes:
        if not self.can_sign:
            raise ValueError("Verification-only key pair has no private key")
        return self._private.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def sign_bytes(self, data: bytes) -> bytes:
        if not self.can_sign:
            raise ValueError("Verification-only key pair cannot sign")
        return self._private.sign(data)

    def verify_bytes(self, signature: bytes, data: bytes) -> bool:
        try:
            self._public.verify(signature, data)
            return True
        except InvalidSignature:
            return False

    def sign_message(self, message: str) -> Tuple[str, str]:
        """Signing callback: returns (base64url signature, signer address)."""
        signature = self.sign_bytes(message.encode("utf-8"))
        return b64url_encode(signature), self.address


def verify_message(address: str, message: str, signature: str) -> bool:
    """
    True if signature (base64url) is a valid signature of message by address.
    Malformed addresses or signatures verify as False rather than raising.
    """
    try:
        verifier = SignerKeyPair.from_address(address)
        sig_bytes = b64url_decode(signature)
    except (ValueError, TypeError):
        return False
    if len(sig_bytes) != 64:
        return False
    return verifier.verify_bytes(sig_bytes, message.encode("utf-8"))
