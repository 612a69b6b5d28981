"""
Signature Service

Ed25519 (PyNaCl) signatures for certificate payloads.

Keys and signatures travel as standard base64:
- public key: 32 raw bytes
- private key: 32 raw bytes (the seed)
- signature: 64 raw bytes (detached)

Issuers sign the canonical payload bytes from Hasher.canonical_bytes().
The registry only ever verifies; sign() exists for issuers, tests and
the management CLI.
"""

import base64
import binascii
from typing import Tuple, Union

from nacl.exceptions import BadSignatureError, CryptoError
from nacl.signing import SigningKey, VerifyKey


class Signer:
    """Ed25519 signing and verification over base64 key material."""

    @staticmethod
    def generate_keypair() -> Tuple[str, str]:
        """
        Generate a new Ed25519 keypair.

        Returns:
            Tuple of (private_key_b64, public_key_b64)
        """
        signing_key = SigningKey.generate()
        private_b64 = base64.b64encode(bytes(signing_key)).decode("ascii")
        public_b64 = base64.b64encode(bytes(signing_key.verify_key)).decode("ascii")
        return private_b64, public_b64

    @staticmethod
    def public_key_for(private_key_b64: str) -> str:
        """Derive the base64 public key for a base64 private key."""
        signing_key = SigningKey(base64.b64decode(private_key_b64, validate=True))
        return base64.b64encode(bytes(signing_key.verify_key)).decode("ascii")

    @staticmethod
    def sign(message: Union[bytes, str], private_key_b64: str) -> str:
        """
        Sign a message.

        Args:
            message: Bytes to sign (str is UTF-8 encoded)
            private_key_b64: Base64-encoded Ed25519 private key

        Returns:
            Base64-encoded detached signature
        """
        if isinstance(message, str):
            message = message.encode("utf-8")
        signing_key = SigningKey(base64.b64decode(private_key_b64, validate=True))
        signed = signing_key.sign(message)
        return base64.b64encode(signed.signature).decode("ascii")

    @staticmethod
    def verify(
        public_key_b64: str,
        message: Union[bytes, str],
        signature_b64: str,
    ) -> bool:
        """
        Verify a detached Ed25519 signature.

        Never raises: malformed keys, signatures or base64 are simply
        not a valid signature.
        """
        if not isinstance(public_key_b64, str) or not isinstance(signature_b64, str):
            return False
        if isinstance(message, str):
            message = message.encode("utf-8")
        try:
            verify_key = VerifyKey(base64.b64decode(public_key_b64, validate=True))
            signature = base64.b64decode(signature_b64, validate=True)
            verify_key.verify(message, signature)
            return True
        except (BadSignatureError, CryptoError, binascii.Error, ValueError, TypeError):
            return False
