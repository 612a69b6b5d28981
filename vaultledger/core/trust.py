"""
Trust Service - the calling layer over the four stores

The stores never hold references to each other. Everything that spans
more than one store lives here:

- certificate registration requires the anchor block to exist
- a certificate is trusted only after the composite protocol below
- token revocations and public key registrations are recorded in the
  ledger

COMPOSITE VERIFICATION PROTOCOL (short-circuits on first failure):
1. CertificateRegistry.verify(id, token) is VALID
   (exists, not expired, token matches, signature verifies)
2. the payload's tokenHash is not revoked
3. the anchor block payload.ledgerBlockHash exists in the ledger
4. the ledger chain verifies

Local checks come first so a bad token never costs a chain scan.
"""

from threading import Lock
from typing import Optional, Tuple, Union

from ..observability import get_logger, get_metrics
from ..schemas import Block, BlockAction, Certificate, CertificatePayload, RevocationRecord
from .certificates import CertificateRegistry, VerificationReason, VerificationResult
from .errors import AlreadyRevokedError, ConflictError, ValidationError
from .hasher import Hasher
from .ledger import Ledger
from .public_keys import PublicKeyDirectory
from .revocations import RevocationRegistry


logger = get_logger(__name__)


class TrustService:
    """
    Orchestrates the ledger, certificate registry, revocation registry
    and public key directory.

    Constructed once at process start and shared by every request.
    """

    def __init__(
        self,
        ledger: Ledger,
        certificates: CertificateRegistry,
        revocations: RevocationRegistry,
        public_keys: PublicKeyDirectory,
    ):
        self.ledger = ledger
        self.certificates = certificates
        self.revocations = revocations
        self.public_keys = public_keys
        self._revoke_lock = Lock()

    # ================================================================
    # CERTIFICATES
    # ================================================================

    def register_certificate(
        self,
        certificate_id: str,
        payload: Union[CertificatePayload, dict],
        signature: str,
        issuer_public_key: str,
    ) -> Certificate:
        """
        Register a certificate whose anchor block exists in the ledger.

        Raises:
            ConflictError: certificate_id already registered
            InvalidPayloadError: required payload field absent
            ValidationError: anchor block not found
            InvalidSignatureError: signature does not verify
            StorageError: persist failed
        """
        if self.certificates.get(certificate_id) is not None:
            raise ConflictError(f"Certificate already exists: {certificate_id}")

        parsed = self.certificates.parse_payload(payload)

        if self.ledger.get_by_hash(parsed.ledger_block_hash) is None:
            raise ValidationError("Ledger block not found")

        return self.certificates.register(certificate_id, parsed, signature, issuer_public_key)

    def verify_certificate(self, certificate_id: str, token: str) -> VerificationResult:
        """Run the full composite verification protocol."""
        result = self._verify(certificate_id, token)
        get_metrics().record_verification(result.reason.name)
        if result.valid:
            logger.info("Certificate verified", certificate_id=certificate_id)
        else:
            logger.info("Certificate rejected", certificate_id=certificate_id,
                        reason=result.reason.value)
        return result

    def _verify(self, certificate_id: str, token: str) -> VerificationResult:
        local = self.certificates.verify(certificate_id, token)
        if not local.valid:
            return local

        certificate = local.certificate
        token_hash = certificate.payload.token_hash

        revocation = self.revocations.info(token_hash)
        if revocation is not None:
            return VerificationResult.fail(
                VerificationReason.REVOKED,
                certificate=certificate,
                revocation=revocation,
            )

        block = self.ledger.get_by_hash(certificate.payload.ledger_block_hash)
        if block is None:
            return VerificationResult.fail(VerificationReason.BLOCK_NOT_FOUND, certificate=certificate)

        if not self.ledger.verify():
            return VerificationResult.fail(
                VerificationReason.CHAIN_INVALID,
                certificate=certificate,
                block=block,
            )

        return VerificationResult.ok(certificate, block=block)

    # ================================================================
    # REVOCATIONS
    # ================================================================

    def revoke_token(
        self,
        token_hash: str,
        reason: Optional[str] = None,
    ) -> Tuple[RevocationRecord, Block]:
        """
        Revoke a token fingerprint and record it in the ledger.

        The REVOKE_TOKEN block is appended before the revocation is
        stored. If storing the revocation then fails, the block stays
        (the ledger is append-only) and retrying the whole call is safe:
        it appends a second block and stores the revocation.

        Raises:
            ValidationError: token_hash is empty
            AlreadyRevokedError: token_hash is already revoked
            StorageError: persist failed
        """
        if not isinstance(token_hash, str) or not token_hash:
            raise ValidationError("Missing tokenHash")
        if not Hasher.is_encodable([token_hash, reason or ""]):
            raise ValidationError("tokenHash and reason must be valid UTF-8 text")

        with self._revoke_lock:
            if self.revocations.is_revoked(token_hash):
                raise AlreadyRevokedError("Token already revoked")
            block = self.ledger.append(BlockAction.REVOKE_TOKEN, token_hash)
            record = self.revocations.revoke(token_hash, reason)

        return record, block

    # ================================================================
    # PUBLIC KEYS
    # ================================================================

    def register_public_key(self, user_id: str, public_key: str) -> Block:
        """
        Register (or replace) a user's public key and record
        sha256(publicKey) in the ledger.

        Registering the same key again is idempotent in the directory,
        so a retry after a failed ledger append is safe.
        """
        if not isinstance(public_key, str) or not public_key:
            raise ValidationError("Missing publicKey")

        self.public_keys.register(user_id, public_key)
        return self.ledger.append(BlockAction.REGISTER_PUBLIC_KEY, Hasher.hash_text(public_key))

    # ================================================================
    # STATS
    # ================================================================

    def token_stats(self) -> dict[str, int]:
        return {
            "totalRevoked": len(self.revocations),
            "totalPublicKeys": len(self.public_keys),
        }
