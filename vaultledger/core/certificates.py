"""
Certificate Registry

Issues (registers) and verifies certificates.

The registry is deliberately certificate-local:
- register() does NOT check that payload.ledgerBlockHash exists in the
  ledger
- verify() does NOT consult the revocation registry or the ledger

Those cross-checks belong to the calling layer (TrustService), which
runs the cheap local checks here first and the external lookups after.
A caller that uses this registry directly skips them.

Verification outcomes are values, not exceptions:

    result = registry.verify(certificate_id, token)
    if not result.valid:
        print(result.reason.value)   # e.g. "Token hash mismatch"
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any, Callable, Optional, TYPE_CHECKING, Union

from pydantic import ValidationError as PydanticValidationError

from ..observability import get_logger, get_metrics
from ..schemas import Block, Certificate, CertificatePayload, RevocationRecord
from ..schemas import REQUIRED_PAYLOAD_FIELDS
from .errors import (
    ConflictError,
    InvalidPayloadError,
    InvalidSignatureError,
    StorageError,
    ValidationError,
)
from .hasher import CanonicalSerializationError, Hasher
from .signer import Signer

if TYPE_CHECKING:
    from ..db.store import DocumentStore


logger = get_logger(__name__)


class VerificationReason(str, Enum):
    """
    Every possible verification outcome.

    The values are the user-facing messages returned on the wire.
    """
    VALID = "Certificate valid"
    NOT_FOUND = "Certificate not found"
    EXPIRED = "Certificate expired"
    TOKEN_MISMATCH = "Token hash mismatch"
    INVALID_SIGNATURE = "Invalid signature"
    # Composite protocol outcomes (TrustService)
    REVOKED = "Token has been revoked"
    BLOCK_NOT_FOUND = "Ledger block not found"
    CHAIN_INVALID = "Ledger integrity check failed"


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a verification, with the evidence that produced it."""
    reason: VerificationReason
    certificate: Optional[Certificate] = None
    block: Optional[Block] = None
    revocation: Optional[RevocationRecord] = None

    @property
    def valid(self) -> bool:
        return self.reason is VerificationReason.VALID

    @classmethod
    def ok(cls, certificate: Certificate, block: Optional[Block] = None) -> "VerificationResult":
        return cls(VerificationReason.VALID, certificate=certificate, block=block)

    @classmethod
    def fail(cls, reason: VerificationReason, **evidence: Any) -> "VerificationResult":
        return cls(reason, **evidence)


class CertificateRegistry:
    """
    Insert-only registry of certificates keyed by certificateId.

    THREAD SAFETY:
    register() holds the registry lock across the duplicate check, the
    insert and the persist, so two concurrent registrations of the same
    id cannot both pass the existence check.
    """

    STORE_KEY = "certificates"

    def __init__(
        self,
        store: "DocumentStore",
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._store = store
        self._clock = clock
        self._lock = Lock()
        self._certificates: dict[str, Certificate] = {}
        self._load()

    def _load(self) -> None:
        data = self._store.load(self.STORE_KEY)
        if data is None:
            return
        if not isinstance(data, list):
            raise StorageError(f"Document '{self.STORE_KEY}' must be a list of certificates")
        try:
            for item in data:
                certificate = Certificate.model_validate(item)
                self._certificates[certificate.certificate_id] = certificate
        except PydanticValidationError as e:
            raise StorageError(f"Document '{self.STORE_KEY}' contains a malformed certificate: {e}") from e
        logger.info("Certificates loaded", total=len(self._certificates))

    def _persist(self, certificates: dict[str, Certificate]) -> None:
        self._store.save(
            self.STORE_KEY,
            [certificate.to_json() for certificate in certificates.values()],
        )

    # ================================================================
    # PAYLOAD HANDLING
    # ================================================================

    @staticmethod
    def parse_payload(payload: Union[CertificatePayload, dict]) -> CertificatePayload:
        """
        Validate a raw payload.

        Raises:
            InvalidPayloadError: If a required field is absent or malformed
        """
        if isinstance(payload, CertificatePayload):
            return payload
        if not isinstance(payload, dict):
            raise InvalidPayloadError("Invalid payload structure: payload must be an object")

        missing = [name for name in REQUIRED_PAYLOAD_FIELDS if payload.get(name) in (None, "")]
        if missing:
            raise InvalidPayloadError(
                f"Invalid payload structure: missing {', '.join(missing)}"
            )
        if not Hasher.is_encodable(payload):
            raise InvalidPayloadError("Invalid payload structure: text must be valid UTF-8")
        try:
            return CertificatePayload.model_validate(payload)
        except PydanticValidationError as e:
            raise InvalidPayloadError(f"Invalid payload structure: {e}") from e

    @staticmethod
    def signing_message(payload: CertificatePayload) -> bytes:
        """The exact bytes an issuer signs for this payload."""
        return Hasher.canonical_bytes(payload)

    @classmethod
    def _signature_valid(cls, payload: CertificatePayload, signature: str, public_key: str) -> bool:
        try:
            message = cls.signing_message(payload)
        except CanonicalSerializationError:
            return False
        return Signer.verify(public_key, message, signature)

    # ================================================================
    # WRITES
    # ================================================================

    def register(
        self,
        certificate_id: str,
        payload: Union[CertificatePayload, dict],
        signature: str,
        issuer_public_key: str,
    ) -> Certificate:
        """
        Register a new certificate.

        Raises:
            ConflictError: certificate_id is already registered
            InvalidPayloadError: a required payload field is absent
            InvalidSignatureError: signature does not verify under
                issuer_public_key over the canonical payload
            StorageError: the registry could not be persisted
        """
        if not isinstance(certificate_id, str) or not certificate_id:
            raise ValidationError("certificateId is required")
        if not Hasher.is_encodable([certificate_id, signature, issuer_public_key]):
            raise ValidationError("certificateId, signature and issuerPublicKey must be valid UTF-8 text")

        with self._lock:
            if certificate_id in self._certificates:
                raise ConflictError(f"Certificate already exists: {certificate_id}")

            parsed = self.parse_payload(payload)

            try:
                message = self.signing_message(parsed)
            except CanonicalSerializationError as e:
                raise InvalidPayloadError(f"Payload cannot be canonicalized: {e}") from e

            if not Signer.verify(issuer_public_key, message, signature):
                raise InvalidSignatureError("Invalid certificate signature")

            certificate = Certificate(
                certificate_id=certificate_id,
                payload=parsed,
                signature=signature,
                issuer_public_key=issuer_public_key,
                created_at=self._clock(),
            )

            self._certificates[certificate_id] = certificate
            try:
                self._persist(self._certificates)
            except Exception:
                del self._certificates[certificate_id]
                get_metrics().record_storage_failure()
                logger.error("Certificate registration rolled back: persist failed",
                             certificate_id=certificate_id)
                raise

        get_metrics().record_certificate()
        logger.info("Certificate registered", certificate_id=certificate_id,
                    issuer_user_id=parsed.issuer_user_id)
        return certificate

    # ================================================================
    # READS
    # ================================================================

    def get(self, certificate_id: str) -> Optional[Certificate]:
        with self._lock:
            return self._certificates.get(certificate_id)

    def all(self) -> list[Certificate]:
        """All certificates in registration order."""
        with self._lock:
            return list(self._certificates.values())

    def by_issuer(self, issuer_user_id: str) -> list[Certificate]:
        return [
            certificate for certificate in self.all()
            if certificate.payload.issuer_user_id == issuer_user_id
        ]

    def verify(self, certificate_id: str, token: str) -> VerificationResult:
        """
        Certificate-local verification.

        Evaluation order (first failure wins):
        1. certificate missing        -> NOT_FOUND
        2. now > payload.expiry       -> EXPIRED
        3. H(token) != tokenHash      -> TOKEN_MISMATCH
        4. signature does not verify  -> INVALID_SIGNATURE
        otherwise                     -> VALID
        """
        certificate = self.get(certificate_id)
        if certificate is None:
            return VerificationResult.fail(VerificationReason.NOT_FOUND)

        if certificate.is_expired(self._clock()):
            return VerificationResult.fail(VerificationReason.EXPIRED, certificate=certificate)

        if isinstance(token, str) and Hasher.is_encodable(token):
            token_hash = Hasher.hash_text(token)
        else:
            token_hash = ""
        if not Hasher.constant_time_compare(token_hash, certificate.payload.token_hash):
            return VerificationResult.fail(VerificationReason.TOKEN_MISMATCH, certificate=certificate)

        if not self._signature_valid(
            certificate.payload, certificate.signature, certificate.issuer_public_key
        ):
            return VerificationResult.fail(VerificationReason.INVALID_SIGNATURE, certificate=certificate)

        return VerificationResult.ok(certificate)

    def stats(self) -> dict[str, int]:
        now = self._clock()
        certificates = self.all()
        expired = sum(1 for certificate in certificates if certificate.is_expired(now))
        return {
            "total": len(certificates),
            "active": len(certificates) - expired,
            "expired": expired,
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._certificates)
