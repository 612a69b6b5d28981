# Core stores and cryptographic primitives
from .errors import (
    AlreadyRevokedError,
    ChainError,
    ConflictError,
    InvalidPayloadError,
    InvalidSignatureError,
    NotFoundError,
    StorageError,
    ValidationError,
    VaultLedgerError,
)
from .hasher import CanonicalSerializationError, Hasher
from .signer import Signer
from .ledger import Ledger
from .certificates import CertificateRegistry, VerificationReason, VerificationResult
from .revocations import RevocationRegistry
from .public_keys import PublicKeyDirectory
from .trust import TrustService

__all__ = [
    # Errors
    "AlreadyRevokedError",
    "ChainError",
    "ConflictError",
    "InvalidPayloadError",
    "InvalidSignatureError",
    "NotFoundError",
    "StorageError",
    "ValidationError",
    "VaultLedgerError",
    # Crypto
    "CanonicalSerializationError",
    "Hasher",
    "Signer",
    # Stores
    "Ledger",
    "CertificateRegistry",
    "VerificationReason",
    "VerificationResult",
    "RevocationRegistry",
    "PublicKeyDirectory",
    "TrustService",
]
