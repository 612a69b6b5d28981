"""
Error taxonomy shared by every store.

Exceptions are reserved for requests that cannot proceed (bad input,
duplicates, storage failures). Negative verification outcomes are NOT
exceptions - see VerificationResult in certificates.py.
"""


class VaultLedgerError(Exception):
    """Base exception for all vaultledger errors."""
    pass


class ValidationError(VaultLedgerError):
    """Raised when request fields are missing or malformed. Not retryable."""
    pass


class InvalidPayloadError(ValidationError):
    """Raised when a certificate payload lacks a required field."""
    pass


class InvalidSignatureError(ValidationError):
    """Raised when a signature does not verify at registration time."""
    pass


class NotFoundError(VaultLedgerError):
    """Raised when an id, hash, index or user is unknown."""
    pass


class ConflictError(VaultLedgerError):
    """Raised when an insert-only key already exists."""
    pass


class AlreadyRevokedError(ConflictError):
    """Raised when a token fingerprint has already been revoked."""
    pass


class StorageError(VaultLedgerError):
    """
    Raised when a durable read or write fails.

    Fatal to the triggering request. In-memory state is rolled back
    before this propagates, so retrying the whole operation is safe.
    """
    pass


class ChainError(VaultLedgerError):
    """Raised when a persisted chain document is structurally unusable."""
    pass
