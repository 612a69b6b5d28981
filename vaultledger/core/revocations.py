"""
Revocation Registry

A set of revoked token fingerprints (sha256 of the token), each with a
reason and a timestamp.

MONOTONICITY:
- revoke() is insert-only; a second revoke of the same fingerprint
  raises AlreadyRevokedError
- records are never mutated or removed
- a successful revoke() is durable before it returns, so isRevoked(h)
  stays True across restarts

Fingerprints are computed by the caller (Hasher.hash_text(token)).
"""

from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Optional, TYPE_CHECKING

from pydantic import ValidationError as PydanticValidationError

from ..observability import get_logger, get_metrics
from ..schemas import DEFAULT_REVOCATION_REASON, RevocationRecord
from .errors import AlreadyRevokedError, StorageError, ValidationError
from .hasher import Hasher

if TYPE_CHECKING:
    from ..db.store import DocumentStore


logger = get_logger(__name__)


class RevocationRegistry:
    """Insert-only registry of revoked token fingerprints."""

    STORE_KEY = "revocations"

    def __init__(
        self,
        store: "DocumentStore",
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._store = store
        self._clock = clock
        self._lock = Lock()
        self._records: dict[str, RevocationRecord] = {}
        self._load()

    def _load(self) -> None:
        data = self._store.load(self.STORE_KEY)
        if data is None:
            return
        if not isinstance(data, list):
            raise StorageError(f"Document '{self.STORE_KEY}' must be a list of revocations")
        try:
            for item in data:
                record = RevocationRecord.model_validate(item)
                self._records[record.token_hash] = record
        except PydanticValidationError as e:
            raise StorageError(f"Document '{self.STORE_KEY}' contains a malformed record: {e}") from e
        logger.info("Revocations loaded", total=len(self._records))

    def revoke(self, token_hash: str, reason: Optional[str] = None) -> RevocationRecord:
        """
        Revoke a token fingerprint.

        Raises:
            ValidationError: token_hash is empty
            AlreadyRevokedError: token_hash is already revoked
            StorageError: the registry could not be persisted (nothing
                is recorded in memory either)
        """
        if not isinstance(token_hash, str) or not token_hash:
            raise ValidationError("tokenHash is required")
        if not Hasher.is_encodable([token_hash, reason or ""]):
            raise ValidationError("tokenHash and reason must be valid UTF-8 text")

        with self._lock:
            if token_hash in self._records:
                raise AlreadyRevokedError("Token already revoked")

            record = RevocationRecord(
                token_hash=token_hash,
                reason=reason or DEFAULT_REVOCATION_REASON,
                revoked_at=self._clock(),
            )

            self._records[token_hash] = record
            try:
                self._store.save(
                    self.STORE_KEY,
                    [r.to_json() for r in self._records.values()],
                )
            except Exception:
                del self._records[token_hash]
                get_metrics().record_storage_failure()
                logger.error("Revocation rolled back: persist failed",
                             token_hash=token_hash[:16])
                raise

        get_metrics().record_revocation()
        logger.info("Token revoked", token_hash=token_hash[:16], reason=record.reason)
        return record

    def is_revoked(self, token_hash: str) -> bool:
        with self._lock:
            return token_hash in self._records

    def info(self, token_hash: str) -> Optional[RevocationRecord]:
        with self._lock:
            return self._records.get(token_hash)

    def all(self) -> list[RevocationRecord]:
        with self._lock:
            return list(self._records.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
