"""
Public Key Directory

Maps an identity (userId) to its current public key.

Unlike the other stores this one is overwrite-only: registering a key
for a user replaces the previous one and keeps no history here. The
history lives in the ledger instead, where TrustService appends a
REGISTER_PUBLIC_KEY block carrying sha256(publicKey) for every
registration.
"""

from threading import Lock
from typing import Optional, TYPE_CHECKING

from ..observability import get_logger, get_metrics
from ..schemas import PublicKeyEntry
from .errors import StorageError, ValidationError
from .hasher import Hasher

if TYPE_CHECKING:
    from ..db.store import DocumentStore


logger = get_logger(__name__)


class PublicKeyDirectory:
    """userId -> public key, last write wins."""

    STORE_KEY = "public-keys"

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._lock = Lock()
        self._keys: dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        data = self._store.load(self.STORE_KEY)
        if data is None:
            return
        if not isinstance(data, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in data.items()
        ):
            raise StorageError(f"Document '{self.STORE_KEY}' must map userId to public key")
        self._keys = dict(data)
        logger.info("Public keys loaded", total=len(self._keys))

    def register(self, user_id: str, public_key: str) -> None:
        """
        Set the public key for user_id, replacing any previous key.

        Raises:
            ValidationError: user_id or public_key is empty
            StorageError: the directory could not be persisted (the
                previous key stays in effect)
        """
        if not isinstance(user_id, str) or not user_id:
            raise ValidationError("userId is required")
        if not isinstance(public_key, str) or not public_key:
            raise ValidationError("publicKey is required")
        if not Hasher.is_encodable([user_id, public_key]):
            raise ValidationError("userId and publicKey must be valid UTF-8 text")

        with self._lock:
            updated = {**self._keys, user_id: public_key}
            try:
                self._store.save(self.STORE_KEY, updated)
            except StorageError:
                get_metrics().record_storage_failure()
                logger.error("Public key registration failed: persist failed", user_id=user_id)
                raise
            replaced = user_id in self._keys
            self._keys = updated

        get_metrics().record_public_key()
        logger.info("Public key registered", user_id=user_id, replaced=replaced)

    def get(self, user_id: str) -> Optional[str]:
        with self._lock:
            return self._keys.get(user_id)

    def entry(self, user_id: str) -> Optional[PublicKeyEntry]:
        public_key = self.get(user_id)
        if public_key is None:
            return None
        return PublicKeyEntry(user_id=user_id, public_key=public_key)

    def all(self) -> dict[str, str]:
        with self._lock:
            return dict(self._keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
