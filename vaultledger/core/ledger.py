"""
Ledger - Append-Only Hash Chain

Nothing is edited. Things happen, and each one becomes a block.

Every block commits to:
- its position (index)
- when it was appended (timestamp)
- what happened (action) and the hash of the data involved (dataHash)
- the hash of the block before it (prevHash)

so changing any field of any block breaks either its own hash or the
prevHash link of its successor.

CHAIN GUARANTEES:
- Block 0 is the genesis block: action GENESIS, prevHash "0",
  dataHash = sha256(GENESIS_SEED). Created once, lazily, when no chain
  document exists, and persisted before anything else happens.
- Indices are contiguous (0, 1, 2, ...)
- The chain is strictly linear and single-writer

CONCURRENCY & DURABILITY:
- One lock serializes read-head / append / persist
- The ENTIRE chain is persisted on every append
- If the persist fails, the in-memory chain is truncated back to its
  pre-append length and the error propagates
"""

import time
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Optional, TYPE_CHECKING

from pydantic import ValidationError as PydanticValidationError

from ..observability import get_logger, get_metrics
from ..schemas import Block, GENESIS_ACTION, GENESIS_PREV_HASH
from .errors import ChainError, ValidationError
from .hasher import CanonicalSerializationError, Hasher

if TYPE_CHECKING:
    from ..db.store import DocumentStore


logger = get_logger(__name__)


class Ledger:
    """
    The append-only ledger.

    Construct with a DocumentStore; the chain is loaded (or genesis is
    created) immediately.
    """

    STORE_KEY = "chain"

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._lock = Lock()
        self._chain: list[Block] = []
        self._load()

    # ================================================================
    # LOADING
    # ================================================================

    def _load(self) -> None:
        data = self._store.load(self.STORE_KEY)

        if data is None:
            self._genesis()
            return

        if not isinstance(data, list) or not data:
            raise ChainError(
                f"Chain document '{self.STORE_KEY}' must be a non-empty list of blocks"
            )

        try:
            chain = [Block.model_validate(item) for item in data]
        except PydanticValidationError as e:
            raise ChainError(f"Chain document contains a malformed block: {e}") from e

        for position, block in enumerate(chain):
            if block.index != position:
                raise ChainError(
                    f"Chain document has index {block.index} at position {position}"
                )

        self._chain = chain

        # A tampered document still loads; verify() is what reports it
        if not self._verify_blocks(chain):
            logger.error("Loaded chain failed integrity verification",
                         total_blocks=len(chain))
        else:
            logger.info("Ledger loaded", total_blocks=len(chain),
                        head=chain[-1].hash[:16])

    def _genesis(self) -> None:
        """Create and persist block 0. Called once, when no chain exists."""
        timestamp = datetime.now(timezone.utc)
        data_hash = Hasher.genesis_data_hash()
        block = Block(
            index=0,
            timestamp=timestamp,
            action=GENESIS_ACTION,
            data_hash=data_hash,
            prev_hash=GENESIS_PREV_HASH,
            hash=Hasher.hash_block(0, timestamp, GENESIS_ACTION, data_hash, GENESIS_PREV_HASH),
        )
        self._store.save(self.STORE_KEY, [block.to_json()])
        self._chain = [block]
        logger.info("Genesis block created", hash=block.hash[:16])

    def _persist(self, chain: list[Block]) -> None:
        self._store.save(self.STORE_KEY, [block.to_json() for block in chain])

    # ================================================================
    # WRITES
    # ================================================================

    def append(self, action: str, data_hash: str) -> Block:
        """
        Append a new block recording action over data_hash.

        Raises:
            ValidationError: If action or data_hash is empty
            StorageError: If the chain could not be persisted (the
                in-memory chain is rolled back first)
        """
        if not isinstance(action, str) or not action.strip():
            raise ValidationError("action is required")
        if not isinstance(data_hash, str) or not data_hash.strip():
            raise ValidationError("dataHash is required")
        if not Hasher.is_encodable([action, data_hash]):
            raise ValidationError("action and dataHash must be valid UTF-8 text")

        start = time.perf_counter()

        with self._lock:
            head = self._chain[-1]
            index = head.index + 1
            timestamp = datetime.now(timezone.utc)
            block = Block(
                index=index,
                timestamp=timestamp,
                action=action,
                data_hash=data_hash,
                prev_hash=head.hash,
                hash=Hasher.hash_block(index, timestamp, action, data_hash, head.hash),
            )

            length_before = len(self._chain)
            self._chain.append(block)
            try:
                self._persist(self._chain)
            except Exception:
                del self._chain[length_before:]
                get_metrics().record_storage_failure()
                logger.error("Ledger append rolled back: persist failed",
                             action=action, index=index)
                raise

        get_metrics().record_append((time.perf_counter() - start) * 1000)
        logger.info("Block appended", index=block.index, action=action,
                    hash=block.hash[:16])
        return block

    # ================================================================
    # READS
    # ================================================================

    def _snapshot(self) -> list[Block]:
        with self._lock:
            return list(self._chain)

    def get_by_hash(self, block_hash: str) -> Optional[Block]:
        for block in self._snapshot():
            if block.hash == block_hash:
                return block
        return None

    def get_by_index(self, index: int) -> Optional[Block]:
        chain = self._snapshot()
        if index < 0 or index >= len(chain):
            return None
        return chain[index]

    def all(self) -> list[Block]:
        """All blocks ordered by index (a snapshot)."""
        return self._snapshot()

    @property
    def head(self) -> Block:
        with self._lock:
            return self._chain[-1]

    def __len__(self) -> int:
        with self._lock:
            return len(self._chain)

    # ================================================================
    # VERIFICATION
    # ================================================================

    @staticmethod
    def _verify_blocks(chain: list[Block]) -> bool:
        prev: Optional[Block] = None
        for block in chain:
            try:
                computed = Hasher.hash_block(
                    block.index, block.timestamp, block.action,
                    block.data_hash, block.prev_hash,
                )
            except CanonicalSerializationError:
                logger.warning("Block cannot be hashed", index=block.index)
                return False
            if not Hasher.constant_time_compare(computed, block.hash):
                logger.warning("Block has invalid hash", index=block.index)
                return False

            # Genesis is exempt from the link check, but not from the hash check
            if prev is not None and block.prev_hash != prev.hash:
                logger.warning("Block has invalid prevHash", index=block.index)
                return False

            prev = block
        return True

    def verify(self) -> bool:
        """
        Verify the entire chain.

        Recomputes every block hash (genesis included) and checks every
        prevHash link for index >= 1. Any mismatch fails the whole check.
        """
        return self._verify_blocks(self._snapshot())

    def stats(self) -> dict[str, Any]:
        chain = self._snapshot()
        return {
            "totalBlocks": len(chain),
            "genesisTimestamp": chain[0].timestamp,
            "latestTimestamp": chain[-1].timestamp,
            "isValid": self._verify_blocks(chain),
        }
