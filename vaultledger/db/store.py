"""
Document Store Abstraction

The stores above this layer only need two things:
- load a JSON value by key
- durably store a JSON value by key

Implementations:
- InMemoryDocumentStore: development and testing (no durability)
- JsonFileDocumentStore: one human-readable <key>.json file per key
- PostgresDocumentStore: one JSONB row per key

WRITE CONTRACT:
save() returns only after the value is durable. A crash mid-write must
never leave a half-written document behind:
- the file store writes a temporary file in the same directory, fsyncs
  it and atomically renames it over the target
- the PostgreSQL store upserts inside a single transaction

Every failure is raised as StorageError. Nothing is silently reset to a
default: a corrupt document is an error, not an empty store.
"""

import copy
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Optional

try:
    from psycopg2.extras import Json as Psycopg2Json
except ImportError:
    # psycopg2 is an optional extra; PostgresDocumentStore refuses to start without it
    Psycopg2Json = None

from ..core.errors import StorageError
from ..observability import get_logger


logger = get_logger(__name__)


class DocumentStore(ABC):
    """
    Key/value persistence for JSON documents.

    Values are plain JSON types (dict, list, str, int, bool, None).
    """

    @abstractmethod
    def load(self, key: str) -> Optional[Any]:
        """
        Load the value stored under key.

        Returns:
            The stored value, or None if the key has never been written

        Raises:
            StorageError: If the value exists but cannot be read
        """
        pass

    @abstractmethod
    def save(self, key: str, value: Any) -> None:
        """
        Durably store value under key, replacing any previous value.

        Raises:
            StorageError: If the write did not become durable
        """
        pass

    def exists(self, key: str) -> bool:
        return self.load(key) is not None

    def describe(self) -> str:
        """Short human-readable description for logs and health checks."""
        return type(self).__name__

    def close(self) -> None:
        """Release resources. Default: nothing to release."""
        pass


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

class InMemoryDocumentStore(DocumentStore):
    """
    In-memory document store.

    Suitable for development and tests. Values are copied on the way in
    and out so callers never share mutable state with the store.
    """

    def __init__(self):
        self._documents: dict[str, Any] = {}
        self._lock = Lock()

    def load(self, key: str) -> Optional[Any]:
        with self._lock:
            if key not in self._documents:
                return None
            return copy.deepcopy(self._documents[key])

    def save(self, key: str, value: Any) -> None:
        try:
            # Round-trip through JSON so only JSON-compatible values are accepted
            snapshot = json.loads(json.dumps(value))
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value for '{key}' is not JSON-serializable: {e}") from e
        with self._lock:
            self._documents[key] = snapshot

    def clear(self) -> None:
        """Drop all documents (for testing only)."""
        with self._lock:
            self._documents.clear()


# ============================================================
# JSON FILE IMPLEMENTATION
# ============================================================

class JsonFileDocumentStore(DocumentStore):
    """
    One pretty-printed JSON file per key.

    Layout:
        <data_dir>/chain.json
        <data_dir>/certificates.json
        <data_dir>/revocations.json
        <data_dir>/public-keys.json
    """

    SUFFIX = ".json"

    def __init__(self, data_dir: Path | str):
        self._data_dir = Path(data_dir)
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create data directory {self._data_dir}: {e}") from e

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def path_for(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise StorageError(f"Invalid document key: {key!r}")
        return self._data_dir / f"{key}{self.SUFFIX}"

    def load(self, key: str) -> Optional[Any]:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise StorageError(f"Document {path} is not valid JSON: {e}") from e
        except OSError as e:
            raise StorageError(f"Cannot read {path}: {e}") from e

    def save(self, key: str, value: Any) -> None:
        path = self.path_for(key)
        try:
            data = json.dumps(value, indent=2, ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value for '{key}' is not JSON-serializable: {e}") from e

        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{key}.", suffix=".tmp", dir=self._data_dir
            )
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
            tmp_path = None
            self._fsync_dir()
        except OSError as e:
            raise StorageError(f"Cannot write {path}: {e}") from e
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    logger.warning("Could not remove temporary file", path=tmp_path)

    def _fsync_dir(self) -> None:
        """Make the rename itself durable (POSIX only)."""
        if os.name != "posix":
            return
        dir_fd = os.open(self._data_dir, os.O_RDONLY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)

    def describe(self) -> str:
        return f"JsonFileDocumentStore({self._data_dir})"


# ============================================================
# POSTGRESQL IMPLEMENTATION
# ============================================================

class PostgresDocumentStore(DocumentStore):
    """
    PostgreSQL document store.

    One row per key in vault_documents. Each save() is a single
    upsert transaction, so a document is always either the old or the
    new value.

    Usage:
        store = PostgresDocumentStore(lambda: psycopg2.connect(dsn))
        store.ensure_schema()
    """

    TABLE = "vault_documents"

    SCHEMA_SQL = f"""
        CREATE TABLE IF NOT EXISTS {TABLE} (
            key TEXT PRIMARY KEY,
            value JSONB NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """

    def __init__(self, connection_factory: Callable[[], Any]):
        if Psycopg2Json is None:
            raise StorageError(
                "psycopg2 is not installed. Install with: pip install 'vaultledger[postgres]'"
            )
        self._connection_factory = connection_factory

    def _run(self, fn: Callable[[Any], Any]) -> Any:
        """Run fn(cursor) in its own transaction, committing on success."""
        try:
            conn = self._connection_factory()
        except Exception as e:
            raise StorageError(f"Cannot connect to PostgreSQL: {e}") from e
        try:
            with conn:
                with conn.cursor() as cursor:
                    return fn(cursor)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"PostgreSQL operation failed: {e}") from e
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        self._run(lambda cursor: cursor.execute(self.SCHEMA_SQL))

    def load(self, key: str) -> Optional[Any]:
        def _select(cursor):
            cursor.execute(f"SELECT value FROM {self.TABLE} WHERE key = %s", (key,))
            row = cursor.fetchone()
            return None if row is None else row[0]

        return self._run(_select)

    def save(self, key: str, value: Any) -> None:
        def _upsert(cursor):
            cursor.execute(
                f"""
                INSERT INTO {self.TABLE} (key, value, updated_at)
                VALUES (%s, %s, now())
                ON CONFLICT (key) DO UPDATE
                SET value = EXCLUDED.value, updated_at = EXCLUDED.updated_at
                """,
                (key, Psycopg2Json(value)),
            )

        self._run(_upsert)
