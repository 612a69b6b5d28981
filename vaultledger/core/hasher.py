"""
Content Hashing and Canonical Serialization

Every hash in the system goes through this module:
- block hashes in the ledger
- token fingerprints
- public key fingerprints
- the bytes an issuer signs for a certificate

Signers and verifiers MUST produce byte-identical canonical output,
so the rules below are frozen. Changing them requires a new
SERIALIZATION_VERSION.

CANONICAL SERIALIZATION RULES (version 1):
1. "__canon_v": 1 is injected into every top-level object
2. Object keys sorted recursively (Unicode code point order)
3. None values omitted
4. Empty strings, lists and objects preserved
5. Datetimes: timezone-aware only, rendered in UTC as
   YYYY-MM-DDTHH:MM:SS.ffffffZ
6. Enums: their value
7. UUIDs: lowercase string
8. Decimals: str()
9. Floats, bytes and sets: rejected
10. JSON output: sorted keys, separators (",", ":"), ASCII only
11. Top level must be an object
"""

import hashlib
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


GENESIS_SEED = "VaultLedger Genesis Block"


class CanonicalSerializationError(Exception):
    """Raised when data cannot be canonically serialized."""
    pass


class Hasher:
    """SHA-256 hashing over a single fixed canonical JSON encoding."""

    SERIALIZATION_VERSION = 1

    @classmethod
    def _serialize_value(cls, value: Any, path: str = "") -> Any:
        if value is None:
            return None

        if isinstance(value, Enum):
            return value.value

        # bool before int: bool is an int subclass
        if isinstance(value, bool):
            return value

        if isinstance(value, int):
            return value

        if isinstance(value, str):
            return value

        if isinstance(value, datetime):
            return cls._serialize_datetime(value, path)

        if isinstance(value, date):
            return value.strftime("%Y-%m-%d")

        if isinstance(value, UUID):
            return str(value).lower()

        if isinstance(value, Decimal):
            return str(value)

        if isinstance(value, float):
            raise CanonicalSerializationError(
                f"Cannot serialize float at {path}. "
                "Floats are banned in canonical payloads; use an integer, "
                "a Decimal or a string."
            )

        if isinstance(value, (list, tuple)):
            return [
                cls._serialize_value(item, f"{path}[{i}]")
                for i, item in enumerate(value)
            ]

        if isinstance(value, dict):
            return cls._to_canonical_dict(value, path)

        if hasattr(value, "model_dump"):
            return cls._to_canonical_dict(
                value.model_dump(mode="python", by_alias=True), path
            )

        if isinstance(value, (bytes, bytearray)):
            raise CanonicalSerializationError(
                f"Cannot serialize bytes at {path}. Encode as base64 or hex first."
            )

        if isinstance(value, (set, frozenset)):
            raise CanonicalSerializationError(
                f"Cannot serialize set at {path}. Sets have no stable ordering."
            )

        raise CanonicalSerializationError(
            f"Cannot serialize {type(value).__name__} at {path}."
        )

    @classmethod
    def _serialize_datetime(cls, dt: datetime, path: str) -> str:
        if dt.tzinfo is None:
            raise CanonicalSerializationError(
                f"Datetime at {path} is timezone-naive. "
                "All datetimes must be timezone-aware."
            )
        utc_dt = dt.astimezone(timezone.utc)
        return utc_dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc_dt.microsecond:06d}Z"

    @classmethod
    def _to_canonical_dict(cls, data: dict, path: str = "") -> dict[str, Any]:
        result = {}
        for key in data.keys():
            if not isinstance(key, str):
                raise CanonicalSerializationError(
                    f"Dictionary key at {path} must be string, "
                    f"got {type(key).__name__}"
                )
        for key in sorted(data.keys()):
            key_path = f"{path}.{key}" if path else key
            serialized = cls._serialize_value(data[key], key_path)
            if serialized is not None:
                result[key] = serialized
        return result

    @classmethod
    def canonicalize(cls, data: Any) -> str:
        """
        Convert a dict (or pydantic model) to its canonical JSON string.

        Pydantic models are dumped with their wire aliases, so the
        canonical form of a model matches the JSON a client sends.

        Raises:
            CanonicalSerializationError: If data cannot be serialized
                deterministically
        """
        if hasattr(data, "model_dump"):
            data = data.model_dump(mode="python", by_alias=True)

        if not isinstance(data, dict):
            raise CanonicalSerializationError(
                f"Top-level canonicalization requires a dict/object, "
                f"got {type(data).__name__}."
            )

        canonical_dict = {
            "__canon_v": cls.SERIALIZATION_VERSION,
            **cls._to_canonical_dict(data),
        }
        return json.dumps(
            canonical_dict,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=True,
            allow_nan=False,
        )

    @classmethod
    def canonical_bytes(cls, data: Any) -> bytes:
        """UTF-8 bytes of the canonical form. This is what gets signed."""
        return cls.canonicalize(data).encode("utf-8")

    @staticmethod
    def hash_bytes(data: bytes) -> str:
        """SHA-256 of raw bytes, lowercase hex."""
        return hashlib.sha256(data).hexdigest()

    @classmethod
    def hash_text(cls, text: str) -> str:
        """SHA-256 of the UTF-8 encoding of text (token and key fingerprints)."""
        return cls.hash_bytes(text.encode("utf-8"))

    @classmethod
    def hash_data(cls, data: Any) -> str:
        """SHA-256 of the canonical form of data."""
        return cls.hash_bytes(cls.canonical_bytes(data))

    @classmethod
    def hash_block(
        cls,
        index: int,
        timestamp: datetime,
        action: str,
        data_hash: str,
        prev_hash: str,
    ) -> str:
        """
        Hash the linked fields of a ledger block.

        Fields are combined through the canonical encoding rather than by
        raw string concatenation, so field boundaries are unambiguous.
        """
        return cls.hash_data({
            "index": index,
            "timestamp": timestamp,
            "action": action,
            "dataHash": data_hash,
            "prevHash": prev_hash,
        })

    @classmethod
    def genesis_data_hash(cls) -> str:
        return cls.hash_text(GENESIS_SEED)

    @staticmethod
    def constant_time_compare(a: str, b: str) -> bool:
        """Compare two hex strings without an early exit on the first mismatch."""
        if len(a) != len(b):
            return False
        result = 0
        for x, y in zip(a, b):
            result |= ord(x) ^ ord(y)
        return result == 0

    @classmethod
    def is_encodable(cls, value: Any) -> bool:
        """
        True if every string in value (keys included) encodes as UTF-8.

        JSON text may carry lone surrogates ("\\ud800") that survive the
        ASCII-only canonical form but cannot be written or returned as UTF-8.
        """
        if isinstance(value, str):
            try:
                value.encode("utf-8")
            except UnicodeEncodeError:
                return False
            return True
        if isinstance(value, dict):
            return all(cls.is_encodable(k) and cls.is_encodable(v) for k, v in value.items())
        if isinstance(value, (list, tuple)):
            return all(cls.is_encodable(item) for item in value)
        return True
