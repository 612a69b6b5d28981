"""
Ledger Block Schema

A block records one action and a content hash, linked to its
predecessor by prevHash. Blocks are immutable once appended.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


GENESIS_ACTION = "GENESIS"
GENESIS_PREV_HASH = "0"


class BlockAction:
    """Action tags appended by the service itself. Callers may use any tag."""
    GENESIS = GENESIS_ACTION
    REVOKE_TOKEN = "REVOKE_TOKEN"
    REGISTER_PUBLIC_KEY = "REGISTER_PUBLIC_KEY"


class Block(BaseModel):
    """One entry of the hash chain."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    index: int = Field(..., ge=0, description="Position in the chain, genesis is 0")
    timestamp: datetime = Field(..., description="When the block was appended (UTC)")
    action: str = Field(..., min_length=1, description="Action tag, e.g. REVOKE_TOKEN")
    data_hash: str = Field(..., description="Hex hash of the data this block records")
    prev_hash: str = Field(..., description="Hash of block index-1, '0' for genesis")
    hash: str = Field(..., description="Hash over (index, timestamp, action, dataHash, prevHash)")

    @field_validator("timestamp")
    @classmethod
    def _timestamp_is_utc(cls, value: datetime) -> datetime:
        # Naive timestamps in a stored chain are read as UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        try:
            return value.astimezone(timezone.utc)
        except OverflowError:
            raise ValueError("timestamp out of range")

    @property
    def is_genesis(self) -> bool:
        return self.index == 0

    def to_json(self) -> dict:
        """Wire / persisted form (camelCase keys, ISO timestamps)."""
        return self.model_dump(mode="json", by_alias=True)
