"""
Revocation and public key records.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


DEFAULT_REVOCATION_REASON = "No reason provided"


class RevocationRecord(BaseModel):
    """
    Irrevocable record invalidating a token fingerprint.

    Created at most once per tokenHash. Never mutated or removed.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    token_hash: str = Field(..., min_length=1)
    reason: str = DEFAULT_REVOCATION_REASON
    revoked_at: datetime

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class PublicKeyEntry(BaseModel):
    """Current public key of an identity. Last write wins."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    user_id: str = Field(..., min_length=1)
    public_key: str = Field(..., min_length=1)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
