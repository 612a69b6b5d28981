"""
Certificate Schemas

A certificate is a signed claim that binds:
- a credential (credentialId) issued by a user (issuerUserId)
- a token fingerprint (tokenHash = sha256(token))
- an expiry
- a ledger anchor (ledgerBlockHash)

The signature covers Hasher.canonical_bytes(payload), i.e. the canonical
JSON of the payload under its wire (camelCase) keys, including any extra
keys the issuer chose to add.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


REQUIRED_PAYLOAD_FIELDS = (
    "issuerUserId",
    "credentialId",
    "tokenHash",
    "expiry",
    "ledgerBlockHash",
)


class CertificatePayload(BaseModel):
    """The signed portion of a certificate."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="allow",
    )

    issuer_user_id: str = Field(..., min_length=1)
    credential_id: str = Field(..., min_length=1)
    token_hash: str = Field(..., min_length=1, description="sha256 hex of the token")
    expiry: datetime = Field(
        ...,
        description="ISO-8601 or epoch seconds/milliseconds; naive values are UTC",
    )
    ledger_block_hash: str = Field(..., min_length=1)

    @field_validator("expiry")
    @classmethod
    def _expiry_is_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        try:
            return value.astimezone(timezone.utc)
        except OverflowError:
            raise ValueError("expiry out of range")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now > self.expiry

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Certificate(BaseModel):
    """
    A registered certificate.

    Immutable: there is no update operation, only creation and read.
    The issuer's public key is carried inline, so the signature is
    re-verified on every verification rather than trusted from
    registration time.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    certificate_id: str = Field(..., min_length=1)
    payload: CertificatePayload
    signature: str = Field(..., description="Base64 Ed25519 signature over the payload")
    issuer_public_key: str = Field(..., description="Base64 Ed25519 public key")
    created_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.payload.is_expired(now)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
