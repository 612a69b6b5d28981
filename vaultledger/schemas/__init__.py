# Wire and persisted schemas for the credential trust ledger.

from .block import (
    Block,
    BlockAction,
    GENESIS_ACTION,
    GENESIS_PREV_HASH,
)
from .certificate import (
    Certificate,
    CertificatePayload,
    REQUIRED_PAYLOAD_FIELDS,
)
from .revocation import (
    DEFAULT_REVOCATION_REASON,
    PublicKeyEntry,
    RevocationRecord,
)

__all__ = [
    # Ledger
    "Block",
    "BlockAction",
    "GENESIS_ACTION",
    "GENESIS_PREV_HASH",
    # Certificates
    "Certificate",
    "CertificatePayload",
    "REQUIRED_PAYLOAD_FIELDS",
    # Revocations / keys
    "DEFAULT_REVOCATION_REASON",
    "PublicKeyEntry",
    "RevocationRecord",
]
