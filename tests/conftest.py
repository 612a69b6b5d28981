"""Shared fixtures for the credential trust ledger tests."""

from datetime import datetime, timedelta, timezone

import pytest

from vaultledger.core import CertificateRegistry, Hasher, Signer, StorageError
from vaultledger.db import InMemoryDocumentStore
from vaultledger.services import build_services


class FailingDocumentStore(InMemoryDocumentStore):
    """
    In-memory store whose writes fail for the keys listed in `failing`.

    `error` is the exception type raised, StorageError unless a test
    needs the store to fail some other way.
    """

    def __init__(self):
        super().__init__()
        self.failing: set[str] = set()
        self.error: type[Exception] = StorageError

    def save(self, key, value):
        if key in self.failing:
            raise self.error(f"Simulated write failure for '{key}'")
        super().save(key, value)


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def failing_store():
    return FailingDocumentStore()


@pytest.fixture
def services(store):
    return build_services(store)


@pytest.fixture
def issuer_keys():
    """(private_key_b64, public_key_b64) for a test issuer."""
    return Signer.generate_keypair()


@pytest.fixture
def make_payload():
    """Build a raw (wire-shaped) certificate payload."""

    def _make(ledger_block_hash, token="s3cret-token", expiry=None, **extra):
        if expiry is None:
            expiry = datetime.now(timezone.utc) + timedelta(days=30)
        payload = {
            "issuerUserId": "issuer-1",
            "credentialId": "cred-1",
            "tokenHash": Hasher.hash_text(token),
            "expiry": expiry.isoformat() if isinstance(expiry, datetime) else expiry,
            "ledgerBlockHash": ledger_block_hash,
        }
        payload.update(extra)
        return payload

    return _make


@pytest.fixture
def sign():
    """Sign a raw payload the way an issuer would."""

    def _sign(payload, private_key):
        parsed = CertificateRegistry.parse_payload(payload)
        return Signer.sign(CertificateRegistry.signing_message(parsed), private_key)

    return _sign
