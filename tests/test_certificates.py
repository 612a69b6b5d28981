"""
Tests for the Certificate Registry

The registry on its own: exactly-once registration, signature checks
and certificate-local verification. Revocation and ledger anchoring are
covered in test_trust.py.
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from vaultledger.core import (
    CertificateRegistry,
    ConflictError,
    InvalidPayloadError,
    InvalidSignatureError,
    Signer,
    StorageError,
    ValidationError,
    VerificationReason,
)

ANCHOR = "ab" * 32
TOKEN = "s3cret-token"


@pytest.fixture
def registry(store):
    return CertificateRegistry(store)


@pytest.fixture
def signed(issuer_keys, make_payload, sign):
    """A (payload, signature, public_key) triple that verifies."""
    private_key, public_key = issuer_keys
    payload = make_payload(ANCHOR, token=TOKEN)
    return payload, sign(payload, private_key), public_key


class TestRegistration:
    """register() is exactly-once and only accepts valid signatures."""

    def test_register_valid_certificate(self, registry, signed):
        payload, signature, public_key = signed
        certificate = registry.register("cert-1", payload, signature, public_key)

        assert certificate.certificate_id == "cert-1"
        assert certificate.payload.token_hash == payload["tokenHash"]
        assert certificate.payload.expiry.tzinfo is not None
        assert registry.get("cert-1") == certificate

    def test_duplicate_id_conflicts(self, registry, signed):
        payload, signature, public_key = signed
        registry.register("cert-1", payload, signature, public_key)

        with pytest.raises(ConflictError):
            registry.register("cert-1", payload, signature, public_key)

    def test_duplicate_id_conflicts_with_any_payload(self, registry, signed):
        """The id check comes first, even before payload validation."""
        payload, signature, public_key = signed
        registry.register("cert-1", payload, signature, public_key)

        with pytest.raises(ConflictError):
            registry.register("cert-1", {"garbage": True}, "x", "y")

    @pytest.mark.parametrize("missing", [
        "issuerUserId", "credentialId", "tokenHash", "expiry", "ledgerBlockHash",
    ])
    def test_missing_payload_field(self, registry, signed, missing):
        payload, signature, public_key = signed
        incomplete = {k: v for k, v in payload.items() if k != missing}

        with pytest.raises(InvalidPayloadError, match=missing):
            registry.register("cert-1", incomplete, signature, public_key)
        assert registry.get("cert-1") is None

    def test_certificate_id_must_be_utf8(self, registry, signed):
        payload, signature, public_key = signed
        with pytest.raises(ValidationError, match="UTF-8"):
            registry.register("cert-\ud800", payload, signature, public_key)
        assert len(registry) == 0

    def test_payload_must_be_object(self, registry, signed):
        _, signature, public_key = signed
        with pytest.raises(InvalidPayloadError):
            registry.register("cert-1", ["not", "an", "object"], signature, public_key)

    def test_invalid_signature_rejected(self, registry, signed):
        payload, _, public_key = signed
        with pytest.raises(InvalidSignatureError):
            registry.register("cert-1", payload, "AAAA", public_key)
        assert len(registry) == 0

    def test_signature_from_other_key_rejected(self, registry, signed):
        payload, signature, _ = signed
        _, other_public = Signer.generate_keypair()
        with pytest.raises(InvalidSignatureError):
            registry.register("cert-1", payload, signature, other_public)

    def test_tampered_payload_rejected(self, registry, signed):
        payload, signature, public_key = signed
        tampered = {**payload, "credentialId": "cred-2"}
        with pytest.raises(InvalidSignatureError):
            registry.register("cert-1", tampered, signature, public_key)

    def test_signature_errors_are_validation_errors(self):
        assert issubclass(InvalidSignatureError, ValidationError)
        assert issubclass(InvalidPayloadError, ValidationError)

    def test_extra_payload_fields_are_signed(self, registry, issuer_keys, make_payload, sign):
        private_key, public_key = issuer_keys
        payload = make_payload(ANCHOR, scope="read:records")
        signature = sign(payload, private_key)

        certificate = registry.register("cert-1", payload, signature, public_key)
        assert certificate.to_json()["payload"]["scope"] == "read:records"

        tampered = {**payload, "scope": "admin"}
        with pytest.raises(InvalidSignatureError):
            registry.register("cert-2", tampered, signature, public_key)

    def test_epoch_expiry_accepted(self, registry, issuer_keys, make_payload, sign):
        private_key, public_key = issuer_keys
        epoch = int((datetime.now(timezone.utc) + timedelta(days=1)).timestamp())
        payload = make_payload(ANCHOR, expiry=epoch)

        certificate = registry.register("cert-1", payload, sign(payload, private_key), public_key)
        assert certificate.payload.expiry == datetime.fromtimestamp(epoch, tz=timezone.utc)

    def test_failed_persist_rolls_back(self, failing_store, signed):
        payload, signature, public_key = signed
        registry = CertificateRegistry(failing_store)
        failing_store.failing.add(CertificateRegistry.STORE_KEY)

        with pytest.raises(StorageError):
            registry.register("cert-1", payload, signature, public_key)
        assert registry.get("cert-1") is None

        failing_store.failing.clear()
        registry.register("cert-1", payload, signature, public_key)
        assert registry.get("cert-1") is not None

    def test_unexpected_persist_error_rolls_back(self, failing_store, signed):
        payload, signature, public_key = signed
        registry = CertificateRegistry(failing_store)
        failing_store.failing.add(CertificateRegistry.STORE_KEY)
        failing_store.error = RuntimeError

        with pytest.raises(RuntimeError):
            registry.register("cert-1", payload, signature, public_key)
        assert registry.get("cert-1") is None
        assert len(registry) == 0

    @pytest.mark.parametrize("extra", [
        {"note": "x\ud800"},
        {"bad\udfff": "value"},
        {"nested": {"items": ["ok", "\ud83d"]}},
    ])
    def test_text_that_is_not_utf8_rejected(self, registry, signed, extra):
        payload, signature, public_key = signed
        with pytest.raises(InvalidPayloadError, match="UTF-8"):
            registry.register("cert-1", {**payload, **extra}, signature, public_key)
        assert registry.get("cert-1") is None

    @pytest.mark.parametrize("expiry", [
        "9999-12-31T23:59:59-01:00",
        "0001-01-01T00:00:00+01:00",
    ])
    def test_expiry_outside_utc_range_rejected(self, registry, signed, expiry):
        payload, signature, public_key = signed
        with pytest.raises(InvalidPayloadError, match="expiry"):
            registry.register("cert-1", {**payload, "expiry": expiry}, signature, public_key)

    def test_concurrent_registration_exactly_once(self, registry, signed):
        payload, signature, public_key = signed
        outcomes = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            try:
                registry.register("cert-1", payload, signature, public_key)
                outcomes.append("ok")
            except ConflictError:
                outcomes.append("conflict")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("conflict") == 7


class TestVerification:
    """verify() returns the specific reason, in evaluation order."""

    def test_valid(self, registry, signed):
        payload, signature, public_key = signed
        registry.register("cert-1", payload, signature, public_key)

        result = registry.verify("cert-1", TOKEN)
        assert result.valid
        assert result.reason is VerificationReason.VALID
        assert result.certificate.certificate_id == "cert-1"

    def test_not_found(self, registry):
        result = registry.verify("missing", TOKEN)
        assert not result.valid
        assert result.reason.value == "Certificate not found"

    def test_token_mismatch(self, registry, signed):
        payload, signature, public_key = signed
        registry.register("cert-1", payload, signature, public_key)

        result = registry.verify("cert-1", "wrong-token")
        assert result.reason.value == "Token hash mismatch"

        assert registry.verify("cert-1", "tok\ud800").reason is VerificationReason.TOKEN_MISMATCH

    def test_expired_wins_over_token(self, registry, issuer_keys, make_payload, sign):
        """An expired certificate is reported expired whatever the token."""
        private_key, public_key = issuer_keys
        payload = make_payload(ANCHOR, token=TOKEN,
                               expiry=datetime.now(timezone.utc) - timedelta(days=1))
        registry.register("cert-1", payload, sign(payload, private_key), public_key)

        assert registry.verify("cert-1", TOKEN).reason.value == "Certificate expired"
        assert registry.verify("cert-1", "wrong-token").reason.value == "Certificate expired"

    def test_expiry_uses_clock(self, store, signed):
        payload, signature, public_key = signed
        now = [datetime.now(timezone.utc)]
        registry = CertificateRegistry(store, clock=lambda: now[0])
        registry.register("cert-1", payload, signature, public_key)

        assert registry.verify("cert-1", TOKEN).valid
        now[0] = now[0] + timedelta(days=31)
        assert registry.verify("cert-1", TOKEN).reason is VerificationReason.EXPIRED

    def test_signature_reverified(self, store, signed):
        """A stored certificate whose signature no longer verifies is reported."""
        payload, signature, public_key = signed
        registry = CertificateRegistry(store)
        registry.register("cert-1", payload, signature, public_key)

        document = store.load(CertificateRegistry.STORE_KEY)
        document[0]["payload"]["credentialId"] = "forged"
        store.save(CertificateRegistry.STORE_KEY, document)

        result = CertificateRegistry(store).verify("cert-1", TOKEN)
        assert result.reason.value == "Invalid signature"

    def test_verify_is_local(self, registry, signed):
        """The anchor block is not looked up by the registry itself."""
        payload, signature, public_key = signed
        registry.register("cert-1", payload, signature, public_key)
        assert registry.verify("cert-1", TOKEN).block is None


class TestReads:
    """Listing, filtering, stats and reload."""

    def test_by_issuer_preserves_order(self, registry, issuer_keys, make_payload, sign):
        private_key, public_key = issuer_keys
        for i, issuer in enumerate(["alice", "bob", "alice"]):
            payload = make_payload(ANCHOR, issuerUserId=issuer, credentialId=f"cred-{i}")
            registry.register(f"cert-{i}", payload, sign(payload, private_key), public_key)

        alice = registry.by_issuer("alice")
        assert [c.certificate_id for c in alice] == ["cert-0", "cert-2"]
        assert registry.by_issuer("nobody") == []
        assert [c.certificate_id for c in registry.all()] == ["cert-0", "cert-1", "cert-2"]

    def test_stats(self, registry, issuer_keys, make_payload, sign):
        private_key, public_key = issuer_keys
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        for i, expiry in enumerate([None, None, past]):
            payload = make_payload(ANCHOR, expiry=expiry, credentialId=f"cred-{i}")
            registry.register(f"cert-{i}", payload, sign(payload, private_key), public_key)

        assert registry.stats() == {"total": 3, "active": 2, "expired": 1}

    def test_reload_keeps_verdict(self, store, signed):
        payload, signature, public_key = signed
        CertificateRegistry(store).register("cert-1", payload, signature, public_key)

        reloaded = CertificateRegistry(store)
        assert reloaded.verify("cert-1", TOKEN).valid
        assert reloaded.verify("cert-1", "wrong").reason is VerificationReason.TOKEN_MISMATCH

    def test_malformed_document_raises(self, store):
        store.save(CertificateRegistry.STORE_KEY, {"cert-1": {}})
        with pytest.raises(StorageError):
            CertificateRegistry(store)
