"""
Tests for the HTTP surface

Runs the FastAPI app in-process over an in-memory store.
"""

import json

import pytest
from fastapi.testclient import TestClient

from vaultledger.core import Hasher, Ledger, Signer
from vaultledger.main import create_app
from vaultledger.services import build_services

TOKEN = "s3cret-token"


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as client:
        yield client


@pytest.fixture
def anchor(client):
    response = client.post(
        "/api/ledger/blocks",
        json={"action": "ISSUE_CREDENTIAL", "dataHash": Hasher.hash_text("cred-1")},
    )
    assert response.status_code == 201
    return response.json()["block"]


@pytest.fixture
def certificate_body(anchor, issuer_keys, make_payload, sign):
    private_key, public_key = issuer_keys
    payload = make_payload(anchor["hash"], token=TOKEN)
    return {
        "certificateId": "cert-1",
        "payload": payload,
        "signature": sign(payload, private_key),
        "issuerPublicKey": public_key,
    }


@pytest.fixture
def registered(client, certificate_body):
    response = client.post("/api/certificates", json=certificate_body)
    assert response.status_code == 201
    return response.json()["certificate"]


class TestSystem:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy", "service": "vaultledger"}

    def test_health_detailed(self, client):
        response = client.get("/health/detailed")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["chain_integrity"]["valid"] is True

    def test_health_detailed_unhealthy_on_tampered_chain(self, client, services, anchor):
        services.ledger._chain[1] = services.ledger._chain[1].model_copy(update={"action": "X"})
        response = client.get("/health/detailed")
        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    def test_metrics(self, client, anchor):
        body = client.get("/metrics").json()
        assert body["blocks_appended"] >= 1
        assert "verifications" in body

    def test_service_info(self, client):
        body = client.get("/").json()
        assert body["name"] == "VaultLedger API"
        assert body["total_blocks"] == 1

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"


class TestLedgerRoutes:

    def test_append_block(self, client, anchor, services):
        assert anchor["index"] == 1
        assert set(anchor) == {"index", "timestamp", "action", "dataHash", "prevHash", "hash"}
        assert anchor["prevHash"] == services.ledger.get_by_index(0).hash

    def test_append_missing_field_is_400(self, client):
        response = client.post("/api/ledger/blocks", json={"action": "A"})
        assert response.status_code == 400

    def test_append_blank_action_is_400(self, client):
        response = client.post("/api/ledger/blocks", json={"action": "   ", "dataHash": "aa"})
        assert response.status_code == 400

    def test_list_blocks(self, client, anchor):
        body = client.get("/api/ledger/blocks").json()
        assert body["total"] == 2
        assert [b["index"] for b in body["blocks"]] == [0, 1]

    def test_get_by_hash(self, client, anchor):
        assert client.get(f"/api/ledger/blocks/{anchor['hash']}").json() == anchor
        assert client.get("/api/ledger/blocks/deadbeef").status_code == 404

    def test_get_by_index(self, client, anchor):
        assert client.get("/api/ledger/blocks/index/1").json() == anchor
        assert client.get("/api/ledger/blocks/index/9").status_code == 404
        assert client.get("/api/ledger/blocks/index/abc").status_code == 400

    def test_verify(self, client, anchor):
        body = client.get("/api/ledger/verify").json()
        assert body["valid"] is True
        assert body["stats"]["totalBlocks"] == 2

    def test_stats(self, client, anchor):
        body = client.get("/api/ledger/stats").json()
        assert body["totalBlocks"] == 2
        assert body["isValid"] is True
        assert body["latestTimestamp"].endswith("Z") or "+00:00" in body["latestTimestamp"]


class TestCertificateRoutes:

    def test_register(self, registered):
        assert registered["certificateId"] == "cert-1"
        assert registered["payload"]["tokenHash"] == Hasher.hash_text(TOKEN)
        assert "createdAt" in registered

    def test_register_duplicate_is_409(self, client, registered, certificate_body):
        response = client.post("/api/certificates", json=certificate_body)
        assert response.status_code == 409

    def test_register_bad_signature_is_400(self, client, certificate_body):
        certificate_body["signature"] = Signer.sign(b"something else", Signer.generate_keypair()[0])
        response = client.post("/api/certificates", json=certificate_body)
        assert response.status_code == 400

    def test_register_missing_payload_field_is_400(self, client, certificate_body):
        del certificate_body["payload"]["ledgerBlockHash"]
        response = client.post("/api/certificates", json=certificate_body)
        assert response.status_code == 400
        assert "ledgerBlockHash" in response.json()["detail"]

    def test_register_unknown_anchor_is_400(self, client, issuer_keys, make_payload, sign):
        private_key, public_key = issuer_keys
        payload = make_payload("00" * 32)
        response = client.post("/api/certificates", json={
            "certificateId": "cert-x",
            "payload": payload,
            "signature": sign(payload, private_key),
            "issuerPublicKey": public_key,
        })
        assert response.status_code == 400
        assert response.json()["detail"] == "Ledger block not found"

    def test_get(self, client, registered):
        assert client.get("/api/certificates/cert-1").json() == registered
        assert client.get("/api/certificates/missing").status_code == 404

    def test_list_and_stats(self, client, registered):
        assert client.get("/api/certificates").json()["total"] == 1
        assert client.get("/api/certificates/stats").json() == {
            "total": 1, "active": 1, "expired": 0,
        }

    def test_by_issuer(self, client, registered):
        body = client.get("/api/certificates/issuer/issuer-1").json()
        assert body["total"] == 1
        assert body["certificates"][0]["certificateId"] == "cert-1"
        assert client.get("/api/certificates/issuer/nobody").json()["total"] == 0

    def test_verify_valid(self, client, registered, anchor):
        body = client.post("/api/certificates/cert-1/verify", json={"token": TOKEN}).json()
        assert body["valid"] is True
        assert body["certificate"]["certificateId"] == "cert-1"
        assert body["block"]["hash"] == anchor["hash"]

    def test_verify_wrong_token(self, client, registered):
        response = client.post("/api/certificates/cert-1/verify", json={"token": "nope"})
        assert response.status_code == 200
        assert response.json() == {"valid": False, "reason": "Token hash mismatch"}

    def test_verify_unknown_certificate(self, client):
        response = client.post("/api/certificates/missing/verify", json={"token": TOKEN})
        assert response.status_code == 200
        assert response.json() == {"valid": False, "reason": "Certificate not found"}

    def test_verify_missing_token_is_400(self, client, registered):
        response = client.post("/api/certificates/cert-1/verify", json={})
        assert response.status_code == 400

    def test_verify_revoked(self, client, registered):
        client.post("/api/tokens/revoke", json={"tokenHash": Hasher.hash_text(TOKEN), "reason": "Leaked"})

        body = client.post("/api/certificates/cert-1/verify", json={"token": TOKEN}).json()
        assert body["valid"] is False
        assert body["reason"] == "Token has been revoked"
        assert body["revocationInfo"]["reason"] == "Leaked"


class TestTokenAndKeyRoutes:

    def test_revoke(self, client, services):
        token_hash = Hasher.hash_text(TOKEN)
        response = client.post("/api/tokens/revoke", json={"tokenHash": token_hash})

        assert response.status_code == 201
        body = response.json()
        assert body["revocationInfo"]["tokenHash"] == token_hash
        assert body["revocationInfo"]["reason"] == "No reason provided"
        assert body["ledgerBlock"]["action"] == "REVOKE_TOKEN"
        assert body["ledgerBlock"]["dataHash"] == token_hash
        assert services.ledger.head.hash == body["ledgerBlock"]["hash"]

    def test_revoke_twice_is_409(self, client):
        token_hash = Hasher.hash_text(TOKEN)
        client.post("/api/tokens/revoke", json={"tokenHash": token_hash})
        response = client.post("/api/tokens/revoke", json={"tokenHash": token_hash})
        assert response.status_code == 409

    def test_revoke_missing_hash_is_400(self, client):
        assert client.post("/api/tokens/revoke", json={"reason": "x"}).status_code == 400

    def test_check_revocation(self, client):
        token_hash = Hasher.hash_text(TOKEN)
        before = client.get(f"/api/tokens/revoked/{token_hash}").json()
        assert before == {"tokenHash": token_hash, "isRevoked": False, "revocationInfo": None}

        client.post("/api/tokens/revoke", json={"tokenHash": token_hash, "reason": "Lost"})
        after = client.get(f"/api/tokens/revoked/{token_hash}").json()
        assert after["isRevoked"] is True
        assert after["revocationInfo"]["reason"] == "Lost"

    def test_list_revoked_and_stats(self, client):
        client.post("/api/tokens/revoke", json={"tokenHash": "aa"})
        client.post("/api/users/u1/public-key", json={"publicKey": "k"})

        body = client.get("/api/tokens/revoked").json()
        assert body["total"] == 1
        assert body["revokedTokens"][0]["tokenHash"] == "aa"
        assert client.get("/api/tokens/stats").json() == {"totalRevoked": 1, "totalPublicKeys": 1}

    def test_register_public_key(self, client):
        _, public_key = Signer.generate_keypair()
        response = client.post("/api/users/alice/public-key", json={"publicKey": public_key})

        assert response.status_code == 201
        body = response.json()
        assert body["userId"] == "alice"
        assert body["ledgerBlock"]["action"] == "REGISTER_PUBLIC_KEY"
        assert body["ledgerBlock"]["dataHash"] == Hasher.hash_text(public_key)

        assert client.get("/api/users/alice/public-key").json() == {
            "userId": "alice", "publicKey": public_key,
        }

    def test_public_key_last_write_wins(self, client):
        client.post("/api/users/alice/public-key", json={"publicKey": "first"})
        client.post("/api/users/alice/public-key", json={"publicKey": "second"})

        assert client.get("/api/users/alice/public-key").json()["publicKey"] == "second"
        assert client.get("/api/users/public-keys").json() == {
            "total": 1, "publicKeys": {"alice": "second"},
        }

    def test_unknown_public_key_is_404(self, client):
        assert client.get("/api/users/nobody/public-key").status_code == 404

    def test_public_key_missing_body_is_400(self, client):
        assert client.post("/api/users/alice/public-key", json={}).status_code == 400


class TestStorageFailures:
    """A failed durable write is a 503 and leaves nothing behind."""

    def test_append_storage_failure_is_503(self, failing_store):
        services = build_services(failing_store)
        failing_store.failing.add(Ledger.STORE_KEY)

        with TestClient(create_app(services)) as client:
            response = client.post("/api/ledger/blocks", json={"action": "A", "dataHash": "aa"})
            assert response.status_code == 503
            assert client.get("/api/ledger/blocks").json()["total"] == 1


def post_raw(client, path, body):
    """Send body as ASCII-escaped JSON, so lone surrogates reach the server."""
    return client.post(
        path,
        content=json.dumps(body),
        headers={"Content-Type": "application/json"},
    )


class TestTextThatIsNotUtf8:
    """Lone surrogates in JSON bodies are a 400, never a 500."""

    def test_register_then_clean_register_still_works(self, client, certificate_body):
        bad = {**certificate_body, "certificateId": "c-bad",
               "payload": {**certificate_body["payload"], "note": "x\ud800"}}
        response = post_raw(client, "/api/certificates", bad)
        assert response.status_code == 400
        assert client.get("/api/certificates/c-bad").status_code == 404

        response = client.post("/api/certificates", json=certificate_body)
        assert response.status_code == 201

    def test_append_block(self, client):
        response = post_raw(client, "/api/ledger/blocks", {"action": "A\ud800", "dataHash": "aa"})
        assert response.status_code == 400
        assert client.get("/api/ledger/blocks").json()["total"] == 1

    def test_invalid_request_body(self, client):
        response = post_raw(client, "/api/ledger/blocks", {"action": "A\ud800"})
        assert response.status_code == 400
        assert "input" not in response.json()["errors"][0]

    def test_revoke_reason(self, client):
        response = post_raw(client, "/api/tokens/revoke", {"tokenHash": "aa", "reason": "x\udfff"})
        assert response.status_code == 400
        assert client.get("/api/tokens/revoked").json()["total"] == 0

    def test_verify_token_is_a_mismatch(self, client, registered):
        response = post_raw(client, "/api/certificates/cert-1/verify", {"token": "t\ud800"})
        assert response.status_code == 200
        assert response.json() == {"valid": False, "reason": "Token hash mismatch"}

    def test_expiry_out_of_range(self, client, certificate_body):
        certificate_body["payload"]["expiry"] = "9999-12-31T23:59:59-01:00"
        response = client.post("/api/certificates", json=certificate_body)
        assert response.status_code == 400
        assert "expiry" in response.json()["detail"]
