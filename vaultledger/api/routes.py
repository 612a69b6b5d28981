"""
API Routes for the Credential Trust Ledger

Ledger:
- POST /ledger/blocks                    - Append a block
- GET  /ledger/blocks                    - List all blocks
- GET  /ledger/blocks/{hash}             - Get block by hash
- GET  /ledger/blocks/index/{index}      - Get block by index
- GET  /ledger/verify                    - Verify chain integrity
- GET  /ledger/stats                     - Chain statistics

Certificates:
- POST /certificates                     - Register a certificate
- GET  /certificates                     - List certificates
- GET  /certificates/stats               - Certificate statistics
- GET  /certificates/{id}                - Get certificate
- POST /certificates/{id}/verify         - Full composite verification
- GET  /certificates/issuer/{userId}     - Certificates by issuer

Tokens and keys:
- POST /tokens/revoke                    - Revoke a token fingerprint
- GET  /tokens/revoked                   - List revocations
- GET  /tokens/revoked/{tokenHash}       - Check revocation
- GET  /tokens/stats                     - Revocation/key statistics
- POST /users/{userId}/public-key        - Register a public key
- GET  /users/{userId}/public-key        - Get a public key
- GET  /users/public-keys                - List public keys

Writes are append/insert only, except public keys (last write wins).
StorageError is not caught here: the application-level handler turns
it into a 503.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..core import (
    CertificateRegistry,
    ConflictError,
    Ledger,
    PublicKeyDirectory,
    RevocationRegistry,
    TrustService,
    ValidationError,
)
from .deps import (
    get_certificates,
    get_ledger,
    get_public_keys,
    get_revocations,
    get_trust,
)


router = APIRouter()


# ============================================================
# Request Models
# ============================================================

class CamelModel(BaseModel):
    """Accepts camelCase (wire) or snake_case field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AppendBlockRequest(CamelModel):
    action: str = Field(..., min_length=1)
    data_hash: str = Field(..., min_length=1)


class RegisterCertificateRequest(CamelModel):
    certificate_id: str = Field(..., min_length=1)
    # Left as a raw object so the registry reports missing payload fields itself
    payload: dict[str, Any]
    signature: str = Field(..., min_length=1)
    issuer_public_key: str = Field(..., min_length=1)


class VerifyCertificateRequest(CamelModel):
    token: str = Field(..., min_length=1)


class RevokeTokenRequest(CamelModel):
    token_hash: str = Field(..., min_length=1)
    reason: Optional[str] = None


class RegisterPublicKeyRequest(CamelModel):
    public_key: str = Field(..., min_length=1)


# ============================================================
# Ledger
# ============================================================

@router.post(
    "/ledger/blocks",
    status_code=status.HTTP_201_CREATED,
    tags=["Ledger"],
    summary="Append a block",
)
async def append_block(
    request: AppendBlockRequest,
    ledger: Ledger = Depends(get_ledger),
):
    try:
        block = ledger.append(request.action, request.data_hash)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {
        "message": "Block appended successfully",
        "block": block.to_json(),
    }


@router.get("/ledger/blocks", tags=["Ledger"], summary="List all blocks")
async def list_blocks(ledger: Ledger = Depends(get_ledger)):
    blocks = ledger.all()
    return {
        "total": len(blocks),
        "blocks": [block.to_json() for block in blocks],
    }


@router.get("/ledger/blocks/index/{index}", tags=["Ledger"], summary="Get block by index")
async def get_block_by_index(index: str, ledger: Ledger = Depends(get_ledger)):
    try:
        position = int(index)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid index")

    block = ledger.get_by_index(position)
    if block is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Block not found")
    return block.to_json()


@router.get("/ledger/blocks/{block_hash}", tags=["Ledger"], summary="Get block by hash")
async def get_block_by_hash(block_hash: str, ledger: Ledger = Depends(get_ledger)):
    block = ledger.get_by_hash(block_hash)
    if block is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Block not found")
    return block.to_json()


@router.get("/ledger/verify", tags=["Ledger"], summary="Verify chain integrity")
async def verify_chain(ledger: Ledger = Depends(get_ledger)):
    stats = ledger.stats()
    return {
        "valid": stats["isValid"],
        "stats": stats,
    }


@router.get("/ledger/stats", tags=["Ledger"], summary="Chain statistics")
async def ledger_stats(ledger: Ledger = Depends(get_ledger)):
    return ledger.stats()


# ============================================================
# Certificates
# ============================================================

@router.post(
    "/certificates",
    status_code=status.HTTP_201_CREATED,
    tags=["Certificates"],
    summary="Register a certificate",
)
async def register_certificate(
    request: RegisterCertificateRequest,
    trust: TrustService = Depends(get_trust),
):
    """
    Register a signed certificate.

    The payload must carry issuerUserId, credentialId, tokenHash, expiry
    and ledgerBlockHash, and the referenced ledger block must exist.
    """
    try:
        certificate = trust.register_certificate(
            certificate_id=request.certificate_id,
            payload=request.payload,
            signature=request.signature,
            issuer_public_key=request.issuer_public_key,
        )
    except ConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {
        "message": "Certificate registered successfully",
        "certificate": certificate.to_json(),
    }


@router.get("/certificates", tags=["Certificates"], summary="List certificates")
async def list_certificates(certificates: CertificateRegistry = Depends(get_certificates)):
    items = certificates.all()
    return {
        "total": len(items),
        "certificates": [certificate.to_json() for certificate in items],
    }


@router.get("/certificates/stats", tags=["Certificates"], summary="Certificate statistics")
async def certificate_stats(certificates: CertificateRegistry = Depends(get_certificates)):
    return certificates.stats()


@router.get(
    "/certificates/issuer/{user_id}",
    tags=["Certificates"],
    summary="Certificates issued by a user",
)
async def certificates_by_issuer(
    user_id: str,
    certificates: CertificateRegistry = Depends(get_certificates),
):
    items = certificates.by_issuer(user_id)
    return {
        "total": len(items),
        "certificates": [certificate.to_json() for certificate in items],
    }


@router.get("/certificates/{certificate_id}", tags=["Certificates"], summary="Get certificate")
async def get_certificate(
    certificate_id: str,
    certificates: CertificateRegistry = Depends(get_certificates),
):
    certificate = certificates.get(certificate_id)
    if certificate is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Certificate not found")
    return certificate.to_json()


@router.post(
    "/certificates/{certificate_id}/verify",
    tags=["Certificates"],
    summary="Verify a certificate with its token",
)
async def verify_certificate(
    certificate_id: str,
    request: VerifyCertificateRequest,
    trust: TrustService = Depends(get_trust),
):
    """
    Full composite verification: signature, expiry, token, revocation,
    ledger anchor and chain integrity.

    Always 200. A negative outcome is {"valid": false, "reason": ...}.
    """
    result = trust.verify_certificate(certificate_id, request.token)

    if not result.valid:
        body: dict[str, Any] = {"valid": False, "reason": result.reason.value}
        if result.revocation is not None:
            body["revocationInfo"] = result.revocation.to_json()
        return body

    return {
        "valid": True,
        "certificate": result.certificate.to_json(),
        "block": result.block.to_json(),
    }


# ============================================================
# Tokens
# ============================================================

@router.post(
    "/tokens/revoke",
    status_code=status.HTTP_201_CREATED,
    tags=["Tokens"],
    summary="Revoke a token",
)
async def revoke_token(
    request: RevokeTokenRequest,
    trust: TrustService = Depends(get_trust),
):
    try:
        record, block = trust.revoke_token(request.token_hash, request.reason)
    except ConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {
        "message": "Token revoked successfully",
        "revocationInfo": record.to_json(),
        "ledgerBlock": block.to_json(),
    }


@router.get("/tokens/revoked", tags=["Tokens"], summary="List revoked tokens")
async def list_revoked(revocations: RevocationRegistry = Depends(get_revocations)):
    records = revocations.all()
    return {
        "total": len(records),
        "revokedTokens": [record.to_json() for record in records],
    }


@router.get("/tokens/revoked/{token_hash}", tags=["Tokens"], summary="Check revocation")
async def check_revocation(
    token_hash: str,
    revocations: RevocationRegistry = Depends(get_revocations),
):
    record = revocations.info(token_hash)
    return {
        "tokenHash": token_hash,
        "isRevoked": record is not None,
        "revocationInfo": record.to_json() if record is not None else None,
    }


@router.get("/tokens/stats", tags=["Tokens"], summary="Revocation and key statistics")
async def token_stats(trust: TrustService = Depends(get_trust)):
    return trust.token_stats()


# ============================================================
# Public Keys
# ============================================================

@router.get("/users/public-keys", tags=["Public Keys"], summary="List public keys")
async def list_public_keys(public_keys: PublicKeyDirectory = Depends(get_public_keys)):
    keys = public_keys.all()
    return {
        "total": len(keys),
        "publicKeys": keys,
    }


@router.post(
    "/users/{user_id}/public-key",
    status_code=status.HTTP_201_CREATED,
    tags=["Public Keys"],
    summary="Register a public key",
)
async def register_public_key(
    user_id: str,
    request: RegisterPublicKeyRequest,
    trust: TrustService = Depends(get_trust),
):
    try:
        block = trust.register_public_key(user_id, request.public_key)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {
        "message": "Public key registered successfully",
        "userId": user_id,
        "ledgerBlock": block.to_json(),
    }


@router.get("/users/{user_id}/public-key", tags=["Public Keys"], summary="Get a public key")
async def get_public_key(
    user_id: str,
    public_keys: PublicKeyDirectory = Depends(get_public_keys),
):
    entry = public_keys.entry(user_id)
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Public key not found")
    return entry.to_json()
