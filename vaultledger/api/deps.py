"""
Dependency injection for API routes.

Service objects are built once in the application lifespan and stored
on app.state.services.
"""

from fastapi import Request

from ..core import (
    CertificateRegistry,
    Ledger,
    PublicKeyDirectory,
    RevocationRegistry,
    TrustService,
)
from ..services import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_ledger(request: Request) -> Ledger:
    return get_services(request).ledger


def get_certificates(request: Request) -> CertificateRegistry:
    return get_services(request).certificates


def get_revocations(request: Request) -> RevocationRegistry:
    return get_services(request).revocations


def get_public_keys(request: Request) -> PublicKeyDirectory:
    return get_services(request).public_keys


def get_trust(request: Request) -> TrustService:
    return get_services(request).trust
