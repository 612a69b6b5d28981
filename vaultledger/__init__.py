"""
VaultLedger - Credential Trust Ledger

An append-only hash chain with a certificate registry, a revocation
registry and a public key directory anchored to it.
"""

__version__ = "0.1.0"
