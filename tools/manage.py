#!/usr/bin/env python3
"""
VaultLedger Management CLI

Commands for operating the credential trust ledger:
- verify-chain: Verify ledger chain integrity
- stats: Print ledger, certificate and revocation statistics
- generate-keypair: Generate an Ed25519 keypair for an issuer
- hash-token: Compute the fingerprint stored as tokenHash
- sign-payload: Sign a certificate payload with an issuer key
- export-chain: Export the chain to JSON

The store is selected exactly as for the server (VAULTLEDGER_STORE_DRIVER,
VAULTLEDGER_DATA_DIR, DATABASE_URL).

Usage:
    python -m tools.manage <command> [options]

Examples:
    python -m tools.manage verify-chain
    python -m tools.manage hash-token "my-secret-token"
    python -m tools.manage sign-payload --private-key <b64> --payload payload.json
"""

import argparse
import json
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


def _load_services():
    from vaultledger.services import build_services

    return build_services()


def cmd_verify_chain(args):
    """Verify the integrity of the ledger chain."""
    print("Loading ledger...")
    services = _load_services()
    ledger = services.ledger

    print(f"Ledger loaded: {len(ledger)} blocks")

    if ledger.verify():
        print("[OK] Chain integrity verified OK")
        print(f"  Chain head: {ledger.head.hash[:16]}...")
        return 0

    print("[FAIL] Chain integrity verification FAILED!")
    return 1


def cmd_stats(args):
    """Print statistics for every store."""
    services = _load_services()

    ledger_stats = services.ledger.stats()
    certificate_stats = services.certificates.stats()
    token_stats = services.trust.token_stats()

    print("=== VaultLedger Stats ===\n")
    print(f"Backend: {services.store.describe()}")
    print("\nLedger:")
    print(f"  Blocks: {ledger_stats['totalBlocks']}")
    print(f"  Genesis: {ledger_stats['genesisTimestamp'].isoformat()}")
    print(f"  Latest: {ledger_stats['latestTimestamp'].isoformat()}")
    print(f"  Valid: {'[OK]' if ledger_stats['isValid'] else '[FAIL]'}")
    print("\nCertificates:")
    print(f"  Total: {certificate_stats['total']}")
    print(f"  Active: {certificate_stats['active']}")
    print(f"  Expired: {certificate_stats['expired']}")
    print("\nTokens:")
    print(f"  Revoked: {token_stats['totalRevoked']}")
    print(f"  Public keys: {token_stats['totalPublicKeys']}")
    return 0


def cmd_generate_keypair(args):
    """Generate an Ed25519 keypair."""
    from vaultledger.core import Signer

    private_key, public_key = Signer.generate_keypair()

    print("Public key (register with POST /api/users/{userId}/public-key):")
    print(f"  {public_key}")
    print("\nPrivate key (KEEP SECRET!):")
    print(f"  {private_key}")
    return 0


def cmd_hash_token(args):
    """Print sha256(token), the value used as tokenHash."""
    from vaultledger.core import Hasher

    print(Hasher.hash_text(args.token))
    return 0


def cmd_sign_payload(args):
    """Sign a certificate payload read from a JSON file."""
    from vaultledger.core import CertificateRegistry, Signer, ValidationError

    with open(args.payload, "r", encoding="utf-8") as f:
        raw = json.load(f)

    try:
        payload = CertificateRegistry.parse_payload(raw)
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    message = CertificateRegistry.signing_message(payload)
    print(Signer.sign(message, args.private_key))
    return 0


def cmd_export_chain(args):
    """Export every block to JSON."""
    services = _load_services()
    blocks = [block.to_json() for block in services.ledger.all()]

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(blocks, f, indent=2)
        print(f"[OK] Exported {len(blocks)} blocks to {args.output}")
    else:
        json.dump(blocks, sys.stdout, indent=2)
        sys.stdout.write("\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m tools.manage",
        description="VaultLedger Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("verify-chain", help="Verify ledger chain integrity")
    subparsers.add_parser("stats", help="Print store statistics")
    subparsers.add_parser("generate-keypair", help="Generate an Ed25519 keypair")

    p_hash = subparsers.add_parser("hash-token", help="Compute a token fingerprint")
    p_hash.add_argument("token", help="Raw token value")

    p_sign = subparsers.add_parser("sign-payload", help="Sign a certificate payload")
    p_sign.add_argument("--private-key", required=True, help="Base64 Ed25519 private key")
    p_sign.add_argument("--payload", required=True, help="Path to the payload JSON file")

    p_export = subparsers.add_parser("export-chain", help="Export the chain to JSON")
    p_export.add_argument("--output", "-o", help="Output file (default: stdout)")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "verify-chain": cmd_verify_chain,
        "stats": cmd_stats,
        "generate-keypair": cmd_generate_keypair,
        "hash-token": cmd_hash_token,
        "sign-payload": cmd_sign_payload,
        "export-chain": cmd_export_chain,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
