"""
Service Construction

Builds the document store and every service object exactly once at
process start. Handlers receive them through app.state (see
vaultledger.api.deps), never through module-level singletons.

Store selection follows vaultledger.db.config:
- VAULTLEDGER_STORE_DRIVER=memory   -> InMemoryDocumentStore
- VAULTLEDGER_STORE_DRIVER=file     -> JsonFileDocumentStore(VAULTLEDGER_DATA_DIR)
- VAULTLEDGER_STORE_DRIVER=psycopg2 -> PostgresDocumentStore
"""

from dataclasses import dataclass
from typing import Optional

from .core import (
    CertificateRegistry,
    Ledger,
    PublicKeyDirectory,
    RevocationRegistry,
    StorageError,
    TrustService,
)
from .db.config import StoreDriver, get_data_dir, get_database_config, get_store_driver
from .db.store import (
    DocumentStore,
    InMemoryDocumentStore,
    JsonFileDocumentStore,
    PostgresDocumentStore,
)
from .observability import get_logger


logger = get_logger(__name__)


@dataclass
class Services:
    """Everything a request handler may need."""
    store: DocumentStore
    ledger: Ledger
    certificates: CertificateRegistry
    revocations: RevocationRegistry
    public_keys: PublicKeyDirectory
    trust: TrustService

    def close(self) -> None:
        self.store.close()


def create_document_store(driver: Optional[StoreDriver] = None) -> DocumentStore:
    """Create the configured DocumentStore."""
    driver = driver or get_store_driver()

    if driver == StoreDriver.MEMORY:
        logger.warning("Using in-memory document store (no persistence)")
        return InMemoryDocumentStore()

    if driver == StoreDriver.FILE:
        data_dir = get_data_dir()
        logger.info("Using JSON file document store", data_dir=str(data_dir))
        return JsonFileDocumentStore(data_dir)

    return _create_psycopg2_store()


def _create_psycopg2_store() -> DocumentStore:
    import psycopg2

    config = get_database_config()

    def connection_factory():
        return psycopg2.connect(config.to_dsn())

    store = PostgresDocumentStore(connection_factory)
    store.ensure_schema()
    logger.info(
        "PostgreSQL document store ready",
        database=config.to_url(include_password=False),
    )
    return store


def build_services(store: Optional[DocumentStore] = None) -> Services:
    """
    Load (or initialise) all four stores from one DocumentStore.

    The ledger is built first so the genesis block is persisted before
    any other store is touched.

    Raises:
        StorageError: If a persisted document cannot be read
        ChainError: If the chain document is structurally unusable
    """
    store = store if store is not None else create_document_store()

    try:
        ledger = Ledger(store)
        certificates = CertificateRegistry(store)
        revocations = RevocationRegistry(store)
        public_keys = PublicKeyDirectory(store)
    except StorageError:
        logger.exception("Failed to load persisted state", backend=store.describe())
        raise

    trust = TrustService(ledger, certificates, revocations, public_keys)

    logger.info(
        "Services ready",
        backend=store.describe(),
        total_blocks=len(ledger),
        certificates=len(certificates),
        revocations=len(revocations),
        public_keys=len(public_keys),
    )

    return Services(
        store=store,
        ledger=ledger,
        certificates=certificates,
        revocations=revocations,
        public_keys=public_keys,
        trust=trust,
    )
