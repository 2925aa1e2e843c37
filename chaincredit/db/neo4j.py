"""
ChainCredit Database Layer

Neo4j connection management and schema initialization for the durable
portfolio backend.
"""
from contextlib import contextmanager

from neo4j import GraphDatabase
from neo4j.exceptions import Neo4jError
import structlog

from chaincredit.config import settings

logger = structlog.get_logger()

_driver = None


def get_driver():
    """Get or create Neo4j driver (singleton)."""
    global _driver
    if _driver is None:
        _driver = GraphDatabase.driver(
            settings.NEO4J_URI,
            auth=(settings.NEO4J_USER, settings.NEO4J_PASSWORD),
        )
        logger.info("neo4j_connected", uri=settings.NEO4J_URI)
    return _driver


@contextmanager
def get_session():
    """Get a Neo4j session (context manager)."""
    driver = get_driver()
    session = driver.session()
    try:
        yield session
    finally:
        session.close()


def init_schema():
    """Initialize Neo4j schema constraints and indexes for portfolios."""
    constraints = [
        # Portfolio identity
        "CREATE CONSTRAINT IF NOT EXISTS FOR (p:Portfolio) REQUIRE p.user_id IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (p:Portfolio) REQUIRE p.external_id IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (p:Portfolio) REQUIRE p.identity_key IS UNIQUE",

        # One portfolio per wallet
        "CREATE CONSTRAINT IF NOT EXISTS FOR (w:Wallet) REQUIRE w.address IS UNIQUE",

        # Attestations
        "CREATE CONSTRAINT IF NOT EXISTS FOR (a:Attestation) REQUIRE a.request_id IS UNIQUE",
    ]

    indexes = [
        "CREATE INDEX IF NOT EXISTS FOR (w:Wallet) ON (w.owner)",
        "CREATE INDEX IF NOT EXISTS FOR (p:Portfolio) ON (p.composite_score)",
    ]

    with get_session() as session:
        for query in constraints + indexes:
            try:
                session.run(query)
            except Neo4jError as e:
                logger.warning("schema_init_warning", query=query[:60], error=str(e))

    logger.info("schema_initialized", constraints=len(constraints), indexes=len(indexes))


def close():
    """Close the Neo4j driver."""
    global _driver
    if _driver:
        _driver.close()
        _driver = None
        logger.info("neo4j_disconnected")
