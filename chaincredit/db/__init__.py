"""
ChainCredit — Database Package
Re-exports for convenience.
"""
from chaincredit.db.neo4j import get_driver, get_session, init_schema, close
