"""
ChainCredit — Configuration
Unified config for portfolio storage, ledger reads, attestation and scoring policy.

All settings load from environment variables with safe defaults for development.
In production, set CHAINCREDIT_ENV=production to enforce required values.
"""
import os
from decimal import Decimal
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()

_DEV_NEO4J_PASSWORD = "chaincredit_dev_password"


class Settings:
    def __init__(self):
        self.ENVIRONMENT = os.getenv("CHAINCREDIT_ENV", "development")

        # === Storage ===
        self.STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "memory").strip().lower()
        self.NEO4J_URI = os.getenv("NEO4J_URI", "bolt://localhost:7687")
        self.NEO4J_USER = os.getenv("NEO4J_USER", "neo4j")
        self.NEO4J_PASSWORD = os.getenv("NEO4J_PASSWORD", _DEV_NEO4J_PASSWORD)
        if self.STORAGE_BACKEND not in ("memory", "neo4j"):
            raise RuntimeError(f"STORAGE_BACKEND must be 'memory' or 'neo4j', got {self.STORAGE_BACKEND!r}")
        if self.is_production and self.STORAGE_BACKEND == "neo4j" and self.NEO4J_PASSWORD == _DEV_NEO4J_PASSWORD:
            raise RuntimeError("NEO4J_PASSWORD must be set in production. Add it to .env")

        # === Portfolio locks ===
        self.REDIS_URL = os.getenv("REDIS_URL", "")
        self.PORTFOLIO_LOCK_TTL = int(os.getenv("PORTFOLIO_LOCK_TTL", "30"))
        self.PORTFOLIO_LOCK_WAIT = float(os.getenv("PORTFOLIO_LOCK_WAIT", "10"))

        # === Ledger (on-chain activity signals) ===
        self.LEDGER_RPC_URL = os.getenv("LEDGER_RPC_URL", "")
        self.LEDGER_TIMEOUT = float(os.getenv("LEDGER_TIMEOUT", "10"))
        self.LEDGER_SCAN_BLOCKS = int(os.getenv("LEDGER_SCAN_BLOCKS", "100"))
        self.LEDGER_TX_LIMIT = int(os.getenv("LEDGER_TX_LIMIT", "50"))
        self.ACTIVITY_WINDOW_DAYS = int(os.getenv("ACTIVITY_WINDOW_DAYS", "30"))

        # === Attestation source (credit bureau) ===
        self.CREDIT_BUREAU_URL = os.getenv(
            "CREDIT_BUREAU_URL", "http://localhost:3001/api/credit-score/experian/simplified"
        )
        self.CREDIT_BUREAU_METHOD = os.getenv("CREDIT_BUREAU_METHOD", "POST").upper()
        self.CREDIT_BUREAU_API_KEY = os.getenv("CREDIT_BUREAU_API_KEY", "")
        self.ATTESTATION_TIMEOUT = float(os.getenv("ATTESTATION_TIMEOUT", "10"))

        # === Composite policy ===
        self.ONCHAIN_WEIGHT = Decimal(os.getenv("ONCHAIN_WEIGHT", "0.3"))
        self.OFFCHAIN_WEIGHT = Decimal(os.getenv("OFFCHAIN_WEIGHT", "0.7"))
        if self.ONCHAIN_WEIGHT + self.OFFCHAIN_WEIGHT != Decimal("1"):
            raise RuntimeError("ONCHAIN_WEIGHT + OFFCHAIN_WEIGHT must equal 1")

        # === Logging ===
        self.LOG_FORMAT = os.getenv("LOG_FORMAT", "json")

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def durable_storage_enabled(self) -> bool:
        return self.STORAGE_BACKEND == "neo4j"

    @property
    def ledger_enabled(self) -> bool:
        return bool(self.LEDGER_RPC_URL)


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
