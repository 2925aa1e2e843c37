from decimal import Decimal

import pytest

from chaincredit.config import Settings


def test_defaults(monkeypatch):
    for name in ("STORAGE_BACKEND", "ONCHAIN_WEIGHT", "OFFCHAIN_WEIGHT", "LEDGER_RPC_URL", "REDIS_URL"):
        monkeypatch.delenv(name, raising=False)
    s = Settings()
    assert s.STORAGE_BACKEND == "memory"
    assert s.durable_storage_enabled is False
    assert s.ledger_enabled is False
    assert s.ONCHAIN_WEIGHT == Decimal("0.3")
    assert s.OFFCHAIN_WEIGHT == Decimal("0.7")


def test_unknown_storage_backend(monkeypatch):
    monkeypatch.setenv("STORAGE_BACKEND", "postgres")
    with pytest.raises(RuntimeError):
        Settings()


def test_weights_must_sum_to_one(monkeypatch):
    monkeypatch.setenv("ONCHAIN_WEIGHT", "0.5")
    monkeypatch.setenv("OFFCHAIN_WEIGHT", "0.6")
    with pytest.raises(RuntimeError):
        Settings()


def test_production_requires_neo4j_password(monkeypatch):
    monkeypatch.setenv("CHAINCREDIT_ENV", "production")
    monkeypatch.setenv("STORAGE_BACKEND", "neo4j")
    monkeypatch.delenv("NEO4J_PASSWORD", raising=False)
    with pytest.raises(RuntimeError):
        Settings()
