"""
ChainCredit — Storage Package
Re-exports for convenience.
"""
from chaincredit.storage.base import StorageBackend, StorageResult
from chaincredit.storage.memory import MemoryBackend
from chaincredit.storage.adapter import StorageAdapter
