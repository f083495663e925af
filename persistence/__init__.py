"""
Persistence collaborator contract and dual-write sync.
"""
from .repository import QueueRepository, InMemoryRepository
from .sync import SyncWriter, WriteOutcome, PendingWrite

__all__ = ["QueueRepository", "InMemoryRepository", "SyncWriter", "WriteOutcome", "PendingWrite"]
