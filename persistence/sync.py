"""
Explicit dual-write to the persistence collaborator.

Every mutation is applied to local state first. The write to the store then
either commits or is parked as a pending write that a later resync pass
retries. Callers get a ``WriteOutcome`` instead of guessing from ids.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional
import asyncio
import logging

from config import PersistenceConfig, retry_with_backoff
from errors import PersistenceError


logger = logging.getLogger("QueueOrchestrator")

# Failures treated as "store unreachable" rather than programming errors
RETRYABLE_ERRORS = (PersistenceError, ConnectionError, OSError, asyncio.TimeoutError)

# Most recent store errors kept for diagnostics
MAX_ERROR_LOG = 200


class WriteOutcome(Enum):
    COMMITTED = "committed"
    PENDING_RETRY = "pending_retry"


@dataclass
class PendingWrite:
    """A write that failed and waits for the next resync pass."""
    key: str
    operation: Callable[[], Awaitable[Any]]
    attempts: int = 1
    last_error: str = ""
    queued_at: datetime = field(default_factory=datetime.now)
    delete: bool = False


class SyncWriter:
    """
    Writes to the store, degrading to local-only state when it is unreachable.

    Pending writes are keyed (e.g. ``queue_entries:<id>``); a newer write for
    the same key replaces the older one, since rows are always written whole.
    """

    def __init__(self, repository, persistence_config: Optional[PersistenceConfig] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.repository = repository
        self.config = persistence_config or PersistenceConfig()
        self.clock = clock
        self.pending: Dict[str, PendingWrite] = {}
        self.errors: Deque[Dict[str, Any]] = deque(maxlen=MAX_ERROR_LOG)
        self.outcomes: Dict[str, WriteOutcome] = {}

    async def write(self, key: str, operation: Callable[[], Awaitable[Any]],
                    delete: bool = False) -> WriteOutcome:
        """
        Attempt a write once.

        Args:
            key: Identity of the written row
            operation: Zero-argument callable returning the store coroutine
            delete: The write removes the row; its outcome is forgotten once committed

        Returns:
            COMMITTED, or PENDING_RETRY if the store failed
        """
        try:
            await operation()
        except RETRYABLE_ERRORS as e:
            self._record_error(key, e)
            previous = self.pending.get(key)
            self.pending[key] = PendingWrite(
                key=key,
                operation=operation,
                attempts=(previous.attempts + 1) if previous else 1,
                last_error=str(e),
                queued_at=self.clock(),
                delete=delete,
            )
            logger.warning(f"[SyncWriter] {key} kept local-only: {e}")
            self.outcomes[key] = WriteOutcome.PENDING_RETRY
            return WriteOutcome.PENDING_RETRY

        # A committed write supersedes any older pending one
        self.pending.pop(key, None)
        self._committed(key, delete)
        return WriteOutcome.COMMITTED

    async def flush_pending(self) -> int:
        """
        Retry every pending write with exponential backoff.

        Returns:
            Number of writes committed by this pass
        """
        committed = 0
        for key, pending in list(self.pending.items()):
            operation = pending.operation

            @retry_with_backoff(
                max_retries=self.config.max_retries,
                base_delay=self.config.base_delay,
                max_delay=self.config.max_delay,
                exceptions=RETRYABLE_ERRORS,
            )
            async def attempt():
                return await operation()

            try:
                await attempt()
            except RETRYABLE_ERRORS as e:
                pending.attempts += self.config.max_retries + 1
                pending.last_error = str(e)
                self._record_error(key, e)
                continue

            # A newer write may have replaced this one while we were retrying
            if self.pending.get(key) is pending:
                del self.pending[key]
                self._committed(key, pending.delete)
            committed += 1

        if committed:
            logger.info(f"[SyncWriter] Resync committed {committed} write(s)")
        return committed

    def pending_count(self) -> int:
        return len(self.pending)

    def outcome_for(self, key: str) -> Optional[WriteOutcome]:
        return self.outcomes.get(key)

    def _committed(self, key: str, delete: bool) -> None:
        if delete:
            self.outcomes.pop(key, None)
        else:
            self.outcomes[key] = WriteOutcome.COMMITTED

    def _record_error(self, key: str, error: Exception) -> None:
        self.errors.append({
            "key": key,
            "error": f"{type(error).__name__}: {error}",
            "at": self.clock().isoformat(),
        })
