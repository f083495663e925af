"""
Base class for the engine's services.
Provides event publishing, lifecycle state and dual logging.

This module defines:
- IEngineService: Interface contract used by the coordinator and health checks
- ServiceState: Lifecycle state enumeration
- BaseService: Shared implementation
"""
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable
import logging
import os
import traceback

from rich.console import Console

from communication.message import Event, EventType
from communication.message_bus import MessageBus


# =============================================================================
# INTERFACE CONTRACT
# =============================================================================

@runtime_checkable
class IEngineService(Protocol):
    """
    Interface contract for engine services.

    Usage:
        def report(service: IEngineService):
            if not service.health_check():
                print(service.get_metrics())
    """

    @property
    def name(self) -> str:
        ...

    def health_check(self) -> bool:
        ...

    def get_metrics(self) -> Dict[str, Any]:
        ...


class ServiceState(Enum):
    """Service lifecycle states."""
    INITIALIZING = "initializing"
    IDLE = "idle"
    PROCESSING = "processing"
    ERROR = "error"
    SHUTDOWN = "shutdown"


class BaseService:
    """
    Base class for every engine service.

    Provides:
    - Event publishing via the MessageBus
    - Explicit lifecycle state
    - Dual logging (console + file)
    - Error counting with graceful degradation for background loops

    Attributes:
        name: Unique identifier for the service
        message_bus: Reference to the event bus
        clock: Callable returning the current time
        service_state: Current lifecycle state
    """

    # Class-level file logger (shared across all services)
    _file_logger: Optional[logging.Logger] = None
    _log_file_path: Optional[str] = None

    @classmethod
    def setup_file_logging(cls, log_dir: str = "output") -> str:
        """
        Set up file logging for all services and the event bus.

        Args:
            log_dir: Directory for log files

        Returns:
            Path to the log file
        """
        if cls._file_logger is not None:
            return cls._log_file_path

        Path(log_dir).mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = os.path.join(log_dir, f"queue_log_{timestamp}.txt")

        cls._file_logger = logging.getLogger("QueueOrchestrator")
        cls._file_logger.setLevel(logging.DEBUG)

        file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)

        formatter = logging.Formatter(
            '%(asctime)s | %(levelname)-8s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        file_handler.setFormatter(formatter)

        cls._file_logger.addHandler(file_handler)
        cls._log_file_path = log_file

        cls._file_logger.info("=" * 70)
        cls._file_logger.info("QUEUE ORCHESTRATION ENGINE - LOG FILE")
        cls._file_logger.info(f"Session started: {datetime.now().isoformat()}")
        cls._file_logger.info("=" * 70)

        return log_file

    def __init__(self, name: str, message_bus: MessageBus,
                 clock: Optional[Callable[[], datetime]] = None,
                 verbose: bool = True):
        """
        Initialize the service.

        Args:
            name: Unique name for this service
            message_bus: The event bus
            clock: Time source (defaults to datetime.now)
            verbose: Print log lines to the console
        """
        self.name = name
        self.message_bus = message_bus
        self.clock = clock or datetime.now
        self.verbose = verbose
        self.service_state = ServiceState.INITIALIZING
        self.is_active = True
        self.console = Console()
        self._error_count = 0
        self._max_errors = 3  # Graceful degradation threshold

        self._transition_state(ServiceState.IDLE)
        self.log("Service initialized and ready", "debug")

    def now(self, at: Optional[datetime] = None) -> datetime:
        """Explicit time if given, else the service clock."""
        return at if at is not None else self.clock()

    # ==================== Events ====================

    async def publish(self,
                      event_type: EventType,
                      location_id: Optional[str],
                      entity_id: Optional[str] = None,
                      payload: Optional[Dict[str, Any]] = None,
                      correlation_id: Optional[str] = None) -> Event:
        """
        Publish an event on the bus.

        Returns:
            The published event
        """
        event = Event(
            event_type=event_type,
            sender=self.name,
            location_id=location_id,
            entity_id=entity_id,
            payload=payload or {},
            timestamp=self.clock(),
        )
        if correlation_id:
            event.correlation_id = correlation_id

        await self.message_bus.publish(event)
        return event

    def subscribe(self, event_type: EventType, handler: Callable[[Event], Any],
                  location_id: Optional[str] = None) -> None:
        self.message_bus.subscribe(self.name, handler, event_type, location_id)

    # ==================== Lifecycle ====================

    def startup(self) -> None:
        """Start the service. Clears the error count."""
        self.is_active = True
        self._error_count = 0
        self._transition_state(ServiceState.IDLE)
        self.log("🟢 Service started", "success")

    def shutdown(self) -> None:
        """Shut down the service and drop its bus subscriptions."""
        self._transition_state(ServiceState.SHUTDOWN)
        self.is_active = False
        self.message_bus.unsubscribe(self.name)
        self.log(f"🔴 Service shutdown (errors: {self._error_count})", "info")

    def health_check(self) -> bool:
        """
        Check if the service is healthy.

        Returns:
            True if active, not shut down and below the error threshold
        """
        return (
            self.is_active and
            self.service_state not in [ServiceState.ERROR, ServiceState.SHUTDOWN] and
            self._error_count < self._max_errors
        )

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.service_state.value,
            "is_active": self.is_active,
            "error_count": self._error_count,
            "max_errors": self._max_errors,
            "is_healthy": self.health_check(),
        }

    # ==================== Logging ====================

    def log(self, message: str, level: str = "info") -> None:
        """
        Log a message with service context (dual: console + file).

        Args:
            message: The log message
            level: Log level (info, warning, error, debug, success)
        """
        if self.verbose:
            colors = {
                "info": "blue",
                "warning": "yellow",
                "error": "red",
                "debug": "dim",
                "success": "green"
            }
            color = colors.get(level, "white")
            self.console.print(f"[{color}][{self.name}] {message}[/{color}]")

        if BaseService._file_logger:
            log_level = {
                "info": logging.INFO,
                "warning": logging.WARNING,
                "error": logging.ERROR,
                "debug": logging.DEBUG,
                "success": logging.INFO,
            }.get(level, logging.INFO)

            BaseService._file_logger.log(log_level, f"[{self.name}] {message}")

    # ==================== State Management ====================

    def _transition_state(self, new_state: ServiceState) -> None:
        old_state = self.service_state
        self.service_state = new_state

        if BaseService._file_logger:
            BaseService._file_logger.debug(
                f"[{self.name}] State: {old_state.value} → {new_state.value}"
            )

    # ==================== Error Handling ====================

    def _handle_error(self, error: Exception, context: str = "") -> bool:
        """
        Record an error from a background loop.

        Args:
            error: The exception that occurred
            context: What was happening when the error occurred

        Returns:
            True if the service can continue, False once max errors is reached
        """
        self._error_count += 1
        self._transition_state(ServiceState.ERROR)

        error_msg = f"Error in {context}: {type(error).__name__}: {str(error)}"
        self.log(error_msg, "error")

        if BaseService._file_logger:
            BaseService._file_logger.error(f"[{self.name}] Traceback:\n{traceback.format_exc()}")

        if self._error_count >= self._max_errors:
            self.log(f"Max errors ({self._max_errors}) reached - service degraded", "warning")
            return False

        self.log(f"Error {self._error_count}/{self._max_errors} - continuing", "warning")
        self._transition_state(ServiceState.IDLE)
        return True

    def __str__(self) -> str:
        status = "active" if self.is_active else "inactive"
        return f"{self.name} ({self.__class__.__name__}, {status})"

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name='{self.name}', active={self.is_active})>"
