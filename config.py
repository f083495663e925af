"""
Configuration for the Queue Orchestration Engine.

This file contains queue timing parameters, persistence retry settings and the
health check system. Every setting can be overridden from the environment.
"""

import asyncio
import inspect
import os
import time
import logging
from dataclasses import dataclass, field
from typing import List, Callable, Any
from functools import wraps


def _env_float(name: str, default: float) -> float:
    """Read a float from the environment, falling back to the default."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logging.warning(f"⚠️  Ignoring invalid value for {name}: {raw!r}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# =============================================================================
# RETRY WITH EXPONENTIAL BACKOFF
# =============================================================================

def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    exceptions: tuple = (Exception,)
) -> Callable:
    """
    Decorator for retrying functions with exponential backoff.

    Coroutine functions are retried with ``asyncio.sleep`` so the event loop
    keeps running between attempts; plain functions use ``time.sleep``.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay between retries (seconds)
        max_delay: Maximum delay between retries (seconds)
        exponential_base: Base for exponential calculation
        exceptions: Tuple of exceptions to catch and retry

    Returns:
        Decorated function with retry logic
    """
    def _delay(attempt: int) -> float:
        return min(base_delay * (exponential_base ** attempt), max_delay)

    def decorator(func: Callable) -> Callable:
        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs) -> Any:
                last_exception = None
                for attempt in range(max_retries + 1):
                    try:
                        return await func(*args, **kwargs)
                    except exceptions as e:
                        last_exception = e
                        if attempt < max_retries:
                            delay = _delay(attempt)
                            logging.warning(
                                f"Attempt {attempt + 1}/{max_retries + 1} failed: {e}. "
                                f"Retrying in {delay:.1f}s..."
                            )
                            await asyncio.sleep(delay)
                        else:
                            logging.error(
                                f"All {max_retries + 1} attempts failed. Last error: {e}"
                            )
                raise last_exception

            return async_wrapper

        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e

                    if attempt < max_retries:
                        delay = _delay(attempt)
                        logging.warning(
                            f"Attempt {attempt + 1}/{max_retries + 1} failed: {e}. "
                            f"Retrying in {delay:.1f}s..."
                        )
                        time.sleep(delay)
                    else:
                        logging.error(
                            f"All {max_retries + 1} attempts failed. Last error: {e}"
                        )

            raise last_exception

        return wrapper
    return decorator


# =============================================================================
# QUEUE CONFIGURATION
# =============================================================================

@dataclass
class QueueConfig:
    """Timing and threshold parameters for queue orchestration."""

    # Periodic reconciliation sweep
    reconcile_interval_seconds: float = 30.0

    # Load balancing: max(workload) - min(workload) that raises an alert
    imbalance_threshold: int = 3

    # Check-in lifecycle
    checkin_expiry_hours: float = 4.0
    terminal_retention_hours: float = 24.0
    checkin_code_length: int = 6

    # Presence verification
    default_checkin_radius_m: float = 100.0
    geolocation_timeout_seconds: float = 30.0

    # Wait estimation fallback when a service has no duration
    default_service_minutes: int = 30


@dataclass
class PersistenceConfig:
    """Retry settings for writes to the persistence collaborator."""

    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    resync_interval_seconds: float = 15.0


# =============================================================================
# MAIN APPLICATION CONFIGURATION
# =============================================================================

@dataclass
class AppConfig:
    """Main application configuration."""

    queue: QueueConfig = field(default_factory=QueueConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)

    # Output settings
    log_dir: str = "output"
    verbose: bool = True

    @classmethod
    def load(cls) -> "AppConfig":
        """Load configuration from environment and defaults."""
        queue = QueueConfig(
            reconcile_interval_seconds=_env_float("QUEUE_RECONCILE_INTERVAL", 30.0),
            imbalance_threshold=int(_env_float("QUEUE_IMBALANCE_THRESHOLD", 3)),
            geolocation_timeout_seconds=_env_float("QUEUE_GEOLOCATION_TIMEOUT", 30.0),
            default_checkin_radius_m=_env_float("QUEUE_CHECKIN_RADIUS_M", 100.0),
        )
        persistence = PersistenceConfig(
            max_retries=int(_env_float("QUEUE_PERSIST_MAX_RETRIES", 3)),
            resync_interval_seconds=_env_float("QUEUE_RESYNC_INTERVAL", 15.0),
        )
        return cls(
            queue=queue,
            persistence=persistence,
            log_dir=os.environ.get("QUEUE_LOG_DIR", "output"),
            verbose=_env_bool("QUEUE_VERBOSE", True),
        )


# =============================================================================
# HEALTH CHECK SYSTEM
# =============================================================================

@dataclass
class HealthStatus:
    """Health status of a system component."""
    name: str
    healthy: bool
    message: str
    last_check: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "healthy": self.healthy,
            "message": self.message,
            "last_check_seconds_ago": time.time() - self.last_check
        }


class HealthChecker:
    """
    System health checker for monitoring component status.

    Provides health checks for:
    - Pending persistence writes (degraded mode)
    - Log directory access
    - Service health
    """

    CRITICAL_CHECKS = ("services",)

    def check_pending_writes(self, pending: int) -> HealthStatus:
        """Writes waiting for the store mean the engine runs on local state."""
        if pending == 0:
            return HealthStatus(
                name="persistence",
                healthy=True,
                message="All writes committed"
            )
        return HealthStatus(
            name="persistence",
            healthy=False,
            message=f"{pending} write(s) pending retry (running on local state)"
        )

    def check_log_directory(self, log_dir: str = "output") -> HealthStatus:
        """Check if the log directory is writable."""
        try:
            os.makedirs(log_dir, exist_ok=True)
            test_file = os.path.join(log_dir, ".health_check")
            with open(test_file, 'w') as f:
                f.write("health check")
            os.remove(test_file)
            return HealthStatus(
                name="log_directory",
                healthy=True,
                message="Log directory writable"
            )
        except OSError as e:
            return HealthStatus(
                name="log_directory",
                healthy=False,
                message=f"Log directory error: {e}"
            )

    def check_services(self, services: List[Any]) -> HealthStatus:
        """Check that every engine service reports healthy."""
        unhealthy = [s.name for s in services if not s.health_check()]
        if not unhealthy:
            return HealthStatus(
                name="services",
                healthy=True,
                message=f"{len(services)} services healthy"
            )
        return HealthStatus(
            name="services",
            healthy=False,
            message=f"Unhealthy services: {', '.join(unhealthy)}"
        )

    def run_all_checks(self, services: List[Any], pending_writes: int = 0,
                       log_dir: str = "output") -> dict:
        """
        Run all health checks and return summary.

        Returns:
            Dictionary with overall status and individual check results
        """
        checks = [
            self.check_services(services),
            self.check_pending_writes(pending_writes),
            self.check_log_directory(log_dir),
        ]

        all_healthy = all(c.healthy for c in checks)
        critical_healthy = all(
            c.healthy for c in checks
            if c.name in self.CRITICAL_CHECKS
        )

        return {
            "status": "healthy" if all_healthy else ("degraded" if critical_healthy else "unhealthy"),
            "timestamp": time.time(),
            "checks": [c.to_dict() for c in checks]
        }


# Global health checker instance
health_checker = HealthChecker()

# Global configuration instance
config = AppConfig.load()
