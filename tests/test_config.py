"""
Tests for configuration loading, retry with backoff and health checks.
"""
import pytest

from config import AppConfig, HealthChecker, retry_with_backoff


def test_defaults():
    config = AppConfig()

    assert config.queue.reconcile_interval_seconds == 30.0
    assert config.queue.imbalance_threshold == 3
    assert config.queue.checkin_expiry_hours == 4.0
    assert config.queue.terminal_retention_hours == 24.0
    assert config.queue.default_checkin_radius_m == 100.0
    assert config.persistence.max_retries == 3


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("QUEUE_RECONCILE_INTERVAL", "5")
    monkeypatch.setenv("QUEUE_IMBALANCE_THRESHOLD", "4")
    monkeypatch.setenv("QUEUE_GEOLOCATION_TIMEOUT", "2.5")
    monkeypatch.setenv("QUEUE_CHECKIN_RADIUS_M", "150")
    monkeypatch.setenv("QUEUE_PERSIST_MAX_RETRIES", "6")
    monkeypatch.setenv("QUEUE_RESYNC_INTERVAL", "60")
    monkeypatch.setenv("QUEUE_LOG_DIR", str(tmp_path))
    monkeypatch.setenv("QUEUE_VERBOSE", "no")

    config = AppConfig.load()

    assert config.queue.reconcile_interval_seconds == 5.0
    assert config.queue.imbalance_threshold == 4
    assert config.queue.geolocation_timeout_seconds == 2.5
    assert config.queue.default_checkin_radius_m == 150.0
    assert config.persistence.max_retries == 6
    assert config.persistence.resync_interval_seconds == 60.0
    assert config.log_dir == str(tmp_path)
    assert config.verbose is False


def test_invalid_environment_value_falls_back(monkeypatch):
    monkeypatch.setenv("QUEUE_IMBALANCE_THRESHOLD", "lots")

    assert AppConfig.load().queue.imbalance_threshold == 3


# ============================================================================
# Retry
# ============================================================================

def test_retry_recovers_sync_function():
    calls = []

    @retry_with_backoff(max_retries=2, base_delay=0, exceptions=(ConnectionError,))
    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("refused")
        return "ok"

    assert flaky() == "ok"
    assert len(calls) == 3


def test_retry_gives_up_with_last_error():
    calls = []

    @retry_with_backoff(max_retries=1, base_delay=0, exceptions=(ConnectionError,))
    def down():
        calls.append(1)
        raise ConnectionError(f"attempt {len(calls)}")

    with pytest.raises(ConnectionError, match="attempt 2"):
        down()


def test_retry_ignores_other_exceptions():
    calls = []

    @retry_with_backoff(max_retries=3, base_delay=0, exceptions=(ConnectionError,))
    def broken():
        calls.append(1)
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        broken()
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_retry_recovers_coroutine():
    calls = []

    @retry_with_backoff(max_retries=2, base_delay=0, exceptions=(ConnectionError,))
    async def flaky():
        calls.append(1)
        if len(calls) < 2:
            raise ConnectionError("refused")
        return "ok"

    assert await flaky() == "ok"
    assert len(calls) == 2


# ============================================================================
# Health
# ============================================================================

class StubService:
    def __init__(self, name, healthy=True):
        self.name = name
        self.healthy = healthy

    def health_check(self):
        return self.healthy


def test_health_statuses(tmp_path):
    checker = HealthChecker()
    services = [StubService("QueueService"), StubService("CheckinManager")]

    assert checker.run_all_checks(services, log_dir=str(tmp_path))["status"] == "healthy"
    assert checker.run_all_checks(services, pending_writes=2, log_dir=str(tmp_path))["status"] == "degraded"

    services.append(StubService("RuleEngine", healthy=False))
    report = checker.run_all_checks(services, log_dir=str(tmp_path))
    assert report["status"] == "unhealthy"
    assert "RuleEngine" in report["checks"][0]["message"]
