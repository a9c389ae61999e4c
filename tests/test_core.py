"""
Tests for core infrastructure: configuration, errors, TTL cache and the
circuit breaker.

Run with:
    python -m pytest tests/test_core.py -v
"""

import asyncio
import os
import sys
from unittest.mock import AsyncMock, patch

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.cache import MemoryCache
from core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpen,
    CircuitState,
    get_source_breaker,
)
from core.config import Config, GitHubConfig
from core.errors import AllSourcesFailedError, AppError, OperationCancelledError, StreamTimeoutError


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestConfig:

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            config = Config.from_env()

        assert config.server.port == 3000
        assert config.streaming.heartbeat_interval == 15.0
        assert config.streaming.timeout == 120.0
        assert config.streaming.progress_report_interval == 1.0
        assert config.cache.ttl == 3600.0
        assert config.sheets.range == "A:F"
        assert not config.github.enabled
        assert not config.auth.enabled

    def test_reads_environment(self):
        env = {
            "PORT": "8080",
            "SSE_TIMEOUT": "30",
            "REPO_TOKEN": "ghp",
            "REPO_OWNER": "acme",
            "REPO_REPO": "api",
            "API_TOKENS": "one, two,,",
            "DATABASE_URL": "postgresql://localhost/metrics",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.server.port == 8080
        assert config.streaming.timeout == 30.0
        assert config.github.enabled
        assert config.auth.api_tokens == ["one", "two"]
        assert config.describe()["github"] == "acme/api"
        assert config.describe()["database"] is True

    def test_repo_may_carry_owner(self):
        github = GitHubConfig(token="t", owner="ignored", repo="acme/api")

        assert (github.owner, github.repo) == ("acme", "api")

    def test_validate_reports_issues(self):
        with patch.dict(os.environ, {"SSE_HEARTBEAT_INTERVAL": "0"}, clear=True):
            issues = Config.from_env().validate()

        assert any("No data source" in issue for issue in issues)
        assert any("SSE_HEARTBEAT_INTERVAL" in issue for issue in issues)
        assert any("API_TOKENS" in issue for issue in issues)

    def test_validate_clean(self):
        env = {"GOOGLE_SHEETS_ID": "sid", "GOOGLE_SHEETS_API_KEY": "key", "API_TOKENS": "t"}
        with patch.dict(os.environ, env, clear=True):
            assert Config.from_env().validate() == []


class TestErrors:

    def test_to_dict(self):
        assert StreamTimeoutError().to_dict() == {
            "success": False,
            "error": "Operation timed out",
            "statusCode": 504,
        }

    def test_status_codes(self):
        assert OperationCancelledError().status_code == 499
        error = AllSourcesFailedError(["e"])
        assert error.status_code == 500
        assert error.errors == ["e"]
        assert isinstance(error, AppError)


class TestMemoryCache:

    @pytest.mark.asyncio
    async def test_set_and_get(self):
        cache = MemoryCache()
        await cache.set("k", {"v": 1}, ttl=60)

        assert await cache.get("k") == {"v": 1}
        assert await cache.get("missing") is None

    @pytest.mark.asyncio
    async def test_entries_expire(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        await cache.set("k", "v", ttl=10)

        clock.now = 9.9
        assert await cache.get("k") == "v"
        clock.now = 10
        assert await cache.get("k") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_delete_and_clear(self):
        cache = MemoryCache()
        await cache.set("a", 1, ttl=60)
        await cache.set("b", 2, ttl=60)

        await cache.delete("a")
        assert await cache.get("a") is None
        await cache.clear()
        assert len(cache) == 0


class TestCircuitBreaker:

    @pytest.fixture
    def clock(self):
        return FakeClock(1000.0)

    @pytest.fixture
    def breaker(self, clock):
        config = CircuitBreakerConfig(failure_threshold=2, recovery_timeout=30.0, timeout=0.1)
        return CircuitBreaker("upstream", config, clock=clock)

    @pytest.mark.asyncio
    async def test_passes_results_through(self, breaker):
        func = AsyncMock(return_value=42)

        assert await breaker.call(func, 1, key="v") == 42
        func.assert_awaited_once_with(1, key="v")
        assert breaker.state is CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, breaker):
        failing = AsyncMock(side_effect=RuntimeError("down"))

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(failing)

        assert breaker.state is CircuitState.OPEN
        with pytest.raises(CircuitBreakerOpen) as exc_info:
            await breaker.call(failing)
        assert exc_info.value.status_code == 503
        assert failing.await_count == 2

    @pytest.mark.asyncio
    async def test_half_open_success_closes(self, breaker, clock):
        failing = AsyncMock(side_effect=RuntimeError("down"))
        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(failing)

        clock.now += 30
        assert await breaker.call(AsyncMock(return_value="ok")) == "ok"
        assert breaker.state is CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, breaker, clock):
        failing = AsyncMock(side_effect=RuntimeError("down"))
        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(failing)

        clock.now += 30
        with pytest.raises(RuntimeError):
            await breaker.call(failing)
        assert breaker.state is CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_half_open_allows_one_trial_call(self, breaker, clock):
        for _ in range(2):
            breaker.record_failure(RuntimeError("down"))
        clock.now += 30
        release = asyncio.Event()

        async def trial():
            await release.wait()
            return "ok"

        first = asyncio.create_task(breaker.call(trial))
        await asyncio.sleep(0)
        assert breaker.state is CircuitState.HALF_OPEN

        with pytest.raises(CircuitBreakerOpen):
            await breaker.call(AsyncMock(return_value="second"))

        release.set()
        assert await first == "ok"
        assert breaker.state is CircuitState.CLOSED

    def test_retry_after_counts_down(self, breaker, clock):
        for _ in range(2):
            breaker.record_failure(RuntimeError("down"))

        clock.now += 10
        assert breaker.retry_after() == 20
        assert breaker.get_status()["state"] == "open"

    @pytest.mark.asyncio
    async def test_slow_call_times_out(self, breaker):
        async def slow():
            await asyncio.sleep(5)

        with pytest.raises(asyncio.TimeoutError):
            await breaker.call(slow)
        assert breaker.get_status()["failure_count"] == 1

    @pytest.mark.asyncio
    async def test_reset(self, breaker):
        failing = AsyncMock(side_effect=RuntimeError("down"))
        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(failing)

        breaker.reset()
        assert breaker.state is CircuitState.CLOSED

    def test_source_presets(self):
        assert get_source_breaker("github").config.timeout == 30.0
        assert get_source_breaker("sheets").config.recovery_timeout == 30.0
        assert get_source_breaker("other").config.failure_threshold == 5
