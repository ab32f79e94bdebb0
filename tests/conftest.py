from __future__ import annotations

import asyncio
from typing import Callable

import httpx
import pytest

from cdn_resolver.config import LocalFallbackConfig, LocalOptimizationConfig, ResolverConfig, RetryConfig
from cdn_resolver.errors import ProbeHTTPError, ProbeNetworkError
from cdn_resolver.models import HostInfo, ProbeResult

ORIGINS = ("https://a.test", "https://b.test")


class FakePort:
    """Environment port double: scripted probe outcomes keyed by origin host."""

    def __init__(self, outcomes: dict[str, object] | None = None, host: HostInfo | None = None) -> None:
        # outcome: int latency (healthy), "hang", ("http", status), an Exception,
        # or an asyncio.Event that holds the probe until set (then 100ms)
        self.outcomes = outcomes or {}
        self.host = host or HostInfo(hostname="resume.example.com", port=443, scheme="https", pathname="/")
        self.calls: list[str] = []
        self.in_flight = 0
        self.peak_in_flight = 0

    def _outcome_for(self, url: str) -> object:
        for origin, outcome in self.outcomes.items():
            if url.startswith(origin):
                return outcome
        return 100

    async def probe(self, url: str, timeout_s: float) -> ProbeResult:
        self.calls.append(url)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            outcome = self._outcome_for(url)
            if isinstance(outcome, asyncio.Event):
                await outcome.wait()
                outcome = 100
            if outcome == "hang":
                await asyncio.sleep(60)
            if isinstance(outcome, tuple) and outcome[0] == "http":
                raise ProbeHTTPError(outcome[1])
            if isinstance(outcome, Exception):
                raise outcome
            return ProbeResult(origin=url, available=True, response_time_ms=int(outcome))
        finally:
            self.in_flight -= 1

    def get_host_info(self) -> HostInfo:
        return self.host


def make_config(**overrides) -> ResolverConfig:
    defaults = {
        "origins": ORIGINS,
        "timeout_ms": 200,
        "local_fallback": LocalFallbackConfig(base_path="/static"),
        "retry": RetryConfig(max_retries=2, base_delay_s=0.0, jitter_s=0.0),
    }
    defaults.update(overrides)
    return ResolverConfig(**defaults)


def local_config(**overrides) -> ResolverConfig:
    return make_config(local_optimization=LocalOptimizationConfig(force_local=True), **overrides)


class ScriptedLoader:
    """Loadable double that succeeds only for URLs accepted by ``accept``."""

    def __init__(self, accept: Callable[[str], bool] = lambda url: False) -> None:
        self.accept = accept
        self.attempts: list[str] = []

    async def attempt_load(self, url: str) -> bool:
        self.attempts.append(url)
        return self.accept(url)


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def fake_port() -> FakePort:
    return FakePort()


@pytest.fixture
def network_down() -> FakePort:
    return FakePort({origin: ProbeNetworkError("connection refused") for origin in ORIGINS})


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
