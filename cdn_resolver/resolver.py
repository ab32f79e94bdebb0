from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
import random
from typing import Any, Awaitable, Callable

from cdn_resolver.cache import ResolverCache
from cdn_resolver.config import ResolverConfig
from cdn_resolver.detector import EnvironmentDetector
from cdn_resolver.errors import NoSourceAvailable
from cdn_resolver.http_utils import EnvironmentPort, HttpxEnvironment
from cdn_resolver.loaders.base import Loadable
from cdn_resolver.models import CandidateSource, ProbeResult, RecoveryOutcome
from cdn_resolver.paths import derive_project_base_path, host_prefix
from cdn_resolver.prober import HealthProber
from cdn_resolver.ranker import rank
from cdn_resolver.retry import RetryPolicy, RetrySession, run_recovery
from cdn_resolver.urls import (
    is_absolute_url,
    is_pass_through,
    join_origin,
    normalize_logical_path,
    strip_known_prefix,
)

LOGGER = logging.getLogger(__name__)

RecoveryCallback = Callable[[RecoveryOutcome], Any]


class ResourceResolver:
    """Picks a URL for a logical resource path among mirrored origins.

    Construct one per application, ``await init()`` (or use ``async with``),
    hand it to consumers, and ``await dispose()`` at shutdown. Probing
    updates the candidate sources; every completed round replaces the ranking
    wholesale. ``resolve`` never probes and never mutates candidate state.
    """

    def __init__(
        self,
        config: ResolverConfig,
        port: EnvironmentPort | None = None,
        *,
        detector: EnvironmentDetector | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config
        self._owns_port = port is None
        self._port: EnvironmentPort = port or HttpxEnvironment(page_url=config.page_url)
        self._sources = [CandidateSource(origin=origin, index=i) for i, origin in enumerate(config.origins)]
        self._ranking: tuple[CandidateSource, ...] = rank(self._sources, config.scoring.mode, config.scoring)
        self._ranking_signature = _signature(self._ranking)
        self._cache = ResolverCache()
        self._last_results: list[ProbeResult] = []
        self._sessions: dict[str, RetrySession] = {}
        self._pending: set[asyncio.Task[None]] = set()
        self._sleep = sleep
        self._initialized = False

        self.detector = detector or EnvironmentDetector(config.local_optimization, self._port.get_host_info)
        self.prober = HealthProber(self._port, on_round_complete=self._rebuild_ranking)
        self.retry_policy = RetryPolicy(config.origins, config.retry, rng=rng)

    async def __aenter__(self) -> ResourceResolver:
        await self.init()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.dispose()

    @property
    def is_ready(self) -> bool:
        return self._initialized

    @property
    def port(self) -> EnvironmentPort:
        return self._port

    # Lifecycle

    async def init(self) -> None:
        if self._initialized:
            return
        if self._should_probe():
            await self._probe_round()
        else:
            LOGGER.debug("skipping health check (disabled, no origins, or local context)")
        self._initialized = True

    async def refresh(self) -> None:
        """Clear the cache, re-probe every origin and rebuild the ranking."""

        self._cache.clear()
        if self._should_probe():
            await self._probe_round()

    async def dispose(self) -> None:
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._pending.clear()
        self._sessions.clear()
        if self._owns_port and isinstance(self._port, HttpxEnvironment):
            await self._port.aclose()
        self._initialized = False

    def _should_probe(self) -> bool:
        cfg = self.config
        if not (cfg.enabled and cfg.origins and cfg.health_check_enabled):
            return False
        return not self.detector.is_local_context()

    async def _probe_round(self) -> list[ProbeResult]:
        return await self.prober.probe_all(self._sources, self.config)

    def _rebuild_ranking(self, sources: list[CandidateSource], results: list[ProbeResult]) -> None:
        # Sources, ranking and results are swapped together, never edited in place.
        ranking = rank(sources, self.config.scoring.mode, self.config.scoring)
        signature = _signature(ranking)
        self._sources = sources
        self._ranking = ranking
        self._last_results = list(results)
        if signature != self._ranking_signature:
            self._ranking_signature = signature
            self._cache.invalidate()
        LOGGER.info("ranking: %s", " > ".join(f"{s.origin} [{s.state.value}]" for s in ranking))

    # Resolution

    def resolve(
        self,
        logical_path: str,
        *,
        enable_fallback: bool = True,
        cache_urls: bool = True,
        local_base_path: str | None = None,
    ) -> str:
        if is_pass_through(logical_path):
            return logical_path
        path = self.normalize(logical_path)
        if path is None:
            return logical_path

        if cache_urls:
            cached = self._cache.get(path)
            if cached is not None:
                return cached

        cfg = self.config
        if not cfg.enabled or self.detector.is_local_context():
            url = self.local_url(path, local_base_path)
            LOGGER.debug("local resource for %s: %s", path, url)
            return self._remember(path, url, cache_urls)

        best = self._ranking[0] if self._ranking else None
        if best is not None and best.healthy:
            return self._remember(path, join_origin(best.origin, path), cache_urls)

        round_done = self.prober.rounds_completed > 0
        if not round_done and cfg.origins and cfg.provisional_first_origin:
            # Provisional until a probe round completes; never cached.
            LOGGER.debug("no probe data yet, provisionally using %s", cfg.origins[0])
            return join_origin(cfg.origins[0], path)

        if enable_fallback:
            url = self.local_url(path, local_base_path)
            LOGGER.warning("no healthy origin, falling back to local: %s", url)
            if round_done or not cfg.origins:
                return self._remember(path, url, cache_urls)
            return url

        raise NoSourceAvailable(path)

    def _remember(self, path: str, url: str, cache_urls: bool) -> str:
        if cache_urls:
            self._cache.store(path, url)
        return url

    def normalize(self, value: str) -> str | None:
        """Turn a logical path or an already-resolved URL back into a logical path.

        Returns ``None`` for absolute URLs outside the configured origins and local base.
        """

        prefixes = [*self.config.origins, *self._local_prefixes()]
        relative = strip_known_prefix(value, prefixes)
        if relative is None:
            if is_absolute_url(value):
                return None
            relative = value
        return normalize_logical_path(relative)

    def _local_prefixes(self) -> list[str]:
        prefixes = []
        if self.config.local_fallback.base_path:
            prefixes.append(self.config.local_fallback.base_path)
        base = self.project_base_path()
        host = host_prefix(self._port.get_host_info())
        if host:
            prefixes.append(host + base)
        if base:
            prefixes.append(base)
        return prefixes

    def project_base_path(self) -> str:
        def compute() -> str:
            pathname = self._port.get_host_info().pathname
            return derive_project_base_path(pathname, is_local=self.detector.is_local_context())

        return self._cache.project_base_path(compute)

    def local_url(self, logical_path: str, local_base_path: str | None = None) -> str:
        path = logical_path.lstrip("/")
        base = local_base_path or self.config.local_fallback.base_path
        if base:
            return join_origin(base, path)
        project = self.project_base_path() or "/"
        return f"{host_prefix(self._port.get_host_info())}{project}{path}"

    def candidate_url(self, origin: str, logical_path: str) -> str:
        path = self.normalize(logical_path)
        return join_origin(origin, path if path is not None else logical_path)

    # Load failures

    def report_failure(
        self,
        logical_path: str,
        failed_url: str,
        *,
        loader: Loadable,
        on_result: RecoveryCallback | None = None,
    ) -> None:
        """Start recovering ``logical_path`` in the background.

        The consumer hears about success or terminal failure through ``on_result``.
        A path already being recovered is not recovered twice.
        """

        path = self.normalize(logical_path) or logical_path
        self._cache.discard(path)
        if path in self._sessions:
            LOGGER.debug("recovery already running for %s", path)
            return
        session = self._start_session(path)
        task = asyncio.create_task(self._recover_and_notify(session, loader, failed_url, on_result))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def recover(self, logical_path: str, loader: Loadable, *, failed_url: str | None = None) -> RecoveryOutcome:
        path = self.normalize(logical_path) or logical_path
        self._cache.discard(path)
        return await self._drive(self._start_session(path), loader, failed_url)

    async def drain(self) -> None:
        """Wait for every recovery started by ``report_failure``."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _start_session(self, path: str) -> RetrySession:
        session = self.retry_policy.start(path)
        self._sessions[path] = session
        return session

    async def _drive(self, session: RetrySession, loader: Loadable, failed_url: str | None) -> RecoveryOutcome:
        path = session.logical_path

        def local_candidate() -> str | None:
            url = self.local_url(path)
            return None if url == failed_url else url

        try:
            outcome = await run_recovery(
                self.retry_policy,
                session,
                loader,
                url_for=lambda origin: join_origin(origin, path),
                local_url=local_candidate,
                sleep=self._sleep,
            )
        finally:
            if self._sessions.get(path) is session:
                del self._sessions[path]

        if outcome.ok and outcome.url is not None:
            self._cache.store(path, outcome.url)
        return outcome

    async def _recover_and_notify(
        self,
        session: RetrySession,
        loader: Loadable,
        failed_url: str,
        on_result: RecoveryCallback | None,
    ) -> None:
        outcome = await self._drive(session, loader, failed_url)
        if on_result is None:
            return
        try:
            result = on_result(outcome)
            if inspect.isawaitable(result):
                await result
        except Exception:  # noqa: BLE001
            LOGGER.exception("recovery callback failed for %s", outcome.logical_path)

    # Diagnostics

    def get_ranking_snapshot(self) -> list[CandidateSource]:
        return [dataclasses.replace(source) for source in self._ranking]

    def last_probe_results(self) -> list[ProbeResult]:
        return list(self._last_results)

    def active_sessions(self) -> list[str]:
        return sorted(self._sessions)

    def cache_stats(self) -> dict[str, object]:
        return self._cache.stats()

    def clear_cache(self) -> None:
        self._cache.clear()


def _signature(ranking: tuple[CandidateSource, ...]) -> tuple[tuple[str, str], ...]:
    return tuple((source.origin, source.state.value) for source in ranking)
