from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Callable, Sequence

import httpx

from cdn_resolver.config import ResolverConfig
from cdn_resolver.errors import ProbeError, ProbeNetworkError, ProbeTimeout
from cdn_resolver.http_utils import EnvironmentPort
from cdn_resolver.models import CandidateSource, ProbeResult, SourceState
from cdn_resolver.time_utils import elapsed_ms, monotonic_ms, now_utc
from cdn_resolver.urls import join_origin

LOGGER = logging.getLogger(__name__)

RoundCallback = Callable[[list[CandidateSource], list[ProbeResult]], None]


class HealthProber:
    """Probes every origin in batches of ``max_concurrency``.

    Batch N+1 starts only after every probe of batch N has settled. Each probe
    has its own hard timeout. The sources handed in are never mutated: when the
    round is over, updated copies and the results go to ``on_round_complete``
    in a single call.
    """

    def __init__(self, port: EnvironmentPort, on_round_complete: RoundCallback | None = None) -> None:
        self._port = port
        self._on_round_complete = on_round_complete
        self._inflight: asyncio.Task[list[ProbeResult]] | None = None
        self.rounds_completed = 0
        self.probes_issued = 0

    async def probe_all(self, sources: Sequence[CandidateSource], config: ResolverConfig) -> list[ProbeResult]:
        # Concurrent callers share the round already in flight.
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._run_round(list(sources), config))
        return await asyncio.shield(self._inflight)

    async def _run_round(self, sources: list[CandidateSource], config: ResolverConfig) -> list[ProbeResult]:
        LOGGER.info("probing %d origin(s), max_concurrency=%d", len(sources), config.max_concurrency)
        results: list[ProbeResult] = []
        step = max(1, config.max_concurrency)
        for start in range(0, len(sources), step):
            batch = sources[start : start + step]
            results.extend(await asyncio.gather(*(self._probe_one(source, config) for source in batch)))

        updated = apply_results(sources, results)
        self.rounds_completed += 1
        healthy = sum(1 for r in results if r.available)
        LOGGER.info("probe round %d finished: %d/%d healthy", self.rounds_completed, healthy, len(results))
        if self._on_round_complete is not None:
            self._on_round_complete(updated, results)
        return results

    async def _probe_one(self, source: CandidateSource, config: ResolverConfig) -> ProbeResult:
        url = join_origin(source.origin, config.test_path)
        started = monotonic_ms()
        self.probes_issued += 1
        try:
            result = await asyncio.wait_for(self._port.probe(url, config.timeout_s), timeout=config.timeout_s)
        except asyncio.TimeoutError:
            error: ProbeError = ProbeTimeout(f"probe timed out after {config.timeout_ms}ms")
        except ProbeError as exc:
            error = exc
        except httpx.HTTPError as exc:
            error = ProbeNetworkError(f"{type(exc).__name__}: {exc}")
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("unexpected error probing %s", url, exc_info=True)
            error = ProbeNetworkError(f"{type(exc).__name__}: {exc}")
        else:
            result = dataclasses.replace(
                result,
                origin=source.origin,
                checked_at=result.checked_at or now_utc(),
            )
            LOGGER.debug("probe %s: %s (%dms)", url, "OK" if result.available else "FAILED", result.response_time_ms)
            return result

        result = ProbeResult(
            origin=source.origin,
            available=False,
            response_time_ms=elapsed_ms(started),
            error=str(error),
            error_kind=error.kind,
            checked_at=now_utc(),
        )
        LOGGER.debug("probe %s failed: %s: %s (%dms)", url, error.kind, error, result.response_time_ms)
        return result


def apply_results(sources: Sequence[CandidateSource], results: Sequence[ProbeResult]) -> list[CandidateSource]:
    """Copies of ``sources`` carrying what ``results`` learned; pairs are matched by position."""

    updated = []
    for source, result in zip(sources, results):
        healthy = result.available
        updated.append(
            dataclasses.replace(
                source,
                state=SourceState.HEALTHY if healthy else SourceState.UNHEALTHY,
                last_latency_ms=result.response_time_ms,
                last_checked_at=result.checked_at,
                consecutive_failures=0 if healthy else source.consecutive_failures + 1,
            )
        )
    return updated
