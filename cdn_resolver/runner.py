from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path

from cdn_resolver.config import ResolverConfig
from cdn_resolver.http_utils import EnvironmentPort
from cdn_resolver.jsonl_logger import JsonlLogger
from cdn_resolver.models import CandidateSource, ProbeResult
from cdn_resolver.resolver import ResourceResolver
from cdn_resolver.time_utils import utc_timestamp_str

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_DEGRADED = 1
EXIT_ERROR = 2


@dataclass
class ProbeReport:
    run_ts: str
    local_context: bool
    results: list[ProbeResult]
    ranking: list[CandidateSource]
    failures_by_reason: dict[str, int] = field(default_factory=dict)

    @property
    def healthy_count(self) -> int:
        return sum(1 for r in self.results if r.available)


def build_summary(report: ProbeReport) -> list[str]:
    lines = [
        f"--- Probe Summary [{report.run_ts}] ---",
        f"local_context: {report.local_context}",
        f"origins_probed: {len(report.results)}",
        f"healthy: {report.healthy_count}",
        "results:",
    ]
    if report.results:
        for r in report.results:
            status = "OK" if r.available else f"FAIL ({r.error_kind}: {r.error})"
            lines.append(f"  {r.origin}: {status} {r.response_time_ms}ms")
    else:
        lines.append("  (no probes issued)")

    lines.append("failures_by_reason:")
    if report.failures_by_reason:
        for reason, value in sorted(report.failures_by_reason.items()):
            lines.append(f"  {reason}: {value}")
    else:
        lines.append("  (none)")

    lines.append("ranking:")
    for i, source in enumerate(report.ranking, start=1):
        latency = f"{source.last_latency_ms}ms" if source.last_latency_ms is not None else "-"
        lines.append(f"  {i}. {source.origin} [{source.state.value}] {latency}")
    return lines


async def run_probe_round(
    config: ResolverConfig,
    *,
    port: EnvironmentPort | None = None,
    jsonl_path: Path | None = None,
) -> ProbeReport:
    run_ts = utc_timestamp_str()
    async with ResourceResolver(config, port) as resolver:
        local = resolver.detector.is_local_context()
        results = resolver.last_probe_results()
        ranking = resolver.get_ranking_snapshot()

    failures: Counter[str] = Counter(r.error_kind or "UNKNOWN" for r in results if not r.available)

    if jsonl_path is not None:
        probe_log = JsonlLogger(jsonl_path)
        for r in results:
            probe_log.append(
                {
                    "time_utc": run_ts,
                    "origin": r.origin,
                    "available": r.available,
                    "response_time_ms": r.response_time_ms,
                    "error_kind": r.error_kind,
                    "error": r.error,
                }
            )

    return ProbeReport(
        run_ts=run_ts,
        local_context=local,
        results=results,
        ranking=ranking,
        failures_by_reason=dict(sorted(failures.items())),
    )


def evaluate_exit_code(report: ProbeReport) -> int:
    """EXIT_OK when something is servable (a healthy origin, or local context), else EXIT_DEGRADED."""

    if report.local_context or report.healthy_count > 0:
        return EXIT_OK
    return EXIT_DEGRADED


def run_sync(config: ResolverConfig, *, jsonl_path: Path | None = None) -> tuple[int, ProbeReport | None]:
    try:
        report = asyncio.run(run_probe_round(config, jsonl_path=jsonl_path))
    except Exception:  # noqa: BLE001
        LOGGER.exception("probe round failed")
        return EXIT_ERROR, None
    return evaluate_exit_code(report), report
