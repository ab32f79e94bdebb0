from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class SourceState(str, Enum):
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass(slots=True)
class CandidateSource:
    """One configured origin and what the last probe learned about it."""

    origin: str
    index: int
    state: SourceState = SourceState.UNKNOWN
    last_latency_ms: int | None = None
    last_checked_at: datetime | None = None
    consecutive_failures: int = 0

    @property
    def healthy(self) -> bool:
        return self.state is SourceState.HEALTHY


@dataclass(frozen=True, slots=True)
class ProbeResult:
    origin: str
    available: bool
    response_time_ms: int
    error: str | None = None
    error_kind: str | None = None
    checked_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class ResolvedURLEntry:
    logical_path: str
    url: str
    built_at: datetime
    generation: int


@dataclass(frozen=True, slots=True)
class HostInfo:
    hostname: str | None = None
    port: int | None = None
    scheme: str = "http"
    pathname: str = "/"


@dataclass(slots=True)
class RecoveryOutcome:
    ok: bool
    reason: str
    logical_path: str
    url: str | None = None
    attempts: int = 0
    cycles: int = 0
