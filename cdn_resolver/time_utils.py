from __future__ import annotations

import time
from datetime import datetime, timezone


def now_utc() -> datetime:
    return datetime.now(tz=timezone.utc)


def utc_timestamp_str() -> str:
    return now_utc().isoformat()


def monotonic_ms() -> float:
    return time.perf_counter() * 1000.0


def elapsed_ms(started_ms: float) -> int:
    return max(0, int(round(monotonic_ms() - started_ms)))
