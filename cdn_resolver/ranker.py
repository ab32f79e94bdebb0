"""Ordering of candidate sources from the latest probe data.

``rank`` is pure: it never mutates the sources and always returns a
permutation of them, healthy entries first.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from cdn_resolver.config import ScoringConfig, ScoringMode
from cdn_resolver.models import CandidateSource


def weighted_score(source: CandidateSource, *, speed_weight: float, availability_weight: float) -> float:
    """Blend of inverse latency and availability; higher is better.

    Not used by the default comparators.
    """

    availability = 1.0 if source.healthy else 0.0
    latency = source.last_latency_ms
    speed = 1.0 / max(latency, 1) if latency is not None else 0.0
    return speed * speed_weight + availability * availability_weight


def _by_index(sources: Iterable[CandidateSource]) -> list[CandidateSource]:
    return sorted(sources, key=lambda s: s.index)


def rank(
    sources: Sequence[CandidateSource],
    mode: ScoringMode = ScoringMode.SPEED,
    weights: ScoringConfig | None = None,
) -> tuple[CandidateSource, ...]:
    ordered = _by_index(sources)
    healthy = [s for s in ordered if s.healthy]
    rest = [s for s in ordered if not s.healthy]

    if weights is not None and not weights.enabled:
        return tuple(healthy + rest)

    if ScoringMode(mode) is ScoringMode.SPEED:
        # Stable sort: equal latencies keep configuration order.
        healthy.sort(key=lambda s: s.last_latency_ms if s.last_latency_ms is not None else float("inf"))

    return tuple(healthy + rest)
