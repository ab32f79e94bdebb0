"""Retry/fallback state machine shared by every resource consumer.

A consumer whose load of a resolved URL failed starts a session; the policy
then hands out candidates by walking the *configured* origin list (not the
ranking), backing off between full cycles, and finally gives up::

    IDLE -> ATTEMPTING -> NEXT_SOURCE -> ... -> CYCLE_EXHAUSTED -> BACKOFF -> ...
         -> RETRIES_EXHAUSTED -> [LOCAL_FALLBACK] -> FAILED
    any attempt that loads -> SUCCESS
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Sequence

from cdn_resolver.config import RetryConfig
from cdn_resolver.loaders.base import Loadable
from cdn_resolver.models import RecoveryOutcome

LOGGER = logging.getLogger(__name__)


class RetryState(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    NEXT_SOURCE = "next_source"
    CYCLE_EXHAUSTED = "cycle_exhausted"
    BACKOFF = "backoff"
    RETRIES_EXHAUSTED = "retries_exhausted"
    LOCAL_FALLBACK = "local_fallback"
    SUCCESS = "success"
    FAILED = "failed"


TERMINAL_STATES = frozenset({RetryState.SUCCESS, RetryState.FAILED})


@dataclass(slots=True)
class RetrySession:
    logical_path: str
    max_cycles_before_giving_up: int
    source_cursor: int = 0
    cycle_count: int = 0
    attempts: int = 0
    local_attempted: bool = False
    state: RetryState = RetryState.IDLE


@dataclass(frozen=True, slots=True)
class RetryDecision:
    state: RetryState
    origin: str | None = None
    delay_s: float = 0.0


class RetryPolicy:
    def __init__(
        self,
        origins: Sequence[str],
        config: RetryConfig | None = None,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self.origins = tuple(origins)
        self.config = config or RetryConfig()
        self._rng = rng or random.Random()

    def start(self, logical_path: str) -> RetrySession:
        return RetrySession(
            logical_path=logical_path,
            max_cycles_before_giving_up=self.config.cycles_before_giving_up,
            state=RetryState.ATTEMPTING,
        )

    def backoff_delay(self, cycle_count: int) -> float:
        cfg = self.config
        delay = min(cfg.base_delay_s * (cfg.backoff_factor**cycle_count), cfg.max_delay_s)
        return delay + self._rng.uniform(0.0, cfg.jitter_s)

    def next_decision(self, session: RetrySession) -> RetryDecision:
        """Advance the session after a failed attempt and say what to try next."""

        if session.state in TERMINAL_STATES:
            return RetryDecision(session.state)

        if session.source_cursor < len(self.origins):
            origin = self.origins[session.source_cursor]
            session.source_cursor += 1
            session.attempts += 1
            session.state = RetryState.NEXT_SOURCE
            return RetryDecision(RetryState.NEXT_SOURCE, origin=origin)

        session.state = RetryState.CYCLE_EXHAUSTED
        session.cycle_count += 1
        if self.origins and session.cycle_count < session.max_cycles_before_giving_up:
            delay = self.backoff_delay(session.cycle_count)
            session.source_cursor = 1
            session.attempts += 1
            session.state = RetryState.BACKOFF
            return RetryDecision(RetryState.BACKOFF, origin=self.origins[0], delay_s=delay)

        session.state = RetryState.RETRIES_EXHAUSTED
        if self.config.fallback_to_local and not session.local_attempted:
            session.local_attempted = True
            session.state = RetryState.LOCAL_FALLBACK
            return RetryDecision(RetryState.LOCAL_FALLBACK)

        session.state = RetryState.FAILED
        return RetryDecision(RetryState.FAILED)

    def mark_success(self, session: RetrySession) -> None:
        session.state = RetryState.SUCCESS


async def run_recovery(
    policy: RetryPolicy,
    session: RetrySession,
    loader: Loadable,
    url_for: Callable[[str], str],
    local_url: Callable[[], str | None],
    *,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> RecoveryOutcome:
    """Drive ``session`` until a candidate loads or the policy gives up."""

    path = session.logical_path
    while True:
        decision = policy.next_decision(session)

        if decision.state is RetryState.FAILED:
            LOGGER.warning("giving up on %s after %d attempt(s)", path, session.attempts)
            return RecoveryOutcome(
                ok=False,
                reason="RETRIES_EXHAUSTED",
                logical_path=path,
                attempts=session.attempts,
                cycles=session.cycle_count,
            )

        if decision.state is RetryState.LOCAL_FALLBACK:
            url = local_url()
            if url is None:
                continue
            LOGGER.info("trying local fallback for %s: %s", path, url)
        else:
            if decision.state is RetryState.BACKOFF:
                LOGGER.info("cycle %d exhausted for %s, backing off %.2fs", session.cycle_count, path, decision.delay_s)
                await sleep(decision.delay_s)
            url = url_for(decision.origin)  # type: ignore[arg-type]
            LOGGER.debug("attempt %d for %s: %s", session.attempts, path, url)

        if await loader.attempt_load(url):
            policy.mark_success(session)
            return RecoveryOutcome(
                ok=True,
                reason="OK",
                logical_path=path,
                url=url,
                attempts=session.attempts,
                cycles=session.cycle_count,
            )
