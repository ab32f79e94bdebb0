from __future__ import annotations

import ipaddress
import logging
from typing import Callable

from cdn_resolver.config import LocalOptimizationConfig
from cdn_resolver.models import HostInfo

LOGGER = logging.getLogger(__name__)

# Conventional development server ports: 3000-5999 and 8000-9999.
DEV_PORT_RANGES = ((3000, 6000), (8000, 10000))
_LOOPBACK_NAMES = {"localhost", "0.0.0.0"}


def is_loopback_host(hostname: str | None) -> bool:
    if not hostname:
        return False
    name = hostname.strip("[]").lower()
    if name in _LOOPBACK_NAMES or name.endswith(".local") or name.endswith(".localhost"):
        return True
    try:
        return ipaddress.ip_address(name).is_loopback
    except ValueError:
        return False


def is_dev_port(port: int | None) -> bool:
    if port is None:
        return False
    return any(low <= port < high for low, high in DEV_PORT_RANGES)


class EnvironmentDetector:
    """Decides once whether this runtime is a local-development context.

    Priority: ``enabled`` switch, ``force_local``, the host's custom predicate,
    then the heuristic. The heuristic needs a loopback-like host *and* a dev
    signal (dev port or dev-mode flag); a loopback host alone is not enough.
    """

    def __init__(self, settings: LocalOptimizationConfig, host_info: Callable[[], HostInfo]) -> None:
        self._settings = settings
        self._host_info = host_info
        self._cached: bool | None = None

    def is_local_context(self) -> bool:
        if self._cached is None:
            self._cached = self._detect()
        return self._cached

    def reset_cache(self) -> None:
        self._cached = None

    def _detect(self) -> bool:
        settings = self._settings
        if not settings.enabled:
            return False
        if settings.force_local:
            LOGGER.debug("local context forced by configuration")
            return True

        if settings.custom_detection is not None:
            try:
                return bool(settings.custom_detection())
            except Exception:  # noqa: BLE001
                LOGGER.warning("custom local detection failed; using heuristic", exc_info=True)

        host = self._host_info()
        loopback = is_loopback_host(host.hostname)
        dev_port = is_dev_port(host.port)
        result = loopback and (dev_port or settings.dev_mode)
        LOGGER.debug(
            "local detection: %s (hostname=%s port=%s loopback=%s dev_port=%s dev_mode=%s)",
            result,
            host.hostname,
            host.port,
            loopback,
            dev_port,
            settings.dev_mode,
        )
        return result
