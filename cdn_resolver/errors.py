from __future__ import annotations


class ResolverError(Exception):
    """Base exception for resolver errors."""


class ConfigError(ResolverError, ValueError):
    """Raised when a resolver or font catalog configuration is invalid."""


class ProbeError(ResolverError):
    """A health probe did not produce a success-range response.

    Never escapes ``HealthProber.probe_all``; the prober records it as data.
    """

    kind = "ProbeError"


class ProbeTimeout(ProbeError):
    kind = "ProbeTimeout"


class ProbeNetworkError(ProbeError):
    kind = "ProbeNetworkError"


class ProbeHTTPError(ProbeError):
    kind = "ProbeHTTPError"

    def __init__(self, status_code: int, reason: str = "") -> None:
        self.status_code = status_code
        message = f"HTTP {status_code}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class NoSourceAvailable(ResolverError):
    """Every origin is unhealthy and local fallback was disabled for the call."""

    def __init__(self, logical_path: str) -> None:
        self.logical_path = logical_path
        super().__init__(f"no source available and fallback is disabled for resource: {logical_path}")
