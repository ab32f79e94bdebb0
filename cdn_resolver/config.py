from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Callable, Mapping
from urllib.parse import urlparse

from cdn_resolver.errors import ConfigError

DEFAULT_ORIGINS = (
    "https://flexiresume-static.web.app/",
    "https://cdn.jsdelivr.net/gh/dedenLabs/flexiresume-static/",
    "https://dedenlabs.github.io/flexiresume-static/",
)
DEFAULT_TEST_PATH = "favicon.ico"
DEFAULT_TIMEOUT_MS = 5000
DEFAULT_MAX_CONCURRENCY = 3

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class ScoringMode(str, Enum):
    AVAILABILITY = "availability"
    SPEED = "speed"


@dataclass(frozen=True)
class ScoringConfig:
    mode: ScoringMode = ScoringMode.SPEED
    enabled: bool = True
    speed_weight: float = 0.7
    availability_weight: float = 0.3

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "mode", ScoringMode(self.mode))
        except ValueError as exc:
            raise ConfigError(f"unknown scoring mode: {self.mode!r}") from exc
        if self.speed_weight < 0 or self.availability_weight < 0:
            raise ConfigError("scoring weights must be non-negative")


@dataclass(frozen=True)
class LocalFallbackConfig:
    base_path: str = ""


@dataclass(frozen=True)
class LocalOptimizationConfig:
    enabled: bool = True
    force_local: bool = False
    custom_detection: Callable[[], bool] | None = field(default=None, compare=False)
    # Build-time "development mode" signal.
    dev_mode: bool = False


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    max_cycles: int | None = None
    base_delay_s: float = 1.0
    backoff_factor: float = 2.0
    max_delay_s: float = 30.0
    jitter_s: float = 0.3
    fallback_to_local: bool = True

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigError("max_retries must be >= 0")
        if self.max_cycles is not None and self.max_cycles < 1:
            raise ConfigError("max_cycles must be >= 1")
        if self.base_delay_s < 0 or self.max_delay_s < 0 or self.jitter_s < 0:
            raise ConfigError("retry delays must be non-negative")

    @property
    def cycles_before_giving_up(self) -> int:
        if self.max_cycles is not None:
            return self.max_cycles
        return self.max_retries + 1


@dataclass(frozen=True)
class ResolverConfig:
    origins: tuple[str, ...] = DEFAULT_ORIGINS
    enabled: bool = True
    test_path: str = DEFAULT_TEST_PATH
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    health_check_enabled: bool = True
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    local_fallback: LocalFallbackConfig = field(default_factory=LocalFallbackConfig)
    local_optimization: LocalOptimizationConfig = field(default_factory=LocalOptimizationConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    # Where the host application is served from; drives host info and the project base path.
    page_url: str | None = None
    provisional_first_origin: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "origins", tuple(self.origins))
        seen: set[str] = set()
        for origin in self.origins:
            parsed = urlparse(origin)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ConfigError(f"origin must be an absolute http(s) URL: {origin!r}")
            key = origin.rstrip("/")
            if key in seen:
                raise ConfigError(f"duplicate origin: {origin!r}")
            seen.add(key)
        if self.timeout_ms <= 0:
            raise ConfigError("timeout_ms must be > 0")
        if self.max_concurrency < 1:
            raise ConfigError("max_concurrency must be >= 1")

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0


_SECTIONS: dict[str, type] = {
    "scoring": ScoringConfig,
    "local_fallback": LocalFallbackConfig,
    "local_optimization": LocalOptimizationConfig,
    "retry": RetryConfig,
}


def _build_section(cls: type, name: str, data: Any) -> Any:
    if isinstance(data, cls):
        return data
    if not isinstance(data, Mapping):
        raise ConfigError(f"section {name!r} must be a mapping")
    allowed = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ConfigError(f"unknown key(s) in {name!r}: {', '.join(unknown)}")
    return cls(**data)


def config_from_mapping(data: Mapping[str, Any]) -> ResolverConfig:
    """Build a config from a nested mapping, rejecting unknown keys."""

    allowed = {f.name for f in fields(ResolverConfig)}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ConfigError(f"unknown config key(s): {', '.join(unknown)}")

    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        section = _SECTIONS.get(key)
        kwargs[key] = _build_section(section, key, value) if section else value
    try:
        return ResolverConfig(**kwargs)
    except TypeError as exc:
        raise ConfigError(str(exc)) from exc


def _parse_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def load_config(environ: Mapping[str, str] | None = None, **overrides: Any) -> ResolverConfig:
    """Build a config from ``RESOLVER_*`` environment variables.

    Call ``dotenv.load_dotenv()`` first if a ``.env`` file should be honoured.
    Keyword overrides win over the environment.
    """

    env = os.environ if environ is None else environ

    origins_raw = env.get("RESOLVER_ORIGINS")
    origins = tuple(_parse_csv(origins_raw)) if origins_raw is not None else DEFAULT_ORIGINS

    data: dict[str, Any] = {
        "origins": origins,
        "enabled": _env_bool(env, "RESOLVER_ENABLED", True),
        "test_path": env.get("RESOLVER_TEST_PATH") or DEFAULT_TEST_PATH,
        "timeout_ms": _env_int(env, "RESOLVER_TIMEOUT_MS", DEFAULT_TIMEOUT_MS),
        "max_concurrency": _env_int(env, "RESOLVER_MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY),
        "health_check_enabled": _env_bool(env, "RESOLVER_HEALTH_CHECK", True),
        "scoring": ScoringConfig(mode=env.get("RESOLVER_SCORING_MODE") or ScoringMode.SPEED),
        "local_fallback": LocalFallbackConfig(base_path=env.get("RESOLVER_LOCAL_BASE_PATH", "")),
        "local_optimization": LocalOptimizationConfig(
            enabled=_env_bool(env, "RESOLVER_LOCAL_OPTIMIZATION", True),
            force_local=_env_bool(env, "RESOLVER_FORCE_LOCAL", False),
            dev_mode=_env_bool(env, "RESOLVER_DEV_MODE", False),
        ),
        "retry": RetryConfig(max_retries=_env_int(env, "RESOLVER_MAX_RETRIES", 3)),
        "page_url": env.get("RESOLVER_PAGE_URL") or None,
    }
    data.update(overrides)
    return config_from_mapping(data)
