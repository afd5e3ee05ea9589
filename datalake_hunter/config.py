"""Runtime configuration, read once at the CLI edge and passed down explicitly."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .errors import ConfigError, InvalidRateError

ENVIRONMENTS = {
    "prod": "https://datalake.cert.orangecyberdefense.com/api/v2/",
    "preprod": "https://ti.extranet.mrti-center.com/api/v2/",
}

DEFAULT_FALSE_POSITIVE_RATE = 0.00001
ENV_PREFIX = "DATALAKE_HUNTER_"


def default_max_workers() -> int:
    return min(32, (os.cpu_count() or 1) + 4)


def validate_rate(value) -> float:
    """Parse ``value`` as a false positive rate in the open interval (0, 1)."""
    try:
        rate = float(value)
    except (TypeError, ValueError):
        raise InvalidRateError(value) from None
    if not 0.0 < rate < 1.0:
        raise InvalidRateError(value)
    return rate


@dataclass(frozen=True)
class RemoteConfig:
    environment: str = "prod"
    base_url: Optional[str] = None
    request_timeout: float = 60.0
    lookup_batch_size: int = 100

    def __post_init__(self):
        if self.environment not in ENVIRONMENTS:
            raise ConfigError(
                f"unknown environment `{self.environment}`",
                details={"allowed": sorted(ENVIRONMENTS)},
            )
        if self.lookup_batch_size <= 0:
            raise ConfigError("lookup batch size must be positive")

    @property
    def url(self) -> str:
        return self.base_url or ENVIRONMENTS[self.environment]


@dataclass(frozen=True)
class HunterConfig:
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    false_positive_rate: float = DEFAULT_FALSE_POSITIVE_RATE
    max_workers: int = field(default_factory=default_max_workers)
    filter_suffix: str = ".bloom"
    log_level: str = "INFO"
    log_format: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "HunterConfig":
        env = os.environ if environ is None else environ

        def get(name: str, default: str) -> str:
            return env.get(ENV_PREFIX + name, default)

        try:
            remote = RemoteConfig(
                environment=overrides.pop("environment", None) or get("ENVIRONMENT", "prod"),
                base_url=get("BASE_URL", "") or None,
                request_timeout=float(get("TIMEOUT", "60")),
                lookup_batch_size=int(get("LOOKUP_BATCH_SIZE", "100")),
            )
            values = dict(
                remote=remote,
                false_positive_rate=validate_rate(get("RATE", str(DEFAULT_FALSE_POSITIVE_RATE))),
                max_workers=int(get("MAX_WORKERS", str(default_max_workers()))),
                log_level=get("LOG_LEVEL", "INFO").upper(),
            )
        except ValueError as exc:
            if isinstance(exc, ConfigError):
                raise
            raise ConfigError(f"invalid {ENV_PREFIX}* setting: {exc}") from exc

        values.update({k: v for k, v in overrides.items() if v is not None})
        if values["max_workers"] <= 0:
            raise ConfigError("max workers must be positive")
        return cls(**values)
