"""
Runtime configuration schema.

Frozen dataclasses the YAML configuration is parsed into.  Every default
here matches ``sets/default.yaml``, so ``MaterialsConfig()`` and the
shipped file describe the same system.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class LocationsConfig:
    """Names of the well-known stock locations."""

    warehouse: str = "warehouse"
    production: str = "production_floor"
    finished_goods: str = "finished_goods_store"
    external: str = "external"

    def __post_init__(self) -> None:
        for name in ("warehouse", "production", "finished_goods", "external"):
            if not getattr(self, name):
                raise ValueError(f"locations.{name} must be non-empty")


@dataclass(frozen=True)
class AllocationConfig:
    split_tolerance: Decimal = Decimal("0.01")

    def __post_init__(self) -> None:
        tolerance = Decimal(str(self.split_tolerance))
        if tolerance < 0:
            raise ValueError(
                f"allocation.split_tolerance must be >= 0, got {tolerance}"
            )
        object.__setattr__(self, "split_tolerance", tolerance)


@dataclass(frozen=True)
class RetryPolicy:
    """Local retry of retryable storage errors (optimistic lock, unavailable)."""

    max_attempts: int = 3
    backoff_base_ms: int = 10
    backoff_max_ms: int = 200

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"retry.max_attempts must be >= 1, got {self.max_attempts}")
        if self.backoff_base_ms < 0 or self.backoff_max_ms < self.backoff_base_ms:
            raise ValueError(
                "retry backoff must satisfy 0 <= backoff_base_ms <= backoff_max_ms"
            )

    def delay_seconds(self, attempt: int) -> float:
        """Exponential backoff before retry number ``attempt`` (1-based)."""
        delay_ms = min(self.backoff_base_ms * 2 ** (attempt - 1), self.backoff_max_ms)
        return delay_ms / 1000.0


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite:///materials.db"
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    sqlite_busy_timeout_ms: int = 30000

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("database.url must be non-empty")
        if self.pool_size < 1:
            raise ValueError(f"database.pool_size must be >= 1, got {self.pool_size}")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def __post_init__(self) -> None:
        level = str(self.level).upper()
        if level not in _LEVELS:
            raise ValueError(f"logging.level must be one of {_LEVELS}, got {self.level!r}")
        object.__setattr__(self, "level", level)

    @property
    def level_number(self) -> int:
        return logging.getLevelName(self.level)


@dataclass(frozen=True)
class MaterialsConfig:
    """The whole runtime configuration."""

    config_id: str = "default"
    version: int = 1
    locations: LocationsConfig = field(default_factory=LocationsConfig)
    allocation: AllocationConfig = field(default_factory=AllocationConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""
