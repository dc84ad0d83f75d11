"""
Engine settings schema.

Defines the structure and defaults for runtime settings of the inventory
engine.  Values come from a YAML file and ``COLDSTORE_*`` environment
overrides (see ``coldstore_config.loader``).
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from typing import Any, Self

logger = logging.getLogger("coldstore.config.schema")

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

DEFAULT_DATABASE_URL = "sqlite:///coldstore.db"


@dataclass(frozen=True)
class EngineSettings:
    """
    Runtime settings for the inventory costing engine.

        settings = EngineSettings.from_dict(load_yaml_file(path))
    """

    # Database
    database_url: str = DEFAULT_DATABASE_URL
    echo_sql: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30

    # Concurrency
    lock_timeout_seconds: float = 10.0
    max_conflict_retries: int = 3
    retry_backoff_seconds: float = 0.05

    # Housekeeping
    layer_retention_days: int = 90

    # Numbering
    transaction_number_width: int = 4

    # Logging
    log_level: str = "INFO"

    def __post_init__(self):
        if not self.database_url:
            raise ValueError("database_url is required")
        if self.pool_size <= 0:
            raise ValueError("pool_size must be positive")
        if self.max_overflow < 0:
            raise ValueError("max_overflow cannot be negative")
        if self.pool_timeout <= 0:
            raise ValueError("pool_timeout must be positive")
        if self.lock_timeout_seconds <= 0:
            raise ValueError("lock_timeout_seconds must be positive")
        if self.max_conflict_retries < 0:
            raise ValueError("max_conflict_retries cannot be negative")
        if self.retry_backoff_seconds < 0:
            raise ValueError("retry_backoff_seconds cannot be negative")
        if self.layer_retention_days < 0:
            raise ValueError("layer_retention_days cannot be negative")
        if not 1 <= self.transaction_number_width <= 12:
            raise ValueError("transaction_number_width must be between 1 and 12")
        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(
                f"log_level must be one of {sorted(VALID_LOG_LEVELS)}, "
                f"got '{self.log_level}'"
            )
        object.__setattr__(self, "log_level", self.log_level.upper())

        logger.info(
            "engine_settings_initialized",
            extra={
                "dialect": self.database_url.split(":", 1)[0],
                "lock_timeout_seconds": self.lock_timeout_seconds,
                "max_conflict_retries": self.max_conflict_retries,
                "layer_retention_days": self.layer_retention_days,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        logger.info("engine_settings_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create settings from a mapping; unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown engine settings: {unknown}")
        logger.info(
            "engine_settings_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
