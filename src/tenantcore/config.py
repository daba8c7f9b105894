"""Shared configuration contract for tenantcore consumers.

This module provides Pydantic-validated configuration models for the
access evaluator and the propagation engine (LOG_LEVEL, REDIS_URL,
propagation timeouts, per-deployment role requirements).

Route handlers and workers MUST build their configuration through
``load_shared_config_from_env()``. Direct os.environ/os.getenv usage is
not allowed anywhere else in the package.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class LogLevel(str, Enum):
    """Standard log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LockBackend(str, Enum):
    """Where per-target propagation locks live.

    - MEMORY: asyncio locks, valid within a single process
    - REDIS: distributed locks shared by every worker on the same Redis
    """

    MEMORY = "memory"
    REDIS = "redis"


class PropagationSettings(BaseModel):
    """Runtime knobs of the propagation engine.

    Environment variables:
        PROPAGATION_ROLLBACK_RETENTION_DAYS  — rollback window in days
        PROPAGATION_TARGET_TIMEOUT_SECONDS   — per-target lock/read timeout
        PROPAGATION_WRITE_TIMEOUT_SECONDS    — per-target write deadline
        PROPAGATION_MAX_CONCURRENT_TARGETS   — parallel target writes per run
        PROPAGATION_LOCK_BACKEND             — memory | redis
        PROPAGATION_LOCK_TTL_SECONDS         — Redis lock expiry guard
    """

    model_config = {"extra": "ignore", "use_enum_values": True}

    rollback_retention_days: int = Field(
        default=30,
        ge=1,
        description="How long a completed run can be rolled back, in days",
    )
    target_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Per-target timeout for lock acquisition and reads",
    )
    write_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Deadline for writing one target; a target that misses it is recorded as failed",
    )
    max_concurrent_targets: int = Field(
        default=8,
        ge=1,
        description="Maximum number of targets processed in parallel",
    )
    lock_backend: LockBackend = Field(
        default=LockBackend.MEMORY,
        description="Per-target lock backend: memory (single process) or redis",
    )
    lock_ttl_seconds: int = Field(
        default=120,
        ge=1,
        description="Expiry of a Redis target lock if its holder dies",
    )
    run_key_prefix: str = Field(
        default="tenantcore:runs",
        description="Redis key prefix for persisted propagation runs",
    )
    lock_key_prefix: str = Field(
        default="tenantcore:locks",
        description="Redis key prefix for per-target locks",
    )


class AccessSettings(BaseModel):
    """Per-deployment access configuration.

    ``role_requirements`` assigns a minimum tenant role to a feature id
    (e.g. ``{"barcode_scan": "TENANT_MEMBER"}``). Entries replace the
    built-in role requirement of the registry when it is built.
    """

    model_config = {"extra": "ignore"}

    role_requirements: dict[str, str] = Field(
        default_factory=dict,
        description="Feature id -> minimum tenant role overrides",
    )

    @field_validator("role_requirements", mode="before")
    @classmethod
    def parse_role_requirements(cls, v: str | dict[str, str] | None) -> dict[str, str]:
        """Accept the ``feature=ROLE,feature=ROLE`` environment form."""
        if v is None:
            return {}
        if isinstance(v, dict):
            return {str(k): str(val).upper() for k, val in v.items()}
        if isinstance(v, str):
            parsed: dict[str, str] = {}
            for pair in v.split(","):
                pair = pair.strip()
                if not pair:
                    continue
                if "=" not in pair:
                    raise ValueError(f"Invalid role requirement '{pair}', expected feature=ROLE")
                feature_id, role = pair.split("=", 1)
                parsed[feature_id.strip()] = role.strip().upper()
            return parsed
        raise ValueError(f"Role requirements must be a mapping or string, got {type(v)}")


class SharedConfig(BaseModel):
    """Shared configuration contract for every tenantcore consumer.

    Services extend this model with their own specific settings.
    """

    # Logging
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level for the service",
    )
    log_json: bool = Field(
        default=False,
        description="Use JSON log format (default: plain text)",
    )

    # Redis (run store, distributed locks)
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis connection URL (e.g., redis://localhost:6379/0)",
    )

    # Service identification
    service_name: Optional[str] = Field(
        default=None,
        description="Service name for log identification (e.g., 'api', 'propagation-worker')",
    )
    service_version: Optional[str] = Field(
        default=None,
        description="Service version for log identification",
    )

    propagation: PropagationSettings = Field(
        default_factory=PropagationSettings,
        description="Propagation engine settings",
    )
    access: AccessSettings = Field(
        default_factory=AccessSettings,
        description="Access evaluator settings",
    )

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("Redis URL must start with redis://, rediss://, or unix://")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Convert string to LogLevel enum."""
        if isinstance(v, LogLevel):
            return v
        if isinstance(v, str):
            try:
                return LogLevel[v.upper()]
            except KeyError:
                raise ValueError(f"Invalid log level: {v}. Must be one of {[e.value for e in LogLevel]}")
        raise ValueError(f"Log level must be string or LogLevel enum, got {type(v)}")

    model_config = {
        "use_enum_values": True,
        "extra": "forbid",
    }


def _env_flag(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def load_shared_config_from_env() -> SharedConfig:
    """Load shared configuration from environment variables.

    This is the ONLY place where os.getenv is allowed for shared settings.

    Environment variables:
    - LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - LOG_JSON: Use JSON log format (true/false, default: false)
    - REDIS_URL: Redis connection URL
    - SERVICE_NAME: Service name
    - SERVICE_VERSION: Service version
    - PROPAGATION_ROLLBACK_RETENTION_DAYS: Rollback window (default 30)
    - PROPAGATION_TARGET_TIMEOUT_SECONDS: Per-target timeout (default 30)
    - PROPAGATION_WRITE_TIMEOUT_SECONDS: Per-target write deadline (default 300)
    - PROPAGATION_MAX_CONCURRENT_TARGETS: Parallel targets (default 8)
    - PROPAGATION_LOCK_BACKEND: memory | redis
    - PROPAGATION_LOCK_TTL_SECONDS: Redis lock expiry (default 120)
    - FEATURE_ROLE_REQUIREMENTS: ``feature=ROLE`` pairs, comma-separated

    Returns:
        SharedConfig instance with values from environment or defaults.
    """
    import os

    propagation = PropagationSettings(
        rollback_retention_days=int(os.getenv("PROPAGATION_ROLLBACK_RETENTION_DAYS", "30")),
        target_timeout_seconds=float(os.getenv("PROPAGATION_TARGET_TIMEOUT_SECONDS", "30")),
        write_timeout_seconds=float(os.getenv("PROPAGATION_WRITE_TIMEOUT_SECONDS", "300")),
        max_concurrent_targets=int(os.getenv("PROPAGATION_MAX_CONCURRENT_TARGETS", "8")),
        lock_backend=os.getenv("PROPAGATION_LOCK_BACKEND", "memory"),
        lock_ttl_seconds=int(os.getenv("PROPAGATION_LOCK_TTL_SECONDS", "120")),
    )
    access = AccessSettings(role_requirements=os.getenv("FEATURE_ROLE_REQUIREMENTS", ""))

    return SharedConfig(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=_env_flag(os.getenv("LOG_JSON", "false")),
        redis_url=os.getenv("REDIS_URL"),
        service_name=os.getenv("SERVICE_NAME"),
        service_version=os.getenv("SERVICE_VERSION"),
        propagation=propagation,
        access=access,
    )


__all__ = [
    "AccessSettings",
    "LockBackend",
    "LogLevel",
    "PropagationSettings",
    "SharedConfig",
    "load_shared_config_from_env",
]
