"""Centralized configuration for cacheprog."""

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigError

_TRUE = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE


@dataclass(slots=True)
class CacheProgConfig:
    """All cacheprog configuration in one place.

    Environment variables (all optional unless noted):
        CACHEPROG_BUCKET:          Bucket holding the shared cache. Required.
        CACHEPROG_REGION:          Bucket region. Falls back to AWS_REGION.
        CACHEPROG_PREFIX:          Key prefix inside the bucket. Default "".
        CACHEPROG_ENDPOINT_URL:    Custom S3 endpoint (MinIO, R2, ...).
        CACHEPROG_PROFILE:         AWS profile name.
        CACHEPROG_STAGE_DIR:       Local staging directory. Default <tmp>/cacheprog.
        CACHEPROG_MAX_STAGE_MB:    Local staging bound in MB. 0 disables eviction.
        CACHEPROG_CLEAN_STAGE:     Remove staged objects at exit. Default true.
        CACHEPROG_MAX_CONCURRENCY: Simultaneous network operations. Default 16.
        CACHEPROG_MAX_UPLOADS:     Simultaneous uploads. Default 8.
        CACHEPROG_MAX_ATTEMPTS:    Attempts per remote operation. Default 4.
        CACHEPROG_BACKOFF_BASE:    First retry delay cap in seconds. Default 0.2.
        CACHEPROG_BACKOFF_MAX:     Retry delay cap in seconds. Default 5.
        CACHEPROG_OP_TIMEOUT:      Per-attempt network timeout in seconds. Default 30.
        CACHEPROG_GET_TIMEOUT:     Overall bound on a remote get in seconds. Default 60.
        CACHEPROG_CLOSE_GRACE:     Seconds to wait for uploads at close. Default 60.
        CACHEPROG_KEY_SIZE:        Expected key length in bytes, 0 to skip. Default 32.
        CACHEPROG_CHECK_ON_START:  Verify bucket access before serving. Default true.
        CACHEPROG_LOG_LEVEL:       Logging level. Default "INFO".
        CACHEPROG_LOG_FILE:        Log to this file instead of stderr.
        CACHEPROG_METRICS:         Metrics backend: "noop" or "logging" (default).
    """

    bucket: str = ""
    region: str | None = None
    prefix: str = ""
    stage_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / "cacheprog")
    max_stage_bytes: int = 0
    clean_stage: bool = True
    max_concurrency: int = 16
    max_uploads: int = 8
    max_attempts: int = 4
    backoff_base: float = 0.2
    backoff_max: float = 5.0
    op_timeout: float = 30.0
    get_timeout: float = 60.0
    close_grace: float = 60.0
    key_size: int = 32
    check_on_start: bool = True
    log_level: str = "INFO"
    log_file: Path | None = None
    metrics_type: str = "logging"

    # Connection params (typically passed by CLI, not env vars)
    endpoint_url: str | None = field(default=None, repr=False)
    profile: str | None = None

    @classmethod
    def from_env(
        cls,
        *,
        bucket: str | None = None,
        region: str | None = None,
        prefix: str | None = None,
        endpoint_url: str | None = None,
        profile: str | None = None,
        stage_dir: Path | None = None,
        log_level: str = "INFO",
    ) -> "CacheProgConfig":
        """Build config from environment variables + explicit overrides."""
        env_stage = os.environ.get("CACHEPROG_STAGE_DIR")
        env_log_file = os.environ.get("CACHEPROG_LOG_FILE")
        config = cls(
            bucket=bucket or os.environ.get("CACHEPROG_BUCKET", ""),
            region=region or os.environ.get("CACHEPROG_REGION") or os.environ.get("AWS_REGION"),
            prefix=prefix if prefix is not None else os.environ.get("CACHEPROG_PREFIX", ""),
            max_stage_bytes=int(os.environ.get("CACHEPROG_MAX_STAGE_MB", "0")) * 1024 * 1024,
            clean_stage=_env_bool("CACHEPROG_CLEAN_STAGE", True),
            max_concurrency=int(os.environ.get("CACHEPROG_MAX_CONCURRENCY", "16")),
            max_uploads=int(os.environ.get("CACHEPROG_MAX_UPLOADS", "8")),
            max_attempts=int(os.environ.get("CACHEPROG_MAX_ATTEMPTS", "4")),
            backoff_base=float(os.environ.get("CACHEPROG_BACKOFF_BASE", "0.2")),
            backoff_max=float(os.environ.get("CACHEPROG_BACKOFF_MAX", "5.0")),
            op_timeout=float(os.environ.get("CACHEPROG_OP_TIMEOUT", "30")),
            get_timeout=float(os.environ.get("CACHEPROG_GET_TIMEOUT", "60")),
            close_grace=float(os.environ.get("CACHEPROG_CLOSE_GRACE", "60")),
            key_size=int(os.environ.get("CACHEPROG_KEY_SIZE", "32")),
            check_on_start=_env_bool("CACHEPROG_CHECK_ON_START", True),
            log_level=os.environ.get("CACHEPROG_LOG_LEVEL", log_level),
            log_file=Path(env_log_file) if env_log_file else None,
            metrics_type=os.environ.get("CACHEPROG_METRICS", "logging"),
            endpoint_url=endpoint_url or os.environ.get("CACHEPROG_ENDPOINT_URL"),
            profile=profile or os.environ.get("CACHEPROG_PROFILE"),
        )
        if stage_dir is not None:
            config.stage_dir = stage_dir
        elif env_stage:
            config.stage_dir = Path(env_stage)
        return config

    def validate(self) -> None:
        """Fail fast on configuration the proxy cannot run with."""
        if not self.bucket:
            raise ConfigError("bucket is required (set CACHEPROG_BUCKET or --bucket)")
        for name in ("max_concurrency", "max_uploads", "max_attempts"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be at least 1")
        for name in ("op_timeout", "get_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.backoff_base < 0 or self.backoff_max < 0 or self.close_grace < 0:
            raise ConfigError("backoff and grace periods must not be negative")
        if self.max_stage_bytes < 0 or self.key_size < 0:
            raise ConfigError("max_stage_bytes and key_size must not be negative")
        if self.metrics_type not in ("noop", "logging"):
            raise ConfigError(f"unknown metrics backend: {self.metrics_type}")
