"""Runtime configuration sourced from environment variables."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

ALLOWED_EXTENSIONS: frozenset[str] = frozenset({"dwg", "dxf", "ifc", "rvt", "skp", "pln", "pdf"})

DEFAULT_MAX_UPLOAD_BYTES = 500 * 1024 * 1024


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True, slots=True)
class IngestionSettings:
    """Budgets and limits for the ingestion pipeline.

    Durations are in seconds. ``poll_interval * max_attempts`` and
    ``job_timeout`` are independent ceilings; whichever is reached first
    ends the polling phase.
    """

    poll_interval: float = 5.0
    max_attempts: int = 60
    job_timeout: float = 300.0
    step_timeout: float = 30.0
    upload_timeout: float = 300.0
    max_transient_retries: int = 3
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    allowed_extensions: frozenset[str] = field(default=ALLOWED_EXTENSIONS)

    def __post_init__(self) -> None:
        if self.poll_interval < 0:
            raise ValueError("poll_interval must not be negative")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.job_timeout <= 0 or self.step_timeout <= 0 or self.upload_timeout <= 0:
            raise ValueError("timeouts must be positive")
        if self.max_transient_retries < 0:
            raise ValueError("max_transient_retries must not be negative")
        if self.max_upload_bytes <= 0:
            raise ValueError("max_upload_bytes must be positive")

    @classmethod
    def from_env(cls) -> "IngestionSettings":
        max_upload_mb = os.getenv("ESTIMATOR_MAX_UPLOAD_MB")
        max_upload_bytes = DEFAULT_MAX_UPLOAD_BYTES
        if max_upload_mb and max_upload_mb.strip():
            max_upload_bytes = int(_env_float("ESTIMATOR_MAX_UPLOAD_MB", 500) * 1024 * 1024)
        return cls(
            poll_interval=_env_float("ESTIMATOR_POLL_INTERVAL", 5.0),
            max_attempts=_env_int("ESTIMATOR_MAX_ATTEMPTS", 60),
            job_timeout=_env_float("ESTIMATOR_JOB_TIMEOUT", 300.0),
            step_timeout=_env_float("ESTIMATOR_STEP_TIMEOUT", 30.0),
            upload_timeout=_env_float("ESTIMATOR_UPLOAD_TIMEOUT", 300.0),
            max_transient_retries=_env_int("ESTIMATOR_TRANSIENT_RETRIES", 3),
            max_upload_bytes=max_upload_bytes,
        )


@dataclass(frozen=True, slots=True)
class TranslationServiceSettings:
    api_base: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    token_url: str | None = None

    @property
    def configured(self) -> bool:
        return bool(self.api_base)

    @classmethod
    def from_env(cls) -> "TranslationServiceSettings":
        return cls(
            api_base=os.getenv("TRANSLATION_API_BASE") or None,
            client_id=os.getenv("TRANSLATION_CLIENT_ID") or None,
            client_secret=os.getenv("TRANSLATION_CLIENT_SECRET") or None,
            token_url=os.getenv("TRANSLATION_TOKEN_URL") or None,
        )


def uploads_root() -> Path:
    env_root = os.getenv("UPLOADS_ROOT")
    if env_root:
        return Path(env_root).expanduser().resolve()
    return Path(__file__).resolve().parents[2] / "uploads"
