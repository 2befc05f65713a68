"""Environment-variable-driven configuration for the DataStudio client."""

from __future__ import annotations

import os
from dataclasses import dataclass

ENVIRONMENTS = ("PROD", "SAND_BOX")


def _get_str(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return v.strip()


def _get_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "t", "yes", "y", "on")


def _get_int(name: str, default: int) -> int:
    v = _get_str(name)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {v!r}") from e


def _get_float(name: str, default: float) -> float:
    v = _get_str(name)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {v!r}") from e


@dataclass(frozen=True)
class PollSettings:
    max_attempts: int = 30
    initial_delay: float = 2.0  # seconds
    max_delay: float = 30.0
    multiplier: float = 2.0

    @classmethod
    def from_env(cls) -> PollSettings:
        return cls(
            max_attempts=_get_int("DATASTUDIO_POLL_MAX_ATTEMPTS", 30),
            initial_delay=_get_float("DATASTUDIO_POLL_INITIAL_DELAY", 2.0),
            max_delay=_get_float("DATASTUDIO_POLL_MAX_DELAY", 30.0),
        )

    def validate(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("DATASTUDIO_POLL_MAX_ATTEMPTS must be >= 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("Poll delays must be >= 0")
        if self.max_delay < self.initial_delay:
            raise ValueError("DATASTUDIO_POLL_MAX_DELAY must be >= DATASTUDIO_POLL_INITIAL_DELAY")
        if self.multiplier <= 1:
            raise ValueError("Backoff multiplier must be > 1")


@dataclass(frozen=True)
class DataStudioConfig:
    # Remote API
    api_key: str
    base_url: str
    environment: str
    user_id: str
    http_timeout: float

    # Webhooks
    webhook_url: str | None  # public base URL the service calls back, e.g. an ngrok URL
    webhook_port: int
    webhook_timeout: float
    waiter_max_age: float

    # Concurrency / polling
    max_concurrency: int
    poll: PollSettings

    log_json: bool

    @classmethod
    def from_env(cls) -> DataStudioConfig:
        api_key = _get_str("DATASTUDIO_API_KEY")
        if not api_key:
            raise ValueError("DATASTUDIO_API_KEY is required")
        base_url = _get_str("DATASTUDIO_BASE_URL")
        if not base_url:
            raise ValueError("DATASTUDIO_BASE_URL is required")

        webhook_url = _get_str("DATASTUDIO_WEBHOOK_URL")
        if webhook_url:
            webhook_url = webhook_url.rstrip("/")

        return cls(
            api_key=api_key,
            base_url=base_url.rstrip("/"),
            environment=(_get_str("DATASTUDIO_ENVIRONMENT", "SAND_BOX") or "SAND_BOX").upper(),
            user_id=_get_str("DATASTUDIO_USER", "example-user") or "example-user",
            http_timeout=_get_float("DATASTUDIO_HTTP_TIMEOUT", 30.0),
            webhook_url=webhook_url,
            webhook_port=_get_int("DATASTUDIO_WEBHOOK_PORT", 8080),
            webhook_timeout=_get_float("DATASTUDIO_WEBHOOK_TIMEOUT", 600.0),
            waiter_max_age=_get_float("DATASTUDIO_WAITER_MAX_AGE", 3600.0),
            max_concurrency=_get_int("DATASTUDIO_MAX_CONCURRENCY", 5),
            poll=PollSettings.from_env(),
            log_json=_get_bool("DATASTUDIO_LOG_JSON", False),
        )

    def validate(self) -> None:
        if self.environment not in ENVIRONMENTS:
            raise ValueError(
                f"Invalid DATASTUDIO_ENVIRONMENT value: {self.environment}. Must be PROD or SAND_BOX"
            )
        if not 1 <= self.webhook_port <= 65535:
            raise ValueError(f"DATASTUDIO_WEBHOOK_PORT must be between 1 and 65535: {self.webhook_port}")
        if self.max_concurrency < 1:
            raise ValueError("DATASTUDIO_MAX_CONCURRENCY must be >= 1")
        if self.http_timeout <= 0:
            raise ValueError("DATASTUDIO_HTTP_TIMEOUT must be > 0")
        if self.webhook_timeout <= 0:
            raise ValueError("DATASTUDIO_WEBHOOK_TIMEOUT must be > 0")
        if self.waiter_max_age <= 0:
            raise ValueError("DATASTUDIO_WAITER_MAX_AGE must be > 0")
        self.poll.validate()
