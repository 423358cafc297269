from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class TerminalConfig:
    base_url: str = "http://localhost:8000"
    api_key: str = ""
    terminal_id: str = "terminal-1"
    timeout_seconds: float = 10.0
    verify_ssl: bool = True
    queue_db_path: str = "./tillsync_queue.db"
    queue_capacity: int = 10000
    sync_interval_seconds: float = 30.0
    backoff_base_ms: int = 1000
    backoff_cap_ms: int = 300000
    backoff_jitter_ratio: float = 0.2
    retry_attempt_ceiling: int = 25
    rejected_attempt_ceiling: int = 3
    dedup_check_enabled: bool = True
    asset_cache_dir: str = "./asset_cache"
    asset_poll_interval_seconds: float = 60.0
    activation_wait_seconds: float = 30.0
    inventory_api_url: str = ""
    inventory_api_key: str = ""
    inventory_per_page: int = 100

    @classmethod
    def from_env(cls, env_file: str | None = None) -> "TerminalConfig":
        return load_config(env_file)

    def validate(self) -> None:
        _validate(bool(self.base_url.strip()), "Invalid TILLSYNC_BASE_URL: must not be empty")
        _validate(bool(self.terminal_id.strip()), "Invalid TILLSYNC_TERMINAL_ID: must not be empty")
        _validate(self.timeout_seconds > 0, f"Invalid TILLSYNC_TIMEOUT_SECONDS: expected > 0, got {self.timeout_seconds}")
        _validate(self.queue_capacity >= 1, f"Invalid TILLSYNC_QUEUE_CAPACITY: expected >= 1, got {self.queue_capacity}")
        _validate(
            self.sync_interval_seconds > 0,
            f"Invalid TILLSYNC_SYNC_INTERVAL_SECONDS: expected > 0, got {self.sync_interval_seconds}",
        )
        _validate(self.backoff_base_ms >= 1, f"Invalid TILLSYNC_BACKOFF_BASE_MS: expected >= 1, got {self.backoff_base_ms}")
        _validate(
            self.backoff_cap_ms >= self.backoff_base_ms,
            f"Invalid TILLSYNC_BACKOFF_CAP_MS: expected >= {self.backoff_base_ms}, got {self.backoff_cap_ms}",
        )
        _validate(
            0 <= self.backoff_jitter_ratio < 1,
            f"Invalid TILLSYNC_BACKOFF_JITTER_RATIO: expected 0 <= ratio < 1, got {self.backoff_jitter_ratio}",
        )
        _validate(
            self.retry_attempt_ceiling >= 1,
            f"Invalid TILLSYNC_RETRY_ATTEMPT_CEILING: expected >= 1, got {self.retry_attempt_ceiling}",
        )
        _validate(
            self.rejected_attempt_ceiling >= 1,
            f"Invalid TILLSYNC_REJECTED_ATTEMPT_CEILING: expected >= 1, got {self.rejected_attempt_ceiling}",
        )
        _validate(
            self.asset_poll_interval_seconds > 0,
            f"Invalid TILLSYNC_ASSET_POLL_INTERVAL_SECONDS: expected > 0, got {self.asset_poll_interval_seconds}",
        )
        _validate(
            self.activation_wait_seconds >= 0,
            f"Invalid TILLSYNC_ACTIVATION_WAIT_SECONDS: expected >= 0, got {self.activation_wait_seconds}",
        )
        _validate(
            self.inventory_per_page >= 1,
            f"Invalid TILLSYNC_INVENTORY_PER_PAGE: expected >= 1, got {self.inventory_per_page}",
        )


def _validate(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigError(message)


def _coerce_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _read_str(name: str, default: str) -> str:
    return (os.getenv(name) or default).strip()


def _read_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid {name}: expected a number, got {raw!r}") from exc


def _read_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid {name}: expected an integer, got {raw!r}") from exc


def load_config(env_file: str | None = None) -> TerminalConfig:
    """Load terminal config from the environment with optional .env override."""
    load_dotenv(env_file)
    defaults = TerminalConfig()
    config = TerminalConfig(
        base_url=_read_str("TILLSYNC_BASE_URL", defaults.base_url).rstrip("/"),
        api_key=_read_str("TILLSYNC_API_KEY", defaults.api_key),
        terminal_id=_read_str("TILLSYNC_TERMINAL_ID", defaults.terminal_id),
        timeout_seconds=_read_float("TILLSYNC_TIMEOUT_SECONDS", defaults.timeout_seconds),
        verify_ssl=_coerce_bool(os.getenv("TILLSYNC_VERIFY_SSL"), defaults.verify_ssl),
        queue_db_path=_read_str("TILLSYNC_QUEUE_DB_PATH", defaults.queue_db_path),
        queue_capacity=_read_int("TILLSYNC_QUEUE_CAPACITY", defaults.queue_capacity),
        sync_interval_seconds=_read_float("TILLSYNC_SYNC_INTERVAL_SECONDS", defaults.sync_interval_seconds),
        backoff_base_ms=_read_int("TILLSYNC_BACKOFF_BASE_MS", defaults.backoff_base_ms),
        backoff_cap_ms=_read_int("TILLSYNC_BACKOFF_CAP_MS", defaults.backoff_cap_ms),
        backoff_jitter_ratio=_read_float("TILLSYNC_BACKOFF_JITTER_RATIO", defaults.backoff_jitter_ratio),
        retry_attempt_ceiling=_read_int("TILLSYNC_RETRY_ATTEMPT_CEILING", defaults.retry_attempt_ceiling),
        rejected_attempt_ceiling=_read_int("TILLSYNC_REJECTED_ATTEMPT_CEILING", defaults.rejected_attempt_ceiling),
        dedup_check_enabled=_coerce_bool(os.getenv("TILLSYNC_DEDUP_CHECK_ENABLED"), defaults.dedup_check_enabled),
        asset_cache_dir=_read_str("TILLSYNC_ASSET_CACHE_DIR", defaults.asset_cache_dir),
        asset_poll_interval_seconds=_read_float(
            "TILLSYNC_ASSET_POLL_INTERVAL_SECONDS", defaults.asset_poll_interval_seconds
        ),
        activation_wait_seconds=_read_float("TILLSYNC_ACTIVATION_WAIT_SECONDS", defaults.activation_wait_seconds),
        inventory_api_url=_read_str("INVENTORY_API_URL", defaults.inventory_api_url),
        inventory_api_key=_read_str("INVENTORY_API_KEY", defaults.inventory_api_key),
        inventory_per_page=_read_int("TILLSYNC_INVENTORY_PER_PAGE", defaults.inventory_per_page),
    )
    config.validate()
    return config
