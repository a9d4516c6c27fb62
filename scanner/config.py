"""Scan configuration read from environment variables."""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from scanner.errors import ConfigError

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_STORE_PATH = os.path.join(".scan-results", "scanned_repos.json")


def _number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {raw!r}")
    return value


def _enabled(env: Mapping[str, str], name: str) -> bool:
    # Optimizations are on unless explicitly switched off.
    return env.get(name, "true").strip().lower() != "false"


@dataclass(frozen=True)
class ScanConfig:
    gemini_api_key: str = ""
    github_token: Optional[str] = None
    gemini_model: str = DEFAULT_GEMINI_MODEL
    min_request_interval: float = 6.0
    max_retries: int = 3
    rate_limit_base_wait: float = 10.0
    retry_wait: float = 2.0
    batch_size: int = 5
    star_threshold: int = 1000
    unchanged_check_enabled: bool = True
    star_check_enabled: bool = True
    trusted_owners: Tuple[str, ...] = field(default_factory=tuple)
    store_path: str = DEFAULT_STORE_PATH
    results_dir: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ScanConfig":
        env = os.environ if env is None else env

        batch_size = _number(env, "SCAN_BATCH_SIZE", 5, int)
        if batch_size < 1:
            raise ConfigError("SCAN_BATCH_SIZE must be at least 1")
        max_retries = _number(env, "GEMINI_MAX_RETRIES", 3, int)
        if max_retries < 1:
            raise ConfigError("GEMINI_MAX_RETRIES must be at least 1")

        trusted_owners = tuple(
            owner.strip().lower()
            for owner in env.get("TRUSTED_OWNERS", "").split(",")
            if owner.strip()
        )

        return cls(
            gemini_api_key=env.get("GEMINI_API_KEY", ""),
            github_token=env.get("GITHUB_TOKEN") or None,
            gemini_model=env.get("GEMINI_MODEL") or DEFAULT_GEMINI_MODEL,
            min_request_interval=_number(env, "GEMINI_MIN_REQUEST_INTERVAL", 6.0, float),
            max_retries=max_retries,
            rate_limit_base_wait=_number(env, "GEMINI_RATE_LIMIT_BASE_WAIT", 10.0, float),
            retry_wait=_number(env, "GEMINI_RETRY_WAIT", 2.0, float),
            batch_size=batch_size,
            star_threshold=_number(env, "TRUSTED_REPO_STAR_THRESHOLD", 1000, int),
            unchanged_check_enabled=_enabled(env, "ENABLE_UNCHANGED_REPO_CHECK"),
            star_check_enabled=_enabled(env, "ENABLE_STAR_THRESHOLD_CHECK"),
            trusted_owners=trusted_owners,
            store_path=env.get("SCAN_STORE_PATH") or DEFAULT_STORE_PATH,
            results_dir=env.get("SCAN_RESULTS_DIR") or None,
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )
