"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache

from coursegen.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

_TIER_NAMES: tuple[str, ...] = ("standard", "extended", "premium")
_DEFAULT_TIER_MODELS: dict[str, str] = {
  "standard": "openai/gpt-oss-20b:free",
  "extended": "openai/gpt-oss-120b:free",
  "premium": "google/gemini-2.5-pro",
}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the generation pipeline."""

  environment: str
  debug: bool
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  max_attempts: int
  attempt_timeout_seconds: float
  backoff_base_ms: int
  backoff_max_ms: int
  backoff_jitter_ratio: float
  retry_budget_capacity: int
  retry_budget_per_minute: int
  semantic_repair_token_threshold: int
  critical_foreign_chars: int
  critical_truncation_signals: int
  min_keyword_coverage: float
  judge_min_score: float
  judge_pass_with_flags: bool
  judge_model_tier: str
  tier_models: dict[str, str] = field(hash=False)
  openrouter_api_key: str | None
  openrouter_base_url: str
  lock_dsn: str | None
  lock_heartbeat_seconds: float


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for lock store connectivity."""

  debug: bool
  lock_dsn: str | None
  connect_timeout: int


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  return value or None


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _non_negative_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value < 0:
    raise ValueError(f"{name} must be zero or a positive integer.")
  return value


def _ratio(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if not 0.0 <= value <= 1.0:
    raise ValueError(f"{name} must be between 0 and 1.")
  return value


def _parse_tier_models() -> dict[str, str]:
  """Resolve the model name configured for each escalation tier."""
  models: dict[str, str] = {}
  for tier in _TIER_NAMES:
    env_name = f"COURSEGEN_MODEL_{tier.upper()}"
    models[tier] = _optional_str(os.getenv(env_name)) or _DEFAULT_TIER_MODELS[tier]
  return models


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("COURSEGEN_ENV", "development").lower()

  # Toggle verbose diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("COURSEGEN_DEBUG"))

  log_dir = (os.getenv("COURSEGEN_LOG_DIR") or "./logs").strip()
  log_max_bytes = _positive_int("COURSEGEN_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = _non_negative_int("COURSEGEN_LOG_BACKUP_COUNT", "10")

  max_attempts = _positive_int("COURSEGEN_MAX_ATTEMPTS", "10")
  attempt_timeout_seconds = float(os.getenv("COURSEGEN_ATTEMPT_TIMEOUT_SECONDS", "120"))
  if attempt_timeout_seconds <= 0:
    raise ValueError("COURSEGEN_ATTEMPT_TIMEOUT_SECONDS must be positive.")

  backoff_base_ms = _positive_int("COURSEGEN_BACKOFF_BASE_MS", "1000")
  backoff_max_ms = _positive_int("COURSEGEN_BACKOFF_MAX_MS", "30000")
  if backoff_max_ms < backoff_base_ms:
    raise ValueError("COURSEGEN_BACKOFF_MAX_MS must not be lower than COURSEGEN_BACKOFF_BASE_MS.")
  backoff_jitter_ratio = _ratio("COURSEGEN_BACKOFF_JITTER_RATIO", "0.25")

  # The retry budget is shared by every in-flight candidate in the process.
  retry_budget_capacity = _positive_int("COURSEGEN_RETRY_BUDGET_CAPACITY", "20")
  retry_budget_per_minute = _positive_int("COURSEGEN_RETRY_BUDGET_PER_MINUTE", "30")

  semantic_repair_token_threshold = _non_negative_int("COURSEGEN_SEMANTIC_REPAIR_TOKEN_THRESHOLD", "1500")

  # Zero makes any occurrence critical.
  critical_foreign_chars = _non_negative_int("COURSEGEN_CRITICAL_FOREIGN_CHARS", "20")
  critical_truncation_signals = _non_negative_int("COURSEGEN_CRITICAL_TRUNCATION_SIGNALS", "2")
  min_keyword_coverage = _ratio("COURSEGEN_MIN_KEYWORD_COVERAGE", "0.5")
  judge_min_score = _ratio("COURSEGEN_JUDGE_MIN_SCORE", "0.6")
  judge_pass_with_flags = _parse_bool(os.getenv("COURSEGEN_JUDGE_PASS_WITH_FLAGS"))

  judge_model_tier = (os.getenv("COURSEGEN_JUDGE_MODEL_TIER") or "extended").strip().lower()
  if judge_model_tier not in _TIER_NAMES:
    raise ValueError(f"COURSEGEN_JUDGE_MODEL_TIER must be one of: {', '.join(_TIER_NAMES)}.")

  openrouter_api_key = _optional_str(os.getenv("OPENROUTER_API_KEY"))
  openrouter_base_url = (os.getenv("COURSEGEN_OPENROUTER_BASE_URL") or "https://openrouter.ai/api/v1").strip()

  lock_dsn = _optional_str(os.getenv("COURSEGEN_LOCK_DSN"))
  lock_heartbeat_seconds = float(os.getenv("COURSEGEN_LOCK_HEARTBEAT_SECONDS", "300"))
  if lock_heartbeat_seconds <= 0:
    raise ValueError("COURSEGEN_LOCK_HEARTBEAT_SECONDS must be positive.")

  return Settings(
    environment=environment,
    debug=debug,
    log_dir=log_dir,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    max_attempts=max_attempts,
    attempt_timeout_seconds=attempt_timeout_seconds,
    backoff_base_ms=backoff_base_ms,
    backoff_max_ms=backoff_max_ms,
    backoff_jitter_ratio=backoff_jitter_ratio,
    retry_budget_capacity=retry_budget_capacity,
    retry_budget_per_minute=retry_budget_per_minute,
    semantic_repair_token_threshold=semantic_repair_token_threshold,
    critical_foreign_chars=critical_foreign_chars,
    critical_truncation_signals=critical_truncation_signals,
    min_keyword_coverage=min_keyword_coverage,
    judge_min_score=judge_min_score,
    judge_pass_with_flags=judge_pass_with_flags,
    judge_model_tier=judge_model_tier,
    tier_models=_parse_tier_models(),
    openrouter_api_key=openrouter_api_key,
    openrouter_base_url=openrouter_base_url,
    lock_dsn=lock_dsn,
    lock_heartbeat_seconds=lock_heartbeat_seconds,
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load only the settings needed to reach the lock store."""

  debug = _parse_bool(os.getenv("COURSEGEN_DEBUG"))
  lock_dsn = _optional_str(os.getenv("COURSEGEN_LOCK_DSN"))
  connect_timeout = _positive_int("COURSEGEN_LOCK_CONNECT_TIMEOUT", "10")
  return DatabaseSettings(debug=debug, lock_dsn=lock_dsn, connect_timeout=connect_timeout)
