"""Pydantic settings loaded from .env, with conf.json overlay."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, model_validator
from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent

# ---------------------------------------------------------------------------
# conf.json: runtime config (separate from .env secrets)
# ---------------------------------------------------------------------------


def get_safewatch_dir() -> Path:
    """Resolve the safewatch data directory. SAFEWATCH_DIR env var or ~/.config/safewatch."""
    d = os.environ.get("SAFEWATCH_DIR", "")
    return Path(d).expanduser() if d else Path.home() / ".config" / "safewatch"


class SafewatchConfig(BaseModel):
    database_url: str = ""
    redis_url: str = ""
    log_level: str = ""
    log_file: str = ""
    llm_provider: str = ""
    llm_base_url: str = ""
    small_agent_model: str = ""
    smart_agent_model: str = ""
    fallback_model: str = ""
    active_hours_timezone: str = ""
    soft_limit_usd: float | None = None
    hard_limit_usd: float | None = None
    max_fallback_calls: int | None = None


_logger = logging.getLogger(__name__)


def load_conf() -> SafewatchConfig:
    """Load conf.json from the safewatch data directory."""
    conf_path = get_safewatch_dir() / "conf.json"
    if conf_path.exists():
        try:
            return SafewatchConfig.model_validate_json(conf_path.read_text())
        except Exception:
            _logger.warning("Failed to parse %s, using defaults", conf_path, exc_info=True)
    return SafewatchConfig()


def save_conf(config: SafewatchConfig) -> None:
    """Save conf.json to the safewatch data directory."""
    safewatch_dir = get_safewatch_dir()
    safewatch_dir.mkdir(parents=True, exist_ok=True)
    (safewatch_dir / "conf.json").write_text(config.model_dump_json(indent=2))


# ---------------------------------------------------------------------------
# Bootstrap: load .env, load conf.json
# ---------------------------------------------------------------------------

_env_file = BASE_DIR.parent / ".env"
load_dotenv(_env_file)
_conf = load_conf()


def _pick(value, default):
    return value if value is not None else default


# ---------------------------------------------------------------------------
# Settings (pydantic-settings): .env / env vars override conf.json defaults
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    DEBUG: bool = False

    DATABASE_URL: str = _conf.database_url or f"sqlite:///{BASE_DIR / 'db.sqlite3'}"
    REDIS_URL: str = _conf.redis_url or "redis://localhost:6379/0"

    # Shared bearer token for the ingestion connector and operator tooling
    API_TOKEN: str = ""

    LOG_LEVEL: str = _conf.log_level or "INFO"
    LOG_FILE: str = _conf.log_file or ""
    LOG_MAX_BYTES: int = 10_485_760
    LOG_BACKUP_COUNT: int = 5

    # Classifier providers
    LLM_PROVIDER: str = _conf.llm_provider or "openai"  # openai | anthropic | openai_compatible
    LLM_API_KEY: str = ""
    LLM_BASE_URL: str = _conf.llm_base_url or ""
    SMALL_AGENT_MODEL: str = _conf.small_agent_model or "gpt-4o-mini"
    SMART_AGENT_MODEL: str = _conf.smart_agent_model or "gpt-4o"
    FALLBACK_MODEL: str = _conf.fallback_model or "gpt-4-turbo"
    LLM_TIMEOUT_SECONDS: int = 30
    SMALL_AGENT_MAX_TOKENS: int = 500
    SMART_AGENT_MAX_TOKENS: int = 600
    FALLBACK_MAX_TOKENS: int = 1000
    LLM_TEMPERATURE: float = 0.2

    # Budget ledger
    SOFT_LIMIT_USD: float = _pick(_conf.soft_limit_usd, 4.50)
    HARD_LIMIT_USD: float = _pick(_conf.hard_limit_usd, 5.00)
    MAX_FALLBACK_CALLS: int = _pick(_conf.max_fallback_calls, 30)
    CAPTION_COST_USD: float = 0.0005

    # Escalation
    RISK_ESCALATION_THRESHOLD: int = 40
    FALLBACK_CONFIDENCE_THRESHOLD: float = 0.55
    DEFAULT_SUBJECT_AGE: int = 12

    # Adaptive scheduler
    ACTIVE_HOURS_START: int = 8
    ACTIVE_HOURS_END: int = 22
    ACTIVE_HOURS_TIMEZONE: str = _conf.active_hours_timezone or "UTC"
    ACTIVE_INTERVAL_MINUTES: int = 10
    QUIET_INTERVAL_MINUTES: int = 30
    NO_ACTIVITY_INTERVAL_MINUTES: int = 30
    NO_ACTIVITY_THRESHOLD_MINUTES: int = 30
    THROTTLED_INTERVAL_MINUTES: int = 90
    HEARTBEAT_INTERVAL_MINUTES: int = 60
    THROTTLED_HEARTBEAT_MINUTES: int = 90
    ACTIVITY_LOOKBACK_MINUTES: int = 60
    CONTEXT_WINDOW_MINUTES: int = 60
    CONTEXT_WINDOW_LIMIT: int = 50
    SCHEDULER_TICK_SECONDS: int = 300
    SCHEDULER_MAX_WORKERS: int = 4
    BATCH_SCAN_INTERVAL_SECONDS: int = 3600
    BUDGET_CHECK_INTERVAL_SECONDS: int = 3600

    # External collaborators
    MEDIA_SERVICE_URL: str = ""
    NOTIFY_WEBHOOK_URL: str = ""
    EDUCATOR_WEBHOOK_URL: str = ""
    COLLABORATOR_TIMEOUT_SECONDS: int = 30

    model_config = ConfigDict(
        env_file=str(BASE_DIR.parent / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def warn_on_weak_fallback(self) -> "Settings":
        if self.FALLBACK_MODEL.strip().lower() == self.SMART_AGENT_MODEL.strip().lower():
            _logger.warning(
                "FALLBACK_MODEL is the same model as SMART_AGENT_MODEL (%s); "
                "low-confidence Tier-2 decisions will be re-asked of the same model",
                self.SMART_AGENT_MODEL,
            )
        return self


settings = Settings()
