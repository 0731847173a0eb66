"""Engine settings loaded from YAML with environment-variable overrides."""

import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "ANALYTICS_"


@dataclass
class AnalyticsConfig:
    """Resolved settings with every default applied."""

    max_pipeline_stages: Optional[int] = 20
    max_concurrent_queries: int = 10
    scheduled_reports_enabled: bool = True
    isolate_widget_failures: bool = False
    isolate_schedule_failures: bool = True
    poll_interval_seconds: int = 60
    timezone: str = "UTC"
    database_url: Optional[str] = None
    data_dir: str = "data/objects"

    def validate(self) -> list[str]:
        """Validate settings values. Returns list of errors."""
        errors = []
        if self.max_pipeline_stages is not None and self.max_pipeline_stages < 1:
            errors.append(
                f"max_pipeline_stages must be >= 1, got {self.max_pipeline_stages}"
            )
        if self.max_concurrent_queries < 1:
            errors.append(
                f"max_concurrent_queries must be >= 1, got {self.max_concurrent_queries}"
            )
        if self.poll_interval_seconds < 1:
            errors.append(
                f"poll_interval_seconds must be >= 1, got {self.poll_interval_seconds}"
            )
        return errors

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "AnalyticsConfig":
        """Create from a mapping; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (config or {}).items() if k in known})

    def apply_env(self) -> "AnalyticsConfig":
        """Override fields from ``ANALYTICS_*`` environment variables."""

        def safe_int(key: str, default: Optional[int]) -> Optional[int]:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            try:
                return int(raw)
            except ValueError:
                logger.warning("Ignoring non-integer %s=%r", key, raw)
                return default

        def safe_bool(key: str, default: bool) -> bool:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            return raw.strip().lower() in ("1", "true", "yes", "on")

        self.max_pipeline_stages = safe_int(
            ENV_PREFIX + "MAX_PIPELINE_STAGES", self.max_pipeline_stages
        )
        self.max_concurrent_queries = safe_int(
            ENV_PREFIX + "MAX_CONCURRENT_QUERIES", self.max_concurrent_queries
        )
        self.poll_interval_seconds = safe_int(
            ENV_PREFIX + "POLL_INTERVAL", self.poll_interval_seconds
        )
        self.scheduled_reports_enabled = safe_bool(
            ENV_PREFIX + "SCHEDULED_REPORTS_ENABLED", self.scheduled_reports_enabled
        )
        self.database_url = os.getenv(ENV_PREFIX + "DATABASE_URL") or self.database_url
        self.data_dir = os.getenv(ENV_PREFIX + "DATA_DIR") or self.data_dir
        return self

    @classmethod
    def from_env(cls) -> "AnalyticsConfig":
        return cls().apply_env()


def load_config(
    config_path: str = "config/settings.yaml",
    env_path: Optional[str] = ".env",
) -> AnalyticsConfig:
    """Load YAML settings (``analytics:`` section or top level), then env overrides."""
    if env_path:
        env_file = Path(env_path)
        if env_file.exists():
            load_dotenv(env_file)
            logger.info("Loaded environment from %s", env_path)

    raw: dict[str, Any] = {}
    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file, "r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}
        logger.info("Configuration loaded from %s", config_path)
    else:
        logger.warning("Config file not found: %s; using defaults.", config_path)

    section = raw.get("analytics", raw) if isinstance(raw, dict) else {}
    config = AnalyticsConfig.from_dict(section).apply_env()
    errors = config.validate()
    if errors:
        raise ValueError("Invalid analytics configuration: " + "; ".join(errors))
    return config
