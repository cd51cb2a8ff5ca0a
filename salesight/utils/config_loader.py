"""
Config Loader - Centralized configuration access for Salesight

Provides typed access to all configuration values from settings.yaml.
Set SALESIGHT_SETTINGS to load a different YAML file.

Usage:
    from salesight.utils.config_loader import get_config

    config = get_config()
    print(config.ingest.max_columns)  # 200
    print(config.analytics.anomaly_zscore_threshold)  # 2.0
"""

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml


@dataclass
class ProjectConfig:
    """Project metadata."""
    name: str = "salesight"
    environment: str = "local"


@dataclass
class DuckDBConfig:
    """DuckDB database configuration."""
    database_path: str = ":memory:"


@dataclass
class IngestConfig:
    """Upload guardrails. The engine itself never enforces these."""
    max_upload_bytes: int = 50 * 1024 * 1024
    max_columns: int = 200
    ingest_timeout_seconds: float = 30
    sample_size: int = 20000
    preview_rows: int = 20
    max_string_length: int = 120
    supported_mime_types: List[str] = field(
        default_factory=lambda: ["text/csv", "application/vnd.ms-excel", "application/csv"]
    )


@dataclass
class AnalyticsConfig:
    """Aggregation defaults."""
    default_product_limit: int = 10
    anomaly_zscore_threshold: float = 2.0
    dashboard_row_limit: int = 50


@dataclass
class LLMConfig:
    """LLM (Gemini) configuration."""
    enabled: bool = True
    provider: str = "gemini"
    api_key_env: str = "GEMINI_API_KEY"
    model: str = "gemini-2.0-flash"
    temperature: float = 0.0
    request_timeout_seconds: int = 60
    chat_max_output_tokens: int = 200
    insights_max_output_tokens: int = 300
    max_insight_context_chars: int = 4000


@dataclass
class CacheConfig:
    """Session cache configuration."""
    session_cache_max_size: int = 20
    session_cache_ttl_seconds: int = 86400


@dataclass
class APIConfig:
    """HTTP layer configuration."""
    allowed_origins: List[str] = field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"]
    )


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class Config:
    """Complete configuration for Salesight."""
    project: ProjectConfig
    duckdb: DuckDBConfig
    ingest: IngestConfig
    analytics: AnalyticsConfig
    llm: LLMConfig
    cache: CacheConfig
    api: APIConfig
    logging: LoggingConfig


# Singleton instance
_config: Optional[Config] = None
_config_lock = threading.Lock()

_PACKAGE_DIR = Path(__file__).parent.parent
_default_config_path = _PACKAGE_DIR / "config" / "settings.yaml"


def _config_path() -> Path:
    override = os.getenv("SALESIGHT_SETTINGS")
    return Path(override) if override else _default_config_path


def _load_raw_config() -> dict:
    """Load raw YAML config from file."""
    path = _config_path()
    if not path.exists():
        return {}

    with open(path) as f:
        return yaml.safe_load(f) or {}


def _llm_enabled(raw_value: bool) -> bool:
    """SALESIGHT_ENABLE_LLM=false switches the LLM off regardless of the file."""
    env_value = os.getenv("SALESIGHT_ENABLE_LLM")
    if env_value is None:
        return bool(raw_value)
    return env_value.strip().lower() not in ("false", "0", "no", "off")


def _parse_config(raw: dict) -> Config:
    """Parse raw dict into typed Config object."""
    ingest_defaults = IngestConfig()
    api_defaults = APIConfig()
    return Config(
        project=ProjectConfig(
            name=raw.get("project", {}).get("name", "salesight"),
            environment=raw.get("project", {}).get("environment", "local"),
        ),
        duckdb=DuckDBConfig(
            database_path=raw.get("duckdb", {}).get("database_path", ":memory:"),
        ),
        ingest=IngestConfig(
            max_upload_bytes=raw.get("ingest", {}).get("max_upload_bytes", ingest_defaults.max_upload_bytes),
            max_columns=raw.get("ingest", {}).get("max_columns", 200),
            ingest_timeout_seconds=raw.get("ingest", {}).get("ingest_timeout_seconds", 30),
            sample_size=raw.get("ingest", {}).get("sample_size", 20000),
            preview_rows=raw.get("ingest", {}).get("preview_rows", 20),
            max_string_length=raw.get("ingest", {}).get("max_string_length", 120),
            supported_mime_types=raw.get("ingest", {}).get(
                "supported_mime_types", ingest_defaults.supported_mime_types
            ),
        ),
        analytics=AnalyticsConfig(
            default_product_limit=raw.get("analytics", {}).get("default_product_limit", 10),
            anomaly_zscore_threshold=raw.get("analytics", {}).get("anomaly_zscore_threshold", 2.0),
            dashboard_row_limit=raw.get("analytics", {}).get("dashboard_row_limit", 50),
        ),
        llm=LLMConfig(
            enabled=_llm_enabled(raw.get("llm", {}).get("enabled", True)),
            provider=raw.get("llm", {}).get("provider", "gemini"),
            api_key_env=raw.get("llm", {}).get("api_key_env", "GEMINI_API_KEY"),
            model=raw.get("llm", {}).get("model", "gemini-2.0-flash"),
            temperature=raw.get("llm", {}).get("temperature", 0.0),
            request_timeout_seconds=raw.get("llm", {}).get("request_timeout_seconds", 60),
            chat_max_output_tokens=raw.get("llm", {}).get("chat_max_output_tokens", 200),
            insights_max_output_tokens=raw.get("llm", {}).get("insights_max_output_tokens", 300),
            max_insight_context_chars=raw.get("llm", {}).get("max_insight_context_chars", 4000),
        ),
        cache=CacheConfig(
            session_cache_max_size=raw.get("cache", {}).get("session_cache_max_size", 20),
            session_cache_ttl_seconds=raw.get("cache", {}).get("session_cache_ttl_seconds", 86400),
        ),
        api=APIConfig(
            allowed_origins=raw.get("api", {}).get("allowed_origins", api_defaults.allowed_origins),
        ),
        logging=LoggingConfig(
            level=raw.get("logging", {}).get("level", "INFO"),
        ),
    )


def get_config(force_reload: bool = False) -> Config:
    """
    Get the singleton Config instance.

    Args:
        force_reload: Force reload from file (ignores cache)

    Returns:
        Config: The configuration object
    """
    global _config

    if _config is not None and not force_reload:
        return _config

    with _config_lock:
        if _config is None or force_reload:
            raw = _load_raw_config()
            _config = _parse_config(raw)
        return _config


def reload_config() -> Config:
    """Force reload configuration from file."""
    return get_config(force_reload=True)


def validate_config(config: Optional[Config] = None) -> List[str]:
    """
    Validate configuration and return list of warnings.

    Returns:
        List of warning messages (empty if all OK)
    """
    warnings = []
    config = config or get_config()

    if not _config_path().exists():
        warnings.append(f"{_config_path()} not found - using defaults")

    if config.llm.enabled and not os.getenv(config.llm.api_key_env):
        warnings.append(f"{config.llm.api_key_env} not set - chat answers and insights will not work")

    if config.ingest.max_columns <= 0:
        warnings.append("ingest.max_columns must be positive")

    return warnings
