"""
Centralized Configuration for StudyIQ

This module provides a unified configuration system for the adaptive learning
engine. It handles configuration from environment variables, config files, and
defaults, with proper type checking and validation.
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# Prefix and nesting delimiter for environment overrides,
# e.g. STUDYIQ_ADAPTIVE__DAILY_LIMIT=5
ENV_PREFIX = "STUDYIQ_"
ENV_NESTED_DELIMITER = "__"


class DatabaseConfig(BaseModel):
    """Database configuration"""
    url: str = "sqlite+aiosqlite:///./studyiq.db"
    echo: bool = False
    pool_size: int = 5
    pool_recycle_seconds: int = 300

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")


class RedisConfig(BaseModel):
    """Redis configuration"""
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    use_ssl: bool = False
    connection_timeout: int = 10

    @property
    def connection_string(self) -> str:
        """Get the Redis connection string"""
        protocol = "rediss" if self.use_ssl else "redis"
        auth = f":{self.password}@" if self.password else ""
        return f"{protocol}://{auth}{self.host}:{self.port}/{self.db}"


class CacheConfig(BaseModel):
    """Analytics cache configuration"""
    enabled: bool = True
    backend: str = "memory"
    analytics_ttl_seconds: int = 1800  # 30 minutes
    memory_max_size: int = 10000
    redis_key_prefix: str = "studyiq:"

    @field_validator('backend')
    @classmethod
    def validate_backend(cls, v):
        valid_backends = ['memory', 'redis']
        if v.lower() not in valid_backends:
            raise ValueError(f"Invalid cache backend: {v}. Must be one of {valid_backends}")
        return v.lower()


class LoggingConfig(BaseModel):
    """Logging configuration"""
    level: str = "INFO"
    use_json: bool = False
    file_path: Optional[str] = None

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class AnalyticsConfig(BaseModel):
    """Performance analytics configuration"""
    min_valid_attempts: int = 3
    attempt_fetch_limit: int = 1000
    min_category_attempts: int = 3
    max_ranked_categories: int = 3


class SelectionConfig(BaseModel):
    """Question selection configuration"""
    weak_ratio: float = 0.7
    default_total: int = 7
    pool_multiplier: int = 3
    min_pool_size: int = 50
    recent_window_days: int = 7

    @field_validator('weak_ratio')
    @classmethod
    def validate_ratio(cls, v):
        if not 0 <= v <= 1:
            raise ValueError(f"Weak ratio must be between 0 and 1, got {v}")
        return v


class AdaptiveQuizConfig(BaseModel):
    """Adaptive quiz session configuration"""
    weak_questions: int = 5
    strong_questions: int = 2
    target_success_rate: float = 0.6
    session_expiry_hours: int = 24
    daily_limit: int = 10
    cooldown_minutes: int = 0  # 0 disables the cooldown
    max_questions_per_category: int = 3
    max_weak_categories: int = 3
    max_recommendations: int = 5
    recent_results_window: int = 5
    balance_difficulty: bool = True

    @field_validator('daily_limit', 'cooldown_minutes', 'session_expiry_hours')
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError(f"Value must not be negative, got {v}")
        return v


class SpacedRepetitionConfig(BaseModel):
    """Spaced repetition scheduler configuration"""
    default_max_cards: int = 20
    default_duration_minutes: int = 30
    minutes_per_card: int = 2
    initial_task_cards: int = 10
    active_window_days: int = 30
    stats_active_window_days: int = 7


class EnvironmentConfig(BaseModel):
    """Environment configuration"""
    env: str = "development"
    testing: bool = False
    debug: bool = False

    @field_validator('env')
    @classmethod
    def validate_env(cls, v):
        """Validate environment"""
        valid_envs = ['development', 'testing', 'staging', 'production']
        if v.lower() not in valid_envs:
            raise ValueError(f"Invalid environment: {v}. Must be one of {valid_envs}")
        return v.lower()


class AppConfig(BaseModel):
    """Main application configuration"""
    app_name: str = "StudyIQ"
    version: str = "1.0.0"
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    analytics: AnalyticsConfig = Field(default_factory=AnalyticsConfig)
    selection: SelectionConfig = Field(default_factory=SelectionConfig)
    adaptive: AdaptiveQuizConfig = Field(default_factory=AdaptiveQuizConfig)
    spaced_repetition: SpacedRepetitionConfig = Field(default_factory=SpacedRepetitionConfig)
    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)

    @property
    def is_development(self) -> bool:
        return self.environment.env == "development"

    @property
    def is_testing(self) -> bool:
        return self.environment.env == "testing" or self.environment.testing

    @property
    def is_production(self) -> bool:
        return self.environment.env == "production"


class ConfigLoader:
    """
    Configuration loader for the application.

    Loads configuration from:
    1. Default values
    2. Config file (YAML or JSON)
    3. Environment variables (highest priority), after reading a .env file
    """

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        """
        Initialize the config loader.

        Args:
            config_path: Path to config file (YAML or JSON)
            environ: Environment mapping to read overrides from (defaults to os.environ)
        """
        if environ is None:
            load_dotenv()
            environ = dict(os.environ)
        self._environ = environ
        self.config_path = config_path or self._environ.get(f"{ENV_PREFIX}CONFIG_PATH")
        self._config = None

    def load(self) -> AppConfig:
        """
        Load configuration from all sources.

        Returns:
            Loaded configuration
        """
        if self._config is not None:
            return self._config

        data: Dict[str, Any] = {}
        if self.config_path:
            data = self._load_from_file(self.config_path) or {}

        _deep_merge(data, self._load_from_env())

        self._config = AppConfig(**data)
        return self._config

    def _load_from_env(self) -> Dict[str, Any]:
        """
        Collect STUDYIQ_<SECTION>__<FIELD> overrides into a nested dict.

        Values are passed as strings; pydantic coerces them to the field types.
        """
        overrides: Dict[str, Any] = {}
        for key, value in self._environ.items():
            if not key.startswith(ENV_PREFIX) or key == f"{ENV_PREFIX}CONFIG_PATH":
                continue
            path = key[len(ENV_PREFIX):].lower().split(ENV_NESTED_DELIMITER)
            target = overrides
            for part in path[:-1]:
                target = target.setdefault(part, {})
            target[path[-1]] = value
        return overrides

    def _load_from_file(self, path: str) -> Dict[str, Any]:
        """
        Load configuration from a file.

        Args:
            path: Path to config file

        Returns:
            Loaded configuration dictionary
        """
        path = Path(path)
        if not path.exists():
            logger.warning(f"Config file not found: {path}")
            return {}

        try:
            if path.suffix.lower() in ['.yaml', '.yml']:
                with open(path, 'r') as f:
                    return yaml.safe_load(f) or {}
            elif path.suffix.lower() == '.json':
                with open(path, 'r') as f:
                    return json.load(f)
            else:
                logger.warning(f"Unsupported config file format: {path.suffix}")
                return {}
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.error(f"Error loading config file: {e}")
            return {}


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """
    Get the loaded configuration, loading it on first use.

    Returns:
        Loaded configuration
    """
    global _config
    if _config is None:
        _config = ConfigLoader().load()
    return _config


def reload_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Reload the configuration.

    Args:
        config_path: Path to config file

    Returns:
        Reloaded configuration
    """
    global _config
    _config = ConfigLoader(config_path).load()
    return _config
