"""
Application configuration management using Pydantic Settings
"""

import json
import os
import sys
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sqladvisor.core.constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_OLLAMA_HOST,
    DEFAULT_MODEL,
    DEFAULT_MAX_PLAN_LENGTH,
    DEFAULT_PROGRESS_QUEUE_SIZE,
    GENERATE_ENDPOINT,
    TAGS_ENDPOINT,
    AI_RESPONSE_TIMEOUT,
    AI_CONNECT_TIMEOUT,
    BACKEND_PROBE_TIMEOUT,
)


def get_app_dir() -> Path:
    """
    Get application data directory.
    OS-specific user data folder, e.g. ~/.config/SQLAdvisor on Linux
    """
    if sys.platform == 'win32':
        base = Path(os.environ.get('LOCALAPPDATA', Path.home() / 'AppData' / 'Local'))
    elif sys.platform == 'darwin':
        base = Path.home() / 'Library' / 'Application Support'
    else:
        base = Path.home() / '.config'

    return base / APP_NAME.replace(' ', '')


class AISettings(BaseSettings):
    """AI/LLM settings"""

    model_config = SettingsConfigDict(env_prefix='SQLADVISOR_AI__', extra='ignore')

    ollama_host: str = Field(default=DEFAULT_OLLAMA_HOST)
    model: str = Field(default=DEFAULT_MODEL, min_length=1)
    stream: bool = Field(default=True)
    timeout: int = Field(default=AI_RESPONSE_TIMEOUT, ge=10, le=3600)
    connect_timeout: int = Field(default=AI_CONNECT_TIMEOUT, ge=1, le=120)

    # Longer plans are cut and marked "(plan truncated)" in the prompt
    max_plan_length: int = Field(default=DEFAULT_MAX_PLAN_LENGTH, ge=100)

    # Backend selection
    prefer_on_device: bool = Field(default=True)
    probe_timeout: float = Field(default=BACKEND_PROBE_TIMEOUT, gt=0, le=60)
    progress_queue_size: int = Field(default=DEFAULT_PROGRESS_QUEUE_SIZE, ge=1)

    # Emit a warning fragment when a stream closes without done/error
    warn_on_incomplete_stream: bool = Field(default=False)

    @field_validator('ollama_host')
    @classmethod
    def validate_ollama_host(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("ollama_host must not be empty")
        if not v.startswith(('http://', 'https://')):
            v = f"http://{v}"
        return v.rstrip('/')

    @property
    def generate_url(self) -> str:
        return f"{self.ollama_host}{GENERATE_ENDPOINT}"

    @property
    def tags_url(self) -> str:
        return f"{self.ollama_host}{TAGS_ENDPOINT}"


class LoggingSettings(BaseSettings):
    """Logging settings"""

    model_config = SettingsConfigDict(env_prefix='SQLADVISOR_LOGGING__', extra='ignore')

    level: str = Field(default="INFO")
    file_enabled: bool = Field(default=False)
    log_dir: Optional[Path] = Field(default=None)
    retention_days: int = Field(default=7, ge=1, le=30)
    console_colors: bool = Field(default=True)

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v = v.upper()
        if v not in valid_levels:
            v = 'INFO'
        return v


class Settings(BaseSettings):
    """Main application settings"""

    model_config = SettingsConfigDict(
        env_prefix='SQLADVISOR_',
        env_nested_delimiter='__',
        extra='ignore',
    )

    ai: AISettings = Field(default_factory=AISettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    app_dir: Path = Field(default_factory=get_app_dir)

    @property
    def config_dir(self) -> Path:
        return self.app_dir / 'config'

    @property
    def logs_dir(self) -> Path:
        return self.logging.log_dir or self.app_dir / 'logs'

    @property
    def settings_file(self) -> Path:
        return self.config_dir / CONFIG_FILE

    @classmethod
    def load(cls, config_file: Optional[Path] = None) -> 'Settings':
        """
        Load settings from a JSON file.

        Values from the file take precedence over environment variables
        (SQLADVISOR_AI__MODEL, ...). A missing file yields env-derived
        defaults; an unreadable one is logged and ignored.
        """
        if config_file is None:
            config_file = get_app_dir() / 'config' / CONFIG_FILE
        config_file = Path(config_file)

        if not config_file.exists():
            return cls()

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            from sqladvisor.core.logger import get_logger
            get_logger('config').warning(f"Ignoring unreadable settings file {config_file}: {e}")
            return cls()

        if not isinstance(data, dict):
            return cls()
        return cls(**data)


# Global settings instance (cached)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get global settings instance (singleton)"""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reset_settings(settings: Optional[Settings] = None) -> Settings:
    """Replace the global settings (defaults when none given)"""
    global _settings
    _settings = settings or Settings()
    return _settings
