"""
Configuration management for Clinic-Stream.

This module provides centralized configuration using Pydantic Settings
for environment-based configuration management.
"""

from typing import Annotated, Dict, List, Optional

import json
import os
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class OpenAISettings(BaseSettings):
    """OpenAI API configuration settings."""

    model_config = SettingsConfigDict(env_prefix="OPENAI_")

    api_key: str = Field(default="", description="OpenAI API key")
    model: str = Field(default="gpt-4o-mini", description="Chat model used for structuring")
    max_tokens: int = Field(default=2000, description="Maximum tokens for responses")
    temperature: float = Field(default=0.3, description="Temperature for model responses")

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        """Validate OpenAI API key format (empty means unconfigured)."""
        if v and not v.startswith("sk-"):
            raise ValueError("OpenAI API key must start with 'sk-'")
        return v


class AzureOpenAISettings(BaseSettings):
    """Azure OpenAI configuration settings (takes precedence over OpenAI when set)."""

    model_config = SettingsConfigDict(env_prefix="AZURE_OPENAI_")

    endpoint: str = Field(default="", description="Azure OpenAI endpoint URL")
    api_key: str = Field(default="", description="Azure OpenAI API key")
    api_version: str = Field(default="2024-12-01-preview", description="Azure OpenAI API version")
    deployment_name: str = Field(default="gpt-4o-mini", description="Azure OpenAI chat deployment name")

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        """Validate Azure OpenAI endpoint format."""
        if v and not (v.startswith("https://") and ".openai.azure.com" in v):
            raise ValueError("Invalid Azure OpenAI endpoint format. Must be: https://xxx.openai.azure.com/")
        return v

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint and self.api_key)


class StructuringSettings(BaseSettings):
    """Clinical structuring engine settings."""

    model_config = SettingsConfigDict(env_prefix="STRUCTURING_")

    max_attempts: int = Field(default=3, description="Model attempts before giving up on schema validation")
    request_timeout_seconds: float = Field(default=60.0, description="Timeout for a single model call")
    auto_structure_on_close: bool = Field(
        default=True, description="Structure the transcript automatically when a live session closes"
    )
    max_diagnoses: int = Field(default=5, description="Maximum diagnosis suggestions kept")
    max_exams: int = Field(default=10, description="Maximum exam suggestions kept")
    max_medications: int = Field(default=10, description="Maximum medication suggestions kept")

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be at least 1")
        return v

    @field_validator("request_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("request_timeout_seconds must be positive")
        return v


class ASRSettings(BaseSettings):
    """Streaming speech recognition settings."""

    model_config = SettingsConfigDict(env_prefix="ASR_")

    provider: str = Field(default="deepgram", description="Streaming recognizer provider")
    api_key: str = Field(default="", description="Recognizer API key")
    model: str = Field(default="nova-3-medical", description="Recognizer model")
    language: str = Field(default="pt-BR", description="Recognition language")
    max_reconnect_attempts: int = Field(default=5, description="Reconnect attempts after a dropped stream")
    initial_backoff_seconds: float = Field(default=0.5, description="First reconnect delay")
    max_backoff_seconds: float = Field(default=8.0, description="Upper bound for reconnect delay")
    finalize_timeout_seconds: float = Field(
        default=15.0, description="How long close() waits for the recognizer to drain"
    )
    max_replay_seconds: int = Field(
        default=120, description="Unacknowledged audio kept for replay after a reconnect"
    )
    event_queue_size: int = Field(default=1000, description="Per-session recognition event queue bound")

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        valid = ["deepgram"]
        if v.lower() not in valid:
            raise ValueError(f"ASR provider must be one of: {valid}")
        return v.lower()

    @field_validator("max_reconnect_attempts")
    @classmethod
    def validate_reconnect_attempts(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_reconnect_attempts cannot be negative")
        return v


class SessionSettings(BaseSettings):
    """Live consultation session settings."""

    model_config = SettingsConfigDict(env_prefix="SESSION_")

    idle_timeout_seconds: float = Field(
        default=30.0, description="No frames and no events for this long forces finalization"
    )
    reaper_enabled: bool = Field(default=True, description="Run the idle-session reaper")
    reaper_interval_seconds: float = Field(default=5.0, description="Interval between reaper sweeps")
    default_sample_rate: int = Field(default=16000, description="Sample rate when the client sends none")
    default_channels: int = Field(default=1, description="Channel count when the client sends none")
    default_encoding: str = Field(default="linear16", description="Encoding when the client sends none")


class SecuritySettings(BaseSettings):
    """Security configuration settings."""

    model_config = SettingsConfigDict(env_prefix="SECURITY_")

    auth_enabled: bool = Field(default=True, description="Require API keys on HTTP and WebSocket routes")
    api_keys: str = Field(default="", description='API keys as "key1:user1,key2:user2"')

    def parsed_api_keys(self) -> Dict[str, str]:
        """
        Parse API keys string.
        Format: "key1:user1,key2:user2" (comma-separated key:user pairs)
        """
        keys: Dict[str, str] = {}
        for pair in (self.api_keys or "").split(","):
            pair = pair.strip()
            if not pair:
                continue
            if ":" in pair:
                key, user_id = (part.strip() for part in pair.split(":", 1))
                if key and user_id:
                    keys[key] = user_id
            else:
                # No user part: the key identifies itself
                keys[pair] = pair
        return keys


class CORSSettings(BaseSettings):
    """CORS configuration settings."""

    model_config = SettingsConfigDict(env_prefix="CORS_")

    allowed_origins: Annotated[List[str], NoDecode] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins",
    )
    allowed_methods: List[str] = Field(
        default=["GET", "POST", "DELETE", "OPTIONS"],
        description="Allowed HTTP methods",
    )
    allowed_headers: List[str] = Field(default=["*"], description="Allowed HTTP headers")
    allow_credentials: bool = Field(default=True, description="Allow credentials in CORS")

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, v):
        """Parse allowed origins from string or list."""
        if isinstance(v, str):
            if v.startswith("[") and v.endswith("]"):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    return [v.strip()]
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO", description="Logging level")
    format: str = Field(default="json", description="Log format (json or text)")

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate logging level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v.lower() not in ("json", "text"):
            raise ValueError("Log format must be 'json' or 'text'")
        return v.lower()


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Application settings
    app_name: str = Field(default="Clinic-Stream", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    app_env: str = Field(default="development", description="Application environment")
    debug: bool = Field(default=False, description="Debug mode")
    port: int = Field(default=8000, description="Application port")
    host: str = Field(default="0.0.0.0", description="Application host")

    # Sub-settings
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    azure_openai: AzureOpenAISettings = Field(default_factory=AzureOpenAISettings)
    structuring: StructuringSettings = Field(default_factory=StructuringSettings)
    asr: ASRSettings = Field(default_factory=ASRSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    cors: CORSSettings = Field(default_factory=CORSSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """Validate application environment."""
        valid_envs = ["development", "staging", "production", "testing"]
        if v.lower() not in valid_envs:
            raise ValueError(f"App environment must be one of: {valid_envs}")
        return v.lower()

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port number."""
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.app_env == "testing"


# Global settings instance (loaded after attempting to read .env)
_settings: Optional[Settings] = None


def _load_env_file_if_available() -> None:
    """Best-effort load of .env by searching current and parent directories.

    Helps when the working directory is not the project root and pydantic's
    env_file does not resolve.
    """
    from dotenv import load_dotenv

    cwd = Path(os.getcwd()).resolve()
    for parent in [cwd, *cwd.parents]:
        candidate = parent / ".env"
        if candidate.exists():
            # Do not override already-set environment variables
            load_dotenv(dotenv_path=str(candidate), override=False)
            break


def get_settings() -> Settings:
    """Get application settings instance (lazy-init with .env discovery)."""
    global _settings
    if _settings is None:
        _load_env_file_if_available()
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next get_settings() re-reads the environment."""
    global _settings
    _settings = None
