"""
config/settings.py — Parley Runtime Settings

Merges config.yaml (defaults/structure) with .env (secrets).
Pydantic-powered — all fields are validated and typed.

  - Sub-model field validators reject bad values at parse time
  - validate_all() performs cross-field startup validation and raises
    ConfigError listing every problem found
  - load_settings() respects the PARLEY_CONFIG env var when no explicit
    config_path argument is given
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_PROVIDERS = {"ollama", "openai"}
_VALID_MEMORY_BACKENDS = {"memory", "file"}

DEFAULT_SYSTEM_PROMPT = (
    "You are Parley, a helpful assistant. Answer the user directly.\n"
    "When a tool would help, reply with ONLY a JSON object of the form "
    '{"tool": "<name>", "params": {...}} and nothing else. '
    "You will then receive the tool output and can answer the user."
)

DEFAULT_FALLBACK_MESSAGE = "Sorry, I couldn't produce a response. Please try again."


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class AgentConfig(BaseModel):
    name: str = "Parley"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    history_limit: int = 10
    stream_buffer_size: int = 100
    fallback_message: str = DEFAULT_FALLBACK_MESSAGE
    legacy_marker: str = "Use tool:"

    @field_validator("history_limit")
    @classmethod
    def _positive_history(cls, v: int) -> int:
        if v < 1:
            raise ValueError("agent.history_limit must be >= 1")
        return v

    @field_validator("stream_buffer_size")
    @classmethod
    def _positive_buffer(cls, v: int) -> int:
        if v < 1:
            raise ValueError("agent.stream_buffer_size must be >= 1")
        return v

    @field_validator("legacy_marker", "fallback_message")
    @classmethod
    def _non_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("agent.legacy_marker and agent.fallback_message must not be blank")
        return v


class RetryConfig(BaseModel):
    """Exponential backoff for connection failures."""
    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 30.0

    @field_validator("max_attempts")
    @classmethod
    def _positive_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("llm.retry.max_attempts must be >= 1")
        return v


class LoadRetryConfig(BaseModel):
    """Fixed-delay retry while the backend reports the model is still loading."""
    max_retries: int = 3
    delay: float = 5.0

    @field_validator("max_retries")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("llm.load_retry.max_retries must be >= 0")
        return v


class LLMConfig(BaseModel):
    provider: str = "ollama"
    model: str = "llama3.1"
    base_url: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 1000
    timeout_seconds: float = 180.0
    retry: RetryConfig = Field(default_factory=RetryConfig)
    load_retry: LoadRetryConfig = Field(default_factory=LoadRetryConfig)

    @field_validator("provider")
    @classmethod
    def _known_provider(cls, v: str) -> str:
        if v not in _VALID_PROVIDERS:
            raise ValueError(
                f"llm.provider '{v}' is not supported. "
                f"Supported: {sorted(_VALID_PROVIDERS)}"
            )
        return v

    @field_validator("temperature")
    @classmethod
    def _valid_temperature(cls, v: float) -> float:
        if not (0.0 <= v <= 2.0):
            raise ValueError("llm.temperature must be between 0.0 and 2.0")
        return v

    @field_validator("max_tokens")
    @classmethod
    def _positive_tokens(cls, v: int) -> int:
        if v < 1:
            raise ValueError("llm.max_tokens must be >= 1")
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("llm.timeout_seconds must be > 0")
        return v


class MemoryConfig(BaseModel):
    backend: str = "file"
    data_dir: str = "./data/conversations"

    @field_validator("backend")
    @classmethod
    def _known_backend(cls, v: str) -> str:
        if v not in _VALID_MEMORY_BACKENDS:
            raise ValueError(
                f"memory.backend '{v}' is not supported. "
                f"Supported: {sorted(_VALID_MEMORY_BACKENDS)}"
            )
        return v


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8080

    @field_validator("port")
    @classmethod
    def _valid_port(cls, v: int) -> int:
        if not (0 < v < 65536):
            raise ValueError("server.port must be between 1 and 65535")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    Parley runtime settings.

    Priority (highest to lowest):
      1. Environment variables
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from .env ---------------------------------------------------
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    ollama_base_url: str = Field(default="http://localhost:11434", alias="OLLAMA_BASE_URL")

    # -- Structured config (from config.yaml) --------------------------------
    agent: AgentConfig = Field(default_factory=AgentConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("agent", mode="before")
    @classmethod
    def _coerce_agent(cls, v: Any) -> Any:
        return AgentConfig(**v) if isinstance(v, dict) else v

    @field_validator("llm", mode="before")
    @classmethod
    def _coerce_llm(cls, v: Any) -> Any:
        return LLMConfig(**v) if isinstance(v, dict) else v

    @field_validator("memory", mode="before")
    @classmethod
    def _coerce_memory(cls, v: Any) -> Any:
        return MemoryConfig(**v) if isinstance(v, dict) else v

    @field_validator("server", mode="before")
    @classmethod
    def _coerce_server(cls, v: Any) -> Any:
        return ServerConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def agent_name(self) -> str:
        return self.agent.name

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def backend_base_url(self) -> Optional[str]:
        """Explicit llm.base_url wins; Ollama falls back to OLLAMA_BASE_URL."""
        if self.llm.base_url:
            return self.llm.base_url
        if self.llm.provider == "ollama":
            return self.ollama_base_url
        return None

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        method catches cross-field problems they can't see.
        """
        errors: list[str] = []

        if self.llm.provider == "openai" and not self.openai_api_key:
            errors.append(
                "LLM provider 'openai' requires OPENAI_API_KEY to be set "
                "in your environment or .env file."
            )

        if self.llm.retry.base_delay > self.llm.retry.max_delay:
            errors.append(
                f"llm.retry.base_delay ({self.llm.retry.base_delay}) must not "
                f"exceed llm.retry.max_delay ({self.llm.retry.max_delay})."
            )

        if self.llm.load_retry.delay < 0:
            errors.append("llm.load_retry.delay must be >= 0.")

        if self.memory.backend == "file" and not self.memory.data_dir.strip():
            errors.append("memory.data_dir must not be empty when memory.backend is 'file'.")

        if not self.agent.system_prompt.strip():
            errors.append("agent.system_prompt must not be empty.")

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nParley startup failed: {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_KNOWN_SECTIONS = {"agent", "llm", "memory", "server", "logging"}

_singleton: Optional[Settings] = None
_singleton_lock = threading.Lock()


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. PARLEY_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("PARLEY_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def _build(config_path: str | Path | None) -> Settings:
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    return Settings(**{k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS})


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Load settings by merging config.yaml with environment variables.

    Config path resolution order:
      1. config_path argument  (--config CLI flag)
      2. PARLEY_CONFIG env var
      3. config/config.yaml   (default)
    """
    global _singleton
    instance = _build(config_path)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading from the default path
    on first use. Guarded by _singleton_lock against double initialisation.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            _singleton = _build(None)
        return _singleton
