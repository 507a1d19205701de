"""
Configuration management for pico-agent.

Uses pydantic-settings for environment variable parsing and validation.
All variables are read with the ``PICO_`` prefix, e.g. ``PICO_MODEL``.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ProviderName = Literal["anthropic", "openai", "openrouter"]

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. You can run tools to answer questions. "
    "Use the shell tool when you need to inspect files or run commands, "
    "and explain what you are doing before running anything destructive."
)


class LLMConfig(BaseSettings):
    """Configuration for a single LLM provider."""

    model_config = SettingsConfigDict(extra="ignore")

    provider: ProviderName = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="PICO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "pico-agent"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "127.0.0.1"
    port: int = 8080

    # Sessions
    storage_dir: Path = Field(
        default=Path.home() / ".pico-agent" / "sessions",
        description="Directory holding one JSON document per session",
    )
    persist_sessions: bool = Field(default=True, description="Write sessions to disk")

    # Agent loop
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT)
    max_tool_iterations: int = Field(default=10, ge=1, description="Provider calls per inbound message")
    max_concurrent_tools: int = Field(default=4, ge=0, description="Parallel tool runs per round, 0 = unbounded")
    max_context_messages: int = Field(default=0, ge=0, description="Context window in messages, 0 = unlimited")
    max_context_tokens: int = Field(default=0, ge=0, description="Context window in estimated tokens, 0 = unlimited")

    # Tools
    workspace_dir: str | None = Field(default=None, description="Working directory for tools")
    enable_shell: bool = True
    tool_timeout_seconds: float = Field(default=120, ge=0, description="Upper bound for any tool run, 0 = none")
    shell_timeout_seconds: float = Field(default=60, gt=0, description="Default shell command timeout")
    max_tool_output_chars: int = Field(default=50_000, ge=0)

    # LLM
    provider: ProviderName = "anthropic"
    model: str = ""
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")
    base_url: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7

    @field_validator("workspace_dir", mode="before")
    @classmethod
    def empty_workspace_is_none(cls, v: str | None) -> str | None:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def get_llm_config(self, provider: str | None = None) -> LLMConfig:
        """Get LLM configuration for a provider."""
        provider = provider or self.provider

        api_key_map = {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "openrouter": self.openrouter_api_key,
        }

        model_map = {
            "anthropic": "claude-sonnet-4-20250514",
            "openai": "gpt-4o",
            "openrouter": "anthropic/claude-sonnet-4",
        }

        base_url_map = {
            "anthropic": None,
            "openai": None,
            "openrouter": "https://openrouter.ai/api/v1",
        }

        return LLMConfig(
            provider=provider,  # type: ignore
            model=self.model or model_map.get(provider, ""),
            api_key=api_key_map.get(provider, ""),
            base_url=self.base_url or base_url_map.get(provider),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
