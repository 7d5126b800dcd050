"""Application configuration using Pydantic Settings.

This module provides configuration management for codeplanner. Settings are
read, in order of precedence, from explicit keyword arguments, environment
variables (``CODEPLANNER_`` prefix, ``__`` for nested keys), a ``.env`` file
and finally a YAML config file (``~/.codeplanner/config.yaml`` by default).

There is no module-level settings instance: the CLI entry point builds one
``Settings`` value and passes it to every collaborator.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from models.schemas import LLMTier

DEFAULT_CONFIG_FILE = "~/.codeplanner/config.yaml"

DEFAULT_VALIDATION_INSTRUCTIONS = (
    "Check that every subtask of the plan was implemented: the files it "
    "describes exist and contain the requested changes. Run the project's "
    "test or build command when one is available."
)


class ProviderSettings(BaseModel):
    """Configuration for a single named LLM provider.

    Attributes:
        enabled: Whether the provider takes part in best-LLM selection.
        provider: Vendor key used by the provider registry
            (openai, anthropic, google, ollama, lmstudio).
        model: Model identifier without the LiteLLM provider prefix.
        api_key: Optional API key. Falls back to the vendor's usual
            environment variable when unset.
        base_url: Optional API base URL (required for local servers).
    """

    enabled: bool = True
    provider: str
    model: str
    api_key: str | None = None
    base_url: str | None = None


class ComplexityWeights(BaseModel):
    """Weights of the complexity factors. Must sum to 1."""

    task_type: float = 0.2
    scope_size: float = 0.3
    dependencies_count: float = 0.2
    technology_complexity: float = 0.2
    prior_success_rate: float = 0.1

    @model_validator(mode="after")
    def check_sum(self) -> "ComplexityWeights":
        total = (
            self.task_type
            + self.scope_size
            + self.dependencies_count
            + self.technology_complexity
            + self.prior_success_rate
        )
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"complexity weights must sum to 1, got {total:.4f}")
        return self


class ComplexitySettings(BaseModel):
    """Thresholds and weights for the complexity assessor."""

    medium_threshold: float = 40
    high_threshold: float = 70
    weights: ComplexityWeights = Field(default_factory=ComplexityWeights)

    @model_validator(mode="after")
    def check_thresholds(self) -> "ComplexitySettings":
        if not 0 <= self.medium_threshold <= self.high_threshold <= 100:
            raise ValueError(
                "thresholds must satisfy 0 <= medium_threshold <= high_threshold <= 100"
            )
        return self


class StrategySettings(BaseModel):
    """Score thresholds and tag overrides for LLM tier selection."""

    remote_threshold: float = 70
    hybrid_threshold: float = 40
    tag_overrides: dict[str, LLMTier] = Field(
        default_factory=lambda: {"critical": LLMTier.REMOTE, "simple": LLMTier.LOCAL}
    )


class TaskPlanningSettings(BaseModel):
    """Task planning behaviour.

    Attributes:
        enabled: When False every request gets a direct chat response.
        preferred_provider: Provider tried first when picking the planner LLM.
        provider_for: Preferred provider per task type
            (e.g. ``{"validation": "anthropic"}``).
        llm_planning: Ask the planning LLM to draft the subtasks instead of
            using the complexity-driven strategies.
        implementation_parts: Number of implementation subtasks for HIGH plans.
        validation_enabled: Run the validation step after execution.
        validation_instructions: Instructions handed to the validator.
    """

    enabled: bool = True
    preferred_provider: str | None = None
    provider_for: dict[str, str] = Field(default_factory=dict)
    llm_planning: bool = False
    implementation_parts: int = Field(default=5, ge=1, le=20)
    validation_enabled: bool = True
    validation_instructions: str = DEFAULT_VALIDATION_INSTRUCTIONS
    complexity: ComplexitySettings = Field(default_factory=ComplexitySettings)
    strategy: StrategySettings = Field(default_factory=StrategySettings)


class ChatSettings(BaseModel):
    """Chat history settings."""

    save_history: bool = True
    max_history_messages: int = Field(default=20, ge=1)


class ToolSettings(BaseModel):
    """Limits for LLM tool calling and the auto-fix loop."""

    max_tool_steps: int = Field(default=25, ge=1)
    max_fix_attempts: int = Field(default=3, ge=1)
    process_timeout_ms: int = Field(default=30_000, ge=1)
    trusted_commands: list[str] = Field(
        default_factory=lambda: [
            "ls",
            "cat",
            "pwd",
            "git status",
            "git diff",
            "git log",
            "pytest",
            "npm test",
            "npm run build",
            "npm run lint",
        ]
    )


def _default_providers() -> dict[str, ProviderSettings]:
    return {
        "openai": ProviderSettings(provider="openai", model="gpt-4o"),
        "anthropic": ProviderSettings(
            provider="anthropic", model="claude-3-7-sonnet-latest"
        ),
        "google": ProviderSettings(provider="google", model="gemini-2.5-pro"),
        "ollama": ProviderSettings(
            provider="ollama",
            model="llama3.1",
            base_url="http://localhost:11434",
        ),
    }


class Settings(BaseSettings):
    """Application settings.

    Attributes:
        config_file: Path of the YAML config file to merge in.
        providers: Named provider configurations, tried in declaration order.
        local_provider: Provider used for LOW complexity plans.
        remote_provider: Provider used for HIGH complexity plans.
        use_mock_llm: If True, use the scripted mock LLM instead of a vendor.
        llm_max_retries: Retries for transient LLM failures.
        llm_retry_delay: Base seconds between retries (exponential backoff).
        llm_request_timeout_seconds: Timeout for a single LLM request.
        llm_fallback_model: LiteLLM model string tried once after retries fail.
        database_path: SQLite file for chat, task and prompt history.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    config_file: str | None = None

    providers: dict[str, ProviderSettings] = Field(default_factory=_default_providers)
    local_provider: str | None = "ollama"
    remote_provider: str | None = "anthropic"
    use_mock_llm: bool = False

    llm_max_retries: int = 3
    llm_retry_delay: float = 1.0
    llm_request_timeout_seconds: int = 120
    llm_fallback_model: str | None = None

    task_planning: TaskPlanningSettings = Field(default_factory=TaskPlanningSettings)
    chat: ChatSettings = Field(default_factory=ChatSettings)
    tools: ToolSettings = Field(default_factory=ToolSettings)

    database_path: str = "~/.codeplanner/history.db"

    log_level: str = "WARNING"
    log_format: str = "text"

    model_config = SettingsConfigDict(
        env_prefix="CODEPLANNER_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Append the YAML config file as the lowest-priority source."""
        sources: list[PydanticBaseSettingsSource] = [
            init_settings,
            env_settings,
            dotenv_settings,
        ]
        init_kwargs: dict[str, Any] = getattr(init_settings, "init_kwargs", {})
        config_file = (
            init_kwargs.get("config_file")
            or os.environ.get("CODEPLANNER_CONFIG_FILE")
            or DEFAULT_CONFIG_FILE
        )
        yaml_path = Path(config_file).expanduser()
        if yaml_path.is_file():
            sources.append(YamlConfigSettingsSource(settings_cls, yaml_file=yaml_path))
        sources.append(file_secret_settings)
        return tuple(sources)

    @property
    def resolved_database_path(self) -> Path:
        return Path(self.database_path).expanduser()

    def enabled_providers(self) -> list[str]:
        """Names of enabled providers in declaration order."""
        return [name for name, cfg in self.providers.items() if cfg.enabled]


def load_settings(config_file: str | None = None, **overrides: Any) -> Settings:
    """Build a Settings value for one process or test.

    Args:
        config_file: Optional YAML file to merge under env and overrides.
        **overrides: Explicit values that win over every other source.

    Returns:
        A fully validated Settings instance.
    """
    if config_file is not None:
        overrides["config_file"] = config_file
    return Settings(**overrides)


def configure_logging(log_level: str = "WARNING", log_format: str = "text") -> None:
    """Configure structured logging for the application.

    Logs are written to stderr so they never interleave with the rendered
    conversation on stdout.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format - 'json' for machine consumption, 'text' for
            humans.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.WARNING)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
