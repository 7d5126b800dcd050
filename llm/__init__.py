"""LLM providers, selection and the provider-neutral interface."""

from llm.base import BaseLLM
from llm.errors import (
    AvailabilityError,
    ConfigurationError,
    LLMError,
    NoLLMAvailableError,
    StructuredOutputError,
    ToolStepLimitError,
)
from llm.factory import PROVIDERS, create_llm, create_llm_for_tier, get_best_llm
from llm.mock import MockLLM

__all__ = [
    "PROVIDERS",
    "AvailabilityError",
    "BaseLLM",
    "ConfigurationError",
    "LLMError",
    "MockLLM",
    "NoLLMAvailableError",
    "StructuredOutputError",
    "ToolStepLimitError",
    "create_llm",
    "create_llm_for_tier",
    "get_best_llm",
]
