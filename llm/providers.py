"""LiteLLM-backed providers.

Each vendor is a thin subclass of LiteLLMProvider that names its LiteLLM
model prefix and, for hosted vendors, the environment variable holding its
API key. Local servers (Ollama, LM Studio) are probed over HTTP instead.
"""

import os
import time
from typing import Any, ClassVar

import httpx
import litellm
import structlog
from litellm import ModelResponse, acompletion

from agents.tool_loop import ChunkCallback
from agents.utils import LLMResponse, ToolCallData, normalize_tool_args
from events.types import LLMMetrics
from llm.base import BaseLLM
from llm.errors import AvailabilityError, ConfigurationError

logger = structlog.get_logger(__name__)

AVAILABILITY_TIMEOUT_SECONDS = 5.0


class LiteLLMProvider(BaseLLM):
    """Provider that talks to a vendor through ``litellm.acompletion``.

    Attributes:
        model_prefix: LiteLLM routing prefix, e.g. ``"anthropic/"``.
        api_key_env: Environment variable consulted when no key is configured.
    """

    model_prefix: ClassVar[str] = ""
    api_key_env: ClassVar[str | None] = None
    display_name: ClassVar[str] = "LLM"

    @property
    def request_model(self) -> str:
        if self.model.startswith(self.model_prefix):
            return self.model
        return f"{self.model_prefix}{self.model}"

    def resolved_api_key(self) -> str | None:
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None

    async def initialize(self) -> None:
        if self.api_key_env and not self.resolved_api_key():
            raise ConfigurationError(
                f"{self.display_name} API key is required in configuration "
                f"(or set {self.api_key_env})"
            )

    async def _make_request(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        model: str,
        on_chunk: ChunkCallback | None,
    ) -> LLMResponse:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": self.temperature,
            "timeout": self.timeout_seconds,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        api_key = self.resolved_api_key()
        if api_key:
            kwargs["api_key"] = api_key
        if self.base_url:
            kwargs["api_base"] = self.base_url

        start_time = time.time()
        if on_chunk is None:
            response = await acompletion(**kwargs)
        else:
            response = await self._stream(kwargs, on_chunk)
        latency_ms = int((time.time() - start_time) * 1000)
        return self._parse_response(response, model, latency_ms)

    async def _stream(self, kwargs: dict[str, Any], on_chunk: ChunkCallback) -> ModelResponse:
        """Stream a completion, forwarding text deltas and rebuilding the full response."""
        stream = await acompletion(**kwargs, stream=True)
        chunks = []
        async for chunk in stream:
            chunks.append(chunk)
            if chunk.choices:
                delta = chunk.choices[0].delta.content
                if delta:
                    on_chunk(delta)
        return litellm.stream_chunk_builder(chunks, messages=kwargs["messages"])

    def _parse_response(
        self,
        response: ModelResponse,
        model: str,
        latency_ms: int,
    ) -> LLMResponse:
        """Parse the LiteLLM response into our structured format.

        Args:
            response: Raw ModelResponse
            model: Model that was used
            latency_ms: Request latency

        Returns:
            Structured LLMResponse
        """
        choice = response.choices[0]
        message = choice.message
        content = message.content or ""

        tool_calls: list[ToolCallData] = []
        if message.tool_calls:
            for tc in message.tool_calls:
                tool_calls.append(
                    ToolCallData(
                        id=tc.id,
                        name=tc.function.name,
                        args=normalize_tool_args(tc.function.arguments),
                    )
                )

        usage = getattr(response, "usage", None)
        metrics = LLMMetrics(
            model=model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            latency_ms=latency_ms,
        )
        return LLMResponse(
            content=content,
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason or "unknown",
            metrics=metrics,
            raw_response=response,
        )


class OpenAIProvider(LiteLLMProvider):
    provider_name = "openai"
    display_name = "OpenAI"
    model_prefix = "openai/"
    api_key_env = "OPENAI_API_KEY"


class AnthropicProvider(LiteLLMProvider):
    provider_name = "anthropic"
    display_name = "Anthropic"
    model_prefix = "anthropic/"
    api_key_env = "ANTHROPIC_API_KEY"


class GoogleProvider(LiteLLMProvider):
    provider_name = "google"
    display_name = "Google"
    model_prefix = "gemini/"
    api_key_env = "GEMINI_API_KEY"


class LocalServerProvider(LiteLLMProvider):
    """Provider for a model server on the local machine.

    Availability is a GET against ``health_path`` under the base URL.
    """

    default_base_url: ClassVar[str] = ""
    health_path: ClassVar[str] = ""

    def __init__(self, model: str, **kwargs: Any) -> None:
        super().__init__(model, **kwargs)
        self.base_url = (self.base_url or self.default_base_url).rstrip("/")

    async def initialize(self) -> None:
        url = f"{self.base_url}{self.health_path}"
        try:
            async with httpx.AsyncClient(timeout=AVAILABILITY_TIMEOUT_SECONDS) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise AvailabilityError(
                f"{self.display_name} is not reachable at {self.base_url}: {e}"
            ) from e
        if response.status_code != 200:
            raise AvailabilityError(
                f"{self.display_name} at {self.base_url} answered HTTP {response.status_code}"
            )
        logger.debug("local_llm_server_reachable", provider=self.provider_name, url=url)


class OllamaProvider(LocalServerProvider):
    provider_name = "ollama"
    display_name = "Ollama"
    model_prefix = "ollama_chat/"
    default_base_url = "http://localhost:11434"
    health_path = "/api/tags"


class LMStudioProvider(LocalServerProvider):
    provider_name = "lmstudio"
    display_name = "LM Studio"
    model_prefix = "lm_studio/"
    default_base_url = "http://localhost:1234/v1"
    health_path = "/models"
