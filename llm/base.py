"""Provider-neutral LLM interface.

BaseLLM owns everything that does not depend on the vendor: retries with
exponential backoff, a one-shot fallback model, usage accounting, event
emission, the tool-calling loop and structured (schema-validated) output.
Subclasses implement ``_make_request`` for one completion.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, ClassVar, TypeVar

import structlog
from litellm.exceptions import (
    APIConnectionError,
    AuthenticationError,
    BadRequestError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)
from pydantic import BaseModel, ValidationError

from agents.tool_loop import ChunkCallback, ToolLoop
from agents.tools import BaseTool
from agents.utils import LLMResponse, extract_json_from_response
from events.bus import EventBus
from events.types import EventType, SessionMetrics
from llm.errors import LLMError, StructuredOutputError, ToolStepLimitError

logger = structlog.get_logger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

RETRYABLE_ERRORS = (RateLimitError, ServiceUnavailableError, Timeout, APIConnectionError)


class BaseLLM(ABC):
    """Base class for every LLM provider.

    Attributes:
        provider_name: Registry key of the provider.
        model: Model identifier as configured (no LiteLLM prefix).
        fallback_model: LiteLLM model string tried once after retries fail.
        max_retries: Retries for transient failures.
        retry_delay: Base seconds between retries.
        timeout_seconds: Timeout for a single request.
        max_tool_steps: Cap on model calls inside one tool loop.
        event_bus: Optional bus receiving LLM_CALL_COMPLETE/FAILED events.
        usage: Token and call totals accumulated by this instance.
    """

    provider_name: ClassVar[str] = "base"

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        fallback_model: str | None = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout_seconds: int = 120,
        temperature: float = 0.2,
        max_tool_steps: int = 25,
        event_bus: EventBus | None = None,
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.fallback_model = fallback_model
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature
        self.max_tool_steps = max_tool_steps
        self.event_bus = event_bus
        self.usage = SessionMetrics()

    @property
    def request_model(self) -> str:
        """Model string passed to the backend for the primary model."""
        return self.model

    def get_provider_with_model(self) -> str:
        return f"{self.provider_name}:{self.model}"

    async def initialize(self) -> None:
        """Check credentials and reachability.

        Raises:
            ConfigurationError: If required credentials are missing.
            AvailabilityError: If the backend cannot be reached.
        """

    async def is_available(self) -> bool:
        try:
            await self.initialize()
        except LLMError as e:
            logger.info(
                "llm_unavailable",
                provider=self.provider_name,
                model=self.model,
                reason=str(e),
            )
            return False
        return True

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        on_chunk: ChunkCallback | None = None,
    ) -> LLMResponse:
        """Make one model call with retries and fallback.

        Retries on RateLimitError, ServiceUnavailableError, Timeout and
        APIConnectionError with exponential backoff capped at 4 seconds.
        AuthenticationError and BadRequestError propagate immediately.

        Args:
            messages: Message dicts with 'role' and 'content'.
            tools: Optional tool definitions in function-calling format.
            on_chunk: Optional callback receiving streamed text.

        Returns:
            The parsed response.
        """
        model = self.request_model
        last_exception: Exception | None = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self._make_request(messages, tools, model, on_chunk)
            except RETRYABLE_ERRORS as e:
                last_exception = e
                if attempt < self.max_retries:
                    delay = min(self.retry_delay * (2**attempt), 4.0)
                    logger.warning(
                        "llm_call_retry",
                        model=model,
                        attempt=attempt + 1,
                        max_retries=self.max_retries,
                        error_type=type(e).__name__,
                        error=str(e),
                        retry_delay=delay,
                    )
                    await self._async_sleep(delay)
                else:
                    logger.error(
                        "llm_call_failed_all_retries",
                        model=model,
                        attempts=self.max_retries + 1,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
            except (AuthenticationError, BadRequestError) as e:
                logger.error(
                    "llm_call_failed_no_retry",
                    model=model,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                await self._emit_failure(model, e, retry_count=0)
                raise
            else:
                await self._record(response, attempt + 1)
                return response

        if self.fallback_model and self.fallback_model != model:
            logger.warning(
                "llm_fallback_attempt",
                primary_model=model,
                fallback_model=self.fallback_model,
                primary_error=str(last_exception),
            )
            try:
                response = await self._make_request(
                    messages, tools, self.fallback_model, on_chunk
                )
            except Exception as fallback_error:
                logger.error(
                    "llm_fallback_failed",
                    fallback_model=self.fallback_model,
                    error_type=type(fallback_error).__name__,
                    error=str(fallback_error),
                )
                last_exception = last_exception or fallback_error
            else:
                await self._record(response, self.max_retries + 2)
                return response

        if last_exception is not None:
            await self._emit_failure(model, last_exception, retry_count=self.max_retries)
        raise last_exception or LLMError("LLM call failed after all retries")

    @abstractmethod
    async def _make_request(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        model: str,
        on_chunk: ChunkCallback | None,
    ) -> LLMResponse:
        """Perform a single completion against the backend."""

    async def _async_sleep(self, seconds: float) -> None:
        """Sleep helper, separated for easy mocking in tests."""
        await asyncio.sleep(seconds)

    async def _record(self, response: LLMResponse, attempt: int) -> None:
        metrics = response.metrics
        self.usage.add_llm_call(metrics)
        logger.info(
            "llm_call_complete",
            provider=self.provider_name,
            model=metrics.model,
            input_tokens=metrics.input_tokens,
            output_tokens=metrics.output_tokens,
            latency_ms=metrics.latency_ms,
            tool_calls=len(response.tool_calls),
            attempt=attempt,
        )
        if self.event_bus:
            await self.event_bus.emit(
                EventType.LLM_CALL_COMPLETE,
                provider=self.provider_name,
                model=metrics.model,
                input_tokens=metrics.input_tokens,
                output_tokens=metrics.output_tokens,
                latency_ms=metrics.latency_ms,
            )

    async def _emit_failure(self, model: str, error: Exception, retry_count: int) -> None:
        if self.event_bus:
            await self.event_bus.emit(
                EventType.LLM_CALL_FAILED,
                provider=self.provider_name,
                model=model,
                error=str(error),
                error_type=type(error).__name__,
                retry_count=retry_count,
            )

    def _build_messages(self, user_input: str, system_prompt: str | None) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_input})
        return messages

    async def generate(
        self,
        user_input: str,
        system_prompt: str | None = None,
        tools: list[BaseTool] | None = None,
        on_chunk: ChunkCallback | None = None,
    ) -> str:
        """Generate a text answer, running the tool loop when tools are given.

        Args:
            user_input: The user message.
            system_prompt: Optional system message.
            tools: Tools the model may call.
            on_chunk: Optional callback receiving streamed text.

        Returns:
            The final assistant text.

        Raises:
            ToolStepLimitError: If the model still wanted tools when the
                step cap was reached.
        """
        messages = self._build_messages(user_input, system_prompt)
        if not tools:
            response = await self.complete(messages, None, on_chunk)
            return response.content

        loop = ToolLoop(self.complete, tools, max_steps=self.max_tool_steps, on_chunk=on_chunk)
        result = await loop.run(messages)
        if result.hit_step_limit:
            logger.warning(
                "llm_generate_step_limit",
                provider=self.provider_name,
                steps=result.steps,
            )
            raise ToolStepLimitError(result.steps, result.content)
        return result.content

    async def generate_stream(
        self,
        user_input: str,
        on_chunk: ChunkCallback,
        system_prompt: str | None = None,
        tools: list[BaseTool] | None = None,
    ) -> str:
        """Like ``generate`` but delivers text to ``on_chunk`` as it arrives."""
        return await self.generate(user_input, system_prompt, tools, on_chunk)

    async def generate_structured_output(
        self,
        prompt: str,
        schema: type[SchemaT],
        system_prompt: str | None = None,
        tools: list[BaseTool] | None = None,
        max_attempts: int = 2,
    ) -> SchemaT:
        """Generate an answer and validate it against a pydantic schema.

        The JSON schema is appended to the prompt. If the answer cannot be
        parsed or validated, the model is asked again with the errors.

        Raises:
            StructuredOutputError: If no attempt yields a valid object.
        """
        schema_json = json.dumps(schema.model_json_schema(), indent=2)
        request = (
            f"{prompt}\n\nRespond with a single JSON object matching this JSON schema:\n"
            f"```json\n{schema_json}\n```"
        )
        raw = ""
        problem = ""
        for attempt in range(1, max_attempts + 1):
            raw = await self.generate(request, system_prompt, tools)
            data = extract_json_from_response(raw)
            if data is None:
                problem = "the response did not contain a JSON object"
            else:
                try:
                    return schema.model_validate(data)
                except ValidationError as e:
                    problem = str(e)

            logger.warning(
                "structured_output_invalid",
                schema=schema.__name__,
                attempt=attempt,
                problem=problem[:500],
            )
            request = (
                f"{prompt}\n\nYour previous response could not be used: {problem}\n\n"
                f"Previous response:\n{raw}\n\n"
                "Respond again with only a JSON object matching this JSON schema:\n"
                f"```json\n{schema_json}\n```"
            )

        raise StructuredOutputError(
            f"Could not parse {schema.__name__} from the model response: {problem}",
            raw_output=raw,
        )

    def get_token_usage(self) -> SessionMetrics:
        return self.usage
