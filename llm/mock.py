"""Scripted LLM used by tests and by ``use_mock_llm``."""

from typing import Any

from agents.tool_loop import ChunkCallback
from agents.utils import LLMResponse
from events.types import LLMMetrics
from llm.base import BaseLLM


class MockLLM(BaseLLM):
    """LLM that replays scripted responses in order.

    Each scripted item is a string (plain answer), an LLMResponse (e.g. one
    with tool calls) or an exception instance (raised from the request).
    Once the script runs out, the mock echoes the last user message.

    Attributes:
        responses: Remaining scripted items.
        call_history: Messages sent on every request.
    """

    provider_name = "mock"

    def __init__(
        self,
        responses: list[str | LLMResponse | Exception] | None = None,
        model: str = "mock",
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("max_retries", 0)
        super().__init__(model, **kwargs)
        self.responses = list(responses or [])
        self.call_history: list[list[dict[str, Any]]] = []

    async def _make_request(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        model: str,
        on_chunk: ChunkCallback | None,
    ) -> LLMResponse:
        self.call_history.append([dict(m) for m in messages])

        item = self.responses.pop(0) if self.responses else self._echo(messages)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, str):
            item = LLMResponse(
                content=item,
                tool_calls=[],
                finish_reason="stop",
                metrics=LLMMetrics(
                    model=model,
                    input_tokens=sum(len(str(m.get("content", ""))) for m in messages) // 4,
                    output_tokens=len(item) // 4,
                    latency_ms=0,
                ),
            )
        if on_chunk and item.content:
            on_chunk(item.content)
        return item

    @staticmethod
    def _echo(messages: list[dict[str, Any]]) -> str:
        last_user = next(
            (m.get("content", "") for m in reversed(messages) if m.get("role") == "user"),
            "",
        )
        return f"Mock response to: {str(last_user)[:100]}"
