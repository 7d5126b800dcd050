"""Tool-calling loop as a LangGraph state machine.

    START -> generate -> [tools -> generate ... | end -> END]

The ``generate`` node asks the model for the next message; when that message
requests tools, the ``tools`` node runs them one at a time, appends their
results, and hands control back. The loop ends when the model answers
without tool calls or the step cap is reached.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Annotated, Any, Literal, TypedDict

import structlog
from langgraph.graph import END, START, StateGraph
from langgraph.graph.message import add_messages

from agents.tools import BaseTool, ToolStatus, tool_result
from agents.utils import (
    LLMResponse,
    convert_messages_to_dicts,
    format_assistant_message_with_tools,
    format_tool_result_for_llm,
    normalize_tool_args,
)

logger = structlog.get_logger(__name__)

ChunkCallback = Callable[[str], None]
CompleteFn = Callable[
    [list[dict[str, Any]], list[dict[str, Any]] | None, ChunkCallback | None],
    Awaitable[LLMResponse],
]


class ToolLoopState(TypedDict):
    """State for the tool loop graph.

    Attributes:
        messages: Conversation so far, with the add_messages reducer
        pending_tool_calls: Tool calls requested by the latest model message
        step: Number of model calls made
        max_steps: Hard limit on model calls
        content: Text of the latest model message
    """

    messages: Annotated[list[dict[str, Any]], add_messages]
    pending_tool_calls: list[dict[str, Any]]
    step: int
    max_steps: int
    content: str


@dataclass
class ToolLoopResult:
    content: str
    steps: int
    hit_step_limit: bool


class ToolLoop:
    """Runs generate/tools rounds until the model stops calling tools.

    Attributes:
        complete: Async callable making one model call.
        tools: Tools the model may call, keyed by name.
        max_steps: Maximum number of model calls.
        on_chunk: Optional callback receiving streamed text.
    """

    def __init__(
        self,
        complete: CompleteFn,
        tools: list[BaseTool],
        max_steps: int = 25,
        on_chunk: ChunkCallback | None = None,
    ) -> None:
        self.complete = complete
        self.tools = {tool.name: tool for tool in tools}
        self.max_steps = max_steps
        self.on_chunk = on_chunk
        self._tool_definitions = [tool.definition() for tool in tools] or None
        self._compiled_graph = self._build_graph()

    def _build_graph(self) -> Any:
        graph = StateGraph(ToolLoopState)
        graph.add_node("generate", self._generate)
        graph.add_node("tools", self._run_tools)

        graph.add_edge(START, "generate")
        graph.add_conditional_edges(
            "generate",
            self._should_continue,
            {
                "tools": "tools",
                "end": END,
            },
        )
        graph.add_edge("tools", "generate")
        return graph.compile()

    async def _generate(self, state: ToolLoopState) -> dict[str, Any]:
        messages = convert_messages_to_dicts(list(state["messages"]))
        response = await self.complete(messages, self._tool_definitions, self.on_chunk)

        step = state["step"] + 1
        logger.debug(
            "tool_loop_generate",
            step=step,
            tool_calls=len(response.tool_calls),
            finish_reason=response.finish_reason,
        )
        return {
            "messages": [
                format_assistant_message_with_tools(response.content, response.tool_calls)
            ],
            "pending_tool_calls": [
                {"id": tc.id, "name": tc.name, "args": tc.args} for tc in response.tool_calls
            ],
            "step": step,
            "content": response.content,
        }

    def _should_continue(self, state: ToolLoopState) -> Literal["tools", "end"]:
        if not state["pending_tool_calls"]:
            return "end"
        if state["step"] >= state["max_steps"]:
            logger.warning(
                "tool_loop_step_limit_reached",
                max_steps=state["max_steps"],
                pending_tool_calls=len(state["pending_tool_calls"]),
            )
            return "end"
        return "tools"

    async def _run_tools(self, state: ToolLoopState) -> dict[str, Any]:
        results: list[dict[str, Any]] = []
        for call in state["pending_tool_calls"]:
            tool = self.tools.get(call["name"])
            if tool is None:
                logger.warning("tool_loop_unknown_tool", tool=call["name"])
                result = tool_result(ToolStatus.ERROR, f"Unknown tool: {call['name']}")
            else:
                result = await tool.run(normalize_tool_args(call["args"]))
            results.append(format_tool_result_for_llm(call["id"], result))
        return {"messages": results, "pending_tool_calls": []}

    async def run(self, messages: list[dict[str, Any]]) -> ToolLoopResult:
        """Run the loop from ``messages`` and return the final model text."""
        initial_state = ToolLoopState(
            messages=messages,
            pending_tool_calls=[],
            step=0,
            max_steps=self.max_steps,
            content="",
        )
        final_state = await self._compiled_graph.ainvoke(
            initial_state,
            config={"recursion_limit": self.max_steps * 2 + 5},
        )
        hit_limit = bool(final_state["pending_tool_calls"])
        return ToolLoopResult(
            content=final_state["content"],
            steps=final_state["step"],
            hit_step_limit=hit_limit,
        )
