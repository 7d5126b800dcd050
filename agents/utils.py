"""Message and response helpers shared by the tool loop and the LLM layer.

This module provides:
- ToolCallData / LLMResponse: provider-neutral view of a completion
- message conversion between LangGraph message objects and LiteLLM dicts
- normalize_tool_args: coerce malformed tool arguments into a dict
- extract_json_from_response: pull a JSON object out of free-form LLM text
- topological_sort: dependency layering for subtasks
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any

import structlog

from events.types import LLMMetrics

logger = structlog.get_logger(__name__)


def _convert_message_to_dict(message: Any) -> dict[str, Any]:
    """Convert a LangChain message object to a plain dict.

    LangGraph's add_messages reducer converts plain dicts to LangChain
    message objects (SystemMessage, HumanMessage, etc.). LiteLLM expects
    plain dicts, so we need to convert them back.

    Args:
        message: Either a dict or a LangChain message object

    Returns:
        A plain dict with 'role' and 'content' keys
    """
    if isinstance(message, dict):
        return message

    msg_dict: dict[str, Any] = {}

    if hasattr(message, "type"):
        role_map = {"human": "user", "ai": "assistant", "system": "system", "tool": "tool"}
        msg_dict["role"] = role_map.get(message.type, message.type)
    elif hasattr(message, "role"):
        msg_dict["role"] = message.role
    else:
        logger.warning("message_missing_role", message_type=type(message).__name__)
        msg_dict["role"] = "user"

    msg_dict["content"] = message.content if hasattr(message, "content") else str(message)

    if getattr(message, "tool_calls", None):
        msg_dict["tool_calls"] = [
            {
                "id": tc.get("id") or tc.get("name", ""),
                "type": "function",
                "function": {
                    "name": tc.get("name", ""),
                    "arguments": (
                        json.dumps(tc.get("args", {}))
                        if isinstance(tc.get("args"), dict)
                        else tc.get("args", "{}")
                    ),
                },
            }
            for tc in message.tool_calls
        ]

    if hasattr(message, "tool_call_id"):
        msg_dict["tool_call_id"] = message.tool_call_id

    return msg_dict


def convert_messages_to_dicts(messages: list[Any]) -> list[dict[str, Any]]:
    """Convert a list of dicts or LangChain messages to plain dicts for LiteLLM."""
    return [_convert_message_to_dict(msg) for msg in messages]


def normalize_tool_args(raw_args: Any) -> dict[str, Any]:
    """Normalize raw tool-call arguments into a dictionary.

    Models occasionally emit malformed tool arguments (JSON arrays, primitives,
    or partially valid strings). This helper guarantees downstream tool
    execution always receives a dict-like payload.
    """
    if isinstance(raw_args, dict):
        return raw_args

    if isinstance(raw_args, str):
        if not raw_args.strip():
            return {}
        try:
            parsed = json.loads(raw_args)
        except json.JSONDecodeError:
            return {"raw": raw_args}
        return parsed if isinstance(parsed, dict) else {"value": parsed}

    if raw_args is None:
        return {}

    return {"value": raw_args}


@dataclass
class ToolCallData:
    """Parsed tool call from an LLM response.

    Attributes:
        id: Unique identifier for this tool call
        name: Name of the tool to call
        args: Arguments to pass to the tool
    """

    id: str
    name: str
    args: dict[str, Any]


@dataclass
class LLMResponse:
    """Structured response from an LLM call.

    Attributes:
        content: The text content of the response
        tool_calls: List of tool calls if the model requested tools
        finish_reason: Why the model stopped (stop, tool_calls, length, etc.)
        metrics: Token usage and latency metrics
        raw_response: The provider's original response object
    """

    content: str
    tool_calls: list[ToolCallData]
    finish_reason: str
    metrics: LLMMetrics
    raw_response: Any = field(default=None, repr=False)


def format_tool_result_for_llm(tool_call_id: str, result: str) -> dict[str, Any]:
    """Format a tool result as a ``tool`` message for the LLM."""
    return {
        "role": "tool",
        "tool_call_id": tool_call_id,
        "content": result,
    }


def format_assistant_message_with_tools(
    content: str,
    tool_calls: list[ToolCallData],
) -> dict[str, Any]:
    """Format an assistant message that includes tool calls.

    Args:
        content: The assistant's text response
        tool_calls: List of ToolCallData the assistant made

    Returns:
        A message dict in the format expected by LLMs
    """
    message: dict[str, Any] = {
        "role": "assistant",
        "content": content,
    }

    if tool_calls:
        message["tool_calls"] = [
            {
                "id": tc.id,
                "type": "function",
                "function": {
                    "name": tc.name,
                    "arguments": json.dumps(tc.args),
                },
            }
            for tc in tool_calls
        ]

    return message


JSON_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


def _load_object(candidate: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _embedded_object(text: str) -> dict[str, Any] | None:
    """First JSON object that starts at some ``{`` in ``text``."""
    decoder = json.JSONDecoder()
    for match in re.finditer(r"\{", text):
        try:
            parsed, _ = decoder.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def extract_json_from_response(response: str) -> dict[str, Any] | None:
    """Extract a JSON object from an LLM response that may contain extra text.

    Tries, in order: the whole response, fenced code blocks, objects
    embedded in a fenced block, then objects embedded anywhere in the text.
    """
    fenced = [match.group(1).strip() for match in JSON_FENCE.finditer(response)]

    for candidate in [response.strip(), *fenced]:
        parsed = _load_object(candidate)
        if parsed is not None:
            return parsed

    for text in [*fenced, response]:
        parsed = _embedded_object(text)
        if parsed is not None:
            return parsed
    return None


def topological_sort(dependencies: dict[str, list[str]]) -> list[list[str]]:
    """Sort ids into dependency layers.

    Layer 0 holds ids without dependencies; every id in layer N depends only
    on ids in earlier layers. Ids keep their input order within a layer.

    Args:
        dependencies: Mapping of id to the ids it depends on. Every
            dependency must itself be a key.

    Returns:
        List of layers of ids.

    Raises:
        ValueError: If a dependency is unknown or the graph has a cycle.
    """
    for task_id, deps in dependencies.items():
        for dep in deps:
            if dep not in dependencies:
                raise ValueError(f"Unknown dependency '{dep}' in '{task_id}'")

    resolved: set[str] = set()
    remaining = list(dependencies)
    layers: list[list[str]] = []

    while remaining:
        ready = [t for t in remaining if all(d in resolved for d in dependencies[t])]
        if not ready:
            logger.warning("topological_sort_cycle_detected", remaining=remaining)
            raise ValueError(f"Circular dependency among: {', '.join(remaining)}")
        layers.append(ready)
        resolved.update(ready)
        remaining = [t for t in remaining if t not in resolved]

    return layers


def truncate_for_event(value: Any, limit: int = 200) -> Any:
    """Shorten long strings inside tool arguments before they go on the bus."""
    if isinstance(value, str) and len(value) > limit:
        return value[:limit] + f"... ({len(value)} chars)"
    if isinstance(value, dict):
        return {k: truncate_for_event(v, limit) for k, v in value.items()}
    if isinstance(value, list):
        return [truncate_for_event(v, limit) for v in value]
    return value
