"""Event type definitions for the codeplanner event system.

Every meaningful step of a session (state changes, subtask lifecycle, tool
calls, file writes, LLM calls, validation) produces an event. The console
and the metrics accumulator consume them; tests assert on them.
"""

import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class EventType(StrEnum):
    """All event types in the codeplanner system."""

    # Session lifecycle
    SESSION_STARTED = "session_started"
    SESSION_ENDED = "session_ended"
    SESSION_ERROR = "session_error"

    # State machine
    STATE_ENTERED = "state_entered"
    STATE_EXITED = "state_exited"

    # Planning
    PLAN_CREATED = "plan_created"
    PLAN_CANCELLED = "plan_cancelled"

    # Subtask lifecycle
    SUBTASK_STARTED = "subtask_started"
    SUBTASK_COMPLETE = "subtask_complete"
    SUBTASK_FAILED = "subtask_failed"

    # Tool calls
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    FILE_CHANGED = "file_changed"
    COMMAND_COMPLETE = "command_complete"

    # Validation and fixing
    VALIDATION_RESULT = "validation_result"
    FIX_ATTEMPT = "fix_attempt"

    # Observability
    LLM_CALL_COMPLETE = "llm_call_complete"
    LLM_CALL_FAILED = "llm_call_failed"


class SessionEvent(BaseModel):
    """An event emitted during a session.

    Payload schemas by event type:

    STATE_ENTERED / STATE_EXITED:
        - state: str - State name
        - next_state: str - Only on STATE_EXITED

    SUBTASK_STARTED / SUBTASK_COMPLETE / SUBTASK_FAILED:
        - subtask_id: str
        - index: int - 1-based position in execution order
        - total: int
        - error: str - Only on SUBTASK_FAILED

    TOOL_CALL:
        - tool: str - Tool name being called
        - args: dict - Arguments (long strings truncated)

    TOOL_RESULT:
        - tool: str
        - status: str - success, error or canceled

    FILE_CHANGED:
        - path: str - Path relative to the working root
        - operation: str - write, edit or patch

    LLM_CALL_COMPLETE:
        - model: str
        - input_tokens: int
        - output_tokens: int
        - latency_ms: int
    """

    type: EventType
    timestamp: float = Field(default_factory=time.time)
    session_id: str = "local"
    data: dict[str, Any] = Field(default_factory=dict)


class LLMMetrics(BaseModel):
    """Token and latency metrics for a single LLM call.

    Attributes:
        model: The LiteLLM model identifier.
        input_tokens: Number of tokens in the prompt.
        output_tokens: Number of tokens in the response.
        latency_ms: Time taken for the LLM call in milliseconds.
    """

    model: str
    input_tokens: int
    output_tokens: int
    latency_ms: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used in this call."""
        return self.input_tokens + self.output_tokens


class SessionMetrics(BaseModel):
    """Aggregate metrics for an entire session."""

    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_llm_calls: int = 0
    total_tool_calls: int = 0

    @property
    def total_tokens(self) -> int:
        """Total tokens used in the session."""
        return self.total_input_tokens + self.total_output_tokens

    def add_llm_call(self, metrics: LLMMetrics) -> None:
        """Add metrics from an LLM call to the session totals."""
        self.total_input_tokens += metrics.input_tokens
        self.total_output_tokens += metrics.output_tokens
        self.total_llm_calls += 1

    def add_tool_call(self) -> None:
        self.total_tool_calls += 1
