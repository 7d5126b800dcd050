"""Tools, prompts and the tool-calling loop used by every LLM step.

This module exports the key components needed for tool-assisted generation:
- File and process tools bound to a working root (ToolContext, build_toolset)
- Line-range edit and content patch engines
- The LangGraph tool loop
- Prompt templates for execution, validation and planning
"""

from agents.patching import (
    ContentMismatchError,
    EditFileTool,
    EditRangeError,
    PatchChange,
    PatchFileTool,
    apply_content_patch,
    apply_line_edit,
)
from agents.prompts import (
    CHAT_SYSTEM_PROMPT,
    EXECUTOR_SYSTEM_PROMPT,
    PLANNING_SYSTEM_PROMPT,
    VALIDATION_SYSTEM_PROMPT,
    build_fix_prompt,
    build_planning_prompt,
    build_regeneration_feedback,
    build_task_prompt,
    build_validation_prompt,
)
from agents.tool_loop import ToolLoop, ToolLoopResult
from agents.tools import (
    ApprovalDenied,
    BaseTool,
    ToolContext,
    ToolStatus,
    build_toolset,
    tool_result,
)
from agents.utils import (
    LLMResponse,
    ToolCallData,
    extract_json_from_response,
    topological_sort,
)

__all__ = [
    # Tools
    "ApprovalDenied",
    "BaseTool",
    "ToolContext",
    "ToolStatus",
    "build_toolset",
    "tool_result",
    # Patching
    "ContentMismatchError",
    "EditFileTool",
    "EditRangeError",
    "PatchChange",
    "PatchFileTool",
    "apply_content_patch",
    "apply_line_edit",
    # Prompts
    "CHAT_SYSTEM_PROMPT",
    "EXECUTOR_SYSTEM_PROMPT",
    "PLANNING_SYSTEM_PROMPT",
    "VALIDATION_SYSTEM_PROMPT",
    "build_fix_prompt",
    "build_planning_prompt",
    "build_regeneration_feedback",
    "build_task_prompt",
    "build_validation_prompt",
    # Tool loop
    "ToolLoop",
    "ToolLoopResult",
    # Utils
    "LLMResponse",
    "ToolCallData",
    "extract_json_from_response",
    "topological_sort",
]
