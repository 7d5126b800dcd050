"""Validation of an executed plan by an LLM with read and command tools."""

import structlog

from agents.prompts import VALIDATION_SYSTEM_PROMPT, build_validation_prompt
from agents.tools import ToolContext, build_toolset
from events.bus import EventBus
from events.types import EventType
from llm.base import BaseLLM
from models.schemas import TaskPlan, ValidationResult, ValidationVerdict

logger = structlog.get_logger(__name__)

VALIDATION_TOOLS = ["read_file", "find_files", "list_files", "list_directories", "run_process"]


class TaskValidator:
    """TaskPlan -> ValidationResult.

    The validator may inspect files and run commands (approval-gated unless
    trusted) but has no write tools.
    """

    def __init__(self, tool_context: ToolContext, event_bus: EventBus | None = None) -> None:
        self.event_bus = event_bus
        self.tools = build_toolset(tool_context, names=VALIDATION_TOOLS)

    async def validate(self, plan: TaskPlan, llm: BaseLLM) -> ValidationResult:
        """Ask ``llm`` for a structured verdict on ``plan``.

        Raises:
            StructuredOutputError: If the model never returns a usable verdict.
        """
        verdict = await llm.generate_structured_output(
            build_validation_prompt(plan),
            ValidationVerdict,
            system_prompt=VALIDATION_SYSTEM_PROMPT,
            tools=self.tools,
        )
        result = verdict.to_result()
        logger.info(
            "validation_completed",
            status=result.status.value,
            failed_tasks=len(result.failed_tasks),
        )
        if self.event_bus is not None:
            await self.event_bus.emit(
                EventType.VALIDATION_RESULT,
                status=result.status.value,
                message=result.message,
                failed_tasks=result.failed_tasks,
            )
        return result
