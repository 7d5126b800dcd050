"""Runs plan subtasks (and fix prompts) through the LLM with file tools.

Subtasks run strictly one at a time in ``execution_order``. The first
failure stops the run; nothing after it is attempted.
"""

import uuid
from dataclasses import dataclass, field

import structlog

from agents.prompts import EXECUTOR_SYSTEM_PROMPT, build_task_prompt
from agents.tools import ToolContext, build_toolset, render_file_for_llm
from events.bus import EventBus
from events.types import EventType
from llm.base import BaseLLM
from models.schemas import ImplementationDetails, Subtask, TaskStatus
from planning.decomposition import PlanValidationError
from sandbox.security import PathSandboxError
from session.console import UserInterface

logger = structlog.get_logger(__name__)


class ExecutionError(Exception):
    """Raised when the LLM fails to carry out a task."""

    def __init__(self, message: str, task_id: str | None = None) -> None:
        self.task_id = task_id
        super().__init__(message)


@dataclass
class TaskExecutionResult:
    success: bool
    output: str = ""
    implementation_details: ImplementationDetails = field(default_factory=ImplementationDetails)
    error: str | None = None


def order_subtasks(subtasks: list[Subtask], execution_order: list[str]) -> list[Subtask]:
    """Sort subtasks by their position in ``execution_order``.

    Raises:
        PlanValidationError: If a subtask id is missing from the order.
    """
    position = {subtask_id: i for i, subtask_id in enumerate(execution_order)}
    missing = [s.id for s in subtasks if s.id not in position]
    if missing:
        raise PlanValidationError(
            f"Subtasks missing from execution order: {', '.join(missing)}"
        )
    return sorted(subtasks, key=lambda s: position[s.id])


def completion_summary(subtasks: list[Subtask]) -> str:
    lines = "\n".join(f"{i}. {s.specification}" for i, s in enumerate(subtasks, 1))
    return (
        "I've completed all the tasks in the plan. Here's a summary of what was done:\n\n"
        f"{lines}\n\n"
        "The files have been created/modified as requested."
    )


class TaskExecutor:
    """Executes subtasks with the fixed executor toolset.

    Attributes:
        tool_context: Shared file access, approval callback and change log.
        ui: Where streamed output and progress are shown.
        event_bus: Optional bus for subtask lifecycle events.
    """

    def __init__(
        self,
        tool_context: ToolContext,
        ui: UserInterface,
        event_bus: EventBus | None = None,
    ) -> None:
        self.tool_context = tool_context
        self.ui = ui
        self.event_bus = event_bus
        self.tools = build_toolset(tool_context)

    @property
    def cwd(self) -> str:
        return str(self.tool_context.fs.root)

    async def _emit(self, event_type: EventType, **data: object) -> None:
        if self.event_bus is not None:
            await self.event_bus.emit(event_type, **data)

    def preload_files(self, subtask: Subtask) -> str:
        """Render a subtask's ``files_to_read``; unreadable files are skipped."""
        blocks: list[str] = []
        for file in subtask.files_to_read:
            try:
                content = self.tool_context.fs.read_file(file.path)
            except (OSError, UnicodeDecodeError, PathSandboxError) as e:
                logger.warning(
                    "file_preload_failed",
                    subtask_id=subtask.id,
                    path=file.path,
                    error=str(e),
                )
                continue
            blocks.append(render_file_for_llm(file.path, content))
        return "\n\n".join(blocks)

    async def _run(self, prompt: str, llm: BaseLLM, task_id: str) -> TaskExecutionResult:
        """Run one prompt with tools.

        Raises:
            ExecutionError: If the LLM call fails.
        """
        first_change = len(self.tool_context.files_changed)
        try:
            output = await llm.generate_stream(
                prompt,
                self.ui.stream_chunk,
                system_prompt=EXECUTOR_SYSTEM_PROMPT,
                tools=self.tools,
            )
        except Exception as e:
            raise ExecutionError(str(e), task_id) from e
        finally:
            self.ui.end_stream()

        details = ImplementationDetails(
            summary=output,
            files_changed=list(self.tool_context.files_changed[first_change:]),
        )
        return TaskExecutionResult(success=True, output=output, implementation_details=details)

    async def execute_task(
        self,
        prompt: str,
        llm: BaseLLM,
        task_id: str | None = None,
    ) -> TaskExecutionResult:
        """Execute a free-standing prompt, e.g. a validation fix.

        Failures are reported in the result rather than raised.
        """
        task_id = task_id or f"task-{uuid.uuid4().hex[:8]}"
        logger.info("task_execution_started", task_id=task_id, model=llm.get_provider_with_model())
        try:
            result = await self._run(prompt, llm, task_id)
        except ExecutionError as e:
            logger.error("task_execution_failed", task_id=task_id, error=str(e))
            self.ui.error(f"Task execution failed: {e}")
            return TaskExecutionResult(success=False, error=str(e))

        logger.info(
            "task_execution_completed",
            task_id=task_id,
            files_changed=len(result.implementation_details.files_changed),
        )
        return result

    async def execute_subtasks(
        self,
        subtasks: list[Subtask],
        execution_order: list[str],
        llm: BaseLLM,
        base_prompt: str = "",
    ) -> bool:
        """Execute subtasks in order, stopping at the first failure.

        Each subtask's status and implementation details are updated in
        place.

        Returns:
            True when every subtask completed.

        Raises:
            PlanValidationError: If a subtask is missing from ``execution_order``.
        """
        ordered = order_subtasks(subtasks, execution_order)
        total = len(ordered)

        for index, subtask in enumerate(ordered, 1):
            subtask.status = TaskStatus.IN_PROGRESS
            self.ui.info(f"[{index}/{total}] {subtask.specification.splitlines()[0]}")
            logger.info("subtask_started", subtask_id=subtask.id, index=index, total=total)
            await self._emit(
                EventType.SUBTASK_STARTED,
                subtask_id=subtask.id,
                specification=subtask.specification,
                index=index,
                total=total,
            )

            prompt = build_task_prompt(
                subtask.specification,
                self.cwd,
                base_prompt,
                self.preload_files(subtask),
            )
            try:
                result = await self._run(prompt, llm, subtask.id)
            except ExecutionError as e:
                subtask.status = TaskStatus.FAILED
                logger.error("subtask_failed", subtask_id=subtask.id, index=index, error=str(e))
                await self._emit(
                    EventType.SUBTASK_FAILED,
                    subtask_id=subtask.id,
                    index=index,
                    error=str(e),
                )
                self.ui.error(f"Subtask {index} failed: {e}")
                return False

            subtask.status = TaskStatus.COMPLETED
            subtask.implementation_details = result.implementation_details
            logger.info(
                "subtask_completed",
                subtask_id=subtask.id,
                index=index,
                files_changed=len(result.implementation_details.files_changed),
            )
            await self._emit(
                EventType.SUBTASK_COMPLETE,
                subtask_id=subtask.id,
                index=index,
                files_changed=result.implementation_details.files_changed,
            )

        self.ui.render_markdown(completion_summary(ordered))
        return True
