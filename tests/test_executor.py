"""Tests for session/executor.py and session/validator.py."""

from pathlib import Path

import pytest

from agents.tools import ToolContext
from events.bus import EventBus
from events.types import EventType
from llm.errors import StructuredOutputError
from llm.mock import MockLLM
from models.schemas import (
    ComplexityLevel,
    FileToRead,
    LLMTier,
    Subtask,
    TaskPlan,
    TaskStatus,
    ValidationStatus,
)
from planning.decomposition import PlanValidationError
from session.executor import TaskExecutor, completion_summary, order_subtasks
from session.validator import TaskValidator
from tests.conftest import ScriptedUI, make_llm_response, make_tool_call


def _subtask(subtask_id: str, spec: str, deps: list[str] | None = None) -> Subtask:
    return Subtask(
        id=subtask_id,
        specification=spec,
        complexity=ComplexityLevel.LOW,
        llm_tier=LLMTier.LOCAL,
        dependencies=deps or [],
    )


def _write(path: str, content: str, call_id: str = "tc_1"):
    return make_llm_response(
        tool_calls=[make_tool_call("write_file", {"path": path, "content": content}, call_id)]
    )


@pytest.fixture()
def executor(tool_context: ToolContext, ui: ScriptedUI, event_bus: EventBus) -> TaskExecutor:
    return TaskExecutor(tool_context, ui, event_bus)


# =========================================================================
# Ordering helpers
# =========================================================================


class TestOrdering:
    def test_order_subtasks(self) -> None:
        a, b, c = _subtask("a", "A"), _subtask("b", "B"), _subtask("c", "C")
        assert order_subtasks([a, b, c], ["c", "a", "b"]) == [c, a, b]

    def test_gap_in_order(self) -> None:
        with pytest.raises(PlanValidationError, match="missing from execution order: b"):
            order_subtasks([_subtask("a", "A"), _subtask("b", "B")], ["a"])

    def test_completion_summary(self) -> None:
        summary = completion_summary([_subtask("a", "Create model"), _subtask("b", "Add view")])
        assert summary == (
            "I've completed all the tasks in the plan. Here's a summary of what was done:\n\n"
            "1. Create model\n2. Add view\n\n"
            "The files have been created/modified as requested."
        )


# =========================================================================
# execute_subtasks
# =========================================================================


class TestExecuteSubtasks:
    async def test_runs_in_order_and_records_details(
        self, executor: TaskExecutor, workspace: Path, ui: ScriptedUI, event_bus: EventBus
    ) -> None:
        first = _subtask("model", "Create model")
        second = _subtask("view", "Add view", ["model"])
        llm = MockLLM(
            [
                _write("app/model.py", "class User: ..."),
                "Created the model.",
                _write("app/view.py", "def show(): ..."),
                "Added the view.",
            ]
        )

        ok = await executor.execute_subtasks([second, first], ["model", "view"], llm, "Base context")

        assert ok is True
        assert first.status == TaskStatus.COMPLETED
        assert second.status == TaskStatus.COMPLETED
        assert first.implementation_details.files_changed == ["app/model.py"]
        assert second.implementation_details.files_changed == ["app/view.py"]
        assert second.implementation_details.summary == "Added the view."
        assert (workspace / "app" / "view.py").exists()

        assert ui.text("info").splitlines() == ["[1/2] Create model", "[2/2] Add view"]
        assert "1. Create model\n2. Add view" in ui.text("markdown")
        started = event_bus.get_history(EventType.SUBTASK_STARTED)
        assert [(e.data["subtask_id"], e.data["index"], e.data["total"]) for e in started] == [
            ("model", 1, 2),
            ("view", 2, 2),
        ]

    async def test_prompt_contents(self, executor: TaskExecutor, workspace: Path) -> None:
        subtask = _subtask("a", "Refactor main")
        subtask.files_to_read = [FileToRead(path="src/utils.py"), FileToRead(path="gone.py")]
        llm = MockLLM(["done"])

        await executor.execute_subtasks([subtask], ["a"], llm, "Conversation so far:\nUser: hi")

        system, user = llm.call_history[0][:2]
        assert "expert software engineer" in system["content"]
        prompt = user["content"]
        assert '"""\nRefactor main\n"""' in prompt
        assert f"Your current working directory is: '{workspace.resolve()}'" in prompt
        assert "Conversation so far:\nUser: hi" in prompt
        assert '<file path="src/utils.py" syntax="py">' in prompt
        assert "gone.py" not in prompt

    async def test_stops_at_first_failure(
        self, executor: TaskExecutor, ui: ScriptedUI, event_bus: EventBus
    ) -> None:
        a, b, c = _subtask("a", "A"), _subtask("b", "B"), _subtask("c", "C")
        llm = MockLLM(["did A", RuntimeError("model crashed"), "did C"])

        ok = await executor.execute_subtasks([a, b, c], ["a", "b", "c"], llm)

        assert ok is False
        assert [a.status, b.status, c.status] == [
            TaskStatus.COMPLETED,
            TaskStatus.FAILED,
            TaskStatus.PENDING,
        ]
        assert len(llm.call_history) == 2
        assert ui.text("error") == "Subtask 2 failed: model crashed"
        failed = event_bus.get_history(EventType.SUBTASK_FAILED)[0]
        assert failed.data["subtask_id"] == "b"
        assert ui.text("markdown") == ""

    async def test_step_limit_fails_subtask(
        self, executor: TaskExecutor, ui: ScriptedUI, event_bus: EventBus
    ) -> None:
        subtask = _subtask("a", "List everything")
        looping = make_llm_response(tool_calls=[make_tool_call("list_files", {})])
        llm = MockLLM([looping, looping, looping], max_tool_steps=2)

        ok = await executor.execute_subtasks([subtask], ["a"], llm)

        assert ok is False
        assert subtask.status == TaskStatus.FAILED
        assert ui.text("error") == (
            "Subtask 1 failed: Stopped after 2 tool steps with tool calls still pending"
        )
        failed = event_bus.get_history(EventType.SUBTASK_FAILED)[0]
        assert failed.data["subtask_id"] == "a"

    async def test_gap_raises_before_running(self, executor: TaskExecutor) -> None:
        llm = MockLLM()
        with pytest.raises(PlanValidationError):
            await executor.execute_subtasks([_subtask("a", "A")], [], llm)
        assert llm.call_history == []


# =========================================================================
# execute_task
# =========================================================================


class TestExecuteTask:
    async def test_success(self, executor: TaskExecutor) -> None:
        llm = MockLLM([_write("fix.py", "ok"), "Fixed."])

        result = await executor.execute_task("Fix the bug", llm, "validation-fix-1")
        assert result.success is True
        assert result.output == "Fixed."
        assert result.implementation_details.files_changed == ["fix.py"]

    async def test_failure_reported_not_raised(self, executor: TaskExecutor, ui: ScriptedUI) -> None:
        result = await executor.execute_task("Fix", MockLLM([RuntimeError("no tokens")]))
        assert result.success is False
        assert result.error == "no tokens"
        assert ui.text("error") == "Task execution failed: no tokens"

    async def test_denied_write_is_not_a_change(self, workspace: Path, event_bus: EventBus) -> None:
        ui = ScriptedUI(approvals=False)
        context = ToolContext.create(workspace, ui.approve, event_bus=event_bus)
        llm = MockLLM([_write("new.py", "x"), "The user declined."])

        result = await TaskExecutor(context, ui).execute_task("Write new.py", llm)
        assert result.success is True
        assert result.implementation_details.files_changed == []
        assert ui.approval_requests == ["Do you accept write to new.py?"]


# =========================================================================
# TaskValidator
# =========================================================================


class TestValidator:
    @pytest.fixture()
    def plan(self) -> TaskPlan:
        subtask = _subtask("a", "Create model")
        subtask.status = TaskStatus.COMPLETED
        return TaskPlan(
            original_request="Add a user model",
            overall_complexity=ComplexityLevel.LOW,
            subtasks=[subtask],
            execution_order=["a"],
            validation_instructions="Check app/model.py exists",
        )

    def test_tools_are_read_only_plus_commands(self, tool_context: ToolContext) -> None:
        names = [t.name for t in TaskValidator(tool_context).tools]
        assert names == ["read_file", "find_files", "list_files", "list_directories", "run_process"]

    async def test_passed(self, tool_context: ToolContext, event_bus: EventBus, plan: TaskPlan) -> None:
        llm = MockLLM(['{"status": "passed", "message": "All good"}'])

        result = await TaskValidator(tool_context, event_bus).validate(plan, llm)
        assert result.status == ValidationStatus.PASSED
        assert result.message == "All good"
        prompt = llm.call_history[0][-1]["content"]
        assert "Check app/model.py exists" in prompt
        assert "- [a] (completed) Create model" in prompt
        event = event_bus.get_history(EventType.VALIDATION_RESULT)[0]
        assert event.data["status"] == "passed"

    async def test_failed_after_inspecting(self, tool_context: ToolContext, plan: TaskPlan) -> None:
        llm = MockLLM(
            [
                make_llm_response(
                    tool_calls=[make_tool_call("read_file", {"path": "app/model.py"})]
                ),
                '{"status": "failed", "message": "Missing model", "failed_tasks": ["a"], '
                '"suggested_fixes": "Create app/model.py"}',
            ]
        )

        result = await TaskValidator(tool_context).validate(plan, llm)
        assert result.status == ValidationStatus.FAILED
        assert result.failed_tasks == ["a"]
        assert result.suggested_fixes == "Create app/model.py"

    async def test_unusable_verdict_raises(self, tool_context: ToolContext, plan: TaskPlan) -> None:
        llm = MockLLM(["looks fine to me", "yes really"])
        with pytest.raises(StructuredOutputError):
            await TaskValidator(tool_context).validate(plan, llm)
