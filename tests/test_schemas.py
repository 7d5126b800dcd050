"""Tests for models/schemas.py -- plan, subtask, validation and history models.

Validates model construction, enum values, JSON round-trips through the
history store format, and the small behaviours the models carry
(implementation detail merging, verdict conversion, context rendering).
"""

import pytest
from pydantic import ValidationError

from models.schemas import (
    ChatMessage,
    ComplexityLevel,
    ContextProfile,
    Dependency,
    FileToRead,
    ImplementationDetails,
    LLMTier,
    PlanDraft,
    Subtask,
    TaskPlan,
    TaskStatus,
    ValidationStatus,
    ValidationVerdict,
)


def _subtask(subtask_id: str = "a") -> Subtask:
    return Subtask(
        id=subtask_id,
        specification="Implement it",
        complexity=ComplexityLevel.LOW,
        llm_tier=LLMTier.LOCAL,
    )


# =========================================================================
# Enums
# =========================================================================


class TestEnums:
    def test_values(self) -> None:
        assert [level.value for level in ComplexityLevel] == ["low", "medium", "high"]
        assert [tier.value for tier in LLMTier] == ["local", "remote", "hybrid"]
        assert TaskStatus("in_progress") == TaskStatus.IN_PROGRESS

    def test_string_coercion(self) -> None:
        assert ValidationStatus("passed") == ValidationStatus.PASSED
        assert ComplexityLevel.HIGH == "high"


# =========================================================================
# Subtask / FileToRead
# =========================================================================


class TestSubtask:
    def test_defaults(self) -> None:
        subtask = _subtask()
        assert subtask.status == TaskStatus.PENDING
        assert subtask.dependencies == []
        assert subtask.implementation_details is None

    def test_assignment_validated(self) -> None:
        subtask = _subtask()
        subtask.status = "completed"
        assert subtask.status == TaskStatus.COMPLETED
        with pytest.raises(ValidationError):
            subtask.status = "exploded"

    def test_file_syntax_from_extension(self) -> None:
        assert FileToRead(path="src/app.tsx").syntax == "tsx"
        assert FileToRead(path="Makefile").syntax == "text"
        assert FileToRead(path="x.py", syntax="python").syntax == "python"


# =========================================================================
# ImplementationDetails / TaskPlan
# =========================================================================


class TestImplementationDetails:
    def test_merge_dedupes_files(self) -> None:
        first = ImplementationDetails(summary="one", files_changed=["a.py", "b.py"])
        second = ImplementationDetails(summary="two", files_changed=["b.py", "c.py"])

        merged = first.merge(second)
        assert merged.files_changed == ["a.py", "b.py", "c.py"]
        assert merged.summary == "one\n\ntwo"

    def test_merge_skips_empty_summary(self) -> None:
        merged = ImplementationDetails().merge(ImplementationDetails(summary="only"))
        assert merged.summary == "only"


class TestTaskPlan:
    def test_get_subtask(self) -> None:
        plan = TaskPlan(
            original_request="x",
            overall_complexity=ComplexityLevel.LOW,
            subtasks=[_subtask("a"), _subtask("b")],
            execution_order=["a", "b"],
        )
        assert plan.get_subtask("b").id == "b"
        assert plan.get_subtask("missing") is None

    def test_merge_implementation_details(self) -> None:
        plan = TaskPlan(
            original_request="x",
            overall_complexity=ComplexityLevel.LOW,
            subtasks=[],
            execution_order=[],
        )
        plan.merge_implementation_details(None)
        assert plan.implementation_details is None

        plan.merge_implementation_details(ImplementationDetails(files_changed=["a.py"]))
        plan.merge_implementation_details(ImplementationDetails(files_changed=["b.py"]))
        assert plan.implementation_details.files_changed == ["a.py", "b.py"]

    def test_json_round_trip(self) -> None:
        plan = TaskPlan(
            original_request="Add login",
            overall_complexity=ComplexityLevel.MEDIUM,
            subtasks=[_subtask("a")],
            execution_order=["a"],
            completed_at=1700000000.0,
        )
        restored = TaskPlan.model_validate_json(plan.model_dump_json())
        assert restored == plan


# =========================================================================
# Structured LLM output
# =========================================================================


class TestValidationVerdict:
    def test_to_result(self) -> None:
        verdict = ValidationVerdict(
            status="failed", message="tests fail", failed_tasks=["a"], suggested_fixes="fix"
        )
        result = verdict.to_result()
        assert result.status == ValidationStatus.FAILED
        assert result.failed_tasks == ["a"]
        assert result.suggested_fixes == "fix"

    def test_pending_not_allowed_from_model(self) -> None:
        with pytest.raises(ValidationError):
            ValidationVerdict(status="pending", message="?")


class TestPlanDraft:
    def test_requires_a_subtask(self) -> None:
        with pytest.raises(ValidationError):
            PlanDraft(subtasks=[])

    def test_defaults(self) -> None:
        draft = PlanDraft.model_validate({"subtasks": [{"id": "a", "specification": "do"}]})
        assert draft.subtasks[0].complexity == ComplexityLevel.MEDIUM
        assert draft.execution_order == []


# =========================================================================
# Context and history
# =========================================================================


class TestContextProfile:
    def test_minimal_context_string(self) -> None:
        profile = ContextProfile(project_root="/p", current_directory="/p")
        assert profile.to_context_string() == "Project root: /p\nFiles in project: 0"

    def test_referenced_files_listed(self) -> None:
        profile = ContextProfile(
            project_root="/p",
            current_directory="/p",
            dependencies=[Dependency(name="flask")],
            referenced_files=["app.py"],
        )
        text = profile.to_context_string()
        assert "Dependencies (1): flask" in text
        assert text.endswith("Referenced files: app.py")


class TestChatMessage:
    def test_role_restricted(self) -> None:
        with pytest.raises(ValidationError):
            ChatMessage(role="tool", content="x")

    def test_timestamp_defaulted(self) -> None:
        assert ChatMessage(role="user", content="hi").timestamp > 0
