"""Tests for planning/context.py and planning/planner.py."""

import json
from pathlib import Path

import pytest

from config import TaskPlanningSettings
from llm.mock import MockLLM
from models.schemas import (
    ComplexityLevel,
    ContextProfile,
    Dependency,
    LLMTier,
    Subtask,
    TaskPlan,
    TaskType,
    ValidationResult,
    ValidationStatus,
)
from planning.context import (
    build_context_profile,
    estimate_assessment_params,
    infer_task_type,
    parse_dependencies,
    prior_success_rate,
)
from planning.planner import TaskPlanner, overall_complexity
from sandbox.filesystem import FileSystemHelper

REQUEST = "Implement a user authentication system"


@pytest.fixture()
def profile(workspace: Path) -> ContextProfile:
    fs = FileSystemHelper(workspace)
    fs.load_gitignore()
    return build_context_profile(fs)


def _finished_plan(status: ValidationStatus | None) -> TaskPlan:
    return TaskPlan(
        original_request="x",
        overall_complexity=ComplexityLevel.LOW,
        subtasks=[],
        execution_order=[],
        validation_result=ValidationResult(status=status, message="") if status else None,
    )


def _draft(order: list[str]) -> str:
    return json.dumps(
        {
            "subtasks": [
                {"id": "schema", "specification": "Add the users table", "complexity": "low"},
                {
                    "id": "login",
                    "specification": "Implement login",
                    "complexity": "high",
                    "dependencies": ["schema"],
                    "files_to_read": ["src/main.py"],
                },
            ],
            "execution_order": order,
            "validation_instructions": "Run pytest",
        }
    )


# =========================================================================
# Context profile
# =========================================================================


class TestContextProfile:
    def test_inventory(self, profile: ContextProfile, workspace: Path) -> None:
        assert [f.path for f in profile.files] == [
            ".gitignore",
            "README.md",
            "package.json",
            "src/main.py",
            "src/utils.py",
        ]
        languages = {f.path: f.language for f in profile.files}
        assert languages["src/main.py"] == "python"
        assert languages[".gitignore"] == "plaintext"
        assert profile.project_root == str(workspace.resolve())

    def test_dependencies_and_stack(self, profile: ContextProfile) -> None:
        assert [d.name for d in profile.dependencies] == ["react", "jest"]
        assert profile.technology_stack == ["Node.js", "React", "Python"]

    def test_context_string(self, profile: ContextProfile) -> None:
        text = profile.to_context_string()
        assert "Technology stack: Node.js, React, Python" in text
        assert "Dependencies (2): react, jest" in text
        assert "Files in project: 5" in text

    def test_python_manifests(self, tmp_path: Path) -> None:
        (tmp_path / "pyproject.toml").write_text(
            '[project]\ndependencies = ["httpx>=0.27", "rich[jupyter]==13.0"]\n',
            encoding="utf-8",
        )
        (tmp_path / "requirements.txt").write_text(
            "requests==2.32  # pinned\n-r dev.txt\n\nHTTPX\n", encoding="utf-8"
        )
        deps = parse_dependencies(tmp_path)
        assert deps == [
            Dependency(name="httpx", version=">=0.27"),
            Dependency(name="rich", version="==13.0"),
            Dependency(name="requests", version="==2.32"),
        ]

    def test_broken_manifest_skipped(self, tmp_path: Path) -> None:
        (tmp_path / "package.json").write_text("{not json", encoding="utf-8")
        assert parse_dependencies(tmp_path) == []


class TestAssessmentInputs:
    @pytest.mark.parametrize(
        ("request_text", "task_type"),
        [
            ("Refactor the parser module", TaskType.REFACTORING),
            ("Explain how the cache works", TaskType.EXPLANATION),
            ("Add a login page", TaskType.GENERATION),
        ],
    )
    def test_infer_task_type(self, request_text: str, task_type: TaskType) -> None:
        assert infer_task_type(request_text) == task_type

    def test_prior_success_rate(self) -> None:
        assert prior_success_rate([]) is None
        assert prior_success_rate([_finished_plan(None)]) is None
        plans = [
            _finished_plan(ValidationStatus.PASSED),
            _finished_plan(ValidationStatus.FAILED),
            _finished_plan(None),
        ]
        assert prior_success_rate(plans) == 0.5

    def test_estimate_params(self, profile: ContextProfile) -> None:
        params = estimate_assessment_params(
            "Add a login page and write tests", profile, success_rate=0.8
        )
        assert params.task_type == TaskType.GENERATION
        assert params.scope_size == 2
        assert params.dependencies_count == 2
        assert params.technology_complexity == 3
        assert params.prior_success_rate == 0.8

    def test_referenced_files_widen_scope(self, profile: ContextProfile) -> None:
        profile.referenced_files = ["src/main.py", "src/utils.py"]
        assert estimate_assessment_params(REQUEST, profile).scope_size == 3

    def test_dots_inside_tokens_do_not_split(self, profile: ContextProfile) -> None:
        profile.referenced_files = ["notes.py"]
        params = estimate_assessment_params("Add a function to @notes.py", profile)
        assert params.scope_size == 2
        assert estimate_assessment_params("Bump to v1.2.3. Then tag it.", profile).scope_size == 3


# =========================================================================
# TaskPlanner
# =========================================================================


class TestTaskPlanner:
    async def test_assessed_plan(self, profile: ContextProfile) -> None:
        planner = TaskPlanner(TaskPlanningSettings())
        plan = await planner.create_plan(REQUEST, profile)

        assert plan.assessment is not None
        assert plan.assessment.level == ComplexityLevel.LOW
        assert len(plan.subtasks) == 1
        assert plan.subtasks[0].llm_tier == LLMTier.LOCAL
        assert plan.validation_instructions == TaskPlanningSettings().validation_instructions

    async def test_assessment_uses_raw_request(self, profile: ContextProfile) -> None:
        raw = "Add a function to @notes.py"
        body = "\n".join(f"{n}: value_{n} = {n}" for n in range(1, 41))
        expanded = f'{raw}\n\n<file path="notes.py" syntax="py">\n{body}\n</file>'
        profile.referenced_files = ["notes.py"]
        planner = TaskPlanner(TaskPlanningSettings())

        baseline = await planner.create_plan(raw, profile)
        plan = await planner.create_plan(expanded, profile, raw_request=raw)

        assert plan.assessment.score == baseline.assessment.score
        assert plan.assessment.level == ComplexityLevel.LOW
        assert plan.original_request == expanded

    async def test_forced_high(self, profile: ContextProfile) -> None:
        planner = TaskPlanner(TaskPlanningSettings())
        plan = await planner.create_plan(REQUEST, profile, force_level=ComplexityLevel.HIGH)

        assert plan.overall_complexity == ComplexityLevel.HIGH
        assert len(plan.subtasks) >= 9
        assert plan.assessment.level == ComplexityLevel.LOW

    async def test_llm_drafted_plan(self, profile: ContextProfile) -> None:
        llm = MockLLM([_draft(["schema", "login"])])
        planner = TaskPlanner(TaskPlanningSettings(llm_planning=True), llm)

        plan = await planner.create_plan(REQUEST, profile)
        assert [s.id for s in plan.subtasks] == ["schema", "login"]
        assert [s.llm_tier for s in plan.subtasks] == [LLMTier.LOCAL, LLMTier.REMOTE]
        assert plan.overall_complexity == ComplexityLevel.HIGH
        assert plan.subtasks[1].files_to_read[0].syntax == "py"
        assert plan.validation_instructions == "Run pytest"

    async def test_invalid_draft_falls_back_to_strategy(self, profile: ContextProfile) -> None:
        llm = MockLLM([_draft(["login", "schema"])])
        planner = TaskPlanner(TaskPlanningSettings(llm_planning=True), llm)

        plan = await planner.create_plan(REQUEST, profile)
        assert [s.specification for s in plan.subtasks] == ["Implement the complete solution"]

    async def test_llm_not_used_when_disabled(self, profile: ContextProfile) -> None:
        llm = MockLLM([_draft(["schema", "login"])])
        await TaskPlanner(TaskPlanningSettings(), llm).create_plan(REQUEST, profile)
        assert llm.call_history == []

    async def test_explanation(self, profile: ContextProfile) -> None:
        llm = MockLLM([_draft(["schema", "login"])])
        planner = TaskPlanner(TaskPlanningSettings(llm_planning=True), llm)
        plan = await planner.create_plan(REQUEST, profile)

        report = planner.get_explanation(plan)
        assert report.startswith("# Task Planning Report")
        assert "## Complexity Assessment" in report
        assert "Task decomposed into 2 subtasks based on HIGH complexity level." in report
        assert "### 2. Implement login" in report
        assert "- LLM Strategy: REMOTE" in report
        assert "- Dependencies: 1" in report
        assert "  - src/main.py (py)" in report
        assert "## Execution Order\n\n1 → 2" in report
        assert "## Validation Instructions\n\nRun pytest" in report


class TestOverallComplexity:
    def test_rules(self) -> None:
        def subtask(level: ComplexityLevel) -> Subtask:
            return Subtask(id=level.value, specification="x", complexity=level, llm_tier=LLMTier.LOCAL)

        low = subtask(ComplexityLevel.LOW)
        medium = subtask(ComplexityLevel.MEDIUM)
        high = subtask(ComplexityLevel.HIGH)

        assert overall_complexity([low, medium, high]) == ComplexityLevel.HIGH
        assert overall_complexity([low, medium]) == ComplexityLevel.MEDIUM
        assert overall_complexity([low, low, medium]) == ComplexityLevel.LOW
