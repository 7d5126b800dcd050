"""Task planner: assessment + decomposition, with optional LLM-drafted plans."""

import structlog

from agents.prompts import PLANNING_SYSTEM_PROMPT, build_planning_prompt
from agents.tools import BaseTool
from config import TaskPlanningSettings
from llm.base import BaseLLM
from models.schemas import (
    ComplexityAssessmentResult,
    ComplexityLevel,
    ContextProfile,
    FileToRead,
    PlanDraft,
    Subtask,
    TaskPlan,
)
from planning.complexity import ComplexityAssessor
from planning.context import estimate_assessment_params
from planning.decomposition import get_decomposition_strategy, validate_plan
from planning.strategy import LEVEL_TIERS

logger = structlog.get_logger(__name__)


def overall_complexity(subtasks: list[Subtask]) -> ComplexityLevel:
    """HIGH if any subtask is HIGH, else MEDIUM unless LOW subtasks outnumber MEDIUM."""
    levels = [subtask.complexity for subtask in subtasks]
    if ComplexityLevel.HIGH in levels:
        return ComplexityLevel.HIGH
    if levels.count(ComplexityLevel.MEDIUM) >= levels.count(ComplexityLevel.LOW):
        return ComplexityLevel.MEDIUM
    return ComplexityLevel.LOW


def plan_from_draft(request: str, draft: PlanDraft) -> TaskPlan:
    """Turn the planning model's draft into a TaskPlan (not yet validated)."""
    subtasks = [
        Subtask(
            id=item.id,
            specification=item.specification,
            complexity=item.complexity,
            llm_tier=LEVEL_TIERS[item.complexity],
            dependencies=item.dependencies,
            files_to_read=[FileToRead(path=path) for path in item.files_to_read],
        )
        for item in draft.subtasks
    ]
    return TaskPlan(
        original_request=request,
        overall_complexity=overall_complexity(subtasks),
        subtasks=subtasks,
        execution_order=draft.execution_order or [s.id for s in subtasks],
        validation_instructions=draft.validation_instructions,
    )


class TaskPlanner:
    """Builds TaskPlans for requests.

    Attributes:
        settings: Task planning settings (thresholds, weights, validation).
        llm: Planning LLM; required only when ``settings.llm_planning`` is on.
        tools: Read-only tools offered to the planning LLM.
    """

    def __init__(
        self,
        settings: TaskPlanningSettings,
        llm: BaseLLM | None = None,
        tools: list[BaseTool] | None = None,
    ) -> None:
        self.settings = settings
        self.llm = llm
        self.tools = tools or []
        self.assessor = ComplexityAssessor(settings.complexity)

    async def create_plan(
        self,
        request: str,
        profile: ContextProfile,
        force_level: ComplexityLevel | None = None,
        success_rate: float | None = None,
        raw_request: str | None = None,
    ) -> TaskPlan:
        """Assess and decompose ``request``.

        Args:
            request: The user's (expanded) request.
            profile: Project context.
            force_level: Skip the assessor's level and decompose at this one.
            success_rate: Prior success rate from task history.
            raw_request: The request as typed, before reference expansion.
                Assessment factors come from it; defaults to ``request``.

        Returns:
            A validated TaskPlan with its assessment attached.
        """
        params = estimate_assessment_params(raw_request or request, profile, success_rate)
        assessment = self.assessor.assess(params)
        level = force_level or assessment.level

        plan: TaskPlan | None = None
        if self.settings.llm_planning and self.llm is not None:
            plan = await self._draft_with_llm(request, profile, assessment)

        if plan is None:
            strategy = get_decomposition_strategy(level, self.settings.implementation_parts)
            plan = strategy.decompose(request, level)
            validate_plan(plan)

        plan.assessment = assessment
        if not plan.validation_instructions:
            plan.validation_instructions = self.settings.validation_instructions

        logger.info(
            "plan_created",
            level=plan.overall_complexity.value,
            score=round(assessment.score, 1),
            subtasks=len(plan.subtasks),
            forced=force_level is not None,
        )
        return plan

    async def _draft_with_llm(
        self,
        request: str,
        profile: ContextProfile,
        assessment: ComplexityAssessmentResult,
    ) -> TaskPlan | None:
        prompt = build_planning_prompt(request, profile.to_context_string(), assessment.explanation)
        try:
            draft = await self.llm.generate_structured_output(
                prompt,
                PlanDraft,
                system_prompt=PLANNING_SYSTEM_PROMPT,
                tools=self.tools or None,
            )
            plan = plan_from_draft(request, draft)
            validate_plan(plan)
        except Exception as e:
            logger.warning("llm_planning_failed", error_type=type(e).__name__, error=str(e))
            return None
        return plan

    def get_explanation(self, plan: TaskPlan) -> str:
        """Render the plan as a markdown "Task Planning Report"."""
        index_of = {subtask.id: i for i, subtask in enumerate(plan.subtasks, 1)}

        lines = ["# Task Planning Report", ""]
        if plan.assessment is not None:
            lines += ["## Complexity Assessment", "", plan.assessment.explanation, ""]

        lines += [
            "## Task Decomposition",
            "",
            f"Task decomposed into {len(plan.subtasks)} subtasks based on "
            f"{plan.overall_complexity.value.upper()} complexity level.",
            "",
            "## Subtasks",
            "",
        ]
        for i, subtask in enumerate(plan.subtasks, 1):
            lines.append(f"### {i}. {subtask.specification.splitlines()[0]}")
            lines.append(f"- Complexity: {subtask.complexity.value.upper()}")
            lines.append(f"- LLM Strategy: {subtask.llm_tier.value.upper()}")
            if subtask.dependencies:
                deps = ", ".join(str(index_of.get(dep, "?")) for dep in subtask.dependencies)
                lines.append(f"- Dependencies: {deps}")
            if subtask.files_to_read:
                lines.append("- Files to Read:")
                lines += [f"  - {f.path} ({f.syntax})" for f in subtask.files_to_read]
            lines.append("")

        order = " → ".join(str(index_of.get(i, "?")) for i in plan.execution_order)
        lines += ["## Execution Order", "", order, ""]

        if plan.validation_instructions:
            lines += ["## Validation Instructions", "", plan.validation_instructions, ""]
        return "\n".join(lines)
