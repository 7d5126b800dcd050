"""The session's states.

    WAITING_FOR_INPUT -> GATHERING_CONTEXT -> GENERATING_PLAN -> REVIEWING_PLAN
        -> EXECUTING_TASKS -> VALIDATING_TASKS <-> FIXING_VALIDATION_ERRORS
        -> GENERATING_SUMMARY -> WAITING_FOR_INPUT

Each state's ``process`` returns the next state. An exception escaping
``process`` is handled by the state machine, which moves to the state's
``recovery`` target.
"""

import time
import uuid
from abc import ABC, abstractmethod
from enum import StrEnum
from typing import TYPE_CHECKING, ClassVar

import structlog

from agents.prompts import build_fix_prompt, build_regeneration_feedback
from events.types import EventType
from llm.factory import create_llm_for_tier
from models.schemas import LLMTier, TaskPlan, TaskStatus, ValidationResult, ValidationStatus
from planning.context import prior_success_rate
from session.console import UserInterface
from session.references import extract_references

if TYPE_CHECKING:
    from session.machine import Session

logger = structlog.get_logger(__name__)


class SessionState(StrEnum):
    WAITING_FOR_INPUT = "waiting_for_input"
    GATHERING_CONTEXT = "gathering_context"
    GENERATING_PLAN = "generating_plan"
    REVIEWING_PLAN = "reviewing_plan"
    EXECUTING_TASKS = "executing_tasks"
    VALIDATING_TASKS = "validating_tasks"
    FIXING_VALIDATION_ERRORS = "fixing_validation_errors"
    GENERATING_SUMMARY = "generating_summary"


FIX_CYCLE = frozenset({SessionState.VALIDATING_TASKS, SessionState.FIXING_VALIDATION_ERRORS})

PROCEED = "Yes, proceed with this plan"
MODIFY = "No, I want to modify the plan"
CANCEL = "No, cancel the plan"

STATUS_MARKS = {
    TaskStatus.COMPLETED: "✅",
    TaskStatus.FAILED: "❌",
    TaskStatus.IN_PROGRESS: "⏳",
    TaskStatus.PENDING: "⏳",
}

PREVIOUS_PLANS_SHOWN = 5


class BaseState(ABC):
    """One node of the session state machine.

    Attributes:
        name: The state this class implements.
        recovery: Where the machine goes when ``process`` raises.
    """

    name: ClassVar[SessionState]
    recovery: ClassVar[SessionState] = SessionState.WAITING_FOR_INPUT

    async def enter(self, session: "Session") -> None:
        """Called when the machine moves into this state."""

    @abstractmethod
    async def process(self, session: "Session") -> SessionState:
        """Do this state's work and return the next state."""

    async def exit(self, session: "Session", next_state: SessionState) -> None:
        """Called when the machine leaves this state for ``next_state``."""


# =========================================================================
# Helpers
# =========================================================================


def show_validation_failure(ui: UserInterface, result: ValidationResult) -> None:
    ui.error(f"✗ Validation failed: {result.message}")
    if result.failed_tasks:
        ui.warning(f"Failed tasks: {', '.join(result.failed_tasks)}")
    if result.suggested_fixes:
        ui.render_markdown(f"**Suggested fixes:**\n\n{result.suggested_fixes}")


def build_summary(plan: TaskPlan, previous: list[TaskPlan]) -> str:
    """Markdown summary of an executed plan and the plans before it."""
    position = {subtask_id: i for i, subtask_id in enumerate(plan.execution_order)}
    ordered = sorted(plan.subtasks, key=lambda s: position.get(s.id, len(position)))

    lines = ["## Task Execution Summary", ""]
    if ordered:
        lines += ["The following tasks were executed:", ""]
        lines += [
            f"{i}. {STATUS_MARKS[s.status]} {s.specification.splitlines()[0]}"
            for i, s in enumerate(ordered, 1)
        ]
    else:
        lines.append("_No tasks were executed._")

    if plan.validation_result is not None:
        result = plan.validation_result
        lines += ["", f"**Validation:** {result.status.value.upper()} - {result.message}"]

    if plan.implementation_details and plan.implementation_details.files_changed:
        lines += ["", "**Files changed:**", ""]
        lines += [f"- `{path}`" for path in plan.implementation_details.files_changed]

    if previous:
        lines += ["", "## Previously Completed Tasks", ""]
        for earlier in previous:
            request = earlier.original_request.strip().splitlines()[0][:80]
            lines.append(f"- {request} ({len(earlier.subtasks)} subtasks)")
    return "\n".join(lines)


async def plan_request(session: "Session", request: str, raw_request: str) -> TaskPlan:
    """Plan ``request``, show the report and make it the current plan.

    Assessment uses ``raw_request``, the text before reference expansion.
    """
    history = await session.store.get_completed_plans() if session.store else []
    plan = await session.planner.create_plan(
        request,
        session.ensure_context_profile(),
        success_rate=prior_success_rate(history),
        raw_request=raw_request,
    )
    session.current_plan = plan
    session.ui.render_markdown(session.planner.get_explanation(plan))
    await session.event_bus.emit(
        EventType.PLAN_CREATED,
        level=plan.overall_complexity.value,
        subtasks=len(plan.subtasks),
    )
    return plan


# =========================================================================
# States
# =========================================================================


class WaitingForInputState(BaseState):
    name = SessionState.WAITING_FOR_INPUT

    async def process(self, session: "Session") -> SessionState:
        if session.initial_prompt:
            text = session.initial_prompt.strip()
            session.initial_prompt = None
        else:
            text = (await session.ui.ask("You")).strip()

        if not text:
            return SessionState.WAITING_FOR_INPUT

        if text.startswith("/"):
            result = await session.commands.handle(text)
            if result.exit:
                session.is_active = False
            return SessionState.WAITING_FOR_INPUT

        session.referenced_files.update(extract_references(text))
        session.user_input = text
        return SessionState.GATHERING_CONTEXT


class GatheringContextState(BaseState):
    name = SessionState.GATHERING_CONTEXT

    async def process(self, session: "Session") -> SessionState:
        session.processed_input = await session.conversation.process_input(session.user_input)
        session.context_profile = None
        profile = session.ensure_context_profile()

        if session.settings.task_planning.enabled and session.llm is not None:
            return SessionState.GENERATING_PLAN

        if session.llm is None:
            session.ui.error("No LLM available to answer")
        else:
            await session.conversation.generate_response(session.llm, profile.to_context_string())
        return SessionState.WAITING_FOR_INPUT


class GeneratingPlanState(BaseState):
    name = SessionState.GENERATING_PLAN

    async def process(self, session: "Session") -> SessionState:
        await plan_request(
            session,
            session.processed_input or session.user_input,
            session.user_input,
        )
        return SessionState.REVIEWING_PLAN


class ReviewingPlanState(BaseState):
    name = SessionState.REVIEWING_PLAN

    async def process(self, session: "Session") -> SessionState:
        plan = session.current_plan
        if plan is None:
            return SessionState.WAITING_FOR_INPUT

        choice = await session.ui.choose(
            "Do you want to proceed with this plan?",
            [PROCEED, MODIFY, CANCEL],
        )
        if choice == MODIFY:
            feedback = (
                await session.ui.ask("Please provide feedback on how to modify the plan")
            ).strip()
            addition = f"\n\nUser feedback on the plan: {feedback}"
            plan = await plan_request(
                session,
                plan.original_request + addition,
                (session.user_input or plan.original_request) + addition,
            )
            choice = await session.ui.choose(
                "Do you want to proceed with this updated plan?",
                [PROCEED, CANCEL],
            )

        if choice != PROCEED:
            return await self._cancel(session)

        await self._select_execution_llm(session, plan)
        return SessionState.EXECUTING_TASKS

    async def _cancel(self, session: "Session") -> SessionState:
        logger.info("plan_cancelled")
        session.current_plan = None
        await session.event_bus.emit(EventType.PLAN_CANCELLED)
        session.ui.info("Plan cancelled.")
        if session.llm is not None:
            context = session.ensure_context_profile().to_context_string()
            await session.conversation.generate_response(session.llm, context)
        return SessionState.WAITING_FOR_INPUT

    async def _select_execution_llm(self, session: "Session", plan: TaskPlan) -> None:
        if session.prefer_local:
            tier = LLMTier.LOCAL
        elif session.prefer_remote:
            tier = LLMTier.REMOTE
        elif plan.assessment is not None:
            tier = session.selector.select_llm_tier(plan.overall_complexity, plan.assessment.score)
        else:
            tier = session.selector.select_llm_tier_by_level(plan.overall_complexity)

        session.execution_llm = None
        if tier == LLMTier.HYBRID:
            logger.info("execution_llm_selected", tier=tier.value, llm="current")
            return

        llm = await create_llm_for_tier(session.settings, tier, session.event_bus)
        if llm is None:
            fallback = session.llm.get_provider_with_model() if session.llm else "none"
            session.ui.warning(
                f"Could not use the {tier.value} LLM, falling back to {fallback}"
            )
            return
        session.execution_llm = llm
        session.ui.info(f"Using {tier.value} LLM: {llm.get_provider_with_model()}")
        logger.info("execution_llm_selected", tier=tier.value, llm=llm.get_provider_with_model())


class ExecutingTasksState(BaseState):
    name = SessionState.EXECUTING_TASKS
    recovery = SessionState.GENERATING_SUMMARY

    async def process(self, session: "Session") -> SessionState:
        plan = session.current_plan
        if plan is None or not plan.subtasks:
            session.ui.error("No subtasks to execute")
            return SessionState.GENERATING_SUMMARY

        base_prompt = session.conversation.base_prompt(
            session.ensure_context_profile().to_context_string()
        )
        success = await session.executor.execute_subtasks(
            plan.subtasks,
            plan.execution_order,
            session.active_llm,
            base_prompt,
        )
        for subtask in plan.subtasks:
            plan.merge_implementation_details(subtask.implementation_details)
        if not success:
            session.ui.warning("Not every subtask completed")

        planning = session.settings.task_planning
        if planning.validation_enabled and plan.validation_instructions:
            return SessionState.VALIDATING_TASKS
        return SessionState.GENERATING_SUMMARY


class ValidatingTasksState(BaseState):
    name = SessionState.VALIDATING_TASKS
    recovery = SessionState.GENERATING_SUMMARY

    async def process(self, session: "Session") -> SessionState:
        plan = session.current_plan
        if plan is None:
            return SessionState.GENERATING_SUMMARY

        session.ui.info("Validating the implementation...")
        llm = await session.llm_for("validation")
        result = await session.validator.validate(plan, llm)
        plan.validation_result = result

        if result.status == ValidationStatus.PASSED:
            session.ui.success(f"✓ Validation passed: {result.message}")
            session.fix_attempts = 0
            return SessionState.GENERATING_SUMMARY

        show_validation_failure(session.ui, result)
        return SessionState.FIXING_VALIDATION_ERRORS

    async def exit(self, session: "Session", next_state: SessionState) -> None:
        if next_state not in FIX_CYCLE:
            session.fix_attempts = 0


class FixingValidationErrorsState(BaseState):
    """Bounded auto-fix loop.

    ``session.fix_attempts`` counts fixes across the VALIDATING <-> FIXING
    cycle. Once it reaches the cap the user decides whether to re-plan with
    the validation feedback.
    """

    name = SessionState.FIXING_VALIDATION_ERRORS
    recovery = SessionState.FIXING_VALIDATION_ERRORS

    async def process(self, session: "Session") -> SessionState:
        plan = session.current_plan
        result = plan.validation_result if plan else None
        if plan is None or result is None:
            return SessionState.WAITING_FOR_INPUT

        max_attempts = session.settings.tools.max_fix_attempts
        if session.fix_attempts >= max_attempts:
            return await self._manual_fallback(session, plan, result)

        session.fix_attempts += 1
        attempt = session.fix_attempts
        logger.info("fix_attempt_started", attempt=attempt, max_attempts=max_attempts)
        await session.event_bus.emit(EventType.FIX_ATTEMPT, attempt=attempt, max_attempts=max_attempts)
        session.ui.info(f"Attempting to fix validation errors ({attempt}/{max_attempts})...")

        task_id = f"validation-fix-{attempt}-{uuid.uuid4().hex[:8]}"
        outcome = await session.executor.execute_task(
            build_fix_prompt(result, plan),
            session.active_llm,
            task_id,
        )
        plan.merge_implementation_details(outcome.implementation_details)
        if outcome.success:
            return SessionState.VALIDATING_TASKS
        return SessionState.FIXING_VALIDATION_ERRORS

    async def _manual_fallback(
        self,
        session: "Session",
        plan: TaskPlan,
        result: ValidationResult,
    ) -> SessionState:
        logger.warning("fix_attempts_exhausted", attempts=session.fix_attempts)
        session.fix_attempts = 0
        session.ui.error(
            f"Could not fix validation errors after {session.settings.tools.max_fix_attempts} attempts."
        )
        show_validation_failure(session.ui, result)

        if await session.ui.confirm("Do you want to regenerate the plan with validation feedback?"):
            feedback = build_regeneration_feedback(result, plan)
            session.user_input = feedback
            session.processed_input = feedback
            return SessionState.GENERATING_PLAN
        return SessionState.GENERATING_SUMMARY

    async def exit(self, session: "Session", next_state: SessionState) -> None:
        if next_state not in FIX_CYCLE:
            session.fix_attempts = 0


class GeneratingSummaryState(BaseState):
    name = SessionState.GENERATING_SUMMARY

    async def process(self, session: "Session") -> SessionState:
        plan = session.current_plan
        if plan is not None:
            previous: list[TaskPlan] = []
            plan.completed_at = time.time()
            if session.store is not None:
                previous = await session.store.get_completed_plans(limit=PREVIOUS_PLANS_SHOWN)
                await session.store.add_completed_plan(plan)
            session.ui.render_markdown(build_summary(plan, previous))
            logger.info(
                "plan_completed",
                subtasks=len(plan.subtasks),
                validation=plan.validation_result.status.value if plan.validation_result else None,
            )
        session.end_task()
        return SessionState.WAITING_FOR_INPUT


def default_states() -> dict[SessionState, BaseState]:
    states: list[BaseState] = [
        WaitingForInputState(),
        GatheringContextState(),
        GeneratingPlanState(),
        ReviewingPlanState(),
        ExecutingTasksState(),
        ValidatingTasksState(),
        FixingValidationErrorsState(),
        GeneratingSummaryState(),
    ]
    return {state.name: state for state in states}
