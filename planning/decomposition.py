"""Decomposition strategies: request + complexity level -> TaskPlan.

Strategies are chosen per complexity level by ``get_decomposition_strategy``.
Every plan they build satisfies ``validate_plan``: ids are unique, every
dependency exists, and ``execution_order`` is a topological order that lists
each subtask exactly once.
"""

import uuid
from abc import ABC, abstractmethod

from agents.utils import topological_sort
from models.schemas import ComplexityLevel, LLMTier, Subtask, TaskPlan


class PlanValidationError(ValueError):
    """Raised when a plan's ids, dependencies or execution order are inconsistent."""


def _new_id() -> str:
    return str(uuid.uuid4())


class DecompositionStrategy(ABC):
    """Builds a TaskPlan for one complexity level."""

    @abstractmethod
    def decompose(self, request: str, level: ComplexityLevel) -> TaskPlan:
        """Decompose ``request`` into subtasks."""

    @staticmethod
    def _plan(request: str, level: ComplexityLevel, subtasks: list[Subtask]) -> TaskPlan:
        return TaskPlan(
            original_request=request,
            overall_complexity=level,
            subtasks=subtasks,
            execution_order=[subtask.id for subtask in subtasks],
        )


class HighComplexityStrategy(DecompositionStrategy):
    """Analysis, planning, N implementation parts, integration, testing,
    documentation and a final review."""

    def __init__(self, implementation_parts: int = 5) -> None:
        self.implementation_parts = implementation_parts

    def decompose(self, request: str, level: ComplexityLevel) -> TaskPlan:
        analysis = Subtask(
            id=_new_id(),
            specification="Analyze requirements and context",
            complexity=ComplexityLevel.MEDIUM,
            llm_tier=LLMTier.REMOTE,
        )
        planning = Subtask(
            id=_new_id(),
            specification="Create detailed implementation plan",
            complexity=ComplexityLevel.MEDIUM,
            llm_tier=LLMTier.REMOTE,
            dependencies=[analysis.id],
        )
        parts = [
            Subtask(
                id=_new_id(),
                specification=f"Implementation part {i}",
                complexity=ComplexityLevel.MEDIUM,
                llm_tier=LLMTier.HYBRID,
                dependencies=[planning.id],
            )
            for i in range(1, self.implementation_parts + 1)
        ]
        integration = Subtask(
            id=_new_id(),
            specification="Integrate all implementation parts",
            complexity=ComplexityLevel.MEDIUM,
            llm_tier=LLMTier.REMOTE,
            dependencies=[part.id for part in parts],
        )
        testing = Subtask(
            id=_new_id(),
            specification="Test the implementation",
            complexity=ComplexityLevel.MEDIUM,
            llm_tier=LLMTier.HYBRID,
            dependencies=[integration.id],
        )
        documentation = Subtask(
            id=_new_id(),
            specification="Create documentation",
            complexity=ComplexityLevel.LOW,
            llm_tier=LLMTier.LOCAL,
            dependencies=[integration.id],
        )
        review = Subtask(
            id=_new_id(),
            specification="Final review and quality check",
            complexity=ComplexityLevel.MEDIUM,
            llm_tier=LLMTier.REMOTE,
            dependencies=[testing.id, documentation.id],
        )
        return self._plan(
            request,
            level,
            [analysis, planning, *parts, integration, testing, documentation, review],
        )


class MediumComplexityStrategy(DecompositionStrategy):
    """Analysis, implementation, then independent testing and documentation."""

    def decompose(self, request: str, level: ComplexityLevel) -> TaskPlan:
        analysis = Subtask(
            id=_new_id(),
            specification="Analyze requirements and context",
            complexity=ComplexityLevel.MEDIUM,
            llm_tier=LLMTier.HYBRID,
        )
        implementation = Subtask(
            id=_new_id(),
            specification="Implement the solution",
            complexity=ComplexityLevel.MEDIUM,
            llm_tier=LLMTier.HYBRID,
            dependencies=[analysis.id],
        )
        testing = Subtask(
            id=_new_id(),
            specification="Test the implementation",
            complexity=ComplexityLevel.LOW,
            llm_tier=LLMTier.LOCAL,
            dependencies=[implementation.id],
        )
        documentation = Subtask(
            id=_new_id(),
            specification="Create documentation",
            complexity=ComplexityLevel.LOW,
            llm_tier=LLMTier.LOCAL,
            dependencies=[implementation.id],
        )
        return self._plan(request, level, [analysis, implementation, testing, documentation])


class LowComplexityStrategy(DecompositionStrategy):
    """A single subtask for the whole request."""

    def decompose(self, request: str, level: ComplexityLevel) -> TaskPlan:
        implementation = Subtask(
            id=_new_id(),
            specification="Implement the complete solution",
            complexity=ComplexityLevel.LOW,
            llm_tier=LLMTier.LOCAL,
        )
        return self._plan(request, level, [implementation])


def get_decomposition_strategy(
    level: ComplexityLevel | str,
    implementation_parts: int = 5,
) -> DecompositionStrategy:
    """Return the strategy for ``level``; unrecognized levels get MEDIUM."""
    if level == ComplexityLevel.HIGH:
        return HighComplexityStrategy(implementation_parts)
    if level == ComplexityLevel.LOW:
        return LowComplexityStrategy()
    return MediumComplexityStrategy()


def validate_plan(plan: TaskPlan) -> None:
    """Check a plan's structural invariants.

    Raises:
        PlanValidationError: On duplicate ids, unknown or cyclic dependencies,
            or an execution order that is not a topological permutation of
            the subtask ids.
    """
    ids = [subtask.id for subtask in plan.subtasks]
    if len(set(ids)) != len(ids):
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        raise PlanValidationError(f"Duplicate subtask ids: {', '.join(duplicates)}")

    try:
        topological_sort({subtask.id: subtask.dependencies for subtask in plan.subtasks})
    except ValueError as e:
        raise PlanValidationError(str(e)) from e

    missing = [i for i in ids if i not in plan.execution_order]
    if missing:
        raise PlanValidationError(
            f"Subtasks missing from execution order: {', '.join(missing)}"
        )
    unknown = [i for i in plan.execution_order if i not in ids]
    if unknown:
        raise PlanValidationError(
            f"Execution order references unknown subtasks: {', '.join(unknown)}"
        )
    if len(plan.execution_order) != len(ids):
        raise PlanValidationError("Execution order lists a subtask more than once")

    position = {subtask_id: index for index, subtask_id in enumerate(plan.execution_order)}
    for subtask in plan.subtasks:
        for dep in subtask.dependencies:
            if position[dep] > position[subtask.id]:
                raise PlanValidationError(
                    f"Subtask '{subtask.id}' is ordered before its dependency '{dep}'"
                )
