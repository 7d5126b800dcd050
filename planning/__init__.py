"""Task planning: complexity assessment, decomposition and LLM tier selection."""

from planning.complexity import ComplexityAssessor
from planning.context import (
    build_context_profile,
    estimate_assessment_params,
    prior_success_rate,
)
from planning.decomposition import (
    DecompositionStrategy,
    HighComplexityStrategy,
    LowComplexityStrategy,
    MediumComplexityStrategy,
    PlanValidationError,
    get_decomposition_strategy,
    validate_plan,
)
from planning.planner import TaskPlanner
from planning.strategy import LLMStrategySelector

__all__ = [
    "ComplexityAssessor",
    "DecompositionStrategy",
    "HighComplexityStrategy",
    "LLMStrategySelector",
    "LowComplexityStrategy",
    "MediumComplexityStrategy",
    "PlanValidationError",
    "TaskPlanner",
    "build_context_profile",
    "estimate_assessment_params",
    "get_decomposition_strategy",
    "prior_success_rate",
    "validate_plan",
]
