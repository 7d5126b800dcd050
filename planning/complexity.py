"""Complexity assessment: input factors -> score and level."""

from config import ComplexitySettings
from models.schemas import (
    ComplexityAssessmentParams,
    ComplexityAssessmentResult,
    ComplexityFactors,
    ComplexityLevel,
    TaskType,
)

TASK_TYPE_SCORES: dict[TaskType, float] = {
    TaskType.GENERATION: 80,
    TaskType.REFACTORING: 60,
    TaskType.EXPLANATION: 30,
}
DEFAULT_TASK_TYPE_SCORE = 50
DEFAULT_SUCCESS_RATE_SCORE = 50


class ComplexityAssessor:
    """Scores a task from its factors with a weighted sum.

    Each factor is normalized to [0, 100] before weighting. A higher prior
    success rate lowers the score. The assessor holds no state beyond its
    configuration, so ``assess`` is a pure function of its input.
    """

    def __init__(self, config: ComplexitySettings | None = None) -> None:
        self.config = config or ComplexitySettings()

    def assess(self, params: ComplexityAssessmentParams) -> ComplexityAssessmentResult:
        factors = ComplexityFactors(
            task_type=TASK_TYPE_SCORES.get(params.task_type, DEFAULT_TASK_TYPE_SCORE),
            scope_size=min(100, params.scope_size * 10),
            dependencies_count=min(100, params.dependencies_count * 5),
            technology_complexity=min(100, params.technology_complexity * 10),
            prior_success_rate=(
                100 - min(100, params.prior_success_rate * 100)
                if params.prior_success_rate is not None
                else DEFAULT_SUCCESS_RATE_SCORE
            ),
        )

        weights = self.config.weights
        score = (
            factors.task_type * weights.task_type
            + factors.scope_size * weights.scope_size
            + factors.dependencies_count * weights.dependencies_count
            + factors.technology_complexity * weights.technology_complexity
            + factors.prior_success_rate * weights.prior_success_rate
        )
        score = max(0.0, min(100.0, score))
        level = self.level_for_score(score)

        return ComplexityAssessmentResult(
            level=level,
            score=score,
            factors=factors,
            explanation=self._explain(level, score, factors),
        )

    def level_for_score(self, score: float) -> ComplexityLevel:
        if score >= self.config.high_threshold:
            return ComplexityLevel.HIGH
        if score >= self.config.medium_threshold:
            return ComplexityLevel.MEDIUM
        return ComplexityLevel.LOW

    def _explain(
        self, level: ComplexityLevel, score: float, factors: ComplexityFactors
    ) -> str:
        weights = self.config.weights
        rows = [
            ("Task type", factors.task_type, weights.task_type),
            ("Code scope", factors.scope_size, weights.scope_size),
            ("Dependencies", factors.dependencies_count, weights.dependencies_count),
            ("Technology complexity", factors.technology_complexity, weights.technology_complexity),
            ("Prior success rate", factors.prior_success_rate, weights.prior_success_rate),
        ]
        lines = [
            f"{label} contribution: {value:.1f} (weighted: {value * weight:.1f})"
            for label, value, weight in rows
        ]
        return (
            f"Task assessed as {level.value.upper()} complexity with overall score {score:.1f}.\n"
            "Factors considered:\n- " + "\n- ".join(lines)
        )
