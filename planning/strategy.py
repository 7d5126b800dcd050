"""LLM tier selection from complexity score, level and tags."""

from config import StrategySettings
from models.schemas import ComplexityLevel, LLMTier

LEVEL_TIERS: dict[ComplexityLevel, LLMTier] = {
    ComplexityLevel.HIGH: LLMTier.REMOTE,
    ComplexityLevel.MEDIUM: LLMTier.HYBRID,
    ComplexityLevel.LOW: LLMTier.LOCAL,
}


class LLMStrategySelector:
    """Picks LOCAL, HYBRID or REMOTE for a task.

    Tag overrides are checked first; the first tag with an override wins.
    """

    def __init__(self, config: StrategySettings | None = None) -> None:
        self.config = config or StrategySettings()

    def _override(self, tags: list[str]) -> LLMTier | None:
        for tag in tags:
            tier = self.config.tag_overrides.get(tag)
            if tier is not None:
                return tier
        return None

    def select_llm_tier(
        self,
        level: ComplexityLevel,
        score: float,
        tags: list[str] | None = None,
    ) -> LLMTier:
        override = self._override(tags or [])
        if override is not None:
            return override
        if score >= self.config.remote_threshold:
            return LLMTier.REMOTE
        if score >= self.config.hybrid_threshold:
            return LLMTier.HYBRID
        return LLMTier.LOCAL

    def select_llm_tier_by_level(
        self,
        level: ComplexityLevel,
        tags: list[str] | None = None,
    ) -> LLMTier:
        override = self._override(tags or [])
        if override is not None:
            return override
        return LEVEL_TIERS.get(level, LLMTier.HYBRID)

    def get_explanation(
        self,
        tier: LLMTier,
        level: ComplexityLevel,
        score: float,
        tags: list[str] | None = None,
    ) -> str:
        explanation = (
            f"Selected {tier.value.upper()} LLM strategy for {level.value.upper()} "
            f"complexity task (score: {score:.1f})"
        )
        applied = [tag for tag in tags or [] if tag in self.config.tag_overrides]
        if applied:
            explanation += f"\nSelection influenced by tags: {', '.join(applied)}"
        explanation += (
            f"\nThresholds: REMOTE >= {self.config.remote_threshold:g}, "
            f"HYBRID >= {self.config.hybrid_threshold:g}, LOCAL >= 0"
        )
        return explanation
