from __future__ import annotations

from dataclasses import dataclass
from statistics import pvariance
from typing import Sequence

from facet.agents.catalog import AgentCatalog, default_catalog
from facet.core.config import SynthesisSettings
from facet.core.logging import get_logger
from facet.orchestration import fallback
from facet.orchestration.enums import StepStatus
from facet.orchestration.plan import ExecutionPlan
from facet.schemas.outcome import AgentExecutionResult, ConfidenceSummary, OrchestrationOutcome

logger = get_logger(name=__name__)

# Largest possible population variance for values confined to [0, 1].
_MAX_VARIANCE = 0.25


@dataclass(slots=True)
class WeightedConfidence:
    agent: str
    confidence: float
    weight: float


def aggregate_confidence(inputs: Sequence[WeightedConfidence]) -> tuple[float, float]:
    """Return ``(overall, agreement)`` for a set of weighted agent confidences."""
    if not inputs:
        return 0.0, 1.0
    values = [max(0.0, min(1.0, item.confidence)) for item in inputs]
    weights = [max(item.weight, 0.0) for item in inputs]
    total_weight = sum(weights) or 1.0
    overall = sum(value * weight for value, weight in zip(values, weights)) / total_weight
    if len(values) < 2:
        return overall, 1.0
    agreement = 1.0 - min(1.0, pvariance(values) / _MAX_VARIANCE)
    return overall, max(0.0, agreement)


def dedupe_insights(results: Sequence[AgentExecutionResult], *, limit: int) -> list[str]:
    seen: set[str] = set()
    insights: list[str] = []
    for result in results:
        if not result.success:
            continue
        for insight in result.key_insights:
            cleaned = insight.strip()
            key = cleaned.casefold()
            if not cleaned or key in seen:
                continue
            seen.add(key)
            insights.append(cleaned)
            if len(insights) >= limit:
                return insights
    return insights


class ResultSynthesizer:
    """Merge agent results into the final :class:`OrchestrationOutcome`."""

    def __init__(self, settings: SynthesisSettings | None = None, *, catalog: AgentCatalog | None = None) -> None:
        self._settings = settings or SynthesisSettings()
        self._catalog = catalog or default_catalog()

    def synthesize(
        self,
        plan: ExecutionPlan,
        results: Sequence[AgentExecutionResult],
        *,
        escalated: bool = False,
        escalation_reason: str | None = None,
        cultural_context: str | None = None,
        request_id: str | None = None,
        conversation_id: str | None = None,
        total_time_ms: float = 0.0,
    ) -> OrchestrationOutcome:
        results = tuple(results)
        crisis_plan = plan.is_crisis
        weighted = [
            WeightedConfidence(
                agent=result.agent_name,
                confidence=result.confidence if result.success else 0.0,
                weight=self._catalog.influence(result.agent_name, crisis_plan=crisis_plan),
            )
            for result in results
        ]
        overall, agreement = aggregate_confidence(weighted)
        completed = sum(1 for step in plan.steps if step.status is StepStatus.COMPLETED)
        completeness = completed / len(plan.steps) if plan.steps else 0.0
        insights = dedupe_insights(results, limit=self._settings.max_insights)
        common = {
            "request_id": request_id,
            "conversation_id": conversation_id,
            "strategy": plan.strategy,
            "strategy_name": plan.strategy_name,
            "execution_pattern": plan.execution_pattern,
            "results": results,
            "total_time_ms": total_time_ms,
            "step_statuses": plan.statuses(),
        }

        if escalated or crisis_plan:
            safety = self._settings.safety_confidence
            logger.info(
                "safety_fallback_emitted",
                strategy=plan.strategy.value,
                reason=escalation_reason or "crisis_plan",
                context_insights=len(insights),
            )
            return OrchestrationOutcome(
                **common,
                confidence=ConfidenceSummary(
                    overall=safety,
                    agent_agreement=round(agreement, 4),
                    response_quality=safety,
                    completeness=round(completeness, 4),
                ),
                response=fallback.SAFETY_RESPONSE,
                reasoning=fallback.SAFETY_REASONING,
                adaptations=fallback.SAFETY_ADAPTATIONS,
                escalated=escalated,
                escalation_reason=escalation_reason,
                safety_fallback=True,
                crisis_resources=fallback.resources_for(cultural_context),
                non_authoritative_context=tuple(insights),
            )

        quality = 0.6 * completeness + 0.4 * overall
        if insights:
            reasoning = f"{plan.strategy_name}: " + "; ".join(insights)
        else:
            reasoning = f"{plan.strategy_name}: {plan.rationale or 'no agent insights available'}"
        return OrchestrationOutcome(
            **common,
            confidence=ConfidenceSummary(
                overall=round(overall, 4),
                agent_agreement=round(agreement, 4),
                response_quality=round(min(1.0, quality), 4),
                completeness=round(completeness, 4),
            ),
            response=self._select_response(results, crisis_plan=crisis_plan),
            reasoning=reasoning,
            adaptations=tuple(insights),
        )

    def _select_response(self, results: Sequence[AgentExecutionResult], *, crisis_plan: bool) -> str:
        best: tuple[bool, float, int] | None = None
        chosen: str | None = None
        for index, result in enumerate(results):
            if not result.success or not result.content or not result.content.strip():
                continue
            profile = self._catalog.get(result.agent_name)
            rank = (
                bool(profile and profile.produces_response),
                self._catalog.influence(result.agent_name, crisis_plan=crisis_plan),
                -index,
            )
            if best is None or rank > best:
                best = rank
                chosen = result.content.strip()
        return chosen or fallback.NEUTRAL_RESPONSE
