from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

from facet.agents.catalog import (
    CRISIS_MONITOR,
    EMOTION_ANALYZER,
    MEMORY_MANAGER,
    PROGRESS_TRACKER,
    THERAPY_ADVISOR,
    AgentCatalog,
    default_catalog,
)
from facet.core import metrics
from facet.core.config import PlanningSettings, RiskSettings
from facet.core.exceptions import PlanningError
from facet.core.logging import get_logger
from facet.orchestration.enums import ExecutionPattern, StrategyKind
from facet.orchestration.plan import ExecutionPlan, Step, dependency_order
from facet.schemas.requests import AgentRequest, ProcessingSpeed, Urgency, UserPreferences
from facet.schemas.risk import RiskScore

logger = get_logger(name=__name__)

CHECK_IN_PATTERN = re.compile(
    r"\b(?:feel|feeling|felt|mood|day|today|okay|ok|good|bad|great|fine|happy|sad|tired|anxious|nervous|"
    r"stressed|calm|better|worse|lonely|upset|down|meh)\b"
)
PROGRESS_PATTERN = re.compile(
    r"\b(?:goals?|progress|been working on|techniques?|exercises? you suggested|getting better|"
    r"improv(?:e|ed|ing|ement)|milestones?|how am i doing)\b"
)


@dataclass(slots=True, frozen=True)
class StepTemplate:
    step_id: str
    agents: tuple[str, ...]
    start_offset_ms: int
    budget_ms: int
    dependencies: tuple[str, ...] = ()
    critical_for_crisis: bool = False
    description: str = ""


@dataclass(slots=True, frozen=True)
class StrategyBlueprint:
    kind: StrategyKind
    name: str
    pattern: ExecutionPattern
    total_budget_ms: int
    steps: tuple[StepTemplate, ...]


BLUEPRINTS: dict[StrategyKind, StrategyBlueprint] = {
    StrategyKind.CRISIS: StrategyBlueprint(
        kind=StrategyKind.CRISIS,
        name="Crisis priority",
        pattern=ExecutionPattern.CRISIS_PRIORITY,
        total_budget_ms=2000,
        steps=(
            StepTemplate(
                "crisis-assessment",
                (CRISIS_MONITOR,),
                0,
                2000,
                critical_for_crisis=True,
                description="Immediate safety assessment",
            ),
        ),
    ),
    StrategyKind.HIGH_EMOTION: StrategyBlueprint(
        kind=StrategyKind.HIGH_EMOTION,
        name="High emotion",
        pattern=ExecutionPattern.HYBRID,
        total_budget_ms=3000,
        steps=(
            StepTemplate("emotion-analysis", (EMOTION_ANALYZER,), 0, 1200, description="Fast emotion read"),
            StepTemplate("memory-context", (MEMORY_MANAGER,), 0, 1200, description="Recent context lookup"),
            StepTemplate(
                "crisis-watch",
                (CRISIS_MONITOR,),
                0,
                1200,
                description="Safety screen alongside analysis",
            ),
            StepTemplate(
                "response-synthesis",
                (THERAPY_ADVISOR,),
                1200,
                1800,
                dependencies=("crisis-watch", "emotion-analysis", "memory-context"),
                description="Supportive reply grounded in the emotion read",
            ),
        ),
    ),
    StrategyKind.SIMPLE: StrategyBlueprint(
        kind=StrategyKind.SIMPLE,
        name="Simple emotional state",
        pattern=ExecutionPattern.PARALLEL,
        total_budget_ms=1500,
        steps=(
            StepTemplate("emotion-analysis", (EMOTION_ANALYZER,), 0, 1500, description="Emotion read"),
            StepTemplate("memory-context", (MEMORY_MANAGER,), 0, 1500, description="Recent context lookup"),
            StepTemplate("response", (THERAPY_ADVISOR,), 0, 1500, description="Brief supportive reply"),
        ),
    ),
    StrategyKind.PROGRESS: StrategyBlueprint(
        kind=StrategyKind.PROGRESS,
        name="Progress focus",
        pattern=ExecutionPattern.SERIAL,
        total_budget_ms=4000,
        steps=(
            StepTemplate("retrieve-progress", (MEMORY_MANAGER,), 0, 1000, description="Load goals and history"),
            StepTemplate(
                "analyze-progress",
                (PROGRESS_TRACKER,),
                1000,
                1500,
                dependencies=("retrieve-progress",),
                description="Measure movement toward goals",
            ),
            StepTemplate(
                "recommend-next",
                (THERAPY_ADVISOR,),
                2500,
                1500,
                dependencies=("analyze-progress",),
                description="Recommend next steps",
            ),
        ),
    ),
    StrategyKind.STANDARD: StrategyBlueprint(
        kind=StrategyKind.STANDARD,
        name="Standard",
        pattern=ExecutionPattern.HYBRID,
        total_budget_ms=8000,
        steps=(
            StepTemplate("emotion-analysis", (EMOTION_ANALYZER,), 0, 3000, description="Emotion analysis"),
            StepTemplate("memory-context", (MEMORY_MANAGER,), 0, 3000, description="Context retrieval"),
            StepTemplate(
                "crisis-watch",
                (CRISIS_MONITOR,),
                0,
                3000,
                description="Background safety screen",
            ),
            StepTemplate(
                "progress-review",
                (PROGRESS_TRACKER,),
                3000,
                2500,
                dependencies=("memory-context",),
                description="Progress snapshot",
            ),
            StepTemplate(
                "response-synthesis",
                (THERAPY_ADVISOR,),
                3000,
                5000,
                dependencies=("crisis-watch", "emotion-analysis", "memory-context"),
                description="Full therapeutic reply",
            ),
        ),
    ),
}


Rule = tuple[StrategyKind, Callable[[AgentRequest, RiskScore], bool]]


class ExecutionPlanner:
    """Pick a strategy from a first-match decision table and lay out its steps.

    The planner is deterministic: identical inputs always serialise to an
    identical plan.
    """

    def __init__(
        self,
        settings: PlanningSettings | None = None,
        *,
        risk_settings: RiskSettings | None = None,
        catalog: AgentCatalog | None = None,
        blueprints: dict[StrategyKind, StrategyBlueprint] | None = None,
    ) -> None:
        self._settings = settings or PlanningSettings()
        self._risk = risk_settings or RiskSettings()
        self._catalog = catalog or default_catalog()
        self._blueprints = dict(blueprints or BLUEPRINTS)
        self._rules: list[Rule] = [
            (StrategyKind.CRISIS, self._is_crisis),
            (StrategyKind.HIGH_EMOTION, self._is_high_emotion),
            (StrategyKind.SIMPLE, self._is_simple_check_in),
            (StrategyKind.PROGRESS, self._is_progress_review),
            (StrategyKind.STANDARD, lambda request, risk: True),
        ]

    def select_strategy(self, request: AgentRequest, risk_score: RiskScore) -> StrategyKind:
        for kind, matches in self._rules:
            if matches(request, risk_score):
                return kind
        return StrategyKind.STANDARD  # pragma: no cover - the last rule always matches

    def plan(
        self,
        request: AgentRequest,
        risk_score: RiskScore,
        preferences: UserPreferences | None = None,
    ) -> ExecutionPlan:
        if not request.message or not request.message.strip():
            metrics.record_plan_metrics(strategy="none", status="failed")
            raise PlanningError("empty_message", details={"request_id": request.request_id})

        prefs = preferences or request.preferences
        kind = self.select_strategy(request, risk_score)
        blueprint = self._blueprints.get(kind)
        if blueprint is None:
            metrics.record_plan_metrics(strategy=kind.value, status="failed")
            raise PlanningError("unknown_strategy", details={"strategy": kind.value})

        if kind is StrategyKind.CRISIS and request.urgency is not Urgency.CRISIS:
            logger.warning(
                "urgency_overridden",
                declared=request.urgency.value,
                immediacy=risk_score.immediacy,
                request_id=request.request_id,
            )

        factor = self._speed_factor(prefs.processing_speed, crisis=kind is StrategyKind.CRISIS)
        steps = tuple(self._build_step(template, factor, crisis=kind is StrategyKind.CRISIS) for template in blueprint.steps)
        plan = ExecutionPlan(
            strategy=kind,
            strategy_name=blueprint.name,
            execution_pattern=blueprint.pattern,
            total_budget_ms=self._scale_budget(blueprint.total_budget_ms, factor, crisis=kind is StrategyKind.CRISIS),
            steps=steps,
            processing_speed=prefs.processing_speed,
            rationale=self._rationale(kind, request, risk_score),
        )
        try:
            self._validate(plan)
        except PlanningError:
            metrics.record_plan_metrics(strategy=kind.value, status="failed")
            raise
        metrics.record_plan_metrics(strategy=kind.value, status="planned", steps=len(plan.steps))
        logger.info(
            "plan_created",
            strategy=kind.value,
            pattern=plan.execution_pattern.value,
            budget_ms=plan.total_budget_ms,
            steps=len(plan.steps),
        )
        return plan

    def _is_crisis(self, request: AgentRequest, risk: RiskScore) -> bool:
        return request.urgency is Urgency.CRISIS or risk.immediacy >= self._risk.critical_immediacy_threshold

    def _is_high_emotion(self, request: AgentRequest, risk: RiskScore) -> bool:
        return risk.overall_risk >= self._risk.high_risk_threshold

    def _is_simple_check_in(self, request: AgentRequest, risk: RiskScore) -> bool:
        text = request.message.lower()
        if len(text.split()) > self._settings.simple_max_words:
            return False
        if PROGRESS_PATTERN.search(text):
            return False
        return bool(CHECK_IN_PATTERN.search(text))

    def _is_progress_review(self, request: AgentRequest, risk: RiskScore) -> bool:
        return bool(PROGRESS_PATTERN.search(request.message.lower()))

    def _speed_factor(self, speed: ProcessingSpeed, *, crisis: bool) -> float:
        if speed is ProcessingSpeed.FAST:
            return self._settings.fast_factor
        if speed is ProcessingSpeed.THOROUGH and not crisis:
            return self._settings.thorough_factor
        return 1.0

    def _scale_budget(self, budget_ms: int, factor: float, *, crisis: bool) -> int:
        scaled = int(round(budget_ms * factor))
        if crisis:
            return min(self._settings.crisis_ceiling_ms, max(self._settings.crisis_floor_ms, scaled))
        if factor > 1.0:
            return min(self._settings.thorough_budget_cap_ms, scaled)
        return scaled

    def _build_step(self, template: StepTemplate, factor: float, *, crisis: bool) -> Step:
        return Step(
            step_id=template.step_id,
            agents=template.agents,
            budget_ms=self._scale_budget(template.budget_ms, factor, crisis=crisis),
            start_offset_ms=int(round(template.start_offset_ms * factor)),
            dependencies=tuple(sorted(template.dependencies)),
            critical_for_crisis=template.critical_for_crisis,
            description=template.description,
        )

    def _validate(self, plan: ExecutionPlan) -> None:
        if not plan.steps:
            raise PlanningError("plan_has_no_steps", details={"strategy": plan.strategy.value})
        if plan.total_budget_ms <= 0:
            raise PlanningError("non_positive_budget", details={"budget_ms": plan.total_budget_ms})

        step_ids = [step.step_id for step in plan.steps]
        if len(set(step_ids)) != len(step_ids):
            raise PlanningError("duplicate_step_id", details={"steps": step_ids})

        known = set(step_ids)
        for step in plan.steps:
            if step.budget_ms <= 0:
                raise PlanningError("non_positive_step_budget", details={"step": step.step_id})
            if not step.agents:
                raise PlanningError("step_without_agents", details={"step": step.step_id})
            unknown_agents = [agent for agent in step.agents if agent not in self._catalog]
            if unknown_agents:
                raise PlanningError("unknown_agent", details={"step": step.step_id, "agents": unknown_agents})
            missing = [dep for dep in step.dependencies if dep not in known]
            if missing:
                raise PlanningError("unknown_dependency", details={"step": step.step_id, "missing": missing})
        try:
            dependency_order(plan.steps)
        except ValueError as exc:
            raise PlanningError("dependency_cycle", details={"error": str(exc)}) from exc

        if plan.is_crisis:
            crisis_agents = set(self._catalog.crisis_agents())
            eager = [
                step
                for step in plan.steps
                if not step.dependencies
                and step.budget_ms <= self._settings.crisis_ceiling_ms
                and crisis_agents.intersection(step.agents)
            ]
            if not eager:
                raise PlanningError(
                    "crisis_plan_without_eager_step",
                    details={"ceiling_ms": self._settings.crisis_ceiling_ms},
                )

    def _rationale(self, kind: StrategyKind, request: AgentRequest, risk: RiskScore) -> str:
        if kind is StrategyKind.CRISIS:
            if request.urgency is Urgency.CRISIS:
                return "Declared crisis urgency"
            return f"Immediacy {risk.immediacy:.1f} at or above critical threshold"
        if kind is StrategyKind.HIGH_EMOTION:
            return f"Overall risk {risk.overall_risk:.1f} in high band"
        if kind is StrategyKind.SIMPLE:
            return "Short emotional check-in"
        if kind is StrategyKind.PROGRESS:
            return "Progress or goal review requested"
        return "Default multi-agent pipeline"
