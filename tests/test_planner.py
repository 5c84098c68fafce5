from __future__ import annotations

import pytest

from facet.agents.catalog import CRISIS_MONITOR, EMOTION_ANALYZER, THERAPY_ADVISOR
from facet.core.exceptions import PlanningError
from facet.orchestration.enums import ExecutionPattern, StrategyKind
from facet.orchestration.planner import BLUEPRINTS, ExecutionPlanner, StepTemplate, StrategyBlueprint
from facet.safety.risk_scanner import RiskScanner
from facet.schemas.requests import AgentRequest, ProcessingSpeed, Urgency
from tests.helpers.stubs import make_request, make_risk

LONG_MESSAGE = (
    "Can we talk about what happened at work when my manager called me into the office "
    "yesterday afternoon and criticised the project in front of everyone"
)
PROGRESS_MESSAGE = "How am I doing with my goals? I have been working on the breathing exercises you suggested"


@pytest.fixture
def planner() -> ExecutionPlanner:
    return ExecutionPlanner()


@pytest.mark.parametrize(
    ("message", "risk", "urgency", "expected"),
    [
        ("anything at all", {"immediacy": 8.5, "overall_risk": 9}, Urgency.NORMAL, StrategyKind.CRISIS),
        ("I feel fine", {}, Urgency.CRISIS, StrategyKind.CRISIS),
        ("I feel awful about everything", {"overall_risk": 6.5, "immediacy": 5}, Urgency.NORMAL, StrategyKind.HIGH_EMOTION),
        ("I feel okay today", {}, Urgency.NORMAL, StrategyKind.SIMPLE),
        (PROGRESS_MESSAGE, {}, Urgency.NORMAL, StrategyKind.PROGRESS),
        ("Feeling better about my goals", {}, Urgency.NORMAL, StrategyKind.PROGRESS),
        (LONG_MESSAGE, {}, Urgency.NORMAL, StrategyKind.STANDARD),
    ],
)
def test_decision_table_first_match_wins(
    planner: ExecutionPlanner, message: str, risk: dict, urgency: Urgency, expected: StrategyKind
) -> None:
    plan = planner.plan(make_request(message, urgency=urgency), make_risk(**risk))
    assert plan.strategy is expected


def test_crisis_plan_shape(planner: ExecutionPlanner) -> None:
    plan = planner.plan(make_request("I feel fine", urgency=Urgency.CRISIS), make_risk())
    assert plan.execution_pattern is ExecutionPattern.CRISIS_PRIORITY
    assert plan.total_budget_ms == 2000
    assert [step.step_id for step in plan.steps] == ["crisis-assessment"]
    step = plan.steps[0]
    assert step.agents == (CRISIS_MONITOR,)
    assert step.dependencies == ()
    assert step.critical_for_crisis is True


def test_scanned_overdose_message_gets_crisis_plan(planner: ExecutionPlanner) -> None:
    message = "I am going to overdose right now"
    plan = planner.plan(make_request(message), RiskScanner().scan(message))
    assert plan.is_crisis
    assert plan.rationale.startswith("Immediacy")


def test_high_emotion_layout(planner: ExecutionPlanner) -> None:
    plan = planner.plan(make_request("I feel awful"), make_risk(overall_risk=7.0, immediacy=4.0))
    assert plan.execution_pattern is ExecutionPattern.HYBRID
    assert plan.total_budget_ms == 3000
    synthesis = plan.step("response-synthesis")
    assert synthesis.start_offset_ms == 1200
    assert synthesis.budget_ms == 1800
    assert synthesis.agents == (THERAPY_ADVISOR,)
    assert set(synthesis.dependencies) == {"emotion-analysis", "memory-context", "crisis-watch"}
    assert plan.step("crisis-watch").critical_for_crisis is False


def test_progress_plan_is_serial(planner: ExecutionPlanner) -> None:
    plan = planner.plan(make_request(PROGRESS_MESSAGE), make_risk())
    assert plan.execution_pattern is ExecutionPattern.SERIAL
    assert [step.start_offset_ms for step in plan.steps] == [0, 1000, 2500]
    assert plan.step("recommend-next").dependencies == ("analyze-progress",)


def test_plans_are_deterministic(planner: ExecutionPlanner) -> None:
    request = make_request(LONG_MESSAGE)
    first = planner.plan(request, make_risk(overall_risk=2.0))
    second = ExecutionPlanner().plan(request, make_risk(overall_risk=2.0))
    assert first.to_json() == second.to_json()


def test_fast_scales_budgets_down(planner: ExecutionPlanner) -> None:
    plan = planner.plan(make_request(LONG_MESSAGE, speed=ProcessingSpeed.FAST), make_risk())
    assert plan.total_budget_ms == 5600
    assert plan.step("response-synthesis").budget_ms == 3500
    assert plan.step("response-synthesis").start_offset_ms == 2100


def test_thorough_scales_budgets_up(planner: ExecutionPlanner) -> None:
    plan = planner.plan(make_request(LONG_MESSAGE, speed=ProcessingSpeed.THOROUGH), make_risk())
    assert plan.total_budget_ms == 10400
    assert plan.step("emotion-analysis").budget_ms == 3900
    assert plan.processing_speed is ProcessingSpeed.THOROUGH


def test_crisis_budget_is_clamped(planner: ExecutionPlanner) -> None:
    fast = planner.plan(make_request("help", urgency=Urgency.CRISIS, speed=ProcessingSpeed.FAST), make_risk())
    thorough = planner.plan(make_request("help", urgency=Urgency.CRISIS, speed=ProcessingSpeed.THOROUGH), make_risk())
    assert fast.total_budget_ms == 1500
    assert fast.steps[0].budget_ms == 1500
    assert thorough.total_budget_ms == 2000


def test_empty_message_raises_planning_error(planner: ExecutionPlanner) -> None:
    request = AgentRequest(message="   ", user_id="u", conversation_id="c", request_id="req-x")
    with pytest.raises(PlanningError) as exc:
        planner.plan(request, make_risk())
    assert exc.value.reason == "empty_message"
    assert exc.value.as_dict()["details"] == {"request_id": "req-x"}


def _with_standard(*steps: StepTemplate) -> ExecutionPlanner:
    blueprint = StrategyBlueprint(
        kind=StrategyKind.STANDARD,
        name="Broken",
        pattern=ExecutionPattern.HYBRID,
        total_budget_ms=4000,
        steps=steps,
    )
    return ExecutionPlanner(blueprints={**BLUEPRINTS, StrategyKind.STANDARD: blueprint})


@pytest.mark.parametrize(
    ("steps", "reason"),
    [
        ((), "plan_has_no_steps"),
        ((StepTemplate("a", ("ghost_agent",), 0, 1000),), "unknown_agent"),
        ((StepTemplate("a", (EMOTION_ANALYZER,), 0, 1000, dependencies=("missing",)),), "unknown_dependency"),
        (
            (
                StepTemplate("a", (EMOTION_ANALYZER,), 0, 1000),
                StepTemplate("a", (THERAPY_ADVISOR,), 0, 1000),
            ),
            "duplicate_step_id",
        ),
        (
            (
                StepTemplate("a", (EMOTION_ANALYZER,), 0, 1000, dependencies=("b",)),
                StepTemplate("b", (THERAPY_ADVISOR,), 0, 1000, dependencies=("a",)),
            ),
            "dependency_cycle",
        ),
        ((StepTemplate("a", (), 0, 1000),), "step_without_agents"),
        ((StepTemplate("a", (EMOTION_ANALYZER,), 0, 0),), "non_positive_step_budget"),
    ],
)
def test_invalid_blueprints_raise(steps: tuple[StepTemplate, ...], reason: str) -> None:
    planner = _with_standard(*steps)
    with pytest.raises(PlanningError) as exc:
        planner.plan(make_request(LONG_MESSAGE), make_risk())
    assert exc.value.reason == reason


def test_crisis_plan_requires_eager_crisis_step() -> None:
    blueprint = StrategyBlueprint(
        kind=StrategyKind.CRISIS,
        name="Crisis without monitor",
        pattern=ExecutionPattern.CRISIS_PRIORITY,
        total_budget_ms=2000,
        steps=(StepTemplate("emotion", (EMOTION_ANALYZER,), 0, 2000),),
    )
    planner = ExecutionPlanner(blueprints={**BLUEPRINTS, StrategyKind.CRISIS: blueprint})
    with pytest.raises(PlanningError) as exc:
        planner.plan(make_request("help", urgency=Urgency.CRISIS), make_risk())
    assert exc.value.reason == "crisis_plan_without_eager_step"


def test_missing_blueprint_raises() -> None:
    planner = ExecutionPlanner(blueprints={StrategyKind.CRISIS: BLUEPRINTS[StrategyKind.CRISIS]})
    with pytest.raises(PlanningError) as exc:
        planner.plan(make_request(LONG_MESSAGE), make_risk())
    assert exc.value.reason == "unknown_strategy"
