from __future__ import annotations

import asyncio

import pytest
from prometheus_client import REGISTRY

from facet.agents.catalog import (
    CRISIS_MONITOR,
    EMOTION_ANALYZER,
    MEMORY_MANAGER,
    PROGRESS_TRACKER,
    THERAPY_ADVISOR,
)
from facet.core.config import EngineSettings
from facet.orchestration.engine import ExecutionEngine
from facet.orchestration.enums import (
    ErrorKind,
    EscalationReason,
    ExecutionPattern,
    PipelineState,
    StepStatus,
    StrategyKind,
)
from facet.orchestration.plan import ExecutionPlan, Step
from facet.orchestration.planner import ExecutionPlanner
from facet.schemas.requests import Urgency
from tests.helpers.stubs import (
    AgentBehaviour,
    StubAgentClient,
    VirtualClock,
    make_request,
    make_risk,
    remote_error,
)

STANDARD_MESSAGE = (
    "Can we talk about what happened at work when my manager called me into the office "
    "yesterday afternoon and criticised the project in front of everyone"
)


def _standard_plan():
    return ExecutionPlanner().plan(make_request(STANDARD_MESSAGE), make_risk())


def _crisis_plan():
    return ExecutionPlanner().plan(make_request("help me", urgency=Urgency.CRISIS), make_risk())


def _guarded_plan() -> ExecutionPlan:
    return ExecutionPlan(
        strategy=StrategyKind.STANDARD,
        strategy_name="Guarded",
        execution_pattern=ExecutionPattern.HYBRID,
        total_budget_ms=8000,
        steps=(
            Step(step_id="emotion-analysis", agents=(EMOTION_ANALYZER,), budget_ms=3000),
            Step(step_id="memory-context", agents=(MEMORY_MANAGER,), budget_ms=3000),
            Step(step_id="safety-screen", agents=(CRISIS_MONITOR,), budget_ms=3000, critical_for_crisis=True),
            Step(
                step_id="response-synthesis",
                agents=(THERAPY_ADVISOR,),
                budget_ms=5000,
                start_offset_ms=3000,
                dependencies=("emotion-analysis", "memory-context", "safety-screen"),
            ),
        ),
    )


def _engine(clock: VirtualClock, behaviours: dict[str, AgentBehaviour] | None = None, **settings):
    client = StubAgentClient(clock, behaviours)
    engine = ExecutionEngine(client, clock=clock, settings=EngineSettings(**settings))
    return engine, client


def _statuses(report) -> dict[str, StepStatus]:
    return {step.step_id: step.status for step in report.plan.steps}


def _result(report, agent: str):
    return next(result for result in report.results if result.agent_name == agent)


@pytest.mark.asyncio
async def test_standard_plan_runs_every_step() -> None:
    clock = VirtualClock()
    engine, client = _engine(clock)
    plan = _standard_plan()

    report = await engine.execute(plan, make_request(STANDARD_MESSAGE), make_risk())

    assert set(_statuses(report).values()) == {StepStatus.COMPLETED}
    assert len(report.results) == 5
    assert all(result.success for result in report.results)
    assert report.escalated is False
    assert report.pipeline_state is PipelineState.SYNTHESIZING
    assert report.elapsed_ms == pytest.approx(200.0)


@pytest.mark.asyncio
async def test_dependent_steps_see_prior_results() -> None:
    clock = VirtualClock()
    engine, client = _engine(clock)

    await engine.execute(_standard_plan(), make_request(STANDARD_MESSAGE), make_risk())

    calls = {call.step_id: call for call in client.calls}
    assert set(calls["response-synthesis"].prior_agents) == {EMOTION_ANALYZER, MEMORY_MANAGER, CRISIS_MONITOR}
    assert calls["progress-review"].prior_agents == (MEMORY_MANAGER,)
    assert calls["emotion-analysis"].prior_agents == ()
    assert calls["response-synthesis"].started_at == pytest.approx(0.1)


@pytest.mark.asyncio
async def test_slow_agent_times_out_and_pipeline_continues() -> None:
    clock = VirtualClock()
    engine, client = _engine(clock, {EMOTION_ANALYZER: AgentBehaviour(latency=5.0)})

    report = await engine.execute(_standard_plan(), make_request(STANDARD_MESSAGE), make_risk())

    statuses = _statuses(report)
    assert statuses["emotion-analysis"] is StepStatus.ERROR
    assert statuses["response-synthesis"] is StepStatus.COMPLETED
    emotion = _result(report, EMOTION_ANALYZER)
    assert emotion.error_kind is ErrorKind.AGENT_TIMEOUT
    assert emotion.confidence == 0.0
    assert emotion.execution_time_ms == pytest.approx(3000.0)
    assert report.elapsed_ms == pytest.approx(3100.0)
    assert EMOTION_ANALYZER in client.cancel_signals
    assert report.escalated is False


@pytest.mark.asyncio
async def test_hanging_agent_cannot_hold_the_pipeline_open() -> None:
    clock = VirtualClock()
    engine, client = _engine(clock, {MEMORY_MANAGER: AgentBehaviour(hang=True)})

    report = await engine.execute(_standard_plan(), make_request(STANDARD_MESSAGE), make_risk())

    assert report.plan.all_terminal()
    assert _result(report, MEMORY_MANAGER).error_kind is ErrorKind.AGENT_TIMEOUT
    assert report.elapsed_ms <= report.plan.total_budget_ms + 250


@pytest.mark.asyncio
async def test_remote_error_is_local_to_its_step() -> None:
    clock = VirtualClock()
    engine, _ = _engine(clock, {PROGRESS_TRACKER: AgentBehaviour(error=remote_error(PROGRESS_TRACKER))})

    report = await engine.execute(_standard_plan(), make_request(STANDARD_MESSAGE), make_risk())

    statuses = _statuses(report)
    assert statuses["progress-review"] is StepStatus.ERROR
    assert _result(report, PROGRESS_TRACKER).error_kind is ErrorKind.REMOTE_ERROR
    assert statuses["response-synthesis"] is StepStatus.COMPLETED
    assert report.escalated is False


@pytest.mark.asyncio
async def test_failed_critical_step_escalates_and_skips_pending() -> None:
    clock = VirtualClock()
    engine, _ = _engine(
        clock,
        {CRISIS_MONITOR: AgentBehaviour(latency=0.05, error=remote_error(CRISIS_MONITOR))},
    )
    before = REGISTRY.get_sample_value("facet_escalations_total", {"reason": "critical_step_failed"}) or 0.0

    report = await engine.execute(_guarded_plan(), make_request(STANDARD_MESSAGE), make_risk())

    statuses = _statuses(report)
    assert report.escalated is True
    assert report.escalation_reason == EscalationReason.CRITICAL_STEP_FAILED.value
    assert statuses["safety-screen"] is StepStatus.ERROR
    assert statuses["emotion-analysis"] is StepStatus.COMPLETED
    assert statuses["memory-context"] is StepStatus.COMPLETED
    assert statuses["response-synthesis"] is StepStatus.SKIPPED
    assert report.plan.step("response-synthesis").skip_reason == "escalated"
    after = REGISTRY.get_sample_value("facet_escalations_total", {"reason": "critical_step_failed"})
    assert after == pytest.approx(before + 1.0)


@pytest.mark.asyncio
async def test_running_steps_are_cancelled_after_escalation_grace() -> None:
    clock = VirtualClock()
    engine, client = _engine(
        clock,
        {
            CRISIS_MONITOR: AgentBehaviour(latency=0.05, error=remote_error(CRISIS_MONITOR)),
            EMOTION_ANALYZER: AgentBehaviour(latency=2.0),
        },
    )

    report = await engine.execute(_guarded_plan(), make_request(STANDARD_MESSAGE), make_risk())
    for _ in range(3):
        await asyncio.sleep(0)

    emotion = _result(report, EMOTION_ANALYZER)
    assert emotion.success is False
    assert emotion.error_kind is ErrorKind.CANCELLED
    assert report.elapsed_ms == pytest.approx(200.0)
    assert EMOTION_ANALYZER in client.cancel_signals


@pytest.mark.asyncio
async def test_routine_crisis_watch_timeout_only_degrades_the_turn() -> None:
    clock = VirtualClock()
    engine, _ = _engine(clock, {CRISIS_MONITOR: AgentBehaviour(hang=True)})

    report = await engine.execute(_standard_plan(), make_request(STANDARD_MESSAGE), make_risk())

    statuses = _statuses(report)
    assert report.escalated is False
    assert statuses["crisis-watch"] is StepStatus.ERROR
    assert _result(report, CRISIS_MONITOR).error_kind is ErrorKind.AGENT_TIMEOUT
    assert statuses["response-synthesis"] is StepStatus.COMPLETED
    assert report.elapsed_ms == pytest.approx(3100.0)


@pytest.mark.asyncio
async def test_step_after_skipped_dependency_is_skipped() -> None:
    clock = VirtualClock()
    engine, client = _engine(clock)
    plan = ExecutionPlan(
        strategy=StrategyKind.STANDARD,
        strategy_name="Starved",
        execution_pattern=ExecutionPattern.SERIAL,
        total_budget_ms=1000,
        steps=(
            Step(step_id="first", agents=(EMOTION_ANALYZER,), budget_ms=1000),
            Step(step_id="second", agents=(THERAPY_ADVISOR,), budget_ms=1000, dependencies=("first",)),
        ),
    )

    await engine.execute(plan, make_request(STANDARD_MESSAGE), make_risk())

    assert plan.step("first").skip_reason == "budget_exhausted"
    assert plan.step("second").status is StepStatus.SKIPPED
    assert plan.step("second").skip_reason == "dependency_skipped"
    assert client.agents_called() == []


@pytest.mark.asyncio
async def test_agent_crisis_signal_triggers_emergent_escalation() -> None:
    clock = VirtualClock()
    engine, _ = _engine(
        clock,
        {
            EMOTION_ANALYZER: AgentBehaviour(
                latency=0.05,
                crisis_signal=True,
                extracted_text="I am going to kill myself tonight",
            )
        },
    )

    report = await engine.execute(_standard_plan(), make_request(STANDARD_MESSAGE), make_risk())

    assert report.escalated is True
    assert report.escalation_reason == EscalationReason.EMERGENT_CRISIS.value
    assert _statuses(report)["response-synthesis"] is StepStatus.SKIPPED


@pytest.mark.asyncio
async def test_crisis_signal_with_benign_text_does_not_escalate() -> None:
    clock = VirtualClock()
    engine, _ = _engine(
        clock,
        {EMOTION_ANALYZER: AgentBehaviour(crisis_signal=True, extracted_text="Rough week at school")},
    )

    report = await engine.execute(_standard_plan(), make_request(STANDARD_MESSAGE), make_risk())

    assert report.escalated is False
    assert _statuses(report)["response-synthesis"] is StepStatus.COMPLETED


@pytest.mark.asyncio
async def test_high_reported_risk_escalates() -> None:
    clock = VirtualClock()
    engine, _ = _engine(clock, {MEMORY_MANAGER: AgentBehaviour(latency=0.05, reported_risk=9.0)})

    report = await engine.execute(_standard_plan(), make_request(STANDARD_MESSAGE), make_risk())

    assert report.escalated is True
    assert report.escalation_reason == EscalationReason.EMERGENT_CRISIS.value


@pytest.mark.asyncio
async def test_hanging_crisis_monitor_escalates_within_budget() -> None:
    clock = VirtualClock()
    engine, _ = _engine(clock, {CRISIS_MONITOR: AgentBehaviour(hang=True)})
    plan = _crisis_plan()

    report = await engine.execute(plan, make_request("help me", urgency=Urgency.CRISIS), make_risk())

    assert report.escalated is True
    assert report.escalation_reason == EscalationReason.CRITICAL_STEP_FAILED.value
    assert _result(report, CRISIS_MONITOR).error_kind is ErrorKind.AGENT_TIMEOUT
    assert report.elapsed_ms <= 2000.0


@pytest.mark.asyncio
async def test_late_answer_is_discarded() -> None:
    clock = VirtualClock()
    engine, client = _engine(
        clock,
        {EMOTION_ANALYZER: AgentBehaviour(latency=5.0, ignore_cancel=True, late_delay=0.5)},
    )
    plan = _standard_plan()
    run = engine.create_run(plan, conversation_id="conv-1")
    before = REGISTRY.get_sample_value("facet_late_results_discarded_total", {"agent": EMOTION_ANALYZER}) or 0.0

    report = await engine.execute(plan, make_request(STANDARD_MESSAGE), make_risk(), run=run)
    await client.late_answered.wait()
    for _ in range(5):
        await asyncio.sleep(0)

    assert _result(report, EMOTION_ANALYZER).error_kind is ErrorKind.AGENT_TIMEOUT
    assert len(report.results) == 5
    assert run.discarded_results == 1
    assert run.results.sealed
    after = REGISTRY.get_sample_value("facet_late_results_discarded_total", {"agent": EMOTION_ANALYZER})
    assert after == pytest.approx(before + 1.0)


@pytest.mark.asyncio
async def test_step_without_window_is_skipped() -> None:
    clock = VirtualClock()
    engine, _ = _engine(clock, {EMOTION_ANALYZER: AgentBehaviour(latency=5.0)})
    plan = ExecutionPlan(
        strategy=StrategyKind.STANDARD,
        strategy_name="Tight",
        execution_pattern=ExecutionPattern.SERIAL,
        total_budget_ms=1000,
        steps=(
            Step(step_id="first", agents=(EMOTION_ANALYZER,), budget_ms=1000),
            Step(step_id="second", agents=(THERAPY_ADVISOR,), budget_ms=500, dependencies=("first",)),
        ),
    )

    report = await engine.execute(plan, make_request(STANDARD_MESSAGE), make_risk())

    assert plan.step("first").status is StepStatus.ERROR
    assert plan.step("second").status is StepStatus.SKIPPED
    assert plan.step("second").skip_reason == "budget_exhausted"
    assert report.elapsed_ms == pytest.approx(500.0)


@pytest.mark.asyncio
async def test_preempted_run_stops_cooperatively() -> None:
    clock = VirtualClock()
    behaviours = {agent: AgentBehaviour(latency=1.0) for agent in (EMOTION_ANALYZER, MEMORY_MANAGER, CRISIS_MONITOR)}
    engine, _ = _engine(clock, behaviours)
    plan = _standard_plan()
    run = engine.create_run(plan, conversation_id="conv-1")
    before = REGISTRY.get_sample_value("facet_pipeline_preemptions_total") or 0.0

    task = asyncio.create_task(engine.execute(plan, make_request(STANDARD_MESSAGE), make_risk(), run=run))
    await clock.sleep(0.05)
    assert run.preempt() is True
    assert run.preempt() is False
    report = await task

    assert report.escalated is True
    assert report.escalation_reason == EscalationReason.PREEMPTED.value
    assert {result.error_kind for result in report.results} == {ErrorKind.CANCELLED}
    assert _statuses(report)["response-synthesis"] is StepStatus.SKIPPED
    assert report.elapsed_ms == pytest.approx(200.0)
    after = REGISTRY.get_sample_value("facet_pipeline_preemptions_total")
    assert after == pytest.approx(before + 1.0)


@pytest.mark.asyncio
async def test_concurrency_is_bounded_by_slot_pool() -> None:
    clock = VirtualClock()
    engine, client = _engine(clock, max_concurrent_agent_calls=2)

    await engine.execute(_standard_plan(), make_request(STANDARD_MESSAGE), make_risk())

    first_wave = sorted(
        call.started_at
        for call in client.calls
        if call.step_id in {"emotion-analysis", "memory-context", "crisis-watch"}
    )
    assert first_wave == pytest.approx([0.0, 0.0, 0.1])


@pytest.mark.asyncio
async def test_crisis_plan_uses_reserved_lane() -> None:
    clock = VirtualClock()
    slow = {agent: AgentBehaviour(latency=0.5) for agent in (EMOTION_ANALYZER, MEMORY_MANAGER, CRISIS_MONITOR)}
    engine, client = _engine(clock, slow, max_concurrent_agent_calls=1)
    standard = _standard_plan()
    crisis = _crisis_plan()

    standard_task = asyncio.create_task(engine.execute(standard, make_request(STANDARD_MESSAGE), make_risk()))
    await clock.sleep(0.01)
    crisis_report = await engine.execute(crisis, make_request("help me", urgency=Urgency.CRISIS), make_risk())
    await standard_task

    crisis_call = next(call for call in client.calls if call.step_id == "crisis-assessment")
    assert crisis_call.started_at == pytest.approx(0.01)
    assert crisis_report.plan.steps[0].status is StepStatus.COMPLETED


@pytest.mark.asyncio
async def test_event_stream_reports_every_transition_in_order() -> None:
    clock = VirtualClock()
    engine, _ = _engine(clock)
    plan = ExecutionPlanner().plan(make_request("I feel okay today"), make_risk())

    async with engine.event_bus.subscribe() as subscription:
        report = await engine.execute(plan, make_request("I feel okay today"), make_risk())
        events = subscription.drain()

    assert engine.event_bus.subscriber_count == 0
    sequences = [event.sequence for event in events]
    assert sequences == sorted(sequences)
    assert len(set(sequences)) == len(sequences)
    assert events[0].pipeline_state is PipelineState.EXECUTING and events[0].step_id is None
    assert events[-1].pipeline_state is PipelineState.SYNTHESIZING
    for step in report.plan.steps:
        seen = [event.status for event in events if event.step_id == step.step_id]
        assert seen == [StepStatus.RUNNING, StepStatus.COMPLETED]
    assert {event.run_id for event in events} == {report.run_id}


@pytest.mark.asyncio
async def test_listener_failure_does_not_break_execution() -> None:
    clock = VirtualClock()
    engine, _ = _engine(clock)

    def broken(event) -> None:
        raise RuntimeError("listener down")

    engine.event_bus.add_listener(broken)
    report = await engine.execute(_crisis_plan(), make_request("help me", urgency=Urgency.CRISIS), make_risk())

    assert report.plan.all_terminal()


@pytest.mark.asyncio
async def test_finish_marks_run_done() -> None:
    clock = VirtualClock()
    engine, _ = _engine(clock)
    plan = _crisis_plan()
    run = engine.create_run(plan)

    await engine.execute(plan, make_request("help me", urgency=Urgency.CRISIS), make_risk(), run=run)
    assert run.active is False
    await engine.finish(run)

    assert run.state is PipelineState.DONE
    assert run.request_escalation(EscalationReason.EMERGENT_CRISIS) is False


@pytest.mark.asyncio
async def test_deadline_watcher_closes_a_stalled_run() -> None:
    clock = VirtualClock()
    engine, _ = _engine(clock, grace_ms=250)
    plan = _crisis_plan()
    run = engine.create_run(plan)
    run.started_at = clock.now()

    await engine._watch_deadline(run)

    assert clock.now() == pytest.approx(2.25)
    assert plan.steps[0].status is StepStatus.SKIPPED
    assert plan.steps[0].skip_reason == "deadline"
    assert run.abort.is_set()
    assert run.abort_kind is ErrorKind.AGENT_TIMEOUT
    assert run.settled.is_set()
