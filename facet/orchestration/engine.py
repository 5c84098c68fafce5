from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from functools import partial
from typing import Awaitable, Iterable
from uuid import uuid4

from facet.agents.base import AgentClient, InvocationContext
from facet.core import metrics
from facet.core.clock import Clock, MonotonicClock
from facet.core.config import EngineSettings
from facet.core.exceptions import AgentExecutionError, AgentTimeout
from facet.core.logging import get_logger
from facet.orchestration.enums import ErrorKind, EscalationReason, PipelineState, StepStatus
from facet.orchestration.events import StepEventBus
from facet.orchestration.plan import ExecutionPlan, ParallelGroup, Step, partition_groups
from facet.orchestration.results import ResultsLog, ResultsSealed
from facet.orchestration.slots import AgentSlotPool
from facet.safety.risk_scanner import RiskScanner
from facet.schemas.outcome import AgentExecutionResult, StepStatusEvent
from facet.schemas.requests import AgentRequest
from facet.schemas.risk import RiskScore

logger = get_logger(name=__name__)


class PipelineRun:
    """Execution state shared by the step tasks of one plan.

    ``stop`` means no further step may start; ``abort`` means running steps
    must stop waiting for their agents. Escalation requests are synchronous
    so a step that detects a crisis blocks its dependents before they wake.
    """

    def __init__(self, plan: ExecutionPlan, *, conversation_id: str | None = None, run_id: str | None = None) -> None:
        self.run_id = run_id or uuid4().hex
        self.plan = plan
        self.conversation_id = conversation_id
        self.state = PipelineState.PLANNING_DONE
        self.started_at: float | None = None
        self.escalated = False
        self.escalation_reason: EscalationReason | None = None
        self.stop_reason: str | None = None
        self.abort_kind = ErrorKind.CANCELLED
        self.stop = asyncio.Event()
        self.abort = asyncio.Event()
        self.escalation_requested = asyncio.Event()
        self.settled = asyncio.Event()
        self.results = ResultsLog()
        self.discarded_results = 0
        self._done = {step.step_id: asyncio.Event() for step in plan.steps}
        self._sequence = itertools.count(1)

    def request_escalation(self, reason: EscalationReason) -> bool:
        if self.escalation_requested.is_set() or self.settled.is_set():
            return False
        if self.state in {PipelineState.SYNTHESIZING, PipelineState.DONE}:
            return False
        self.escalation_reason = reason
        self.stop_reason = "escalated"
        self.escalation_requested.set()
        self.stop.set()
        return True

    def preempt(self) -> bool:
        """Cooperatively cancel this run because a crisis plan took over the conversation."""
        accepted = self.request_escalation(EscalationReason.PREEMPTED)
        if accepted:
            metrics.increment_preemption()
            logger.warning("pipeline_preempted", run_id=self.run_id, conversation_id=self.conversation_id)
        return accepted

    def done_event(self, step_id: str) -> asyncio.Event:
        return self._done[step_id]

    def mark_done(self, step: Step) -> None:
        self._done[step.step_id].set()
        if self.plan.all_terminal():
            self.settled.set()

    def next_sequence(self) -> int:
        return next(self._sequence)

    @property
    def active(self) -> bool:
        return self.state in {PipelineState.PLANNING_DONE, PipelineState.EXECUTING, PipelineState.ESCALATING}


@dataclass(slots=True)
class ExecutionReport:
    run_id: str
    plan: ExecutionPlan
    results: tuple[AgentExecutionResult, ...]
    escalated: bool
    escalation_reason: str | None
    pipeline_state: PipelineState
    elapsed_ms: float
    discarded_results: int = 0


class ExecutionEngine:
    """Run an :class:`ExecutionPlan` against remote agents under deadlines.

    Every step is a task inside one task group. Steps wait only on their own
    dependencies and receive a window bounded by their budget, their
    group's deadline and the pipeline budget. Agent calls are detached
    tasks: when a window closes the engine signals cancellation and stops
    waiting, so an unresponsive agent can never hold the pipeline open.
    """

    def __init__(
        self,
        client: AgentClient,
        *,
        scanner: RiskScanner | None = None,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
        slots: AgentSlotPool | None = None,
        event_bus: StepEventBus | None = None,
    ) -> None:
        self._client = client
        self._settings = settings or EngineSettings()
        self._scanner = scanner or RiskScanner()
        self._clock = clock or MonotonicClock()
        self._slots = slots or AgentSlotPool(self._settings)
        self._events = event_bus or StepEventBus(queue_size=self._settings.event_queue_size)

    @property
    def event_bus(self) -> StepEventBus:
        return self._events

    @property
    def clock(self) -> Clock:
        return self._clock

    def create_run(self, plan: ExecutionPlan, *, conversation_id: str | None = None) -> PipelineRun:
        return PipelineRun(plan, conversation_id=conversation_id)

    async def execute(
        self,
        plan: ExecutionPlan,
        request: AgentRequest,
        risk_score: RiskScore,
        *,
        run: PipelineRun | None = None,
    ) -> ExecutionReport:
        run = run or self.create_run(plan, conversation_id=request.conversation_id)
        run.started_at = self._clock.now()
        groups = partition_groups(plan)
        await self._set_state(run, PipelineState.EXECUTING)

        async with asyncio.TaskGroup() as group_tasks:
            group_tasks.create_task(self._watch_escalation(run))
            group_tasks.create_task(self._watch_deadline(run))
            for group in groups:
                for step in group.steps:
                    group_tasks.create_task(self._run_step(run, step, group, request, risk_score))

        if not plan.all_terminal():  # pragma: no cover - every runner closes its own step
            await self._skip_pending(run, reason="unfinished")

        await self._set_state(run, PipelineState.SYNTHESIZING)
        results = await run.results.seal()
        elapsed_ms = self._elapsed_ms(run)
        logger.info(
            "pipeline_executed",
            run_id=run.run_id,
            strategy=plan.strategy.value,
            elapsed_ms=round(elapsed_ms, 2),
            escalated=run.escalated,
            statuses={step.step_id: step.status.value for step in plan.steps},
        )
        return ExecutionReport(
            run_id=run.run_id,
            plan=plan,
            results=results,
            escalated=run.escalated,
            escalation_reason=run.escalation_reason.value if run.escalated and run.escalation_reason else None,
            pipeline_state=run.state,
            elapsed_ms=elapsed_ms,
            discarded_results=run.discarded_results,
        )

    async def finish(self, run: PipelineRun) -> None:
        await self._set_state(run, PipelineState.DONE)

    async def _run_step(
        self,
        run: PipelineRun,
        step: Step,
        group: ParallelGroup,
        request: AgentRequest,
        risk_score: RiskScore,
    ) -> None:
        """Run one step once its dependencies settle.

        A dependency that errored still lets the step run on whatever
        results succeeded. A dependency that was skipped never produced
        anything, so the step is skipped as ``dependency_skipped``.
        """
        if step.dependencies:
            await _first_completed(
                _wait_all(run.done_event(dep) for dep in step.dependencies),
                run.stop.wait(),
            )
        if step.status is not StepStatus.PENDING:
            return
        if run.stop.is_set():
            await self._skip(run, step, reason=run.stop_reason or "stopped")
            return
        skipped = [dep for dep in step.dependencies if run.plan.step(dep).status is StepStatus.SKIPPED]
        if skipped:
            logger.info("step_dependency_skipped", step=step.step_id, dependencies=skipped)
            await self._skip(run, step, reason="dependency_skipped")
            return

        now_ms = self._elapsed_ms(run)
        window_ms = min(
            float(step.budget_ms),
            group.deadline_ms - now_ms,
            run.plan.total_budget_ms - now_ms,
        )
        if window_ms < self._settings.min_step_window_ms:
            logger.warning("step_budget_exhausted", step=step.step_id, window_ms=round(window_ms, 2))
            await self._skip(run, step, reason="budget_exhausted")
            return

        step.transition(StepStatus.RUNNING)
        await self._publish(run, step)
        prior = run.results.for_steps(set(step.dependencies))
        results = await asyncio.gather(
            *(self._invoke_agent(run, step, agent, window_ms, request, risk_score, prior) for agent in step.agents)
        )
        for result in results:
            try:
                await run.results.append(result)
            except ResultsSealed:  # pragma: no cover - runners finish before the log is sealed
                run.discarded_results += 1

        failed = [result for result in results if not result.success]
        status = StepStatus.ERROR if failed else StepStatus.COMPLETED
        if failed and step.critical_for_crisis:
            logger.error("critical_step_failed", step=step.step_id, agents=list(step.agents))
            run.request_escalation(EscalationReason.CRITICAL_STEP_FAILED)
        for result in results:
            if result.success and self._reports_crisis(result):
                logger.warning("emergent_crisis_detected", step=step.step_id, agent=result.agent_name)
                run.request_escalation(EscalationReason.EMERGENT_CRISIS)

        step.transition(status)
        metrics.record_step_status(strategy=run.plan.strategy.value, status=status.value)
        run.mark_done(step)
        await self._publish(run, step, error_kind=failed[0].error_kind if failed else None)

    async def _invoke_agent(
        self,
        run: PipelineRun,
        step: Step,
        agent: str,
        window_ms: float,
        request: AgentRequest,
        risk_score: RiskScore,
        prior: tuple[AgentExecutionResult, ...],
    ) -> AgentExecutionResult:
        context = InvocationContext(
            run_id=run.run_id,
            step_id=step.step_id,
            request=request,
            risk_score=risk_score,
            prior_results=prior,
        )
        started = self._clock.now()
        deadline = started + window_ms / 1000.0

        async def call() -> AgentExecutionResult:
            async with self._slots.slot(crisis=run.plan.is_crisis):
                return await self._client.invoke(agent, context, deadline)

        metrics.increment_agent_event(agent=agent, event="started")
        task = asyncio.ensure_future(call())
        timer = asyncio.ensure_future(self._clock.sleep(window_ms / 1000.0))
        aborted = asyncio.ensure_future(run.abort.wait())
        try:
            done, _ = await asyncio.wait({task, timer, aborted}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            context.cancel_event.set()
            task.cancel()
            raise
        finally:
            timer.cancel()
            aborted.cancel()

        elapsed_ms = (self._clock.now() - started) * 1000.0
        if task not in done:
            context.cancel_event.set()
            task.cancel()
            task.add_done_callback(partial(self._discard_late_result, run, agent))
            kind = ErrorKind.AGENT_TIMEOUT if timer in done else run.abort_kind
            event = "timeout" if kind is ErrorKind.AGENT_TIMEOUT else "cancelled"
            metrics.increment_agent_event(agent=agent, event=event)
            logger.warning(
                "agent_timeout" if event == "timeout" else "agent_cancelled",
                agent=agent,
                step=step.step_id,
                window_ms=round(window_ms, 2),
            )
            return AgentExecutionResult.failure(
                agent_name=agent,
                step_id=step.step_id,
                error_kind=kind,
                execution_time_ms=elapsed_ms,
                reasoning=f"{agent} did not answer within {window_ms:.0f} ms",
            )

        metrics.observe_agent_latency(agent=agent, latency=elapsed_ms / 1000.0)
        return self._collect(task, agent=agent, step=step, elapsed_ms=elapsed_ms)

    def _collect(
        self,
        task: asyncio.Future[AgentExecutionResult],
        *,
        agent: str,
        step: Step,
        elapsed_ms: float,
    ) -> AgentExecutionResult:
        if task.cancelled():
            metrics.increment_agent_event(agent=agent, event="cancelled")
            return AgentExecutionResult.failure(
                agent_name=agent, step_id=step.step_id, error_kind=ErrorKind.CANCELLED, execution_time_ms=elapsed_ms
            )
        exc = task.exception()
        if isinstance(exc, AgentTimeout):
            metrics.increment_agent_event(agent=agent, event="timeout")
            logger.warning("agent_timeout", agent=agent, step=step.step_id, error=str(exc))
            return AgentExecutionResult.failure(
                agent_name=agent,
                step_id=step.step_id,
                error_kind=ErrorKind.AGENT_TIMEOUT,
                execution_time_ms=elapsed_ms,
                reasoning=str(exc),
            )
        if isinstance(exc, AgentExecutionError):
            metrics.increment_agent_event(agent=agent, event="failed")
            logger.warning("agent_failed", agent=agent, step=step.step_id, kind=exc.error_kind, error=str(exc))
            return AgentExecutionResult.failure(
                agent_name=agent,
                step_id=step.step_id,
                error_kind=_error_kind(exc.error_kind),
                execution_time_ms=elapsed_ms,
                reasoning=str(exc),
            )
        if exc is not None:
            metrics.increment_agent_event(agent=agent, event="failed")
            logger.error("agent_unexpected_error", agent=agent, step=step.step_id, error=repr(exc))
            return AgentExecutionResult.failure(
                agent_name=agent,
                step_id=step.step_id,
                error_kind=ErrorKind.REMOTE_ERROR,
                execution_time_ms=elapsed_ms,
                reasoning=repr(exc),
            )

        result = task.result()
        if not isinstance(result, AgentExecutionResult):
            metrics.increment_agent_event(agent=agent, event="malformed_output")
            return AgentExecutionResult.failure(
                agent_name=agent,
                step_id=step.step_id,
                error_kind=ErrorKind.MALFORMED_OUTPUT,
                execution_time_ms=elapsed_ms,
                reasoning=f"unexpected result type {type(result).__name__}",
            )
        update: dict[str, object] = {"agent_name": agent, "step_id": step.step_id, "execution_time_ms": elapsed_ms}
        if not result.success:
            update["confidence"] = 0.0
            update["error_kind"] = result.error_kind or ErrorKind.REMOTE_ERROR
        metrics.increment_agent_event(agent=agent, event="completed" if result.success else "failed")
        return result.model_copy(update=update)

    def _discard_late_result(self, run: PipelineRun, agent: str, task: asyncio.Future[AgentExecutionResult]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("late_agent_error_ignored", agent=agent, error=repr(exc))
            return
        run.discarded_results += 1
        metrics.increment_late_result(agent=agent)
        logger.info("late_agent_result_discarded", agent=agent, run_id=run.run_id, pipeline_state=run.state.value)

    def _reports_crisis(self, result: AgentExecutionResult) -> bool:
        if result.reported_risk is not None and result.reported_risk >= self._settings.reported_risk_threshold:
            return True
        if not result.crisis_signal:
            return False
        text = result.extracted_text or " ".join((result.reasoning, *result.key_insights))
        rescored = self._scanner.scan(text, source="agent_output")
        return self._scanner.is_crisis(rescored)

    async def _watch_escalation(self, run: PipelineRun) -> None:
        await _first_completed(run.escalation_requested.wait(), run.settled.wait())
        if not run.escalation_requested.is_set():
            return
        run.escalated = True
        reason = run.escalation_reason.value if run.escalation_reason else "unknown"
        metrics.increment_escalation(reason=reason)
        logger.warning("pipeline_escalating", run_id=run.run_id, reason=reason)
        await self._set_state(run, PipelineState.ESCALATING)
        await self._skip_pending(run, reason="escalated")
        if any(step.status is StepStatus.RUNNING for step in run.plan.steps):
            await _first_completed(
                self._clock.sleep(self._settings.escalation_grace_ms / 1000.0),
                run.settled.wait(),
            )
        run.abort.set()

    async def _watch_deadline(self, run: PipelineRun) -> None:
        limit = (run.plan.total_budget_ms + self._settings.grace_ms) / 1000.0
        await _first_completed(self._clock.sleep(limit), run.settled.wait())
        if run.settled.is_set():
            return
        logger.warning("pipeline_deadline_exceeded", run_id=run.run_id, budget_ms=run.plan.total_budget_ms)
        if not run.abort.is_set():
            run.abort_kind = ErrorKind.AGENT_TIMEOUT
        run.stop_reason = run.stop_reason or "deadline"
        run.stop.set()
        await self._skip_pending(run, reason="deadline")
        run.abort.set()

    async def _skip_pending(self, run: PipelineRun, *, reason: str) -> None:
        pending = [step for step in run.plan.steps if step.status is StepStatus.PENDING]
        for step in pending:
            step.transition(StepStatus.SKIPPED, reason=reason)
            metrics.record_step_status(strategy=run.plan.strategy.value, status=StepStatus.SKIPPED.value)
            run.mark_done(step)
        for step in pending:
            await self._publish(run, step)

    async def _skip(self, run: PipelineRun, step: Step, *, reason: str) -> None:
        if step.status is not StepStatus.PENDING:
            return
        step.transition(StepStatus.SKIPPED, reason=reason)
        metrics.record_step_status(strategy=run.plan.strategy.value, status=StepStatus.SKIPPED.value)
        run.mark_done(step)
        await self._publish(run, step)

    async def _set_state(self, run: PipelineRun, state: PipelineState) -> None:
        run.state = state
        await self._events.publish(
            StepStatusEvent(
                run_id=run.run_id,
                conversation_id=run.conversation_id,
                sequence=run.next_sequence(),
                pipeline_state=state,
                elapsed_ms=self._elapsed_ms(run),
            )
        )

    async def _publish(self, run: PipelineRun, step: Step, *, error_kind: ErrorKind | None = None) -> None:
        await self._events.publish(
            StepStatusEvent(
                run_id=run.run_id,
                conversation_id=run.conversation_id,
                sequence=run.next_sequence(),
                step_id=step.step_id,
                agents=step.agents,
                status=step.status,
                pipeline_state=run.state,
                error_kind=error_kind,
                elapsed_ms=self._elapsed_ms(run),
            )
        )

    def _elapsed_ms(self, run: PipelineRun) -> float:
        if run.started_at is None:
            return 0.0
        return max(0.0, (self._clock.now() - run.started_at) * 1000.0)


def _error_kind(value: str) -> ErrorKind:
    try:
        return ErrorKind(value)
    except ValueError:
        return ErrorKind.REMOTE_ERROR


async def _wait_all(events: Iterable[asyncio.Event]) -> None:
    for event in list(events):
        await event.wait()


async def _first_completed(*awaitables: Awaitable[object]) -> None:
    tasks = [asyncio.ensure_future(awaitable) for awaitable in awaitables]
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            task.cancel()
