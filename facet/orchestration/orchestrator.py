from __future__ import annotations

from collections import deque

from facet.agents.base import AgentClient
from facet.agents.catalog import AgentCatalog, default_catalog
from facet.core import metrics
from facet.core.clock import Clock, MonotonicClock
from facet.core.config import Settings, get_settings
from facet.core.logging import bind_request_context, clear_request_context, configure_logging, get_logger
from facet.monitoring.sla import SLAMonitor
from facet.orchestration.engine import ExecutionEngine, PipelineRun
from facet.orchestration.events import StepEventBus
from facet.orchestration.planner import ExecutionPlanner
from facet.orchestration.slots import AgentSlotPool
from facet.orchestration.synthesizer import ResultSynthesizer
from facet.safety.risk_scanner import RiskScanner
from facet.schemas.outcome import OrchestrationOutcome
from facet.schemas.requests import AgentRequest
from facet.schemas.risk import RiskScore, RiskTrendReport
from facet.services.audit import AuditSink

logger = get_logger(name=__name__)


class Orchestrator:
    """Run one user turn end to end.

    risk pre-check -> plan -> execute -> synthesize -> SLA check -> audit
    hand-off. Only :class:`facet.core.exceptions.PlanningError` escapes;
    every other failure degrades into a valid outcome.
    """

    def __init__(
        self,
        *,
        scanner: RiskScanner,
        planner: ExecutionPlanner,
        engine: ExecutionEngine,
        synthesizer: ResultSynthesizer,
        sla_monitor: SLAMonitor,
        audit_sink: AuditSink | None = None,
        clock: Clock | None = None,
        history_size: int = 20,
    ) -> None:
        self._scanner = scanner
        self._planner = planner
        self._engine = engine
        self._synthesizer = synthesizer
        self._sla = sla_monitor
        self._audit = audit_sink
        self._clock = clock or engine.clock
        self._active: dict[str, set[PipelineRun]] = {}
        self._risk_history: dict[str, deque[RiskScore]] = {}
        self._history_size = history_size

    @classmethod
    def from_settings(
        cls,
        client: AgentClient,
        settings: Settings | None = None,
        *,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
        catalog: AgentCatalog | None = None,
        setup_logging: bool = False,
    ) -> "Orchestrator":
        settings = settings or get_settings()
        if setup_logging:
            configure_logging(settings.observability.log_level, json_logs=settings.observability.json_logs)
        clock = clock or MonotonicClock()
        catalog = catalog or default_catalog()
        scanner = RiskScanner(settings.risk)
        engine = ExecutionEngine(
            client,
            scanner=scanner,
            clock=clock,
            settings=settings.engine,
            slots=AgentSlotPool(settings.engine),
            event_bus=StepEventBus(queue_size=settings.engine.event_queue_size),
        )
        return cls(
            scanner=scanner,
            planner=ExecutionPlanner(settings.planning, risk_settings=settings.risk, catalog=catalog),
            engine=engine,
            synthesizer=ResultSynthesizer(settings.synthesis, catalog=catalog),
            sla_monitor=SLAMonitor(settings.sla),
            audit_sink=audit_sink,
            clock=clock,
        )

    @property
    def event_bus(self) -> StepEventBus:
        return self._engine.event_bus

    def active_runs(self, conversation_id: str) -> list[PipelineRun]:
        return [run for run in self._active.get(conversation_id, set()) if run.active]

    def risk_trend(self, conversation_id: str) -> RiskTrendReport:
        return self._scanner.scan_trend(list(self._risk_history.get(conversation_id, ())))

    async def handle(self, request: AgentRequest) -> OrchestrationOutcome:
        bind_request_context(request_id=request.request_id, conversation_id=request.conversation_id)
        started = self._clock.now()
        metrics.mark_orchestrator_run_started()
        strategy = "none"
        status = "failed"
        try:
            risk = self._scanner.scan(request.message, request.cultural_context)
            self._remember(request.conversation_id, risk)
            plan = self._planner.plan(request, risk, request.preferences)
            strategy = plan.strategy.value

            run = self._engine.create_run(plan, conversation_id=request.conversation_id)
            self._register(run)
            try:
                report = await self._engine.execute(plan, request, risk, run=run)
            finally:
                self._unregister(run)

            outcome = self._synthesizer.synthesize(
                plan,
                report.results,
                escalated=report.escalated,
                escalation_reason=report.escalation_reason,
                cultural_context=request.cultural_context,
                request_id=request.request_id,
                conversation_id=request.conversation_id,
            )
            total_ms = (self._clock.now() - started) * 1000.0
            sla = self._sla.check(plan, total_ms)
            outcome = outcome.model_copy(
                update={"total_time_ms": total_ms, "sla_compliant": sla.compliant, "sla_target_ms": sla.target_ms}
            )
            await self._engine.finish(run)
            await self._hand_off(request, risk, outcome)
            status = "escalated" if outcome.safety_fallback else "completed"
            logger.info(
                "turn_completed",
                strategy=strategy,
                total_ms=round(total_ms, 2),
                escalated=outcome.escalated,
                sla_compliant=sla.compliant,
            )
            return outcome
        finally:
            metrics.mark_orchestrator_run_completed(
                strategy=strategy,
                status=status,
                latency=self._clock.now() - started,
            )
            clear_request_context()

    def _register(self, run: PipelineRun) -> None:
        conversation = run.conversation_id
        if conversation is None:
            return
        runs = self._active.setdefault(conversation, set())
        if run.plan.is_crisis:
            for other in list(runs):
                if other.active and not other.plan.is_crisis:
                    other.preempt()
        runs.add(run)

    def _unregister(self, run: PipelineRun) -> None:
        conversation = run.conversation_id
        if conversation is None:
            return
        runs = self._active.get(conversation)
        if not runs:
            return
        runs.discard(run)
        if not runs:
            self._active.pop(conversation, None)

    def _remember(self, conversation_id: str, risk: RiskScore) -> None:
        history = self._risk_history.setdefault(conversation_id, deque(maxlen=self._history_size))
        history.append(risk)

    async def _hand_off(self, request: AgentRequest, risk: RiskScore, outcome: OrchestrationOutcome) -> None:
        if self._audit is None:
            return
        try:
            await self._audit.record(request, risk, outcome)
        except Exception as exc:  # audit storage is best effort
            logger.warning("audit_handoff_failed", error=repr(exc), request_id=request.request_id)
