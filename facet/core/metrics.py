from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

AGENT_LATENCY_SECONDS = Histogram(
    "facet_agent_execution_latency_seconds",
    "Latency for each agent execution",
    labelnames=("agent",),
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 1.5, 2, 3, 5, 8, 12, float("inf")),
)

AGENT_EVENT_TOTAL = Counter(
    "facet_agent_event_total",
    "Count of agent lifecycle events (started/completed/failed/timeout/cancelled)",
    labelnames=("agent", "event"),
)

STEP_STATUS_TOTAL = Counter(
    "facet_step_status_total",
    "Terminal step statuses grouped by strategy",
    labelnames=("strategy", "status"),
)

ORCHESTRATOR_RUNS_TOTAL = Counter(
    "facet_orchestrator_runs_total",
    "Total orchestrator runs by status",
    labelnames=("strategy", "status"),
)

ORCHESTRATOR_RUN_LATENCY_SECONDS = Histogram(
    "facet_orchestrator_run_latency_seconds",
    "End-to-end orchestrator runtime",
    labelnames=("strategy",),
    buckets=(0.25, 0.5, 1, 1.5, 2, 3, 4, 6, 8, 12, 20, float("inf")),
)

ORCHESTRATOR_ACTIVE_GAUGE = Gauge(
    "facet_orchestrator_runs_active",
    "Active orchestrator runs in flight",
)

PLANNER_STEPS = Histogram(
    "facet_planner_plan_steps",
    "Number of steps produced per execution plan",
    labelnames=("strategy",),
    buckets=(0, 1, 2, 3, 4, 5, 8),
)

PLANNER_OUTCOMES_TOTAL = Counter(
    "facet_planner_outcomes_total",
    "Planner results grouped by strategy and status",
    labelnames=("strategy", "status"),
)

ESCALATIONS_TOTAL = Counter(
    "facet_escalations_total",
    "Pipelines forced onto the safety fallback path",
    labelnames=("reason",),
)

SLA_EVENTS_TOTAL = Counter(
    "facet_sla_events_total",
    "SLA compliance events by category",
    labelnames=("category",),
)

SLA_OVERAGE_SECONDS = Histogram(
    "facet_sla_overage_seconds",
    "How far a violating run exceeded its strategy target",
    labelnames=("strategy",),
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, float("inf")),
)

RISK_SCAN_LATENCY_SECONDS = Histogram(
    "facet_risk_scan_latency_seconds",
    "Time spent scoring a single message",
    buckets=(0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, float("inf")),
)

RISK_CRITICAL_DETECTIONS_TOTAL = Counter(
    "facet_risk_critical_detections_total",
    "Scans that flagged critical crisis phrasing",
    labelnames=("source",),
)

LATE_RESULTS_DISCARDED_TOTAL = Counter(
    "facet_late_results_discarded_total",
    "Agent results that arrived after their step was closed",
    labelnames=("agent",),
)

PREEMPTIONS_TOTAL = Counter(
    "facet_pipeline_preemptions_total",
    "Pipelines cancelled because a crisis plan started in the same conversation",
)

EVENT_BUS_DROPPED_TOTAL = Counter(
    "facet_event_bus_dropped_total",
    "Step status events dropped because a subscriber queue was full",
)


def observe_agent_latency(*, agent: str, latency: float) -> None:
    AGENT_LATENCY_SECONDS.labels(agent=agent).observe(latency)


def increment_agent_event(*, agent: str, event: str) -> None:
    AGENT_EVENT_TOTAL.labels(agent=agent, event=event).inc()


def record_step_status(*, strategy: str, status: str) -> None:
    STEP_STATUS_TOTAL.labels(strategy=strategy, status=status).inc()


def mark_orchestrator_run_started() -> None:
    ORCHESTRATOR_ACTIVE_GAUGE.inc()


def mark_orchestrator_run_completed(*, strategy: str, status: str, latency: float) -> None:
    ORCHESTRATOR_ACTIVE_GAUGE.dec()
    ORCHESTRATOR_RUNS_TOTAL.labels(strategy=strategy, status=status).inc()
    ORCHESTRATOR_RUN_LATENCY_SECONDS.labels(strategy=strategy).observe(max(0.0, latency))


def record_plan_metrics(*, strategy: str, status: str, steps: int | None = None) -> None:
    PLANNER_OUTCOMES_TOTAL.labels(strategy=strategy, status=status).inc()
    if steps is not None:
        PLANNER_STEPS.labels(strategy=strategy).observe(max(0, steps))


def increment_escalation(*, reason: str) -> None:
    ESCALATIONS_TOTAL.labels(reason=reason).inc()


def record_sla_event(*, category: str) -> None:
    SLA_EVENTS_TOTAL.labels(category=category).inc()


def observe_sla_overage(*, strategy: str, overage_ms: float) -> None:
    SLA_OVERAGE_SECONDS.labels(strategy=strategy).observe(max(0.0, overage_ms) / 1000.0)


def observe_risk_scan(*, latency: float, critical: bool, source: str = "message") -> None:
    RISK_SCAN_LATENCY_SECONDS.observe(latency)
    if critical:
        RISK_CRITICAL_DETECTIONS_TOTAL.labels(source=source).inc()


def increment_late_result(*, agent: str) -> None:
    LATE_RESULTS_DISCARDED_TOTAL.labels(agent=agent).inc()


def increment_preemption() -> None:
    PREEMPTIONS_TOTAL.inc()


def increment_event_dropped() -> None:
    EVENT_BUS_DROPPED_TOTAL.inc()
