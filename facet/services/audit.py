from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from facet.core.logging import get_logger
from facet.schemas.outcome import OrchestrationOutcome
from facet.schemas.requests import AgentRequest
from facet.schemas.risk import RiskScore


@runtime_checkable
class AuditSink(Protocol):
    async def record(self, request: AgentRequest, risk_score: RiskScore, outcome: OrchestrationOutcome) -> None:
        ...


@dataclass(slots=True)
class AuditRecord:
    request: AgentRequest
    risk_score: RiskScore
    outcome: OrchestrationOutcome
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class LoggingAuditSink:
    """Emit one structured audit event per turn. Message text is never logged."""

    def __init__(self) -> None:
        self._logger = get_logger(name="audit")

    async def record(self, request: AgentRequest, risk_score: RiskScore, outcome: OrchestrationOutcome) -> None:
        self._logger.info(
            "orchestration_audit",
            request_id=request.request_id,
            user_id=request.user_id,
            conversation_id=request.conversation_id,
            strategy=outcome.strategy.value,
            escalated=outcome.escalated,
            safety_fallback=outcome.safety_fallback,
            overall_risk=risk_score.overall_risk,
            immediacy=risk_score.immediacy,
            intervention_priority=risk_score.intervention_priority,
            total_time_ms=round(outcome.total_time_ms, 2),
            sla_compliant=outcome.sla_compliant,
        )


class InMemoryAuditSink:
    def __init__(self, *, maxlen: int = 500) -> None:
        self.records: deque[AuditRecord] = deque(maxlen=maxlen)

    async def record(self, request: AgentRequest, risk_score: RiskScore, outcome: OrchestrationOutcome) -> None:
        self.records.append(AuditRecord(request=request, risk_score=risk_score, outcome=outcome))
