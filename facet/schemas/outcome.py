from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from facet.orchestration.enums import ErrorKind, ExecutionPattern, PipelineState, StepStatus, StrategyKind

Confidence = Annotated[float, Field(ge=0.0, le=1.0)]


class AgentExecutionResult(BaseModel):
    """Outcome of one agent call within one step. Appended once, never edited."""

    model_config = ConfigDict(frozen=True)

    agent_name: str
    step_id: str | None = None
    success: bool
    execution_time_ms: float = Field(0.0, ge=0.0)
    confidence: Confidence = 0.0
    reasoning: str = ""
    key_insights: tuple[str, ...] = ()
    error_kind: ErrorKind | None = None
    content: str | None = None
    reported_risk: float | None = Field(default=None, ge=0.0, le=10.0)
    crisis_signal: bool = False
    extracted_text: str | None = None

    @classmethod
    def failure(
        cls,
        *,
        agent_name: str,
        step_id: str | None,
        error_kind: ErrorKind,
        execution_time_ms: float,
        reasoning: str = "",
    ) -> "AgentExecutionResult":
        return cls(
            agent_name=agent_name,
            step_id=step_id,
            success=False,
            execution_time_ms=max(0.0, execution_time_ms),
            confidence=0.0,
            reasoning=reasoning,
            error_kind=error_kind,
        )


class ConfidenceSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    overall: Confidence
    agent_agreement: Confidence
    response_quality: Confidence
    completeness: Confidence = 0.0


class OrchestrationOutcome(BaseModel):
    """Terminal artifact of one turn: the response plus how it was produced."""

    model_config = ConfigDict(frozen=True)

    request_id: str | None = None
    conversation_id: str | None = None
    strategy: StrategyKind
    strategy_name: str
    execution_pattern: ExecutionPattern
    results: tuple[AgentExecutionResult, ...] = ()
    confidence: ConfidenceSummary
    total_time_ms: float = 0.0
    sla_compliant: bool = True
    sla_target_ms: int | None = None
    response: str
    reasoning: str = ""
    adaptations: tuple[str, ...] = ()
    escalated: bool = False
    escalation_reason: str | None = None
    safety_fallback: bool = False
    crisis_resources: tuple[str, ...] = ()
    non_authoritative_context: tuple[str, ...] = ()
    step_statuses: dict[str, StepStatus] = Field(default_factory=dict)


class StepStatusEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: str
    conversation_id: str | None = None
    sequence: int
    step_id: str | None = None
    agents: tuple[str, ...] = ()
    status: StepStatus | None = None
    pipeline_state: PipelineState
    error_kind: ErrorKind | None = None
    elapsed_ms: float = 0.0
