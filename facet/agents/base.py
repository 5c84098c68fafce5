from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Annotated, Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from facet.schemas.outcome import AgentExecutionResult
from facet.schemas.requests import AgentRequest
from facet.schemas.risk import RiskScore


@dataclass(slots=True)
class InvocationContext:
    """Everything an agent call receives besides its name and deadline.

    ``cancel_event`` is set when the engine stops waiting for the call;
    long-running clients should poll it and stop early.
    """

    run_id: str
    step_id: str
    request: AgentRequest
    risk_score: RiskScore
    prior_results: tuple[AgentExecutionResult, ...] = ()
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def as_payload(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "step_id": self.step_id,
            "request": self.request.model_dump(mode="json"),
            "risk": self.risk_score.model_dump(mode="json"),
            "prior_results": [result.model_dump(mode="json") for result in self.prior_results],
        }


@runtime_checkable
class AgentClient(Protocol):
    async def invoke(self, agent_name: str, context: InvocationContext, deadline: float) -> AgentExecutionResult:
        """Call ``agent_name`` and return its result before the absolute ``deadline`` (clock seconds).

        Raises :class:`facet.core.exceptions.AgentTimeout` or
        :class:`facet.core.exceptions.AgentExecutionError` on failure.
        """


class AgentPayload(BaseModel):
    """Wire shape of an agent reply."""

    model_config = ConfigDict(extra="ignore")

    content: str | None = None
    confidence: Annotated[float, Field(ge=0.0, le=1.0)] = 0.5
    reasoning: str = ""
    key_insights: list[str] = Field(default_factory=list)
    risk_score: Annotated[float, Field(ge=0.0, le=10.0)] | None = None
    crisis_signal: bool = False
    extracted_text: str | None = None

    def to_result(self, *, agent_name: str, step_id: str | None, execution_time_ms: float) -> AgentExecutionResult:
        return AgentExecutionResult(
            agent_name=agent_name,
            step_id=step_id,
            success=True,
            execution_time_ms=max(0.0, execution_time_ms),
            confidence=self.confidence,
            reasoning=self.reasoning,
            key_insights=tuple(insight for insight in self.key_insights if insight),
            content=self.content,
            reported_risk=self.risk_score,
            crisis_signal=self.crisis_signal,
            extracted_text=self.extracted_text,
        )
