from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class FacetError(Exception):
    """Base class for orchestrator errors."""


class PlanningError(FacetError):
    """Raised when no valid execution plan can be built for a request.

    This is the only error the orchestrator surfaces to its caller; it is
    raised before any agent is invoked.
    """

    def __init__(self, reason: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.details = dict(details or {})

    def as_dict(self) -> dict[str, Any]:
        return {"error": "planning_error", "reason": self.reason, "details": dict(self.details)}


class AgentExecutionError(FacetError):
    """An agent call failed. Local to a single step."""

    def __init__(self, message: str, *, error_kind: str = "RemoteError", agent: str | None = None) -> None:
        super().__init__(message)
        self.error_kind = error_kind
        self.agent = agent


class AgentTimeout(AgentExecutionError):
    def __init__(self, message: str, *, agent: str | None = None) -> None:
        super().__init__(message, error_kind="AgentTimeout", agent=agent)


class InvalidStepTransition(FacetError):
    """A step status change outside pending -> running -> terminal."""


class EscalationFailure(FacetError):
    """The safety fallback could not be produced.

    The fallback payload is static and built at import time, so nothing in
    the package raises this. It exists so callers can name the condition.
    """


@dataclass(slots=True, frozen=True)
class SLAViolation:
    """Observability record for a run that exceeded its strategy target. Never raised."""

    strategy: str
    target_ms: int
    actual_ms: float
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def overage_ms(self) -> float:
        return max(0.0, self.actual_ms - self.target_ms)
