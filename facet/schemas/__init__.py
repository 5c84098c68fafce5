from .outcome import AgentExecutionResult, ConfidenceSummary, OrchestrationOutcome, StepStatusEvent
from .requests import AgentRequest, ProcessingSpeed, Urgency, UserPreferences, Verbosity
from .risk import RiskScore, RiskTrendReport

__all__ = [
    "AgentExecutionResult",
    "AgentRequest",
    "ConfidenceSummary",
    "OrchestrationOutcome",
    "ProcessingSpeed",
    "RiskScore",
    "RiskTrendReport",
    "StepStatusEvent",
    "Urgency",
    "UserPreferences",
    "Verbosity",
]
