from __future__ import annotations

from enum import Enum


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in {StepStatus.COMPLETED, StepStatus.ERROR, StepStatus.SKIPPED}


class ExecutionPattern(str, Enum):
    SERIAL = "serial"
    PARALLEL = "parallel"
    HYBRID = "hybrid"
    CRISIS_PRIORITY = "crisis_priority"


class StrategyKind(str, Enum):
    CRISIS = "crisis"
    HIGH_EMOTION = "high_emotion"
    SIMPLE = "simple"
    PROGRESS = "progress"
    STANDARD = "standard"


class PipelineState(str, Enum):
    PLANNING_DONE = "planning_done"
    EXECUTING = "executing"
    ESCALATING = "escalating"
    SYNTHESIZING = "synthesizing"
    DONE = "done"


class ErrorKind(str, Enum):
    AGENT_TIMEOUT = "AgentTimeout"
    REMOTE_ERROR = "RemoteError"
    MALFORMED_OUTPUT = "MalformedOutput"
    CANCELLED = "Cancelled"


class EscalationReason(str, Enum):
    CRITICAL_STEP_FAILED = "critical_step_failed"
    EMERGENT_CRISIS = "emergent_crisis"
    PREEMPTED = "preempted_by_crisis"


__all__ = [
    "StepStatus",
    "ExecutionPattern",
    "StrategyKind",
    "PipelineState",
    "ErrorKind",
    "EscalationReason",
]
