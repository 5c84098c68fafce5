from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from facet.core.exceptions import InvalidStepTransition
from facet.orchestration.enums import ExecutionPattern, StepStatus, StrategyKind
from facet.schemas.requests import ProcessingSpeed

_ALLOWED_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.RUNNING, StepStatus.SKIPPED}),
    StepStatus.RUNNING: frozenset({StepStatus.COMPLETED, StepStatus.ERROR, StepStatus.SKIPPED}),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.ERROR: frozenset(),
    StepStatus.SKIPPED: frozenset(),
}


@dataclass(slots=True)
class Step:
    step_id: str
    agents: tuple[str, ...]
    budget_ms: int
    start_offset_ms: int = 0
    dependencies: tuple[str, ...] = ()
    critical_for_crisis: bool = False
    description: str = ""
    status: StepStatus = StepStatus.PENDING
    skip_reason: str | None = None

    def transition(self, target: StepStatus, *, reason: str | None = None) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStepTransition(f"step '{self.step_id}' cannot move from {self.status.value} to {target.value}")
        self.status = target
        if target is StepStatus.SKIPPED:
            self.skip_reason = reason

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def as_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "agents": list(self.agents),
            "dependencies": list(self.dependencies),
            "start_offset_ms": self.start_offset_ms,
            "budget_ms": self.budget_ms,
            "critical_for_crisis": self.critical_for_crisis,
            "description": self.description,
            "status": self.status.value,
        }


@dataclass(slots=True, frozen=True)
class ExecutionPlan:
    """Strategy, topology and budgets for one turn.

    The plan itself is frozen; only the ``status`` of its steps changes
    while the engine runs it.
    """

    strategy: StrategyKind
    strategy_name: str
    execution_pattern: ExecutionPattern
    total_budget_ms: int
    steps: tuple[Step, ...]
    processing_speed: ProcessingSpeed = ProcessingSpeed.BALANCED
    rationale: str = ""

    @property
    def is_crisis(self) -> bool:
        return self.execution_pattern is ExecutionPattern.CRISIS_PRIORITY

    def step(self, step_id: str) -> Step:
        for candidate in self.steps:
            if candidate.step_id == step_id:
                return candidate
        raise KeyError(step_id)

    def agents(self) -> list[str]:
        seen: dict[str, None] = {}
        for step in self.steps:
            for agent in step.agents:
                seen.setdefault(agent, None)
        return list(seen)

    def statuses(self) -> dict[str, StepStatus]:
        return {step.step_id: step.status for step in self.steps}

    def all_terminal(self) -> bool:
        return all(step.is_terminal for step in self.steps)

    def as_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "strategy_name": self.strategy_name,
            "execution_pattern": self.execution_pattern.value,
            "total_budget_ms": self.total_budget_ms,
            "processing_speed": self.processing_speed.value,
            "rationale": self.rationale,
            "steps": [step.as_dict() for step in self.steps],
        }

    def to_json(self) -> str:
        return json.dumps(self.as_dict(), sort_keys=True, separators=(",", ":"))


@dataclass(slots=True)
class ParallelGroup:
    index: int
    start_offset_ms: int
    steps: list[Step] = field(default_factory=list)
    deadline_ms: int = 0

    @property
    def longest_budget_ms(self) -> int:
        return max((step.budget_ms for step in self.steps), default=0)


def partition_groups(plan: ExecutionPlan) -> list[ParallelGroup]:
    """Split plan steps into parallel groups and assign each a group deadline.

    Steps sharing a start offset with no dependency edge between them run
    as one group. A group's deadline (relative to pipeline start) leaves
    room for the longest step of every later group.
    """
    ordered = sorted(plan.steps, key=lambda step: (step.start_offset_ms, step.step_id))
    groups: list[ParallelGroup] = []
    for step in ordered:
        target: ParallelGroup | None = None
        for group in groups:
            if group.start_offset_ms != step.start_offset_ms:
                continue
            if any(_linked(step, member) for member in group.steps):
                continue
            target = group
            break
        if target is None:
            target = ParallelGroup(index=len(groups), start_offset_ms=step.start_offset_ms)
            groups.append(target)
        target.steps.append(step)

    for position, group in enumerate(groups):
        reserved = sum(later.longest_budget_ms for later in groups[position + 1 :])
        natural = group.start_offset_ms + group.longest_budget_ms
        group.deadline_ms = max(0, min(natural, plan.total_budget_ms - reserved))
    return groups


def _linked(a: Step, b: Step) -> bool:
    return a.step_id in b.dependencies or b.step_id in a.dependencies


def can_run_in_parallel(first: Step, second: Step) -> bool:
    return first.start_offset_ms == second.start_offset_ms and not _linked(first, second)


def dependency_order(steps: Sequence[Step]) -> list[str]:
    """Topological order of step ids; raises ``ValueError`` on a cycle."""
    graph: Mapping[str, set[str]] = {step.step_id: set(step.dependencies) for step in steps}
    indegree = {node: len(deps) for node, deps in graph.items()}
    dependants: dict[str, list[str]] = {node: [] for node in graph}
    for node, deps in graph.items():
        for dep in deps:
            dependants.setdefault(dep, []).append(node)
    ready = sorted(node for node, degree in indegree.items() if degree == 0)
    ordered: list[str] = []
    while ready:
        current = ready.pop(0)
        ordered.append(current)
        for neighbour in sorted(dependants.get(current, [])):
            indegree[neighbour] -= 1
            if indegree[neighbour] == 0:
                ready.append(neighbour)
    if len(ordered) != len(graph):
        remaining = sorted(set(graph) - set(ordered))
        raise ValueError(f"dependency cycle between steps: {', '.join(remaining)}")
    return ordered


def estimate_remaining_ms(plan: ExecutionPlan, elapsed_ms: float) -> float:
    """Worst-case time left for the plan, based on steps that have not finished."""
    open_steps: Iterable[Step] = (step for step in plan.steps if not step.is_terminal)
    horizon = max((step.start_offset_ms + step.budget_ms for step in open_steps), default=0)
    return max(0.0, min(float(plan.total_budget_ms), float(horizon)) - elapsed_ms)
