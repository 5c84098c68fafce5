from __future__ import annotations

import asyncio

from facet.schemas.outcome import AgentExecutionResult


class ResultsSealed(RuntimeError):
    """Append attempted after the pipeline moved on to synthesis."""


class ResultsLog:
    """Append-only, lock-guarded log of agent results for one pipeline run."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._items: list[AgentExecutionResult] = []
        self._sealed = False

    async def append(self, result: AgentExecutionResult) -> None:
        async with self._lock:
            if self._sealed:
                raise ResultsSealed(f"results log sealed; dropping result from '{result.agent_name}'")
            self._items.append(result)

    async def seal(self) -> tuple[AgentExecutionResult, ...]:
        async with self._lock:
            self._sealed = True
            return tuple(self._items)

    @property
    def sealed(self) -> bool:
        return self._sealed

    def snapshot(self) -> tuple[AgentExecutionResult, ...]:
        return tuple(self._items)

    def for_steps(self, step_ids: set[str]) -> tuple[AgentExecutionResult, ...]:
        return tuple(result for result in self._items if result.step_id in step_ids)

    def __len__(self) -> int:
        return len(self._items)
