from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from facet.core.config import EngineSettings


class AgentSlotPool:
    """System-wide bound on concurrent agent calls.

    Crisis-priority steps draw from a separate reserved semaphore, so a
    crisis call always has a slot even when standard pipelines hold every
    general one.
    """

    def __init__(self, settings: EngineSettings | None = None) -> None:
        settings = settings or EngineSettings()
        self._general_capacity = settings.max_concurrent_agent_calls
        self._crisis_capacity = settings.crisis_reserved_slots
        self._general = asyncio.Semaphore(self._general_capacity)
        self._crisis = asyncio.Semaphore(self._crisis_capacity)
        self._in_use = {"general": 0, "crisis": 0}

    @asynccontextmanager
    async def slot(self, *, crisis: bool = False) -> AsyncIterator[None]:
        lane = "crisis" if crisis else "general"
        semaphore = self._crisis if crisis else self._general
        async with semaphore:
            self._in_use[lane] += 1
            try:
                yield
            finally:
                self._in_use[lane] -= 1

    def in_use(self, lane: str = "general") -> int:
        return self._in_use[lane]

    def available(self, lane: str = "general") -> int:
        capacity = self._crisis_capacity if lane == "crisis" else self._general_capacity
        return capacity - self._in_use[lane]
