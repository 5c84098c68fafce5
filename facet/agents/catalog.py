from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable

CRISIS_MONITOR = "crisis_monitor"
EMOTION_ANALYZER = "emotion_analyzer"
MEMORY_MANAGER = "memory_manager"
THERAPY_ADVISOR = "therapy_advisor"
PROGRESS_TRACKER = "progress_tracker"


@dataclass(slots=True, frozen=True)
class AgentProfile:
    name: str
    description: str
    influence: float
    crisis_capable: bool = False
    routine_influence: float | None = None
    produces_response: bool = False

    def influence_for(self, *, crisis_plan: bool) -> float:
        if self.routine_influence is not None and not crisis_plan:
            return self.routine_influence
        return self.influence


def _build_profiles() -> Dict[str, AgentProfile]:
    return {
        CRISIS_MONITOR: AgentProfile(
            name=CRISIS_MONITOR,
            description="Assesses acute safety risk and produces intervention guidance.",
            influence=1.0,
            crisis_capable=True,
            routine_influence=0.6,
        ),
        EMOTION_ANALYZER: AgentProfile(
            name=EMOTION_ANALYZER,
            description="Identifies primary and secondary emotions and their intensity.",
            influence=0.8,
        ),
        MEMORY_MANAGER: AgentProfile(
            name=MEMORY_MANAGER,
            description="Retrieves relevant history, goals and prior techniques for the user.",
            influence=0.7,
        ),
        THERAPY_ADVISOR: AgentProfile(
            name=THERAPY_ADVISOR,
            description="Selects an evidence-based technique and drafts the reply.",
            influence=0.9,
            produces_response=True,
        ),
        PROGRESS_TRACKER: AgentProfile(
            name=PROGRESS_TRACKER,
            description="Measures progress toward therapeutic goals across sessions.",
            influence=0.5,
        ),
    }


class AgentCatalog:
    """Registry of agents the planner may schedule and their synthesis weights."""

    def __init__(self, profiles: Iterable[AgentProfile] | None = None) -> None:
        source = list(profiles) if profiles is not None else list(_build_profiles().values())
        self._profiles = {profile.name: profile for profile in source}

    def __contains__(self, name: object) -> bool:
        return name in self._profiles

    def get(self, name: str) -> AgentProfile | None:
        return self._profiles.get(name)

    def names(self) -> list[str]:
        return sorted(self._profiles)

    def crisis_agents(self) -> list[str]:
        return sorted(name for name, profile in self._profiles.items() if profile.crisis_capable)

    def influence(self, name: str, *, crisis_plan: bool = False) -> float:
        profile = self._profiles.get(name)
        if profile is None:
            return 0.5
        return profile.influence_for(crisis_plan=crisis_plan)


def default_catalog() -> AgentCatalog:
    return AgentCatalog()
