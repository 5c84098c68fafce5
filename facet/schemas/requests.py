from __future__ import annotations

from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class Urgency(str, Enum):
    NORMAL = "normal"
    ELEVATED = "elevated"
    CRISIS = "crisis"


class ProcessingSpeed(str, Enum):
    FAST = "fast"
    BALANCED = "balanced"
    THOROUGH = "thorough"


class Verbosity(str, Enum):
    BRIEF = "brief"
    STANDARD = "standard"
    DETAILED = "detailed"


class UserPreferences(BaseModel):
    model_config = ConfigDict(frozen=True)

    processing_speed: ProcessingSpeed = ProcessingSpeed.BALANCED
    verbosity: Verbosity = Verbosity.STANDARD


class AgentRequest(BaseModel):
    """One user turn handed to the orchestrator."""

    model_config = ConfigDict(frozen=True)

    message: str
    user_id: str
    conversation_id: str
    urgency: Urgency = Urgency.NORMAL
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    cultural_context: str | None = None
    request_id: str = Field(default_factory=lambda: uuid4().hex)
