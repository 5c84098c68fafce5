from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RiskSettings(BaseModel):
    critical_immediacy_threshold: float = Field(
        8.0,
        ge=0.0,
        le=10.0,
        description="Immediacy at or above which a turn is routed to the crisis strategy.",
    )
    high_risk_threshold: float = Field(6.0, ge=0.0, le=10.0, description="Lower bound of the high-risk band.")
    cache_size: int = Field(1000, ge=0, description="Entries kept in the scan cache (0 disables caching).")
    max_text_chars: int = Field(8000, ge=1, description="Input beyond this length is ignored by the scanner.")


class PlanningSettings(BaseModel):
    fast_factor: float = Field(0.7, gt=0.0, le=1.0, description="Budget multiplier for processing_speed=fast.")
    thorough_factor: float = Field(1.3, ge=1.0, le=3.0, description="Budget multiplier for processing_speed=thorough.")
    crisis_floor_ms: int = Field(1500, ge=100, description="Minimum budget for crisis plans after tightening.")
    crisis_ceiling_ms: int = Field(2000, ge=100, description="Maximum budget of the eager crisis step.")
    thorough_budget_cap_ms: int = Field(12000, ge=1000)
    simple_max_words: int = Field(15, ge=1, description="Word limit for a message to count as a quick check-in.")


class EngineSettings(BaseModel):
    max_concurrent_agent_calls: int = Field(8, ge=1, description="System-wide cap on in-flight agent calls.")
    crisis_reserved_slots: int = Field(2, ge=1, description="Slots reserved for crisis-priority steps.")
    grace_ms: int = Field(250, ge=0, description="Allowance past the plan budget before a forced stop.")
    escalation_grace_ms: int = Field(150, ge=0, description="Time running steps get after an escalation.")
    min_step_window_ms: int = Field(25, ge=0, description="Steps with less time than this left are skipped.")
    reported_risk_threshold: float = Field(8.0, ge=0.0, le=10.0)
    event_queue_size: int = Field(256, ge=1)


class SLASettings(BaseModel):
    targets_ms: dict[str, int] = Field(
        default_factory=lambda: {
            "simple": 1500,
            "crisis": 2000,
            "high_emotion": 3000,
            "progress": 4000,
            "standard": 8000,
        },
        description="Per-strategy wall-clock targets in milliseconds.",
    )
    default_ceiling_ms: int = Field(8000, ge=1)
    history_size: int = Field(1000, ge=1)


class SynthesisSettings(BaseModel):
    max_insights: int = Field(8, ge=1, description="Upper bound on de-duplicated insights carried forward.")
    safety_confidence: float = Field(0.95, ge=0.0, le=1.0)


class AgentClientSettings(BaseModel):
    base_url: str = Field("http://localhost:8100", description="Base URL of the agent gateway.")
    timeout_seconds: float = Field(8.0, gt=0.0, description="Upper bound for a single HTTP attempt.")
    max_retries: int = Field(1, ge=0, le=5)
    retry_backoff_seconds: float = Field(0.1, ge=0.0)
    retry_backoff_max_seconds: float = Field(0.5, ge=0.0)
    default_headers: dict[str, str] = Field(default_factory=dict)


class ObservabilitySettings(BaseModel):
    log_level: str = Field("INFO")
    json_logs: bool = Field(True)


class Settings(BaseSettings):
    environment: Literal["local", "test", "production"] = Field("local")

    risk: RiskSettings = Field(default_factory=RiskSettings)  # type: ignore[arg-type]
    planning: PlanningSettings = Field(default_factory=PlanningSettings)  # type: ignore[arg-type]
    engine: EngineSettings = Field(default_factory=EngineSettings)  # type: ignore[arg-type]
    sla: SLASettings = Field(default_factory=SLASettings)  # type: ignore[arg-type]
    synthesis: SynthesisSettings = Field(default_factory=SynthesisSettings)  # type: ignore[arg-type]
    agents: AgentClientSettings = Field(default_factory=AgentClientSettings)  # type: ignore[arg-type]
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)  # type: ignore[arg-type]

    model_config = SettingsConfigDict(
        env_prefix="FACET_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )


@lru_cache(maxsize=1)
def _get_cached_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def get_settings(overrides: Mapping[str, Any] | None = None) -> Settings:
    """Return settings, using cached defaults unless overrides are provided."""
    if overrides:
        return Settings(**dict(overrides))
    return _get_cached_settings()
