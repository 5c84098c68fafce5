from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

RiskValue = Annotated[float, Field(ge=0.0, le=10.0)]
Confidence = Annotated[float, Field(ge=0.0, le=1.0)]

InterventionPriority = Literal["critical", "high", "moderate", "low"]
Timeframe = Literal["immediate", "hours", "days", "weeks"]
TrendLabel = Literal["improving", "stable", "worsening"]


class RiskScore(BaseModel):
    """Multi-dimensional risk assessment for one piece of text."""

    model_config = ConfigDict(frozen=True)

    overall_risk: RiskValue = 0.0
    suicide_risk: RiskValue = 0.0
    violence_risk: RiskValue = 0.0
    self_harm_risk: RiskValue = 0.0
    psychosis_risk: RiskValue = 0.0
    immediacy: RiskValue = 0.0
    confidence: Confidence = 0.1
    risk_factors: tuple[str, ...] = ()
    protective_factors: tuple[str, ...] = ()
    critical_crisis_detected: bool = False
    matched_phrases: tuple[str, ...] = ()
    cultural_context: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def intervention_priority(self) -> InterventionPriority:
        if self.overall_risk >= 8 and self.immediacy >= 8:
            return "critical"
        if self.overall_risk >= 6 or self.immediacy >= 7:
            return "high"
        if self.overall_risk >= 4 or self.immediacy >= 5:
            return "moderate"
        return "low"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def timeframe(self) -> Timeframe:
        if self.immediacy >= 9:
            return "immediate"
        if self.immediacy >= 7:
            return "hours"
        if self.immediacy >= 5:
            return "days"
        return "weeks"


class RiskTrendReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    trend: TrendLabel
    concern_level: RiskValue
    recommendations: tuple[str, ...] = ()
    slope: float = 0.0
    monotonic: bool = False
    samples: int = 0
