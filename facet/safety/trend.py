from __future__ import annotations

from statistics import fmean
from typing import Sequence

from facet.schemas.risk import RiskScore, RiskTrendReport

IMPROVING_SLOPE = -0.5
WORSENING_SLOPE = 0.5


def risk_slope(values: Sequence[float]) -> float:
    """Least-squares slope of ``values`` against their index."""
    count = len(values)
    if count < 2:
        return 0.0
    mean_x = (count - 1) / 2
    mean_y = fmean(values)
    numerator = sum((index - mean_x) * (value - mean_y) for index, value in enumerate(values))
    denominator = sum((index - mean_x) ** 2 for index in range(count))
    return numerator / denominator


def _is_monotonic(values: Sequence[float]) -> bool:
    pairs = list(zip(values, values[1:]))
    if not pairs:
        return False
    return all(b <= a for a, b in pairs) or all(b >= a for a, b in pairs)


def compute_trend(scores: Sequence[RiskScore], *, critical_threshold: float = 8.0) -> RiskTrendReport:
    values = [score.overall_risk for score in scores]
    if not values:
        return RiskTrendReport(
            trend="stable",
            concern_level=0.0,
            recommendations=("Maintain current monitoring cadence",),
        )

    slope = risk_slope(values)
    if len(values) >= 2 and slope <= IMPROVING_SLOPE:
        trend = "improving"
    elif len(values) >= 2 and slope >= WORSENING_SLOPE:
        trend = "worsening"
    else:
        trend = "stable"

    latest = scores[-1]
    concern = 0.7 * latest.overall_risk + 0.3 * fmean(values) + 1.5 * max(slope, 0.0)
    concern = round(max(0.0, min(10.0, concern)), 2)

    recommendations: list[str] = []
    if trend == "improving":
        recommendations.append("Continue current therapeutic approach")
        recommendations.append("Maintain regular check-ins to consolidate progress")
    elif trend == "worsening":
        recommendations.append("Increase session frequency")
        recommendations.append("Consider intensive outpatient support or hospital evaluation")
    else:
        recommendations.append("Maintain current monitoring cadence")
        if concern >= 6.0:
            recommendations.append("Review the safety plan at the next session")
    if latest.critical_crisis_detected or latest.immediacy >= critical_threshold:
        recommendations.append("Activate crisis safety plan")

    return RiskTrendReport(
        trend=trend,
        concern_level=concern,
        recommendations=tuple(recommendations),
        slope=round(slope, 4),
        monotonic=_is_monotonic(values),
        samples=len(values),
    )
