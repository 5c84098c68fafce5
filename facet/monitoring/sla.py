from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

from facet.core import metrics
from facet.core.config import SLASettings
from facet.core.exceptions import SLAViolation
from facet.core.logging import get_logger
from facet.orchestration.plan import ExecutionPlan

logger = get_logger(name=__name__)


@dataclass(slots=True, frozen=True)
class SLAResult:
    compliant: bool
    target_ms: int
    actual_ms: float
    strategy: str

    @property
    def overage_ms(self) -> float:
        return max(0.0, self.actual_ms - self.target_ms)

    def as_dict(self) -> dict[str, Any]:
        return {
            "compliant": self.compliant,
            "target_ms": self.target_ms,
            "actual_ms": round(self.actual_ms, 2),
            "overage_ms": round(self.overage_ms, 2),
            "strategy": self.strategy,
        }


@dataclass(slots=True)
class SLARecord:
    captured_at: datetime
    strategy: str
    compliant: bool
    actual_ms: float


class SLAMonitor:
    """Compare realised wall-clock time with the per-strategy target table.

    ``check`` never raises; violations are logged and counted only.
    """

    def __init__(self, settings: SLASettings | None = None) -> None:
        self._settings = settings or SLASettings()
        self._history: deque[SLARecord] = deque(maxlen=self._settings.history_size)

    def target_for(self, strategy: str) -> int:
        return int(self._settings.targets_ms.get(strategy, self._settings.default_ceiling_ms))

    def check(self, plan: ExecutionPlan, actual_total_ms: float) -> SLAResult:
        strategy = plan.strategy.value
        target = self.target_for(strategy)
        actual = max(0.0, float(actual_total_ms))
        result = SLAResult(compliant=actual <= target, target_ms=target, actual_ms=actual, strategy=strategy)
        self._history.append(
            SLARecord(
                captured_at=datetime.now(timezone.utc),
                strategy=strategy,
                compliant=result.compliant,
                actual_ms=actual,
            )
        )
        try:
            self._report(result)
        except Exception as exc:  # pragma: no cover - observability must not affect the response
            logger.error("sla_report_failed", error=repr(exc), strategy=strategy)
        return result

    def _report(self, result: SLAResult) -> None:
        if result.compliant:
            metrics.record_sla_event(category="met")
            return
        violation = SLAViolation(strategy=result.strategy, target_ms=result.target_ms, actual_ms=result.actual_ms)
        metrics.record_sla_event(category="violated")
        metrics.observe_sla_overage(strategy=violation.strategy, overage_ms=violation.overage_ms)
        logger.warning(
            "sla_violation",
            strategy=violation.strategy,
            target_ms=violation.target_ms,
            actual_ms=round(violation.actual_ms, 2),
            overage_ms=round(violation.overage_ms, 2),
        )

    def compliance_rate(self, strategy: str | None = None) -> float:
        records = [record for record in self._history if strategy is None or record.strategy == strategy]
        if not records:
            return 1.0
        return sum(1 for record in records if record.compliant) / len(records)

    def summary(self) -> Mapping[str, dict[str, float]]:
        grouped: dict[str, list[SLARecord]] = {}
        for record in self._history:
            grouped.setdefault(record.strategy, []).append(record)
        return {
            strategy: {
                "runs": float(len(records)),
                "compliance_rate": sum(1 for record in records if record.compliant) / len(records),
                "average_ms": sum(record.actual_ms for record in records) / len(records),
                "target_ms": float(self.target_for(strategy)),
            }
            for strategy, records in grouped.items()
        }
