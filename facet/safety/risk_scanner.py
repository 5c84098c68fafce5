from __future__ import annotations

import time
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Sequence

from facet.core import metrics
from facet.core.config import RiskSettings
from facet.core.logging import get_logger
from facet.safety import lexicon
from facet.safety.lexicon import PhrasePattern
from facet.safety.trend import compute_trend
from facet.schemas.risk import RiskScore, RiskTrendReport

logger = get_logger(name=__name__)


@dataclass(slots=True)
class _Matches:
    critical: list[tuple[PhrasePattern, str]] = field(default_factory=list)
    moderate: list[tuple[PhrasePattern, str]] = field(default_factory=list)
    mild: list[tuple[PhrasePattern, str]] = field(default_factory=list)
    protective: set[str] = field(default_factory=set)


class RiskScanner:
    """Layered phrase matcher producing a :class:`RiskScore` for raw text.

    Scanning is pure and synchronous: no I/O and no shared mutable state
    apart from an optional memo of previous inputs, so the same scanner can
    be shared across concurrent pipelines.
    """

    def __init__(self, settings: RiskSettings | None = None) -> None:
        self._settings = settings or RiskSettings()
        if self._settings.cache_size > 0:
            self._score = lru_cache(maxsize=self._settings.cache_size)(self._compute)
        else:
            self._score = self._compute

    @property
    def settings(self) -> RiskSettings:
        return self._settings

    def scan(self, text: str, cultural_context: str | None = None, *, source: str = "message") -> RiskScore:
        start = time.perf_counter()
        normalised = lexicon.normalise(text or "")[: self._settings.max_text_chars]
        context = cultural_context.strip().lower() if cultural_context else None
        score = self._score(normalised, context)
        metrics.observe_risk_scan(
            latency=time.perf_counter() - start,
            critical=score.critical_crisis_detected,
            source=source,
        )
        if score.critical_crisis_detected:
            logger.warning(
                "critical_risk_detected",
                source=source,
                overall_risk=score.overall_risk,
                immediacy=score.immediacy,
                factors=list(score.risk_factors),
            )
        return score

    def scan_trend(self, scores: Sequence[RiskScore]) -> RiskTrendReport:
        return compute_trend(scores, critical_threshold=self._settings.critical_immediacy_threshold)

    def is_crisis(self, score: RiskScore) -> bool:
        return score.critical_crisis_detected or score.immediacy >= self._settings.critical_immediacy_threshold

    def _compute(self, text: str, cultural_context: str | None) -> RiskScore:
        matches = self._match(text)
        risk_factors: set[str] = set()
        if cultural_context:
            risk_factors.add(f"cultural_context:{cultural_context}")

        has_means = bool(lexicon.MEANS_PATTERN.search(text))
        immediate = bool(lexicon.IMMEDIATE_TIMEFRAME_PATTERN.search(text))
        near = bool(lexicon.NEAR_TIMEFRAME_PATTERN.search(text))
        planning = bool(lexicon.PLANNING_PATTERN.search(text))
        intensifiers = len(lexicon.INTENSIFIER_PATTERN.findall(text))
        category_scores = {
            "suicide_risk": 0.0,
            "violence_risk": 0.0,
            "self_harm_risk": 0.0,
            "psychosis_risk": 0.0,
        }

        if matches.critical:
            weights = sorted((item.weight for item, _ in matches.critical), reverse=True)
            overall = weights[0] + 0.5 * (len(weights) - 1) + (0.5 if has_means else 0.0)
            overall = max(8.0, overall)
            immediacy = 8.0
            if immediate:
                immediacy += 1.5
            elif near:
                immediacy += 0.5
            if has_means:
                immediacy += 0.5
                risk_factors.add("means_access")
            if planning:
                immediacy += 0.5
                risk_factors.add("stated_plan")
            if immediate or near:
                risk_factors.add("timeframe")
            for item, _ in matches.critical:
                risk_factors.add(item.category)
                for field_name in lexicon.CATEGORY_FIELDS.get(item.category, ()):
                    category_scores[field_name] = max(category_scores[field_name], item.weight)
            confidence = min(0.99, 0.9 + 0.02 * (len(matches.critical) - 1))
            confidence_floor = 0.6
        elif matches.moderate:
            overall = min(7.5, 4.0 + 1.5 * (len(matches.moderate) - 1) + min(1.0, 0.5 * intensifiers))
            immediacy = min(6.0, 2.0 + len(matches.moderate) + (1.0 if immediate else 0.0))
            for item, _ in matches.moderate:
                risk_factors.add(item.category)
            if risk_factors & {"hopelessness", "worthlessness", "negated_suicide"}:
                category_scores["suicide_risk"] = round(overall * 0.6, 2)
            if "negated_self_harm" in risk_factors:
                category_scores["self_harm_risk"] = round(overall * 0.5, 2)
            confidence = min(0.8, 0.6 + 0.05 * (len(matches.moderate) - 1))
            confidence_floor = 0.05
        elif matches.mild:
            overall = min(4.0, 2.0 + 0.5 * (len(matches.mild) - 1) + min(1.0, 0.5 * intensifiers))
            immediacy = 1.0
            for item, _ in matches.mild:
                risk_factors.add(item.category)
            confidence = 0.25
            confidence_floor = 0.05
        else:
            overall = 0.0
            immediacy = 0.0
            confidence = 0.1
            confidence_floor = 0.05

        if matches.protective:
            confidence = max(confidence_floor, confidence - 0.05 * len(matches.protective))

        return RiskScore(
            overall_risk=_clamp(overall),
            suicide_risk=_clamp(category_scores["suicide_risk"]),
            violence_risk=_clamp(category_scores["violence_risk"]),
            self_harm_risk=_clamp(category_scores["self_harm_risk"]),
            psychosis_risk=_clamp(category_scores["psychosis_risk"]),
            immediacy=_clamp(immediacy),
            confidence=round(confidence, 4),
            risk_factors=tuple(sorted(risk_factors)),
            protective_factors=tuple(sorted(matches.protective)),
            critical_crisis_detected=bool(matches.critical),
            matched_phrases=tuple(
                phrase for _, phrase in (*matches.critical, *matches.moderate, *matches.mild)
            ),
            cultural_context=cultural_context,
        )

    def _match(self, text: str) -> _Matches:
        matches = _Matches()
        has_means = bool(lexicon.MEANS_PATTERN.search(text))
        has_timeframe = bool(
            lexicon.IMMEDIATE_TIMEFRAME_PATTERN.search(text) or lexicon.NEAR_TIMEFRAME_PATTERN.search(text)
        )
        laughing = bool(lexicon.LAUGHTER_PATTERN.search(text))
        spans: list[tuple[int, int]] = []
        for item in lexicon.CRITICAL_PATTERNS:
            for found in item.finditer(text):
                if item.needs_timeframe and (not has_timeframe or _overlaps(found.span(), spans)):
                    continue
                if _is_negated(text, found.start()):
                    demoted = PhrasePattern(category=f"negated_{item.category}", weight=4.0, pattern=item.pattern)
                    matches.moderate.append((demoted, found.group(0)))
                elif not has_means and item.reads_figuratively(text, found.end(), laughing=laughing):
                    hyperbole = PhrasePattern(category="hyperbole", weight=2.0, pattern=item.pattern)
                    matches.mild.append((hyperbole, found.group(0)))
                else:
                    matches.critical.append((item, found.group(0)))
                    spans.append(found.span())
        for item in (*lexicon.MODERATE_PATTERNS, *lexicon.CULTURAL_PATTERNS):
            for found in item.finditer(text):
                matches.moderate.append((item, found.group(0)))
        for item in lexicon.MILD_PATTERNS:
            for found in item.finditer(text):
                matches.mild.append((item, found.group(0)))
        for item in lexicon.PROTECTIVE_PATTERNS:
            if item.pattern.search(text):
                matches.protective.add(item.category)
        return matches


def _is_negated(text: str, start: int, *, window: int = 3) -> bool:
    preceding = text[:start].split()[-window:]
    return any(token.strip(",.;:!?") in lexicon.NEGATION_TOKENS for token in preceding)


def _overlaps(span: tuple[int, int], spans: list[tuple[int, int]]) -> bool:
    return any(span[0] < end and start < span[1] for start, end in spans)


def _clamp(value: float, low: float = 0.0, high: float = 10.0) -> float:
    return round(max(low, min(high, value)), 2)
