"""Static safety-guidance payload used whenever a pipeline escalates.

Everything here is a module-level constant built from literals so the
fallback cannot fail at request time.
"""

from __future__ import annotations

from facet.safety.lexicon import CULTURAL_RESOURCES

SAFETY_RESPONSE = (
    "I'm really concerned about you right now, and I want you to be safe. "
    "You don't have to go through this alone. Please reach out for immediate support: "
    "call or text 988 (Suicide & Crisis Lifeline), text HOME to 741741 (Crisis Text Line), "
    "or call 911 if you are in immediate danger. "
    "If you can, stay with someone you trust or move away from anything you could use to hurt yourself. "
    "I'm here with you."
)

CRISIS_RESOURCES: tuple[str, ...] = (
    "988 Suicide & Crisis Lifeline: call or text 988",
    "Crisis Text Line: Text HOME to 741741",
    "Emergency Services: 911",
)

SAFETY_REASONING = "Safety escalation: crisis-level risk detected; standard processing was replaced with crisis guidance."

SAFETY_ADAPTATIONS: tuple[str, ...] = ("crisis_priority_activated", "safety_fallback")

NEUTRAL_RESPONSE = (
    "I hear you, and I want you to know that I'm here to support you. "
    "What would be most helpful to talk about right now?"
)


def resources_for(cultural_context: str | None) -> tuple[str, ...]:
    if not cultural_context:
        return CRISIS_RESOURCES
    extra = CULTURAL_RESOURCES.get(cultural_context.strip().lower(), ())
    return CRISIS_RESOURCES + extra
