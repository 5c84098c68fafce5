"""Phrase tables used by the risk scanner.

Patterns run against lower-cased text with curly apostrophes folded to
ASCII. Critical patterns are explicit statements of intent, method or
means; moderate and mild cues only ever contribute partial scores.

A critical pattern may carry an ``idiom_tail``: when the words right after
a match read as a figure of speech ("die of embarrassment", "kill him for
eating my lunch", "cut myself shaving") the match is scored as mild
hyperbole instead. Patterns marked ``laughter_demotes`` are also demoted
when the message is laughing ("lol", "haha"). Patterns marked
``needs_timeframe`` only count when the message names a time.
"""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class PhrasePattern:
    category: str
    weight: float
    pattern: re.Pattern[str]
    idiom_tail: re.Pattern[str] | None = None
    laughter_demotes: bool = False
    needs_timeframe: bool = False

    def finditer(self, text: str):
        return self.pattern.finditer(text)

    def reads_figuratively(self, text: str, end: int, *, laughing: bool) -> bool:
        if self.idiom_tail is not None and self.idiom_tail.match(text, end):
            return True
        return self.laughter_demotes and laughing


def _p(
    category: str,
    weight: float,
    expression: str,
    *,
    idiom_tail: re.Pattern[str] | None = None,
    laughter_demotes: bool = False,
    needs_timeframe: bool = False,
) -> PhrasePattern:
    return PhrasePattern(
        category=category,
        weight=weight,
        pattern=re.compile(expression),
        idiom_tail=idiom_tail,
        laughter_demotes=laughter_demotes,
        needs_timeframe=needs_timeframe,
    )


# "die of boredom", "die for a coffee" (but not "die for real")
_DIE_IDIOM = re.compile(r"\s+(?:of\b|from (?:laughing|laughter|embarrassment|boredom)|laughing|for\b(?! real\b))")
# "kill him for eating my lunch"
_GRUDGE_IDIOM = re.compile(r"\s+(?:for|over)\b")
# "cut myself shaving", "hurt myself at the gym"
_ACCIDENT_IDIOM = re.compile(
    r"\s+(?:(?:while |when )?(?:shaving|cooking|chopping|slicing|playing|running|lifting|training|skiing|"
    r"working out|falling)|at (?:the gym|practice|football|soccer)|by accident|accidentally|in the kitchen)\b"
)
# "shot myself in the foot"
_FOOT_IDIOM = re.compile(r"\s+in the (?:foot|leg)\b")
# "end it with him", "end it between us"
_BREAKUP_IDIOM = re.compile(r"\s+(?:with|between)\b")

CRITICAL_PATTERNS: tuple[PhrasePattern, ...] = (
    # suicide
    _p("suicide", 10.0, r"\bkill(?:ing|ed)? myself\b"),
    _p("suicide", 10.0, r"\bend(?:ing)? (?:my (?:own )?life|it all)\b"),
    _p("suicide", 10.0, r"\btak(?:e|ing) my (?:own )?life\b"),
    _p("suicide", 10.0, r"\bsuicide note\b"),
    _p("suicide", 10.0, r"\btonight is the night\b"),
    _p("suicide", 10.0, r"\bhang(?:ing)? myself\b"),
    _p("suicide", 10.0, r"\b(?:slit|slash|slice|cut)(?:ting)? (?:open )?(?:my|both) wrists?\b"),
    _p("suicide", 10.0, r"\b(?:shoot(?:ing)?|shot) myself\b", idiom_tail=_FOOT_IDIOM),
    _p("suicide", 10.0, r"\b(?:bullet|gun) (?:in|into|to|through) my (?:head|brain|mouth|temple)\b"),
    _p("suicide", 10.0, r"\bblow(?:ing)? my (?:brains|head) (?:out|off)\b"),
    _p("suicide", 9.0, r"\bsuicid(?:e|al)\b"),
    _p("suicide", 9.0, r"\b(?:want|wanna|going|ready) to die\b", idiom_tail=_DIE_IDIOM, laughter_demotes=True),
    _p("suicide", 9.0, r"\bwish i (?:was|were) dead\b"),
    _p("suicide", 9.0, r"\bbetter off dead\b"),
    _p(
        "suicide",
        9.0,
        r"\b(?:want(?:ed)? to|wanna|going to|gonna|ready to|about to|decided to|i'll|i will) end it\b(?! all\b)",
        idiom_tail=_BREAKUP_IDIOM,
    ),
    _p(
        "suicide",
        9.0,
        r"\bjump(?:ed|ing)? (?:off|from) (?:a |the |my )?(?:bridge|building|roof|cliff|balcony|ledge)\b",
    ),
    _p(
        "suicide",
        9.0,
        r"\b(?:jump(?:ed|ing)?|step(?:ped|ping)?|throw(?:ing)? myself|walk(?:ed|ing)?) (?:in front of|under|into) "
        r"(?:a |an |the )?(?:oncoming )?(?:train|car|bus|truck|lorry|traffic)\b",
    ),
    _p("suicide", 8.0, r"\bno (?:point|reason) (?:in |to )?(?:living|live|being alive)\b"),
    _p("suicide", 8.0, r"\bdon't want to (?:live|be alive|wake up)\b"),
    # self harm
    _p(
        "self_harm",
        8.0,
        r"\b(?:hurt(?:ing)?|cut(?:ting)?|harm(?:ing)?|burn(?:ed|t|ing)?) myself\b",
        idiom_tail=_ACCIDENT_IDIOM,
    ),
    _p("self_harm", 8.0, r"\bself[- ]harm(?:ing)?\b"),
    # substance
    _p("substance", 9.0, r"\boverdos(?:e|ing)\b"),
    _p(
        "substance",
        9.0,
        r"\b(?:take|taking|swallow(?:ing)?|down(?:ing)?) "
        r"(?:all|every one|the (?:whole|entire) bottle|a (?:whole )?bottle|a (?:whole )?bunch|a handful|handfuls) "
        r"(?:of )?(?:my |the |these |those )?(?:sleeping )?"
        r"(?:pills|meds|medications?|tablets)\b",
    ),
    # violence
    _p(
        "violence",
        9.0,
        r"\bkill (?:him|her|them|someone|somebody|everyone|people)\b(?!')",
        idiom_tail=_GRUDGE_IDIOM,
        laughter_demotes=True,
    ),
    _p(
        "violence",
        8.0,
        r"\bhurt (?:him|her|them|someone|somebody|everyone|people)\b(?!')",
        idiom_tail=_GRUDGE_IDIOM,
        laughter_demotes=True,
    ),
    _p("violence", 10.0, r"\bshoot (?:up )?(?:the |my )?(?:school|office|work|people|everyone)\b"),
    # psychosis with command content
    _p("psychosis", 10.0, r"\bvoices? (?:are |is )?(?:telling|tell|told) me to (?:kill|hurt|die|end)\b"),
    _p("psychosis", 9.0, r"\bcommand(?:s|ing)? me to (?:kill|hurt)\b"),
    # "end it tonight": only with a stated time, and never on top of a phrase above
    _p("suicide", 9.0, r"\bend(?:ing)? it\b(?! all\b)", idiom_tail=_BREAKUP_IDIOM, needs_timeframe=True),
)

MODERATE_PATTERNS: tuple[PhrasePattern, ...] = (
    _p("hopelessness", 4.0, r"\bhopeless(?:ness)?\b"),
    _p("hopelessness", 4.0, r"\bno hope\b"),
    _p("hopelessness", 4.0, r"\bwhat's the point\b"),
    _p("hopelessness", 4.0, r"\bcan't go on\b"),
    _p("hopelessness", 4.0, r"\bcan(?:'t|not) (?:live|keep living|keep going) like this\b"),
    _p("hopelessness", 4.0, r"\bgive up on (?:everything|life)\b"),
    _p("hopelessness", 4.0, r"\bnothing (?:will|is going to) (?:ever )?(?:change|get better)\b"),
    _p("overwhelming_distress", 4.0, r"\bcan't cope\b"),
    _p("overwhelming_distress", 4.0, r"\bfalling apart\b"),
    _p("overwhelming_distress", 4.0, r"\bbreaking down\b"),
    _p("overwhelming_distress", 4.0, r"\bcan't stop crying\b"),
    _p("overwhelming_distress", 4.0, r"\boverwhelm(?:ed|ing)\b"),
    _p("overwhelming_distress", 4.0, r"\bunbearable\b"),
    _p("overwhelming_distress", 4.0, r"\bcan't take (?:it|this) anymore\b"),
    _p("isolation", 4.0, r"\b(?:nobody|no one) (?:cares|would (?:notice|care|miss me))\b"),
    _p("isolation", 4.0, r"\b(?:completely|totally|all) alone\b"),
    _p("isolation", 4.0, r"\bisolated\b"),
    _p("worthlessness", 4.0, r"\bworthless\b"),
    _p("worthlessness", 4.0, r"\b(?:i'm|i am) a burden\b"),
    _p("worthlessness", 4.0, r"\bhate myself\b"),
)

CULTURAL_PATTERNS: tuple[PhrasePattern, ...] = (
    _p("cultural_shame", 4.0, r"\bbring(?:ing)? shame (?:on|to) my family\b"),
    _p("cultural_shame", 4.0, r"\bdishono(?:u)?r(?:ed)? (?:my|our) family\b"),
    _p("cultural_shame", 4.0, r"\blost face\b"),
)

MILD_PATTERNS: tuple[PhrasePattern, ...] = (
    _p("low_mood", 2.0, r"\b(?:sad|down|upset|lonely|blue)\b"),
    _p("anxiety", 2.0, r"\b(?:anxious|nervous|worried|scared|afraid|panick(?:y|ing))\b"),
    _p("stress", 2.0, r"\b(?:stressed|stressful|exhausted|frustrated|burned out|burnt out)\b"),
)

PROTECTIVE_PATTERNS: tuple[PhrasePattern, ...] = (
    _p("faith", 0.0, r"\b(?:faith|god|church|pray(?:ing|er)?|religio(?:n|us)|mosque|temple|synagogue)\b"),
    _p("dependents", 0.0, r"\bmy (?:kids|children|child|son|daughter|baby|dog|cat|pets?)\b"),
    _p("future_plans", 0.0, r"\b(?:looking forward|my future|plans? for|graduat(?:e|ion)|wedding)\b"),
    _p(
        "support_network",
        0.0,
        r"\b(?:my (?:therapist|counsel(?:l)?or|friends?|partner|wife|husband|mom|dad|sister|brother)|support group)\b",
    ),
    _p("treatment_engagement", 0.0, r"\b(?:therapy is helping|medication is helping|coping skills|safety plan)\b"),
)

MEANS_PATTERN = re.compile(r"\b(?:gun|pistol|rifle|firearm|pills|rope|razor|blade|knife|bridge)\b")
IMMEDIATE_TIMEFRAME_PATTERN = re.compile(
    r"\b(?:right now|tonight|today|immediately|this (?:minute|second|moment)|now)\b"
)
NEAR_TIMEFRAME_PATTERN = re.compile(r"\b(?:tomorrow|this week|this weekend|soon)\b")
PLANNING_PATTERN = re.compile(r"\b(?:plan(?:ned|ning)?|going to|gonna|ready to|decided to|i will)\b")
LAUGHTER_PATTERN = re.compile(r"(?:\b(?:lol|lmao|lmfao|rofl|haha\w*|hehe\w*)\b|\U0001F602|\U0001F923|\U0001F606)")
INTENSIFIER_PATTERN = re.compile(r"\b(?:completely|totally|extremely|so much|really)\b")
NEGATION_TOKENS = frozenset({"never", "not", "don't", "dont", "wouldn't", "won't", "wont", "didn't", "no"})

CATEGORY_FIELDS: dict[str, tuple[str, ...]] = {
    "suicide": ("suicide_risk",),
    "substance": ("suicide_risk",),
    "self_harm": ("self_harm_risk",),
    "violence": ("violence_risk",),
    "psychosis": ("psychosis_risk", "violence_risk"),
}

CULTURAL_RESOURCES: dict[str, tuple[str, ...]] = {
    "latino": ("Crisis Text Line en Español: Text HOLA to 741741",),
    "hispanic": ("Crisis Text Line en Español: Text HOLA to 741741",),
    "lgbtq": ("The Trevor Project: 1-866-488-7386",),
    "veteran": ("Veterans Crisis Line: Dial 988 then press 1",),
}


def normalise(text: str) -> str:
    return " ".join(text.lower().replace("’", "'").replace("‘", "'").split())
